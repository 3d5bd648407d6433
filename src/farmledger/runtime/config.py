# src/farmledger/runtime/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


@dataclass(frozen=True)
class LedgerConfig:
    ledger_id: str
    mode: str  # "dev" | "testnet" | "prod"

    # Administrator identity for add_pool/set_pool/set_emission_rate/set_migrator.
    admin: str

    reward_asset: str
    reward_rate_per_second: int
    # Reward asset units minted into custody on first boot (dev/testnet only).
    reward_funding: int

    # Empty db_path keeps the ledger in memory only.
    db_path: str
    lock_path: str

    api_host: str
    api_port: int

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}
_ALLOWED_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_ledger_config(cfg: LedgerConfig) -> None:
    """Fail-fast validation for operator config."""

    for name in ("ledger_id", "admin", "reward_asset"):
        v = getattr(cfg, name)
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if int(cfg.reward_rate_per_second) < 0:
        raise ValueError(f"reward_rate_per_second must be >= 0; got: {cfg.reward_rate_per_second}")

    if int(cfg.reward_funding) < 0:
        raise ValueError(f"reward_funding must be >= 0; got: {cfg.reward_funding}")
    if mode == "prod" and int(cfg.reward_funding) > 0:
        # Production custody is funded by the real reward asset, never minted here.
        raise ValueError("reward_funding must be 0 in prod mode")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if str(cfg.log_level or "").strip().upper() not in _ALLOWED_LEVELS:
        raise ValueError(f"log_level must be one of {_ALLOWED_LEVELS}; got: {cfg.log_level!r}")

    if cfg.db_path.strip() and not cfg.lock_path.strip():
        raise ValueError("lock_path must be set when db_path is set")


def default_ledger_config() -> LedgerConfig:
    return LedgerConfig(
        ledger_id="farm-dev",
        # Production-safe default: no silent dev posture without a config file.
        mode="prod",
        admin="admin",
        reward_asset="REWARD",
        reward_rate_per_second=0,
        reward_funding=0,
        db_path="./data/farmledger.db",
        lock_path="./data/farmledger.lock",
        api_host="127.0.0.1",
        api_port=8080,
        log_level="INFO",
    )


def _from_mapping(raw: Any, d: LedgerConfig) -> LedgerConfig:
    return LedgerConfig(
        ledger_id=_as_str(raw.get("ledger_id"), d.ledger_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        admin=_as_str(raw.get("admin"), d.admin),
        reward_asset=_as_str(raw.get("reward_asset"), d.reward_asset),
        reward_rate_per_second=_as_int(raw.get("reward_rate_per_second"), d.reward_rate_per_second),
        reward_funding=_as_int(raw.get("reward_funding"), d.reward_funding),
        db_path=raw.get("db_path") if isinstance(raw.get("db_path"), str) else d.db_path,
        lock_path=_as_str(raw.get("lock_path"), d.lock_path),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
    )


def read_ledger_config_file(path: str) -> LedgerConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("ledger config must be a JSON object")

    cfg = _from_mapping(raw, default_ledger_config())
    validate_ledger_config(cfg)
    return cfg


def ledger_config_from_env(base: Optional[LedgerConfig] = None) -> LedgerConfig:
    """Overlay FARMLEDGER_* environment variables on `base` (defaults when omitted)."""
    d = base or default_ledger_config()
    raw = {
        "ledger_id": os.environ.get("FARMLEDGER_LEDGER_ID"),
        "mode": os.environ.get("FARMLEDGER_MODE"),
        "admin": os.environ.get("FARMLEDGER_ADMIN"),
        "reward_asset": os.environ.get("FARMLEDGER_REWARD_ASSET"),
        "reward_rate_per_second": os.environ.get("FARMLEDGER_REWARD_RATE_PER_SECOND"),
        "reward_funding": os.environ.get("FARMLEDGER_REWARD_FUNDING"),
        "db_path": os.environ.get("FARMLEDGER_DB_PATH"),
        "lock_path": os.environ.get("FARMLEDGER_LOCK_PATH"),
        "api_host": os.environ.get("FARMLEDGER_API_HOST"),
        "api_port": os.environ.get("FARMLEDGER_API_PORT"),
        "log_level": os.environ.get("FARMLEDGER_LOG_LEVEL"),
    }
    cfg = _from_mapping(raw, d)
    validate_ledger_config(cfg)
    return cfg


def load_ledger_config(*, config_path: Optional[str] = None) -> LedgerConfig:
    p = config_path or os.environ.get("FARMLEDGER_CONFIG_PATH")
    if p:
        return read_ledger_config_file(p)
    return ledger_config_from_env()
