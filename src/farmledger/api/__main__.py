# src/farmledger/api/__main__.py
from __future__ import annotations

import argparse
from dataclasses import replace
from typing import List, Optional

import uvicorn

from farmledger.env import load_dotenv_if_present


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="farmledger read-only HTTP API")
    ap.add_argument("--config", dest="config_path", default=None, help="JSON ledger config (else FARMLEDGER_CONFIG_PATH / env)")
    ap.add_argument("--host", dest="api_host", default=None)
    ap.add_argument("--port", dest="api_port", type=int, default=None)
    ap.add_argument("--log-level", dest="log_level", default=None)
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    # Load .env before config is read; real env vars still win.
    load_dotenv_if_present()

    from farmledger.api.app import create_app
    from farmledger.api.structured_logging import configure_structured_logging
    from farmledger.runtime.config import load_ledger_config, validate_ledger_config
    from farmledger.runtime.ledger_boot import build_ledger

    cfg = load_ledger_config(config_path=args.config_path)
    overrides = {k: v for k, v in (("api_host", args.api_host), ("api_port", args.api_port)) if v is not None}
    if args.log_level:
        overrides["log_level"] = str(args.log_level).strip().upper()
    if overrides:
        cfg = replace(cfg, **overrides)
        validate_ledger_config(cfg)

    configure_structured_logging(cfg.log_level)
    app = create_app(boot_runtime=False)
    app.state.runtime = build_ledger(cfg)

    uvicorn.run(app, host=cfg.api_host, port=cfg.api_port, log_level=cfg.log_level.lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
