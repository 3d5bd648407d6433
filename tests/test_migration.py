from __future__ import annotations

import pytest

from farmledger.runtime.collaborators import InMemoryAsset
from farmledger.runtime.errors import LedgerForbiddenError, LedgerMigrationError, LedgerPreconditionError


class _SwapMigrator:
    """Pulls the old collateral from custody and mints `ratio` of it in a new asset."""

    address = "migrator-contract"

    def __init__(self, custody: str, new_id: str = "LP0-v2", *, shortfall: int = 0) -> None:
        self.custody = custody
        self.new = InMemoryAsset(new_id)
        self.shortfall = shortfall

    def migrate_collateral(self, old_asset):
        bal = old_asset.balance_of(self.custody)
        assert old_asset.transfer_from(self.address, self.custody, self.address, bal)
        self.new.mint(self.custody, max(0, bal - self.shortfall))
        return self.new


class _ExplodingMigrator:
    address = "boom"

    def migrate_collateral(self, old_asset):
        raise RuntimeError("bridge offline")


def test_migrate_without_migrator(make_farm) -> None:
    f = make_farm()
    with pytest.raises(LedgerMigrationError) as ei:
        f.ledger.migrate("anyone", 0)
    assert ei.value.code == "no_migrator"


def test_set_migrator_is_admin_only_and_must_be_registered(make_farm) -> None:
    f = make_farm()
    f.ledger.register_migrator("m", _SwapMigrator(f.ledger.custody))
    with pytest.raises(LedgerForbiddenError):
        f.ledger.set_migrator("alice", "m")
    with pytest.raises(LedgerPreconditionError) as ei:
        f.ledger.set_migrator(f.admin, "unknown")
    assert ei.value.reason == "unknown_migrator"

    assert f.ledger.set_migrator(f.admin, "m") == {"migrator": "m"}
    assert f.ledger.set_migrator(f.admin, None) == {"migrator": None}


def test_successful_migration_swaps_collateral_and_keeps_positions(make_farm) -> None:
    f = make_farm()
    f.ledger.deposit("alice", 0, 100)
    f.ledger.deposit("bob", 0, 60)
    f.clock.advance(10)

    m = _SwapMigrator(f.ledger.custody)
    f.ledger.register_migrator("v2", m)
    f.ledger.set_migrator(f.admin, "v2")

    positions_before = (f.ledger.get_position(0, "alice"), f.ledger.get_position(0, "bob"))
    out = f.ledger.migrate("anyone", 0)

    assert out == {"pid": 0, "collateral_asset": "LP0-v2", "balance": 160}
    assert f.ledger.get_pool(0)["collateral_asset"] == "LP0-v2"
    assert f.lps[0].balance_of(f.ledger.custody) == 0
    assert f.lps[0].balance_of(m.address) == 160
    assert (f.ledger.get_position(0, "alice"), f.ledger.get_position(0, "bob")) == positions_before

    # withdrawals now pay out in the replacement asset
    f.ledger.withdraw("alice", 0, 100)
    assert m.new.balance_of("alice") == 100


def test_migration_balance_mismatch_is_rejected(make_farm) -> None:
    f = make_farm()
    f.ledger.deposit("alice", 0, 100)

    m = _SwapMigrator(f.ledger.custody, shortfall=1)
    f.ledger.register_migrator("lossy", m)
    f.ledger.set_migrator(f.admin, "lossy")

    with pytest.raises(LedgerMigrationError) as ei:
        f.ledger.migrate("anyone", 0)
    assert ei.value.code == "balance_mismatch"
    assert ei.value.details == {"pid": 0, "before": 100, "after": 99}

    # old collateral movement was rolled back and the pool is unchanged
    assert f.ledger.get_pool(0)["collateral_asset"] == "LP0"
    assert f.lps[0].balance_of(f.ledger.custody) == 100
    assert f.lps[0].allowance(f.ledger.custody, m.address) == 0
    assert not f.ledger.collaborators.has_asset("LP0-v2")


def test_migrator_exception_is_wrapped(make_farm) -> None:
    f = make_farm()
    f.ledger.deposit("alice", 0, 5)
    f.ledger.register_migrator("boom", _ExplodingMigrator())
    f.ledger.set_migrator(f.admin, "boom")

    with pytest.raises(LedgerMigrationError) as ei:
        f.ledger.migrate("anyone", 0)
    assert ei.value.code == "migration_failed"
    assert f.ledger.get_pool(0)["collateral_asset"] == "LP0"


def test_migrating_an_empty_pool(make_farm) -> None:
    f = make_farm()
    m = _SwapMigrator(f.ledger.custody, new_id="LP0-empty")
    f.ledger.register_migrator("v2", m)
    f.ledger.set_migrator(f.admin, "v2")
    assert f.ledger.migrate("anyone", 0)["balance"] == 0
