"""
Serialization Conformance Tests

INVARIANT: One lock per vault orders every change to it.

    operation O running, admin call A on the same vault
        ⟹ A starts only after O has committed or rolled back;
           O sees the hook list, rates and clock it started with

    O finished ⟹ the vault's undo journal is empty
"""

import threading

import pytest

from multicollateral import (
    BaseHook, EventType, HookCheckFailed, HookResult, OperationKind, RATE_SCALE,
)

ONE_BASE = 10 ** 8
ONE_WBTC = 10 ** 8
DEPOSIT = OperationKind.DEPOSIT


class GateHook(BaseHook):
    """Approves deposits once released; signals when a deposit reaches it."""

    name = "gate"

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def on_deposit(self, context):
        self.entered.set()
        self.release.wait(5)
        return HookResult.approve()


class RejectHook(BaseHook):
    name = "reject"

    def on_deposit(self, context):
        return HookResult.reject("X")


def in_thread(target, *args):
    outcome = {}

    def run():
        try:
            outcome["value"] = target(*args)
        except Exception as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, outcome


@pytest.fixture
def gated(plain_env):
    vault = plain_env.vault
    gate = GateHook()
    vault.hooks.add_hook("strategist", DEPOSIT, gate)
    vault.hooks.add_hook("strategist", DEPOSIT, RejectHook())
    return vault, gate


def blocked(thread):
    thread.join(timeout=0.2)
    return thread.is_alive()


class TestAdminWaitsForOperation:

    def test_hook_removal_and_rate_update_wait_for_deposit(self, gated):
        vault, gate = gated
        deposit, result = in_thread(vault.deposit_collateral, "alice", "WBTC", ONE_WBTC, "alice")
        assert gate.entered.wait(5)

        def admin():
            vault.hooks.remove_hook("strategist", DEPOSIT, 1)
            vault.registry.update_rate("admin", "WBTC", 2 * RATE_SCALE)

        admin_thread, admin_result = in_thread(admin)
        assert blocked(admin_thread)
        assert len(vault.hooks.get_hooks(DEPOSIT)) == 2
        assert vault.registry.rate_of("WBTC") == RATE_SCALE

        gate.release.set()
        deposit.join(5)
        admin_thread.join(5)
        assert isinstance(result.get("error"), HookCheckFailed)
        assert str(result["error"]) == "X"
        assert "error" not in admin_result
        assert [r.hook.name for r in vault.hooks.get_hooks(DEPOSIT)] == ["gate"]
        assert vault.registry.rate_of("WBTC") == 2 * RATE_SCALE
        assert vault.balance_of("alice") == 0

    def test_redemption_funding_waits_for_deposit(self, gated):
        vault, gate = gated
        vault.hooks.remove_hook("strategist", DEPOSIT, 1)
        deposit, result = in_thread(vault.deposit, "alice", ONE_BASE, "alice")
        assert gate.entered.wait(5)

        funding, funding_result = in_thread(
            vault.strategy.deposit_redemption_funds, "manager", 3 * ONE_BASE,
        )
        assert blocked(funding)
        assert vault.strategy.redemption_reserve() == 0

        gate.release.set()
        deposit.join(5)
        funding.join(5)
        assert "error" not in result and "error" not in funding_result
        assert vault.total_assets() == 4 * ONE_BASE

    def test_clock_waits_for_operation(self, gated):
        vault, gate = gated
        vault.hooks.remove_hook("strategist", DEPOSIT, 1)
        start = vault.current_time
        deposit, result = in_thread(vault.deposit, "alice", ONE_BASE, "alice")
        assert gate.entered.wait(5)

        clock, clock_result = in_thread(vault.advance_time, start + 60)
        assert blocked(clock)

        gate.release.set()
        deposit.join(5)
        clock.join(5)
        assert "error" not in clock_result
        assert vault.current_time == start + 60
        [event] = vault.events.of_type(EventType.DEPOSIT)
        assert event.timestamp == start


class TestJournalIsBounded:

    def test_empty_after_commit_and_rollback(self, plain_env):
        vault = plain_env.vault
        vault.deposit("alice", ONE_BASE, "alice")
        assert len(vault._journal) == 0
        with pytest.raises(Exception):
            vault.deposit("alice", 100 * ONE_BASE, "alice")
        assert len(vault._journal) == 0
        assert not vault._journal.active

    def test_components_share_the_vault_journal(self, plain_env):
        vault = plain_env.vault
        for part in (vault.shares, vault.strategy, vault.hooks, vault.events, vault.custody):
            assert part.journal is vault._journal
