"""
vault.py - Multi-Collateral Vault

The Vault is the accounting entity that ties the registry, collateral ledger,
share book, hook pipeline and custody book together. It is the only place
that sequences their mutations.

Key responsibilities:
    - Deposit any allowed collateral and mint shares on its base-unit value
    - Redeem/withdraw shares for base units disbursed by the collateral ledger
    - Move shares between holders subject to transfer hooks
    - Run every mutating call atomically: all state changes commit together
      or none do
    - Keep a logical clock (unix seconds) and an operation sequence

Atomicity:
    Every public mutating method runs inside _atomic(): the vault's reentrant
    lock is held and a transaction is open on the vault's UndoLog, which the
    share book, collateral ledger, hook markers, event log and custody book
    all record into. Any exception undoes exactly what the operation changed
    before re-raising. Hook lists and the registry are configuration and are
    not journaled, but their administration takes the same lock, so no admin
    change lands in the middle of an operation.
"""

from __future__ import annotations
from contextlib import contextmanager
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional

from .core import (
    EventLog, EventType, HookContext, Journaled, OperationKind, UndoLog,
    ZeroShares,
    require_positive, require_uint,
)
from .custody import TokenBook
from .hooks import HookPipeline
from .registry import RateRegistry
from .shares import (
    ShareBook, calculate_assets, calculate_shares, calculate_shares_for_withdraw,
)
from .strategy import CollateralLedger

logger = logging.getLogger(__name__)


class Vault:
    """
    Tokenized multi-collateral vault.

    Example:
        vault = Vault("vault", registry, strategy, custody, conduit, hooks)
        vault.deposit_collateral("alice", "WBTC", 100_000_000, "alice")
        vault.redeem("alice", vault.balance_of("alice"), "alice", "alice")
    """

    def __init__(
        self,
        vault_id: str,
        registry: RateRegistry,
        strategy: CollateralLedger,
        custody: TokenBook,
        conduit,
        hooks: HookPipeline,
        events: Optional[EventLog] = None,
        name: str = "Multi-Collateral Vault",
        symbol: str = "mcVAULT",
        share_decimals: int = 18,
        initial_time: int = 0,
    ):
        self.vault_id = vault_id
        self.name = name
        self.symbol = symbol
        self.registry = registry
        self.strategy = strategy
        self.custody = custody
        self.conduit = conduit
        self.hooks = hooks
        self.events = events if events is not None else EventLog()
        self.share_decimals = share_decimals
        self.shares = ShareBook()
        self._lock = threading.RLock()
        self._current_time = initial_time
        self._sequence = 0
        self._depth = 0
        self._journal = UndoLog(owner=vault_id)

        custody.ensure_wallet(vault_id)
        strategy.bind_vault(vault_id)
        self.events.bind_clock(lambda: (self._sequence, self._current_time))
        hooks.bind_clock(lambda: self._sequence)
        for part in (registry, strategy, hooks):
            part.bind_lock(self._lock)
        for part in self._journaled():
            part.bind_journal(self._journal)

    # ========================================================================
    # CLOCK
    # ========================================================================

    @property
    def current_time(self) -> int:
        return self._current_time

    @property
    def sequence(self) -> int:
        """Number of mutating operations started so far (the vault's height)."""
        return self._sequence

    def advance_time(self, new_time: int) -> None:
        """
        Move the logical clock forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._lock:
            if new_time < self._current_time:
                raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
            self._current_time = new_time

    # ========================================================================
    # VIEWS
    # ========================================================================

    @property
    def base_token(self) -> str:
        return self.registry.base_token

    @property
    def base_decimals(self) -> int:
        return self.registry.base_decimals

    def total_assets(self) -> int:
        """Total value held by the collateral ledger, in base units."""
        return self.strategy.total_value()

    def total_supply(self) -> int:
        return self.shares.total_shares

    def balance_of(self, holder: str) -> int:
        return self.shares.balance_of(holder)

    def allowance(self, owner: str, spender: str) -> int:
        return self.shares.allowance(owner, spender)

    def convert_to_shares(self, base_amount: int) -> int:
        require_uint(base_amount, "base_amount")
        return calculate_shares(
            base_amount, self.shares.total_shares, self.total_assets(),
            self.base_decimals, self.share_decimals,
        )

    def convert_to_assets(self, share_amount: int) -> int:
        require_uint(share_amount, "share_amount")
        return calculate_assets(
            share_amount, self.shares.total_shares, self.total_assets(),
            self.base_decimals, self.share_decimals,
        )

    def preview_deposit_collateral(self, token: str, amount: int) -> int:
        return self.convert_to_shares(self.registry.convert_to_base(token, amount))

    def preview_deposit(self, assets: int) -> int:
        return self.preview_deposit_collateral(self.base_token, assets)

    def preview_redeem(self, shares: int) -> int:
        return self.convert_to_assets(shares)

    def preview_withdraw(self, assets: int) -> int:
        """Shares burned to withdraw assets (rounded up)."""
        require_uint(assets, "assets")
        return calculate_shares_for_withdraw(
            assets, self.shares.total_shares, self.total_assets(),
            self.base_decimals, self.share_decimals,
        )

    def max_redeem(self, owner: str) -> int:
        return self.balance_of(owner)

    def max_withdraw(self, owner: str) -> int:
        return self.convert_to_assets(self.balance_of(owner))

    def verify_share_conservation(self) -> Dict[str, Any]:
        return self.shares.verify_conservation()

    def status(self) -> Dict[str, Any]:
        """Snapshot of registry, ledger and share state for operators."""
        return {
            "vault": self.vault_id,
            "name": self.name,
            "symbol": self.symbol,
            "time": self._current_time,
            "sequence": self._sequence,
            "base_token": self.base_token,
            "collateral": self.registry.status(),
            "held_collateral": {
                token: self.strategy.balance_of(token) for token in self.strategy.held_kinds
            },
            "redemption_reserve": self.strategy.redemption_reserve(),
            "total_assets": self.total_assets(),
            "total_supply": self.total_supply(),
            "holders": dict(sorted(self.shares.shares_of.items())),
        }

    # ========================================================================
    # DEPOSITS
    # ========================================================================

    def deposit_collateral(self, caller: str, token: str, amount: int, receiver: str) -> int:
        """
        Deposit amount of an allowed collateral and mint shares to receiver.

        Deposit hooks see the base-unit value of the collateral as assets.

        Returns:
            Shares minted

        Raises:
            ZeroAmount: amount is zero (before any side effect)
            CollateralNotAllowed: token is not allowed
            HookCheckFailed: a deposit hook rejected
            ZeroShares: the deposit is too small to mint a share unit
        """
        require_positive(amount, "amount")
        with self._atomic():
            value = self.registry.convert_to_base(token, amount)
            shares = self.convert_to_shares(value)
            if shares == 0:
                raise ZeroShares(f"{amount} {token} is worth {value} base units, mints no shares")
            self.hooks.run(HookContext(
                operation=OperationKind.DEPOSIT,
                caller=caller,
                owner=caller,
                receiver=receiver,
                assets=value,
                shares=shares,
                token=token,
                token_amount=amount,
                timestamp=self._current_time,
            ))
            self.conduit.move_tokens(token, caller, self.strategy.wallet_id, amount)
            self.strategy.deposit_collateral(self.vault_id, token, amount)
            self.shares.mint(receiver, shares)
            self.events.emit(
                EventType.DEPOSIT, caller=caller, receiver=receiver, token=token,
                amount=amount, assets=value, shares=shares,
            )
            logger.info("deposit %d %s by %s -> %d shares to %s", amount, token, caller, shares, receiver)
            return shares

    def deposit(self, caller: str, assets: int, receiver: str) -> int:
        """Deposit base units (the base kind) and mint shares to receiver."""
        return self.deposit_collateral(caller, self.base_token, assets, receiver)

    # ========================================================================
    # REDEMPTIONS
    # ========================================================================

    def redeem(self, caller: str, shares: int, receiver: str, owner: str) -> int:
        """
        Burn shares of owner and pay their base-unit value to receiver.

        Returns:
            Base units paid
        """
        require_positive(shares, "shares")
        with self._atomic():
            assets = self.convert_to_assets(shares)
            self._settle(caller, owner, receiver, shares, assets, spend_allowance=True)
            return assets

    def withdraw(self, caller: str, assets: int, receiver: str, owner: str) -> int:
        """
        Pay exactly assets base units to receiver, burning owner's shares.

        Returns:
            Shares burned (rounded up)
        """
        require_positive(assets, "assets")
        with self._atomic():
            shares = self.preview_withdraw(assets)
            self._settle(caller, owner, receiver, shares, assets, spend_allowance=True)
            return shares

    def _settle(
        self,
        caller: str,
        owner: str,
        receiver: str,
        shares: int,
        assets: int,
        spend_allowance: bool,
    ) -> None:
        """Shared burn-and-disburse path. Must run inside _atomic()."""
        if spend_allowance:
            self.shares.spend_allowance(owner, caller, shares)
        self.hooks.run(HookContext(
            operation=OperationKind.WITHDRAW,
            caller=caller,
            owner=owner,
            receiver=receiver,
            assets=assets,
            shares=shares,
            token=self.base_token,
            token_amount=assets,
            timestamp=self._current_time,
        ))
        self.shares.burn(owner, shares)
        if assets:
            self._disburse(receiver, assets)
        self.events.emit(
            EventType.WITHDRAW, caller=caller, owner=owner, receiver=receiver,
            assets=assets, shares=shares,
        )
        logger.info("withdraw %d shares of %s -> %d %s to %s", shares, owner, assets, self.base_token, receiver)

    def _disburse(self, receiver: str, assets: int) -> None:
        self.strategy.withdraw(self.vault_id, receiver, assets)
        self.custody.ensure_wallet(receiver)
        self.custody.transfer_from(
            self.vault_id, self.base_token, self.strategy.wallet_id, receiver, assets,
            memo="redemption",
        )

    # ========================================================================
    # SHARE TRANSFERS
    # ========================================================================

    def approve(self, caller: str, spender: str, shares: int) -> None:
        with self._atomic():
            self.shares.approve(caller, spender, shares)
            self.events.emit(EventType.APPROVAL, owner=caller, spender=spender, shares=shares)

    def transfer(self, caller: str, to: str, shares: int) -> None:
        self.transfer_from(caller, caller, to, shares)

    def transfer_from(self, caller: str, owner: str, to: str, shares: int) -> None:
        """
        Move shares from owner to `to`, consuming caller's allowance when
        caller is not the owner.
        """
        require_positive(shares, "shares")
        with self._atomic():
            self.shares.spend_allowance(owner, caller, shares)
            self.hooks.run(HookContext(
                operation=OperationKind.TRANSFER,
                caller=caller,
                owner=owner,
                receiver=to,
                assets=self.convert_to_assets(shares),
                shares=shares,
                timestamp=self._current_time,
            ))
            self.shares.move(owner, to, shares)
            self.events.emit(EventType.TRANSFER, caller=caller, owner=owner, to=to, shares=shares)

    # ========================================================================
    # ATOMIC BOUNDARY
    # ========================================================================

    def _journaled(self) -> List[Journaled]:
        parts: List[Journaled] = [self.shares, self.strategy, self.hooks, self.events]
        for log in (self.strategy.events, self.hooks.events):
            if all(log is not p for p in parts):
                parts.append(log)
        if isinstance(self.custody, Journaled):
            parts.append(self.custody)
        return parts

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        """
        One logical transaction.

        The outermost entry advances the operation sequence. Nested entries
        (batches calling single operations) open a nested transaction on the
        same journal, so an inner failure undoes exactly what the inner call
        changed before the exception continues to the outer boundary. The
        journal is emptied when the outermost entry closes.
        """
        with self._lock:
            mark = self._journal.begin()
            if self._depth == 0:
                self._journal.set_attr(self, "_sequence", self._sequence + 1)
            sequence = self._sequence
            self._depth += 1
            try:
                yield
            except BaseException as exc:
                self._journal.rollback(mark)
                logger.warning("rolled back operation #%d: %s: %s",
                               sequence, type(exc).__name__, exc)
                raise
            else:
                self._journal.commit()
            finally:
                self._depth -= 1
