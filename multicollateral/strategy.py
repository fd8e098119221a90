"""
strategy.py - Collateral Ledger (the vault's settlement strategy)

Tracks how much of each collateral kind the settlement entity holds, values
it in base units, and releases base units for redemptions.

Two base-unit accounts share one physical custody balance:

    collateral_balances[base]   base kind deposited as collateral (tracked)
    redemption reserve          base kind funded by the manager (untracked)

    reserve = max(0, physical_base - collateral_balances[base])

Key Formulas:
    total_value = sum(convert_to_base(k, collateral_balances[k]) for k in held_kinds)
                  + reserve

Disbursement tie-break: a withdrawal draws down the reserve first and only
then the tracked base collateral, so tracked collateral never exceeds what is
physically present and the formula never counts the same unit twice.
"""

from __future__ import annotations
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from .access import MANAGER, require_role
from .core import (
    EventLog, EventType, Journaled, UndoLog,
    AlreadyBound, InsufficientLiquidity, NotAllowed, OnlyManager, OnlyVault,
    MAX_UINT256, require_positive,
)
from .custody import TokenBook
from .registry import RateRegistry

logger = logging.getLogger(__name__)


class CollateralLedger(Journaled):
    """
    Per-kind collateral balances held by one settlement wallet.

    Balance changes are journaled. A bound vault shares its lock so manager
    funding serializes with vault operations.

    Example:
        ledger = CollateralLedger("strategy", registry, book, roles)
        ledger.bind_vault("vault")
        ledger.deposit_collateral("vault", "WBTC", 100_000_000)
        ledger.total_value()
    """

    def __init__(
        self,
        wallet_id: str,
        registry: RateRegistry,
        custody: TokenBook,
        access,
        events: Optional[EventLog] = None,
    ):
        self.wallet_id = wallet_id
        self.registry = registry
        self.custody = custody
        self.access = access
        self.events = events if events is not None else EventLog()
        self.vault_id: Optional[str] = None
        self.collateral_balances: Dict[str, int] = {}
        self.held_kinds: List[str] = []
        self.journal = UndoLog()
        self._lock = threading.RLock()
        custody.ensure_wallet(wallet_id)

    @property
    def base_token(self) -> str:
        return self.registry.base_token

    def bind_vault(self, vault_id: str) -> None:
        """
        Make vault_id the only caller of vault entry points.

        Grants the vault an unlimited allowance over the ledger's base-unit
        custody so it can perform disbursements.
        """
        if self.vault_id is not None and self.vault_id != vault_id:
            raise AlreadyBound(f"{self.wallet_id} already bound to {self.vault_id}")
        self.vault_id = vault_id
        self.custody.approve(self.wallet_id, vault_id, self.base_token, MAX_UINT256)

    def bind_lock(self, lock) -> None:
        self._lock = lock

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def balance_of(self, token: str) -> int:
        return self.collateral_balances.get(token, 0)

    def physical_base_balance(self) -> int:
        return self.custody.balance_of(self.wallet_id, self.base_token)

    def redemption_reserve(self) -> int:
        """Base units held beyond the tracked base-kind collateral."""
        return max(0, self.physical_base_balance() - self.balance_of(self.base_token))

    def total_value(self) -> int:
        """Tracked collateral in base units plus the untracked reserve."""
        value = 0
        for token in self.held_kinds:
            balance = self.collateral_balances.get(token, 0)
            if balance == 0:
                continue
            if not self.registry.is_allowed(token):
                # no rate for a removed kind; it cannot be valued
                logger.warning("held collateral %s is no longer allowed; excluded from value", token)
                continue
            value += self.registry.convert_to_base(token, balance)
        return value + self.redemption_reserve()

    def reconcile(self) -> Dict[str, Any]:
        """
        Compare tracked balances with what custody physically holds.

        Returns:
            Dict with keys:
            - 'valid': bool - tracked never exceeds physical for any kind
            - 'rows': per-token tracked / physical / untracked
        """
        rows = []
        valid = True
        tokens = list(self.held_kinds)
        if self.base_token not in tokens:
            tokens.append(self.base_token)
        for token in tokens:
            tracked = self.collateral_balances.get(token, 0)
            physical = self.custody.balance_of(self.wallet_id, token)
            if tracked > physical:
                valid = False
            rows.append({
                "token": token,
                "tracked": tracked,
                "physical": physical,
                "untracked": physical - tracked,
            })
        return {"valid": valid, "rows": rows}

    # ------------------------------------------------------------------
    # Vault entry points
    # ------------------------------------------------------------------

    def deposit_collateral(self, caller: str, token: str, amount: int) -> None:
        """
        Record collateral the vault has already moved into custody.

        Raises:
            OnlyVault: caller is not the bound vault
            ZeroAmount: amount is zero
            NotAllowed: token is not allowed by the registry
        """
        self._require_vault(caller)
        require_positive(amount, "amount")
        if not self.registry.is_allowed(token):
            raise NotAllowed(f"{token} is not allowed collateral")

        self.journal.set_item(self.collateral_balances, token, self.balance_of(token) + amount)
        if token not in self.held_kinds:
            self.journal.append(self.held_kinds, token)
        self.events.emit(EventType.COLLATERAL_DEPOSITED, token=token, amount=amount)

    def withdraw(self, caller: str, to: str, amount: int) -> Tuple[int, int]:
        """
        Authorize a base-unit disbursement of amount to `to`.

        Only the accounting happens here; the vault moves the tokens with the
        allowance granted in bind_vault().

        Returns:
            (from_reserve, from_collateral) split of the amount

        Raises:
            OnlyVault: caller is not the bound vault
            InsufficientLiquidity: physical base balance is below amount
        """
        self._require_vault(caller)
        require_positive(amount, "amount")
        physical = self.physical_base_balance()
        if physical < amount:
            raise InsufficientLiquidity(
                f"{self.wallet_id} holds {physical} {self.base_token}, needs {amount} for {to}"
            )
        from_reserve = min(amount, self.redemption_reserve())
        from_collateral = amount - from_reserve
        if from_collateral:
            self.journal.set_item(
                self.collateral_balances, self.base_token, self.balance_of(self.base_token) - from_collateral
            )
        return from_reserve, from_collateral

    # ------------------------------------------------------------------
    # Manager entry points
    # ------------------------------------------------------------------

    def deposit_redemption_funds(self, caller: str, amount: int) -> None:
        """
        Pull base units from the manager to fund redemptions.

        Not recorded in collateral_balances; surfaces as redemption_reserve().
        """
        require_role(self.access, caller, MANAGER, OnlyManager)
        require_positive(amount, "amount")
        with self._lock:
            self.custody.transfer(self.base_token, caller, self.wallet_id, amount, memo="redemption_funds")
            self.events.emit(EventType.REDEMPTION_FUNDS_DEPOSITED, manager=caller, amount=amount)
        logger.info("redemption funds deposited by %s: %d", caller, amount)

    def _require_vault(self, caller: str) -> None:
        if self.vault_id is None or caller != self.vault_id:
            raise OnlyVault(f"{caller} is not the vault bound to {self.wallet_id}")
