"""
registry.py - Rate Registry for Multi-Collateral Deposits

This module owns the whitelist of acceptable collateral kinds and converts
amounts between each kind's native precision and the base unit.

ARCHITECTURE:
=============

1. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take every input explicitly: amount, rate, decimals, base_decimals
   - No registry lookups, trivially property-testable

2. RateRegistry:
   - Stores CollateralKind records and an insertion-ordered list of allowed
     tokens with a reverse index for O(1) swap-with-last removal
   - Administrative mutations require the PROTOCOL_ADMIN role
   - convert_to_base / convert_from_base look the kind up, then delegate to
     the pure functions

Key Formulas:
    scale      = 10 ** (18 + decimals - base_decimals)
    to_base    = amount * rate // scale
    from_base  = base_amount * scale // rate

Both directions round down. A round trip loses at most ceil(scale / rate)
units of the original amount; see round_trip_error_bound().
"""

from __future__ import annotations
import logging
import threading
from typing import Dict, List, Optional, Tuple

from .access import PROTOCOL_ADMIN, require_role
from .core import (
    CollateralKind, EventLog, EventType,
    CollateralNotAllowed, InvalidCollateral, InvalidDecimals, InvalidRate,
    NotProtocolAdmin,
    RATE_DECIMALS, RATE_SCALE, MAX_UINT8, MAX_UINT256,
    require_uint,
)

logger = logging.getLogger(__name__)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def _scale_terms(decimals: int, base_decimals: int) -> Tuple[int, int]:
    """
    Return (up, down) multipliers so that value * up / down applies the scale.

    The exponent 18 + decimals - base_decimals is negative only for tokens with
    far fewer decimals than the base unit; then the scale multiplies instead.
    """
    exponent = RATE_DECIMALS + decimals - base_decimals
    if exponent >= 0:
        return 1, 10 ** exponent
    return 10 ** (-exponent), 1


def calculate_to_base(amount: int, rate: int, decimals: int, base_decimals: int) -> int:
    """
    Convert a native collateral amount into base units, rounding down.

    Args:
        amount: Quantity in the collateral's native decimals
        rate: Conversion rate to base, 1e18 fixed point (must be > 0)
        decimals: Collateral decimals
        base_decimals: Base unit decimals

    Returns:
        Value in base units
    """
    if amount == 0:
        return 0
    up, down = _scale_terms(decimals, base_decimals)
    return amount * rate * up // down


def calculate_from_base(base_amount: int, rate: int, decimals: int, base_decimals: int) -> int:
    """Convert a base-unit amount into native collateral units, rounding down."""
    if base_amount == 0:
        return 0
    up, down = _scale_terms(decimals, base_decimals)
    return base_amount * down // (rate * up)


def round_trip_error_bound(rate: int, decimals: int, base_decimals: int) -> int:
    """
    Upper bound on x - from_base(to_base(x)) for any x.

    With scale S and rate r, to_base loses less than one base unit, which is
    worth S / r native units; the second floor loses less than one more.
    The loss is never negative since both directions round down.

    Returns:
        0 when the conversion is exact (S == r), else ceil(S / r).
    """
    up, down = _scale_terms(decimals, base_decimals)
    numerator = down
    denominator = rate * up
    if numerator == denominator:
        return 0
    return -(-numerator // denominator)


# ============================================================================
# REGISTRY
# ============================================================================

class RateRegistry:
    """
    Whitelist of collateral kinds with their decimals and rates.

    The base kind converts as identity regardless of its stored rate, but it
    must still be added like any other kind before it can be converted.
    Administration runs under a lock that a Vault replaces with its own.

    Example:
        registry = RateRegistry("SOVABTC", base_decimals=8, access=roles)
        registry.add_collateral("admin", "SOVABTC", RATE_SCALE, 8)
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        registry.convert_to_base("WBTC", 100_000_000)  # 100_000_000
    """

    def __init__(
        self,
        base_token: str,
        base_decimals: int,
        access,
        events: Optional[EventLog] = None,
    ):
        if not base_token or not base_token.strip():
            raise ValueError("base_token cannot be empty")
        if not 0 <= base_decimals <= MAX_UINT8:
            raise ValueError(f"base_decimals out of range: {base_decimals}")
        self.base_token = base_token
        self.base_decimals = base_decimals
        self.access = access
        self.events = events if events is not None else EventLog()
        self._kinds: Dict[str, CollateralKind] = {}
        self._order: List[str] = []
        self._index: Dict[str, int] = {}
        self._lock = threading.RLock()

    def bind_lock(self, lock) -> None:
        """Serialize administration behind lock (a Vault passes its own)."""
        self._lock = lock

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def is_allowed(self, token: str) -> bool:
        kind = self._kinds.get(token)
        return kind is not None and kind.allowed

    def get_collateral(self, token: str) -> Optional[CollateralKind]:
        return self._kinds.get(token)

    def allowed_collateral(self) -> List[str]:
        """Allowed tokens in enumeration order (affected by swap-with-last removal)."""
        return list(self._order)

    def collateral_count(self) -> int:
        return len(self._order)

    def rate_of(self, token: str) -> int:
        return self._require_allowed(token).rate_to_base

    def decimals_of(self, token: str) -> int:
        return self._require_allowed(token).decimals

    def status(self) -> List[Dict[str, object]]:
        """Per-token rows for the operator status view."""
        return [
            {
                "token": token,
                "decimals": self._kinds[token].decimals,
                "rate": self._kinds[token].rate_to_base,
                "is_base": token == self.base_token,
            }
            for token in self._order
        ]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def add_collateral(self, caller: str, token: str, rate: int, decimals: int) -> CollateralKind:
        """
        Allow a new collateral kind.

        Raises:
            NotProtocolAdmin: caller lacks PROTOCOL_ADMIN
            InvalidCollateral: token is empty or already allowed
            InvalidRate: rate is zero
            InvalidDecimals: decimals outside 0..255
        """
        require_role(self.access, caller, PROTOCOL_ADMIN, NotProtocolAdmin)
        with self._lock:
            if not token or not str(token).strip():
                raise InvalidCollateral("collateral token cannot be empty")
            if self.is_allowed(token):
                raise InvalidCollateral(f"{token} already allowed")
            self._require_rate(rate)
            if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= MAX_UINT8:
                raise InvalidDecimals(f"decimals out of range: {decimals!r}")
            kind = CollateralKind(token=token, decimals=decimals, rate_to_base=rate, allowed=True)
            self._kinds[token] = kind
            self._index[token] = len(self._order)
            self._order.append(token)
            self.events.emit(EventType.COLLATERAL_ADDED, token=token, rate=rate, decimals=decimals)
        logger.info("collateral added: %s rate=%d decimals=%d", token, rate, decimals)
        return kind

    def remove_collateral(self, caller: str, token: str) -> None:
        """
        Disallow a collateral kind.

        The last token in enumeration order moves into the removed slot.
        """
        require_role(self.access, caller, PROTOCOL_ADMIN, NotProtocolAdmin)
        with self._lock:
            self._require_allowed(token)
            self._kinds[token] = CollateralKind(token=token, decimals=0, rate_to_base=0, allowed=False)
            position = self._index.pop(token)
            last = self._order.pop()
            if last != token:
                self._order[position] = last
                self._index[last] = position
            self.events.emit(EventType.COLLATERAL_REMOVED, token=token)
        logger.info("collateral removed: %s", token)

    def update_rate(self, caller: str, token: str, new_rate: int) -> Tuple[int, int]:
        """
        Replace the conversion rate of an allowed kind.

        Returns:
            (old_rate, new_rate)
        """
        require_role(self.access, caller, PROTOCOL_ADMIN, NotProtocolAdmin)
        with self._lock:
            kind = self._require_allowed(token)
            self._require_rate(new_rate)
            old_rate = kind.rate_to_base
            self._kinds[token] = CollateralKind(
                token=token, decimals=kind.decimals, rate_to_base=new_rate, allowed=True,
            )
            self.events.emit(EventType.RATE_UPDATED, token=token, old_rate=old_rate, new_rate=new_rate)
        logger.info("rate updated: %s %d -> %d", token, old_rate, new_rate)
        return old_rate, new_rate

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def convert_to_base(self, token: str, amount: int) -> int:
        """
        Value amount of token in base units.

        Raises:
            CollateralNotAllowed: token is not currently allowed
        """
        kind = self._require_allowed(token)
        require_uint(amount, "amount")
        if token == self.base_token:
            return amount
        value = calculate_to_base(amount, kind.rate_to_base, kind.decimals, self.base_decimals)
        logger.debug("to_base %s %d -> %d", token, amount, value)
        return value

    def convert_from_base(self, token: str, base_amount: int) -> int:
        """Inverse of convert_to_base, rounding down."""
        kind = self._require_allowed(token)
        require_uint(base_amount, "base_amount")
        if token == self.base_token:
            return base_amount
        return calculate_from_base(base_amount, kind.rate_to_base, kind.decimals, self.base_decimals)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_allowed(self, token: str) -> CollateralKind:
        kind = self._kinds.get(token)
        if kind is None or not kind.allowed:
            raise CollateralNotAllowed(f"{token} is not an allowed collateral")
        return kind

    @staticmethod
    def _require_rate(rate: int) -> None:
        if isinstance(rate, bool) or not isinstance(rate, int):
            raise InvalidRate(f"rate must be an integer, got {type(rate).__name__}")
        if rate <= 0 or rate > MAX_UINT256:
            raise InvalidRate(f"rate out of range: {rate}")


__all__ = [
    "RateRegistry",
    "calculate_to_base",
    "calculate_from_base",
    "round_trip_error_bound",
    "RATE_SCALE",
]
