"""
Core types and pure helpers for the multi-collateral vault.

This module provides the foundational data structures and protocols:
1. Constants: fixed-point scales, share precision, integer bounds
2. Enums: OperationKind, EventType
3. Exceptions: VaultError and the four error families beneath it
4. Protocols: AccessControl, TransferConduit, SignatureVerifier
5. UndoLog and Journaled: change journal behind the atomic boundary
6. Immutable records: CollateralKind, WithdrawalRequest, HookResult,
   HookContext, HookRecord, VaultEvent
7. EventLog: append-only audit trail shared by the components of a vault

All amounts are integers in token base units. No floating point is used for
accounting anywhere in the package.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import (
    Any, Callable, Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Rates are fixed-point integers with 18 decimals: 1e18 == 1.0
RATE_DECIMALS = 18
RATE_SCALE = 10 ** RATE_DECIMALS

# Share precision is independent of the base unit's precision.
SHARE_DECIMALS = 18

# Integer bounds of the accounting domain.
MAX_UINT256 = 2 ** 256 - 1
MAX_UINT96 = 2 ** 96 - 1
MAX_UINT8 = 2 ** 8 - 1

# Reserved wallet for token issuance in the custody book.
SYSTEM_WALLET = "system"


# ============================================================================
# ENUMS
# ============================================================================

class OperationKind(Enum):
    """State-changing operations gated by the hook pipeline."""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"


class EventType(Enum):
    """Kinds of records written to the vault event log."""
    COLLATERAL_ADDED = "collateral_added"
    COLLATERAL_REMOVED = "collateral_removed"
    RATE_UPDATED = "rate_updated"
    COLLATERAL_DEPOSITED = "collateral_deposited"
    REDEMPTION_FUNDS_DEPOSITED = "redemption_funds_deposited"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"
    APPROVAL = "approval"
    WITHDRAWAL_REQUEST_SETTLED = "withdrawal_request_settled"
    HOOK_ADDED = "hook_added"
    HOOK_REMOVED = "hook_removed"
    HOOKS_REORDERED = "hooks_reordered"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class VaultError(Exception):
    """Base exception for all vault errors."""
    pass


# --- Validation: caller-correctable input problems ---------------------------

class ValidationError(VaultError):
    """Malformed input. Always correctable by the caller."""
    pass


class ZeroAmount(ValidationError):
    """Raised when an amount that must be positive is zero."""
    pass


class ZeroShares(ValidationError):
    """Raised when a deposit would mint zero shares."""
    pass


class InvalidAmount(ValidationError):
    """Raised when an amount is not an integer within its unsigned range."""
    pass


class InvalidRate(ValidationError):
    """Raised when a conversion rate is zero or out of range."""
    pass


class InvalidDecimals(ValidationError):
    """Raised when a decimal precision is outside 0..255."""
    pass


class InvalidArrayLengths(ValidationError):
    """Raised when parallel batch arrays differ in length."""
    pass


class HookIndexOutOfBounds(ValidationError):
    """Raised when removing a hook at an index that does not exist."""
    pass


class ReorderInvalidLength(ValidationError):
    """Raised when a reorder permutation has the wrong length."""
    pass


class ReorderIndexOutOfBounds(ValidationError):
    """Raised when a reorder permutation references a missing index."""
    pass


class ReorderDuplicateIndex(ValidationError):
    """Raised when a reorder permutation is not a bijection."""
    pass


# --- Authorization: wrong caller ---------------------------------------------

class AuthorizationError(VaultError):
    """The caller is not permitted to perform the operation."""
    pass


class OnlyVault(AuthorizationError):
    """Raised when a vault-only ledger entry point is called by someone else."""
    pass


class OnlyManager(AuthorizationError):
    """Raised when a manager-only operation is called by someone else."""
    pass


class NotProtocolAdmin(AuthorizationError):
    """Raised when registry administration is attempted without the role."""
    pass


class NotStrategyAdmin(AuthorizationError):
    """Raised when hook administration or direct redemption lacks the role."""
    pass


class InsufficientAllowance(AuthorizationError):
    """Raised when a spender's allowance does not cover the amount."""
    pass


# --- State: precondition violations ------------------------------------------

class StateError(VaultError):
    """A precondition on current state does not hold."""
    pass


class InvalidCollateral(StateError):
    """Raised when adding a null token or one that is already allowed."""
    pass


class CollateralNotAllowed(StateError):
    """Raised when the registry does not currently allow a token."""
    pass


class NotAllowed(StateError):
    """Raised by the collateral ledger for tokens the registry rejects."""
    pass


class WithdrawNonceReuse(StateError):
    """Raised when an (owner, nonce) pair has already been settled."""
    pass


class WithdrawalRequestExpired(StateError):
    """Raised when a signed request is settled after its expiration time."""
    pass


class HookHasProcessedOperations(StateError):
    """Raised when mutating a hook list whose operation has already executed."""
    pass


class HookCheckFailed(StateError):
    """Raised when a hook rejects an operation. Carries the hook's reason."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InsufficientShares(StateError):
    """Raised when an owner holds fewer shares than requested."""
    pass


class InsufficientFunds(StateError):
    """Raised when a custody wallet holds fewer tokens than a move requires."""
    pass


class InsufficientLiquidity(StateError):
    """Raised when the ledger holds too few base units to disburse."""
    pass


class VaultInsolvent(StateError):
    """Raised when shares are outstanding but total value is zero."""
    pass


class UseRedeem(StateError):
    """Raised by direct withdrawal on a managed-withdrawal vault."""
    pass


class TokenNotRegistered(StateError):
    """Raised when the custody book does not know a token."""
    pass


class WalletNotRegistered(StateError):
    """Raised when the custody book does not know a wallet."""
    pass


class UnregisteredDestination(StateError):
    """Raised when the conduit is asked to move tokens to a non-settlement wallet."""
    pass


class AlreadyBound(StateError):
    """Raised when binding a ledger or journaled state to a second vault."""
    pass


# --- Integrity: security-relevant rejections ---------------------------------

class IntegrityError(VaultError):
    """Security-relevant rejection. All side effects are rolled back."""
    pass


class WithdrawInvalidSignature(IntegrityError):
    """Raised when the recovered signer is not the request owner."""
    pass


class InsufficientOutputAssets(IntegrityError):
    """Raised when a redemption pays out less than the requested minimum."""
    pass


# ============================================================================
# INTEGER VALIDATION
# ============================================================================

def require_uint(value: Any, name: str, max_value: int = MAX_UINT256) -> int:
    """
    Validate that value is a non-negative integer no larger than max_value.

    bool is rejected even though it subclasses int.

    Raises:
        InvalidAmount: If the value is not a bounded unsigned integer.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise InvalidAmount(f"{name} must be non-negative, got {value}")
    if value > max_value:
        raise InvalidAmount(f"{name} exceeds maximum {max_value}")
    return value


def require_positive(value: Any, name: str, max_value: int = MAX_UINT256) -> int:
    """Validate a bounded unsigned integer and reject zero with ZeroAmount."""
    require_uint(value, name, max_value)
    if value == 0:
        raise ZeroAmount(f"{name} must be greater than zero")
    return value


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class AccessControl(Protocol):
    """Capability check used to gate admin, manager and strategy-admin calls."""

    def has_role(self, account: str, role: str) -> bool:
        ...


@runtime_checkable
class TransferConduit(Protocol):
    """
    Custody/transfer routing layer.

    The vault calls move_tokens to pull collateral from depositors into the
    collateral ledger's custody. Implementations decide which destinations
    are acceptable settlement entities.
    """

    def move_tokens(self, token: str, source: str, dest: str, amount: int) -> bool:
        ...


@runtime_checkable
class SignatureVerifier(Protocol):
    """
    Signer recovery primitive.

    Returns the account that produced signature over digest, or None when the
    signature is malformed or does not verify.
    """

    def recover(self, digest: bytes, signature: bytes) -> Optional[str]:
        ...


# ============================================================================
# UNDO JOURNAL
# ============================================================================

_MISSING = object()


def _put_back(mapping, key, old) -> None:
    if old is _MISSING:
        mapping.pop(key, None)
    else:
        mapping[key] = old


class UndoLog:
    """
    Inverse actions recorded while a transaction is open.

    begin() opens a (possibly nested) transaction and returns a mark;
    rollback(mark) undoes everything recorded after the mark, newest first;
    commit() closes the transaction. The log is cleared when the outermost
    transaction closes, so undo work is proportional to what the transaction
    changed. Nothing is recorded while no transaction is open.

    Attributes:
        owner: Id of the vault that owns this log, or None for a private log.
    """

    def __init__(self, owner: Optional[str] = None) -> None:
        self.owner = owner
        self._entries: List[Callable[[], None]] = []
        self._depth = 0

    @property
    def active(self) -> bool:
        return self._depth > 0

    def __len__(self) -> int:
        return len(self._entries)

    def begin(self) -> int:
        self._depth += 1
        return len(self._entries)

    def commit(self) -> None:
        self._close()

    def rollback(self, mark: int) -> None:
        while len(self._entries) > mark:
            self._entries.pop()()
        self._close()

    def _close(self) -> None:
        if self._depth == 0:
            raise RuntimeError("no open transaction")
        self._depth -= 1
        if self._depth == 0:
            self._entries.clear()

    # ------------------------------------------------------------------
    # Recorded mutations
    # ------------------------------------------------------------------

    def set_item(self, mapping: Dict[Any, Any], key: Any, value: Any) -> None:
        if self._depth:
            self._entries.append(partial(_put_back, mapping, key, mapping.get(key, _MISSING)))
        mapping[key] = value

    def pop_item(self, mapping: Dict[Any, Any], key: Any) -> None:
        if key not in mapping:
            return
        if self._depth:
            self._entries.append(partial(_put_back, mapping, key, mapping[key]))
        del mapping[key]

    def set_attr(self, obj: Any, name: str, value: Any) -> None:
        if self._depth:
            self._entries.append(partial(setattr, obj, name, getattr(obj, name)))
        setattr(obj, name, value)

    def append(self, items: List[Any], value: Any) -> None:
        if self._depth:
            self._entries.append(items.pop)
        items.append(value)

    def add(self, items: Set[Any], value: Any) -> None:
        if value in items:
            return
        if self._depth:
            self._entries.append(partial(items.discard, value))
        items.add(value)


class Journaled:
    """
    State holder whose mutations go through an UndoLog.

    Standalone, each holder keeps a private log and snapshot()/restore()
    bracket a transaction on it. A Vault binds one shared log into all of
    its holders so a single rollback covers every one of them.
    """

    journal: UndoLog

    def bind_journal(self, journal: UndoLog) -> None:
        """
        Raises:
            AlreadyBound: already journaling into another vault's log
        """
        current = getattr(self, "journal", None)
        if current is not None and current is not journal and current.owner is not None:
            raise AlreadyBound(
                f"{type(self).__name__} already journals into {current.owner}"
            )
        self.journal = journal

    def snapshot(self) -> int:
        return self.journal.begin()

    def restore(self, mark: int) -> None:
        self.journal.rollback(mark)

    def release(self) -> None:
        """Close a snapshot without undoing it."""
        self.journal.commit()


# ============================================================================
# IMMUTABLE RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CollateralKind:
    """
    Registry entry for a depositable asset.

    Attributes:
        token: Opaque token reference (address or symbol).
        decimals: Native decimal precision of the token.
        rate_to_base: Conversion rate to the base unit, 1e18 fixed point.
        allowed: Whether the token is currently accepted.

    A removed kind keeps its token reference with allowed=False and zeroed
    rate and decimals.
    """
    token: str
    decimals: int
    rate_to_base: int
    allowed: bool

    def __post_init__(self):
        if not self.token or not str(self.token).strip():
            raise ValueError("CollateralKind token cannot be empty")
        if self.allowed and self.rate_to_base <= 0:
            raise ValueError(f"Allowed collateral {self.token} must have a positive rate")


@dataclass(frozen=True, slots=True)
class WithdrawalRequest:
    """
    Off-chain authorized intent to redeem shares.

    Attributes:
        owner: Share owner who signed the request.
        to: Recipient of the base-unit payout.
        shares: Number of shares to redeem.
        min_assets: Minimum base units the owner accepts.
        nonce: Single-use number scoped to the owner (u96).
        expiration_time: Unix seconds after which the request is void (u96).
    """
    owner: str
    to: str
    shares: int
    min_assets: int
    nonce: int
    expiration_time: int

    def __post_init__(self):
        if not self.owner or not self.owner.strip():
            raise ValueError("WithdrawalRequest owner cannot be empty")
        if not self.to or not self.to.strip():
            raise ValueError("WithdrawalRequest to cannot be empty")
        require_uint(self.shares, "WithdrawalRequest shares")
        require_uint(self.min_assets, "WithdrawalRequest min_assets")
        require_uint(self.nonce, "WithdrawalRequest nonce", MAX_UINT96)
        require_uint(self.expiration_time, "WithdrawalRequest expiration_time", MAX_UINT96)


@dataclass(frozen=True, slots=True)
class HookResult:
    """Outcome of a single hook check."""
    approved: bool
    reason: str = ""

    @classmethod
    def approve(cls) -> HookResult:
        return cls(True, "")

    @classmethod
    def reject(cls, reason: str) -> HookResult:
        return cls(False, reason)


@dataclass(frozen=True, slots=True)
class HookContext:
    """
    Everything a hook may inspect about a pending operation.

    For deposits, assets is the base-unit value of the collateral, not the raw
    collateral amount; token and token_amount carry the raw side.
    """
    operation: OperationKind
    caller: str
    owner: str
    receiver: str
    assets: int
    shares: int
    token: Optional[str] = None
    token_amount: int = 0
    timestamp: int = 0


@dataclass(frozen=True, slots=True)
class HookRecord:
    """A hook attached to an operation kind and the sequence it was added at."""
    hook: Any
    added_at: int


@dataclass(frozen=True, slots=True)
class VaultEvent:
    """
    Append-only audit record.

    Attributes:
        sequence: Vault operation sequence at which the event was written.
        timestamp: Vault clock (unix seconds) at the time of writing.
        event_type: Kind of event.
        data: Event payload, as a tuple of sorted (key, value) pairs.
    """
    sequence: int
    timestamp: int
    event_type: EventType
    data: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def payload(self) -> Dict[str, Any]:
        return dict(self.data)

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v!r}" for k, v in self.data)
        return f"VaultEvent(#{self.sequence} {self.event_type.value}: {body})"


# ============================================================================
# EVENT LOG
# ============================================================================

class EventLog(Journaled):
    """
    Ordered list of VaultEvents shared by the components of one vault.

    The clock is supplied by the owning vault; a standalone log reports
    sequence 0 and timestamp 0.
    """

    def __init__(self) -> None:
        self.events: List[VaultEvent] = []
        self.journal = UndoLog()
        self._clock = lambda: (0, 0)

    def bind_clock(self, clock) -> None:
        """Use clock() -> (sequence, timestamp) for subsequent events."""
        self._clock = clock

    def emit(self, event_type: EventType, **data: Any) -> VaultEvent:
        sequence, timestamp = self._clock()
        event = VaultEvent(
            sequence=sequence,
            timestamp=timestamp,
            event_type=event_type,
            data=tuple(sorted(data.items())),
        )
        self.journal.append(self.events, event)
        return event

    def of_type(self, event_type: EventType) -> List[VaultEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def tail(self, n: int = 20) -> List[VaultEvent]:
        if n <= 0:
            return []
        return list(self.events[-n:])

    def __len__(self) -> int:
        return len(self.events)
