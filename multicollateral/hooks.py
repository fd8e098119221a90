"""
hooks.py - Ordered policy checks gating deposits, withdrawals and transfers

Each operation kind has its own ordered list of hooks. Before the operation
changes any state, the hooks are consulted in insertion order:

    hook 0 -> hook 1 -> ... -> hook n-1 -> operation proceeds
        \\-> first rejection raises HookCheckFailed(reason); later hooks are
            never invoked

Once an operation kind has executed with hooks attached, its list is part of
the audit history: hooks can no longer be removed or reordered. Whether new
hooks may still be appended is a policy flag of the pipeline.

Hooks are objects with one method per operation kind (see BaseHook). Each
method receives a HookContext and returns a HookResult.
"""

from __future__ import annotations
import itertools
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Set, runtime_checkable

from .access import STRATEGY_ADMIN, require_role
from .core import (
    EventLog, EventType, HookContext, HookRecord, HookResult, Journaled, OperationKind, UndoLog,
    HookCheckFailed, HookHasProcessedOperations, HookIndexOutOfBounds,
    NotStrategyAdmin, ReorderDuplicateIndex, ReorderIndexOutOfBounds,
    ReorderInvalidLength,
)

logger = logging.getLogger(__name__)


# ============================================================================
# HOOK INTERFACE
# ============================================================================

@runtime_checkable
class Hook(Protocol):
    """Policy check with one entry point per operation kind."""

    def on_deposit(self, context: HookContext) -> HookResult:
        ...

    def on_withdraw(self, context: HookContext) -> HookResult:
        ...

    def on_transfer(self, context: HookContext) -> HookResult:
        ...


class BaseHook:
    """Approves every operation. Subclasses override the checks they care about."""

    name = "hook"

    def on_deposit(self, context: HookContext) -> HookResult:
        return HookResult.approve()

    def on_withdraw(self, context: HookContext) -> HookResult:
        return HookResult.approve()

    def on_transfer(self, context: HookContext) -> HookResult:
        return HookResult.approve()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name})"


_DISPATCH = {
    OperationKind.DEPOSIT: "on_deposit",
    OperationKind.WITHDRAW: "on_withdraw",
    OperationKind.TRANSFER: "on_transfer",
}


# ============================================================================
# STOCK HOOKS
# ============================================================================

class AllowlistHook(BaseHook):
    """
    Restrict who may receive shares or assets.

    Deposits check the share receiver, withdrawals the asset receiver and
    transfers both sides.
    """

    name = "allowlist"

    def __init__(self, accounts: Iterable[str] = ()):
        self.accounts: Set[str] = set(accounts)

    def allow(self, account: str) -> None:
        self.accounts.add(account)

    def disallow(self, account: str) -> None:
        self.accounts.discard(account)

    def _check(self, *parties: str) -> HookResult:
        for party in parties:
            if party not in self.accounts:
                return HookResult.reject(f"{party} not on allowlist")
        return HookResult.approve()

    def on_deposit(self, context: HookContext) -> HookResult:
        return self._check(context.receiver)

    def on_withdraw(self, context: HookContext) -> HookResult:
        return self._check(context.receiver)

    def on_transfer(self, context: HookContext) -> HookResult:
        return self._check(context.owner, context.receiver)


class DepositCapHook(BaseHook):
    """
    Reject deposits that would push total value above a cap.

    total_value is a zero-argument callable, usually Vault.total_assets.
    """

    name = "deposit_cap"

    def __init__(self, cap: int, total_value: Callable[[], int]):
        self.cap = cap
        self.total_value = total_value

    def on_deposit(self, context: HookContext) -> HookResult:
        after = self.total_value() + context.assets
        if after > self.cap:
            return HookResult.reject(f"deposit cap exceeded: {after} > {self.cap}")
        return HookResult.approve()


class CallableHook(BaseHook):
    """
    Wrap a plain function as a hook for selected operation kinds.

    The function takes a HookContext and returns a HookResult. Operation kinds
    not listed in `operations` are approved without calling it.
    """

    def __init__(
        self,
        check: Callable[[HookContext], HookResult],
        operations: Iterable[OperationKind] = tuple(OperationKind),
        name: Optional[str] = None,
    ):
        self.check = check
        self.operations = frozenset(operations)
        self.name = name or getattr(check, "__name__", "callable")

    def _run(self, context: HookContext) -> HookResult:
        if context.operation not in self.operations:
            return HookResult.approve()
        return self.check(context)

    on_deposit = _run
    on_withdraw = _run
    on_transfer = _run


# ============================================================================
# PIPELINE
# ============================================================================

class HookPipeline(Journaled):
    """
    Per-operation ordered hook lists with execution markers.

    Administration and execution share one reentrant lock; a Vault replaces
    it with its own so hook-list changes serialize with vault operations.

    Attributes:
        allow_append_after_execution: Whether add_hook is still permitted once
            the operation kind has executed with hooks attached.
    """

    def __init__(
        self,
        access,
        events: Optional[EventLog] = None,
        allow_append_after_execution: bool = True,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.access = access
        self.events = events if events is not None else EventLog()
        self.allow_append_after_execution = allow_append_after_execution
        if clock is None:
            # standalone: every call is a new, later position
            counter = itertools.count(1)
            clock = lambda: next(counter)
        self._clock = clock
        self._lock = threading.RLock()
        self.journal = UndoLog()
        self._hooks: Dict[OperationKind, List[HookRecord]] = {op: [] for op in OperationKind}
        self._last_executed: Dict[OperationKind, int] = {op: 0 for op in OperationKind}

    def bind_clock(self, clock: Callable[[], int]) -> None:
        """Use clock() -> operation sequence for added_at and execution markers."""
        self._clock = clock

    def bind_lock(self, lock) -> None:
        """Serialize administration and execution behind lock."""
        self._lock = lock

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_hooks(self, operation: OperationKind) -> List[HookRecord]:
        return list(self._hooks[operation])

    def last_executed(self, operation: OperationKind) -> int:
        """Sequence of the last approved execution with hooks attached; 0 = never."""
        return self._last_executed[operation]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, context: HookContext) -> None:
        """
        Consult every hook for context.operation in order.

        Raises:
            HookCheckFailed: first rejecting hook's reason
        """
        operation = context.operation
        with self._lock:
            records = tuple(self._hooks[operation])
            if not records:
                return
            method = _DISPATCH[operation]
            for record in records:
                result = getattr(record.hook, method)(context)
                if not result.approved:
                    logger.warning("%s rejected by %r: %s", operation.value, record.hook, result.reason)
                    raise HookCheckFailed(result.reason)
            self._mark(operation, self._clock())

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def add_hook(self, caller: str, operation: OperationKind, hook) -> int:
        """
        Append hook to operation's list.

        Returns:
            Index of the new hook
        """
        require_role(self.access, caller, STRATEGY_ADMIN, NotStrategyAdmin)
        if not isinstance(hook, Hook):
            raise TypeError(f"{hook!r} does not implement the hook interface")
        with self._lock:
            if self._last_executed[operation] and not self.allow_append_after_execution:
                raise HookHasProcessedOperations(
                    f"{operation.value} hooks are frozen after execution"
                )
            self._hooks[operation].append(HookRecord(hook=hook, added_at=self._clock()))
            index = len(self._hooks[operation]) - 1
            self.events.emit(EventType.HOOK_ADDED, operation=operation.value, index=index, hook=repr(hook))
        logger.info("hook added to %s at %d: %r", operation.value, index, hook)
        return index

    def remove_hook(self, caller: str, operation: OperationKind, index: int) -> HookRecord:
        """
        Remove the hook at index; the last hook moves into its slot.

        Raises:
            HookIndexOutOfBounds: index is not a valid position
            HookHasProcessedOperations: operation has already executed
        """
        require_role(self.access, caller, STRATEGY_ADMIN, NotStrategyAdmin)
        with self._lock:
            records = self._hooks[operation]
            if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(records):
                raise HookIndexOutOfBounds(f"{operation.value} has no hook at {index!r}")
            if self._last_executed[operation]:
                raise HookHasProcessedOperations(
                    f"{operation.value} executed at {self._last_executed[operation]}"
                )
            removed = records[index]
            last = records.pop()
            if index < len(records):
                records[index] = last
            self.events.emit(EventType.HOOK_REMOVED, operation=operation.value, index=index)
        logger.info("hook removed from %s at %d: %r", operation.value, index, removed.hook)
        return removed

    def reorder_hooks(self, caller: str, operation: OperationKind, permutation: Sequence[int]) -> None:
        """
        Reorder hooks so that new[i] = old[permutation[i]].

        Raises:
            HookHasProcessedOperations: operation has already executed
            ReorderInvalidLength: permutation length differs from hook count
            ReorderIndexOutOfBounds: an entry is not a valid index
            ReorderDuplicateIndex: an index appears twice
        """
        require_role(self.access, caller, STRATEGY_ADMIN, NotStrategyAdmin)
        with self._lock:
            if self._last_executed[operation]:
                raise HookHasProcessedOperations(
                    f"{operation.value} executed at {self._last_executed[operation]}"
                )
            records = self._hooks[operation]
            if len(permutation) != len(records):
                raise ReorderInvalidLength(
                    f"permutation has {len(permutation)} entries, {len(records)} hooks attached"
                )
            seen: Set[int] = set()
            for position in permutation:
                if isinstance(position, bool) or not isinstance(position, int) or not 0 <= position < len(records):
                    raise ReorderIndexOutOfBounds(f"reorder index {position!r} out of bounds")
                if position in seen:
                    raise ReorderDuplicateIndex(f"reorder index {position} repeated")
                seen.add(position)
            self._hooks[operation] = [records[i] for i in permutation]
            self.events.emit(EventType.HOOKS_REORDERED, operation=operation.value, permutation=tuple(permutation))

    def _mark(self, operation: OperationKind, sequence: int) -> None:
        # execution markers roll back with the operation; lists are admin config
        self.journal.set_item(self._last_executed, operation, sequence)
