"""
custody.py - Token Custody Book and Transfer Conduit

The custody book is the physical side of the vault: who holds how many units
of which token. The vault's accounting (collateral ledger, share book) is
kept separately and reconciled against it.

Key responsibilities:
    - Register tokens and wallets
    - Apply batches of moves atomically (all moves succeed or none do)
    - Track spender allowances for pull-style transfers
    - Keep an append-only transaction log
    - Issue tokens from SYSTEM_WALLET, the only wallet allowed to go negative

Conduit is the transfer-routing layer on top of the book: it only delivers
into wallets registered as settlement entities (collateral ledgers).

Every mutation goes through the book's UndoLog, so a transaction opened with
snapshot() (or by a Vault that bound its own log) can be undone exactly.

Thread Safety:
    Not thread-safe on its own. A Vault serializes every call it makes.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple
import logging

from .core import (
    SYSTEM_WALLET, MAX_UINT256, Journaled, UndoLog,
    InsufficientAllowance, InsufficientFunds,
    TokenNotRegistered, WalletNotRegistered, UnregisteredDestination,
    require_positive, require_uint,
)

logger = logging.getLogger(__name__)


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Token:
    """
    Definition of a token held in custody.

    Attributes:
        symbol: Token reference used everywhere else in the package.
        name: Human-readable name.
        decimals: Native decimal precision (display only; amounts are integers).
    """
    symbol: str
    name: str
    decimals: int

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        if not 0 <= self.decimals <= 255:
            raise ValueError(f"Token decimals out of range: {self.decimals}")


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of tokens between two wallets.

    Attributes:
        amount: Positive integer quantity in native units.
        token: Token symbol.
        source: Wallet debited.
        dest: Wallet credited.
        memo: Free-form reason recorded in the log.
    """
    amount: int
    token: str
    source: str
    dest: str
    memo: str = ""

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.token or not self.token.strip():
            raise ValueError("Move token cannot be empty")
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError(f"Move amount must be int, got {type(self.amount)}")
        if self.amount <= 0:
            raise ValueError(f"Move amount must be positive, got {self.amount}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.amount} {self.token}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class CustodyRecord:
    """Executed batch of moves with its position in the book's log."""
    sequence: int
    moves: Tuple[Move, ...]
    memo: str = ""


# ============================================================================
# TOKEN BOOK
# ============================================================================

class TokenBook(Journaled):
    """
    Integer token balances with atomic multi-move execution.

    Example:
        book = TokenBook("custody")
        book.register_token(Token("WBTC", "Wrapped BTC", 8))
        book.register_wallet("alice")
        book.mint("WBTC", "alice", 100_000_000)
        book.transfer("WBTC", "alice", "strategy", 50_000_000)
    """

    def __init__(self, name: str = "custody"):
        self.name = name
        self.tokens: Dict[str, Token] = {}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.balances: Dict[str, Dict[str, int]] = {}
        # (owner, spender, token) -> remaining allowance
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.transaction_log: List[CustodyRecord] = []
        self._next_sequence = 0
        self.journal = UndoLog()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_token(self, token: Token) -> None:
        if token.symbol in self.tokens:
            raise ValueError(f"Token {token.symbol} already registered")
        self.tokens[token.symbol] = token
        logger.debug("token registered: %s (%d decimals)", token.symbol, token.decimals)

    def register_wallet(self, wallet_id: str) -> str:
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        self.journal.add(self.registered_wallets, wallet_id)
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register wallet_id if it is not known yet."""
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def balance_of(self, wallet_id: str, token: str) -> int:
        """
        Balance of token held by wallet_id.

        Raises:
            WalletNotRegistered: If wallet is not registered
            TokenNotRegistered: If token is not registered
        """
        self._require_known(wallet_id, token)
        return self._balance(wallet_id, token)

    def allowance(self, owner: str, spender: str, token: str) -> int:
        return self.allowances.get((owner, spender, token), 0)

    def total_supply(self, token: str) -> int:
        """Tokens issued out of SYSTEM_WALLET and not returned."""
        if token not in self.tokens:
            raise TokenNotRegistered(f"Token {token} not registered")
        return -self._balance(SYSTEM_WALLET, token)

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Check that every token's balances sum to zero across all wallets.

        SYSTEM_WALLET holds the negative of everything issued, so any move
        that creates or destroys tokens outside execute() shows up here.

        Returns:
            Dict with 'valid' and 'discrepancies' (token -> non-zero sum)
        """
        discrepancies = {}
        for token in sorted(self.tokens):
            net = sum(self._balance(w, token) for w in sorted(self.registered_wallets))
            if net != 0:
                discrepancies[token] = net
        return {"valid": not discrepancies, "discrepancies": discrepancies}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def approve(self, owner: str, spender: str, token: str, amount: int) -> None:
        """Set (not add to) spender's allowance over owner's token."""
        self._require_known(owner, token)
        require_uint(amount, "allowance")
        self.journal.set_item(self.allowances, (owner, spender, token), amount)

    def mint(self, token: str, to: str, amount: int, memo: str = "issuance") -> CustodyRecord:
        """Issue new tokens to a wallet from SYSTEM_WALLET."""
        require_positive(amount, "amount")
        return self.execute([Move(amount, token, SYSTEM_WALLET, to, memo)], memo=memo)

    def transfer(self, token: str, source: str, dest: str, amount: int, memo: str = "") -> CustodyRecord:
        require_positive(amount, "amount")
        return self.execute([Move(amount, token, source, dest, memo)], memo=memo)

    def transfer_from(
        self,
        spender: str,
        token: str,
        source: str,
        dest: str,
        amount: int,
        memo: str = "",
    ) -> CustodyRecord:
        """
        Move tokens out of source on behalf of spender.

        An allowance of MAX_UINT256 is treated as unlimited and not decremented.

        Raises:
            InsufficientAllowance: spender's allowance does not cover amount
        """
        require_positive(amount, "amount")
        key = (source, spender, token)
        allowed = self.allowances.get(key, 0)
        if spender != source and allowed < amount:
            raise InsufficientAllowance(
                f"{spender} allowance {allowed} < {amount} {token} from {source}"
            )
        record = self.execute([Move(amount, token, source, dest, memo)], memo=memo)
        if spender != source and allowed != MAX_UINT256:
            self.journal.set_item(self.allowances, key, allowed - amount)
        return record

    def execute(self, moves: List[Move], memo: str = "") -> CustodyRecord:
        """
        Apply moves atomically.

        Every move is validated against registration and balances before any
        balance changes. Net deltas are checked per (wallet, token) so a batch
        may route tokens through a wallet that starts empty.

        Raises:
            TokenNotRegistered / WalletNotRegistered: unknown token or wallet
            InsufficientFunds: a non-system wallet would go negative
        """
        if not moves:
            raise ValueError("execute() requires at least one move")
        for move in moves:
            self._require_known(move.source, move.token)
            self._require_known(move.dest, move.token)

        net: Dict[Tuple[str, str], int] = {}
        for move in moves:
            net[(move.source, move.token)] = net.get((move.source, move.token), 0) - move.amount
            net[(move.dest, move.token)] = net.get((move.dest, move.token), 0) + move.amount

        for (wallet, token), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            held = self._balance(wallet, token)
            if held + delta < 0:
                raise InsufficientFunds(
                    f"{wallet} {token}: balance {held} "
                    f"cannot cover {-delta}"
                )

        for move in moves:
            self._credit(move.source, move.token, -move.amount)
            self._credit(move.dest, move.token, move.amount)

        record = CustodyRecord(sequence=self._next_sequence, moves=tuple(moves), memo=memo)
        self.journal.set_attr(self, "_next_sequence", self._next_sequence + 1)
        self.journal.append(self.transaction_log, record)
        logger.debug("custody %s: %s", self.name, list(moves))
        return record

    def clone(self) -> TokenBook:
        """Fully independent copy of this book, with a fresh private journal."""
        cloned = TokenBook(self.name)
        cloned.tokens = dict(self.tokens)
        cloned.registered_wallets = set(self.registered_wallets)
        cloned.balances = {w: dict(b) for w, b in self.balances.items()}
        cloned.allowances = dict(self.allowances)
        cloned.transaction_log = list(self.transaction_log)
        cloned._next_sequence = self._next_sequence
        return cloned

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _balance(self, wallet_id: str, token: str) -> int:
        return self.balances.get(wallet_id, {}).get(token, 0)

    def _credit(self, wallet_id: str, token: str, delta: int) -> None:
        held = self.balances.get(wallet_id)
        if held is None:
            self.journal.set_item(self.balances, wallet_id, {})
            held = self.balances[wallet_id]
        self.journal.set_item(held, token, held.get(token, 0) + delta)

    def _require_known(self, wallet_id: str, token: str) -> None:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if token not in self.tokens:
            raise TokenNotRegistered(f"Token {token} not registered")


# ============================================================================
# CONDUIT
# ============================================================================

class Conduit:
    """
    Transfer routing into settlement entities.

    The vault pulls depositor collateral through move_tokens; the conduit
    refuses any destination that was not registered as a settlement entity.
    """

    def __init__(self, book: TokenBook, settlement_entities: Optional[Set[str]] = None):
        self.book = book
        self.settlement_entities: Set[str] = set(settlement_entities or ())

    def register_settlement_entity(self, wallet_id: str) -> None:
        self.book.ensure_wallet(wallet_id)
        self.settlement_entities.add(wallet_id)

    def move_tokens(self, token: str, source: str, dest: str, amount: int) -> bool:
        """
        Move amount of token from source into a settlement entity.

        Raises:
            UnregisteredDestination: dest is not a registered settlement entity
            InsufficientFunds: source cannot cover amount
        """
        if dest not in self.settlement_entities:
            raise UnregisteredDestination(f"{dest} is not a registered settlement entity")
        self.book.transfer(token, source, dest, amount, memo="conduit")
        return True
