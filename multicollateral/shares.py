"""
shares.py - Share accounting: conversion math and the share book

Pure functions convert between base-unit value and shares given the current
total value and total shares. ShareBook holds the share balances and
allowances and enforces total_shares == sum(shares_of).

Share precision is fixed at SHARE_DECIMALS regardless of the base unit's
decimals. The first deposit into an empty vault mints at 1:1 economic value,
offset by 10 ** (SHARE_DECIMALS - base_decimals).

Rounding:
    to_shares / to_assets round down (the vault keeps the dust)
    shares_for_withdraw rounds up (a withdrawal never under-burns)
"""

from __future__ import annotations
from typing import Any, Dict, Tuple

from .core import (
    SHARE_DECIMALS, MAX_UINT256,
    InsufficientAllowance, InsufficientShares, VaultInsolvent,
    Journaled, UndoLog, require_uint,
)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def decimal_offset(base_decimals: int, share_decimals: int = SHARE_DECIMALS) -> int:
    """Multiplier between share units and base units on an empty vault."""
    if base_decimals > share_decimals:
        raise ValueError(
            f"base decimals {base_decimals} exceed share decimals {share_decimals}"
        )
    return 10 ** (share_decimals - base_decimals)


def calculate_shares(
    base_amount: int,
    total_shares: int,
    total_value: int,
    base_decimals: int,
    share_decimals: int = SHARE_DECIMALS,
) -> int:
    """
    Shares minted for base_amount of value, rounding down.

    Raises:
        VaultInsolvent: shares are outstanding but total value is zero
    """
    if total_shares == 0:
        return base_amount * decimal_offset(base_decimals, share_decimals)
    if total_value == 0:
        raise VaultInsolvent(f"{total_shares} shares outstanding against zero value")
    return base_amount * total_shares // total_value


def calculate_assets(
    share_amount: int,
    total_shares: int,
    total_value: int,
    base_decimals: int,
    share_decimals: int = SHARE_DECIMALS,
) -> int:
    """Base-unit value of share_amount, rounding down."""
    if total_shares == 0:
        return share_amount // decimal_offset(base_decimals, share_decimals)
    return share_amount * total_value // total_shares


def calculate_shares_for_withdraw(
    base_amount: int,
    total_shares: int,
    total_value: int,
    base_decimals: int,
    share_decimals: int = SHARE_DECIMALS,
) -> int:
    """Shares to burn for a withdrawal of base_amount, rounding up."""
    if total_shares == 0:
        return base_amount * decimal_offset(base_decimals, share_decimals)
    if total_value == 0:
        raise VaultInsolvent(f"{total_shares} shares outstanding against zero value")
    return -(-base_amount * total_shares // total_value)


# ============================================================================
# SHARE BOOK
# ============================================================================

class ShareBook(Journaled):
    """Share balances, allowances and total supply. Mutations are journaled."""

    def __init__(self) -> None:
        self.total_shares: int = 0
        self.shares_of: Dict[str, int] = {}
        # (owner, spender) -> allowance
        self.allowances: Dict[Tuple[str, str], int] = {}
        self.journal = UndoLog()

    def balance_of(self, holder: str) -> int:
        return self.shares_of.get(holder, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def mint(self, to: str, shares: int) -> None:
        require_uint(shares, "shares")
        self.journal.set_item(self.shares_of, to, self.balance_of(to) + shares)
        self.journal.set_attr(self, "total_shares", self.total_shares + shares)

    def burn(self, owner: str, shares: int) -> None:
        """
        Raises:
            InsufficientShares: owner holds fewer than shares
        """
        require_uint(shares, "shares")
        held = self.balance_of(owner)
        if held < shares:
            raise InsufficientShares(f"{owner} holds {held} shares, needs {shares}")
        remaining = held - shares
        if remaining:
            self.journal.set_item(self.shares_of, owner, remaining)
        else:
            self.journal.pop_item(self.shares_of, owner)
        self.journal.set_attr(self, "total_shares", self.total_shares - shares)

    def move(self, source: str, dest: str, shares: int) -> None:
        require_uint(shares, "shares")
        held = self.balance_of(source)
        if held < shares:
            raise InsufficientShares(f"{source} holds {held} shares, needs {shares}")
        self.burn(source, shares)
        self.mint(dest, shares)

    def approve(self, owner: str, spender: str, shares: int) -> None:
        require_uint(shares, "allowance")
        self.journal.set_item(self.allowances, (owner, spender), shares)

    def spend_allowance(self, owner: str, spender: str, shares: int) -> None:
        """
        Consume spender's allowance over owner's shares.

        Owners spending their own shares and MAX_UINT256 allowances are not
        decremented.

        Raises:
            InsufficientAllowance: allowance does not cover shares
        """
        if owner == spender:
            return
        allowed = self.allowance(owner, spender)
        if allowed < shares:
            raise InsufficientAllowance(
                f"{spender} allowance {allowed} over {owner} < {shares} shares"
            )
        if allowed != MAX_UINT256:
            self.journal.set_item(self.allowances, (owner, spender), allowed - shares)

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Check total_shares == sum of all holder balances.

        Returns:
            Dict with 'valid', 'total_shares', 'sum_of_balances'
        """
        total = sum(self.shares_of[h] for h in sorted(self.shares_of))
        return {
            "valid": total == self.total_shares,
            "total_shares": self.total_shares,
            "sum_of_balances": total,
        }

