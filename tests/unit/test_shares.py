"""
test_shares.py - Unit tests for share math and the share book
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from multicollateral import (
    ShareBook, MAX_UINT256,
    decimal_offset, calculate_shares, calculate_assets, calculate_shares_for_withdraw,
    InsufficientAllowance, InsufficientShares, VaultInsolvent,
)


class TestShareMath:

    def test_offset(self):
        assert decimal_offset(8) == 10 ** 10
        assert decimal_offset(18) == 1
        with pytest.raises(ValueError):
            decimal_offset(19)

    def test_bootstrap_mint(self):
        assert calculate_shares(10 ** 8, 0, 0, 8) == 10 ** 18

    def test_bootstrap_assets(self):
        assert calculate_assets(10 ** 18, 0, 0, 8) == 10 ** 8

    def test_proportional(self):
        assert calculate_shares(50, 1_000, 200, 8) == 250
        assert calculate_assets(250, 1_000, 200, 8) == 50

    def test_rounds_down(self):
        assert calculate_shares(1, 10, 3, 8) == 3
        assert calculate_assets(1, 3, 10, 8) == 3

    def test_withdraw_rounds_up(self):
        assert calculate_shares_for_withdraw(1, 10, 3, 8) == 4
        assert calculate_shares_for_withdraw(3, 10, 3, 8) == 10

    def test_insolvent(self):
        with pytest.raises(VaultInsolvent):
            calculate_shares(1, 10, 0, 8)
        with pytest.raises(VaultInsolvent):
            calculate_shares_for_withdraw(1, 10, 0, 8)

    def test_assets_of_insolvent_vault_are_zero(self):
        assert calculate_assets(5, 10, 0, 8) == 0

    @given(
        assets=st.integers(min_value=0, max_value=10 ** 30),
        total_shares=st.integers(min_value=1, max_value=10 ** 36),
        total_value=st.integers(min_value=1, max_value=10 ** 30),
    )
    @settings(max_examples=200)
    def test_withdraw_never_under_burns(self, assets, total_shares, total_value):
        """Burning the rounded-up shares is always worth at least the assets."""
        burned = calculate_shares_for_withdraw(assets, total_shares, total_value, 8)
        assert burned * total_value >= assets * total_shares
        assert calculate_shares(assets, total_shares, total_value, 8) <= burned


class TestShareBook:

    def test_mint_burn(self):
        book = ShareBook()
        book.mint("alice", 100)
        book.burn("alice", 40)
        assert book.balance_of("alice") == 60
        assert book.total_shares == 60

    def test_burn_too_much(self):
        book = ShareBook()
        book.mint("alice", 10)
        with pytest.raises(InsufficientShares):
            book.burn("alice", 11)
        assert book.total_shares == 10

    def test_burn_to_zero_drops_holder(self):
        book = ShareBook()
        book.mint("alice", 10)
        book.burn("alice", 10)
        assert "alice" not in book.shares_of

    def test_move(self):
        book = ShareBook()
        book.mint("alice", 10)
        book.move("alice", "bob", 4)
        assert (book.balance_of("alice"), book.balance_of("bob")) == (6, 4)
        assert book.total_shares == 10

    def test_move_insufficient(self):
        book = ShareBook()
        with pytest.raises(InsufficientShares):
            book.move("alice", "bob", 1)

    def test_spend_allowance(self):
        book = ShareBook()
        book.approve("alice", "bob", 10)
        book.spend_allowance("alice", "bob", 4)
        assert book.allowance("alice", "bob") == 6
        with pytest.raises(InsufficientAllowance):
            book.spend_allowance("alice", "bob", 7)

    def test_owner_needs_no_allowance(self):
        book = ShareBook()
        book.spend_allowance("alice", "alice", 10 ** 30)

    def test_unlimited_allowance(self):
        book = ShareBook()
        book.approve("alice", "bob", MAX_UINT256)
        book.spend_allowance("alice", "bob", 10 ** 30)
        assert book.allowance("alice", "bob") == MAX_UINT256

    def test_conservation_report(self):
        book = ShareBook()
        book.mint("alice", 3)
        book.mint("bob", 4)
        assert book.verify_conservation() == {
            "valid": True, "total_shares": 7, "sum_of_balances": 7,
        }
