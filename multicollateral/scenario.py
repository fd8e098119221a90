"""
scenario.py - Operator scenario documents

A scenario describes a vault deployment and a list of actions to run
against it. The document envelope is validated once when loaded; each
action is validated on its own when it runs, so a malformed action is
reported like any other failed action instead of aborting the run.

Integers may be given as numbers or decimal strings ("1_000_000" allowed).
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import Int, VaultConfigFile
from .core import WithdrawalRequest


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# ============================================================================
# ENVELOPE
# ============================================================================

class TokenSpec(_Model):
    symbol: str = Field(min_length=1)
    name: Optional[str] = None
    decimals: Int


class BalanceSpec(_Model):
    wallet: str = Field(min_length=1)
    token: str = Field(min_length=1)
    amount: Int


class Scenario(_Model):
    config: VaultConfigFile = Field(default_factory=VaultConfigFile)
    roles: Dict[str, List[str]] = Field(default_factory=dict)
    signers: Dict[str, str] = Field(default_factory=dict)
    tokens: List[TokenSpec] = Field(default_factory=list)
    balances: List[BalanceSpec] = Field(default_factory=list)
    actions: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# ACTIONS
# ============================================================================

class RequestSpec(_Model):
    """A withdrawal request plus who signs it (the owner by default)."""
    owner: str = Field(min_length=1)
    to: Optional[str] = None
    shares: Int
    min_assets: Int = 0
    nonce: Int
    expiration_time: Int
    signed_by: Optional[str] = None

    def to_request(self) -> WithdrawalRequest:
        return WithdrawalRequest(
            owner=self.owner,
            to=self.to or self.owner,
            shares=self.shares,
            min_assets=self.min_assets,
            nonce=self.nonce,
            expiration_time=self.expiration_time,
        )


class Action(_Model):
    action: str


class CallerAction(Action):
    caller: str = Field(min_length=1)


class AddCollateral(CallerAction):
    token: str
    rate: Int
    decimals: Int


class RemoveCollateral(CallerAction):
    token: str


class UpdateRate(CallerAction):
    token: str
    rate: Int


class Deposit(CallerAction):
    amount: Int
    receiver: Optional[str] = None


class DepositCollateral(Deposit):
    token: str


class FundRedemptions(CallerAction):
    amount: Int


class Redeem(CallerAction):
    shares: Int
    owner: Optional[str] = None
    receiver: Optional[str] = None


class Withdraw(CallerAction):
    amount: Int
    owner: Optional[str] = None
    receiver: Optional[str] = None


class Transfer(CallerAction):
    to: str = Field(min_length=1)
    shares: Int


class Approve(CallerAction):
    spender: str = Field(min_length=1)
    shares: Int


class SignAndRedeem(CallerAction):
    request: RequestSpec


class BatchSignAndRedeem(CallerAction):
    requests: List[RequestSpec]


class BatchRedeem(CallerAction):
    shares: List[Int]
    receivers: List[str]
    owners: List[str]
    min_assets: List[Int]


class AdvanceTime(Action):
    time: Int


class ViewStatus(Action):
    pass


ACTION_MODELS: Dict[str, type] = {
    "add_collateral": AddCollateral,
    "remove_collateral": RemoveCollateral,
    "update_rate": UpdateRate,
    "deposit": Deposit,
    "deposit_collateral": DepositCollateral,
    "fund_redemptions": FundRedemptions,
    "redeem": Redeem,
    "withdraw": Withdraw,
    "transfer": Transfer,
    "approve": Approve,
    "sign_and_redeem": SignAndRedeem,
    "batch_sign_and_redeem": BatchSignAndRedeem,
    "batch_redeem": BatchRedeem,
    "advance_time": AdvanceTime,
    "view_status": ViewStatus,
}


def describe_errors(exc) -> str:
    """One-line summary of a pydantic ValidationError."""
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
        for error in exc.errors()
    )
