"""
settlement.py - Managed-withdrawal vault with signed, nonce-protected requests

All exits from a ManagedWithdrawalVault go through its manager:

    owner signs WithdrawalRequest off-chain
        -> manager submits redeem_request(request, signature)
            -> expiry, nonce and signature are checked
            -> shares are burned and base units disbursed
            -> payout below min_assets aborts everything

Replay protection: each (owner, nonce) pair settles at most once. The nonce is
marked inside the same atomic unit as the burn and disbursement, so a failed
settlement leaves the nonce unused.

Batches are all-or-nothing: the first failing entry aborts the batch and
rolls back every entry already processed.

Direct withdraw() is disabled; direct redeem() is reserved for the manager.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Sequence, Set

from .access import MANAGER, require_role
from .core import (
    EventType, WithdrawalRequest,
    InsufficientOutputAssets, InvalidArrayLengths, NotStrategyAdmin, OnlyManager,
    UseRedeem, WithdrawInvalidSignature, WithdrawNonceReuse, WithdrawalRequestExpired,
    require_positive, require_uint,
)
from .signatures import TypedDataDomain, withdrawal_request_digest
from .vault import Vault

logger = logging.getLogger(__name__)


class ManagedWithdrawalVault(Vault):
    """
    Vault whose redemptions are settled by a manager.

    Args (in addition to Vault's):
        access: AccessControl used to identify the manager
        verifier: SignatureVerifier recovering signers from digests
        domain: TypedDataDomain binding signatures to this vault
    """

    def __init__(self, *args, access, verifier, domain: TypedDataDomain, **kwargs):
        super().__init__(*args, **kwargs)
        self.access = access
        self.verifier = verifier
        self.domain = domain
        self._used_nonces: Dict[str, Set[int]] = {}

    # ========================================================================
    # VIEWS
    # ========================================================================

    def is_nonce_used(self, owner: str, nonce: int) -> bool:
        return nonce in self._used_nonces.get(owner, ())

    def request_digest(self, request: WithdrawalRequest) -> bytes:
        """Digest the owner must sign for request under this vault's domain."""
        return withdrawal_request_digest(self.domain, request)

    # ========================================================================
    # DISABLED / RESTRICTED DIRECT EXITS
    # ========================================================================

    def withdraw(self, caller: str, assets: int, receiver: str, owner: str) -> int:
        raise UseRedeem("direct withdraw is disabled; redemptions are settled by the manager")

    def redeem(self, caller: str, shares: int, receiver: str, owner: str) -> int:
        """
        Manager-only direct redemption of owner's shares.

        The manager acts for the owner, so no share allowance is consumed.

        Raises:
            NotStrategyAdmin: caller is not the manager
        """
        require_role(self.access, caller, MANAGER, NotStrategyAdmin)
        require_positive(shares, "shares")
        with self._atomic():
            assets = self.convert_to_assets(shares)
            self._settle(caller, owner, receiver, shares, assets, spend_allowance=False)
            return assets

    def batch_redeem(
        self,
        caller: str,
        shares: Sequence[int],
        receivers: Sequence[str],
        owners: Sequence[str],
        min_assets: Sequence[int],
    ) -> List[int]:
        """
        Manager-settled batch of direct redemptions with per-entry minimums.

        Returns:
            Assets paid per entry

        Raises:
            InvalidArrayLengths: arrays differ in length
            InsufficientOutputAssets: an entry pays less than its minimum
        """
        require_role(self.access, caller, MANAGER, NotStrategyAdmin)
        if not len(shares) == len(receivers) == len(owners) == len(min_assets):
            raise InvalidArrayLengths(
                f"shares={len(shares)} receivers={len(receivers)} "
                f"owners={len(owners)} min_assets={len(min_assets)}"
            )
        with self._atomic():
            paid = []
            for amount, receiver, owner, minimum in zip(shares, receivers, owners, min_assets):
                require_uint(minimum, "min_assets")
                assets = self.redeem(caller, amount, receiver, owner)
                if assets < minimum:
                    raise InsufficientOutputAssets(f"{owner}: {assets} < minimum {minimum}")
                paid.append(assets)
            return paid

    # ========================================================================
    # SIGNED REQUESTS
    # ========================================================================

    def redeem_request(self, caller: str, request: WithdrawalRequest, signature: bytes) -> int:
        """
        Settle one signed withdrawal request.

        Returns:
            Base units paid to request.to

        Raises:
            OnlyManager: caller is not the manager
            WithdrawalRequestExpired: current time is past expiration_time
            WithdrawNonceReuse: (owner, nonce) already settled
            WithdrawInvalidSignature: recovered signer is not the owner
            InsufficientOutputAssets: payout is below min_assets
        """
        require_role(self.access, caller, MANAGER, OnlyManager)
        with self._atomic():
            return self._redeem_request(caller, request, signature)

    def batch_redeem_requests(
        self,
        caller: str,
        requests: Sequence[WithdrawalRequest],
        signatures: Sequence[bytes],
    ) -> List[int]:
        """
        Settle signed requests atomically, in order.

        Raises:
            InvalidArrayLengths: requests and signatures differ in length
            (any error of redeem_request for the first failing entry)
        """
        require_role(self.access, caller, MANAGER, OnlyManager)
        if len(requests) != len(signatures):
            raise InvalidArrayLengths(
                f"requests={len(requests)} signatures={len(signatures)}"
            )
        with self._atomic():
            return [
                self._redeem_request(caller, request, signature)
                for request, signature in zip(requests, signatures)
            ]

    def _redeem_request(self, caller: str, request: WithdrawalRequest, signature: bytes) -> int:
        if self._current_time > request.expiration_time:
            raise WithdrawalRequestExpired(
                f"request {request.owner}/{request.nonce} expired at {request.expiration_time}"
            )
        if self.is_nonce_used(request.owner, request.nonce):
            raise WithdrawNonceReuse(f"nonce {request.nonce} already used by {request.owner}")
        self._use_nonce(request.owner, request.nonce)

        signer = self.verifier.recover(self.request_digest(request), signature)
        if signer != request.owner:
            raise WithdrawInvalidSignature(
                f"request for {request.owner} signed by {signer or 'nobody'}"
            )

        require_positive(request.shares, "shares")
        assets = self.convert_to_assets(request.shares)
        if assets < request.min_assets:
            raise InsufficientOutputAssets(
                f"{request.owner}: {assets} < minimum {request.min_assets}"
            )
        self._settle(caller, request.owner, request.to, request.shares, assets, spend_allowance=False)
        self.events.emit(
            EventType.WITHDRAWAL_REQUEST_SETTLED,
            owner=request.owner, to=request.to, nonce=request.nonce,
            shares=request.shares, assets=assets,
        )
        logger.info("settled request %s/%d: %d shares -> %d", request.owner, request.nonce,
                    request.shares, assets)
        return assets

    def _use_nonce(self, owner: str, nonce: int) -> None:
        used = self._used_nonces.get(owner)
        if used is None:
            self._journal.set_item(self._used_nonces, owner, set())
            used = self._used_nonces[owner]
        self._journal.add(used, nonce)
