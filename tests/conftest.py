"""
conftest.py - Shared pytest fixtures for vault tests

Provides common fixtures used across unit, conformance and functional tests:
- Role registry and HMAC signer with the standard cast of accounts
- A fully wired ManagedWithdrawalVault with three collateral kinds
- A plain Vault (no manager) for direct redeem/withdraw paths
- Helpers for building and signing withdrawal requests

Hypothesis tests should use the session-scoped factories (make_env,
make_plain_env) and build a fresh environment per example.
"""

import pytest
from typing import Dict, Optional

from multicollateral import (
    RoleRegistry, HmacSigner, VaultConfig, build_vault, Token, Conduit, TokenBook,
    EventLog, RateRegistry, CollateralLedger, HookPipeline, Vault,
    WithdrawalRequest, PROTOCOL_ADMIN, STRATEGY_ADMIN, MANAGER, RATE_SCALE,
)


# =============================================================================
# CONSTANTS
# =============================================================================

BASE = "SOVABTC"
WBTC = "WBTC"
TBTC = "TBTC"

ONE_BASE = 10 ** 8          # 1 SOVABTC (8 decimals)
ONE_WBTC = 10 ** 8          # 1 WBTC (8 decimals)
ONE_TBTC = 10 ** 18         # 1 TBTC (18 decimals)
ONE_SHARE = 10 ** 18

START_TIME = 1_700_000_000

SECRETS = {
    "alice": b"alice-secret",
    "bob": b"bob-secret",
    "carol": b"carol-secret",
}

USERS = ("alice", "bob", "carol")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_roles() -> RoleRegistry:
    return RoleRegistry({
        PROTOCOL_ADMIN: ["admin"],
        STRATEGY_ADMIN: ["strategist"],
        MANAGER: ["manager"],
    })


def fund_users(custody: TokenBook, users=USERS, manager: Optional[str] = "manager") -> None:
    """Give every user 10 of each collateral token, and the manager 100 base units."""
    for user in users:
        custody.ensure_wallet(user)
        custody.mint(BASE, user, 10 * ONE_BASE)
        custody.mint(WBTC, user, 10 * ONE_WBTC)
        custody.mint(TBTC, user, 10 * ONE_TBTC)
    if manager:
        custody.ensure_wallet(manager)
        custody.mint(BASE, manager, 100 * ONE_BASE)


def allow_standard_collateral(registry: RateRegistry) -> None:
    registry.add_collateral("admin", BASE, RATE_SCALE, 8)
    registry.add_collateral("admin", WBTC, RATE_SCALE, 8)
    registry.add_collateral("admin", TBTC, RATE_SCALE, 18)


class VaultEnv:
    """A vault together with the roles and signer it was built with."""

    def __init__(self, vault, roles: RoleRegistry, signer: HmacSigner):
        self.vault = vault
        self.roles = roles
        self.signer = signer

    @property
    def custody(self) -> TokenBook:
        return self.vault.custody

    def request(
        self,
        owner: str = "alice",
        shares: int = ONE_SHARE,
        nonce: int = 1,
        min_assets: int = 0,
        to: Optional[str] = None,
        expires_in: int = 3600,
    ) -> WithdrawalRequest:
        return WithdrawalRequest(
            owner=owner,
            to=to or owner,
            shares=shares,
            min_assets=min_assets,
            nonce=nonce,
            expiration_time=self.vault.current_time + expires_in,
        )

    def sign(self, request: WithdrawalRequest, signed_by: Optional[str] = None) -> bytes:
        return self.signer.sign(signed_by or request.owner, self.vault.request_digest(request))

    def base_balance(self, wallet: str) -> int:
        return self.custody.balance_of(wallet, BASE)


def build_env(**config_overrides) -> VaultEnv:
    """Managed-withdrawal vault, standard collateral allowed, users funded."""
    roles = make_roles()
    signer = HmacSigner(SECRETS)
    config = VaultConfig(start_time=START_TIME, **config_overrides)
    vault = build_vault(config, roles, signer)
    vault.custody.register_token(Token(WBTC, "Wrapped BTC", 8))
    vault.custody.register_token(Token(TBTC, "Threshold BTC", 18))
    allow_standard_collateral(vault.registry)
    fund_users(vault.custody)
    return VaultEnv(vault, roles, signer)


def build_plain_env() -> VaultEnv:
    """Plain Vault (holders redeem and withdraw directly)."""
    roles = make_roles()
    custody = TokenBook("custody")
    custody.register_token(Token(BASE, "Sova BTC", 8))
    custody.register_token(Token(WBTC, "Wrapped BTC", 8))
    custody.register_token(Token(TBTC, "Threshold BTC", 18))
    conduit = Conduit(custody)
    conduit.register_settlement_entity("strategy")

    events = EventLog()
    registry = RateRegistry(BASE, 8, roles, events)
    strategy = CollateralLedger("strategy", registry, custody, roles, events)
    hooks = HookPipeline(roles, events)
    vault = Vault("vault", registry, strategy, custody, conduit, hooks,
                  events=events, initial_time=START_TIME)
    allow_standard_collateral(registry)
    fund_users(custody)
    return VaultEnv(vault, roles, HmacSigner(SECRETS))


def custody_state(custody: TokenBook) -> Dict:
    return {w: dict(b) for w, b in custody.balances.items() if any(b.values())}


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def roles():
    return make_roles()


@pytest.fixture
def signer():
    return HmacSigner(SECRETS)


@pytest.fixture
def env():
    return build_env()


@pytest.fixture
def vault(env):
    return env.vault


@pytest.fixture
def plain_env():
    return build_plain_env()


@pytest.fixture(scope="session")
def make_env():
    return build_env


@pytest.fixture(scope="session")
def make_plain_env():
    return build_plain_env
