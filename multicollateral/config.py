"""
config.py - Vault configuration and assembly

VaultConfig carries every deployment parameter of a vault. build_vault()
wires a registry, collateral ledger, hook pipeline and managed-withdrawal
vault from it, sharing one event log and one custody book.
"""

from __future__ import annotations
from dataclasses import dataclass
import json
from pathlib import Path
from typing import Annotated, Any, Mapping, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict
import yaml

from .core import EventLog, SHARE_DECIMALS, MAX_UINT96
from .custody import Conduit, Token, TokenBook
from .hooks import HookPipeline
from .registry import RateRegistry
from .settlement import ManagedWithdrawalVault
from .signatures import TypedDataDomain, keccak_256
from .strategy import CollateralLedger


def parse_int(value: Any) -> int:
    """Accept ints and decimal strings (underscores allowed); reject bools."""
    if isinstance(value, bool):
        raise ValueError(f"expected integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value.replace("_", ""))
    raise ValueError(f"expected integer, got {value!r}")


Int = Annotated[int, BeforeValidator(parse_int)]


@dataclass(frozen=True)
class VaultConfig:
    """
    Deployment parameters of one vault.

    Attributes:
        name: Vault name; also the typed-data domain name unless overridden.
        symbol: Share symbol.
        vault_id: Identity of the vault (custody wallet, verifying contract).
        strategy_id: Custody wallet of the collateral ledger.
        base_token: Base-unit token.
        base_decimals: Base-unit decimals (at most share_decimals).
        share_decimals: Share precision.
        chain_id: Chain/deployment id bound into signatures.
        domain_name: Typed-data domain name ("" = use name).
        domain_version: Typed-data domain version.
        allow_hook_append_after_execution: Whether hooks may still be
            appended to an operation that has executed.
        start_time: Initial vault clock (unix seconds).
    """
    name: str = "Multi-Collateral Vault"
    symbol: str = "mcVAULT"
    vault_id: str = "vault"
    strategy_id: str = "strategy"
    base_token: str = "SOVABTC"
    base_decimals: int = 8
    share_decimals: int = SHARE_DECIMALS
    chain_id: int = 1
    domain_name: str = ""
    domain_version: str = "1"
    allow_hook_append_after_execution: bool = True
    start_time: int = 0

    def __post_init__(self):
        for attr in ("name", "vault_id", "strategy_id", "base_token"):
            if not getattr(self, attr) or not str(getattr(self, attr)).strip():
                raise ValueError(f"{attr} cannot be empty")
        if self.vault_id == self.strategy_id:
            raise ValueError("vault_id and strategy_id must be different")
        if not 0 <= self.base_decimals <= self.share_decimals:
            raise ValueError(
                f"base_decimals {self.base_decimals} must be within 0..{self.share_decimals}"
            )
        if self.chain_id < 0:
            raise ValueError(f"chain_id must be non-negative, got {self.chain_id}")
        if not 0 <= self.start_time <= MAX_UINT96:
            raise ValueError(f"start_time out of range: {self.start_time}")

    @property
    def signing_domain_name(self) -> str:
        return self.domain_name or self.name

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> VaultConfig:
        """Build from a mapping, rejecting unknown keys."""
        return VaultConfigFile.model_validate(data).to_config()


class VaultConfigFile(BaseModel):
    """
    On-disk form of VaultConfig.

    Keys left out fall back to the VaultConfig defaults. Integers may be
    written as numbers or decimal strings.
    """
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    symbol: Optional[str] = None
    vault_id: Optional[str] = None
    strategy_id: Optional[str] = None
    base_token: Optional[str] = None
    base_decimals: Optional[Int] = None
    share_decimals: Optional[Int] = None
    chain_id: Optional[Int] = None
    domain_name: Optional[str] = None
    domain_version: Optional[str] = None
    allow_hook_append_after_execution: Optional[bool] = None
    start_time: Optional[Int] = None

    def to_config(self) -> VaultConfig:
        return VaultConfig(**self.model_dump(exclude_none=True))


def load_document(path: str) -> Any:
    """Parse a JSON or (by suffix) YAML file."""
    source = Path(path)
    text = source.read_text(encoding="utf-8")
    if source.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)


def load_config(path: str) -> VaultConfig:
    """Load a VaultConfig from a JSON or YAML file."""
    return VaultConfigFile.model_validate(load_document(path)).to_config()


def build_vault(
    config: VaultConfig,
    access,
    verifier,
    custody: Optional[TokenBook] = None,
    conduit=None,
    hash_fn=keccak_256,
) -> ManagedWithdrawalVault:
    """
    Assemble a ManagedWithdrawalVault from config.

    The base token is registered in custody if missing. Collateral kinds are
    not added here; the protocol admin adds them through vault.registry.

    Args:
        config: Deployment parameters
        access: AccessControl for roles
        verifier: SignatureVerifier for signed requests
        custody: Existing custody book (a new one is created if None)
        conduit: Transfer conduit (a Conduit over custody if None)
        hash_fn: Hash used for typed-data digests
    """
    custody = custody if custody is not None else TokenBook(f"{config.vault_id}_custody")
    if config.base_token not in custody.tokens:
        custody.register_token(Token(config.base_token, config.base_token, config.base_decimals))
    if conduit is None:
        conduit = Conduit(custody)
    if isinstance(conduit, Conduit):
        conduit.register_settlement_entity(config.strategy_id)

    events = EventLog()
    registry = RateRegistry(config.base_token, config.base_decimals, access, events)
    strategy = CollateralLedger(config.strategy_id, registry, custody, access, events)
    hooks = HookPipeline(
        access, events,
        allow_append_after_execution=config.allow_hook_append_after_execution,
    )
    domain = TypedDataDomain(
        name=config.signing_domain_name,
        version=config.domain_version,
        chain_id=config.chain_id,
        verifying_contract=config.vault_id,
        hash_fn=hash_fn,
    )
    return ManagedWithdrawalVault(
        config.vault_id, registry, strategy, custody, conduit, hooks,
        events=events,
        name=config.name,
        symbol=config.symbol,
        share_decimals=config.share_decimals,
        initial_time=config.start_time,
        access=access,
        verifier=verifier,
        domain=domain,
    )
