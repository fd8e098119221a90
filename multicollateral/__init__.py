"""
multicollateral - Multi-Collateral Tokenized Vault

A share-issuing vault that accepts several collateral tokens, values them in
a common base unit through a rate registry, gates every operation through
ordered policy hooks, and settles exits through signed, nonce-protected
withdrawal requests.

Usage:
    from multicollateral import (
        RoleRegistry, HmacSigner, VaultConfig, build_vault, Token,
        WithdrawalRequest, PROTOCOL_ADMIN, MANAGER, RATE_SCALE,
    )

    roles = RoleRegistry({PROTOCOL_ADMIN: ["admin"], MANAGER: ["manager"]})
    signer = HmacSigner({"alice": b"alice-secret"})
    vault = build_vault(VaultConfig(), roles, signer)

    vault.custody.register_token(Token("WBTC", "Wrapped BTC", 8))
    vault.custody.ensure_wallet("alice")
    vault.custody.mint("WBTC", "alice", 100_000_000)

    vault.registry.add_collateral("admin", "SOVABTC", RATE_SCALE, 8)
    vault.registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
    shares = vault.deposit_collateral("alice", "WBTC", 100_000_000, "alice")

    request = WithdrawalRequest("alice", "alice", shares, 0, nonce=1,
                                expiration_time=3600)
    signature = signer.sign("alice", vault.request_digest(request))
    vault.redeem_request("manager", request, signature)
"""

# Core types
from .core import (
    AccessControl,
    TransferConduit,
    SignatureVerifier,
    UndoLog,
    Journaled,
    CollateralKind,
    WithdrawalRequest,
    HookResult,
    HookContext,
    HookRecord,
    VaultEvent,
    EventLog,
    OperationKind,
    EventType,
    RATE_DECIMALS,
    RATE_SCALE,
    SHARE_DECIMALS,
    MAX_UINT256,
    MAX_UINT96,
    SYSTEM_WALLET,
    require_uint,
    require_positive,
    # Errors
    VaultError,
    ValidationError,
    AuthorizationError,
    StateError,
    IntegrityError,
    ZeroAmount,
    ZeroShares,
    InvalidAmount,
    InvalidRate,
    InvalidDecimals,
    InvalidArrayLengths,
    HookIndexOutOfBounds,
    ReorderInvalidLength,
    ReorderIndexOutOfBounds,
    ReorderDuplicateIndex,
    OnlyVault,
    OnlyManager,
    NotProtocolAdmin,
    NotStrategyAdmin,
    InsufficientAllowance,
    InvalidCollateral,
    CollateralNotAllowed,
    NotAllowed,
    WithdrawNonceReuse,
    WithdrawalRequestExpired,
    HookHasProcessedOperations,
    HookCheckFailed,
    InsufficientShares,
    InsufficientFunds,
    InsufficientLiquidity,
    VaultInsolvent,
    UseRedeem,
    TokenNotRegistered,
    WalletNotRegistered,
    UnregisteredDestination,
    AlreadyBound,
    WithdrawInvalidSignature,
    InsufficientOutputAssets,
)

# Roles
from .access import (
    RoleRegistry,
    require_role,
    PROTOCOL_ADMIN,
    STRATEGY_ADMIN,
    MANAGER,
)

# Rate registry
from .registry import (
    RateRegistry,
    calculate_to_base,
    calculate_from_base,
    round_trip_error_bound,
)

# Custody
from .custody import (
    Token,
    Move,
    CustodyRecord,
    TokenBook,
    Conduit,
)

# Collateral ledger
from .strategy import CollateralLedger

# Shares
from .shares import (
    ShareBook,
    decimal_offset,
    calculate_shares,
    calculate_assets,
    calculate_shares_for_withdraw,
)

# Hooks
from .hooks import (
    Hook,
    BaseHook,
    AllowlistHook,
    DepositCapHook,
    CallableHook,
    HookPipeline,
)

# Signatures
from .signatures import (
    TypedDataDomain,
    HmacSigner,
    withdrawal_request_digest,
    withdrawal_request_struct_hash,
    keccak_256,
    sha3_256,
)

# Vaults
from .vault import Vault
from .settlement import ManagedWithdrawalVault

# Configuration
from .config import VaultConfig, VaultConfigFile, load_config, build_vault
from .logging_utils import configure_logging


__all__ = [
    # Core
    'AccessControl', 'TransferConduit', 'SignatureVerifier', 'UndoLog', 'Journaled',
    'CollateralKind', 'WithdrawalRequest', 'HookResult', 'HookContext', 'HookRecord',
    'VaultEvent', 'EventLog', 'OperationKind', 'EventType',
    'RATE_DECIMALS', 'RATE_SCALE', 'SHARE_DECIMALS', 'MAX_UINT256', 'MAX_UINT96',
    'SYSTEM_WALLET', 'require_uint', 'require_positive',
    # Errors
    'VaultError', 'ValidationError', 'AuthorizationError', 'StateError', 'IntegrityError',
    'ZeroAmount', 'ZeroShares', 'InvalidAmount', 'InvalidRate', 'InvalidDecimals',
    'InvalidArrayLengths', 'HookIndexOutOfBounds', 'ReorderInvalidLength',
    'ReorderIndexOutOfBounds', 'ReorderDuplicateIndex',
    'OnlyVault', 'OnlyManager', 'NotProtocolAdmin', 'NotStrategyAdmin', 'InsufficientAllowance',
    'InvalidCollateral', 'CollateralNotAllowed', 'NotAllowed', 'WithdrawNonceReuse',
    'WithdrawalRequestExpired', 'HookHasProcessedOperations', 'HookCheckFailed',
    'InsufficientShares', 'InsufficientFunds', 'InsufficientLiquidity', 'VaultInsolvent',
    'UseRedeem', 'TokenNotRegistered', 'WalletNotRegistered', 'UnregisteredDestination',
    'AlreadyBound', 'WithdrawInvalidSignature', 'InsufficientOutputAssets',
    # Roles
    'RoleRegistry', 'require_role', 'PROTOCOL_ADMIN', 'STRATEGY_ADMIN', 'MANAGER',
    # Registry
    'RateRegistry', 'calculate_to_base', 'calculate_from_base', 'round_trip_error_bound',
    # Custody
    'Token', 'Move', 'CustodyRecord', 'TokenBook', 'Conduit',
    # Collateral ledger
    'CollateralLedger',
    # Shares
    'ShareBook', 'decimal_offset', 'calculate_shares', 'calculate_assets',
    'calculate_shares_for_withdraw',
    # Hooks
    'Hook', 'BaseHook', 'AllowlistHook', 'DepositCapHook', 'CallableHook', 'HookPipeline',
    # Signatures
    'TypedDataDomain', 'HmacSigner', 'withdrawal_request_digest',
    'withdrawal_request_struct_hash', 'keccak_256', 'sha3_256',
    # Vaults
    'Vault', 'ManagedWithdrawalVault',
    # Configuration
    'VaultConfig', 'VaultConfigFile', 'load_config', 'build_vault', 'configure_logging',
]

__version__ = '1.0.0'
