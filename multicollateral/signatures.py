"""
signatures.py - Structured-data digests for signed withdrawal requests

Digests follow the EIP-712 layout:

    domainSeparator = H(typeHash(EIP712Domain) || H(name) || H(version)
                        || chainId || verifyingContract)
    structHash      = H(typeHash(WithdrawalRequest) || owner || to || shares
                        || minAssets || nonce || expirationTime)
    digest          = H(0x19 0x01 || domainSeparator || structHash)

Every field is encoded as one 32-byte word: unsigned integers big-endian,
strings as their hash, addresses left-padded to 32 bytes. Account ids that
are not 0x-prefixed 20-byte hex addresses are encoded as the hash of their
UTF-8 bytes.

H is Keccak-256, so digests match Ethereum EIP-712 signers byte for byte.
Any other 32-byte hash can be passed as hash_fn (sha3_256 is provided).

Signer recovery is not done here: the vault takes any SignatureVerifier.
HmacSigner is a keyed reference verifier for off-chain deployments and tests.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import hashlib
import hmac
from typing import Callable, Dict, Optional

from Crypto.Hash import keccak

from .core import WithdrawalRequest, MAX_UINT256


HashFn = Callable[[bytes], bytes]


def keccak_256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def sha3_256(data: bytes) -> bytes:
    return hashlib.sha3_256(data).digest()


DOMAIN_TYPE = "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
WITHDRAWAL_REQUEST_TYPE = (
    "WithdrawalRequest(address owner,address to,uint256 shares,"
    "uint256 minAssets,uint96 nonce,uint96 expirationTime)"
)


# ============================================================================
# WORD ENCODING
# ============================================================================

def encode_uint(value: int) -> bytes:
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"uint out of range: {value}")
    return value.to_bytes(32, "big")


def encode_address(account: str, hash_fn: HashFn = keccak_256) -> bytes:
    """Left-pad a hex address to 32 bytes; hash any other account id."""
    if account.startswith(("0x", "0X")) and len(account) == 42:
        try:
            raw = bytes.fromhex(account[2:])
        except ValueError:
            raw = None
        if raw is not None:
            return b"\x00" * 12 + raw
    return hash_fn(account.encode("utf-8"))


def encode_string(value: str, hash_fn: HashFn = keccak_256) -> bytes:
    return hash_fn(value.encode("utf-8"))


# ============================================================================
# DOMAIN AND DIGESTS
# ============================================================================

@dataclass(frozen=True)
class TypedDataDomain:
    """
    Domain separating signatures of one vault deployment from all others.

    Attributes:
        name: Signing domain name (usually the vault name).
        version: Domain version string.
        chain_id: Chain or deployment identifier.
        verifying_contract: Identity of the settling vault.
        hash_fn: Hash used for every step of the encoding.
    """
    name: str
    version: str
    chain_id: int
    verifying_contract: str
    hash_fn: HashFn = field(default=keccak_256, compare=False)

    def __post_init__(self):
        if not self.verifying_contract or not self.verifying_contract.strip():
            raise ValueError("verifying_contract cannot be empty")
        if self.chain_id < 0:
            raise ValueError(f"chain_id must be non-negative, got {self.chain_id}")

    def type_hash(self, type_string: str) -> bytes:
        return self.hash_fn(type_string.encode("utf-8"))

    def domain_separator(self) -> bytes:
        h = self.hash_fn
        return h(
            self.type_hash(DOMAIN_TYPE)
            + encode_string(self.name, h)
            + encode_string(self.version, h)
            + encode_uint(self.chain_id)
            + encode_address(self.verifying_contract, h)
        )


def withdrawal_request_struct_hash(domain: TypedDataDomain, request: WithdrawalRequest) -> bytes:
    h = domain.hash_fn
    return h(
        domain.type_hash(WITHDRAWAL_REQUEST_TYPE)
        + encode_address(request.owner, h)
        + encode_address(request.to, h)
        + encode_uint(request.shares)
        + encode_uint(request.min_assets)
        + encode_uint(request.nonce)
        + encode_uint(request.expiration_time)
    )


def withdrawal_request_digest(domain: TypedDataDomain, request: WithdrawalRequest) -> bytes:
    """The 32-byte digest an owner signs to authorize request."""
    return domain.hash_fn(
        b"\x19\x01" + domain.domain_separator() + withdrawal_request_struct_hash(domain, request)
    )


# ============================================================================
# REFERENCE SIGNER
# ============================================================================

class HmacSigner:
    """
    Keyed signer/verifier over digests.

    A signature is  len(account) (2 bytes) || account || HMAC-SHA256(secret, digest).
    recover() returns the embedded account only when the tag verifies under
    that account's secret.

    Example:
        signer = HmacSigner({"alice": b"alice-secret"})
        sig = signer.sign("alice", digest)
        signer.recover(digest, sig)  # "alice"
    """

    def __init__(self, secrets: Optional[Dict[str, bytes]] = None):
        self._secrets: Dict[str, bytes] = {}
        for account, secret in (secrets or {}).items():
            self.register(account, secret)

    def register(self, account: str, secret: bytes) -> None:
        if not secret:
            raise ValueError(f"secret for {account} cannot be empty")
        if len(account.encode("utf-8")) > 0xFFFF:
            raise ValueError("account id too long")
        self._secrets[account] = bytes(secret)

    def sign(self, account: str, digest: bytes) -> bytes:
        secret = self._secrets.get(account)
        if secret is None:
            raise KeyError(f"no signing key for {account}")
        name = account.encode("utf-8")
        tag = hmac.new(secret, digest, hashlib.sha256).digest()
        return len(name).to_bytes(2, "big") + name + tag

    def recover(self, digest: bytes, signature: bytes) -> Optional[str]:
        if len(signature) < 2 + 32:
            return None
        name_length = int.from_bytes(signature[:2], "big")
        if len(signature) != 2 + name_length + 32:
            return None
        try:
            account = signature[2:2 + name_length].decode("utf-8")
        except UnicodeDecodeError:
            return None
        secret = self._secrets.get(account)
        if secret is None:
            return None
        expected = hmac.new(secret, digest, hashlib.sha256).digest()
        if not hmac.compare_digest(expected, signature[2 + name_length:]):
            return None
        return account
