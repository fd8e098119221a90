"""
test_signatures.py - Unit tests for typed-data digests and the HMAC signer
"""

import hashlib

import pytest
from multicollateral import (
    TypedDataDomain, HmacSigner, WithdrawalRequest, InvalidAmount, keccak_256,
    withdrawal_request_digest, withdrawal_request_struct_hash,
)
from multicollateral.signatures import encode_address, encode_uint, DOMAIN_TYPE


@pytest.fixture
def domain():
    return TypedDataDomain("Multi-Collateral Vault", "1", 1, "vault")


@pytest.fixture
def request_():
    return WithdrawalRequest("alice", "alice", 10 ** 18, 10 ** 8, 1, 1_700_003_600)


class TestEncoding:

    def test_uint_is_32_byte_big_endian(self):
        assert encode_uint(1) == b"\x00" * 31 + b"\x01"
        with pytest.raises(ValueError):
            encode_uint(-1)
        with pytest.raises(ValueError):
            encode_uint(2 ** 256)

    def test_hex_address_is_left_padded(self):
        address = "0x" + "ab" * 20
        assert encode_address(address) == b"\x00" * 12 + bytes.fromhex("ab" * 20)

    def test_other_ids_are_hashed(self):
        assert encode_address("alice") == keccak_256(b"alice")
        assert encode_address("0x" + "zz" * 20) == keccak_256(("0x" + "zz" * 20).encode())


class TestKeccak:

    def test_empty_input(self):
        assert keccak_256(b"").hex() == (
            "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )

    def test_differs_from_sha3(self):
        assert keccak_256(b"") != hashlib.sha3_256(b"").digest()

    def test_eip712_mail_domain_separator(self):
        """Domain separator of the EIP-712 reference "Ether Mail" example."""
        domain = TypedDataDomain(
            "Ether Mail", "1", 1, "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC",
        )
        assert domain.domain_separator().hex() == (
            "f2cee375fa42b42143804025fc449deafd50cc031ca257e0b194a650a912090f"
        )

    def test_eip712_type_hash(self):
        domain = TypedDataDomain("Ether Mail", "1", 1, "vault")
        assert domain.type_hash(DOMAIN_TYPE).hex() == (
            "8b73c3c69bb8fe3d512ecc4cf759cc79239f7b179b0ffacaa9a75d522b39400f"
        )


class TestDigest:

    def test_layout(self, domain, request_):
        h = domain.hash_fn
        separator = h(
            h(DOMAIN_TYPE.encode())
            + h(b"Multi-Collateral Vault")
            + h(b"1")
            + encode_uint(1)
            + encode_address("vault")
        )
        assert domain.domain_separator() == separator
        expected = h(b"\x19\x01" + separator + withdrawal_request_struct_hash(domain, request_))
        assert withdrawal_request_digest(domain, request_) == expected
        assert len(expected) == 32

    def test_deterministic(self, domain, request_):
        assert withdrawal_request_digest(domain, request_) == withdrawal_request_digest(domain, request_)

    @pytest.mark.parametrize("field,value", [
        ("to", "bob"),
        ("shares", 10 ** 18 + 1),
        ("min_assets", 0),
        ("nonce", 2),
        ("expiration_time", 1_700_003_601),
    ])
    def test_every_field_is_bound(self, domain, request_, field, value):
        values = {
            "owner": request_.owner, "to": request_.to, "shares": request_.shares,
            "min_assets": request_.min_assets, "nonce": request_.nonce,
            "expiration_time": request_.expiration_time,
        }
        values[field] = value
        changed = WithdrawalRequest(**values)
        assert withdrawal_request_digest(domain, changed) != withdrawal_request_digest(domain, request_)

    def test_domain_binds_chain_and_vault(self, domain, request_):
        other_chain = TypedDataDomain(domain.name, domain.version, 2, domain.verifying_contract)
        other_vault = TypedDataDomain(domain.name, domain.version, 1, "vault2")
        digest = withdrawal_request_digest(domain, request_)
        assert withdrawal_request_digest(other_chain, request_) != digest
        assert withdrawal_request_digest(other_vault, request_) != digest

    def test_custom_hash_fn(self, request_):
        blake = TypedDataDomain("v", "1", 1, "vault", hash_fn=lambda b: hashlib.blake2b(b, digest_size=32).digest())
        default = TypedDataDomain("v", "1", 1, "vault")
        assert withdrawal_request_digest(blake, request_) != withdrawal_request_digest(default, request_)

    def test_domain_validation(self):
        with pytest.raises(ValueError):
            TypedDataDomain("v", "1", 1, "")
        with pytest.raises(ValueError):
            TypedDataDomain("v", "1", -1, "vault")


class TestRequestValidation:

    def test_nonce_is_u96(self):
        with pytest.raises(InvalidAmount):
            WithdrawalRequest("alice", "alice", 1, 0, 2 ** 96, 0)

    def test_rejects_negative_shares(self):
        with pytest.raises(InvalidAmount):
            WithdrawalRequest("alice", "alice", -1, 0, 1, 0)

    @pytest.mark.parametrize("field,value", [
        ("expiration_time", 2 ** 96),
        ("min_assets", -1),
        ("shares", 2 ** 256),
        ("nonce", "1"),
        ("shares", True),
    ])
    def test_out_of_range_fields_are_invalid_amounts(self, field, value):
        values = dict(owner="alice", to="alice", shares=1, min_assets=0, nonce=1, expiration_time=0)
        values[field] = value
        with pytest.raises(InvalidAmount, match=field):
            WithdrawalRequest(**values)

    def test_rejects_empty_owner(self):
        with pytest.raises(ValueError):
            WithdrawalRequest("", "alice", 1, 0, 1, 0)


class TestHmacSigner:

    def test_sign_and_recover(self):
        signer = HmacSigner({"alice": b"alice-secret"})
        digest = b"\x01" * 32
        assert signer.recover(digest, signer.sign("alice", digest)) == "alice"

    def test_wrong_digest(self):
        signer = HmacSigner({"alice": b"alice-secret"})
        signature = signer.sign("alice", b"\x01" * 32)
        assert signer.recover(b"\x02" * 32, signature) is None

    def test_forged_account(self):
        signer = HmacSigner({"alice": b"alice-secret", "bob": b"bob-secret"})
        digest = b"\x01" * 32
        signature = signer.sign("bob", digest)
        forged = len(b"alice").to_bytes(2, "big") + b"alice" + signature[-32:]
        assert signer.recover(digest, forged) is None

    @pytest.mark.parametrize("signature", [b"", b"\x00", b"\x00\x05abc" + b"\x00" * 32, b"\xff" * 40])
    def test_malformed(self, signature):
        signer = HmacSigner({"alice": b"alice-secret"})
        assert signer.recover(b"\x01" * 32, signature) is None

    def test_unknown_signer(self):
        with pytest.raises(KeyError):
            HmacSigner().sign("alice", b"\x01" * 32)

    def test_empty_secret(self):
        with pytest.raises(ValueError):
            HmacSigner({"alice": b""})
