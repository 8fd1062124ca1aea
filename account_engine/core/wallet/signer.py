"""
Signing capability for account keys.

The engine never does signature math itself: it hands a digest and a key
to a ``Signer``. ``LocalSigner`` covers keys that carry local material
(secp256k1 via eth_account, P256 and headless WebAuthn via cryptography);
platform credentials (WebAuthn passkeys) need a signer backed by the
platform authenticator.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature
from eth_account import Account as EthAccount
from eth_account.messages import defunct_hash_message, encode_typed_data
from eth_utils import encode_hex, keccak, to_bytes

from ..errors import UnsupportedKeyError
from .models import Key, KeyRole, KeyType, P256Key, WebAuthnP256Key


# Order of the P256 curve; signatures are normalized to low-s.
P256_N = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551


@dataclass
class DiscoveredCredential:
    """Result of a WebAuthn discovery assertion."""
    address: str
    credential_id: str
    signature: str  # serialized WebAuthn signature over the challenge


class Signer(ABC):
    """Signs digests on behalf of account keys."""

    @abstractmethod
    async def sign(self, payload: str, key: Key) -> str:
        """Return the raw (unwrapped) signature of ``payload`` by ``key``."""
        pass

    async def discover(self, challenge: str, rp_id: Optional[str] = None) -> DiscoveredCredential:
        """Ask the platform for an assertion from any credential it holds."""
        raise UnsupportedKeyError(f"{type(self).__name__} cannot discover platform credentials")

    async def create_credential(
        self,
        label: str,
        user_id: str,
        rp_id: Optional[str] = None,
    ) -> WebAuthnP256Key:
        """Register a new platform credential and return it as an admin key."""
        raise UnsupportedKeyError(f"{type(self).__name__} cannot create platform credentials")


class LocalSigner(Signer):
    """Signs with private material held on the key itself."""

    async def sign(self, payload: str, key: Key) -> str:
        if key.private_key is None:
            raise UnsupportedKeyError(
                f"no local signing material for {key.type.value} key {key.id}"
            )

        if key.type == KeyType.SECP256K1:
            return sign_secp256k1(payload, key.private_key)
        if key.type in (KeyType.P256, KeyType.WEBAUTHN_P256):
            return sign_p256(payload, key.private_key, prehash=key.prehash)

        raise UnsupportedKeyError(f"cannot sign with {key.type.value} keys")


def sign_secp256k1(payload: str, private_key: str) -> str:
    signed = EthAccount.unsafe_sign_hash(to_bytes(hexstr=payload), private_key)
    return encode_hex(bytes(signed.signature))


def sign_p256(payload: str, private_key: str, *, prehash: bool = False) -> str:
    signing_key = ec.derive_private_key(int(private_key, 16), ec.SECP256R1())
    digest = to_bytes(hexstr=payload)
    if prehash:
        der = signing_key.sign(digest, ec.ECDSA(hashes.SHA256()))
    else:
        der = signing_key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    r, s = decode_dss_signature(der)
    if s > P256_N // 2:
        s = P256_N - s
    return encode_hex(r.to_bytes(32, "big") + s.to_bytes(32, "big"))


def _p256_material() -> Dict[str, str]:
    private = ec.generate_private_key(ec.SECP256R1())
    numbers = private.public_key().public_numbers()
    return {
        "private_key": encode_hex(private.private_numbers().private_value.to_bytes(32, "big")),
        "public_key": encode_hex(numbers.x.to_bytes(32, "big") + numbers.y.to_bytes(32, "big")),
    }


def create_p256_key(role: KeyRole = KeyRole.SESSION, **kwargs: Any) -> P256Key:
    """Generate a P256 key with local material. Digests are prehashed."""
    kwargs.setdefault("prehash", True)
    return P256Key(role=role, **_p256_material(), **kwargs)


def create_headless_webauthn_key(**kwargs: Any) -> WebAuthnP256Key:
    """WebAuthn-typed admin key backed by a local P256 key. Testing only."""
    return WebAuthnP256Key(role=KeyRole.ADMIN, **_p256_material(), **kwargs)


def wrap_signature(signature: str, key: Key) -> str:
    """Pack ``signature || keyHash || prehash`` for the account contract."""
    return (
        signature
        + key.hash[2:]
        + ("01" if key.prehash else "00")
    )


def personal_message_digest(data: Union[str, bytes]) -> str:
    """EIP-191 digest of ``data`` (hex string or raw bytes)."""
    if isinstance(data, bytes):
        return encode_hex(defunct_hash_message(primitive=data))
    if data.startswith("0x"):
        return encode_hex(defunct_hash_message(hexstr=data))
    return encode_hex(defunct_hash_message(text=data))


def typed_data_digest(data: Union[str, Dict[str, Any]]) -> str:
    """EIP-712 digest of a JSON-encoded (or already decoded) typed data payload."""
    message = json.loads(data) if isinstance(data, str) else data
    signable = encode_typed_data(full_message=message)
    return encode_hex(keccak(b"\x19" + signable.version + signable.header + signable.body))
