"""
Key and account models.

A key is a credential able to authorize actions on a delegated account.
Each key type is its own class carrying exactly the fields that type
supports; only WebAuthn keys are bound to a platform credential.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type
import time

from eth_utils import encode_hex, keccak, to_bytes

from ..execution.calls import Call, is_address_equal, selector_from_signature


# Relay wildcards for call permissions without a target or selector.
ANY_TARGET = "0x3232323232323232323232323232323232323232"
ANY_SELECTOR = "0x32323232"


class KeyType(str, Enum):
    ADDRESS = "address"
    SECP256K1 = "secp256k1"
    P256 = "p256"
    WEBAUTHN_P256 = "webauthn-p256"


class KeyRole(str, Enum):
    ADMIN = "admin"
    SESSION = "session"


class SpendPeriod(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @property
    def rank(self) -> int:
        return _PERIOD_ORDER.index(self)


_PERIOD_ORDER = [
    SpendPeriod.MINUTE,
    SpendPeriod.HOUR,
    SpendPeriod.DAY,
    SpendPeriod.WEEK,
    SpendPeriod.MONTH,
    SpendPeriod.YEAR,
]

# Key type identifiers used by the account contract when hashing keys.
_RELAY_KEY_TYPES: Dict[KeyType, str] = {
    KeyType.P256: "p256",
    KeyType.WEBAUTHN_P256: "webauthnp256",
    KeyType.SECP256K1: "secp256k1",
    KeyType.ADDRESS: "secp256k1",
}
_SERIALIZED_KEY_TYPES = {"p256": 0, "webauthnp256": 1, "secp256k1": 2}


@dataclass
class CallPermission:
    """Allows calls to ``to`` and/or to the function named by ``signature``."""
    to: Optional[str] = None
    signature: Optional[str] = None

    @property
    def selector(self) -> Optional[str]:
        if not self.signature:
            return None
        return selector_from_signature(self.signature)

    def matches(self, call: Call) -> bool:
        if self.to and not is_address_equal(self.to, call.to):
            return False
        if self.signature:
            if call.selector is None:
                return False
            return call.selector == self.selector
        return True


@dataclass
class SpendPermission:
    limit: int
    period: SpendPeriod
    token: Optional[str] = None  # None = native token


@dataclass
class FeeLimit:
    currency: str
    value: str


@dataclass
class Permissions:
    calls: List[CallPermission] = field(default_factory=list)
    spend: List[SpendPermission] = field(default_factory=list)
    signature_verification: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "calls": [
                {k: v for k, v in (("to", c.to), ("signature", c.signature)) if v}
                for c in self.calls
            ],
            "spend": [
                {
                    "limit": hex(s.limit),
                    "period": s.period.value,
                    **({"token": s.token} if s.token else {}),
                }
                for s in self.spend
            ],
        }
        if self.signature_verification is not None:
            data["signatureVerification"] = {"addresses": list(self.signature_verification)}
        return data


@dataclass
class Key:
    """
    Base credential. Use one of the concrete key classes.

    ``private_key`` is local signing material (hex). Keys fetched from the
    relay never carry it.
    """
    type: ClassVar[KeyType]

    public_key: str
    role: KeyRole = KeyRole.ADMIN
    expiry: int = 0  # 0 = never expires
    permissions: Permissions = field(default_factory=Permissions)
    prehash: bool = False
    fee_limit: Optional[FeeLimit] = None
    private_key: Optional[str] = field(default=None, repr=False)

    @property
    def relay_type(self) -> str:
        return _RELAY_KEY_TYPES[self.type]

    @property
    def serialized_public_key(self) -> str:
        """Public key as the account contract stores it."""
        return self.public_key

    @property
    def hash(self) -> str:
        type_index = _SERIALIZED_KEY_TYPES[self.relay_type]
        public_key_hash = keccak(hexstr=self.serialized_public_key)
        return encode_hex(keccak(type_index.to_bytes(32, "big") + public_key_hash))

    @property
    def id(self) -> str:
        return self.hash

    @property
    def can_sign(self) -> bool:
        return self.private_key is not None

    @property
    def is_admin(self) -> bool:
        return self.role == KeyRole.ADMIN

    def is_expired(self, now: Optional[int] = None) -> bool:
        if not self.expiry:
            return False
        now = int(time.time()) if now is None else now
        return self.expiry < now

    def to_relay(self) -> Dict[str, Any]:
        """Serialize for the relay's ``authorizeKeys`` capability."""
        permissions: List[Dict[str, Any]] = []
        for call in self.permissions.calls:
            permissions.append({
                "type": "call",
                "to": call.to or ANY_TARGET,
                "selector": call.selector or ANY_SELECTOR,
            })
        for spend in self.permissions.spend:
            permissions.append({
                "type": "spend",
                "limit": hex(spend.limit),
                "period": spend.period.value,
                "token": spend.token,
            })
        return {
            "expiry": self.expiry,
            "prehash": self.prehash,
            "publicKey": self.serialized_public_key,
            "role": "admin" if self.is_admin else "normal",
            "type": self.relay_type,
            "permissions": permissions,
        }

    def to_key_ref(self) -> Dict[str, Any]:
        """Minimal key reference used to sign prepared calls."""
        return {
            "prehash": self.prehash,
            "publicKey": self.serialized_public_key,
            "type": self.relay_type,
        }


@dataclass
class AddressKey(Key):
    type: ClassVar[KeyType] = KeyType.ADDRESS

    @property
    def serialized_public_key(self) -> str:
        return _pad_address(self.public_key)

    @property
    def can_sign(self) -> bool:
        return False


@dataclass
class Secp256k1Key(Key):
    """``public_key`` is the key's Ethereum address."""
    type: ClassVar[KeyType] = KeyType.SECP256K1

    @property
    def serialized_public_key(self) -> str:
        if len(self.public_key) == 42:
            return _pad_address(self.public_key)
        return self.public_key


@dataclass
class P256Key(Key):
    """``public_key`` is the uncompressed point ``x || y`` without prefix."""
    type: ClassVar[KeyType] = KeyType.P256


@dataclass
class WebAuthnP256Key(Key):
    type: ClassVar[KeyType] = KeyType.WEBAUTHN_P256

    credential_id: Optional[str] = None
    rp_id: Optional[str] = None

    @property
    def can_sign(self) -> bool:
        return self.private_key is not None or self.credential_id is not None


KEY_CLASSES: Dict[KeyType, Type[Key]] = {
    KeyType.ADDRESS: AddressKey,
    KeyType.SECP256K1: Secp256k1Key,
    KeyType.P256: P256Key,
    KeyType.WEBAUTHN_P256: WebAuthnP256Key,
}


def _pad_address(address: str) -> str:
    return encode_hex(to_bytes(hexstr=address).rjust(32, b"\x00"))


def key_from(
    type: "KeyType | str",
    public_key: str,
    **kwargs: Any,
) -> Key:
    """Instantiate the key class for ``type``."""
    key_type = KeyType(type)
    return KEY_CLASSES[key_type](public_key=public_key, **kwargs)


def key_from_relay(data: Dict[str, Any]) -> Key:
    """Build a key from a ``wallet_getKeys`` entry."""
    relay_type = data["type"]
    key_type = {
        "p256": KeyType.P256,
        "webauthnp256": KeyType.WEBAUTHN_P256,
        "secp256k1": KeyType.SECP256K1,
    }[relay_type]

    calls: List[CallPermission] = []
    spend: List[SpendPermission] = []
    for permission in data.get("permissions") or []:
        if permission.get("type") == "call":
            to = permission.get("to")
            selector = permission.get("selector")
            calls.append(CallPermission(
                to=None if is_address_equal(to, ANY_TARGET) else to,
                signature=None if selector == ANY_SELECTOR else selector,
            ))
        elif permission.get("type") == "spend":
            limit = permission["limit"]
            spend.append(SpendPermission(
                limit=int(limit, 16) if isinstance(limit, str) else int(limit),
                period=SpendPeriod(permission["period"]),
                token=permission.get("token"),
            ))

    public_key = data["publicKey"]
    if key_type == KeyType.SECP256K1 and len(public_key) == 66:
        # Relay returns the left-padded address.
        public_key = "0x" + public_key[-40:]

    expiry = data.get("expiry") or 0
    return key_from(
        key_type,
        public_key,
        role=KeyRole.ADMIN if data.get("role") == "admin" else KeyRole.SESSION,
        expiry=int(expiry, 16) if isinstance(expiry, str) else int(expiry),
        prehash=bool(data.get("prehash", False)),
        permissions=Permissions(calls=calls, spend=spend),
    )


@dataclass
class Account:
    """A delegated account and the keys known locally for it."""
    address: str
    keys: List[Key] = field(default_factory=list)

    def get_key(
        self,
        role: Optional[KeyRole] = None,
        can_sign: Optional[bool] = None,
    ) -> Optional[Key]:
        for key in self.keys:
            if role is not None and key.role != role:
                continue
            if can_sign is not None and key.can_sign != can_sign:
                continue
            return key
        return None

    def find_key(self, key_id: str) -> Optional[Key]:
        for key in self.keys:
            if key.id.lower() == key_id.lower():
                return key
        return None

    @property
    def webauthn_keys(self) -> List[Key]:
        return [key for key in self.keys if key.type == KeyType.WEBAUTHN_P256]
