from .models import (
    Account,
    AddressKey,
    CallPermission,
    Key,
    KeyRole,
    KeyType,
    P256Key,
    Permissions,
    Secp256k1Key,
    SpendPeriod,
    SpendPermission,
    WebAuthnP256Key,
    key_from,
    key_from_relay,
)

__all__ = [
    "Account",
    "AddressKey",
    "CallPermission",
    "Key",
    "KeyRole",
    "KeyType",
    "P256Key",
    "Permissions",
    "Secp256k1Key",
    "SpendPeriod",
    "SpendPermission",
    "WebAuthnP256Key",
    "key_from",
    "key_from_relay",
]
