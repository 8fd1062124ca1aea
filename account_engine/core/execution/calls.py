"""
Call model and calldata builders.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_utils import keccak


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def _encode_uint(value: int) -> str:
    if value < 0:
        raise ValueError("Value must be non-negative")
    return hex(value)[2:].rjust(64, "0")


def _encode_address(address: str) -> str:
    addr = _strip_0x(address).lower()
    if len(addr) != 40:
        raise ValueError(f"Invalid address length: {address}")
    return addr.rjust(64, "0")


def is_selector(value: str) -> bool:
    return value.startswith("0x") and len(value) == 10


def selector_from_signature(signature: str) -> str:
    """4-byte selector for a Solidity signature, or the selector itself."""
    if is_selector(signature):
        return signature.lower()
    selector = keccak(text=signature)[:4].hex()
    return f"0x{selector}"


def is_address_equal(left: Optional[str], right: Optional[str]) -> bool:
    if left is None or right is None:
        return False
    return left.lower() == right.lower()


@dataclass
class Call:
    """A single call inside a bundle."""
    to: str
    data: str = "0x"
    value: int = 0

    @property
    def selector(self) -> Optional[str]:
        data = _strip_0x(self.data)
        if len(data) < 8:
            return None
        return f"0x{data[:8].lower()}"

    def to_rpc_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "data": self.data or "0x",
            "value": hex(self.value),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Call":
        value = data.get("value") or 0
        if isinstance(value, str):
            value = int(value, 16) if value.startswith("0x") else int(value)
        return cls(to=data["to"], data=data.get("data") or "0x", value=value)


def upgrade_proxy_account(address: str, to: str) -> Call:
    """
    Build the call that re-points an account proxy at ``address``.

    Encodes ``upgradeProxyAccount(address)`` and targets the account itself.
    """
    selector = selector_from_signature("upgradeProxyAccount(address)")
    return Call(to=to, data=selector + _encode_address(address))
