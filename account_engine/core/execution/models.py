"""
Relay execution models: quotes and call bundle status.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional
import time


def _parse_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


@dataclass
class Quote:
    """
    A time-boxed fee offer from the relay for a given intent.

    ``ttl`` is the unix timestamp after which the relay no longer honours
    the quote; the calls have to be prepared again.
    """
    chain_id: int
    intent: Dict[str, Any]
    native_fee_estimate: Dict[str, int]
    ttl: int
    eth_price: int
    payment_token_decimals: int
    orchestrator: str
    tx_gas: int = 0
    extra_payment: int = 0
    authorization_address: Optional[str] = None

    def is_expired(self, now: Optional[int] = None) -> bool:
        if not self.ttl:
            return False
        now = int(time.time()) if now is None else now
        return now >= self.ttl

    @property
    def nonce(self) -> Optional[int]:
        nonce = self.intent.get("nonce")
        return None if nonce is None else _parse_int(nonce)

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "Quote":
        return cls(**_quote_fields(data))


@dataclass
class SignedQuote(Quote):
    """A quote carrying the relay's signature."""
    hash: str = "0x"
    r: str = "0x"
    s: str = "0x"
    v: Optional[str] = None
    y_parity: Optional[str] = None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "SignedQuote":
        return cls(
            **_quote_fields(data),
            hash=data.get("hash", "0x"),
            r=data.get("r", "0x"),
            s=data.get("s", "0x"),
            v=data.get("v"),
            y_parity=data.get("yParity"),
        )


def _quote_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    estimate = data.get("nativeFeeEstimate") or {}
    return {
        "chain_id": _parse_int(data.get("chainId")),
        "intent": data.get("intent") or {},
        "native_fee_estimate": {
            "max_fee_per_gas": _parse_int(estimate.get("maxFeePerGas")),
            "max_priority_fee_per_gas": _parse_int(estimate.get("maxPriorityFeePerGas")),
        },
        "ttl": _parse_int(data.get("ttl")),
        "eth_price": _parse_int(data.get("ethPrice")),
        "payment_token_decimals": _parse_int(data.get("paymentTokenDecimals")),
        "orchestrator": data.get("orchestrator", ""),
        "tx_gas": _parse_int(data.get("txGas")),
        "extra_payment": _parse_int(data.get("extraPayment")),
        "authorization_address": data.get("authorizationAddress"),
    }


def parse_quote(data: Optional[Dict[str, Any]]) -> Optional[Quote]:
    if not data:
        return None
    if "r" in data and "s" in data:
        return SignedQuote.from_rpc(data)
    return Quote.from_rpc(data)


class CallsStatusCode(IntEnum):
    PENDING = 100
    CONFIRMED = 200
    OFFCHAIN_FAILURE = 300
    REVERTED = 400
    PARTIALLY_REVERTED = 500


@dataclass
class Receipt:
    transaction_hash: str
    status: str = "0x1"
    block_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    chain_id: Optional[int] = None
    logs: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "Receipt":
        return cls(
            transaction_hash=data["transactionHash"],
            status=data.get("status", "0x1"),
            block_hash=data.get("blockHash"),
            block_number=_parse_int(data["blockNumber"]) if data.get("blockNumber") is not None else None,
            gas_used=_parse_int(data["gasUsed"]) if data.get("gasUsed") is not None else None,
            chain_id=_parse_int(data["chainId"]) if data.get("chainId") is not None else None,
            logs=list(data.get("logs") or []),
        )


@dataclass
class CallsStatus:
    id: str
    status: int
    receipts: List[Receipt] = field(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.status < CallsStatusCode.CONFIRMED

    @property
    def is_success(self) -> bool:
        return self.status == CallsStatusCode.CONFIRMED

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "CallsStatus":
        return cls(
            id=str(data["id"]),
            status=_parse_int(data["status"]),
            receipts=[Receipt.from_rpc(r) for r in data.get("receipts") or []],
        )
