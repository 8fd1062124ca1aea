"""
Pre-call ledger.

A pre-call is a signed authorization (e.g. "authorize this session key")
that has not been executed yet. It rides along with the next real call
bundle and must be cleared only once the relay has accepted that bundle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .storage import MemoryStorage, Storage

logger = logging.getLogger(__name__)


@dataclass
class PreCall:
    context: Dict[str, Any]
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return {"context": self.context, "signature": self.signature}

    def to_rpc(self) -> Dict[str, Any]:
        """Shape expected by the relay's ``preCalls`` capability."""
        intent = self.context.get("preCall") or self.context
        return {**intent, "signature": self.signature}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreCall":
        return cls(context=dict(data.get("context") or {}), signature=data["signature"])


def ledger_key(address: str) -> str:
    return f"pre_calls:{address.lower()}"


class PreCallLedger:
    """Persists pre-calls per account address."""

    def __init__(self, storage: Optional[Storage] = None) -> None:
        self.storage = storage or MemoryStorage()

    async def get(self, address: str) -> List[PreCall]:
        stored = await self.storage.get(ledger_key(address))
        return [PreCall.from_dict(item) for item in stored or []]

    async def add(self, pre_calls: Sequence[PreCall], address: str) -> None:
        if not pre_calls:
            return
        existing = await self.get(address)
        merged = [*existing, *pre_calls]
        await self.storage.set(ledger_key(address), [p.to_dict() for p in merged])
        logger.debug(f"Queued {len(pre_calls)} pre-call(s) for {address} ({len(merged)} pending)")

    async def clear(self, address: str) -> None:
        await self.storage.delete(ledger_key(address))


class NullPreCallLedger(PreCallLedger):
    """For callers that keep pre-calls themselves. Stores nothing."""

    def __init__(self) -> None:
        super().__init__(storage=None)

    async def get(self, address: str) -> List[PreCall]:
        return []

    async def add(self, pre_calls: Sequence[PreCall], address: str) -> None:
        return None

    async def clear(self, address: str) -> None:
        return None
