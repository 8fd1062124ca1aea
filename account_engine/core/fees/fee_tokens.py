"""
Fee token resolution.

The relay advertises the tokens it accepts for fees in its capabilities.
Those are cached per chain and ordered so the token the caller asked for
(or the configured default) comes first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_utils import is_hex_address

from ...cache import TTLCache
from ...config import settings
from ...providers.relay import RelayClient
from ..errors import FeeTokenError
from ..execution.calls import ZERO_ADDRESS, is_address_equal


logger = logging.getLogger(__name__)


@dataclass
class FeeToken:
    address: str
    symbol: str
    decimals: int
    kind: str
    native_rate: Optional[int] = None

    @property
    def is_native(self) -> bool:
        return is_address_equal(self.address, ZERO_ADDRESS)

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "FeeToken":
        native_rate = data.get("nativeRate")
        if isinstance(native_rate, str):
            native_rate = int(native_rate, 16) if native_rate.startswith("0x") else int(native_rate)
        return cls(
            address=data["address"],
            symbol=data["symbol"],
            decimals=int(data["decimals"]),
            kind=data.get("kind") or data["symbol"],
            native_rate=native_rate,
        )


def fee_tokens_cache_key(chain_id: int) -> str:
    return f"fee_tokens:{chain_id}"


class FeeTokenResolver:
    """Fetches and orders the relay's fee tokens for one relay client."""

    def __init__(
        self,
        relay: RelayClient,
        cache: Optional[TTLCache] = None,
        default_symbol: Optional[str] = None,
    ) -> None:
        self.relay = relay
        self.cache = cache or TTLCache(default_ttl=settings.fee_token_cache_ttl_seconds)
        self.default_symbol = default_symbol or settings.default_fee_token

    async def fetch(
        self,
        address_or_symbol: Optional[str] = None,
        chain_id: Optional[int] = None,
    ) -> List[FeeToken]:
        """
        Return the chain's fee tokens with the preferred one first.

        Preference: ``address_or_symbol`` if given, else the configured
        default symbol, else ``ETH``. An unknown preference falls back to
        the relay's first token.
        """
        tokens = await self._load(chain_id or self.relay.chain_id)
        if not tokens:
            raise FeeTokenError("relay did not return any fee tokens.")

        wanted = address_or_symbol or self.default_symbol
        index = self._find(tokens, wanted)
        if index == -1:
            if wanted:
                logger.warning(
                    f"Fee token {wanted} not found. "
                    f"Falling back to {tokens[0].symbol} ({tokens[0].address})."
                )
            index = 0

        return [tokens[index], *tokens[:index], *tokens[index + 1:]]

    async def invalidate(self, chain_id: Optional[int] = None) -> None:
        """Drop cached tokens, e.g. when the caller switches chains."""
        if chain_id is None:
            await self.cache.clear()
            return
        await self.cache.delete(fee_tokens_cache_key(chain_id))

    async def _load(self, chain_id: int) -> List[FeeToken]:
        async def fetch_tokens() -> List[FeeToken]:
            capabilities = await self.relay.get_capabilities([chain_id])
            chain_capabilities = capabilities.get(chain_id) or {}
            raw_tokens = (chain_capabilities.get("fees") or {}).get("tokens") or []
            logger.debug(f"Loaded {len(raw_tokens)} fee token(s) for chain {chain_id}")
            return [FeeToken.from_rpc(token) for token in raw_tokens]

        return await self.cache.get_or_load(fee_tokens_cache_key(chain_id), fetch_tokens)

    @staticmethod
    def _find(tokens: List[FeeToken], wanted: Optional[str]) -> int:
        for index, token in enumerate(tokens):
            if wanted:
                if is_hex_address(wanted):
                    if is_address_equal(token.address, wanted):
                        return index
                elif token.symbol == wanted:
                    return index
            elif token.symbol == "ETH":
                return index
        return -1
