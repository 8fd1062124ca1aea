"""
JSON-RPC client for the relay (orchestrator) service.

Thin transport: encodes requests, decodes responses, and turns JSON-RPC
errors into ``RelayError`` / ``ExecutionError``. Signing and waiting live
in ``core.execution.intent_executor``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .base import Provider
from ..config import settings
from ..core.errors import ExecutionError, RelayError
from ..core.execution.calls import Call, selector_from_signature


logger = logging.getLogger(__name__)

# JSON-RPC code the relay uses for reverted executions.
EXECUTION_REVERTED_CODE = 3

_KNOWN_ERROR_SELECTORS: Dict[str, str] = {
    "0xd0d5039b": "Unauthorized",
    selector_from_signature("Unauthorized()"): "Unauthorized",
    selector_from_signature("KeyDoesNotExist()"): "KeyDoesNotExist",
}


def parse_abi_error(message: Optional[str], data: Any) -> Optional[str]:
    """Name of the revert reason carried by a relay execution error."""
    if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
        known = _KNOWN_ERROR_SELECTORS.get(data[:10].lower())
        if known:
            return known

    text = message or (data if isinstance(data, str) else "") or ""
    for prefix in ("execution reverted:", "execution reverted"):
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    name = text.split("(")[0].strip()
    if not name or " " in name:
        return None
    return name


def raise_for_rpc_error(error: Dict[str, Any]) -> None:
    code = error.get("code")
    message = error.get("message") or "relay request failed"
    data = error.get("data")

    if code == EXECUTION_REVERTED_CODE:
        raise ExecutionError(
            "An error occurred while executing calls.",
            abi_error=parse_abi_error(message, data),
            code=code,
            data=data,
        )
    raise RelayError(message, code=code, data=data)


@dataclass
class RelayConfig:
    rpc_url: str
    chain_id: int


class RelayClient(Provider):
    name = "relay"
    timeout_s = 30

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or RelayConfig(
            rpc_url=settings.relay_rpc_url,
            chain_id=settings.chain_id,
        )
        self.timeout_s = settings.request_timeout_seconds
        self._client = client
        self._request_id = 0

    @property
    def chain_id(self) -> int:
        return self._config.chain_id

    @property
    def rpc_url(self) -> str:
        return self._config.rpc_url

    def with_url(self, rpc_url: str) -> "RelayClient":
        """Client for another relay-compatible endpoint (e.g. a merchant RPC)."""
        return RelayClient(replace(self._config, rpc_url=rpc_url), client=self._client)

    async def ready(self) -> bool:
        return bool(self._config.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Relay RPC URL not configured"}

        try:
            version = await self.health()
            return {"status": "healthy", "version": version}
        except Exception as exc:
            return {"status": "error", "reason": str(exc)}

    async def health(self) -> Any:
        return await self._rpc_call("health", [])

    async def get_capabilities(
        self,
        chain_ids: Optional[Sequence[int]] = None,
    ) -> Dict[int, Dict[str, Any]]:
        result = await self._rpc_call(
            "wallet_getCapabilities",
            [list(chain_ids or [self.chain_id])],
        )
        return {_to_int(chain_id): value for chain_id, value in (result or {}).items()}

    async def get_keys(self, address: str, chain_id: Optional[int] = None) -> List[Dict[str, Any]]:
        result = await self._rpc_call(
            "wallet_getKeys",
            [{"address": address, "chain_id": chain_id or self.chain_id}],
        )
        return list(result or [])

    async def prepare_calls(
        self,
        calls: Sequence[Call],
        capabilities: Dict[str, Any],
        *,
        address: Optional[str] = None,
        key: Optional[Dict[str, Any]] = None,
        chain_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "calls": [call.to_rpc_dict() for call in calls],
            "capabilities": capabilities,
            "chainId": chain_id or self.chain_id,
        }
        if address:
            params["from"] = address
        if key:
            params["key"] = key
        result = await self._rpc_call("wallet_prepareCalls", [params])
        if not isinstance(result, dict) or "digest" not in result:
            raise RelayError("Invalid relay response for wallet_prepareCalls")
        return result

    async def send_prepared_calls(
        self,
        context: Dict[str, Any],
        key: Dict[str, Any],
        signature: str,
        capabilities: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "context": {
                k: v for k, v in context.items() if k in ("quote", "preCall")
            },
            "key": key,
            "signature": signature,
        }
        if capabilities:
            params["capabilities"] = capabilities
        result = await self._rpc_call("wallet_sendPreparedCalls", [params])
        if not isinstance(result, dict) or "id" not in result:
            raise RelayError("Invalid relay response for wallet_sendPreparedCalls")
        return result

    async def get_calls_status(self, bundle_id: str) -> Dict[str, Any]:
        result = await self._rpc_call("wallet_getCallsStatus", [bundle_id])
        if not isinstance(result, dict):
            raise RelayError("Invalid relay response for wallet_getCallsStatus")
        return result

    async def prepare_upgrade_account(
        self,
        address: str,
        authorize_keys: Sequence[Dict[str, Any]],
        delegation: str,
        *,
        fee_token: Optional[str] = None,
        chain_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        capabilities: Dict[str, Any] = {"authorizeKeys": list(authorize_keys)}
        if fee_token:
            capabilities["feeToken"] = fee_token
        result = await self._rpc_call(
            "wallet_prepareUpgradeAccount",
            [{
                "address": address,
                "capabilities": capabilities,
                "chainId": chain_id or self.chain_id,
                "delegation": delegation,
            }],
        )
        if not isinstance(result, dict) or "digests" not in result:
            raise RelayError("Invalid relay response for wallet_prepareUpgradeAccount")
        return result

    async def upgrade_account(self, context: Dict[str, Any], signatures: Dict[str, str]) -> None:
        await self._rpc_call(
            "wallet_upgradeAccount",
            [{"context": context, "signatures": signatures}],
        )

    async def set_email(self, email: str, wallet_address: str) -> None:
        await self._rpc_call(
            "account_setEmail",
            [{"email": email, "walletAddress": wallet_address}],
        )

    async def verify_email(
        self,
        chain_id: int,
        email: str,
        signature: str,
        token: str,
        wallet_address: str,
    ) -> None:
        await self._rpc_call(
            "account_verifyEmail",
            [{
                "chainId": chain_id,
                "email": email,
                "signature": signature,
                "token": token,
                "walletAddress": wallet_address,
            }],
        )

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _rpc_call(self, method: str, params: list[Any]) -> Any:
        if not await self.ready():
            raise RelayError("Relay provider is not configured")

        if not self._client or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)

        self._request_id += 1
        logger.debug(f"relay -> {method}")
        response = await self._client.post(
            self._config.rpc_url,
            json={"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params},
        )
        response.raise_for_status()
        payload = response.json()
        if payload.get("error"):
            raise_for_rpc_error(payload["error"])
        return payload.get("result")


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


_relay_client: Optional[RelayClient] = None


def get_relay_client() -> RelayClient:
    global _relay_client
    if _relay_client is None:
        _relay_client = RelayClient()
    return _relay_client
