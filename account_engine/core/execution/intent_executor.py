"""
Intent execution through the relay.

Prepare a call bundle, sign its digest with an account key, submit it, and
optionally wait for a final status.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from eth_account import Account as EthAccount

from ...config import settings
from ...providers.relay import RelayClient, get_relay_client
from ..errors import BundleFailedError, CallsStatusTimeoutError, QuoteExpiredError
from ..precalls.ledger import PreCall
from ..wallet.models import Key
from ..wallet.signer import LocalSigner, Signer, sign_secp256k1, wrap_signature
from .calls import Call
from .models import CallsStatus, Quote, parse_quote


logger = logging.getLogger(__name__)


@dataclass
class PreparedCalls:
    """A relay-prepared bundle waiting for its signature."""
    context: Dict[str, Any]
    digest: str
    key: Optional[Key]
    chain_id: int
    typed_data: Optional[Dict[str, Any]] = None
    capabilities: Dict[str, Any] = field(default_factory=dict)
    # Relay the bundle was prepared against; it is sent through the same one.
    relay: Optional[RelayClient] = field(default=None, repr=False, compare=False)

    @property
    def quote(self) -> Optional[Quote]:
        return parse_quote(self.context.get("quote"))

    @property
    def nonce(self) -> Optional[int]:
        quote = self.quote
        return quote.nonce if quote else None


@dataclass
class UpgradeResult:
    context: Dict[str, Any]
    signatures: Dict[str, str]


def build_capabilities(
    *,
    fee_token: Optional[str] = None,
    nonce: Optional[int] = None,
    authorize_keys: Sequence[Key] = (),
    revoke_keys: Sequence[Key] = (),
    pre_calls: Sequence[PreCall] = (),
    pre_call: bool = False,
) -> Dict[str, Any]:
    meta: Dict[str, Any] = {}
    if fee_token:
        meta["feeToken"] = fee_token
    if nonce is not None:
        meta["nonce"] = hex(nonce)

    capabilities: Dict[str, Any] = {"meta": meta}
    if authorize_keys:
        capabilities["authorizeKeys"] = [key.to_relay() for key in authorize_keys]
    if revoke_keys:
        capabilities["revokeKeys"] = [{"hash": key.hash} for key in revoke_keys]
    if pre_calls:
        capabilities["preCalls"] = [p.to_rpc() for p in pre_calls]
    if pre_call:
        capabilities["preCall"] = True
    return capabilities


class IntentExecutor:
    """
    Drives call bundles through the relay for one account at a time.
    """

    def __init__(
        self,
        relay: Optional[RelayClient] = None,
        signer: Optional[Signer] = None,
    ) -> None:
        self.relay = relay or get_relay_client()
        self.signer = signer or LocalSigner()

    async def prepare(
        self,
        *,
        address: Optional[str],
        key: Optional[Key],
        calls: Sequence[Call] = (),
        fee_token: Optional[str] = None,
        authorize_keys: Sequence[Key] = (),
        revoke_keys: Sequence[Key] = (),
        pre_calls: Sequence[PreCall] = (),
        pre_call: bool = False,
        nonce: Optional[int] = None,
        merchant_rpc_url: Optional[str] = None,
        chain_id: Optional[int] = None,
    ) -> PreparedCalls:
        relay = self.relay.with_url(merchant_rpc_url) if merchant_rpc_url else self.relay
        capabilities = build_capabilities(
            fee_token=fee_token,
            nonce=nonce,
            authorize_keys=authorize_keys,
            revoke_keys=revoke_keys,
            pre_calls=pre_calls,
            pre_call=pre_call,
        )
        result = await relay.prepare_calls(
            list(calls),
            capabilities,
            address=address,
            key=key.to_key_ref() if key else None,
            chain_id=chain_id,
        )
        return PreparedCalls(
            context=result.get("context") or {},
            digest=result["digest"],
            key=key,
            chain_id=chain_id or relay.chain_id,
            typed_data=result.get("typedData"),
            capabilities=result.get("capabilities") or {},
            relay=relay,
        )

    async def sign(self, payload: str, key: Key, *, wrap: bool = True) -> str:
        signature = await self.signer.sign(payload, key)
        return wrap_signature(signature, key) if wrap else signature

    async def sign_pre_call(self, prepared: PreparedCalls, key: Key) -> PreCall:
        """Sign a pre-call-only bundle into a queueable ``PreCall``."""
        signature = await self.sign(prepared.digest, key)
        return PreCall(context=prepared.context, signature=signature)

    async def send_prepared(
        self,
        prepared: PreparedCalls,
        signature: str,
        now: Optional[int] = None,
    ) -> str:
        """Submit a signed bundle and return its id. Expired quotes are refused."""
        if prepared.key is None:
            raise ValueError("prepared calls carry no key to submit with")

        quote = prepared.quote
        if quote is not None and quote.is_expired(now):
            raise QuoteExpiredError(quote.ttl)

        relay = prepared.relay or self.relay
        result = await relay.send_prepared_calls(
            prepared.context,
            prepared.key.to_key_ref(),
            signature,
        )
        bundle_id = result["id"]
        logger.info(f"Relay accepted call bundle {bundle_id}")
        return bundle_id

    async def send_calls(
        self,
        *,
        address: str,
        key: Key,
        calls: Sequence[Call] = (),
        **kwargs: Any,
    ) -> str:
        prepared = await self.prepare(address=address, key=key, calls=calls, **kwargs)
        signature = await self.sign(prepared.digest, key, wrap=False)
        return await self.send_prepared(prepared, signature)

    async def get_calls_status(self, bundle_id: str) -> CallsStatus:
        return CallsStatus.from_rpc(await self.relay.get_calls_status(bundle_id))

    async def wait_for_calls_status(
        self,
        bundle_id: str,
        polling_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> CallsStatus:
        """
        Poll until the bundle reaches a final status.

        Raises ``BundleFailedError`` for unsuccessful final statuses and
        ``CallsStatusTimeoutError`` when ``timeout`` elapses first.
        """
        interval = polling_interval or settings.calls_status_polling_interval_seconds
        timeout = timeout or settings.calls_status_timeout_seconds
        deadline = time.monotonic() + timeout

        while True:
            status = await self.get_calls_status(bundle_id)
            if not status.is_pending:
                if not status.is_success:
                    raise BundleFailedError(bundle_id, status.status)
                return status

            if time.monotonic() + interval > deadline:
                raise CallsStatusTimeoutError(bundle_id, timeout)
            await asyncio.sleep(interval)

    async def upgrade_account(
        self,
        *,
        eoa_private_key: str,
        authorize_keys: Sequence[Key],
        fee_token: Optional[str] = None,
        chain_id: Optional[int] = None,
    ) -> UpgradeResult:
        """Delegate an EOA to the account implementation, signing as the EOA."""
        prepared = await self.prepare_upgrade(
            address=EthAccount.from_key(eoa_private_key).address,
            authorize_keys=authorize_keys,
            fee_token=fee_token,
            chain_id=chain_id,
        )
        digests = prepared["digests"]
        signatures = {
            "auth": sign_secp256k1(digests["auth"], eoa_private_key),
            "exec": sign_secp256k1(digests["exec"], eoa_private_key),
        }
        await self.relay.upgrade_account(prepared["context"], signatures)
        return UpgradeResult(context=prepared["context"], signatures=signatures)

    async def prepare_upgrade(
        self,
        *,
        address: str,
        authorize_keys: Sequence[Key],
        fee_token: Optional[str] = None,
        chain_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        chain_id = chain_id or self.relay.chain_id
        capabilities = await self.relay.get_capabilities([chain_id])
        delegation = contract_address(capabilities.get(chain_id) or {}, "accountProxy")
        if not delegation:
            raise ValueError(f"relay reports no account proxy for chain {chain_id}")

        return await self.relay.prepare_upgrade_account(
            address,
            [key.to_relay() for key in authorize_keys],
            delegation,
            fee_token=fee_token,
            chain_id=chain_id,
        )


def contract_address(capabilities: Dict[str, Any], name: str) -> Optional[str]:
    contract = (capabilities.get("contracts") or {}).get(name)
    if isinstance(contract, dict):
        return contract.get("address")
    return contract


def first_transaction_hash(status: CallsStatus) -> Optional[str]:
    return status.receipts[0].transaction_hash if status.receipts else None
