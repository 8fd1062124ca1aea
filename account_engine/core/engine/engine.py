"""
Account authorization engine.

Decides which key may authorize which action on a delegated account,
builds the payloads those keys sign, and keeps signed-but-unexecuted
authorizations (pre-calls) until the relay accepts the bundle that
carries them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from eth_account import Account as EthAccount
from eth_utils import encode_hex, keccak

from ...auth.siwe import (
    SignInWithEthereumLike,
    SignInWithEthereumResult,
    build_message,
    parse_siwe_request,
)
from ...cache import TTLCache
from ...config import Settings, settings as default_settings
from ...providers.relay import RelayClient, get_relay_client
from ..errors import (
    AccountImplementationNotFoundError,
    AccountNotFoundError,
    AdminKeyNotFoundError,
    AdminRevokeError,
    AuthorizedKeyNotFoundError,
    ExecutionError,
    KeyToAuthorizeNotFoundError,
    LastWebAuthnKeyError,
    RelayError,
    UnknownBundleIdError,
)
from ..execution.calls import Call, upgrade_proxy_account
from ..execution.intent_executor import IntentExecutor, contract_address, first_transaction_hash
from ..execution.models import CallsStatus
from ..fees.fee_tokens import FeeTokenResolver
from ..precalls.ledger import NullPreCallLedger, PreCall, PreCallLedger
from ..precalls.storage import default_storage
from ..wallet.key_resolver import get_authorized_execute_key
from ..wallet.models import (
    Account,
    Key,
    KeyRole,
    KeyType,
    WebAuthnP256Key,
    key_from_relay,
)
from ..wallet.permissions_request import PermissionsRequestLike, to_key
from ..wallet.signer import (
    LocalSigner,
    Signer,
    create_headless_webauthn_key,
    personal_message_digest,
    sign_secp256k1,
    typed_data_digest,
    wrap_signature,
)
from .models import (
    CreateAccountResult,
    GrantPermissionsResult,
    LoadAccountsResult,
    PrepareCallsResult,
    PrepareUpgradeAccountResult,
)
from .session import EngineSession


logger = logging.getLogger(__name__)

EMPTY_DIGEST = "0x"

BASE_CAPABILITIES: Dict[str, Any] = {
    "atomic": {"status": "supported"},
    "feeToken": {"supported": True, "tokens": []},
    "merchant": {"supported": True},
    "permissions": {"supported": True},
}


def default_label(address: str) -> str:
    return f"{address[:8]}…{address[-6:]}"


def signing_admin_key(account: Account) -> Key:
    """Admin key holding local material. Signing messages is limited to these."""
    for key in account.keys:
        if key.role == KeyRole.ADMIN and key.private_key is not None:
            return key
    raise AdminKeyNotFoundError()


class AccountEngine:
    """
    Key authorization and call bundle orchestration for delegated accounts.

    The engine holds no per-account state between calls. Pre-calls live in
    the injected ledger; anything a caller needs to carry from one action
    to the next lives in an ``EngineSession`` the caller owns.
    """

    def __init__(
        self,
        relay: Optional[RelayClient] = None,
        signer: Optional[Signer] = None,
        ledger: Optional[PreCallLedger] = None,
        fee_tokens: Optional[FeeTokenResolver] = None,
        settings: Optional[Settings] = None,
        mock: Optional[bool] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.relay = relay or get_relay_client()
        self.signer = signer or LocalSigner()
        if ledger is None:
            ledger = (
                PreCallLedger(default_storage())
                if self.settings.persist_pre_calls
                else NullPreCallLedger()
            )
        self.ledger = ledger
        self.fee_tokens = fee_tokens or FeeTokenResolver(
            self.relay,
            cache=TTLCache(default_ttl=self.settings.fee_token_cache_ttl_seconds),
            default_symbol=self.settings.default_fee_token,
        )
        self.executor = IntentExecutor(self.relay, self.signer)
        self.mock = self.settings.mock_mode if mock is None else mock

    @property
    def keystore_host(self) -> Optional[str]:
        return self.settings.keystore_host

    # Account lifecycle

    async def create_account(
        self,
        admins: Optional[Sequence[Key]] = None,
        email: bool = False,
        label: Optional[str] = None,
        permissions: Optional[PermissionsRequestLike] = None,
        sign_in_with_ethereum: Optional[SignInWithEthereumLike] = None,
        session: Optional[EngineSession] = None,
    ) -> CreateAccountResult:
        """
        Create a new account from an ephemeral EOA.

        The EOA only signs the delegation; afterwards the account is
        controlled by a WebAuthn admin key (headless in mock mode), any
        extra ``admins`` and an optional session key. When ``email`` is
        set, ``label`` is registered as the account's email address.
        """
        eoa = EthAccount.create()
        eoa_private_key = encode_hex(eoa.key)

        fee_tokens = await self.fee_tokens.fetch()
        admin_key = await self._create_admin_key(eoa.address, label)
        session_key = to_key(permissions, fee_tokens)

        keys: List[Key] = [admin_key, *(admins or [])]
        if session_key is not None:
            keys.append(session_key)

        await self.executor.upgrade_account(
            eoa_private_key=eoa_private_key,
            authorize_keys=keys,
            fee_token=fee_tokens[0].address,
        )
        account = Account(address=eoa.address, keys=keys)
        logger.info(f"Created account {account.address} with {len(keys)} key(s)")

        if session is not None:
            session.address = account.address
            if self.mock:
                session.admin_key = admin_key

        if email and label:
            await self.relay.set_email(label, account.address)

        siwe_result = None
        if sign_in_with_ethereum is not None:
            message = await build_message(sign_in_with_ethereum, account.address, self.relay.chain_id)
            siwe_result = SignInWithEthereumResult(
                message=message,
                signature=sign_secp256k1(personal_message_digest(message), eoa_private_key),
            )

        return CreateAccountResult(account=account, sign_in_with_ethereum=siwe_result)

    async def load_accounts(
        self,
        permissions: Optional[PermissionsRequestLike] = None,
        sign_in_with_ethereum: Optional[SignInWithEthereumLike] = None,
        address: Optional[str] = None,
        key: Optional[Key] = None,
        session: Optional[EngineSession] = None,
    ) -> LoadAccountsResult:
        """
        Log in to an existing account, discovering it when not known yet.

        Optionally authorizes a new session key (queued as a pre-call) or
        asserts identity with SIWE using the same user interaction.
        """
        siwe_request = parse_siwe_request(sign_in_with_ethereum)

        session_key = None
        if permissions is not None:
            fee_tokens = await self.fee_tokens.fetch()
            session_key = to_key(permissions, fee_tokens)

        # What the admin key has to sign, if anything.
        context: Optional[Dict[str, Any]] = None
        digest = EMPTY_DIGEST
        digest_type: Optional[str] = None
        siwe_message: Optional[str] = None
        if session_key is not None:
            prepared = await self.executor.prepare(
                address=None,
                key=None,
                authorize_keys=[session_key],
                fee_token=fee_tokens[0].address,
                pre_call=True,
            )
            context, digest, digest_type = prepared.context, prepared.digest, "precall"
        elif siwe_request is not None and address:
            siwe_message = await build_message(siwe_request, address, self.relay.chain_id)
            digest, digest_type = personal_message_digest(siwe_message), "siwe"

        discovered_signature: Optional[str] = None
        credential_id: Optional[str] = None
        known_key = key
        if self.mock:
            if session is None or not session.address:
                raise AccountNotFoundError("address_internal not found.")
            address = session.address
            known_key = session.admin_key
        elif address and key is not None:
            credential_id = getattr(key, "credential_id", None)
        else:
            credential = await self.signer.discover(digest, rp_id=self.keystore_host)
            address = credential.address
            credential_id = credential.credential_id
            discovered_signature = credential.signature

        keys = await self._bind_keys(address, known_key, credential_id)
        if session_key is not None:
            keys.append(session_key)
        account = Account(address=address, keys=keys)

        signature: Optional[str] = None
        if digest != EMPTY_DIGEST:
            admin_key = account.get_key(role=KeyRole.ADMIN)
            if admin_key is None:
                raise AdminKeyNotFoundError()
            if discovered_signature is not None:
                signature = wrap_signature(discovered_signature, admin_key)
            else:
                signature = await self.executor.sign(digest, admin_key)

        pre_calls: List[PreCall] = []
        if context is not None and signature and digest_type == "precall":
            pre_calls = [PreCall(context=context, signature=signature)]
            await self.ledger.add(pre_calls, account.address)

        siwe_result = None
        if siwe_request is not None:
            if digest_type == "siwe" and siwe_message and signature:
                siwe_result = SignInWithEthereumResult(message=siwe_message, signature=signature)
            else:
                message = await build_message(siwe_request, account.address, self.relay.chain_id)
                admin_key = account.get_key(role=KeyRole.ADMIN, can_sign=True)
                if admin_key is None:
                    raise AdminKeyNotFoundError()
                siwe_result = SignInWithEthereumResult(
                    message=message,
                    signature=await self.executor.sign(personal_message_digest(message), admin_key),
                )

        logger.info(f"Loaded account {account.address} ({len(pre_calls)} pre-call(s) queued)")
        return LoadAccountsResult(
            accounts=[account],
            pre_calls=pre_calls,
            sign_in_with_ethereum=siwe_result,
        )

    async def prepare_upgrade_account(
        self,
        address: str,
        email: bool = False,
        label: Optional[str] = None,
        permissions: Optional[PermissionsRequestLike] = None,
        session: Optional[EngineSession] = None,
    ) -> PrepareUpgradeAccountResult:
        """
        First half of upgrading an existing EOA.

        The EOA owner signs the returned ``digests`` (``auth`` and ``exec``)
        and hands them to ``upgrade_account``.
        """
        fee_tokens = await self.fee_tokens.fetch()
        admin_key = await self._create_admin_key(address, label)
        session_key = to_key(permissions, fee_tokens)

        keys: List[Key] = [admin_key]
        if session_key is not None:
            keys.append(session_key)

        prepared = await self.executor.prepare_upgrade(
            address=address,
            authorize_keys=keys,
            fee_token=fee_tokens[0].address,
        )

        if session is not None:
            session.address = address
            if email:
                session.email = label
            if self.mock:
                session.admin_key = admin_key

        return PrepareUpgradeAccountResult(
            context=prepared["context"],
            digests=prepared["digests"],
            keys=keys,
        )

    async def upgrade_account(
        self,
        account: Account,
        context: Dict[str, Any],
        signatures: Dict[str, str],
        session: Optional[EngineSession] = None,
    ) -> Account:
        await self.relay.upgrade_account(context, signatures)

        if session is not None and session.email:
            await self.relay.set_email(session.email, account.address)
            session.email = None

        logger.info(f"Upgraded account {account.address}")
        return account

    async def update_account(self, account: Account) -> str:
        """Point the account proxy at the relay's latest implementation."""
        key = signing_admin_key(account)

        chain_id = self.relay.chain_id
        capabilities = await self.relay.get_capabilities([chain_id])
        implementation = contract_address(capabilities.get(chain_id) or {}, "accountImplementation")
        if not implementation:
            raise AccountImplementationNotFoundError()

        fee_tokens = await self.fee_tokens.fetch()
        return await self.executor.send_calls(
            address=account.address,
            key=key,
            calls=[upgrade_proxy_account(implementation, account.address)],
            fee_token=fee_tokens[0].address,
        )

    # Keys

    async def grant_permissions(
        self,
        account: Account,
        permissions: PermissionsRequestLike,
    ) -> GrantPermissionsResult:
        """
        Authorize a session key as a pre-call.

        Nothing reaches the chain here; the signed authorization rides
        along with the account's next call bundle.
        """
        fee_tokens = await self.fee_tokens.fetch()
        session_key = to_key(permissions, fee_tokens)
        if session_key is None:
            raise KeyToAuthorizeNotFoundError()

        admin_key = account.get_key(role=KeyRole.ADMIN, can_sign=True)
        if admin_key is None:
            raise AdminKeyNotFoundError()

        prepared = await self.executor.prepare(
            address=account.address,
            key=admin_key,
            authorize_keys=[session_key],
            fee_token=fee_tokens[0].address,
            pre_call=True,
        )
        pre_calls = [await self.executor.sign_pre_call(prepared, admin_key)]
        await self.ledger.add(pre_calls, account.address)

        logger.info(f"Queued session key {session_key.id} for {account.address}")
        return GrantPermissionsResult(key=session_key, pre_calls=pre_calls)

    async def grant_admin(
        self,
        account: Account,
        key: Key,
        fee_token: Optional[str] = None,
    ) -> Key:
        """Authorize an admin key on-chain and wait for confirmation."""
        signer_key = account.get_key(role=KeyRole.ADMIN, can_sign=True)
        if signer_key is None:
            raise AdminKeyNotFoundError()

        fee_tokens = await self.fee_tokens.fetch(fee_token)
        bundle_id = await self.executor.send_calls(
            address=account.address,
            key=signer_key,
            authorize_keys=[key],
            fee_token=fee_tokens[0].address,
        )
        await self.executor.wait_for_calls_status(
            bundle_id,
            polling_interval=self.settings.calls_status_polling_interval_seconds,
            timeout=self.settings.calls_status_timeout_seconds,
        )
        return key

    async def revoke_admin(
        self,
        account: Account,
        key_id: str,
        fee_token: Optional[str] = None,
    ) -> None:
        key = account.find_key(key_id)
        if key is None:
            return

        if key.type == KeyType.WEBAUTHN_P256 and len(account.webauthn_keys) == 1:
            raise LastWebAuthnKeyError()

        await self._revoke(account, key, fee_token)

    async def revoke_permissions(
        self,
        account: Account,
        key_id: str,
        fee_token: Optional[str] = None,
    ) -> None:
        key = account.find_key(key_id)
        if key is None:
            return

        if key.role == KeyRole.ADMIN:
            raise AdminRevokeError()

        await self._revoke(account, key, fee_token)

    async def get_keys(self, account: Account) -> List[Key]:
        """On-chain keys followed by local ones, unique by public key."""
        onchain = [key_from_relay(k) for k in await self.relay.get_keys(account.address)]
        seen = set()
        keys: List[Key] = []
        for key in [*onchain, *account.keys]:
            public_key = key.public_key.lower()
            if public_key in seen:
                continue
            seen.add(public_key)
            keys.append(key)
        return keys

    # Calls

    async def prepare_calls(
        self,
        account: Account,
        calls: Sequence[Call],
        fee_token: Optional[str] = None,
        pre_calls: Optional[Sequence[PreCall]] = None,
        merchant_rpc_url: Optional[str] = None,
        key: Optional[Key] = None,
    ) -> PrepareCallsResult:
        """
        Prepare a bundle for an external signer.

        Pending pre-calls are attached unless ``pre_calls`` is given. The
        result goes to ``send_prepared_calls`` together with a signature
        over its ``digest``.
        """
        key = key or get_authorized_execute_key(account, calls)
        if key is None:
            raise AuthorizedKeyNotFoundError()

        if pre_calls is None:
            pre_calls = await self.ledger.get(account.address)

        fee_tokens = await self.fee_tokens.fetch(fee_token)
        prepared = await self.executor.prepare(
            address=account.address,
            key=key,
            calls=calls,
            fee_token=fee_tokens[0].address,
            pre_calls=pre_calls,
            merchant_rpc_url=merchant_rpc_url,
        )
        return PrepareCallsResult(
            context=prepared.context,
            digest=prepared.digest,
            key=key,
            chain_id=prepared.chain_id,
            typed_data=prepared.typed_data,
            capabilities=prepared.capabilities,
            relay=prepared.relay,
            account=account,
            calls=list(calls),
        )

    async def send_prepared_calls(
        self,
        prepared: PrepareCallsResult,
        signature: str,
    ) -> str:
        bundle_id = await self.executor.send_prepared(prepared, signature)
        if prepared.account is not None:
            await self.ledger.clear(prepared.account.address)
        return bundle_id

    async def send_calls(
        self,
        account: Account,
        calls: Sequence[Call],
        fee_token: Optional[str] = None,
        permissions_id: Optional[str] = None,
        pre_calls: Optional[Sequence[PreCall]] = None,
        merchant_rpc_url: Optional[str] = None,
        as_tx_hash: bool = False,
    ) -> str:
        """
        Prepare, sign and submit ``calls``. Returns the bundle id.

        Pending pre-calls go out with the bundle and are cleared once the
        relay accepts it. With ``as_tx_hash`` the call waits for
        confirmation and returns the first transaction hash instead; the
        pre-calls are then kept until the bundle is confirmed, so a timed
        out or failed bundle can be retried with them.
        """
        key = get_authorized_execute_key(account, calls, permissions_id=permissions_id)
        if key is None:
            raise AuthorizedKeyNotFoundError()

        if pre_calls is None:
            pre_calls = await self.ledger.get(account.address)

        fee_tokens = await self.fee_tokens.fetch(fee_token)
        bundle_id = await self.executor.send_calls(
            address=account.address,
            key=key,
            calls=calls,
            fee_token=fee_tokens[0].address,
            pre_calls=pre_calls,
            merchant_rpc_url=merchant_rpc_url,
        )

        if not as_tx_hash:
            await self.ledger.clear(account.address)
            return bundle_id

        status = await self.executor.wait_for_calls_status(
            bundle_id,
            polling_interval=self.settings.calls_status_polling_interval_seconds,
            timeout=self.settings.calls_status_timeout_seconds,
        )
        await self.ledger.clear(account.address)
        tx_hash = first_transaction_hash(status)
        if tx_hash is None:
            raise UnknownBundleIdError(bundle_id)
        return tx_hash

    async def get_calls_status(self, bundle_id: str) -> CallsStatus:
        return await self.executor.get_calls_status(bundle_id)

    async def get_capabilities(self, chain_ids: Optional[Sequence[int]] = None) -> Dict[int, Dict[str, Any]]:
        """Wallet capabilities per chain. Unreachable chains report the base set."""
        result: Dict[int, Dict[str, Any]] = {}
        for chain_id in chain_ids or [self.relay.chain_id]:
            capabilities = dict(BASE_CAPABILITIES)
            try:
                relay_capabilities = await self.relay.get_capabilities([chain_id])
            except (RelayError, httpx.HTTPError) as exc:
                logger.warning(f"Capabilities unavailable for chain {chain_id}: {exc}")
            else:
                tokens = ((relay_capabilities.get(chain_id) or {}).get("fees") or {}).get("tokens") or []
                capabilities["feeToken"] = {"supported": True, "tokens": tokens}
            result[chain_id] = capabilities
        return result

    # Signing

    async def sign_personal_message(self, account: Account, data: Any) -> str:
        key = signing_admin_key(account)
        return await self.executor.sign(personal_message_digest(data), key)

    async def sign_typed_data(self, account: Account, data: Any) -> str:
        key = signing_admin_key(account)
        return await self.executor.sign(typed_data_digest(data), key)

    async def verify_email(
        self,
        account: Account,
        chain_id: int,
        email: str,
        token: str,
        wallet_address: str,
    ) -> None:
        key = signing_admin_key(account)
        payload = encode_hex(keccak(text=f"{email}{token}"))
        signature = await self.executor.sign(payload, key)
        await self.relay.verify_email(
            chain_id=chain_id,
            email=email,
            signature=signature,
            token=token,
            wallet_address=wallet_address,
        )

    # Internals

    async def _create_admin_key(self, address: str, label: Optional[str]) -> Key:
        if self.mock:
            return create_headless_webauthn_key(rp_id=self.keystore_host)
        return await self.signer.create_credential(
            label or default_label(address),
            user_id=address,
            rp_id=self.keystore_host,
        )

    async def _bind_keys(
        self,
        address: str,
        known_key: Optional[Key],
        credential_id: Optional[str],
    ) -> List[Key]:
        """
        Fetch the account's keys and bind the admin credential.

        The first key returned by the relay is taken to be the WebAuthn
        admin key the user just authenticated with.
        A known key replaces it only when it is that same WebAuthn key;
        otherwise the relay's copy, without local material, is kept.
        """
        keys = [key_from_relay(k) for k in await self.relay.get_keys(address)]
        if not keys:
            return [known_key] if known_key is not None else []

        first = keys[0]
        if isinstance(first, WebAuthnP256Key):
            if known_key is not None and known_key.public_key.lower() == first.public_key.lower():
                keys[0] = known_key
            else:
                first.credential_id = credential_id
                first.rp_id = self.keystore_host
        return keys

    async def _revoke(self, account: Account, key: Key, fee_token: Optional[str]) -> None:
        signer_key = account.get_key(role=KeyRole.ADMIN, can_sign=True)
        if signer_key is None:
            raise AdminKeyNotFoundError()

        try:
            fee_tokens = await self.fee_tokens.fetch(fee_token)
            bundle_id = await self.executor.send_calls(
                address=account.address,
                key=signer_key,
                revoke_keys=[key],
                fee_token=fee_tokens[0].address,
            )
            await self.executor.wait_for_calls_status(
                bundle_id,
                polling_interval=self.settings.calls_status_polling_interval_seconds,
                timeout=self.settings.calls_status_timeout_seconds,
            )
        except ExecutionError as exc:
            if exc.abi_error == "KeyDoesNotExist":
                logger.info(f"Key {key.id} already absent on {account.address}")
                return
            raise
