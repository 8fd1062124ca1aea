"""Shared fixtures: an in-memory relay and ready-made accounts."""

from typing import Any, Dict, List, Optional, Sequence

import pytest
from eth_account import Account as EthAccount
from eth_utils import encode_hex, keccak

from account_engine.config import Settings
from account_engine.core.engine import AccountEngine, EngineSession
from account_engine.core.errors import ExecutionError
from account_engine.core.execution.calls import Call
from account_engine.core.fees.fee_tokens import FeeTokenResolver
from account_engine.core.precalls import MemoryStorage, PreCallLedger
from account_engine.core.wallet.models import Account, KeyRole, Secp256k1Key, key_from_relay
from account_engine.core.wallet.signer import LocalSigner


CHAIN_ID = 84532
ACCOUNT_PROXY = "0x1111111111111111111111111111111111111111"
ACCOUNT_IMPLEMENTATION = "0x2222222222222222222222222222222222222222"
USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"

FEE_TOKENS = [
    {
        "address": "0x0000000000000000000000000000000000000000",
        "decimals": 18,
        "kind": "ETH",
        "nativeRate": hex(10**18),
        "symbol": "ETH",
    },
    {
        "address": USDC,
        "decimals": 6,
        "kind": "USDC",
        "nativeRate": hex(4 * 10**14),
        "symbol": "USDC",
    },
]


class FakeRelay:
    """
    In-memory stand-in for ``RelayClient``.

    Keys authorized or revoked by a bundle are applied when the bundle is
    sent. Revoking a key the account no longer has fails the way the
    account contract does (``KeyDoesNotExist``).
    """

    def __init__(self, chain_id: int = CHAIN_ID) -> None:
        self.chain_id = chain_id
        self.keys: Dict[str, List[Dict[str, Any]]] = {}
        self.prepared: List[Dict[str, Any]] = []
        self.sent: List[Dict[str, Any]] = []
        self.emails: List[Dict[str, str]] = []
        self.urls: List[str] = []
        self.status = 200
        self.capabilities_calls = 0
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._counter = 0

    def with_url(self, rpc_url: str) -> "FakeRelay":
        self.urls.append(rpc_url)
        return self

    def _next_digest(self) -> str:
        self._counter += 1
        return encode_hex(keccak(text=f"digest-{self._counter}"))

    async def get_capabilities(self, chain_ids: Optional[Sequence[int]] = None) -> Dict[int, Dict[str, Any]]:
        self.capabilities_calls += 1
        return {
            chain_id: {
                "contracts": {
                    "accountProxy": {"address": ACCOUNT_PROXY},
                    "accountImplementation": {"address": ACCOUNT_IMPLEMENTATION},
                },
                "fees": {"tokens": list(FEE_TOKENS)},
            }
            for chain_id in chain_ids or [self.chain_id]
        }

    async def get_keys(self, address: str, chain_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return list(self.keys.get(address.lower(), []))

    async def prepare_calls(
        self,
        calls: Sequence[Call],
        capabilities: Dict[str, Any],
        *,
        address: Optional[str] = None,
        key: Optional[Dict[str, Any]] = None,
        chain_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        digest = self._next_digest()
        self.prepared.append({
            "address": address,
            "calls": list(calls),
            "capabilities": capabilities,
            "digest": digest,
            "key": key,
        })
        if capabilities.get("preCall"):
            context = {"preCall": {"eoa": address, "nonce": hex(self._counter), "digest": digest}}
        else:
            context = {
                "quote": {
                    "chainId": hex(chain_id or self.chain_id),
                    "intent": {"eoa": address, "nonce": hex(self._counter)},
                    "nativeFeeEstimate": {"maxFeePerGas": "0x1", "maxPriorityFeePerGas": "0x1"},
                    "ttl": 4102444800,
                    "ethPrice": "0x1",
                    "paymentTokenDecimals": 18,
                    "orchestrator": "0x3333333333333333333333333333333333333333",
                    "hash": digest,
                    "r": "0x1",
                    "s": "0x2",
                },
            }
            self._pending[digest] = {"address": address, "calls": list(calls), "capabilities": capabilities}
        return {"context": context, "digest": digest, "capabilities": {}, "typedData": {}}

    async def send_prepared_calls(
        self,
        context: Dict[str, Any],
        key: Dict[str, Any],
        signature: str,
        capabilities: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        quote_hash = context["quote"]["hash"]
        if quote_hash not in self._pending:
            raise ExecutionError("An error occurred while executing calls.", abi_error="InvalidNonce", code=3)
        bundle = self._pending.pop(quote_hash)

        address = bundle["address"].lower()
        keys = self.keys.setdefault(address, [])
        for revoke in bundle["capabilities"].get("revokeKeys") or []:
            remaining = [k for k in keys if _relay_key_hash(k) != revoke["hash"]]
            if len(remaining) == len(keys):
                raise ExecutionError("An error occurred while executing calls.", abi_error="KeyDoesNotExist", code=3)
            keys[:] = remaining
        keys.extend(bundle["capabilities"].get("authorizeKeys") or [])

        bundle_id = f"0xbundle{len(self.sent) + 1}"
        self.sent.append({**bundle, "id": bundle_id, "key": key, "signature": signature})
        return {"id": bundle_id}

    async def get_calls_status(self, bundle_id: str) -> Dict[str, Any]:
        receipts = []
        if self.status == 200:
            receipts = [{"transactionHash": "0x" + "ab" * 32, "status": "0x1", "blockNumber": "0x10"}]
        return {"id": bundle_id, "status": self.status, "receipts": receipts}

    async def prepare_upgrade_account(
        self,
        address: str,
        authorize_keys: Sequence[Dict[str, Any]],
        delegation: str,
        *,
        fee_token: Optional[str] = None,
        chain_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        return {
            "context": {"address": address, "authorizeKeys": list(authorize_keys), "delegation": delegation},
            "digests": {"auth": self._next_digest(), "exec": self._next_digest()},
        }

    async def upgrade_account(self, context: Dict[str, Any], signatures: Dict[str, str]) -> None:
        self.keys[context["address"].lower()] = list(context["authorizeKeys"])

    async def set_email(self, email: str, wallet_address: str) -> None:
        self.emails.append({"email": email, "walletAddress": wallet_address})

    async def verify_email(self, chain_id, email, signature, token, wallet_address) -> None:
        self.emails.append({"email": email, "token": token, "signature": signature})


def _relay_key_hash(relay_key: Dict[str, Any]) -> str:
    return key_from_relay(relay_key).hash


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
def engine_settings() -> Settings:
    return Settings(
        chain_id=CHAIN_ID,
        calls_status_polling_interval_seconds=0.01,
        calls_status_timeout_seconds=0.05,
        persist_pre_calls=True,
        mock_mode=True,
    )


@pytest.fixture
def ledger() -> PreCallLedger:
    return PreCallLedger(MemoryStorage())


@pytest.fixture
def engine(relay, ledger, engine_settings) -> AccountEngine:
    return AccountEngine(
        relay=relay,
        signer=LocalSigner(),
        ledger=ledger,
        fee_tokens=FeeTokenResolver(relay),
        settings=engine_settings,
        mock=True,
    )


@pytest.fixture
def session() -> EngineSession:
    return EngineSession()


@pytest.fixture
def admin_account(relay) -> Account:
    """Delegated account controlled by a local secp256k1 admin key."""
    owner = EthAccount.create()
    admin = Secp256k1Key(
        public_key=owner.address,
        role=KeyRole.ADMIN,
        private_key=encode_hex(owner.key),
    )
    relay.keys[owner.address.lower()] = [admin.to_relay()]
    return Account(address=owner.address, keys=[admin])
