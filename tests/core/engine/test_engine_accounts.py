"""
Tests for account creation, login and upgrade flows.
"""

import pytest
from eth_account import Account as EthAccount
from eth_account.messages import encode_defunct
from eth_utils import encode_hex, keccak

from account_engine.config import Settings
from account_engine.core.engine import AccountEngine, EngineSession
from account_engine.core.errors import AccountNotFoundError
from account_engine.core.fees.fee_tokens import FeeTokenResolver
from account_engine.core.wallet.models import Account, KeyRole, KeyType, SpendPeriod, WebAuthnP256Key
from account_engine.core.wallet.signer import (
    DiscoveredCredential,
    LocalSigner,
    create_headless_webauthn_key,
    create_p256_key,
    sign_secp256k1,
    wrap_signature,
)


TARGET = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

PERMISSIONS = {
    "expiry": 2_000_000_000,
    "permissions": {
        "calls": [{"to": TARGET}],
        "spend": [{"limit": 100, "period": "day"}],
    },
}


class PlatformSigner(LocalSigner):
    """Stands in for a platform authenticator holding one passkey."""

    def __init__(self, address=None, credential=None):
        self.address = address
        self.credential = credential or create_headless_webauthn_key()
        self.created = []
        self.challenges = []

    async def create_credential(self, label, user_id, rp_id=None):
        self.created.append({"label": label, "user_id": user_id, "rp_id": rp_id})
        return WebAuthnP256Key(
            public_key=self.credential.public_key,
            role=KeyRole.ADMIN,
            credential_id="cred-1",
            rp_id=rp_id,
        )

    async def discover(self, challenge, rp_id=None):
        self.challenges.append(challenge)
        return DiscoveredCredential(
            address=self.address,
            credential_id="cred-1",
            signature="0x" + "5a" * 64,
        )


def platform_engine(relay, ledger, engine_settings, signer):
    return AccountEngine(
        relay=relay,
        signer=signer,
        ledger=ledger,
        fee_tokens=FeeTokenResolver(relay),
        settings=engine_settings,
        mock=False,
    )


class TestCreateAccount:

    @pytest.mark.asyncio
    async def test_admin_and_session_key(self, engine, relay, session):
        result = await engine.create_account(permissions=PERMISSIONS, session=session)

        account = result.account
        assert len(account.keys) == 2
        admin, session_key = account.keys
        assert admin.role == KeyRole.ADMIN and admin.type == KeyType.WEBAUTHN_P256
        assert session_key.role == KeyRole.SESSION
        assert session_key.permissions.calls[0].to == TARGET
        assert session_key.permissions.spend[0].limit == 100
        assert session_key.permissions.spend[0].period == SpendPeriod.DAY

        assert session.address == account.address
        assert session.admin_key is admin
        assert relay.keys[account.address.lower()] == [admin.to_relay(), session_key.to_relay()]
        assert relay.emails == []

    @pytest.mark.asyncio
    async def test_extra_admins_are_authorized(self, engine):
        extra = create_headless_webauthn_key()

        result = await engine.create_account(admins=[extra])

        assert result.account.keys[1] is extra

    @pytest.mark.asyncio
    async def test_email_registered_when_requested(self, engine, relay):
        result = await engine.create_account(email=True, label="me@example.com")

        assert relay.emails == [{"email": "me@example.com", "walletAddress": result.account.address}]

    @pytest.mark.asyncio
    async def test_sign_in_with_ethereum_signed_by_ephemeral_eoa(self, engine):
        result = await engine.create_account(sign_in_with_ethereum={"nonce": "abcdef123456"})

        siwe = result.sign_in_with_ethereum
        assert "Nonce: abcdef123456" in siwe.message
        recovered = EthAccount.recover_message(encode_defunct(text=siwe.message), signature=siwe.signature)
        assert recovered == result.account.address

    @pytest.mark.asyncio
    async def test_platform_credential_bound_to_eoa(self, relay, ledger, engine_settings):
        signer = PlatformSigner()
        engine = platform_engine(relay, ledger, engine_settings, signer)

        result = await engine.create_account()

        address = result.account.address
        assert signer.created == [{
            "label": f"{address[:8]}…{address[-6:]}",
            "user_id": address,
            "rp_id": engine_settings.keystore_host,
        }]
        assert result.account.keys[0].credential_id == "cred-1"


class TestLoadAccounts:

    @pytest.mark.asyncio
    async def test_known_address_and_key_skips_signing(self, relay, ledger, engine_settings):
        signer = PlatformSigner()
        engine = platform_engine(relay, ledger, engine_settings, signer)
        admin = WebAuthnP256Key(public_key=signer.credential.public_key, credential_id="cred-1")
        address = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
        relay.keys[address.lower()] = [admin.to_relay()]

        result = await engine.load_accounts(address=address, key=admin)

        assert result.accounts[0].address == address
        assert result.accounts[0].keys == [admin]
        assert result.pre_calls == []
        assert relay.prepared == []
        assert signer.challenges == []
        assert await ledger.get(address) == []

    @pytest.mark.asyncio
    async def test_known_non_webauthn_key_takes_relay_copy(self, relay, ledger, engine_settings):
        engine = platform_engine(relay, ledger, engine_settings, PlatformSigner())
        known = create_p256_key(role=KeyRole.ADMIN)
        address = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
        relay.keys[address.lower()] = [known.to_relay()]

        result = await engine.load_accounts(address=address, key=known)

        bound = result.accounts[0].keys[0]
        assert bound is not known
        assert bound.public_key.lower() == known.public_key.lower()
        assert bound.private_key is None

    @pytest.mark.asyncio
    async def test_mock_login_queues_session_key_pre_call(self, engine, ledger, session):
        created = await engine.create_account(session=session)

        result = await engine.load_accounts(permissions=PERMISSIONS, session=session)

        account = result.accounts[0]
        assert account.address == created.account.address
        assert account.keys[0] is session.admin_key
        assert account.keys[-1].role == KeyRole.SESSION
        assert len(result.pre_calls) == 1
        assert result.pre_calls[0].signature.endswith(session.admin_key.hash[2:] + "00")
        assert await ledger.get(account.address) == result.pre_calls

    @pytest.mark.asyncio
    async def test_mock_login_without_session_address(self, engine):
        with pytest.raises(AccountNotFoundError):
            await engine.load_accounts(session=EngineSession())

    @pytest.mark.asyncio
    async def test_discovery_signature_authorizes_session_key(self, relay, ledger, engine_settings):
        address = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
        signer = PlatformSigner(address=address)
        engine = platform_engine(relay, ledger, engine_settings, signer)
        admin = WebAuthnP256Key(public_key=signer.credential.public_key)
        relay.keys[address.lower()] = [admin.to_relay()]

        result = await engine.load_accounts(permissions=PERMISSIONS)

        account = result.accounts[0]
        assert signer.challenges == [relay.prepared[0]["digest"]]
        assert relay.prepared[0]["capabilities"]["preCall"] is True
        assert account.keys[0].credential_id == "cred-1"
        assert result.pre_calls[0].signature == wrap_signature("0x" + "5a" * 64, account.keys[0])
        assert await ledger.get(address) == result.pre_calls

    @pytest.mark.asyncio
    async def test_plain_discovery_login(self, relay, ledger, engine_settings):
        address = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
        signer = PlatformSigner(address=address)
        engine = platform_engine(relay, ledger, engine_settings, signer)
        relay.keys[address.lower()] = [WebAuthnP256Key(public_key=signer.credential.public_key).to_relay()]

        result = await engine.load_accounts()

        assert signer.challenges == ["0x"]
        assert result.pre_calls == []
        assert result.sign_in_with_ethereum is None

    @pytest.mark.asyncio
    async def test_sign_in_with_ethereum_for_known_address(self, engine, relay, session):
        created = await engine.create_account(session=session)
        admin = session.admin_key

        result = await engine.load_accounts(
            sign_in_with_ethereum={"nonce": "abcdef123456", "statement": "hello"},
            address=created.account.address,
            key=admin,
            session=session,
        )

        siwe = result.sign_in_with_ethereum
        assert "hello" in siwe.message
        assert siwe.signature.endswith(admin.hash[2:] + "00")
        assert result.pre_calls == []
        assert relay.prepared == []


class TestUpgradeAccount:

    @pytest.mark.asyncio
    async def test_two_step_upgrade_registers_email(self, engine, relay, session):
        owner = EthAccount.create()

        prepared = await engine.prepare_upgrade_account(
            owner.address,
            email=True,
            label="me@example.com",
            permissions=PERMISSIONS,
            session=session,
        )

        assert [k.role for k in prepared.keys] == [KeyRole.ADMIN, KeyRole.SESSION]
        assert session.email == "me@example.com"

        signatures = {
            name: encode_hex(bytes(EthAccount.unsafe_sign_hash(digest, owner.key).signature))
            for name, digest in prepared.digests.items()
        }
        account = await engine.upgrade_account(
            Account(address=owner.address, keys=prepared.keys),
            prepared.context,
            signatures,
            session=session,
        )

        assert relay.keys[owner.address.lower()] == [k.to_relay() for k in prepared.keys]
        assert relay.emails == [{"email": "me@example.com", "walletAddress": account.address}]
        assert session.email is None


@pytest.mark.asyncio
async def test_verify_email_signed_by_admin(engine, relay, admin_account):
    await engine.verify_email(admin_account, 84532, "me@example.com", "tok", admin_account.address)

    admin = admin_account.keys[0]
    payload = encode_hex(keccak(text="me@example.comtok"))
    assert relay.emails[0]["signature"] == sign_secp256k1(payload, admin.private_key) + admin.hash[2:] + "00"


def test_default_fee_token_cache_uses_engine_settings(relay, ledger):
    engine = AccountEngine(
        relay=relay,
        ledger=ledger,
        settings=Settings(fee_token_cache_ttl_seconds=5, mock_mode=True),
        mock=True,
    )

    assert engine.fee_tokens.cache.default_ttl == 5
