"""
Tests for compiling permission requests into session keys.
"""

import pytest
from pydantic import ValidationError

from account_engine.core.fees.fee_tokens import FeeToken
from account_engine.core.wallet.models import KeyRole, KeyType, P256Key, SpendPeriod
from account_engine.core.wallet.permissions_request import (
    PermissionsRequest,
    from_key,
    get_fee_limit,
    resolve_permissions,
    to_key,
)


TARGET = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"

ETH_TOKEN = FeeToken(
    address="0x0000000000000000000000000000000000000000",
    symbol="ETH",
    decimals=18,
    kind="ETH",
    native_rate=10**18,
)
USDC_TOKEN = FeeToken(address=USDC, symbol="USDC", decimals=6, kind="USDC", native_rate=4 * 10**14)


def make_request(**overrides):
    request = {
        "expiry": 2_000_000_000,
        "permissions": {
            "calls": [{"to": TARGET}],
            "spend": [{"limit": 100, "period": "day"}],
        },
    }
    request.update(overrides)
    return request


class TestToKey:

    def test_none_request_yields_no_key(self):
        assert to_key(None) is None

    def test_generated_key_is_local_p256_session_key(self):
        key = to_key(make_request())

        assert isinstance(key, P256Key)
        assert key.role == KeyRole.SESSION
        assert key.prehash is True
        assert key.can_sign
        assert key.expiry == 2_000_000_000
        assert key.permissions.calls[0].to == TARGET
        assert key.permissions.spend[0].limit == 100
        assert key.permissions.spend[0].period == SpendPeriod.DAY

    def test_explicit_key_keeps_type_and_is_session(self):
        key = to_key(make_request(key={"publicKey": "0x" + "ab" * 64, "type": "webauthn-p256"}))

        assert key.type == KeyType.WEBAUTHN_P256
        assert key.role == KeyRole.SESSION
        assert key.public_key == "0x" + "ab" * 64
        assert not key.can_sign

    def test_hex_spend_limit(self):
        key = to_key(make_request(permissions={
            "calls": [{"signature": "transfer(address,uint256)"}],
            "spend": [{"limit": "0x64", "period": "hour", "token": USDC}],
        }))

        assert key.permissions.spend[0].limit == 100
        assert key.permissions.spend[0].token == USDC

    @pytest.mark.parametrize("request_data", [
        make_request(expiry=0),
        make_request(permissions={"calls": []}),
        make_request(permissions={"calls": [{}]}),
        make_request(feeLimit={"currency": "DAI", "value": "1"}),
        make_request(feeLimit={"currency": "USD", "value": "one"}),
    ])
    def test_invalid_requests_are_rejected(self, request_data):
        with pytest.raises(ValidationError):
            to_key(request_data)


class TestFeeLimit:

    def test_usd_limit_converted_to_native_fee_token(self):
        request = PermissionsRequest.model_validate(make_request(feeLimit={"currency": "USD", "value": "1"}))

        assert get_fee_limit(request, [ETH_TOKEN, USDC_TOKEN]) == 4 * 10**14

    def test_usd_limit_in_stablecoin_fee_token(self):
        request = PermissionsRequest.model_validate(make_request(feeLimit={"currency": "USD", "value": "1.5"}))

        assert get_fee_limit(request, [USDC_TOKEN, ETH_TOKEN]) == 1_500_000

    def test_unknown_currency_token_gives_no_limit(self):
        request = PermissionsRequest.model_validate(make_request(feeLimit={"currency": "USDT", "value": "1"}))

        assert get_fee_limit(request, [ETH_TOKEN, USDC_TOKEN]) is None

    def test_native_fee_limit_folds_into_native_spend(self):
        request = PermissionsRequest.model_validate(make_request(feeLimit={"currency": "ETH", "value": "0.01"}))

        permissions = resolve_permissions(request, [ETH_TOKEN, USDC_TOKEN])

        assert len(permissions.spend) == 1
        assert permissions.spend[0].limit == 100 + 10**16

    def test_fee_limit_appended_for_unmatched_fee_token(self):
        request = PermissionsRequest.model_validate(make_request(
            feeLimit={"currency": "USD", "value": "1"},
            permissions={
                "calls": [{"to": TARGET}],
                "spend": [
                    {"limit": 100, "period": "week"},
                    {"limit": 5, "period": "hour"},
                ],
            },
        ))

        permissions = resolve_permissions(request, [USDC_TOKEN, ETH_TOKEN])

        assert len(permissions.spend) == 3
        appended = permissions.spend[-1]
        assert appended.token == USDC
        assert appended.limit == 1_000_000
        assert appended.period == SpendPeriod.HOUR

    def test_fee_limit_without_spend_defaults_to_yearly(self):
        request = PermissionsRequest.model_validate(make_request(
            feeLimit={"currency": "ETH", "value": "1"},
            permissions={"calls": [{"to": TARGET}]},
        ))

        permissions = resolve_permissions(request, [ETH_TOKEN])

        assert permissions.spend[0].period == SpendPeriod.YEAR
        assert permissions.spend[0].limit == 10**18


def test_from_key_round_trips_request_shape():
    key = to_key(make_request(feeLimit={"currency": "ETH", "value": "0.5"}), [ETH_TOKEN])

    request = from_key(key)

    assert request["expiry"] == key.expiry
    assert request["key"] == {"publicKey": key.public_key, "type": "p256"}
    assert request["feeLimit"] == {"currency": "ETH", "value": "0.5"}
    assert request["permissions"]["calls"] == [{"to": TARGET}]
    assert PermissionsRequest.model_validate(request).key.type == KeyType.P256
