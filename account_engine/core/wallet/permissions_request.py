"""
Permission requests and their compilation into session keys.

A permissions request is what a caller asks for (call scopes, spend
limits, expiry, a fee budget). ``to_key`` turns it into a concrete
session key, folding the fee budget into the spend permissions so the
key can also pay for its own bundles.
"""

from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..execution.calls import is_address_equal
from ..fees.fee_tokens import FeeToken
from .models import (
    CallPermission,
    FeeLimit,
    Key,
    KeyRole,
    KeyType,
    Permissions,
    SpendPeriod,
    SpendPermission,
    key_from,
)
from .signer import create_p256_key


class _RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CallScope(_RequestModel):
    to: Optional[str] = Field(default=None, description="Contract the key may call")
    signature: Optional[str] = Field(
        default=None,
        description="Function signature or 4-byte selector the key may call",
    )

    @model_validator(mode="after")
    def _require_target_or_signature(self) -> "CallScope":
        if not self.to and not self.signature:
            raise ValueError("call permission needs `to` and/or `signature`")
        return self


class SpendScope(_RequestModel):
    limit: int = Field(description="Maximum amount per period, in token base units")
    period: SpendPeriod
    token: Optional[str] = Field(default=None, description="Token address; native when omitted")

    @field_validator("limit", mode="before")
    @classmethod
    def _parse_limit(cls, value: Any) -> Any:
        if isinstance(value, str):
            return int(value, 16) if value.startswith("0x") else int(value)
        return value


class SignatureVerificationScope(_RequestModel):
    addresses: List[str]


class RequestedPermissions(_RequestModel):
    calls: List[CallScope] = Field(min_length=1)
    spend: Optional[List[SpendScope]] = None
    signature_verification: Optional[SignatureVerificationScope] = Field(
        default=None,
        alias="signatureVerification",
    )


class FeeLimitRequest(_RequestModel):
    currency: Literal["ETH", "USDC", "USDT", "USD"]
    value: str = Field(pattern=r"^\d+(\.\d+)?$")


class RequestedKey(_RequestModel):
    public_key: str = Field(alias="publicKey")
    type: KeyType


class PermissionsRequest(_RequestModel):
    address: Optional[str] = None
    chain_id: Optional[int] = Field(default=None, alias="chainId")
    expiry: int = Field(ge=1, description="Unix timestamp the key expires at")
    fee_limit: Optional[FeeLimitRequest] = Field(default=None, alias="feeLimit")
    key: Optional[RequestedKey] = None
    permissions: RequestedPermissions


PermissionsRequestLike = Union[PermissionsRequest, Dict[str, Any]]


def parse_request(request: Optional[PermissionsRequestLike]) -> Optional[PermissionsRequest]:
    if request is None:
        return None
    if isinstance(request, PermissionsRequest):
        return request
    return PermissionsRequest.model_validate(request)


def get_fee_limit(
    request: PermissionsRequest,
    fee_tokens: Sequence[FeeToken],
) -> Optional[int]:
    """
    Fee limit of ``request`` in base units of ``fee_tokens[0]``.

    The limit's currency picks a reference token (any ``USD*`` kind for
    ``USD``, otherwise matching symbol or kind); its value is converted to
    the fee token through the tokens' native rates.
    """
    fee_limit = request.fee_limit
    if fee_limit is None or not fee_tokens:
        return None

    fee_token = fee_tokens[0]

    limit_token = None
    for token in fee_tokens:
        if fee_limit.currency == "USD":
            if token.kind.startswith("USD"):
                limit_token = token
                break
        elif fee_limit.currency in (token.symbol, token.kind):
            limit_token = token
            break
    if limit_token is None:
        return None

    value = Decimal(fee_limit.value)
    if not is_address_equal(fee_token.address, limit_token.address):
        value = value * (
            Decimal(limit_token.native_rate or 1) / Decimal(fee_token.native_rate or 1)
        )

    return int(value * (Decimal(10) ** fee_token.decimals))


def resolve_permissions(
    request: PermissionsRequest,
    fee_tokens: Sequence[FeeToken],
) -> Permissions:
    """Compile requested scopes, adding the fee budget to the spend limits."""
    requested = request.permissions
    spend = [
        SpendPermission(limit=s.limit, period=s.period, token=s.token)
        for s in requested.spend or []
    ]

    fee_limit = get_fee_limit(request, fee_tokens) if fee_tokens else None
    if fee_limit:
        fee_token = fee_tokens[0]
        index = -1
        min_period = SpendPeriod.YEAR

        for i, s in enumerate(spend):
            # An omitted token is the native token.
            if s.token and is_address_equal(fee_token.address, s.token):
                index = i
                break
            if not s.token and fee_token.is_native:
                index = i
                break
            if s.period.rank < min_period.rank:
                min_period = s.period

        if index != -1:
            spend[index].limit += fee_limit
        else:
            spend.append(SpendPermission(
                limit=fee_limit,
                period=min_period,
                token=fee_token.address,
            ))

    signature_verification = None
    if requested.signature_verification is not None:
        signature_verification = list(requested.signature_verification.addresses)

    return Permissions(
        calls=[CallPermission(to=c.to, signature=c.signature) for c in requested.calls],
        spend=spend,
        signature_verification=signature_verification,
    )


def to_key(
    request: Optional[PermissionsRequestLike],
    fee_tokens: Sequence[FeeToken] = (),
) -> Optional[Key]:
    """
    Compile a permissions request into a session key.

    Returns ``None`` when there is no request. Without an explicit key in
    the request a fresh P256 key with local material is generated.
    """
    parsed = parse_request(request)
    if parsed is None:
        return None

    permissions = resolve_permissions(parsed, fee_tokens)
    fee_limit = None
    if parsed.fee_limit is not None:
        fee_limit = FeeLimit(currency=parsed.fee_limit.currency, value=parsed.fee_limit.value)

    if parsed.key is not None:
        return key_from(
            parsed.key.type,
            parsed.key.public_key,
            role=KeyRole.SESSION,
            expiry=parsed.expiry,
            permissions=permissions,
            fee_limit=fee_limit,
        )

    return create_p256_key(
        role=KeyRole.SESSION,
        expiry=parsed.expiry,
        permissions=permissions,
        fee_limit=fee_limit,
    )


def from_key(key: Key) -> Dict[str, Any]:
    """The permissions request a key answers, in request (camelCase) shape."""
    request: Dict[str, Any] = {
        "expiry": key.expiry,
        "key": {"publicKey": key.public_key, "type": key.type.value},
        "permissions": key.permissions.to_dict(),
    }
    if key.fee_limit is not None:
        request["feeLimit"] = {"currency": key.fee_limit.currency, "value": key.fee_limit.value}
    return request
