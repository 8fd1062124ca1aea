"""
Sign-In With Ethereum (EIP-4361) message building.

Callers either pass a nonce directly or an ``auth_url`` that issues one.
Nothing is signed here; the engine signs the message with the account's
admin key (or the ephemeral EOA during account creation).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import httpx
from eth_utils import to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, model_validator
from siwe import SiweMessage

from ..config import settings


logger = logging.getLogger(__name__)


class AuthUrls(BaseModel):
    nonce: str
    verify: str
    logout: str


class SignInWithEthereumRequest(BaseModel):
    """EIP-4361 request, optionally with an ``auth_url`` used to fetch the nonce."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    nonce: Optional[str] = None
    auth_url: Optional[Union[str, AuthUrls]] = Field(default=None, alias="authUrl")
    chain_id: Optional[int] = Field(default=None, alias="chainId")
    domain: Optional[str] = None
    uri: Optional[str] = None
    statement: Optional[str] = None
    resources: Optional[List[str]] = None
    request_id: Optional[str] = Field(default=None, alias="requestId")
    scheme: Optional[str] = None
    issued_at: Optional[datetime] = Field(default=None, alias="issuedAt")
    expiration_time: Optional[datetime] = Field(default=None, alias="expirationTime")
    not_before: Optional[datetime] = Field(default=None, alias="notBefore")

    @model_validator(mode="after")
    def _require_nonce_source(self) -> "SignInWithEthereumRequest":
        if not self.nonce and not self.auth_url:
            raise ValueError("either `nonce` or `auth_url` is required")
        return self

    @property
    def urls(self) -> Optional[AuthUrls]:
        if self.auth_url is None or isinstance(self.auth_url, AuthUrls):
            return self.auth_url
        base = self.auth_url.rstrip("/")
        return AuthUrls(nonce=f"{base}/nonce", verify=f"{base}/verify", logout=f"{base}/logout")


class SignInWithEthereumResult(BaseModel):
    message: str
    signature: str
    token: Optional[str] = None


SignInWithEthereumLike = Union[SignInWithEthereumRequest, Dict[str, Any]]


def parse_siwe_request(request: Optional[SignInWithEthereumLike]) -> Optional[SignInWithEthereumRequest]:
    if request is None or isinstance(request, SignInWithEthereumRequest):
        return request
    return SignInWithEthereumRequest.model_validate(request)


async def fetch_nonce(
    url: str,
    address: str,
    chain_id: int,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)
    try:
        response = await client.post(url, json={"address": address, "chainId": chain_id})
        response.raise_for_status()
        return response.json()["nonce"]
    finally:
        if owns_client:
            await client.aclose()


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def build_message(
    request: SignInWithEthereumLike,
    address: str,
    chain_id: Optional[int] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Render the EIP-4361 message ``address`` is asked to sign."""
    parsed = parse_siwe_request(request)
    chain_id = parsed.chain_id or chain_id or settings.chain_id

    nonce = parsed.nonce
    if not nonce:
        nonce = await fetch_nonce(parsed.urls.nonce, address, chain_id, client=client)
        logger.debug(f"Fetched SIWE nonce for {address}")

    fields: Dict[str, Any] = {
        "domain": parsed.domain or settings.siwe_domain,
        "address": to_checksum_address(address),
        "uri": parsed.uri or settings.siwe_uri,
        "version": "1",
        "chain_id": chain_id,
        "nonce": nonce,
        "issued_at": _iso(parsed.issued_at or datetime.now(timezone.utc)),
    }
    if parsed.statement:
        fields["statement"] = parsed.statement
    if parsed.resources:
        fields["resources"] = parsed.resources
    if parsed.request_id:
        fields["request_id"] = parsed.request_id
    if parsed.scheme:
        fields["scheme"] = parsed.scheme
    if parsed.expiration_time:
        fields["expiration_time"] = _iso(parsed.expiration_time)
    if parsed.not_before:
        fields["not_before"] = _iso(parsed.not_before)

    return SiweMessage(**fields).prepare_message()
