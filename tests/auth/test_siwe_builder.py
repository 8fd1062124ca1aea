import json
from datetime import datetime, timezone

import httpx
import pytest

from account_engine.auth.siwe import (
    AuthUrls,
    SignInWithEthereumRequest,
    build_message,
    parse_siwe_request,
)


ADDRESS = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
CHECKSUMMED = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


@pytest.mark.asyncio
async def test_message_with_nonce() -> None:
    message = await build_message(
        {
            "nonce": "abcdef123456",
            "domain": "example.com",
            "uri": "https://example.com",
            "statement": "Sign in to Example.",
            "issuedAt": datetime(2026, 1, 21, tzinfo=timezone.utc),
        },
        ADDRESS,
        chain_id=84532,
    )

    lines = message.split("\n")
    assert lines[0] == "example.com wants you to sign in with your Ethereum account:"
    assert lines[1] == CHECKSUMMED
    assert "Sign in to Example." in lines
    assert "Chain ID: 84532" in lines
    assert "Nonce: abcdef123456" in lines
    assert "Issued At: 2026-01-21T00:00:00.000Z" in lines


@pytest.mark.asyncio
async def test_nonce_fetched_from_auth_url() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200, json={"nonce": "fetched12345"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    message = await build_message(
        {"authUrl": "https://auth.example/siwe/"},
        ADDRESS,
        chain_id=84532,
        client=client,
    )

    assert requests == [("https://auth.example/siwe/nonce", {"address": ADDRESS, "chainId": 84532})]
    assert "Nonce: fetched12345" in message


def test_auth_url_expands_to_endpoints() -> None:
    request = parse_siwe_request({"authUrl": "https://auth.example/siwe"})

    assert request.urls == AuthUrls(
        nonce="https://auth.example/siwe/nonce",
        verify="https://auth.example/siwe/verify",
        logout="https://auth.example/siwe/logout",
    )


def test_nonce_or_auth_url_required() -> None:
    with pytest.raises(ValueError):
        parse_siwe_request({"statement": "hello"})


def test_parse_passes_models_through() -> None:
    request = SignInWithEthereumRequest(nonce="abcdef123456")

    assert parse_siwe_request(request) is request
    assert parse_siwe_request(None) is None
