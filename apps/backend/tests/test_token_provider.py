"""Tests for DMS token acquisition and caching."""

import asyncio
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from case_portal.schemas.dms import DmsProviderConfig
from case_portal.services.errors import AuthenticationError, TransientNetworkError
from case_portal.services.token_provider import JWT_BEARER_GRANT, TokenProvider
from tests.conftest import make_http_client

TOKEN_URL = "https://login.example.gov/oauth2/token"


class FakeClock:
    def __init__(self, now: float = 1_800_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _oauth_config(name: str = "sharepoint-main") -> DmsProviderConfig:
    return DmsProviderConfig.model_validate(
        {
            "name": name,
            "provider": "sharepoint",
            "base_url": "https://graph.example.gov/v1.0",
            "auth": {
                "type": "oauth2_client_credentials",
                "token_url": TOKEN_URL,
                "client_id": "portal",
                "client_secret": "s3cret",
                "scope": "https://graph.example.gov/.default",
            },
        }
    )


@pytest.fixture(scope="module")
def rsa_key_pair() -> tuple[str, rsa.RSAPublicKey]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    return pem, key.public_key()


def _jwt_config(private_key: str, token_url: str | None = None) -> DmsProviderConfig:
    auth = {
        "type": "signed_jwt",
        "issuer": "case-portal",
        "audience": "documentum",
        "private_key": private_key,
        "key_id": "kid-1",
    }
    if token_url:
        auth["token_url"] = token_url
    return DmsProviderConfig.model_validate(
        {
            "name": "documentum-main",
            "provider": "documentum",
            "base_url": "https://dctm.example.gov/dctm-rest",
            "auth": auth,
        }
    )


class TokenEndpoint:
    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[dict[str, list[str]]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(parse_qs(request.read().decode()))
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


@pytest.mark.asyncio
async def test_client_credentials_token_is_cached():
    endpoint = TokenEndpoint(httpx.Response(200, json={"access_token": "t1", "expires_in": 3600}))
    provider = TokenProvider(make_http_client(endpoint), refresh_margin_seconds=60, clock=FakeClock())
    config = _oauth_config()

    first = await provider.get_token(config)
    second = await provider.get_token(config)

    assert first is second
    assert first.as_header() == {"Authorization": "Bearer t1"}
    assert len(endpoint.requests) == 1
    form = endpoint.requests[0]
    assert form["grant_type"] == ["client_credentials"]
    assert form["client_secret"] == ["s3cret"]
    assert form["scope"] == ["https://graph.example.gov/.default"]


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_acquisition():
    endpoint = TokenEndpoint(httpx.Response(200, json={"access_token": "t1", "expires_in": 3600}))
    provider = TokenProvider(make_http_client(endpoint), refresh_margin_seconds=60)
    config = _oauth_config()

    tokens = await asyncio.gather(*(provider.get_token(config) for _ in range(5)))

    assert {token.value for token in tokens} == {"t1"}
    assert len(endpoint.requests) == 1


@pytest.mark.asyncio
async def test_token_is_refreshed_inside_margin():
    endpoint = TokenEndpoint(
        httpx.Response(200, json={"access_token": "t1", "expires_in": 100}),
        httpx.Response(200, json={"access_token": "t2", "expires_in": 100}),
    )
    clock = FakeClock()
    provider = TokenProvider(make_http_client(endpoint), refresh_margin_seconds=60, clock=clock)
    config = _oauth_config()

    assert (await provider.get_token(config)).value == "t1"
    clock.now += 30
    assert (await provider.get_token(config)).value == "t1"
    clock.now += 15
    assert (await provider.get_token(config)).value == "t2"


@pytest.mark.asyncio
async def test_tokens_are_cached_per_provider():
    endpoint = TokenEndpoint(httpx.Response(200, json={"access_token": "t", "expires_in": 3600}))
    provider = TokenProvider(make_http_client(endpoint))

    await provider.get_token(_oauth_config("a"))
    await provider.get_token(_oauth_config("b"))

    assert len(endpoint.requests) == 2


@pytest.mark.asyncio
async def test_invalidate_forces_reacquire():
    endpoint = TokenEndpoint(httpx.Response(200, json={"access_token": "t1"}))
    provider = TokenProvider(make_http_client(endpoint))
    config = _oauth_config()

    await provider.get_token(config)
    provider.invalidate(config.name)
    await provider.get_token(config)

    assert len(endpoint.requests) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "error"),
    [
        (httpx.Response(401, json={"error": "invalid_client"}), AuthenticationError),
        (httpx.Response(400, json={"error": "invalid_scope"}), AuthenticationError),
        (httpx.Response(503), TransientNetworkError),
        (httpx.Response(429), TransientNetworkError),
        (httpx.Response(200, json={"token_type": "Bearer"}), AuthenticationError),
    ],
)
async def test_token_endpoint_failures(response, error):
    provider = TokenProvider(make_http_client(TokenEndpoint(response)))

    with pytest.raises(error):
        await provider.get_token(_oauth_config())
    assert provider.cached("sharepoint-main") is None


@pytest.mark.asyncio
async def test_unreachable_token_endpoint_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    provider = TokenProvider(make_http_client(handler))

    with pytest.raises(TransientNetworkError):
        await provider.get_token(_oauth_config())


@pytest.mark.asyncio
async def test_api_key_needs_no_request(api_key_provider_config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no HTTP call expected")

    provider = TokenProvider(make_http_client(handler))

    headers = await provider.auth_headers(api_key_provider_config())

    assert headers == {"X-API-Key": "secret-key"}


@pytest.mark.asyncio
async def test_signed_assertion_used_directly(rsa_key_pair):
    private_pem, public_key = rsa_key_pair
    clock = FakeClock()
    provider = TokenProvider(make_http_client(lambda request: httpx.Response(500)), clock=clock)

    token = await provider.get_token(_jwt_config(private_pem))

    claims = jwt.decode(token.value, public_key, algorithms=["RS256"], audience="documentum",
                        options={"verify_exp": False, "verify_iat": False})
    assert claims["iss"] == "case-portal"
    assert claims["sub"] == "case-portal"
    assert claims["exp"] - claims["iat"] == 300
    assert jwt.get_unverified_header(token.value)["kid"] == "kid-1"
    assert token.expires_at == clock.now + 300


@pytest.mark.asyncio
async def test_signed_assertion_exchanged_for_token(rsa_key_pair):
    private_pem, _ = rsa_key_pair
    endpoint = TokenEndpoint(httpx.Response(200, json={"access_token": "dctm-token", "expires_in": 600}))
    provider = TokenProvider(make_http_client(endpoint))

    token = await provider.get_token(_jwt_config(private_pem, token_url=TOKEN_URL))

    assert token.value == "dctm-token"
    assert endpoint.requests[0]["grant_type"] == [JWT_BEARER_GRANT]
    assert endpoint.requests[0]["assertion"][0].count(".") == 2


@pytest.mark.asyncio
async def test_bad_private_key_is_an_authentication_error():
    provider = TokenProvider(make_http_client(lambda request: httpx.Response(500)))

    with pytest.raises(AuthenticationError):
        await provider.get_token(_jwt_config("not a pem key"))
