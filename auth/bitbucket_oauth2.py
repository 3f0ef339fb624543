from __future__ import annotations

import base64
import hashlib
import secrets
import urllib.parse
from dataclasses import dataclass

import httpx

from auth.errors import TokenEndpointError, TokenExchangeError, TokenRefreshError
from auth.token_store import TokenPair

BITBUCKET_AUTHORIZE_URL = "https://bitbucket.org/site/oauth2/authorize"
BITBUCKET_TOKEN_URL = "https://bitbucket.org/site/oauth2/access_token"
BITBUCKET_USER_URL = "https://api.bitbucket.org/2.0/user"


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(32)


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def generate_pkce_pair() -> PKCEPair:
    verifier = generate_code_verifier()
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state() -> str:
    return secrets.token_hex(16)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
) -> str:
    query = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{BITBUCKET_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


def _token_pair_from_payload(payload: object, error_cls: type[TokenEndpointError]) -> TokenPair:
    if not isinstance(payload, dict):
        raise error_cls("Token response must be a JSON object.", payload=payload)

    access_token = payload.get("access_token")
    refresh_token = payload.get("refresh_token")
    if not isinstance(access_token, str) or not access_token:
        raise error_cls("Token response missing access_token.", payload=payload)
    if not isinstance(refresh_token, str) or not refresh_token:
        refresh_token = None

    return TokenPair(access_token=access_token, refresh_token=refresh_token)


def _describe_error(response: httpx.Response) -> tuple[str, object]:
    try:
        payload = response.json()
    except ValueError:
        text = response.text
        return text or response.reason_phrase, text

    if isinstance(payload, dict):
        description = payload.get("error_description") or payload.get("error")
        if isinstance(description, dict):
            description = description.get("message")
        if description:
            return str(description), payload
    return response.text, payload


async def _token_request(
    data: dict[str, str],
    *,
    auth: tuple[str, str] | None,
    error_cls: type[TokenEndpointError],
    client: httpx.AsyncClient | None = None,
) -> TokenPair:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(
            BITBUCKET_TOKEN_URL,
            data=data,
            auth=auth,
            headers={"Accept": "application/json"},
        )
    except httpx.HTTPError as error:
        raise error_cls(f"Token request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    if not response.is_success:
        detail, payload = _describe_error(response)
        raise error_cls(
            f"Token request failed with status {response.status_code}: {detail}",
            status_code=response.status_code,
            payload=payload,
        )

    try:
        payload = response.json()
    except ValueError as error:
        raise error_cls("Token response was not valid JSON.") from error
    return _token_pair_from_payload(payload, error_cls)


async def exchange_code(
    client_id: str,
    client_secret: str | None,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenPair:
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
    }
    auth = None
    if client_secret:
        data["client_id"] = client_id
        data["client_secret"] = client_secret
    else:
        # public client: identify with Basic auth and an empty password
        auth = (client_id, "")

    return await _token_request(
        data,
        auth=auth,
        error_cls=TokenExchangeError,
        client=client,
    )


async def refresh_token(
    client_id: str,
    client_secret: str | None,
    refresh_token: str | None,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenPair:
    if not refresh_token:
        raise TokenRefreshError("No refresh token available.")

    return await _token_request(
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        auth=(client_id, client_secret or ""),
        error_cls=TokenRefreshError,
        client=client,
    )
