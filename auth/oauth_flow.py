from __future__ import annotations

import asyncio
import logging
import time
import webbrowser
from typing import Awaitable, Callable

import httpx

from auth import bitbucket_oauth2
from auth.callback_server import CallbackListener
from auth.errors import (
    FlowAlreadyInProgressError,
    OAuthCallbackError,
    OAuthTimeoutError,
    TokenRefreshError,
)
from auth.models import PendingAuthorization
from auth.token_store import TokenPair, TokenStore
from auth.urls import parse_loopback_redirect_uri

LOGGER = logging.getLogger("gitmcp.oauth")

DEFAULT_REDIRECT_URI = "http://localhost:8080/callback"
DEFAULT_SCOPE = "repository pullrequest account"
DEFAULT_TIMEOUT_SECONDS = 300.0

BrowserOpener = Callable[[str], Awaitable[None]]


async def open_in_browser(url: str) -> None:
    opened = await asyncio.to_thread(webbrowser.open, url)
    if not opened:
        raise RuntimeError("No runnable browser found.")


class BitbucketOAuth:
    """Drives the Bitbucket authorization-code flow with PKCE.

    Owns the token store and is the only component that writes to it. At most
    one authorization may be pending; a second ``authenticate()`` while one is
    in flight raises ``FlowAlreadyInProgressError`` instead of binding the
    callback port twice.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str | None = None,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        scope: str = DEFAULT_SCOPE,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        token_store: TokenStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        open_browser: BrowserOpener = open_in_browser,
        listener_factory=CallbackListener,
        exchange_code_fn=bitbucket_oauth2.exchange_code,
        refresh_token_fn=bitbucket_oauth2.refresh_token,
    ) -> None:
        if not client_id:
            raise ValueError("OAuth client ID is required.")
        self.client_id = client_id
        self.client_secret = client_secret or None
        self.redirect_uri = redirect_uri
        self.scope = scope
        self.timeout_seconds = timeout_seconds
        self.token_store = token_store or TokenStore()
        self.pending: PendingAuthorization | None = None

        self._address = parse_loopback_redirect_uri(redirect_uri)
        self._http_client = http_client
        self._open_browser = open_browser
        self._listener_factory = listener_factory
        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn

    # -- token state -----------------------------------------------------------

    @property
    def access_token(self) -> str | None:
        pair = self.token_store.get()
        return pair.access_token if pair else None

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    @property
    def flow_in_progress(self) -> bool:
        return self.pending is not None

    def logout(self) -> None:
        self.token_store.clear()
        LOGGER.info("Cleared Bitbucket OAuth tokens")

    async def validate_token(self) -> bool:
        """Check the stored access token against the Bitbucket user endpoint."""
        token = self.access_token
        if not token:
            return False

        own_client = self._http_client is None
        client = self._http_client or httpx.AsyncClient()
        try:
            response = await client.get(
                bitbucket_oauth2.BITBUCKET_USER_URL,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as error:
            LOGGER.warning("Could not validate Bitbucket token: %s", error)
            return False
        finally:
            if own_client:
                await client.aclose()
        return response.is_success

    # -- flow ------------------------------------------------------------------

    async def get_access_token(self) -> str:
        token = self.access_token
        if token:
            return token
        return await self.authenticate()

    async def authenticate(self) -> str:
        if self.pending is not None:
            raise FlowAlreadyInProgressError()

        loop = asyncio.get_running_loop()
        pkce = bitbucket_oauth2.generate_pkce_pair()
        pending = PendingAuthorization(
            state=bitbucket_oauth2.generate_state(),
            pkce=pkce,
            future=loop.create_future(),
            created_at=time.time(),
        )
        self.pending = pending

        try:
            async with self._listener_factory(self._address, self.handle_callback):
                await self._launch_browser(pending)
                try:
                    return await asyncio.wait_for(
                        asyncio.shield(pending.future), timeout=self.timeout_seconds
                    )
                except asyncio.TimeoutError:
                    error = OAuthTimeoutError(self.timeout_seconds)
                    pending.reject(error)
                    # a callback may have settled the future during the timeout race
                    if pending.future.exception() is error:
                        raise error from None
                    return pending.future.result()
        finally:
            self.pending = None
            if pending.future.done() and not pending.future.cancelled():
                # consume so asyncio does not warn about unretrieved exceptions
                pending.future.exception()

    async def _launch_browser(self, pending: PendingAuthorization) -> None:
        url = bitbucket_oauth2.build_authorization_url(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scope=self.scope,
            state=pending.state,
            code_challenge=pending.pkce.challenge,
        )
        LOGGER.info("Opening browser for Bitbucket OAuth authentication")
        try:
            await self._open_browser(url)
        except Exception as error:
            LOGGER.warning(
                "Failed to open browser automatically (%s). Please visit this URL manually: %s",
                error,
                url,
            )

    async def handle_callback(self, params: dict[str, str]) -> None:
        pending = self.pending
        if pending is None or not pending.claim():
            raise RuntimeError("No OAuth authorization is waiting for a callback.")

        error = params.get("error")
        if error:
            description = params.get("error_description")
            reason = f"{error}: {description}" if description else error
            failure = OAuthCallbackError(reason)
            pending.reject(failure)
            raise failure

        code = params.get("code")
        if not code:
            failure = OAuthCallbackError("No authorization code received")
            pending.reject(failure)
            raise failure

        if params.get("state") != pending.state:
            failure = OAuthCallbackError("State mismatch in OAuth callback")
            pending.reject(failure)
            raise failure

        try:
            pair = await self._exchange_code_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                code=code,
                redirect_uri=self.redirect_uri,
                code_verifier=pending.pkce.verifier,
                client=self._http_client,
            )
        except Exception as failure:
            pending.reject(failure)
            raise

        self.token_store.set(pair)
        LOGGER.info("Bitbucket OAuth authentication completed")
        pending.resolve(pair.access_token)

    # -- refresh ---------------------------------------------------------------

    async def refresh(self) -> TokenPair:
        current = self.token_store.get()
        if current is None or not current.refresh_token:
            raise TokenRefreshError("No refresh token available.")

        refreshed = await self._refresh_token_fn(
            client_id=self.client_id,
            client_secret=self.client_secret,
            refresh_token=current.refresh_token,
            client=self._http_client,
        )
        LOGGER.info("Refreshed Bitbucket access token")
        return self.token_store.apply_refresh(
            refreshed.access_token, refreshed.refresh_token
        )
