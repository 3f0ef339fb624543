from __future__ import annotations


class OAuthCallbackError(RuntimeError):
    """The provider redirected back with an error or without a code."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"OAuth callback failed: {reason}")
        self.reason = reason


class OAuthTimeoutError(RuntimeError):
    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"OAuth authentication timed out after {timeout_seconds:g} seconds."
        )
        self.timeout_seconds = timeout_seconds


class FlowAlreadyInProgressError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("An OAuth authorization flow is already in progress.")


class TokenEndpointError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: object = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class TokenExchangeError(TokenEndpointError):
    pass


class TokenRefreshError(TokenEndpointError):
    pass


class ApiRequestError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(RuntimeError):
    """Raised when a request still fails after one refresh-and-retry."""

    def __init__(self, message: str, *, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original
        self.status_code = 401
