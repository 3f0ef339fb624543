from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from auth.bitbucket_oauth2 import PKCEPair


@dataclass
class PendingAuthorization:
    state: str
    pkce: PKCEPair
    future: asyncio.Future[str]
    created_at: float
    claimed: bool = field(default=False)

    def claim(self) -> bool:
        """Mark the first callback as the one that settles this authorization."""
        if self.claimed or self.future.done():
            return False
        self.claimed = True
        return True

    def resolve(self, access_token: str) -> None:
        if not self.future.done():
            self.future.set_result(access_token)

    def reject(self, error: Exception) -> None:
        if not self.future.done():
            self.future.set_exception(error)
