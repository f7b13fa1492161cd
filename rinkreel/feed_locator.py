from __future__ import annotations

import logging
from datetime import date

from .errors import AuthenticationError
from .provider import FeedProvider, call_with_retries
from .schemas import Credentials, FeedHandle, ProviderSession

logger = logging.getLogger(__name__)


class FeedLocator:
    """Authenticates against the provider and resolves a rink/date to a feed."""

    def __init__(self, provider: FeedProvider, *, max_attempts: int = 3, backoff_base: float = 1.5):
        self.provider = provider
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base

    async def authenticate(self, credentials: Credentials) -> ProviderSession:
        session = await call_with_retries(
            lambda: self.provider.authenticate(credentials),
            attempts=self.max_attempts,
            backoff_base=self.backoff_base,
            label="authenticate",
        )
        if session is None:
            raise AuthenticationError("Failed to authenticate with feed provider")
        return session

    async def locate(self, session: ProviderSession, rink_provider_id: str, game_date: date) -> FeedHandle:
        if session is None or session.is_expired():
            raise AuthenticationError("Feed provider session is missing or expired")

        logger.info("feed_locate", extra={"rink_id": rink_provider_id, "date": game_date.isoformat()})
        return await call_with_retries(
            lambda: self.provider.locate(session, rink_provider_id, game_date),
            attempts=self.max_attempts,
            backoff_base=self.backoff_base,
            label="locate",
        )
