"""Client for the content-generation collaborator.

The content service turns a pregnancy week (and optionally a category) into
short copy written from the baby's perspective; the chat endpoint also
returns synthesized speech as a WAV data URI.

There is no retry policy here: a failed request raises
ContentGenerationError and the caller decides when to try again.
"""

from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from config import settings
from logger_config import setup_logger

logger = setup_logger(__name__, 'content.log')


class ContentGenerationError(Exception):
    """The content service could not produce a message."""


class GeneratedNotification(BaseModel):
    message: str


class BabyChatMessage(BaseModel):
    """Text plus optional speech audio (data URI) from the chat endpoint."""

    text: str
    audio: Optional[str] = None


class ContentClient:
    """Async request/response client for the content-generation service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.CONTENT_SERVICE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.CONTENT_SERVICE_TIMEOUT
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            async with self._client() as client:
                response = await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise ContentGenerationError(f"Timeout calling content service {path}") from e
        except httpx.RequestError as e:
            raise ContentGenerationError(f"Network error calling content service {path}: {e}") from e

        if response.status_code != 200:
            raise ContentGenerationError(
                f"Content service {path} returned {response.status_code}: {response.text}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise ContentGenerationError(f"Content service {path} returned invalid JSON") from e

    async def generate_baby_notification(self, week: int, category: str) -> str:
        """Generate a category-scoped notification message.

        Args:
            week: Current pregnancy week (1-40)
            category: nutrition, exercise or symptoms

        Returns:
            str: Generated message text

        Raises:
            ContentGenerationError: On transport, status or payload errors
        """
        logger.info(f"Requesting {category} notification for week {week}")
        data = await self._post('/baby-notification', {'week': week, 'category': category})
        try:
            return GeneratedNotification.model_validate(data).message
        except ValidationError as e:
            raise ContentGenerationError(f"Unexpected notification payload: {data!r}") from e

    async def generate_baby_message(self, week: int) -> BabyChatMessage:
        """Generate a daily message from the baby, with speech audio when available."""
        logger.info(f"Requesting baby message for week {week}")
        data = await self._post('/baby-message', {'week': week})
        try:
            return BabyChatMessage.model_validate(data)
        except ValidationError as e:
            raise ContentGenerationError(f"Unexpected baby message payload: {data!r}") from e

    async def is_reachable(self) -> bool:
        """Check the service health endpoint; used as the connectivity signal."""
        try:
            async with self._client() as client:
                response = await client.get('/health')
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Content service unreachable: {e}")
            return False
