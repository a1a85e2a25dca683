"""Transcript — append-only, role-tagged conversation log.

Redis LIST at ``chat:{session}:transcript``; each element is a JSON
TranscriptEntry. The research engine appends exactly one entry per terminal
workflow transition; the chat surface reads the list back in order.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError

from repolens.research.errors import WorkflowStoreError
from repolens.research.models import TranscriptEntry

logger = structlog.get_logger().bind(component="research.transcript")

# Keep the transcript bounded; older entries fall off the front.
_TRANSCRIPT_CAP = 1000


class Transcript:
    """Conversation transcript for one session.

    Args:
        redis_url:  Redis connection string (defaults to settings).
        session_id: Conversation session (defaults to settings).
        _redis:     Pre-built ``redis.asyncio.Redis`` (inject for tests).
    """

    def __init__(
        self,
        redis_url: str | None = None,
        session_id: str | None = None,
        *,
        _redis=None,
    ) -> None:
        if (redis_url is None and _redis is None) or session_id is None:
            from repolens.config import settings
            redis_url = redis_url or settings.redis_url
            session_id = session_id or settings.session_id

        self._redis_url = redis_url
        self.session_id = session_id
        self._redis_client = _redis

    @property
    def key(self) -> str:
        return f"chat:{self.session_id}:transcript"

    async def _redis(self):
        if self._redis_client is None:
            self._redis_client = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._redis_client

    async def append(self, entry: TranscriptEntry) -> None:
        """Append *entry* at the end of the transcript."""
        r = await self._redis()
        try:
            async with r.pipeline() as pipe:
                pipe.rpush(self.key, entry.model_dump_json())
                pipe.ltrim(self.key, -_TRANSCRIPT_CAP, -1)
                await pipe.execute()
        except Exception as exc:
            logger.error("transcript_append_failed", entry_id=entry.id, error=str(exc))
            raise WorkflowStoreError(f"could not append transcript entry: {exc}") from exc
        logger.debug(
            "transcript_appended",
            workflow_id=entry.workflow_id,
            role=entry.role,
            is_error=entry.is_error,
        )

    async def entries(self, n: int = 50) -> list[TranscriptEntry]:
        """Return the last *n* entries, oldest first."""
        r = await self._redis()
        try:
            raw = await r.lrange(self.key, -n, -1)
        except Exception as exc:
            logger.warning("transcript_read_failed", error=str(exc))
            return []
        entries: list[TranscriptEntry] = []
        for item in raw:
            try:
                entries.append(TranscriptEntry.model_validate_json(item))
            except ValidationError as exc:
                logger.warning("transcript_entry_skipped", error=str(exc))
        return entries

    async def close(self) -> None:
        if self._redis_client:
            try:
                await self._redis_client.aclose()
            except Exception as exc:
                logger.debug("transcript_close_failed", error=str(exc))
            self._redis_client = None
