"""Pilot-list membership by email digest.

The list is a text file of SHA-256 hex digests, one per line, of trimmed and
lower-cased email addresses. It is read once and kept in memory.
"""

import asyncio
import hashlib
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def email_digest(email: str) -> str:
    return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()


class PilotListChecker:
    def __init__(self, hash_file: str | Path | None) -> None:
        self._path = Path(hash_file) if hash_file else None
        self._digests: frozenset[str] | None = None
        self._lock = asyncio.Lock()

    def _load(self) -> frozenset[str]:
        if self._path is None:
            logger.info("No pilot hash file configured; pilot list is empty")
            return frozenset()
        with self._path.open(encoding="utf-8") as fh:
            digests = frozenset(line.strip().lower() for line in fh if line.strip())
        logger.info("Loaded pilot hash file", extra={"meta": {"path": str(self._path), "entries": len(digests)}})
        return digests

    async def _ensure_loaded(self) -> frozenset[str]:
        if self._digests is None:
            async with self._lock:
                if self._digests is None:
                    self._digests = await asyncio.to_thread(self._load)
        return self._digests

    async def is_email_on_pilot_list(self, email: str) -> bool:
        digests = await self._ensure_loaded()
        return email_digest(email) in digests
