"""Persistence and rendering collaborator contracts, retries, and saves.

The core never talks to storage directly. It depends on two small
protocols, :class:`FieldPersistence` and :class:`DocumentBaker`, and on
the helpers here to retry them a bounded number of times.

:class:`SaveCoordinator` runs explicit, cancellable field saves. A second
save for the same page supersedes the first (last write wins); the
superseded caller gets a ``superseded`` result instead of an error.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from pydantic import BaseModel

from .errors import PersistenceFailure
from .models import BakeResult, Document, SignatureField

logger = logging.getLogger("signdesk.persistence")

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 0.2


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------

class FieldPersistence(Protocol):
    """Stores the fields of one page."""

    def persist_fields(
        self, document_id: str, page_number: int, fields: list[SignatureField]
    ) -> None:
        """Replace the stored fields of a page.

        Raises:
            PersistenceFailure: If storage is unavailable.
        """
        ...


class DocumentBaker(Protocol):
    """Bakes field values onto the document's final artifact."""

    def bake_document(self, document: Document) -> BakeResult:
        """Render every field and return where the artifact lives.

        Raises:
            PersistenceFailure: If rendering or storage is unavailable.
        """
        ...


# ---------------------------------------------------------------------------
# Bounded retries
# ---------------------------------------------------------------------------

def retry_call(
    func: Callable[[], T],
    attempts: int = DEFAULT_ATTEMPTS,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it succeeds or ``attempts`` run out.

    Only :class:`PersistenceFailure` is retried; anything else propagates
    immediately. Backoff grows linearly with the attempt number.

    Raises:
        PersistenceFailure: The last failure, once attempts are exhausted.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except PersistenceFailure as exc:
            if attempt == attempts:
                logger.error("%s failed after %d attempt(s): %s", description, attempt, exc)
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s, retrying", description, attempt, attempts, exc
            )
            sleep(backoff_seconds * attempt)
    raise AssertionError("unreachable")


async def retry_call_async(
    func: Callable[[], Awaitable[T]],
    attempts: int = DEFAULT_ATTEMPTS,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    description: str = "operation",
) -> T:
    """Async twin of :func:`retry_call`."""
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except PersistenceFailure as exc:
            if attempt == attempts:
                logger.error("%s failed after %d attempt(s): %s", description, attempt, exc)
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s, retrying", description, attempt, attempts, exc
            )
            await asyncio.sleep(backoff_seconds * attempt)
    raise AssertionError("unreachable")


# ---------------------------------------------------------------------------
# Save coordination
# ---------------------------------------------------------------------------

class SaveStatus(str, Enum):
    SAVED = "saved"
    SUPERSEDED = "superseded"


class SaveResult(BaseModel):
    """Outcome of one :meth:`SaveCoordinator.save` call."""

    document_id: str
    page_number: int
    status: SaveStatus
    field_count: int = 0

    @property
    def saved(self) -> bool:
        return self.status == SaveStatus.SAVED


class SaveCoordinator:
    """Runs page saves with last-write-wins semantics.

    At most one save per ``(document_id, page_number)`` is pending. Writes
    for a page are serialized, so a write that already reached storage
    finishes before the superseding one starts.

    Args:
        persistence: Storage collaborator.
        attempts: Bounded retry count per save.
        backoff_seconds: Base delay between retries.
    """

    def __init__(
        self,
        persistence: FieldPersistence,
        attempts: int = DEFAULT_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self.persistence = persistence
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self._inflight: dict[tuple[str, int], asyncio.Task] = {}
        self._write_locks: dict[tuple[str, int], asyncio.Lock] = {}

    def pending(self, document_id: str, page_number: int) -> Optional[asyncio.Task]:
        task = self._inflight.get((document_id, page_number))
        return task if task is not None and not task.done() else None

    async def save(
        self, document_id: str, page_number: int, fields: list[SignatureField]
    ) -> SaveResult:
        """Save ``fields`` as the full content of a page.

        Cancelling the caller cancels the save. A later ``save`` for the
        same page cancels this one, which then returns ``superseded``.

        Raises:
            PersistenceFailure: After retries are exhausted.
        """
        key = (document_id, page_number)
        previous = self._inflight.get(key)
        if previous is not None and not previous.done():
            previous.cancel()

        snapshot = [f.model_copy(deep=True) for f in fields]
        task = asyncio.ensure_future(self._run(key, snapshot))
        self._inflight[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self._inflight.get(key) is not task:
                logger.debug("Save of %s page %d superseded", document_id[:8], page_number)
                return SaveResult(
                    document_id=document_id,
                    page_number=page_number,
                    status=SaveStatus.SUPERSEDED,
                    field_count=len(snapshot),
                )
            raise
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    async def _run(self, key: tuple[str, int], fields: list[SignatureField]) -> SaveResult:
        document_id, page_number = key
        lock = self._write_locks.setdefault(key, asyncio.Lock())
        async with lock:
            await retry_call_async(
                lambda: self._write(document_id, page_number, fields),
                attempts=self.attempts,
                backoff_seconds=self.backoff_seconds,
                description=f"Save of {document_id[:8]} page {page_number}",
            )
        logger.info("Saved %d field(s) on %s page %d", len(fields), document_id[:8], page_number)
        return SaveResult(
            document_id=document_id,
            page_number=page_number,
            status=SaveStatus.SAVED,
            field_count=len(fields),
        )

    async def _write(self, document_id: str, page_number: int, fields: list[SignatureField]) -> None:
        write = asyncio.ensure_future(
            asyncio.to_thread(self.persistence.persist_fields, document_id, page_number, fields)
        )
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            # The thread cannot be stopped; let it land before releasing the page lock.
            await asyncio.wait([write])
            raise
