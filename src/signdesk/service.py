"""Server-side document service.

Every mutation of a document runs under that document's lock, reloads
the document from the store, applies one operation, and writes it back
with an optimistic version check. Audit entries produced by the
operation are appended to the document and to the JSONL log together.

The lock makes eligibility and the write one atomic step, so two
recipients can never both be told they may sign the same slot. The
version check catches writers outside this process.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Union

from .collection import FieldCollection
from .config import SignDeskSettings
from .eligibility import EligibilityResult, check_eligibility, next_recipients
from .engine import SigningEngine
from .errors import DocumentLockedError, RecipientNotFoundError
from .field_types import get_field_config
from .geometry import clamp_rect
from .models import (
    Actor,
    Alignment,
    AuditAction,
    AuditEntry,
    Document,
    DocumentStatus,
    PageInfo,
    Recipient,
    RecipientRole,
    SignatureField,
)
from .persistence import DocumentBaker
from .renderer import ManifestRenderer
from .store import DocumentStore
from .workflow import record_audit, transition_status

logger = logging.getLogger("signdesk.service")


class DocumentService:
    """The operations exposed to the API and CLI.

    Args:
        store: Filesystem store.
        baker: Rendering collaborator (defaults to :class:`ManifestRenderer`).
        settings: Runtime settings.
    """

    def __init__(
        self,
        store: DocumentStore,
        baker: Optional[DocumentBaker] = None,
        settings: Optional[SignDeskSettings] = None,
    ) -> None:
        self.store = store
        self.settings = settings or SignDeskSettings(data_dir=store.base)
        self.engine = SigningEngine(
            baker or ManifestRenderer(store),
            attempts=self.settings.retry_attempts,
            backoff_seconds=self.settings.retry_backoff_seconds,
        )
        # Entries vanish once no request holds the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock(self, document_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(document_id, threading.Lock())

    @contextmanager
    def _mutating(self, document_id: str) -> Iterator[Document]:
        """Load, lock and write back one document.

        The document is saved if the body added audit entries, even when
        the body then raised (a failed bake still records ``failed``).
        Bodies validate before they mutate, so a rejected request leaves
        nothing to save.
        """
        with self._lock(document_id):
            document = self.store.load_document(document_id)
            loaded_version = document.version
            trail_length = len(document.audit_trail)
            try:
                yield document
            finally:
                added = document.audit_trail[trail_length:]
                if added:
                    self.store.save_document(document, expected_version=loaded_version)
                    for entry in added:
                        self.store.append_audit(entry)

    @staticmethod
    def _require_draft(document: Document) -> None:
        if document.status != DocumentStatus.DRAFT:
            raise DocumentLockedError(
                f"Document is {document.status.value}; fields and recipients "
                "can only be edited while it is a draft"
            )

    @staticmethod
    def _require_recipient(document: Document, recipient_id: str) -> Recipient:
        recipient = document.get_recipient(recipient_id)
        if recipient is None:
            raise RecipientNotFoundError(f"Recipient {recipient_id} not found")
        return recipient

    @staticmethod
    def _require_page(document: Document, page_number: int) -> None:
        if document.get_page(page_number) is None:
            raise ValueError(
                f"Page {page_number} does not exist (document has {document.page_count})"
            )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(
        self,
        title: str,
        actor: Optional[Actor] = None,
        page_count: int = 1,
        pages: Optional[list[PageInfo]] = None,
        recipients: Optional[list[Recipient]] = None,
    ) -> Document:
        """Create a draft document.

        Args:
            title: Human-readable title.
            actor: Creator.
            page_count: Number of pages at the default raster size, used
                when ``pages`` is not given.
            pages: Explicit per-page raster sizes.
            recipients: Initial recipients.
        """
        if pages is None:
            pages = [
                PageInfo(
                    page_number=n,
                    width=self.settings.page_width,
                    height=self.settings.page_height,
                )
                for n in range(1, max(1, page_count) + 1)
            ]
        document = Document(
            title=title,
            pages=pages,
            recipients=list(recipients or []),
            created_by=actor.actor_id if actor else None,
        )
        entry = record_audit(document, AuditAction.CREATED, actor, f"Document created: {title}")
        self.store.save_document(document)
        self.store.append_audit(entry)
        return document

    def get_document(self, document_id: str) -> Document:
        return self.store.load_document(document_id)

    def list_documents(
        self, status: Optional[DocumentStatus] = None, include_archived: bool = False
    ) -> list[Document]:
        return self.store.list_documents(status=status, include_archived=include_archived)

    def get_audit_trail(self, document_id: str) -> list[AuditEntry]:
        """Chronological audit trail.

        Raises:
            FileNotFoundError: If the document doesn't exist.
        """
        if not self.store.document_exists(document_id):
            raise FileNotFoundError(f"Document not found: {document_id}")
        return self.store.get_audit_trail(document_id)

    # ------------------------------------------------------------------
    # Recipients
    # ------------------------------------------------------------------

    def add_recipient(
        self,
        document_id: str,
        name: str,
        email: Optional[str] = None,
        signing_order: Optional[int] = None,
        role: Union[RecipientRole, str] = RecipientRole.SIGNER,
        actor: Optional[Actor] = None,
    ) -> Recipient:
        """Add a recipient to a draft. ``signing_order`` defaults to last."""
        with self._mutating(document_id) as document:
            self._require_draft(document)
            if signing_order is None:
                signing_order = max((r.signing_order for r in document.recipients), default=0) + 1
            recipient = Recipient(
                name=name, email=email, signing_order=signing_order, role=RecipientRole(role)
            )
            document.recipients.append(recipient)
            record_audit(
                document,
                AuditAction.RECIPIENT_ADDED,
                actor,
                f"Added {recipient.role.value} {name} (order {signing_order})",
            )
        return recipient

    def remove_recipient(
        self, document_id: str, recipient_id: str, actor: Optional[Actor] = None
    ) -> Recipient:
        """Remove a recipient from a draft, along with the fields assigned to them."""
        with self._mutating(document_id) as document:
            self._require_draft(document)
            recipient = self._require_recipient(document, recipient_id)
            orphaned = [f for f in document.fields if f.recipient_id == recipient_id]
            document.recipients = [r for r in document.recipients if r.id != recipient_id]
            document.fields = [f for f in document.fields if f.recipient_id != recipient_id]
            record_audit(
                document,
                AuditAction.RECIPIENT_REMOVED,
                actor,
                f"Removed {recipient.name} and {len(orphaned)} field(s)",
            )
        return recipient

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def add_field(
        self,
        document_id: str,
        page_number: int,
        partial: dict[str, Any],
        actor: Optional[Actor] = None,
    ) -> SignatureField:
        """Place a field on a draft's page (see :meth:`FieldCollection.add_field`)."""
        with self._mutating(document_id) as document:
            self._require_draft(document)
            self._require_page(document, page_number)
            self._require_recipient(document, partial.get("recipient_id", ""))
            collection = FieldCollection(document.fields)
            field = collection.add_field(page_number, partial)
            document.fields = collection.fields
            record_audit(
                document,
                AuditAction.FIELD_ADDED,
                actor,
                f"Added {field.field_type.value} field {field.id[:8]} on page {page_number}",
            )
        return field

    def update_field(
        self,
        document_id: str,
        field_id: str,
        patch: dict[str, Any],
        actor: Optional[Actor] = None,
    ) -> SignatureField:
        """Patch a field on a draft (see :meth:`FieldCollection.update_field`)."""
        with self._mutating(document_id) as document:
            self._require_draft(document)
            if "recipient_id" in patch:
                self._require_recipient(document, patch["recipient_id"])
            if "page_number" in patch:
                self._require_page(document, patch["page_number"])
            collection = FieldCollection(document.fields)
            field = collection.update_field(field_id, patch)
            document.fields = collection.fields
            record_audit(
                document,
                AuditAction.FIELD_UPDATED,
                actor,
                f"Updated field {field_id[:8]}: {', '.join(sorted(patch))}",
            )
        return field

    def remove_field(
        self, document_id: str, field_id: str, actor: Optional[Actor] = None
    ) -> SignatureField:
        with self._mutating(document_id) as document:
            self._require_draft(document)
            collection = FieldCollection(document.fields)
            field = collection.remove_field(field_id)
            document.fields = collection.fields
            record_audit(
                document, AuditAction.FIELD_REMOVED, actor, f"Removed field {field_id[:8]}"
            )
        return field

    def duplicate_field(
        self, document_id: str, field_id: str, actor: Optional[Actor] = None
    ) -> SignatureField:
        with self._mutating(document_id) as document:
            self._require_draft(document)
            collection = FieldCollection(document.fields)
            copy = collection.duplicate_field(field_id)
            document.fields = collection.fields
            record_audit(
                document,
                AuditAction.FIELD_ADDED,
                actor,
                f"Duplicated field {field_id[:8]} as {copy.id[:8]}",
            )
        return copy

    def align_fields(
        self,
        document_id: str,
        anchor_field_id: str,
        alignment: Union[Alignment, str],
        actor: Optional[Actor] = None,
    ) -> list[SignatureField]:
        """Align the other fields on the anchor's page. Returns the moved fields."""
        with self._mutating(document_id) as document:
            self._require_draft(document)
            collection = FieldCollection(document.fields)
            moved = collection.align_fields(anchor_field_id, alignment)
            document.fields = collection.fields
            record_audit(
                document,
                AuditAction.FIELD_UPDATED,
                actor,
                f"Aligned {len(moved)} field(s) {Alignment(alignment).value} "
                f"to {anchor_field_id[:8]}",
            )
        return moved

    def save_page_fields(
        self,
        document_id: str,
        page_number: int,
        fields: list[Union[SignatureField, dict[str, Any]]],
        actor: Optional[Actor] = None,
    ) -> list[SignatureField]:
        """Replace every field on one page of a draft.

        Rects are clamped into the page with each type's minimums.
        """
        with self._mutating(document_id) as document:
            self._require_draft(document)
            self._require_page(document, page_number)
            placed = []
            for item in fields:
                field = (
                    item if isinstance(item, SignatureField) else SignatureField.model_validate(item)
                )
                self._require_recipient(document, field.recipient_id)
                config = get_field_config(field.field_type)
                placed.append(
                    field.model_copy(
                        update={
                            "page_number": page_number,
                            "rect": clamp_rect(
                                field.rect, config.min_width_pct, config.min_height_pct
                            ),
                        }
                    )
                )
            ids = [f.id for f in placed]
            if len(set(ids)) != len(ids):
                raise ValueError("Duplicate field ids in page save")
            others = [
                f for f in document.fields if f.page_number != page_number and f.id not in ids
            ]
            document.fields = others + placed
            record_audit(
                document,
                AuditAction.FIELDS_SAVED,
                actor,
                f"Saved {len(placed)} field(s) on page {page_number}",
            )
        return placed

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def check_eligibility(self, document_id: str, recipient_id: str) -> EligibilityResult:
        """Whether ``recipient_id`` may sign now. Nobody may unless the document is active."""
        document = self.store.load_document(document_id)
        if document.status != DocumentStatus.ACTIVE:
            return EligibilityResult(
                can_sign=False,
                reason=f"Document is {document.status.value}; signing is not open",
            )
        return check_eligibility(document.recipients, recipient_id)

    def next_recipients(self, document_id: str) -> list[Recipient]:
        document = self.store.load_document(document_id)
        if document.status != DocumentStatus.ACTIVE:
            return []
        return next_recipients(document.recipients)

    def transition_status(
        self,
        document_id: str,
        new_status: Union[DocumentStatus, str],
        actor: Optional[Actor] = None,
        details: str = "",
    ) -> Document:
        """Request a status change.

        ``final`` is reached only through a bake, so asking for it bakes.

        Raises:
            InvalidTransition: If the edge does not exist or its guard fails.
        """
        new_status = DocumentStatus(new_status)
        if new_status == DocumentStatus.FINAL:
            return self.bake(document_id, actor)
        with self._mutating(document_id) as document:
            transition_status(document, new_status, actor, details)
        return document

    def sign(
        self,
        document_id: str,
        recipient_id: str,
        field_values: Optional[dict[str, str]] = None,
        actor: Optional[Actor] = None,
    ) -> Document:
        """Sign as ``recipient_id``. Eligibility is re-checked under the lock."""
        with self._mutating(document_id) as document:
            self.engine.sign(document, recipient_id, field_values, actor)
        return document

    def decline(
        self,
        document_id: str,
        recipient_id: str,
        reason: str = "",
        actor: Optional[Actor] = None,
    ) -> Document:
        with self._mutating(document_id) as document:
            self.engine.decline(document, recipient_id, reason, actor)
        return document

    def bake(self, document_id: str, actor: Optional[Actor] = None) -> Document:
        """Bake a processing document into its final artifact.

        Raises:
            PersistenceFailure: If the baker kept failing (document is now
                ``failed``).
            RenderDivergence: If the bake did not match the editor geometry
                (document is now ``failed``).
        """
        with self._mutating(document_id) as document:
            self.engine.bake(document, actor)
        return document
