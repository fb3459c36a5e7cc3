"""Filesystem-backed document store for SignDesk.

Everything lives on disk as JSON under ``~/.signdesk/``. No database
required.

Directory layout::

    ~/.signdesk/
    ├── documents/
    │   └── <doc-id>/
    │       ├── document.json
    │       └── bake_manifest.json  (after a bake)
    └── audit/                      # Append-only audit logs (JSONL)
        └── <doc-id>.jsonl

``document.json`` is replaced atomically on every write and carries a
``version`` counter. A write that expects a version the file no longer
has raises :class:`~signdesk.errors.StaleDocumentError`.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from .config import DEFAULT_DATA_DIR
from .errors import (
    DocumentLockedError,
    PersistenceFailure,
    RecipientNotFoundError,
    StaleDocumentError,
)
from .models import (
    AuditAction,
    AuditEntry,
    Document,
    DocumentStatus,
    RenderedField,
    SignatureField,
)
from .workflow import record_audit

logger = logging.getLogger("signdesk.store")


class DocumentStore:
    """Filesystem-backed CRUD for documents, page fields and audit logs.

    Implements :class:`~signdesk.persistence.FieldPersistence`.

    Args:
        base_dir: Root directory for all signdesk data.
    """

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self.base = Path(base_dir) if base_dir else DEFAULT_DATA_DIR
        self._documents_dir = self.base / "documents"
        self._audit_dir = self.base / "audit"
        self._write_lock = threading.RLock()

        for d in (self._documents_dir, self._audit_dir):
            d.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _document_path(self, document_id: str) -> Path:
        return self._documents_dir / document_id / "document.json"

    def document_exists(self, document_id: str) -> bool:
        return self._document_path(document_id).exists()

    def save_document(
        self, document: Document, expected_version: Optional[int] = None
    ) -> Path:
        """Write a document, bumping its version.

        Args:
            document: Document to persist. Its ``version`` is incremented
                in place once the write lands.
            expected_version: Version the caller loaded. When given, the
                write is refused if the stored document moved on.

        Returns:
            Path to the document directory.

        Raises:
            StaleDocumentError: If ``expected_version`` does not match.
        """
        json_path = self._document_path(document.document_id)
        with self._write_lock:
            if expected_version is not None:
                stored = self._read_version(json_path)
                if stored != expected_version:
                    raise StaleDocumentError(
                        f"Document {document.document_id} changed since it was loaded "
                        f"(expected version {expected_version}, found {stored})"
                    )
            saved = document.model_copy(update={"version": document.version + 1})
            json_path.parent.mkdir(parents=True, exist_ok=True)
            _write_atomic(json_path, saved.model_dump_json(indent=2, by_alias=True))
            document.version = saved.version

        logger.info(
            "Saved document %s (%s) v%d", document.title, document.document_id[:8], document.version
        )
        return json_path.parent

    def load_document(self, document_id: str) -> Document:
        """Load a document by ID.

        Raises:
            FileNotFoundError: If the document doesn't exist.
        """
        json_path = self._document_path(document_id)
        if not json_path.exists():
            raise FileNotFoundError(f"Document not found: {document_id}")
        data = json.loads(json_path.read_text(encoding="utf-8"))
        return Document.model_validate(data)

    def list_documents(
        self,
        status: Optional[DocumentStatus] = None,
        include_archived: bool = False,
    ) -> list[Document]:
        """List documents, optionally filtered by status.

        Args:
            status: Filter to this status (None = all).
            include_archived: Include archived documents when no status
                filter is given.

        Returns:
            List of Documents sorted by creation date (newest first).
        """
        documents = []
        for doc_dir in self._documents_dir.iterdir():
            json_path = doc_dir / "document.json"
            if not json_path.exists():
                continue
            try:
                doc = Document.model_validate_json(json_path.read_text(encoding="utf-8"))
            except ValueError as exc:
                logger.warning("Skipping invalid document %s: %s", doc_dir.name, exc)
                continue
            if status is not None:
                if doc.status == status:
                    documents.append(doc)
            elif include_archived or doc.status != DocumentStatus.ARCHIVED:
                documents.append(doc)
        documents.sort(key=lambda d: d.created_at, reverse=True)
        return documents

    @staticmethod
    def _read_version(json_path: Path) -> Optional[int]:
        if not json_path.exists():
            return None
        return json.loads(json_path.read_text(encoding="utf-8")).get("version", 0)

    # ------------------------------------------------------------------
    # Page fields
    # ------------------------------------------------------------------

    def persist_fields(
        self, document_id: str, page_number: int, fields: list[SignatureField]
    ) -> None:
        """Replace the stored fields of one draft page and audit the save.

        Raises:
            FileNotFoundError: If the document doesn't exist.
            DocumentLockedError: If the document is no longer a draft.
            RecipientNotFoundError: If a field names an unknown recipient.
            PersistenceFailure: If the write fails.
        """
        with self._write_lock:
            document = self.load_document(document_id)
            if document.status != DocumentStatus.DRAFT:
                raise DocumentLockedError(
                    f"Document is {document.status.value}; page fields can only "
                    "be saved while it is a draft"
                )
            known = {r.id for r in document.recipients}
            for field in fields:
                if field.recipient_id not in known:
                    raise RecipientNotFoundError(f"Recipient {field.recipient_id} not found")

            kept = [f for f in document.fields if f.page_number != page_number]
            placed = [f.model_copy(update={"page_number": page_number}) for f in fields]
            document.fields = kept + placed
            entry = record_audit(
                document,
                AuditAction.FIELDS_SAVED,
                details=f"Saved {len(placed)} field(s) on page {page_number}",
            )
            try:
                self.save_document(document, expected_version=document.version)
                self.append_audit(entry)
            except OSError as exc:
                raise PersistenceFailure(
                    f"Could not write fields for {document_id} page {page_number}: {exc}"
                ) from exc
        logger.debug("Persisted %d field(s) on %s page %d", len(fields), document_id[:8], page_number)

    def load_fields(
        self, document_id: str, page_number: Optional[int] = None
    ) -> list[SignatureField]:
        """Stored fields of a document, or of one page when given."""
        fields = self.load_document(document_id).fields
        if page_number is None:
            return fields
        return [f for f in fields if f.page_number == page_number]

    # ------------------------------------------------------------------
    # Bake output
    # ------------------------------------------------------------------

    def save_bake_manifest(
        self, document_id: str, placements: list[RenderedField]
    ) -> Path:
        """Write the bake manifest for a document.

        Returns:
            Path to the manifest file.
        """
        path = self._documents_dir / document_id / "bake_manifest.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "document_id": document_id,
            "placements": [p.model_dump(mode="json", by_alias=True) for p in placements],
        }
        _write_atomic(path, json.dumps(payload, indent=2))
        return path

    def load_bake_manifest(self, document_id: str) -> list[RenderedField]:
        """Placements from a previous bake (empty if never baked)."""
        path = self._documents_dir / document_id / "bake_manifest.json"
        if not path.exists():
            return []
        payload = json.loads(path.read_text(encoding="utf-8"))
        return [RenderedField.model_validate(p) for p in payload["placements"]]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def append_audit(self, entry: AuditEntry) -> None:
        """Append an audit entry to the log (JSONL format)."""
        log_path = self._audit_dir / f"{entry.document_id}.jsonl"
        with self._write_lock, open(log_path, "a", encoding="utf-8") as f:
            f.write(entry.model_dump_json(by_alias=True) + "\n")

    def get_audit_trail(self, document_id: str) -> list[AuditEntry]:
        """Load the full audit trail for a document, in append order."""
        log_path = self._audit_dir / f"{document_id}.jsonl"
        if not log_path.exists():
            return []

        entries = []
        for lineno, line in enumerate(log_path.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            try:
                entries.append(AuditEntry.model_validate_json(line))
            except ValueError as exc:
                logger.warning("Skipping corrupt audit line %s:%d: %s", log_path.name, lineno, exc)
        return entries


def _write_atomic(path: Path, text: str) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
