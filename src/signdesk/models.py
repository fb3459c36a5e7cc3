"""Core data models for SignDesk.

Field geometry is stored as percentages (0-100) of the page so the same
placement renders identically at any zoom level, in the editor and in the
server-side bake. Audit entries are frozen: the trail is only ever
appended to.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class FieldType(str, Enum):
    """Signable field types."""

    SIGNATURE = "signature"
    INITIAL = "initial"
    DATE = "date"
    TEXT = "text"


class DocumentStatus(str, Enum):
    """Lifecycle states for a document."""

    DRAFT = "draft"
    ACTIVE = "active"
    PROCESSING = "processing"
    FINAL = "final"
    ARCHIVED = "archived"
    FAILED = "failed"


class RecipientRole(str, Enum):
    """What a recipient is asked to do. Only signers block the order."""

    SIGNER = "signer"
    APPROVER = "approver"
    VIEWER = "viewer"


class SignatureStatus(str, Enum):
    """Signing state of an individual recipient."""

    PENDING = "pending"
    SIGNED = "signed"
    DECLINED = "declined"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    CREATED = "created"
    UPDATED = "updated"
    RECIPIENT_ADDED = "recipient_added"
    RECIPIENT_REMOVED = "recipient_removed"
    FIELD_ADDED = "field_added"
    FIELD_UPDATED = "field_updated"
    FIELD_REMOVED = "field_removed"
    FIELDS_SAVED = "fields_saved"
    SENT = "sent"
    SIGNED = "signed"
    DECLINED = "declined"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRIED = "retried"
    ARCHIVED = "archived"


class Alignment(str, Enum):
    """Alignment modes for :meth:`FieldCollection.align_fields`."""

    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"
    TOP = "top"
    MIDDLE = "middle"
    BOTTOM = "bottom"


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

class PercentageRect(BaseModel):
    """Field rectangle as percentages of the page.

    Attributes:
        x_pct: Left edge (0 = page left, 100 = page right).
        y_pct: Top edge (0 = page top, 100 = page bottom).
        w_pct: Width as a percentage of page width.
        h_pct: Height as a percentage of page height.
    """

    model_config = ConfigDict(frozen=True)

    x_pct: float = 0.0
    y_pct: float = 0.0
    w_pct: float = 0.0
    h_pct: float = 0.0


class PixelRect(BaseModel):
    """Rectangle in container pixels (top-left origin)."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class PageInfo(BaseModel):
    """Reference raster size of one page, in pixels."""

    page_number: int = Field(1, ge=1)
    width: float = Field(612.0, gt=0)
    height: float = Field(792.0, gt=0)


# ---------------------------------------------------------------------------
# Fields and recipients
# ---------------------------------------------------------------------------

class SignatureField(BaseModel):
    """A placed, typed, positioned signable region on a page.

    Attributes:
        id: Unique identifier.
        recipient_id: Recipient responsible for filling the field.
        field_type: Field type (serialized as ``type``).
        page_number: 1-indexed page.
        rect: Percentage geometry.
        value: Filled value (signature text, date, free text).
        required: Whether the recipient must fill it before signing.
        font_id: Signature font chosen in the editor.
        placeholder_text: Hint shown while the field is empty.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    recipient_id: str
    field_type: FieldType = Field(FieldType.SIGNATURE, alias="type")
    page_number: int = Field(1, ge=1)
    rect: PercentageRect = Field(default_factory=PercentageRect)
    value: Optional[str] = None
    required: bool = False
    font_id: str = "dancing-script"
    placeholder_text: Optional[str] = None


class Recipient(BaseModel):
    """A party asked to sign, approve or view a document.

    Attributes:
        id: Unique identifier within the document.
        name: Display name, used in "waiting on" messages.
        email: Contact address.
        signing_order: Position in the signing sequence (>= 1). Equal
            orders sign in parallel; gaps are allowed.
        role: Signers block later recipients until they sign.
        signature_status: Current signing state.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    email: Optional[str] = None
    signing_order: int = Field(1, ge=1)
    role: RecipientRole = RecipientRole.SIGNER
    signature_status: SignatureStatus = SignatureStatus.PENDING
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None

    @property
    def has_signing_obligation(self) -> bool:
        return self.role == RecipientRole.SIGNER


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

class Actor(BaseModel):
    """Who triggered a mutation, and from where."""

    actor_id: Optional[str] = None
    name: Optional[str] = None
    ip_address: Optional[str] = None
    location: Optional[str] = None


class AuditEntry(BaseModel):
    """Immutable audit log entry.

    Corrections are recorded as new entries; existing ones are never
    edited.
    """

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid4()))
    document_id: str
    action: AuditAction
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)
    details: str = ""
    ip_address: Optional[str] = None
    location: Optional[str] = None


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

class Document(BaseModel):
    """A document in the signing workflow.

    Attributes:
        document_id: Unique identifier.
        title: Human-readable title.
        status: Current lifecycle status (exactly one at any time).
        pages: Reference raster size per page.
        recipients: Parties on the document.
        fields: Placed fields across all pages.
        audit_trail: Chronological, append-only event log.
        signed_artifact_url: Location of the baked artifact once final.
        version: Optimistic concurrency counter, bumped on every save.
    """

    document_id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    status: DocumentStatus = DocumentStatus.DRAFT
    pages: list[PageInfo] = Field(default_factory=lambda: [PageInfo()])
    recipients: list[Recipient] = Field(default_factory=list)
    fields: list[SignatureField] = Field(default_factory=list)
    audit_trail: list[AuditEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    created_by: Optional[str] = None
    updated_at: datetime = Field(default_factory=_now)
    signed_artifact_url: Optional[str] = None
    version: int = 0

    @property
    def obligated_recipients(self) -> list[Recipient]:
        """Recipients who must sign before the document can complete."""
        return [r for r in self.recipients if r.has_signing_obligation]

    @property
    def all_required_signed(self) -> bool:
        obligated = self.obligated_recipients
        return bool(obligated) and all(
            r.signature_status == SignatureStatus.SIGNED for r in obligated
        )

    @property
    def has_declined(self) -> bool:
        return any(
            r.signature_status == SignatureStatus.DECLINED for r in self.recipients
        )

    @property
    def is_read_only(self) -> bool:
        return self.status == DocumentStatus.ARCHIVED

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def get_page(self, page_number: int) -> Optional[PageInfo]:
        for page in self.pages:
            if page.page_number == page_number:
                return page
        return None

    def get_recipient(self, recipient_id: str) -> Optional[Recipient]:
        for r in self.recipients:
            if r.id == recipient_id:
                return r
        return None

    def get_field(self, field_id: str) -> Optional[SignatureField]:
        for f in self.fields:
            if f.id == field_id:
                return f
        return None


# ---------------------------------------------------------------------------
# Rendering results
# ---------------------------------------------------------------------------

class RenderedField(BaseModel):
    """One field as it is drawn on the baked artifact.

    Attributes:
        field_id: Source field.
        page_number: Page the field is drawn on.
        field_type: Field type (drives the font formula).
        pixel_rect: Placement in page pixels (top-left origin).
        font_size_px: Output of the shared font formula.
        font_weight: CSS font weight.
        letter_spacing: CSS letter spacing.
        font_family: Font used for the value.
        value: Text drawn into the field.
    """

    model_config = ConfigDict(populate_by_name=True)

    field_id: str = ""
    page_number: int = 1
    field_type: FieldType = Field(FieldType.SIGNATURE, alias="type")
    pixel_rect: PixelRect
    font_size_px: int
    font_weight: int
    letter_spacing: str = "normal"
    font_family: str = "inherit"
    value: Optional[str] = None


class BakeResult(BaseModel):
    """What the baking collaborator returns for a successful bake."""

    signed_artifact_url: str
    placements: list[RenderedField] = Field(default_factory=list)
