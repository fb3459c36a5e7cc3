"""SignDesk REST API: FastAPI server for field placement and signing.

Endpoints are thin wrappers over :class:`~signdesk.service.DocumentService`.
Handlers are plain ``def`` functions, so FastAPI runs them in its worker
threadpool: a client that disconnects mid-request does not cancel the
operation, which still saves and audits its outcome.
"""

import logging
from typing import Annotated, Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import SignDeskSettings
from .eligibility import EligibilityResult
from .errors import (
    DocumentLockedError,
    EligibilityViolation,
    FieldNotFoundError,
    InvalidTransition,
    PersistenceFailure,
    RecipientNotFoundError,
    RenderDivergence,
    SignDeskError,
    StaleDocumentError,
)
from .models import (
    Actor,
    Alignment,
    AuditEntry,
    Document,
    DocumentStatus,
    FieldType,
    PercentageRect,
    Recipient,
    RecipientRole,
    SignatureField,
)
from .service import DocumentService
from .store import DocumentStore

logger = logging.getLogger("signdesk.api")

__version__ = "0.1.0"

app = FastAPI(
    title="SignDesk",
    description="Field placement and multi-party signing workflow.",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_service: Optional[DocumentService] = None


def get_service() -> DocumentService:
    """Process-wide service, built from ``SIGNDESK_*`` settings on first use."""
    global _service
    if _service is None:
        settings = SignDeskSettings()
        _service = DocumentService(DocumentStore(settings.data_dir), settings=settings)
    return _service


ServiceDep = Annotated[DocumentService, Depends(get_service)]


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_CODES: list[tuple[type[Exception], int]] = [
    (FieldNotFoundError, 404),
    (RecipientNotFoundError, 404),
    (EligibilityViolation, 409),
    (InvalidTransition, 409),
    (DocumentLockedError, 409),
    (StaleDocumentError, 409),
    (PersistenceFailure, 502),
    (RenderDivergence, 502),
]


async def signdesk_error_handler(request: Request, exc: SignDeskError) -> JSONResponse:
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 400)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    content: dict[str, Any] = {"detail": str(exc)}
    if isinstance(exc, EligibilityViolation):
        content["blocking_recipient_id"] = exc.blocking_recipient_id
    return JSONResponse(status_code=status_code, content=content)


async def not_found_handler(request: Request, exc: FileNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Document not found"})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


app.add_exception_handler(SignDeskError, signdesk_error_handler)
app.add_exception_handler(FileNotFoundError, not_found_handler)
app.add_exception_handler(ValueError, value_error_handler)


def client_actor(
    request: Request, actor_id: Optional[str] = None, name: Optional[str] = None
) -> Actor:
    """Build an :class:`Actor` from the request origin."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return Actor(
        actor_id=actor_id,
        name=name,
        ip_address=ip_address,
        location=request.headers.get("x-client-location"),
    )


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class ActorFields(BaseModel):
    """Identity of the caller, recorded in the audit trail."""

    actor_id: Optional[str] = None
    actor_name: Optional[str] = None


class CreateDocumentRequest(ActorFields):
    title: str
    page_count: int = Field(1, ge=1)
    recipients: list[Recipient] = []


class AddRecipientRequest(ActorFields):
    name: str
    email: Optional[str] = None
    signing_order: Optional[int] = Field(None, ge=1)
    role: RecipientRole = RecipientRole.SIGNER


class AddFieldRequest(ActorFields):
    page_number: int = Field(1, ge=1)
    recipient_id: str
    type: FieldType = FieldType.SIGNATURE
    rect: Optional[PercentageRect] = None
    value: Optional[str] = None
    required: bool = False
    font_id: Optional[str] = None
    placeholder_text: Optional[str] = None


class UpdateFieldRequest(ActorFields):
    patch: dict[str, Any]


class AlignRequest(ActorFields):
    alignment: Alignment


class SavePageRequest(ActorFields):
    fields: list[SignatureField]


class TransitionRequest(ActorFields):
    status: DocumentStatus
    details: str = ""


class SignRequest(ActorFields):
    recipient_id: str
    field_values: dict[str, str] = {}


class DeclineRequest(ActorFields):
    recipient_id: str
    reason: str = ""


def _actor(request: Request, body: Optional[ActorFields] = None) -> Actor:
    if body is None:
        return client_actor(request)
    return client_actor(request, body.actor_id, body.actor_name)


# ---------------------------------------------------------------------------
# Document endpoints
# ---------------------------------------------------------------------------

@app.post("/api/documents", response_model=Document, status_code=201)
def create_document(req: CreateDocumentRequest, request: Request, service: ServiceDep) -> Document:
    """Create a draft document."""
    return service.create_document(
        req.title,
        actor=_actor(request, req),
        page_count=req.page_count,
        recipients=req.recipients,
    )


@app.get("/api/documents", response_model=list[Document])
def list_documents(
    service: ServiceDep,
    status: Optional[DocumentStatus] = Query(None, description="Filter by status"),
    include_archived: bool = Query(False, description="Include archived documents"),
) -> list[Document]:
    """List documents, optionally filtered by status."""
    return service.list_documents(status=status, include_archived=include_archived)


@app.get("/api/documents/{document_id}", response_model=Document)
def get_document(document_id: str, service: ServiceDep) -> Document:
    return service.get_document(document_id)


@app.get("/api/documents/{document_id}/audit", response_model=list[AuditEntry])
def get_audit_trail(document_id: str, service: ServiceDep) -> list[AuditEntry]:
    """Get the audit trail for a document."""
    return service.get_audit_trail(document_id)


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------

@app.post("/api/documents/{document_id}/recipients", response_model=Recipient, status_code=201)
def add_recipient(
    document_id: str, req: AddRecipientRequest, request: Request, service: ServiceDep
) -> Recipient:
    return service.add_recipient(
        document_id,
        req.name,
        email=req.email,
        signing_order=req.signing_order,
        role=req.role,
        actor=_actor(request, req),
    )


@app.delete("/api/documents/{document_id}/recipients/{recipient_id}", response_model=Recipient)
def remove_recipient(
    document_id: str, recipient_id: str, request: Request, service: ServiceDep
) -> Recipient:
    return service.remove_recipient(document_id, recipient_id, actor=_actor(request))


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------

@app.post("/api/documents/{document_id}/fields", response_model=SignatureField, status_code=201)
def add_field(
    document_id: str, req: AddFieldRequest, request: Request, service: ServiceDep
) -> SignatureField:
    """Place a field. Missing geometry takes the type's default size."""
    partial = req.model_dump(
        exclude={"actor_id", "actor_name", "page_number"}, exclude_none=True
    )
    return service.add_field(document_id, req.page_number, partial, actor=_actor(request, req))


@app.patch("/api/documents/{document_id}/fields/{field_id}", response_model=SignatureField)
def update_field(
    document_id: str, field_id: str, req: UpdateFieldRequest, request: Request, service: ServiceDep
) -> SignatureField:
    return service.update_field(document_id, field_id, req.patch, actor=_actor(request, req))


@app.delete("/api/documents/{document_id}/fields/{field_id}", response_model=SignatureField)
def remove_field(
    document_id: str, field_id: str, request: Request, service: ServiceDep
) -> SignatureField:
    return service.remove_field(document_id, field_id, actor=_actor(request))


@app.post(
    "/api/documents/{document_id}/fields/{field_id}/duplicate",
    response_model=SignatureField,
    status_code=201,
)
def duplicate_field(
    document_id: str, field_id: str, request: Request, service: ServiceDep
) -> SignatureField:
    return service.duplicate_field(document_id, field_id, actor=_actor(request))


@app.post(
    "/api/documents/{document_id}/fields/{field_id}/align",
    response_model=list[SignatureField],
)
def align_fields(
    document_id: str, field_id: str, req: AlignRequest, request: Request, service: ServiceDep
) -> list[SignatureField]:
    """Align every other field on the anchor's page to ``field_id``."""
    return service.align_fields(document_id, field_id, req.alignment, actor=_actor(request, req))


@app.put(
    "/api/documents/{document_id}/pages/{page_number}/fields",
    response_model=list[SignatureField],
)
def save_page_fields(
    document_id: str,
    page_number: int,
    req: SavePageRequest,
    request: Request,
    service: ServiceDep,
) -> list[SignatureField]:
    """Replace every field on one page (explicit save)."""
    return service.save_page_fields(
        document_id, page_number, req.fields, actor=_actor(request, req)
    )


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

@app.get(
    "/api/documents/{document_id}/eligibility/{recipient_id}",
    response_model=EligibilityResult,
)
def check_eligibility(document_id: str, recipient_id: str, service: ServiceDep) -> EligibilityResult:
    """Whether a recipient may sign now (advisory; signing re-checks)."""
    return service.check_eligibility(document_id, recipient_id)


@app.post("/api/documents/{document_id}/status", response_model=Document)
def transition_status(
    document_id: str, req: TransitionRequest, request: Request, service: ServiceDep
) -> Document:
    return service.transition_status(
        document_id, req.status, actor=_actor(request, req), details=req.details
    )


@app.post("/api/documents/{document_id}/sign", response_model=Document)
def sign_document(
    document_id: str, req: SignRequest, request: Request, service: ServiceDep
) -> Document:
    """Sign as a recipient, filling that recipient's fields."""
    return service.sign(
        document_id, req.recipient_id, req.field_values, actor=_actor(request, req)
    )


@app.post("/api/documents/{document_id}/decline", response_model=Document)
def decline_document(
    document_id: str, req: DeclineRequest, request: Request, service: ServiceDep
) -> Document:
    return service.decline(document_id, req.recipient_id, req.reason, actor=_actor(request, req))


@app.post("/api/documents/{document_id}/bake", response_model=Document)
def bake_document(document_id: str, request: Request, service: ServiceDep) -> Document:
    """Bake a processing document into its final artifact."""
    return service.bake(document_id, actor=_actor(request))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/api/health")
def health() -> dict:
    """Health check."""
    return {"status": "ok", "service": "signdesk", "version": __version__}
