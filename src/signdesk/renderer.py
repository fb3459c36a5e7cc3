"""Server-side rendering of fields for the final artifact.

Placement and font sizing come from :mod:`signdesk.geometry` and
:mod:`signdesk.field_types`, the same functions the editor uses, so the
bake reproduces the preview exactly. :func:`verify_geometry` checks a
bake result against the document before it is accepted.

:class:`ManifestRenderer` is the bundled baker: it writes a JSON bake
manifest (every field's pixel box and text style) next to the document.
Rasterizing that manifest onto PDF pages is left to the external
rendering service.
"""

import logging
import math
from typing import Optional

from .errors import PersistenceFailure, RenderDivergence
from .field_types import font_size_px, font_style
from .geometry import PixelSize, rect_pct_to_pixel, rect_pixel_to_pct
from .models import (
    BakeResult,
    Document,
    FieldType,
    PageInfo,
    PercentageRect,
    RenderedField,
)

logger = logging.getLogger("signdesk.renderer")

GEOMETRY_TOLERANCE_PCT = 1e-6


def render_field(
    rect: PercentageRect,
    field_type: FieldType,
    value: Optional[str],
    container_size: PixelSize,
    field_id: str = "",
    page_number: int = 1,
    font_family: Optional[str] = None,
) -> RenderedField:
    """Compute how a single field is drawn in a container of ``container_size``."""
    pixel_rect = rect_pct_to_pixel(rect, container_size)
    style = font_style(field_type, pixel_rect.height, font_family)
    return RenderedField(
        field_id=field_id,
        page_number=page_number,
        field_type=field_type,
        pixel_rect=pixel_rect,
        font_size_px=style["font_size_px"],
        font_weight=style["font_weight"],
        letter_spacing=style["letter_spacing"],
        font_family=style["font_family"],
        value=value,
    )


def _page_size(document: Document, page_number: int) -> PixelSize:
    page = document.get_page(page_number) or PageInfo(page_number=page_number)
    return PixelSize(page.width, page.height)


def bake_placements(document: Document) -> list[RenderedField]:
    """Render every field of ``document`` at its page's reference size."""
    placements = []
    for field in document.fields:
        family = field.font_id if field.field_type in (FieldType.SIGNATURE, FieldType.INITIAL) else None
        placements.append(
            render_field(
                field.rect,
                field.field_type,
                field.value,
                _page_size(document, field.page_number),
                field_id=field.id,
                page_number=field.page_number,
                font_family=family,
            )
        )
    return placements


def verify_geometry(
    document: Document,
    placements: list[RenderedField],
    tolerance: float = GEOMETRY_TOLERANCE_PCT,
) -> None:
    """Check baked placements against the document's field geometry.

    Raises:
        RenderDivergence: If a field is missing from the bake, or its
            baked box or font size differs from what the editor showed.
    """
    by_id = {p.field_id: p for p in placements}
    for field in document.fields:
        expected = {
            "rect": field.rect.model_dump(),
            "page_number": field.page_number,
        }
        placement = by_id.get(field.id)
        if placement is None:
            _diverged(field, expected, {})

        size = _page_size(document, field.page_number)
        baked_rect = rect_pixel_to_pct(placement.pixel_rect, size)
        expected["font_size_px"] = font_size_px(
            field.field_type, rect_pct_to_pixel(field.rect, size).height
        )
        actual = {
            "rect": baked_rect.model_dump(),
            "page_number": placement.page_number,
            "font_size_px": placement.font_size_px,
        }
        same_rect = all(
            math.isclose(expected["rect"][k], actual["rect"][k], abs_tol=tolerance)
            for k in expected["rect"]
        )
        if (
            not same_rect
            or placement.page_number != field.page_number
            or placement.font_size_px != expected["font_size_px"]
        ):
            _diverged(field, expected, actual)


def _diverged(field, expected: dict, actual: dict) -> None:
    logger.error(
        "Render divergence on field %s: expected=%s actual=%s field=%s",
        field.id,
        expected,
        actual,
        field.model_dump_json(by_alias=True),
    )
    raise RenderDivergence(field.id, expected, actual)


class ManifestRenderer:
    """Baker that records the final placements as a JSON manifest.

    Args:
        store: A :class:`~signdesk.store.DocumentStore` to write into.
    """

    def __init__(self, store) -> None:
        self.store = store

    def bake_document(self, document: Document) -> BakeResult:
        placements = bake_placements(document)
        try:
            path = self.store.save_bake_manifest(document.document_id, placements)
        except OSError as exc:
            raise PersistenceFailure(f"Could not write bake manifest: {exc}") from exc
        logger.info(
            "Baked %d field(s) for document %s", len(placements), document.document_id[:8]
        )
        return BakeResult(signed_artifact_url=path.resolve().as_uri(), placements=placements)
