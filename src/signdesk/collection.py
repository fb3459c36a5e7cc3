"""In-memory field collection with selection state.

All mutations are synchronous and visible to the caller immediately.
Persistence is a separate, explicit :meth:`FieldCollection.save` step;
nothing here writes to storage on its own.
"""

import logging
from typing import Any, Iterable, Optional, Union
from uuid import uuid4

from .errors import FieldNotFoundError, PersistenceFailure
from .field_types import get_field_config
from .geometry import clamp_rect
from .models import Alignment, FieldType, PercentageRect, SignatureField

logger = logging.getLogger("signdesk.collection")

DUPLICATE_OFFSET_PCT = 5.0

_RECT_KEYS = ("x_pct", "y_pct", "w_pct", "h_pct")
_PATCHABLE = {
    "recipient_id",
    "page_number",
    "value",
    "required",
    "font_id",
    "placeholder_text",
}


def _merge_rect(
    current: Optional[PercentageRect], update: Union[PercentageRect, dict, None]
) -> Optional[PercentageRect]:
    if update is None:
        return current
    if isinstance(update, PercentageRect):
        return update
    base = current.model_dump() if current is not None else {}
    return PercentageRect(**{**base, **update})


class FieldCollection:
    """The set of fields on a document, plus the current selection.

    Args:
        fields: Initial fields (e.g. loaded from storage).
    """

    def __init__(self, fields: Optional[Iterable[SignatureField]] = None) -> None:
        self._fields: dict[str, SignatureField] = {}
        self._selected_id: Optional[str] = None
        self._dirty_pages: set[int] = set()
        self._page_edits: dict[int, int] = {}
        if fields:
            self.load(fields)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._fields

    @property
    def fields(self) -> list[SignatureField]:
        return list(self._fields.values())

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def selected_field(self) -> Optional[SignatureField]:
        if self._selected_id is None:
            return None
        return self._fields.get(self._selected_id)

    @property
    def dirty_pages(self) -> set[int]:
        return set(self._dirty_pages)

    def get_field(self, field_id: str) -> SignatureField:
        """Return the field with ``field_id``.

        Raises:
            FieldNotFoundError: If no such field exists.
        """
        try:
            return self._fields[field_id]
        except KeyError:
            raise FieldNotFoundError(f"Field {field_id} not found") from None

    def _touch(self, *pages: int) -> None:
        for page in set(pages):
            self._dirty_pages.add(page)
            self._page_edits[page] = self._page_edits.get(page, 0) + 1

    def find_field(self, field_id: str) -> Optional[SignatureField]:
        return self._fields.get(field_id)

    def fields_on_page(self, page_number: int) -> list[SignatureField]:
        return [f for f in self._fields.values() if f.page_number == page_number]

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def load(self, fields: Iterable[SignatureField]) -> None:
        """Replace the whole collection (e.g. after reloading from storage)."""
        self._fields = {f.id: f for f in fields}
        self._selected_id = None
        self._dirty_pages.clear()

    def add_field(self, page_number: int, partial: dict[str, Any]) -> SignatureField:
        """Place a new field on ``page_number``.

        ``partial`` must name a ``recipient_id``. Missing ``type`` defaults
        to signature; a missing or partial ``rect`` is filled from the
        type's default size. The rect is clamped into the page.

        Returns:
            The created field.

        Raises:
            ValueError: If ``partial`` reuses an existing id.
        """
        data = dict(partial)
        field_type = FieldType(data.pop("type", data.pop("field_type", FieldType.SIGNATURE)))
        config = get_field_config(field_type)

        rect_input = data.pop("rect", None)
        for key in _RECT_KEYS:
            if key in data:
                rect_input = {**(rect_input or {}), key: data.pop(key)}
        default_rect = PercentageRect(
            w_pct=config.default_width_pct, h_pct=config.default_height_pct
        )
        rect = _merge_rect(default_rect, rect_input)
        rect = clamp_rect(rect, config.min_width_pct, config.min_height_pct)

        data.pop("page_number", None)
        field = SignatureField(
            page_number=page_number, field_type=field_type, rect=rect, **data
        )
        if field.id in self._fields:
            raise ValueError(f"Field {field.id} already exists")

        self._fields[field.id] = field
        self._touch(page_number)
        logger.debug("Added %s field %s on page %d", field_type.value, field.id[:8], page_number)
        return field

    def update_field(self, field_id: str, patch: dict[str, Any]) -> SignatureField:
        """Apply ``patch`` to a field and return the updated field.

        Geometry may be patched with a ``rect`` (full or partial) or with
        the flat ``x_pct``/``y_pct``/``w_pct``/``h_pct`` keys. Changing
        ``type`` keeps the id and re-validates the rect against the new
        type's minimums.

        Raises:
            FieldNotFoundError: If the field does not exist.
            ValueError: If ``patch`` contains an unknown or immutable key.
        """
        current = self.get_field(field_id)
        data = dict(patch)
        if "id" in data and data.pop("id") != field_id:
            raise ValueError("Field id cannot be changed")

        field_type = current.field_type
        if "type" in data or "field_type" in data:
            field_type = FieldType(data.pop("type", data.pop("field_type", field_type)))

        rect_input = data.pop("rect", None)
        for key in _RECT_KEYS:
            if key in data:
                rect_input = {**(rect_input or {}), key: data.pop(key)}

        unknown = set(data) - _PATCHABLE
        if unknown:
            raise ValueError(f"Cannot patch field attribute(s): {', '.join(sorted(unknown))}")

        config = get_field_config(field_type)
        rect = _merge_rect(current.rect, rect_input)
        if rect_input is not None or field_type != current.field_type:
            rect = clamp_rect(rect, config.min_width_pct, config.min_height_pct)

        updated = SignatureField.model_validate(
            {**current.model_dump(), **data, "field_type": field_type, "rect": rect}
        )
        self._fields[field_id] = updated
        self._touch(current.page_number, updated.page_number)
        return updated

    def remove_field(self, field_id: str) -> SignatureField:
        """Delete a field. Clears the selection if it was selected.

        Raises:
            FieldNotFoundError: If the field does not exist.
        """
        field = self.get_field(field_id)
        del self._fields[field_id]
        if self._selected_id == field_id:
            self._selected_id = None
        self._touch(field.page_number)
        logger.debug("Removed field %s", field_id[:8])
        return field

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_field(self, field_id: str) -> SignatureField:
        """Select a field, replacing any previous selection."""
        field = self.get_field(field_id)
        self._selected_id = field_id
        return field

    def deselect_all(self) -> None:
        self._selected_id = None

    # ------------------------------------------------------------------
    # Bulk editing
    # ------------------------------------------------------------------

    def duplicate_field(self, field_id: str) -> SignatureField:
        """Copy a field, offset so it is visibly distinct, kept in bounds."""
        source = self.get_field(field_id)
        config = get_field_config(source.field_type)
        rect = clamp_rect(
            source.rect.model_copy(
                update={
                    "x_pct": source.rect.x_pct + DUPLICATE_OFFSET_PCT,
                    "y_pct": source.rect.y_pct + DUPLICATE_OFFSET_PCT,
                }
            ),
            config.min_width_pct,
            config.min_height_pct,
        )
        copy = source.model_copy(
            update={"id": str(uuid4()), "rect": rect},
            deep=True,
        )
        self._fields[copy.id] = copy
        self._touch(copy.page_number)
        return copy

    def align_fields(
        self, anchor_field_id: str, alignment: Union[Alignment, str]
    ) -> list[SignatureField]:
        """Align every other field on the anchor's page to the anchor.

        Horizontal modes (left/center/right) only move ``x``; vertical
        modes (top/middle/bottom) only move ``y``. Results are clamped so
        no field leaves the page.

        Returns:
            The fields that were moved, in their updated state.
        """
        anchor = self.get_field(anchor_field_id)
        alignment = Alignment(alignment)
        a = anchor.rect
        moved = []
        for field in self.fields_on_page(anchor.page_number):
            if field.id == anchor.id:
                continue
            r = field.rect
            if alignment == Alignment.LEFT:
                update = {"x_pct": a.x_pct}
            elif alignment == Alignment.CENTER:
                update = {"x_pct": a.x_pct + a.w_pct / 2 - r.w_pct / 2}
            elif alignment == Alignment.RIGHT:
                update = {"x_pct": a.x_pct + a.w_pct - r.w_pct}
            elif alignment == Alignment.TOP:
                update = {"y_pct": a.y_pct}
            elif alignment == Alignment.MIDDLE:
                update = {"y_pct": a.y_pct + a.h_pct / 2 - r.h_pct / 2}
            else:
                update = {"y_pct": a.y_pct + a.h_pct - r.h_pct}
            moved.append(self.update_field(field.id, {"rect": update}))
        return moved

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self, coordinator, document_id: str, page_number: Optional[int] = None):
        """Push dirty pages to storage through a :class:`SaveCoordinator`.

        Pages whose save fails (after the coordinator's retries) stay
        dirty and keep their in-memory edits. A page edited while its
        save was in flight also stays dirty, so the next save picks up
        the newer state.

        Returns:
            One :class:`~signdesk.persistence.SaveResult` per saved page.

        Raises:
            PersistenceFailure: After retries are exhausted.
        """
        pages = [page_number] if page_number is not None else sorted(self._dirty_pages)
        results = []
        for page in pages:
            edits = self._page_edits.get(page, 0)
            try:
                result = await coordinator.save(document_id, page, self.fields_on_page(page))
            except PersistenceFailure:
                logger.error("Save of page %d failed; keeping local edits", page)
                raise
            if result.saved and self._page_edits.get(page, 0) == edits:
                self._dirty_pages.discard(page)
            elif result.saved:
                logger.debug("Page %d changed during save; still dirty", page)
            results.append(result)
        return results
