"""Pointer-driven drag, resize and placement of fields.

One gesture at a time moves through ``IDLE -> SELECTING -> (DRAGGING |
RESIZING) -> IDLE``. Every update is computed from the snapshot taken at
pointer-down, never from the previous frame, so coalescing moves cannot
accumulate error. Geometry is clamped, never rejected.

All gesture state lives in :class:`InteractionState`, owned by the
controller and inspectable by callers. Nothing is module-global.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .collection import FieldCollection
from .field_types import get_field_config
from .geometry import (
    ContainerBox,
    client_point_to_pct,
    constrain_position,
    constrain_size,
    delta_pct,
)
from .models import FieldType, PercentageRect, SignatureField

logger = logging.getLogger("signdesk.interaction")


class GesturePhase(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    DRAGGING = "dragging"
    RESIZING = "resizing"


@dataclass(frozen=True)
class GestureSnapshot:
    """Where a gesture started: the field's rect and the pointer position."""

    field_id: str
    start_rect: PercentageRect
    start_x: float
    start_y: float


@dataclass
class InteractionState:
    """Everything the controller knows about the current gesture.

    Attributes:
        phase: Current gesture phase.
        snapshot: Start of the active gesture, if any.
        pending_pointer: Latest pointer position not yet applied.
        add_mode: True while the next canvas click places a field.
        add_type: Field type placed by add-mode.
        add_recipient_id: Recipient assigned to fields placed by add-mode.
        pointer_captured: True while the controller holds pointer capture.
    """

    phase: GesturePhase = GesturePhase.IDLE
    snapshot: Optional[GestureSnapshot] = None
    pending_pointer: Optional[tuple[float, float]] = None
    add_mode: bool = False
    add_type: FieldType = FieldType.SIGNATURE
    add_recipient_id: Optional[str] = None
    pointer_captured: bool = False

    @property
    def field_id(self) -> Optional[str]:
        return self.snapshot.field_id if self.snapshot else None

    @property
    def is_active(self) -> bool:
        return self.phase in (GesturePhase.DRAGGING, GesturePhase.RESIZING)


class InteractionController:
    """Translates pointer events on one page container into field edits.

    Args:
        collection: Fields being edited.
        container: On-screen box of the page the pointer moves over.
        state: Existing state to resume from (a fresh one by default).
    """

    def __init__(
        self,
        collection: FieldCollection,
        container: ContainerBox,
        state: Optional[InteractionState] = None,
    ) -> None:
        self.collection = collection
        self.container = container
        self.state = state or InteractionState()

    def set_container(self, container: ContainerBox) -> None:
        """Update the container box (zoom, scroll or window resize)."""
        self.container = container

    # ------------------------------------------------------------------
    # Gestures
    # ------------------------------------------------------------------

    def pointer_down(
        self, field_id: str, client_x: float, client_y: float, editable: bool = True
    ) -> bool:
        """Pointer pressed on a field body.

        Selects the field and, when ``editable``, starts a drag.

        Returns:
            True if a drag started.
        """
        return self._begin(field_id, client_x, client_y, GesturePhase.DRAGGING, editable)

    def pointer_down_handle(
        self, field_id: str, client_x: float, client_y: float, editable: bool = True
    ) -> bool:
        """Pointer pressed on a field's resize handle. Starts a resize."""
        return self._begin(field_id, client_x, client_y, GesturePhase.RESIZING, editable)

    def pointer_move(self, client_x: float, client_y: float) -> None:
        """Record the latest pointer position; :meth:`on_frame` applies it."""
        if not self.state.is_active:
            return
        if self._active_field() is None:
            self.abort()
            return
        self.state.pending_pointer = (client_x, client_y)

    def on_frame(self) -> Optional[SignatureField]:
        """Apply the pending pointer position, at most once per frame.

        Returns:
            The updated field, or None if nothing was pending.
        """
        pending = self.state.pending_pointer
        if pending is None or not self.state.is_active:
            return None
        self.state.pending_pointer = None
        return self._apply(*pending)

    def pointer_up(
        self, client_x: Optional[float] = None, client_y: Optional[float] = None
    ) -> Optional[SignatureField]:
        """End the gesture.

        Any pointer position not yet applied (including the release point,
        when given) is applied exactly once. The field's rect at this point
        is final.

        Returns:
            The field in its final state, or None if no gesture was active.
        """
        if not self.state.is_active:
            self._reset()
            return None
        if client_x is not None and client_y is not None:
            self.state.pending_pointer = (client_x, client_y)
        field_id = self.state.field_id
        updated = self.on_frame()
        self._reset()
        return updated or self.collection.find_field(field_id)

    def abort(self) -> None:
        """Drop the active gesture without touching any field."""
        if self.state.phase != GesturePhase.IDLE:
            logger.debug("Aborting %s gesture on %s", self.state.phase.value, self.state.field_id)
        self._reset()

    # ------------------------------------------------------------------
    # Add-mode
    # ------------------------------------------------------------------

    def start_add_mode(self, field_type: FieldType, recipient_id: str) -> None:
        """Arm placement: the next canvas click creates a field."""
        self.abort()
        self.state.add_mode = True
        self.state.add_type = FieldType(field_type)
        self.state.add_recipient_id = recipient_id

    def cancel_add_mode(self) -> None:
        self.state.add_mode = False
        self.state.add_recipient_id = None

    def canvas_click(
        self, page_number: int, client_x: float, client_y: float
    ) -> Optional[SignatureField]:
        """Click on empty canvas.

        In add-mode, places a field of the armed type with its top-left
        corner at the click, default size, clamped into the page, then
        leaves add-mode. Otherwise the click clears the selection.

        Returns:
            The placed field, or None outside add-mode.
        """
        if not self.state.add_mode:
            self.collection.deselect_all()
            return None

        x_pct, y_pct = client_point_to_pct(client_x, client_y, self.container)
        field = self.collection.add_field(
            page_number,
            {
                "recipient_id": self.state.add_recipient_id,
                "type": self.state.add_type,
                "x_pct": x_pct,
                "y_pct": y_pct,
            },
        )
        self.cancel_add_mode()
        self.collection.select_field(field.id)
        return field

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _begin(
        self,
        field_id: str,
        client_x: float,
        client_y: float,
        phase: GesturePhase,
        editable: bool,
    ) -> bool:
        # A new gesture always replaces whatever was left over.
        self.abort()
        self.cancel_add_mode()

        field = self.collection.find_field(field_id)
        if field is None:
            return False

        self.state.phase = GesturePhase.SELECTING
        if self.collection.selected_id != field_id:
            self.collection.select_field(field_id)
        if not editable:
            self.state.phase = GesturePhase.IDLE
            return False

        self.state.snapshot = GestureSnapshot(
            field_id=field_id,
            start_rect=field.rect,
            start_x=client_x,
            start_y=client_y,
        )
        self.state.phase = phase
        self.state.pointer_captured = True
        return True

    def _apply(self, client_x: float, client_y: float) -> Optional[SignatureField]:
        field = self._active_field()
        if field is None:
            self.abort()
            return None

        snapshot = self.state.snapshot
        dx, dy = delta_pct(
            snapshot.start_x, snapshot.start_y, client_x, client_y, self.container
        )
        if self.state.phase == GesturePhase.DRAGGING:
            rect = constrain_position(snapshot.start_rect, dx, dy)
        else:
            config = get_field_config(field.field_type)
            rect = constrain_size(
                snapshot.start_rect, dx, dy, config.min_width_pct, config.min_height_pct
            )
        if rect == field.rect:
            return field
        return self.collection.update_field(field.id, {"rect": rect})

    def _active_field(self) -> Optional[SignatureField]:
        if self.state.snapshot is None:
            return None
        return self.collection.find_field(self.state.snapshot.field_id)

    def _reset(self) -> None:
        self.state.phase = GesturePhase.IDLE
        self.state.snapshot = None
        self.state.pending_pointer = None
        self.state.pointer_captured = False
