"""Percentage geometry shared by the editor and the renderer.

Every function here is pure. The renderer imports this module unchanged,
so a field baked onto the final artifact lands on exactly the pixels the
signer previewed. Out-of-range input is clamped, never rejected.
"""

from dataclasses import dataclass

from .models import PercentageRect, PixelRect


@dataclass(frozen=True)
class PixelSize:
    """Width and height of a container in pixels."""

    width: float
    height: float

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0


@dataclass(frozen=True)
class ContainerBox:
    """On-screen bounding box of a page container (client coordinates)."""

    left: float
    top: float
    width: float
    height: float

    @property
    def size(self) -> PixelSize:
        return PixelSize(self.width, self.height)

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0


def _clamp(value: float, low: float, high: float) -> float:
    # Lower bound wins when the range is empty, matching max(low, min(high, v)).
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Scalar conversions
# ---------------------------------------------------------------------------

def pct_to_pixel(pct: float, container_size: float) -> float:
    """Convert a percentage of ``container_size`` to pixels."""
    return (pct / 100) * container_size


def pixel_to_pct(pixel: float, container_size: float) -> float:
    """Convert pixels to a percentage of ``container_size``.

    Returns 0 for an empty container instead of dividing by zero.
    """
    if container_size == 0:
        return 0.0
    return (pixel / container_size) * 100


# ---------------------------------------------------------------------------
# Rect conversions
# ---------------------------------------------------------------------------

def rect_pct_to_pixel(rect: PercentageRect, size: PixelSize) -> PixelRect:
    """Convert a percentage rect to pixels inside a container of ``size``."""
    return PixelRect(
        x=pct_to_pixel(rect.x_pct, size.width),
        y=pct_to_pixel(rect.y_pct, size.height),
        width=pct_to_pixel(rect.w_pct, size.width),
        height=pct_to_pixel(rect.h_pct, size.height),
    )


def rect_pixel_to_pct(rect: PixelRect, size: PixelSize) -> PercentageRect:
    """Convert a pixel rect to percentages of a container of ``size``."""
    return PercentageRect(
        x_pct=pixel_to_pct(rect.x, size.width),
        y_pct=pixel_to_pct(rect.y, size.height),
        w_pct=pixel_to_pct(rect.width, size.width),
        h_pct=pixel_to_pct(rect.height, size.height),
    )


def delta_pct(
    start_x: float,
    start_y: float,
    current_x: float,
    current_y: float,
    container: ContainerBox,
) -> tuple[float, float]:
    """Pointer movement since ``(start_x, start_y)`` as percentages.

    Returns ``(0, 0)`` when the container has no area.
    """
    if not container.is_valid:
        return 0.0, 0.0
    return (
        pixel_to_pct(current_x - start_x, container.width),
        pixel_to_pct(current_y - start_y, container.height),
    )


def client_point_to_pct(
    client_x: float, client_y: float, container: ContainerBox
) -> tuple[float, float]:
    """Position of a client-space point relative to ``container``, in percent."""
    return (
        pixel_to_pct(client_x - container.left, container.width),
        pixel_to_pct(client_y - container.top, container.height),
    )


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------

def constrain_position(
    rect: PercentageRect, delta_x_pct: float, delta_y_pct: float
) -> PercentageRect:
    """Move ``rect`` by a delta, keeping it inside the page.

    ``x`` is clamped to ``[0, 100 - w]`` and ``y`` to ``[0, 100 - h]``.
    Width and height are unchanged.
    """
    max_x = 100 - rect.w_pct
    max_y = 100 - rect.h_pct
    return rect.model_copy(
        update={
            "x_pct": _clamp(rect.x_pct + delta_x_pct, 0.0, max_x),
            "y_pct": _clamp(rect.y_pct + delta_y_pct, 0.0, max_y),
        }
    )


def constrain_size(
    rect: PercentageRect,
    delta_w_pct: float,
    delta_h_pct: float,
    min_w_pct: float = 1.0,
    min_h_pct: float = 1.0,
) -> PercentageRect:
    """Resize ``rect`` by a delta, keeping it inside the page.

    ``w`` is clamped to ``[min_w, 100 - x]`` and ``h`` to
    ``[min_h, 100 - y]``. Position is unchanged. When the field sits so
    close to the edge that the minimum no longer fits, the page edge wins.
    """
    max_w = 100 - rect.x_pct
    max_h = 100 - rect.y_pct
    return rect.model_copy(
        update={
            "w_pct": _clamp(rect.w_pct + delta_w_pct, min(min_w_pct, max_w), max_w),
            "h_pct": _clamp(rect.h_pct + delta_h_pct, min(min_h_pct, max_h), max_h),
        }
    )


def clamp_rect(
    rect: PercentageRect, min_w_pct: float = 1.0, min_h_pct: float = 1.0
) -> PercentageRect:
    """Force an arbitrary rect into the page.

    Size is clamped first (to ``[min, 100]``), then position is clamped
    so the rect still fits. Used for placement, patches and type changes,
    where the input did not come from a bounded gesture.
    """
    w = _clamp(rect.w_pct, min(min_w_pct, 100.0), 100.0)
    h = _clamp(rect.h_pct, min(min_h_pct, 100.0), 100.0)
    return PercentageRect(
        x_pct=_clamp(rect.x_pct, 0.0, 100 - w),
        y_pct=_clamp(rect.y_pct, 0.0, 100 - h),
        w_pct=w,
        h_pct=h,
    )


def is_within_bounds(rect: PercentageRect, tolerance: float = 1e-9) -> bool:
    """True if ``rect`` satisfies the page-bounds invariant."""
    return (
        rect.x_pct >= -tolerance
        and rect.y_pct >= -tolerance
        and rect.x_pct + rect.w_pct <= 100 + tolerance
        and rect.y_pct + rect.h_pct <= 100 + tolerance
    )
