"""Per-type sizing defaults and the font-size formula.

The editor and the renderer both size text with :func:`font_size_px`.
Any divergence between the two is a correctness bug: the signer
previews exactly what gets baked.
"""

import math
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .models import FieldType


class FieldTypeConfig(BaseModel):
    """Static sizing and typography for one field type.

    Attributes:
        min_width_pct: Smallest width a resize may produce.
        min_height_pct: Smallest height a resize may produce.
        default_width_pct: Width of a newly placed field.
        default_height_pct: Height of a newly placed field.
        font_scale_factor: Font size as a fraction of field height.
        min_font_px: Lower font clamp.
        max_font_px: Upper font clamp.
        font_weight: CSS font weight.
        letter_spacing: CSS letter spacing.
        placeholder: Label shown in an empty field.
    """

    model_config = ConfigDict(frozen=True)

    min_width_pct: float
    min_height_pct: float
    default_width_pct: float
    default_height_pct: float
    font_scale_factor: float
    min_font_px: int
    max_font_px: int
    font_weight: int
    letter_spacing: str = "normal"
    placeholder: str = ""


FIELD_TYPE_CONFIGS: dict[FieldType, FieldTypeConfig] = {
    FieldType.SIGNATURE: FieldTypeConfig(
        min_width_pct=8,
        min_height_pct=3,
        default_width_pct=20,
        default_height_pct=6,
        font_scale_factor=0.45,
        min_font_px=10,
        max_font_px=40,
        font_weight=400,
        letter_spacing="0.4px",
        placeholder="SIGNATURE",
    ),
    FieldType.INITIAL: FieldTypeConfig(
        min_width_pct=4,
        min_height_pct=3,
        default_width_pct=8,
        default_height_pct=6,
        font_scale_factor=0.6,
        min_font_px=8,
        max_font_px=36,
        font_weight=400,
        letter_spacing="0.4px",
        placeholder="INITIALS",
    ),
    FieldType.DATE: FieldTypeConfig(
        min_width_pct=6,
        min_height_pct=2,
        default_width_pct=12,
        default_height_pct=4,
        font_scale_factor=0.35,
        min_font_px=8,
        max_font_px=18,
        font_weight=600,
        placeholder="DATE",
    ),
    FieldType.TEXT: FieldTypeConfig(
        min_width_pct=6,
        min_height_pct=2,
        default_width_pct=15,
        default_height_pct=4,
        font_scale_factor=0.35,
        min_font_px=8,
        max_font_px=20,
        font_weight=600,
        placeholder="TEXT",
    ),
}

LINE_HEIGHT = 1.1


def get_field_config(field_type: FieldType) -> FieldTypeConfig:
    """Look up the config for ``field_type`` (accepts the raw string too)."""
    return FIELD_TYPE_CONFIGS[FieldType(field_type)]


def _round_half_up(value: float) -> int:
    # Editor rounds with Math.round; Python's round() is banker's rounding.
    return int(math.floor(value + 0.5))


def font_size_px(field_type: FieldType, height_px: float) -> int:
    """Font size for a field of ``field_type`` that is ``height_px`` tall.

    ``round(clamp(height_px * scale, min_font_px, max_font_px))``.
    Monotonically non-decreasing in ``height_px`` and always within the
    type's clamps.
    """
    config = get_field_config(field_type)
    scaled = height_px * config.font_scale_factor
    clamped = min(max(scaled, config.min_font_px), config.max_font_px)
    return _round_half_up(clamped)


def font_weight(field_type: FieldType) -> int:
    return get_field_config(field_type).font_weight


def letter_spacing(field_type: FieldType) -> str:
    return get_field_config(field_type).letter_spacing


def font_style(
    field_type: FieldType,
    height_px: float,
    font_family: Optional[str] = None,
) -> dict[str, object]:
    """Complete text style for a field, as CSS-like properties."""
    return {
        "font_family": font_family or "inherit",
        "font_size_px": font_size_px(field_type, height_px),
        "font_weight": font_weight(field_type),
        "letter_spacing": letter_spacing(field_type),
        "line_height": LINE_HEIGHT,
    }
