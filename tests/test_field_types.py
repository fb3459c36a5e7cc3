"""Tests for the field type registry and font formula."""

import pytest
from pydantic import ValidationError

from signdesk.field_types import (
    FIELD_TYPE_CONFIGS,
    LINE_HEIGHT,
    font_size_px,
    font_style,
    font_weight,
    get_field_config,
    letter_spacing,
)
from signdesk.models import FieldType


class TestRegistry:
    def test_every_type_has_config(self):
        assert set(FIELD_TYPE_CONFIGS) == set(FieldType)

    def test_signature_defaults(self):
        config = get_field_config(FieldType.SIGNATURE)
        assert (config.default_width_pct, config.default_height_pct) == (20, 6)
        assert (config.min_width_pct, config.min_height_pct) == (8, 3)
        assert config.placeholder == "SIGNATURE"

    def test_lookup_by_string(self):
        assert get_field_config("date") is FIELD_TYPE_CONFIGS[FieldType.DATE]

    def test_configs_are_frozen(self):
        with pytest.raises(ValidationError):
            get_field_config(FieldType.TEXT).max_font_px = 99

    def test_defaults_respect_minimums(self):
        for config in FIELD_TYPE_CONFIGS.values():
            assert config.default_width_pct >= config.min_width_pct
            assert config.default_height_pct >= config.min_height_pct


class TestFontSize:
    """round(clamp(height * scale, min, max))."""

    def test_signature_on_letter_page(self):
        # 6% of a 792px page is 47.52px; 47.52 * 0.45 = 21.384
        assert font_size_px(FieldType.SIGNATURE, 47.52) == 21

    def test_rounds_half_up(self):
        assert font_size_px(FieldType.SIGNATURE, 50) == 23

    def test_clamped_to_min(self):
        assert font_size_px(FieldType.SIGNATURE, 1) == 10
        assert font_size_px(FieldType.DATE, 0) == 8

    def test_clamped_to_max(self):
        assert font_size_px(FieldType.SIGNATURE, 5000) == 40
        assert font_size_px(FieldType.INITIAL, 5000) == 36
        assert font_size_px(FieldType.DATE, 5000) == 18
        assert font_size_px(FieldType.TEXT, 5000) == 20

    @pytest.mark.parametrize("field_type", list(FieldType))
    def test_monotonic_and_within_clamps(self, field_type):
        config = get_field_config(field_type)
        previous = 0
        for tenth in range(0, 2000, 7):
            size = font_size_px(field_type, tenth / 10)
            assert config.min_font_px <= size <= config.max_font_px
            assert size >= previous
            previous = size


class TestStyle:
    def test_weights(self):
        assert font_weight(FieldType.SIGNATURE) == 400
        assert font_weight(FieldType.DATE) == 600

    def test_letter_spacing(self):
        assert letter_spacing(FieldType.INITIAL) == "0.4px"
        assert letter_spacing(FieldType.TEXT) == "normal"

    def test_font_style_block(self):
        style = font_style(FieldType.SIGNATURE, 47.52, "dancing-script")
        assert style == {
            "font_family": "dancing-script",
            "font_size_px": 21,
            "font_weight": 400,
            "letter_spacing": "0.4px",
            "line_height": LINE_HEIGHT,
        }

    def test_font_style_default_family(self):
        assert font_style(FieldType.TEXT, 30)["font_family"] == "inherit"
