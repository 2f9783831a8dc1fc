"""Tests for the structured SKU codec (garment_kernel.domain.sku)."""

import pytest

from garment_kernel.domain.sku import (
    WashMapping,
    is_structured_sku,
    parse_sku,
    rewrite_length,
    rewrite_wash,
)
from garment_kernel.exceptions import SkuMismatchError, ValidationError


class TestParseSku:

    def test_five_segments(self):
        sku = parse_sku("JN01-32-SLM-30-RAW")
        assert (sku.style, sku.waist, sku.shape, sku.length, sku.wash) == (
            "JN01", "32", "SLM", "30", "RAW",
        )
        assert str(sku) == "JN01-32-SLM-30-RAW"

    @pytest.mark.parametrize("value", ["JN01-32-SLM-30", "JN01--SLM-30-RAW", "", "A"])
    def test_unstructured_rejected(self, value):
        assert not is_structured_sku(value)
        with pytest.raises(ValidationError):
            parse_sku(value)


class TestRewriteWash:

    def test_raw_to_light_wash(self):
        assert rewrite_wash("JN01-32-SLM-30-RAW", "STA") == "JN01-32-SLM-30-STA"

    def test_brw_to_dark_wash(self):
        assert rewrite_wash("JN01-32-SLM-30-BRW", "ONX") == "JN01-32-SLM-30-ONX"

    def test_wrong_base(self):
        with pytest.raises(SkuMismatchError) as exc_info:
            rewrite_wash("JN01-32-SLM-30-RAW", "ONX")
        assert exc_info.value.expected == "BRW"
        assert exc_info.value.actual == "RAW"

    def test_unknown_wash_code(self):
        with pytest.raises(ValidationError) as exc_info:
            rewrite_wash("JN01-32-SLM-30-RAW", "XXX")
        assert exc_info.value.field == "target_wash"

    def test_custom_mapping_table(self):
        table = {"SND": WashMapping(code="SND", base="ECR", shade="light")}
        assert rewrite_wash("JN01-32-SLM-30-ECR", "SND", table) == "JN01-32-SLM-30-SND"

    def test_unstructured_sku(self):
        with pytest.raises(ValidationError):
            rewrite_wash("FREEFORM", "STA")


class TestRewriteLength:

    def test_hem(self):
        assert rewrite_length("JN01-32-SLM-30-STA", "32") == "JN01-32-SLM-32-STA"

    @pytest.mark.parametrize("length", ["", "3-2"])
    def test_invalid_length(self, length):
        with pytest.raises(ValidationError):
            rewrite_length("JN01-32-SLM-30-STA", length)
