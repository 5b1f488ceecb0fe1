from __future__ import annotations

from dataclasses import replace

import pytest

from flyergen.gen.capabilities import KNOWN_PROVIDERS, get_capabilities
from flyergen.gen.quality import compensated_steps, needs_compensation, tier_steps
from flyergen.gen.types import ASPECT_RATIOS, actual_aspect_ratio, exact_dimensions, ratio_sides

QWEN = get_capabilities("fal-qwen")


class TestCompensation:
    def test_portrait_gets_boosted(self) -> None:
        assert compensated_steps(QWEN, "9:16") == 38

    def test_square_unchanged(self) -> None:
        assert compensated_steps(QWEN, "1:1") == 25

    def test_clamped_to_max(self) -> None:
        assert compensated_steps(QWEN, "9:16", "high") == 50

    def test_mild_ratio_below_threshold(self) -> None:
        assert not needs_compensation("4:5")
        assert compensated_steps(QWEN, "4:5") == 25

    def test_threshold_is_configurable(self) -> None:
        assert compensated_steps(QWEN, "4:5", threshold=1.2) == 38

    def test_factor_is_configurable(self) -> None:
        assert compensated_steps(QWEN, "16:9", factor=2.0) == 50

    def test_non_compensating_provider(self) -> None:
        caps = replace(QWEN, compensates_quality=False)
        assert compensated_steps(caps, "9:16") == 25

    def test_deterministic(self) -> None:
        assert {compensated_steps(QWEN, "1:3") for _ in range(5)} == {38}


class TestTierSteps:
    def test_tiers(self) -> None:
        assert tier_steps(QWEN, "fast") == 15
        assert tier_steps(QWEN, "standard") == 25
        assert tier_steps(QWEN, "high") == 35

    def test_unknown_tier(self) -> None:
        with pytest.raises(ValueError):
            tier_steps(QWEN, "ultra")


class TestCapabilities:
    def test_known_providers(self) -> None:
        assert set(KNOWN_PROVIDERS) == {"ideogram", "fal-ideogram", "fal-qwen", "huggingface", "stability"}

    def test_lookup_is_case_insensitive(self) -> None:
        assert get_capabilities(" Ideogram ").name == "ideogram"

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError):
            get_capabilities("midjourney")

    def test_huggingface_has_no_seeds(self) -> None:
        assert get_capabilities("huggingface").supports_seeds is False


class TestRatioDimensions:
    def test_exact_dimensions_keep_the_ratio(self) -> None:
        for ratio in ASPECT_RATIOS:
            width, height = exact_dimensions(ratio)
            rw, rh = ratio_sides(ratio)
            assert width * rh == height * rw
            assert max(width, height) <= 1024
            assert width % 8 == 0 and height % 8 == 0

    def test_exact_dimensions_values(self) -> None:
        assert exact_dimensions("1:1") == (1024, 1024)
        assert exact_dimensions("4:5") == (800, 1000)
        assert exact_dimensions("16:10") == (1024, 640)

    def test_actual_ratio_prefers_requested_spelling(self) -> None:
        assert actual_aspect_ratio(1024, 640, "16:10") == "16:10"
        assert actual_aspect_ratio(768, 1024, "4:5") == "3:4"
