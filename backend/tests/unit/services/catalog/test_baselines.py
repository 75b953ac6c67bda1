"""
Unit tests for the static NIST 800-53 baselines.
"""

import pytest

from rmfwatch.services.catalog import (
    HIGH_CONTROLS,
    LOW_CONTROLS,
    MODERATE_CONTROLS,
    BaselineLevel,
    get_baseline_controls,
)


@pytest.mark.unit
class TestBaselineSets:
    def test_levels_are_nested(self) -> None:
        low = set(get_baseline_controls(BaselineLevel.LOW))
        moderate = set(get_baseline_controls(BaselineLevel.MODERATE))
        high = set(get_baseline_controls(BaselineLevel.HIGH))

        assert low <= moderate <= high
        assert low < moderate < high

    @pytest.mark.parametrize("level", list(BaselineLevel))
    def test_no_duplicates(self, level: BaselineLevel) -> None:
        controls = get_baseline_controls(level)
        assert len(controls) == len(set(controls))

    def test_high_is_union_of_all_lists(self) -> None:
        expected = set(LOW_CONTROLS) | set(MODERATE_CONTROLS) | set(HIGH_CONTROLS)
        assert set(get_baseline_controls(BaselineLevel.HIGH)) == expected

    def test_low_controls_come_first(self) -> None:
        high = get_baseline_controls(BaselineLevel.HIGH)
        assert high[: len(LOW_CONTROLS)] == list(dict.fromkeys(LOW_CONTROLS))

    def test_accepts_string_level(self) -> None:
        assert get_baseline_controls("Moderate") == get_baseline_controls(BaselineLevel.MODERATE)

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError):
            get_baseline_controls("Extreme")

    def test_core_controls_present(self) -> None:
        low = get_baseline_controls(BaselineLevel.LOW)
        for control_id in ("AC-2", "AU-2", "CM-6", "IA-2", "SC-7", "SI-2"):
            assert control_id in low
