"""Tests for API cost estimation."""

import logging

import pytest

from site_snacker.config import CostTrackingConfig
from site_snacker.costs import AUDIO, VISION, CostTracker
from site_snacker.errors import CostLimitExceededError


class TestPricing:
    """Tests for per-call cost formulas."""

    def test_vision_cost(self):
        tracker = CostTracker()
        cost = tracker.track_vision(2000, 1000, image_count=2, model="gpt-4o-mini")
        assert cost == pytest.approx(0.0653)

    def test_audio_cost(self):
        tracker = CostTracker()
        assert tracker.track_audio(120, model="whisper-1") == pytest.approx(0.012)

    def test_totals(self):
        tracker = CostTracker()
        tracker.track_vision(2000, 1000, image_count=2)
        tracker.track_audio(120)

        assert tracker.call_count == 2
        assert tracker.total_cost == pytest.approx(0.0773)
        assert tracker.subtotal(VISION) + tracker.subtotal(AUDIO) == pytest.approx(tracker.total_cost)


class TestSummary:
    """Tests for the human-readable summary."""

    def test_summary_sections(self):
        tracker = CostTracker()
        tracker.track_vision(2000, 1000, image_count=2, model="gpt-4o-mini")
        tracker.track_audio(120, model="whisper-1")

        summary = tracker.get_summary()

        assert "API Usage Summary:" in summary
        assert "Image Processing:" in summary
        assert "Tokens: 3000 (2000 prompt, 1000 completion)" in summary
        assert "Audio Processing:" in summary
        assert "Duration: 120.0 seconds" in summary
        assert "  Subtotal: $0.0653" in summary
        assert "  Subtotal: $0.0120" in summary
        assert summary.endswith("Total Estimated Cost: $0.0773\n")

    def test_empty_summary(self):
        summary = CostTracker().get_summary()
        assert "Image Processing:" not in summary
        assert "Audio Processing:" not in summary
        assert "Total Estimated Cost: $0.0000" in summary


class TestLimits:
    """Tests for warn and stop thresholds."""

    def test_warns_once(self, caplog):
        tracker = CostTracker(limits=CostTrackingConfig(warn_threshold=0.01))
        with caplog.at_level(logging.WARNING, logger="site_snacker"):
            tracker.track_vision(1000, 1000)
            tracker.track_vision(1000, 1000)
        warnings = [record for record in caplog.records if "has passed" in record.getMessage()]
        assert len(warnings) == 1

    def test_stop_threshold(self):
        tracker = CostTracker(limits=CostTrackingConfig(stop_threshold=0.01))
        tracker.check_budget()
        tracker.track_vision(1000, 1000)
        with pytest.raises(CostLimitExceededError):
            tracker.check_budget()

    def test_zero_disables_stop(self):
        tracker = CostTracker(limits=CostTrackingConfig(stop_threshold=0))
        tracker.track_vision(100000, 100000)
        tracker.check_budget()

    def test_disabled_tracking_never_stops(self):
        tracker = CostTracker(limits=CostTrackingConfig(enabled=False, stop_threshold=0.001))
        tracker.track_audio(600)
        tracker.check_budget()
