"""
Tests for the interval model (compute_end / overlaps).

Run with: pytest tests/test_intervals.py -v
"""

from datetime import timedelta
from itertools import product

import pytest

from app.booking.intervals import BookingInterval, compute_end, overlaps, validate_duration
from tests.factories import at


# ============================================================================
# COMPUTE END
# ============================================================================

class TestComputeEnd:
    """Tests for compute_end and validate_duration."""

    def test_zero_duration_returns_start(self):
        start = at(10)
        assert compute_end(start, 0) == start

    def test_sixty_minutes(self):
        start = at(10)
        assert compute_end(start, 60) - start == timedelta(minutes=60)

    def test_thirty_minutes(self):
        start = at(10)
        assert compute_end(start, 30) - start == timedelta(minutes=30)

    def test_crosses_midnight(self):
        """23:30 + 45 minutes ends on the next day."""
        assert compute_end(at(23, 30, day=2), 45) == at(0, 15, day=3)

    def test_keeps_timezone(self):
        assert compute_end(at(10), 15).tzinfo == at(10).tzinfo

    def test_validate_duration_accepts_zero(self):
        assert validate_duration(0) == 0

    def test_validate_duration_rejects_negative(self):
        with pytest.raises(ValueError):
            validate_duration(-1)


# ============================================================================
# OVERLAPS
# ============================================================================

class TestOverlaps:
    """Half-open [start, end) overlap semantics."""

    def test_disjoint_intervals_do_not_conflict(self):
        """10:00-11:00 vs 12:00-13:00."""
        assert overlaps(at(10), at(11), at(12), at(13)) is False

    def test_partial_overlap_conflicts(self):
        """10:00-11:00 vs 10:30-11:30."""
        assert overlaps(at(10), at(11), at(10, 30), at(11, 30)) is True

    def test_identical_intervals_conflict(self):
        assert overlaps(at(10), at(11), at(10), at(11)) is True

    def test_back_to_back_does_not_conflict(self):
        assert overlaps(at(10), at(11), at(11), at(12)) is False
        assert overlaps(at(11), at(12), at(10), at(11)) is False

    def test_containment_conflicts_both_ways(self):
        assert overlaps(at(9), at(12), at(10), at(11)) is True
        assert overlaps(at(10), at(11), at(9), at(12)) is True

    def test_partial_overlap_from_the_left(self):
        assert overlaps(at(10, 30), at(11, 30), at(10), at(11)) is True

    def test_zero_length_probe_inside_conflicts(self):
        assert overlaps(at(10, 30), at(10, 30), at(10), at(11)) is True

    def test_zero_length_probe_at_start_does_not_conflict(self):
        assert overlaps(at(10), at(10), at(10), at(11)) is False

    def test_zero_length_probe_at_end_does_not_conflict(self):
        assert overlaps(at(11), at(11), at(10), at(11)) is False

    def test_interval_dataclass_delegates(self):
        a = BookingInterval(at(10), at(11))
        assert a.overlaps(BookingInterval(at(10, 59), at(12))) is True
        assert a.overlaps(BookingInterval(at(11), at(12))) is False

    def test_properties_over_quarter_hour_grid(self):
        """Disjoint/back-to-back pairs never overlap; strictly intersecting pairs always do."""
        points = [at(9) + timedelta(minutes=15 * i) for i in range(9)]
        for s1, e1, s2, e2 in product(points, repeat=4):
            if s1 > e1 or s2 > e2:
                continue
            if e1 <= s2 or e2 <= s1:
                assert overlaps(s1, e1, s2, e2) is False
            if s1 < e2 and s2 < e1:
                assert overlaps(s1, e1, s2, e2) is True
