"""
Unit tests for job types.
"""

import pytest

from bgjob.constants import UINT32_MAX
from bgjob.types.job import ExitDisposition, ProgressReport


class TestProgressReport:
    """Tests for ProgressReport."""

    def test_describe(self):
        """The progress line shows raw flags and fraction."""
        report = ProgressReport(is_known=True, is_running=False, numerator=3, denominator=3)

        assert report.describe() == "Known =true, Running=false, Percent Complete=3/3"

    def test_accepts_unsigned_32_bit_bounds(self):
        """Both ends of the unsigned 32-bit range are valid."""
        report = ProgressReport(True, True, 0, UINT32_MAX)

        assert report.denominator == UINT32_MAX

    @pytest.mark.parametrize("numerator,denominator", [(-1, 0), (0, UINT32_MAX + 1)])
    def test_rejects_out_of_range_values(self, numerator, denominator):
        """Values outside unsigned 32-bit are rejected."""
        with pytest.raises(ValueError):
            ProgressReport(True, True, numerator, denominator)


class TestExitDisposition:
    """Tests for ExitDisposition."""

    def test_starts_successful(self):
        assert ExitDisposition().success is True

    def test_downgrade_is_permanent(self):
        """Once failed, a disposition cannot become successful again."""
        disposition = ExitDisposition()

        disposition.downgrade("query failed")
        disposition.downgrade("another failure")

        assert disposition.success is False
        assert disposition.reasons == ["query failed", "another failure"]

