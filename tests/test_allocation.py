"""Exhaustive rounding and fallback tests for the split allocator."""

from decimal import Decimal

import pytest

from monee_split.allocation import (
    allocate,
    allocate_equal,
    allocate_manual,
    allocate_percent,
    from_cents,
    manual_tolerance,
    round2,
    to_cents,
)
from monee_split.config import Settings
from monee_split.exceptions import AllocationFallbackWarning, ValidationError
from monee_split.models import SplitMode, SplitRequest

A, B, C = 1, 2, 3


class TestRoundingHelpers:
    """Tests for the shared rounding rule."""

    def test_round2_is_half_even(self):
        """Ties go to the even cent."""
        assert round2("0.125") == Decimal("0.12")
        assert round2("0.135") == Decimal("0.14")
        assert round2("2.675") == Decimal("2.68")

    def test_round2_float_goes_through_str(self):
        """Floats are not expanded to their binary value before rounding."""
        assert round2(1.005) == Decimal("1.00")
        assert round2(0.1 + 0.2) == Decimal("0.30")

    def test_to_cents_and_back(self):
        assert to_cents(Decimal("33.34")) == 3334
        assert to_cents("12.345") == 1234  # half-even tie
        assert from_cents(3334) == Decimal("33.34")
        assert from_cents(0) == Decimal("0")

    def test_amount_too_large_for_cents_is_a_validation_error(self):
        """Beyond the 28-digit context there is no room for cents."""
        with pytest.raises(ValidationError, match="out of range"):
            round2(Decimal("1e27"))
        with pytest.raises(ValidationError, match="out of range"):
            to_cents(Decimal("1e27"))


class TestEqualSplit:
    """Tests for the EQUAL policy."""

    def test_remainder_cent_goes_to_first_member(self):
        """100.00 between 3 is 33.34, 33.33, 33.33 in member order."""
        result = allocate_equal(Decimal("100.00"), [A, B, C])

        assert list(result.shares.values()) == [
            Decimal("33.34"),
            Decimal("33.33"),
            Decimal("33.33"),
        ]
        assert list(result.shares) == [A, B, C]
        assert result.fallback is None

    def test_two_remainder_cents(self):
        """Two leftover cents go to the first two members."""
        result = allocate_equal(Decimal("0.05"), [A, B, C])

        assert result.shares == {A: Decimal("0.02"), B: Decimal("0.02"), C: Decimal("0.01")}

    def test_single_cent_between_many(self):
        result = allocate_equal(Decimal("0.01"), [A, B, C])

        assert result.shares == {A: Decimal("0.01"), B: Decimal("0"), C: Decimal("0")}

    def test_member_order_decides_remainder(self):
        result = allocate_equal(Decimal("100.00"), [C, A, B])

        assert result.shares[C] == Decimal("33.34")
        assert result.shares[A] == Decimal("33.33")

    @pytest.mark.parametrize(
        "total", ["0.01", "0.02", "7", "99.99", "100.00", "1234.57", "10000.01"]
    )
    def test_shares_always_add_up(self, total):
        """Conservation holds for every member count."""
        for count in range(1, 8):
            result = allocate_equal(Decimal(total), list(range(1, count + 1)))
            assert result.total == Decimal(total)

    def test_zero_members_is_an_error(self):
        with pytest.raises(ValidationError, match="zero members"):
            allocate_equal(Decimal("10.00"), [])

    def test_duplicate_members_is_an_error(self):
        with pytest.raises(ValidationError, match="Duplicate"):
            allocate_equal(Decimal("10.00"), [A, A])

    def test_non_positive_total_is_an_error(self):
        with pytest.raises(ValidationError, match="positive"):
            allocate_equal(Decimal("0"), [A, B])


class TestPercentSplit:
    """Tests for the PERCENT policy."""

    def test_exact_percentages(self):
        result = allocate_percent(Decimal("100.00"), [A, B, C], {A: 50, B: 25, C: 25})

        assert result.shares == {
            A: Decimal("50.00"),
            B: Decimal("25.00"),
            C: Decimal("25.00"),
        }
        assert result.applied_mode == SplitMode.PERCENT

    def test_weights_are_normalised(self):
        """Weights need not add up to 100."""
        result = allocate_percent(Decimal("90.00"), [A, B], {A: Decimal("2"), B: Decimal("1")})

        assert result.shares == {A: Decimal("60.00"), B: Decimal("30.00")}

    def test_leftover_cent_goes_to_largest_remainder(self):
        """1.00 at 2:1 is 66.67 / 33.33 cents; the .67 wins the leftover."""
        result = allocate_percent(Decimal("1.00"), [A, B], {A: 2, B: 1})

        assert result.shares == {A: Decimal("0.67"), B: Decimal("0.33")}
        assert result.total == Decimal("1.00")

    def test_equal_weights_tie_breaks_by_member_order(self):
        result = allocate_percent(Decimal("100.00"), [A, B, C], {A: 1, B: 1, C: 1})

        assert list(result.shares.values()) == [
            Decimal("33.34"),
            Decimal("33.33"),
            Decimal("33.33"),
        ]

    def test_missing_members_get_zero(self):
        result = allocate_percent(Decimal("50.00"), [A, B, C], {A: 100})

        assert result.shares == {A: Decimal("50.00"), B: Decimal("0"), C: Decimal("0")}

    def test_negative_weights_count_as_zero(self):
        result = allocate_percent(Decimal("40.00"), [A, B], {A: -50, B: 100})

        assert result.shares == {A: Decimal("0"), B: Decimal("40.00")}

    @pytest.mark.parametrize(
        "weights",
        [
            {A: Decimal("33.3"), B: Decimal("33.3"), C: Decimal("33.4")},
            {A: Decimal("12.5"), B: Decimal("70"), C: Decimal("17.49")},
            {A: Decimal("1"), B: Decimal("1"), C: Decimal("5")},
        ],
    )
    def test_no_rounding_drift(self, weights):
        """Shares add up to the total exactly, whatever the weights."""
        for total in ["0.01", "9.99", "123.45", "1000.00"]:
            result = allocate_percent(Decimal(total), [A, B, C], weights)
            assert result.total == Decimal(total)

    def test_zero_total_weight_falls_back_to_equal(self):
        result = allocate_percent(Decimal("30.00"), [A, B, C], {})

        assert result.shares == {A: Decimal("10.00"), B: Decimal("10.00"), C: Decimal("10.00")}
        assert result.requested_mode == SplitMode.PERCENT
        assert result.applied_mode == SplitMode.EQUAL
        assert isinstance(result.fallback, AllocationFallbackWarning)
        assert result.fell_back

    def test_negligible_total_weight_falls_back(self):
        result = allocate_percent(Decimal("30.00"), [A, B], {A: Decimal("0.00005")})

        assert result.applied_mode == SplitMode.EQUAL
        assert "PERCENT" in str(result.fallback)


class TestManualSplit:
    """Tests for the MANUAL policy."""

    def test_exact_amounts_are_kept(self):
        result = allocate_manual(
            Decimal("10.00"), [A, B, C], {A: Decimal("5"), B: Decimal("3"), C: Decimal("2")}
        )

        assert result.shares == {A: Decimal("5.00"), B: Decimal("3.00"), C: Decimal("2.00")}
        assert result.applied_mode == SplitMode.MANUAL
        assert result.fallback is None

    def test_small_gap_is_absorbed_by_largest_share(self):
        """A gap inside the tolerance lands on the largest share."""
        result = allocate_manual(
            Decimal("100.00"), [A, B], {A: Decimal("50.00"), B: Decimal("49.98")}
        )

        assert result.shares == {A: Decimal("50.02"), B: Decimal("49.98")}
        assert result.total == Decimal("100.00")

    def test_small_gap_kept_when_not_absorbing(self):
        result = allocate_manual(
            Decimal("100.00"),
            [A, B],
            {A: Decimal("50.00"), B: Decimal("49.98")},
            absorb_residual=False,
        )

        assert result.shares == {A: Decimal("50.00"), B: Decimal("49.98")}
        assert result.fallback is None

    def test_amounts_are_rounded_to_cents(self):
        result = allocate_manual(
            Decimal("10.00"),
            [A, B],
            {A: Decimal("6.666"), B: Decimal("3.334")},
            absorb_residual=False,
        )

        assert result.shares == {A: Decimal("6.67"), B: Decimal("3.33")}

    def test_large_gap_falls_back_to_equal(self):
        result = allocate_manual(
            Decimal("100.00"), [A, B], {A: Decimal("50"), B: Decimal("40")}
        )

        assert result.shares == {A: Decimal("50.00"), B: Decimal("50.00")}
        assert result.requested_mode == SplitMode.MANUAL
        assert result.applied_mode == SplitMode.EQUAL
        assert "MANUAL" in str(result.fallback)

    def test_tolerance_floor_for_small_totals(self):
        """Below 5.00 the tolerance is the 0.05 floor, not 1%."""
        accepted = allocate_manual(
            Decimal("2.00"), [A, B], {A: Decimal("1.00"), B: Decimal("0.96")}
        )
        rejected = allocate_manual(
            Decimal("2.00"), [A, B], {A: Decimal("1.00"), B: Decimal("0.94")}
        )

        assert accepted.fallback is None
        assert rejected.fallback is not None

    def test_gap_equal_to_tolerance_floor_is_accepted(self):
        """A 0.05 gap on 2.00 sits exactly on the floor and is absorbed."""
        result = allocate_manual(
            Decimal("2.00"), [A, B], {A: Decimal("1.00"), B: Decimal("0.95")}
        )

        assert result.fallback is None
        assert result.shares == {A: Decimal("1.05"), B: Decimal("0.95")}

    def test_gap_equal_to_one_percent_is_accepted(self):
        result = allocate_manual(
            Decimal("1000.00"), [A, B], {A: Decimal("500.00"), B: Decimal("490.00")}
        )

        assert result.fallback is None
        assert result.shares == {A: Decimal("510.00"), B: Decimal("490.00")}

    def test_gap_just_over_one_percent_falls_back(self):
        result = allocate_manual(
            Decimal("1000.00"), [A, B], {A: Decimal("500.00"), B: Decimal("489.99")}
        )

        assert result.applied_mode == SplitMode.EQUAL
        assert result.shares == {A: Decimal("500.00"), B: Decimal("500.00")}

    def test_tolerance_is_one_percent_of_large_totals(self):
        assert manual_tolerance(Decimal("1000.00")) == Decimal("10")
        assert manual_tolerance(Decimal("2.00")) == Decimal("0.05")

    def test_nothing_proposed_falls_back(self):
        result = allocate_manual(Decimal("10.00"), [A, B], {})

        assert result.applied_mode == SplitMode.EQUAL
        assert result.fallback is not None

    def test_negative_amount_falls_back(self):
        result = allocate_manual(
            Decimal("10.00"), [A, B], {A: Decimal("12.00"), B: Decimal("-2.00")}
        )

        assert result.applied_mode == SplitMode.EQUAL
        assert "negative" in result.fallback.reason

    def test_zero_members_is_an_error(self):
        with pytest.raises(ValidationError):
            allocate_manual(Decimal("10.00"), [], {})


class TestAllocateDispatch:
    """Tests for the allocate() entry point."""

    def test_defaults_to_equal(self):
        result = allocate(Decimal("9.00"), [A, B, C], SplitRequest())

        assert result.applied_mode == SplitMode.EQUAL
        assert result.total == Decimal("9.00")

    def test_percent_request_uses_percent_weights(self):
        request = SplitRequest(
            split_mode=SplitMode.PERCENT,
            percent_by_member={A: Decimal("75"), B: Decimal("25")},
            manual_by_member={A: Decimal("1")},
        )

        result = allocate(Decimal("8.00"), [A, B], request)

        assert result.shares == {A: Decimal("6.00"), B: Decimal("2.00")}

    def test_settings_thresholds_are_used(self, tmp_path):
        settings = Settings(
            database_path=tmp_path / "test.db",
            manual_absorb_residual=False,
            manual_min_tolerance=Decimal("0.01"),
        )
        request = SplitRequest(
            split_mode=SplitMode.MANUAL,
            manual_by_member={A: Decimal("2.00"), B: Decimal("0.97")},
        )

        # Gap 0.03 exceeds the 0.01 floor (1% of 3.00 is 0.03, so it is allowed)
        result = allocate(Decimal("3.00"), [A, B], request, settings)

        assert result.fallback is None
        assert result.shares == {A: Decimal("2.00"), B: Decimal("0.97")}

    def test_default_settings_absorb_manual_residual(self, tmp_path):
        settings = Settings(database_path=tmp_path / "test.db")
        request = SplitRequest(
            split_mode=SplitMode.MANUAL,
            manual_by_member={A: Decimal("50.00"), B: Decimal("49.98")},
        )

        result = allocate(Decimal("100.00"), [A, B], request, settings)

        assert settings.manual_absorb_residual is True
        assert result.shares == {A: Decimal("50.02"), B: Decimal("49.98")}

    def test_to_shares_keeps_member_order(self):
        result = allocate(Decimal("100.00"), [B, A], SplitRequest())

        shares = result.to_shares(expense_id=7)

        assert [s.member_id for s in shares] == [B, A]
        assert all(s.expense_id == 7 for s in shares)
