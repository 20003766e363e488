"""Unit tests for cancer_survival.survival module."""
import pytest
import numpy as np
from cancer_survival.config import ConfidenceIntervalType
from cancer_survival.survival import (
    fit_kaplan_meier,
    greenwood_variance,
    confidence_interval,
    survival_at,
    surv_labels,
)


class TestFitKaplanMeier:
    """Tests for fit_kaplan_meier function."""

    def test_hand_computed_curve(self, sample_durations_events):
        """Test the product-limit estimate against a hand calculation."""
        durations, events = sample_durations_events

        km = fit_kaplan_meier(durations, events)

        np.testing.assert_allclose(km.timeline, [0.0, 2.0, 3.0, 5.0])
        np.testing.assert_allclose(km.survival, [1.0, 0.75, 0.5, 0.0])
        assert km.n_records == 4
        assert km.n_events == 3

    def test_starts_at_one(self, synthetic_table):
        """Test that S(0) is 1."""
        durations = synthetic_table["survival_time"].to_numpy()
        events = synthetic_table["death_observed"].astype(int).to_numpy()

        km = fit_kaplan_meier(durations, events)

        assert km.timeline[0] == 0.0
        assert km.survival[0] == 1.0

    def test_non_increasing(self, synthetic_table):
        """Test that the curve never increases."""
        durations = synthetic_table["survival_time"].to_numpy()
        events = synthetic_table["death_observed"].astype(int).to_numpy()

        km = fit_kaplan_meier(durations, events)

        assert np.all(np.diff(km.survival) <= 1e-12)
        assert np.all((km.survival >= 0) & (km.survival <= 1))

    def test_death_at_time_zero_keeps_origin(self):
        """Test that a death at t = 0 still starts the curve at 1 before dropping."""
        km = fit_kaplan_meier([0.0, 1.0, 2.0, 3.0], [1, 0, 1, 0])

        np.testing.assert_allclose(km.timeline, [0.0, 0.0, 1.0, 2.0, 3.0])
        np.testing.assert_allclose(km.survival, [1.0, 0.75, 0.75, 0.375, 0.375])
        assert km.n_records == 4
        assert km.n_events == 2
        assert survival_at(km, 0.0)[0] == pytest.approx(0.75)
        assert survival_at(km, 2.5)[0] == pytest.approx(0.375)

    def test_no_censoring_equals_empirical(self):
        """Test that without censoring S(t) equals the fraction still alive."""
        durations = np.array([1.0, 2.0, 2.0, 4.0, 5.0])
        events = np.ones(5, dtype=int)

        km = fit_kaplan_meier(durations, events)

        for t in [0.5, 1.0, 1.5, 2.0, 3.0, 4.0, 5.0]:
            expected = (durations > t).mean()
            assert survival_at(km, t)[0] == pytest.approx(expected)

    def test_all_censored_stays_at_one(self):
        """Test that a sample with no deaths keeps S(t) = 1."""
        km = fit_kaplan_meier([1.0, 2.0, 3.0], [0, 0, 0])

        assert np.all(km.survival == 1.0)
        assert np.all(km.variance == 0.0)
        assert np.isinf(km.median_survival)

    def test_tied_deaths_single_step(self):
        """Test that tied deaths reduce the curve in one step."""
        km = fit_kaplan_meier([3.0, 3.0, 3.0, 6.0], [1, 1, 0, 0])

        assert survival_at(km, 3.0)[0] == pytest.approx(0.5)
        assert survival_at(km, 2.999)[0] == 1.0

    def test_median_survival(self, sample_durations_events):
        """Test that the median is the first time S(t) drops to 0.5."""
        km = fit_kaplan_meier(*sample_durations_events)

        assert km.median_survival == pytest.approx(3.0)

    def test_confidence_band_contains_estimate(self, synthetic_table):
        """Test that the pointwise band brackets the curve for every transform."""
        durations = synthetic_table["survival_time"].to_numpy()
        events = synthetic_table["death_observed"].astype(int).to_numpy()

        for ci_type in ConfidenceIntervalType:
            km = fit_kaplan_meier(durations, events, ci_type=ci_type)
            assert np.all(km.ci_lower <= km.survival + 1e-12)
            assert np.all(km.ci_upper >= km.survival - 1e-12)
            assert np.all((km.ci_lower >= 0) & (km.ci_upper <= 1))

    def test_to_frame(self, sample_durations_events):
        """Test the tabular export has one row per time point."""
        km = fit_kaplan_meier(*sample_durations_events)

        frame = km.to_frame()

        assert len(frame) == len(km.timeline)
        assert {"time", "at_risk", "survival", "ci_lower", "ci_upper"} <= set(frame.columns)
        assert frame["at_risk"].iloc[0] == 4

    def test_length_mismatch_raises(self):
        """Test that arrays of different length raise ValueError."""
        with pytest.raises(ValueError, match="differ in length"):
            fit_kaplan_meier([1.0, 2.0], [1])

    def test_empty_raises(self):
        """Test that empty input raises ValueError."""
        with pytest.raises(ValueError, match="at least one"):
            fit_kaplan_meier([], [])

    def test_negative_duration_raises(self):
        """Test that negative durations raise ValueError."""
        with pytest.raises(ValueError, match="non-negative"):
            fit_kaplan_meier([1.0, -2.0], [1, 0])

    def test_invalid_event_codes_raise(self):
        """Test that event codes other than 0/1 raise ValueError."""
        with pytest.raises(ValueError, match="events"):
            fit_kaplan_meier([1.0, 2.0], [1, 2])


class TestGreenwoodVariance:
    """Tests for greenwood_variance function."""

    def test_hand_computed_variance(self, sample_durations_events):
        """Test Greenwood's formula on the hand-computed example."""
        km = fit_kaplan_meier(*sample_durations_events)

        # t=2: 0.75^2 * 1/(4*3); t=3: 0.5^2 * (1/12 + 1/(3*2)); t=5: S=0
        np.testing.assert_allclose(km.variance, [0.0, 0.046875, 0.0625, 0.0])

    def test_zero_when_no_deaths(self):
        """Test that no deaths gives zero variance."""
        var = greenwood_variance(np.ones(3), np.array([3, 2, 1]), np.zeros(3))

        np.testing.assert_allclose(var, 0.0)


class TestConfidenceInterval:
    """Tests for confidence_interval function."""

    def test_log_transform(self):
        """Test the log-scale interval used by R's survfit."""
        lower, upper = confidence_interval(np.array([0.5]), np.array([0.01]), 0.05, "log")

        se_log = 0.1 / 0.5
        assert lower[0] == pytest.approx(0.5 * np.exp(-1.959964 * se_log), rel=1e-5)
        assert upper[0] == pytest.approx(0.5 * np.exp(1.959964 * se_log), rel=1e-5)

    def test_plain_transform_clipped(self):
        """Test that the symmetric interval is clipped to [0, 1]."""
        lower, upper = confidence_interval(np.array([0.95]), np.array([0.01]), 0.05, "plain")

        assert upper[0] == 1.0
        assert lower[0] == pytest.approx(0.95 - 1.959964 * 0.1, rel=1e-5)

    def test_collapses_at_boundaries(self):
        """Test that bounds equal S where S is 0 or 1."""
        s = np.array([1.0, 0.0])
        for ci_type in ConfidenceIntervalType:
            lower, upper = confidence_interval(s, np.zeros(2), 0.05, ci_type)
            np.testing.assert_allclose(lower, s)
            np.testing.assert_allclose(upper, s)

    def test_unknown_type_raises(self):
        """Test that an unknown transform is rejected."""
        with pytest.raises(ValueError):
            confidence_interval(np.array([0.5]), np.array([0.01]), 0.05, "arcsine")


class TestSurvivalAt:
    """Tests for survival_at function."""

    def test_beyond_last_time(self, sample_durations_events):
        """Test that S(t) stays at the last step beyond the last time."""
        km = fit_kaplan_meier([2.0, 3.0, 7.0], [1, 0, 0])

        assert survival_at(km, 100.0)[0] == pytest.approx(km.survival[-1])
        assert survival_at(km, 100.0)[0] == pytest.approx(2 / 3)

    def test_right_continuous(self, sample_durations_events):
        """Test that the step takes effect at the event time itself."""
        km = fit_kaplan_meier(*sample_durations_events)

        values = survival_at(km, [1.99, 2.0, 2.5, 3.0])

        np.testing.assert_allclose(values, [1.0, 0.75, 0.75, 0.5])


class TestSurvLabels:
    """Tests for surv_labels function."""

    def test_censored_marked_with_plus(self):
        """Test that censored records get a "+" suffix."""
        assert surv_labels([6.5, 3.0, 1.25], [0, 1, 0]) == ["6.5+", "3", "1.25+"]
