"""Unit tests for prostate_survival.validation module."""
import numpy as np
import pytest
from scipy import stats

from prostate_survival.models import CoxFit, CoxModelSpec, fit_cox
from prostate_survival.validation import ph_assumption_flags, pooled_ph_flags


@pytest.fixture
def fit(complete_prostate):
    """Cox fit on complete synthetic records."""
    spec = CoxModelSpec(covariates=("rx", "age", "bm", "sg"))
    return fit_cox(complete_prostate, spec)


class TestPHAssumptionFlags:
    """Tests for ph_assumption_flags function."""

    def test_one_row_per_coefficient(self, fit):
        """Test that every coefficient gets a correlation, a statistic and a p-value."""
        flags = ph_assumption_flags(fit)

        assert list(flags.columns) == ["rho", "test_statistic", "schoenfeld_p"]
        assert set(flags.index) == set(fit.names)
        assert flags.index.name == "term"

    def test_value_ranges(self, fit):
        """Test that correlations and p-values are in range."""
        flags = ph_assumption_flags(fit)

        assert flags["rho"].between(-1, 1).all()
        assert flags["schoenfeld_p"].between(0, 1).all()

    def test_sorted_by_p_value(self, fit):
        """Test that the most suspicious terms come first."""
        flags = ph_assumption_flags(fit)

        assert flags["schoenfeld_p"].is_monotonic_increasing

    def test_detects_time_trend(self):
        """Test that residuals trending with time are flagged."""
        n = 60
        times = np.arange(1, n + 1, dtype=float)
        trend = np.linspace(-1, 1, n)
        flat = np.tile([0.5, -0.5], n // 2)
        fit = CoxFit(
            names=["trend", "flat"],
            params=np.zeros(2),
            cov=np.eye(2),
            loglik=0.0,
            n_obs=n,
            n_events=n,
            schoenfeld=np.column_stack([trend, flat]),
            times=times,
        )

        flags = ph_assumption_flags(fit)

        assert flags.loc["trend", "schoenfeld_p"] < 0.001
        assert flags.loc["trend", "rho"] == pytest.approx(1.0)
        # scaled residuals 60 * trend; centred ranks sum of squares 17995
        assert flags.loc["trend", "test_statistic"] == pytest.approx(36600.0 ** 2 / (60 * 17995))
        assert flags.loc["flat", "schoenfeld_p"] > 0.05

    def test_chi_squared_p_values(self, fit):
        """Test that p-values are chi-squared tail areas of the statistics."""
        flags = ph_assumption_flags(fit)

        np.testing.assert_allclose(
            flags["schoenfeld_p"], stats.chi2.sf(flags["test_statistic"], df=1)
        )
        assert (flags["test_statistic"] >= 0).all()

    def test_residuals_scaled_by_covariance(self):
        """Test that a trend reaches correlated coefficients through the covariance."""
        n = 40
        times = np.arange(1, n + 1, dtype=float)
        resid = np.column_stack([np.linspace(-1, 1, n), np.zeros(n)])

        def make(cov):
            return CoxFit(
                names=["a", "b"], params=np.zeros(2), cov=cov, loglik=0.0,
                n_obs=n, n_events=n, schoenfeld=resid, times=times,
            )

        independent = ph_assumption_flags(make(np.eye(2)))
        correlated = ph_assumption_flags(make(np.array([[1.0, 0.5], [0.5, 1.0]])))

        assert np.isnan(independent.loc["b", "schoenfeld_p"])
        assert correlated.loc["b", "rho"] == pytest.approx(1.0)
        assert correlated.loc["b", "schoenfeld_p"] < 0.001

    def test_censored_rows_ignored(self):
        """Test that records without residuals do not enter the test."""
        times = np.arange(1, 21, dtype=float)
        censored = np.zeros(20, dtype=bool)
        censored[::4] = True
        resid = np.full((20, 1), np.nan)
        resid[~censored, 0] = np.linspace(-1, 1, int((~censored).sum()))

        def make(r, t):
            return CoxFit(
                names=["x"], params=np.zeros(1), cov=np.eye(1), loglik=0.0,
                n_obs=len(t), n_events=int((~np.isnan(r)).sum()),
                schoenfeld=r, times=t,
            )

        flags = ph_assumption_flags(make(resid, times))
        events_only = ph_assumption_flags(make(resid[~censored], times[~censored]))

        assert flags.loc["x", "rho"] == pytest.approx(1.0)
        assert flags.loc["x", "schoenfeld_p"] == pytest.approx(events_only.loc["x", "schoenfeld_p"])
        assert flags.loc["x", "test_statistic"] == pytest.approx(events_only.loc["x", "test_statistic"])

    def test_requires_residuals(self):
        """Test that a fit without residuals raises ValueError."""
        fit = CoxFit(names=["x"], params=np.zeros(1), cov=np.eye(1), loglik=0.0, n_obs=1, n_events=1)

        with pytest.raises(ValueError):
            ph_assumption_flags(fit)


class TestPooledPHFlags:
    """Tests for pooled_ph_flags function."""

    def test_median_over_fits(self, fit):
        """Test that identical fits give the single-fit flags."""
        single = ph_assumption_flags(fit)

        pooled = pooled_ph_flags([fit, fit, fit])

        np.testing.assert_allclose(
            pooled.loc[single.index, "schoenfeld_p"], single["schoenfeld_p"]
        )
        assert pooled["n_flagged"].isin([0, 3]).all()

    def test_columns(self, fit):
        """Test the summary columns and ordering."""
        pooled = pooled_ph_flags([fit])

        assert list(pooled.columns) == ["rho", "schoenfeld_p", "n_flagged"]
        assert pooled["schoenfeld_p"].is_monotonic_increasing
