"""Unit tests for batchcox.models module.

Tests design construction, fitting of single specifications, failure
classification and coefficient record extraction.
"""
import pytest
import numpy as np
import pandas as pd
from scipy import stats
from lifelines import CoxPHFitter
from lifelines.exceptions import ConvergenceError, ConvergenceWarning

from batchcox.config import BatchOptions
from batchcox.data import declare_categorical
from batchcox.errors import FailureReason
from batchcox.models import build_design, fit_spec
from batchcox.specs import ModelSpec


def _spec(candidate, controls=()):
    return ModelSpec(candidate, tuple(controls), "time", "status")


class TestBuildDesign:
    """Tests for build_design function."""

    def test_categorical_indicator_columns(self, survival_data):
        """Test one indicator per non-reference level, named var[level]."""
        frame = survival_data[["time", "status", "stage", "age"]]
        design, terms, degenerate = build_design(_spec("stage", ["age"]), frame)

        assert degenerate is None
        assert [t.column for t in terms] == ["stage[II]", "stage[III]", "stage[IV]", "age"]
        assert all(t.ref_level == "I" for t in terms[:3])
        assert terms[3].contrast_level is None
        assert {"time", "status"} <= set(design.columns)

    def test_level_counts(self, survival_data):
        """Test contrast and reference row counts."""
        frame = survival_data[["time", "status", "stage"]]
        _, terms, _ = build_design(_spec("stage"), frame)

        counts = survival_data["stage"].value_counts()
        assert terms[0].n_ref == counts["I"]
        assert terms[0].n_contrast == counts["II"]

    def test_unobserved_level_dropped(self, survival_data):
        """Test that a declared but unobserved level is neither reference nor contrast."""
        df = survival_data.copy()
        df["stage"] = pd.Categorical(df["stage"].astype(str), categories=["0", "I", "II", "III", "IV"])
        _, terms, _ = build_design(_spec("stage"), df[["time", "status", "stage"]])

        assert [t.contrast_level for t in terms] == ["II", "III", "IV"]
        assert terms[0].ref_level == "I"

    def test_constant_control_is_degenerate(self, survival_data):
        """Test that a constant control is reported."""
        df = survival_data.assign(batch=1.0)
        _, _, degenerate = build_design(_spec("G1", ["batch"]), df[["time", "status", "G1", "batch"]])

        assert degenerate[0] == "batch"


class TestFitSpec:
    """Tests for fit_spec function."""

    def test_continuous_candidate_with_controls(self, survival_data):
        """Test records for a continuous candidate adjusted for age and sex."""
        result = fit_spec(_spec("G1", ["age", "sex"]), survival_data, BatchOptions())

        assert result.ok
        assert [r.variable for r in result.records] == ["G1", "age", "sex"]
        assert [r.is_control for r in result.records] == [False, True, True]
        assert result.records[2].contrast_level == "M"
        assert result.records[2].ref_level == "F"
        assert result.model.n == len(survival_data)
        assert result.model.n_events == int(survival_data["status"].sum())

    def test_categorical_candidate_k_minus_one_rows(self, survival_data):
        """Test that a k-level categorical candidate yields k-1 candidate rows."""
        result = fit_spec(_spec("stage", ["age"]), survival_data, BatchOptions())

        own = [r for r in result.records if not r.is_control]
        assert len(own) == survival_data["stage"].nunique() - 1
        assert all(r.candidate == "stage" for r in result.records)

    def test_exponentiated_scale(self, survival_data):
        """Test HR = exp(beta) and CI = exp(beta -/+ z * se)."""
        result = fit_spec(_spec("G1"), survival_data, BatchOptions(ci_level=0.9))
        rec = result.records[0]
        z = stats.norm.ppf(0.95)

        assert rec.hr == pytest.approx(np.exp(rec.beta))
        assert rec.ci_lower == pytest.approx(np.exp(rec.beta - z * rec.se))
        assert rec.ci_upper == pytest.approx(np.exp(rec.beta + z * rec.se))
        assert rec.ci_lower < rec.hr < rec.ci_upper
        assert 0.0 <= rec.p_value <= 1.0

    def test_coefficients_match_solver(self, survival_data):
        """Test that records carry the solver's coefficient values."""
        result = fit_spec(_spec("G1", ["age"]), survival_data, BatchOptions())

        assert result.records[0].beta == pytest.approx(result.model.coefficients["G1"])
        assert result.records[1].se == pytest.approx(result.model.standard_errors["age"])

    def test_wald_global_test(self, survival_data):
        """Test the Wald alternative for the model-level p-value."""
        lr = fit_spec(_spec("G1"), survival_data, BatchOptions())
        wald = fit_spec(_spec("G1"), survival_data, BatchOptions(global_method="wald"))

        assert 0.0 <= wald.records[0].global_p_value <= 1.0
        # One coefficient: Wald global test equals the coefficient's own Wald test
        assert wald.records[0].global_p_value == pytest.approx(wald.records[0].p_value, rel=1e-6)
        assert lr.records[0].global_p_value != wald.records[0].global_p_value

    def test_missing_column(self, survival_data):
        """Test that an absent column fails the spec only."""
        result = fit_spec(_spec("NOPE", ["age"]), survival_data, BatchOptions())

        assert not result.ok
        assert result.failure.reason == FailureReason.MISSING_COLUMN
        assert "NOPE" in result.failure.message

    def test_untyped_column(self, survival_data):
        """Test that a string column is not silently coerced."""
        df = survival_data.assign(grade=np.where(survival_data["G1"] > 0, "high", "low"))
        result = fit_spec(_spec("grade"), df, BatchOptions())

        assert result.failure.reason == FailureReason.INVALID_TYPE

    def test_declared_string_column_fits(self, survival_data):
        """Test that the same column fits once declared categorical."""
        df = survival_data.assign(grade=np.where(survival_data["G1"] > 0, "high", "low"))
        df = declare_categorical(df, {"grade": ["low", "high"]})
        result = fit_spec(_spec("grade"), df, BatchOptions())

        assert result.ok
        assert result.records[0].contrast_level == "high"

    def test_insufficient_complete_rows(self, survival_data):
        """Test that completeness is checked over the spec's own columns."""
        df = survival_data.copy()
        df.loc[df.index[:145], "G2"] = np.nan

        assert fit_spec(_spec("G2"), df, BatchOptions()).failure.reason == FailureReason.INSUFFICIENT_ROWS
        assert fit_spec(_spec("G1"), df, BatchOptions()).ok

    def test_no_events(self, survival_data):
        """Test that an all-censored subset fails."""
        df = survival_data.assign(status=0)
        result = fit_spec(_spec("G1"), df, BatchOptions())

        assert result.failure.reason == FailureReason.NO_EVENTS

    def test_zero_variance_candidate(self, flat_candidate_data):
        """Test that a constant candidate fails with zero_variance."""
        result = fit_spec(_spec("flat"), flat_candidate_data, BatchOptions())

        assert result.failure.reason == FailureReason.ZERO_VARIANCE
        assert "flat" in result.failure.message

    def test_single_observed_level(self, survival_data):
        """Test that a categorical candidate with one observed level fails."""
        df = survival_data[survival_data["sex"] == "F"]
        result = fit_spec(_spec("sex"), df, BatchOptions())

        assert result.failure.reason == FailureReason.ZERO_VARIANCE

    def test_solver_error_is_non_convergence(self, survival_data, monkeypatch):
        """Test that solver exceptions become non_convergence failures."""
        def failing_fit(self, *args, **kwargs):
            raise ConvergenceError("Convergence halted due to matrix inversion problems.")

        monkeypatch.setattr(CoxPHFitter, "fit", failing_fit)
        result = fit_spec(_spec("G1"), survival_data, BatchOptions())

        assert result.failure.reason == FailureReason.NON_CONVERGENCE
        assert "ConvergenceError" in result.failure.message

    def test_separated_candidate_is_non_convergence(self, separated_data):
        """Test that a perfectly separating candidate fails instead of reporting a huge HR."""
        result = fit_spec(_spec("sepbin"), separated_data, BatchOptions())

        assert not result.ok
        assert result.records == ()
        assert result.failure.reason == FailureReason.NON_CONVERGENCE

    def test_advisory_warning_does_not_fail(self, single_x_data):
        """Test that a pre-fit low-variance warning leaves the fit intact."""
        df = single_x_data.assign(X=single_x_data["X"] * 1e-3)

        with pytest.warns(ConvergenceWarning, match="low variance"):
            result = fit_spec(_spec("X"), df, BatchOptions())

        assert result.ok
        assert len(result.records) == 1

    def test_bool_candidate(self, survival_data):
        """Test that a boolean column is categorical with False as reference."""
        df = survival_data.assign(mutated=survival_data["G3"] > 0)
        result = fit_spec(_spec("mutated"), df, BatchOptions())

        assert len(result.records) == 1
        assert result.records[0].contrast_level == "True"
        assert result.records[0].ref_level == "False"
