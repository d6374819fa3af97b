"""Integration tests for the complete survival workflow.

Tests the whole run from a CSV file to the written report:
loading, outcome recoding, profiling, imputation, fitting, pooling and
report artifacts.
"""
import json
import os

import joblib
import numpy as np
import pytest

from main import run_pipeline
from prostate_survival.config import ImputationConfig, Strategy, WorkflowConfig
from prostate_survival.errors import UnrecognizedCategory
from prostate_survival.workflow import run_workflow

pytestmark = pytest.mark.integration


@pytest.fixture
def fast_config(prostate_csv):
    """Workflow configuration for a quick run on the synthetic CSV."""
    config = WorkflowConfig.for_run_type("sample")
    config.data.identifier = str(prostate_csv)
    config.imputation = ImputationConfig(n_imputations=2, n_iter=2)
    return config


@pytest.fixture
def result(fast_config, tmp_path):
    """Completed multiple imputation run."""
    return run_workflow(fast_config, base_dir=str(tmp_path / "out"))


class TestWorkflow:
    """Tests for run_workflow on the synthetic records."""

    def test_events_partition_records(self, result):
        """Test that deaths plus censored records equal all records."""
        assert result.events[0] + result.events[1] == 502
        assert set(result.data["status"].unique()) <= {0, 1}

    def test_missing_profile(self, result):
        """Test that the profile accounts for every missing cell."""
        assert result.missing_summary["n_missing"].sum() == 27
        assert result.missing_per_record.sum() == 502
        assert result.tree.target == "sg"
        assert result.tree.leaf_sizes().min() >= 15

    def test_imputation_and_fits(self, result):
        """Test one complete copy and one converged fit per imputation."""
        assert result.imputed.n_imputations == 2
        assert len(result.fits) == 2
        for df, fit in zip(result.imputed, result.fits):
            assert df.drop(columns=["patno", "sdate"]).isna().sum().sum() == 0
            assert fit.n_obs == 502
            assert fit.converged

    def test_pooled_model(self, result):
        """Test the pooled hazard ratios."""
        summary = result.pooled.summary()

        assert result.pooled.n_imputations == 2
        assert any(name.startswith("rx[") for name in summary.index)
        assert any(name.startswith("cr(age") for name in summary.index)
        assert np.all(np.isfinite(summary["hr"]))
        assert (summary["hr_lower"] <= summary["hr"]).all()
        assert (summary["hr"] <= summary["hr_upper"]).all()

    def test_shared_formula(self, result):
        """Test that all fits share the formula built before imputation."""
        assert len({fit.formula for fit in result.fits}) == 1
        assert result.pooled.formula == result.fits[0].formula

    def test_ph_flags(self, result):
        """Test that every pooled term has a proportional hazards check."""
        assert set(result.ph_flags.index) == set(result.pooled.names)

    def test_artifacts_written(self, result):
        """Test that tables, figures, model and report exist on disk."""
        for name in [
            "missing_summary.csv",
            "missing_per_record.csv",
            "imputation_chains.csv",
            "per_imputation.csv",
            "pooled_summary.csv",
            "ph_flags.csv",
            "missingness_tree.txt",
            "missingness_dendrogram.png",
            "missingness_tree.png",
            "pooled_model",
            "config.json",
            "report.md",
        ]:
            assert os.path.exists(result.artifacts[name]), name

    def test_report_contents(self, result):
        """Test the Markdown narrative."""
        with open(result.artifacts["report.md"], encoding="utf-8") as f:
            report = f.read()

        assert "## Missing data" in report
        assert "## Pooled Cox model" in report
        assert "2 imputations" in report
        assert "missingness_dendrogram.png" in report
        assert "| term" in report
        assert any(line.startswith("| rx[") for line in report.splitlines())

    def test_saved_model_and_config(self, result):
        """Test that the pooled model and configuration can be reloaded."""
        pooled = joblib.load(result.artifacts["pooled_model"])
        np.testing.assert_allclose(pooled.params, result.pooled.params)

        with open(result.artifacts["config.json"]) as f:
            assert json.load(f)["imputation"]["n_imputations"] == 2
        assert WorkflowConfig.load(result.artifacts["config.json"]) == result.config

    def test_no_write(self, fast_config):
        """Test a run that keeps everything in memory."""
        result = run_workflow(fast_config, write=False)

        assert result.artifacts == {}

    def test_complete_case_strategy(self, fast_config, tmp_path):
        """Test listwise deletion as the missing-data strategy."""
        fast_config.strategy = Strategy.COMPLETE_CASE

        result = run_workflow(fast_config, base_dir=str(tmp_path / "cc"))

        assert result.imputed is None
        assert len(result.fits) == 1
        assert result.fits[0].n_obs < 502
        assert "imputation_chains.csv" not in result.artifacts

    def test_median_strategy(self, fast_config):
        """Test single median/mode fill as the missing-data strategy."""
        fast_config.strategy = Strategy.MEDIAN

        result = run_workflow(fast_config, write=False)

        assert len(result.fits) == 1
        assert result.fits[0].n_obs == 502
        assert np.all(np.isinf(result.pooled.dof))

    def test_unrecognized_outcome_aborts(self, fast_config, raw_prostate, tmp_path):
        """Test that an unmappable outcome label stops the run."""
        raw = raw_prostate.copy()
        raw.loc[3, "status"] = "withdrawn"
        path = tmp_path / "bad.csv"
        raw.to_csv(path, index=False)
        fast_config.data.identifier = str(path)

        with pytest.raises(UnrecognizedCategory):
            run_workflow(fast_config, write=False)


class TestRunPipeline:
    """Tests for the command line entry point."""

    def test_success(self, prostate_csv, tmp_path):
        """Test a complete-case run through the entry point."""
        out = tmp_path / "cli"

        code = run_pipeline(
            input_file=str(prostate_csv),
            strategy="complete_case",
            output_dir=str(out),
            log_level="WARNING",
        )

        assert code == 0
        assert (out / "report.md").exists()
        assert any((out / "logs").glob("main_*.log"))

    def test_missing_input(self, tmp_path):
        """Test that a missing input file gives exit code 1."""
        code = run_pipeline(
            input_file=str(tmp_path / "missing.csv"),
            output_dir=str(tmp_path / "cli"),
            log_level="WARNING",
        )

        assert code == 1

    def test_saved_config(self, fast_config, tmp_path):
        """Test re-running from a saved configuration file."""
        fast_config.strategy = Strategy.MEDIAN
        config_path = tmp_path / "config.json"
        fast_config.save(str(config_path))

        code = run_pipeline(
            config_path=str(config_path),
            output_dir=str(tmp_path / "rerun"),
            log_level="WARNING",
        )

        assert code == 0
        saved = WorkflowConfig.load(str(tmp_path / "rerun" / "config.json"))
        assert saved.strategy is Strategy.MEDIAN
