"""
End-to-end analysis tests.

These run the full pipeline on small in-memory datasets: a separable one,
where every model family must recover the signal, and the realistic
synthetic encounter table.
"""

import json
from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from readmission_analysis.config import AnalysisContext, Settings
from readmission_analysis.exceptions import MissingValueError, SchemaMismatchError
from readmission_analysis.pipeline import main, run_analysis, run_pipeline
from readmission_analysis.scoring import PROBABILITY_COLUMN

FAST_OVERRIDES = dict(
    mlflow_enabled=False,
    ridge_cv_folds=5,
    ridge_n_penalties=15,
    rf_n_estimators=60,
    xgb_n_estimators=40,
    random_seed=11,
)


def _fast(**overrides) -> AnalysisContext:
    return AnalysisContext(settings=Settings(**{**FAST_OVERRIDES, **overrides}))


class TestRunAnalysis:
    """Tests for the in-memory analysis."""

    def test_separable_data_production_settings(self, separable_encounters, separable_holdout, default_context):
        result = run_analysis(separable_encounters, separable_holdout, default_context)
        aucs = result.comparison.aucs()

        assert set(aucs) == {"penalized_logistic", "random_forest", "gradient_boosting"}
        assert all(auc > 0.95 for auc in aucs.values())
        assert result.comparison.best.auc == max(aucs.values())

        assert len(result.split.train_index) == 800
        assert len(result.split.test_index) == 200
        assert len(result.predictions) == len(separable_holdout)
        assert result.predictions[PROBABILITY_COLUMN].between(0.0, 1.0).all()

        for evaluation in result.comparison.evaluations:
            assert list(evaluation.importance)[0] == "signal"

    def test_report_contents(self, separable_encounters, separable_holdout, fast_context):
        report = run_analysis(separable_encounters, separable_holdout, fast_context).report

        summary = report.to_dict()
        assert summary["baseline"]["name"] == "lace_score"
        assert [m["name"] for m in summary["models"]] == [
            "penalized_logistic", "random_forest", "gradient_boosting",
        ]
        assert summary["metadata"]["n_holdout"] == len(separable_holdout)
        assert any(line.endswith("(selected)") for line in report.summary_lines())

    def test_same_seed_same_results(self, separable_encounters, separable_holdout, fast_context):
        first = run_analysis(separable_encounters, separable_holdout, fast_context)
        second = run_analysis(separable_encounters, separable_holdout, fast_context)

        assert first.split.test_index.equals(second.split.test_index)
        assert first.comparison.aucs() == second.comparison.aucs()
        pd.testing.assert_frame_equal(first.predictions, second.predictions)

    def test_parallel_training_matches_sequential(self, separable_encounters, separable_holdout):
        sequential = run_analysis(separable_encounters, separable_holdout, _fast())
        parallel = run_analysis(separable_encounters, separable_holdout, _fast(parallel_training=True))

        assert parallel.comparison.aucs() == sequential.comparison.aucs()
        np.testing.assert_allclose(
            parallel.predictions[PROBABILITY_COLUMN],
            sequential.predictions[PROBABILITY_COLUMN],
        )

    def test_leakage_columns_are_excluded(self, synthetic_encounters):
        """Keeping days_to_readmission as a feature would inflate the test AUC."""
        leaky = run_analysis(synthetic_encounters, context=_fast(leakage_columns=[]))
        clean = run_analysis(synthetic_encounters, context=_fast())

        assert "days_to_readmission" in leaky.encoder.feature_names
        assert "days_to_readmission" not in clean.encoder.feature_names
        assert leaky.comparison.aucs()["penalized_logistic"] > clean.comparison.aucs()["penalized_logistic"]

    def test_lace_baseline_is_scored(self, synthetic_encounters, fast_context):
        result = run_analysis(synthetic_encounters, context=fast_context)

        assert 0.55 < result.baseline.auc < 1.0
        assert result.predictions is None
        assert "lace_score" not in result.encoder.feature_names

    def test_holdout_schema_mismatch_fails_before_training(
        self, separable_encounters, separable_holdout, fast_context
    ):
        holdout = separable_holdout.drop(columns=["noise_0", "ward"])

        with patch("readmission_analysis.pipeline.build_models") as build_models:
            with pytest.raises(SchemaMismatchError) as exc:
                run_analysis(separable_encounters, holdout, fast_context)

        assert exc.value.missing_columns == ["noise_0", "ward"]
        build_models.assert_not_called()

    def test_missing_feature_values_abort_the_run(self, separable_encounters, fast_context):
        encounters = separable_encounters.copy()
        encounters.loc[5, "noise_2"] = np.nan

        with patch("readmission_analysis.pipeline.build_models") as build_models:
            with pytest.raises(MissingValueError, match="noise_2"):
                run_analysis(encounters, context=fast_context)
        build_models.assert_not_called()

    def test_blank_holdout_outcome_is_scored(self, separable_encounters, separable_holdout, fast_context):
        holdout = separable_holdout.assign(readmit_30d=np.nan)
        result = run_analysis(separable_encounters, holdout, fast_context)

        assert len(result.predictions) == len(holdout)
        assert PROBABILITY_COLUMN in result.predictions.columns

    def test_holdout_missing_values_fail_before_training(
        self, separable_encounters, separable_holdout, fast_context
    ):
        holdout = separable_holdout.copy()
        holdout.loc[3, "ward"] = np.nan

        with patch("readmission_analysis.pipeline.build_models") as build_models:
            with pytest.raises(MissingValueError, match="ward"):
                run_analysis(separable_encounters, holdout, fast_context)
        build_models.assert_not_called()

    def test_unlabeled_training_frame_is_rejected(self, separable_holdout, fast_context):
        with pytest.raises(SchemaMismatchError):
            run_analysis(separable_holdout, context=fast_context)


class TestRunPipeline:
    """Tests for the file-producing pipeline."""

    @pytest.fixture
    def context(self, tmp_path):
        return _fast(
            predictions_path=str(tmp_path / "output" / "predictions.csv"),
            report_path=str(tmp_path / "output" / "report.json"),
            model_dir=str(tmp_path / "models"),
        )

    def test_synthetic_run_writes_artifacts(self, context, tmp_path):
        result = run_pipeline(context=context, use_synthetic=True, n_synthetic=600)

        predictions = pd.read_csv(tmp_path / "output" / "predictions.csv")
        assert len(predictions) == 120
        assert list(predictions.columns) == [
            "encounter_id", "patient_id", "admit_date", "discharge_date", PROBABILITY_COLUMN,
        ]

        with open(tmp_path / "output" / "report.json") as f:
            report = json.load(f)
        assert report["selected_model"] == result.selected_model.name

        assert any(p.name.startswith(result.selected_model.name) for p in (tmp_path / "models").iterdir())
        assert result.run_id is None

    def test_csv_inputs(self, context, tmp_path, separable_encounters, separable_holdout):
        encounters_path = tmp_path / "encounters.csv"
        holdout_path = tmp_path / "holdout.csv"
        separable_encounters.to_csv(encounters_path, index=False)
        separable_holdout.to_csv(holdout_path, index=False)

        result = run_pipeline(
            context=context,
            encounters_path=str(encounters_path),
            holdout_path=str(holdout_path),
            output_path=str(tmp_path / "scored.csv"),
        )

        scored = pd.read_csv(tmp_path / "scored.csv")
        assert scored["encounter_id"].tolist() == separable_holdout["encounter_id"].tolist()
        assert result.comparison.best.auc > 0.95

    def test_tracking_is_delegated_to_mlflow(self, context):
        with patch(
            "readmission_analysis.mlflow_tracking.log_analysis_run", return_value="run-123"
        ) as log_run:
            result = run_pipeline(context=context, use_synthetic=True, n_synthetic=600, track=True)

        log_run.assert_called_once()
        assert result.run_id == "run-123"


class TestMain:
    """Tests for the command-line entry point."""

    def test_synthetic_cli_run(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("PREDICTIONS_PATH", str(tmp_path / "predictions.csv"))
        monkeypatch.setenv("REPORT_PATH", str(tmp_path / "report.json"))
        monkeypatch.setenv("MODEL_DIR", str(tmp_path / "models"))
        monkeypatch.setenv("RF_N_ESTIMATORS", "60")
        monkeypatch.setenv("XGB_N_ESTIMATORS", "40")
        monkeypatch.setenv("RIDGE_CV_FOLDS", "5")
        monkeypatch.setenv("RIDGE_N_PENALTIES", "15")

        exit_code = main(["--synthetic", "--n-synthetic", "500", "--no-mlflow", "--parallel"])

        assert exit_code == 0
        assert (tmp_path / "predictions.csv").exists()
        assert (tmp_path / "report.json").exists()
        out = capsys.readouterr().out
        assert "ANALYSIS COMPLETE" in out
        assert "Baseline lace_score AUC" in out
