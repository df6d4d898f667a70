"""
MLflow tracking tests.

The mlflow module is replaced with a MagicMock so no tracking store is
touched; assertions are on what would have been logged.
"""

from unittest.mock import MagicMock, patch

import pytest
from mlflow.exceptions import MlflowException

from readmission_analysis.mlflow_tracking import MLflowTracker, log_analysis_run
from readmission_analysis.pipeline import run_analysis


@pytest.fixture
def mock_mlflow():
    with patch("readmission_analysis.mlflow_tracking.mlflow") as mlflow:
        run = MagicMock()
        run.info.run_id = "run-abc"
        mlflow.start_run.return_value.__enter__.return_value = run
        yield mlflow


@pytest.fixture
def analysis_result(separable_encounters, separable_holdout, fast_context):
    return run_analysis(separable_encounters, separable_holdout, fast_context)


class TestMLflowTracker:
    """Tests for the tracker wrapper."""

    def test_existing_experiment_is_reused(self, mock_mlflow, fast_context):
        mock_mlflow.get_experiment_by_name.return_value.experiment_id = "7"

        tracker = MLflowTracker(fast_context)

        mock_mlflow.set_tracking_uri.assert_called_once_with(fast_context.settings.mlflow_tracking_uri)
        mock_mlflow.create_experiment.assert_not_called()
        mock_mlflow.set_experiment.assert_called_once_with(fast_context.settings.mlflow_experiment_name)
        assert tracker.experiment_id == "7"

    def test_missing_experiment_is_created(self, mock_mlflow, fast_context):
        mock_mlflow.get_experiment_by_name.return_value = None
        mock_mlflow.create_experiment.return_value = "12"

        tracker = MLflowTracker(fast_context, experiment_name="readmission_sensitivity")

        assert mock_mlflow.create_experiment.call_args.args[0] == "readmission_sensitivity"
        assert tracker.experiment_id == "12"

    def test_params_are_prefixed_and_stringified(self, mock_mlflow, fast_context):
        MLflowTracker(fast_context).log_params({"n_estimators": 500, "max_features": 5}, prefix="random_forest.")

        mock_mlflow.log_params.assert_called_once_with({
            "random_forest.n_estimators": "500",
            "random_forest.max_features": "5",
        })

    def test_logging_failures_propagate(self, mock_mlflow, fast_context):
        mock_mlflow.log_metrics.side_effect = MlflowException("tracking store unavailable")

        with pytest.raises(MlflowException):
            MLflowTracker(fast_context).log_metrics({"baseline_auc": 0.7})


class TestLogAnalysisRun:
    """Tests for logging a complete run."""

    def test_aucs_are_logged(self, mock_mlflow, analysis_result, fast_context):
        run_id = log_analysis_run(analysis_result, fast_context, run_name="test_run")

        assert run_id == "run-abc"
        metrics = mock_mlflow.log_metrics.call_args.args[0]
        assert set(metrics) == {
            "baseline_auc",
            "penalized_logistic_auc",
            "random_forest_auc",
            "gradient_boosting_auc",
            "selected_auc",
        }
        assert metrics["selected_auc"] == max(analysis_result.comparison.aucs().values())

    def test_run_params_and_model_params_are_logged(self, mock_mlflow, analysis_result, fast_context):
        log_analysis_run(analysis_result, fast_context)

        logged = {}
        for call in mock_mlflow.log_params.call_args_list:
            logged.update(call.args[0])

        assert logged["random_seed"] == "11"
        assert logged["n_train"] == "800"
        assert logged["random_forest.n_estimators"] == "60"
        assert logged["gradient_boosting.learning_rate"] == "0.3"
        assert "penalized_logistic.c_selected" in logged

    def test_selected_model_and_report_are_artifacts(self, mock_mlflow, analysis_result, fast_context):
        log_analysis_run(analysis_result, fast_context)

        artifact_paths = [call.args[1] for call in mock_mlflow.log_artifact.call_args_list]
        assert "selected_model" in artifact_paths
        assert "reports" in artifact_paths

        tags = mock_mlflow.start_run.call_args.kwargs["tags"]
        assert tags["selected_model"] == analysis_result.selected_model.name
