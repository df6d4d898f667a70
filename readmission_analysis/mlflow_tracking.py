"""
Readmission Analysis - MLflow Tracking Module

This module records each analysis run with MLflow:

1. Experiment creation and management
2. Parameter logging (seed, split fraction, each model's hyperparameters)
3. Metric logging (LACE baseline AUC and every model's test AUC)
4. Artifact storage (the selected model and the JSON report)

A run is written once at the end of the pipeline, after the hold-out
predictions exist, so tracking never influences model selection.
"""

from __future__ import annotations

import logging
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Generator, Optional

import mlflow
from mlflow.exceptions import MlflowException

from .config import AnalysisContext
from .model import ReadmissionModel
from .report import AnalysisReport

if TYPE_CHECKING:
    from .pipeline import AnalysisResult

# Configure module logger
logger = logging.getLogger(__name__)


class MLflowTracker:
    """
    A wrapper class for MLflow operations used by the readmission analysis.

    Attributes:
        tracking_uri: MLflow tracking URI
        experiment_name: Name of the MLflow experiment

    Example:
        >>> tracker = MLflowTracker(AnalysisContext())
        >>> with tracker.start_run(run_name="readmission_2017") as run:
        ...     tracker.log_params({"random_seed": 2017})
        ...     tracker.log_metrics({"baseline_auc": 0.68})
    """

    def __init__(
        self,
        context: Optional[AnalysisContext] = None,
        tracking_uri: Optional[str] = None,
        experiment_name: Optional[str] = None,
    ) -> None:
        self.context = context or AnalysisContext()
        self.tracking_uri = tracking_uri or self.context.settings.mlflow_tracking_uri
        self.experiment_name = experiment_name or self.context.settings.mlflow_experiment_name

        mlflow.set_tracking_uri(self.tracking_uri)
        self._setup_experiment()

        logger.info(
            "MLflow tracker initialized",
            extra={
                "tracking_uri": self.tracking_uri,
                "experiment_name": self.experiment_name,
            }
        )

    def _setup_experiment(self) -> None:
        """Create or retrieve the MLflow experiment and make it active."""
        try:
            experiment = mlflow.get_experiment_by_name(self.experiment_name)
            if experiment is None:
                experiment_id = mlflow.create_experiment(
                    self.experiment_name,
                    tags={
                        "project": self.context.settings.service_name,
                        "outcome": "readmission_30d",
                    }
                )
                logger.info(f"Created new experiment: {self.experiment_name} (ID: {experiment_id})")
            else:
                experiment_id = experiment.experiment_id
                logger.info(f"Using existing experiment: {self.experiment_name} (ID: {experiment_id})")

            mlflow.set_experiment(self.experiment_name)
            self.experiment_id = experiment_id

        except MlflowException as e:
            logger.error(f"Failed to setup MLflow experiment: {e}")
            raise

    @contextmanager
    def start_run(
        self,
        run_name: Optional[str] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> Generator[mlflow.ActiveRun, None, None]:
        """
        Context manager for MLflow runs.

        Args:
            run_name: Human-readable name for the run
            tags: Additional tags for the run

        Yields:
            Active MLflow run
        """
        default_tags = {
            "environment": self.context.settings.environment,
            "service": self.context.settings.service_name,
            "timestamp": datetime.utcnow().isoformat(),
        }
        if tags:
            default_tags.update(tags)

        run_name = run_name or f"run_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}"

        try:
            with mlflow.start_run(run_name=run_name, tags=default_tags) as run:
                logger.info(f"Started MLflow run: {run.info.run_id}")
                yield run
                logger.info(f"Completed MLflow run: {run.info.run_id}")

        except MlflowException as e:
            logger.error(f"MLflow run failed: {e}")
            raise

    def log_params(self, params: Dict[str, Any], prefix: str = "") -> None:
        """
        Log parameters for the current run.

        Args:
            params: Dictionary of parameter names to values
            prefix: Prepended to every parameter name
        """
        try:
            # MLflow only accepts strings, so convert values
            str_params = {f"{prefix}{k}": str(v) for k, v in params.items()}
            mlflow.log_params(str_params)
            logger.debug(f"Logged {len(params)} parameters")
        except MlflowException as e:
            logger.error(f"Failed to log parameters: {e}")
            raise

    def log_metrics(self, metrics: Dict[str, float]) -> None:
        try:
            mlflow.log_metrics(metrics)
            logger.debug(f"Logged {len(metrics)} metrics: {metrics}")
        except MlflowException as e:
            logger.error(f"Failed to log metrics: {e}")
            raise

    def log_model(self, model: ReadmissionModel, artifact_path: str = "selected_model") -> None:
        """
        Save a fitted model to a temporary directory and log it as an artifact.
        """
        try:
            with tempfile.TemporaryDirectory() as tmpdir:
                saved = model.save(Path(tmpdir) / f"{model.name}.joblib")
                for file in Path(tmpdir).iterdir():
                    mlflow.log_artifact(str(file), artifact_path)

            logger.info(f"Logged model artifact {saved.name} to {artifact_path}")

        except MlflowException as e:
            logger.error(f"Failed to log model: {e}")
            raise

    def log_report(self, report: AnalysisReport, artifact_path: str = "reports") -> None:
        try:
            with tempfile.TemporaryDirectory() as tmpdir:
                report_file = report.write(Path(tmpdir) / "analysis_report.json")
                mlflow.log_artifact(str(report_file), artifact_path)
        except MlflowException as e:
            logger.error(f"Failed to log report: {e}")
            raise


def log_analysis_run(
    result: "AnalysisResult",
    context: AnalysisContext,
    run_name: Optional[str] = None,
) -> str:
    """
    Log a complete analysis run: parameters, AUCs, selected model and report.

    Returns:
        MLflow run ID
    """
    tracker = MLflowTracker(context)
    s = context.settings

    with tracker.start_run(run_name=run_name, tags={"selected_model": result.comparison.best.name}) as run:
        tracker.log_params({
            "random_seed": s.random_seed,
            "train_fraction": s.train_fraction,
            "drop_lace_columns": s.drop_lace_columns,
            "n_train": len(result.split.train_index),
            "n_test": len(result.split.test_index),
            "n_features": len(result.encoder.feature_names),
        })
        for evaluation in result.comparison.evaluations:
            tracker.log_params(evaluation.model.get_params(), prefix=f"{evaluation.name}.")

        metrics = {"baseline_auc": result.baseline.auc}
        metrics.update({f"{name}_auc": auc for name, auc in result.comparison.aucs().items()})
        metrics["selected_auc"] = result.comparison.best.auc
        tracker.log_metrics(metrics)

        tracker.log_model(result.comparison.best.model)
        tracker.log_report(result.report)

        return run.info.run_id
