"""
Readmission Analysis

Evaluation of the LACE index and three predictive models for 30-day
hospital readmission.

The analysis:
- Scores the precomputed LACE risk score against the readmission outcome
- Fits a cross-validated ridge logistic regression, a random forest and
  gradient-boosted trees on a stratified 80/20 split
- Compares the models by test ROC-AUC and selects the best
- Applies the selected model to an unlabeled hold-out set

Components:
-----------
- config: Environment configuration and the explicit run context
- data: Loading, LACE, feature preparation, encoding and splitting
- metrics: ROC curve / AUC and the LACE baseline
- model: PenalizedLogisticModel, RandomForestModel, BoostedTreeModel
- evaluation: Test-split comparison and model selection
- scoring: Hold-out scoring and prediction persistence
- report: Presentation-free report of AUCs, curves and importances
- mlflow_tracking: MLflow integration utilities
- pipeline: End-to-end run and command-line entry point

Usage:
------
    # Demo run on synthetic encounters, without MLflow
    readmission-analysis --synthetic --no-mlflow

    # Production files configured through environment variables
    ENCOUNTERS_PATH=data/encounters.csv HOLDOUT_PATH=data/holdout.csv readmission-analysis

Version: 1.0.0
"""

__version__ = "1.0.0"

from .config import AnalysisContext, Settings, settings
from .pipeline import AnalysisResult, run_analysis, run_pipeline

__all__ = [
    "AnalysisContext",
    "AnalysisResult",
    "Settings",
    "run_analysis",
    "run_pipeline",
    "settings",
    "__version__",
]
