"""
Readmission Analysis - Configuration Module

This module centralizes all environment-based configuration for the 30-day
readmission analysis. Every tunable of the run (file locations, column roles,
the random seed, each trainer's hyperparameters, experiment tracking) lives
here and can be overridden through environment variables or a `.env` file.

================================================================================
REPRODUCIBILITY CONTRACT
================================================================================

The analysis is run once over static data, so two runs with the same input
file and the same `random_seed` MUST produce:

1. The same stratified train/test partition
2. The same cross-validation folds for the penalized regression
3. The same forests and boosted trees (and therefore the same predictions)

Components never read the seed from ambient state. The pipeline builds an
`AnalysisContext` once and passes it (or its `random_state`) explicitly to
every stage, which keeps test runs isolated from each other.

================================================================================
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Configuration is organized into logical sections that map to the stages
    of the analysis pipeline.
    """

    # ==========================================================================
    # SERVICE IDENTIFICATION
    # ==========================================================================
    service_name: str = Field(
        default="readmission-analysis",
        description="Identifier used for run tags and log context"
    )
    service_version: str = Field(
        default="1.0.0",
        description="Semantic version of the analysis"
    )
    environment: str = Field(
        default="development",
        description="Runtime environment (development, staging, production)"
    )

    # ==========================================================================
    # DATA LOCATIONS
    # ==========================================================================
    encounters_path: str = Field(
        default="data/encounters.csv",
        description="Labeled encounter dataset used for training and testing"
    )
    holdout_path: str = Field(
        default="data/holdout.csv",
        description="Unlabeled hold-out encounters scored by the selected model"
    )
    predictions_path: str = Field(
        default="output/holdout_predictions.csv",
        description="Where the hold-out prediction vector is written"
    )
    report_path: str = Field(
        default="output/analysis_report.json",
        description="Where the JSON analysis report is written"
    )
    model_dir: str = Field(
        default="models",
        description="Directory for the selected model artifact"
    )

    # ==========================================================================
    # COLUMN ROLES
    # ==========================================================================
    outcome_column: str = Field(
        default="readmit_30d",
        description="Binary outcome column"
    )
    positive_label: str = Field(
        default="Readmit",
        description="Outcome value meaning a readmission within 30 days"
    )
    negative_label: str = Field(
        default="No Readmit",
        description="Outcome value meaning no readmission within 30 days"
    )
    baseline_score_column: str = Field(
        default="lace_score",
        description="Precomputed LACE score evaluated as the baseline"
    )
    identifier_columns: List[str] = Field(
        default=["encounter_id", "patient_id", "admit_date", "discharge_date"],
        description="Identifier columns removed before modeling"
    )
    leakage_columns: List[str] = Field(
        default=["days_to_readmission", "readmission_cost"],
        description="Direct correlates of the outcome, never used as features"
    )
    lace_columns: List[str] = Field(
        default=["lace_l", "lace_a", "lace_c", "lace_e", "lace_score"],
        description="LACE-derived columns"
    )
    drop_lace_columns: bool = Field(
        default=True,
        description="Remove LACE-derived columns from the model features"
    )

    # ==========================================================================
    # SPLIT CONFIGURATION
    # ==========================================================================
    random_seed: int = Field(
        default=2017,
        description="Seed for the split, cross-validation folds and ensembles"
    )
    train_fraction: float = Field(
        default=0.8,
        gt=0.0,
        lt=1.0,
        description="Fraction of encounters assigned to the training split"
    )

    # ==========================================================================
    # PENALIZED LOGISTIC REGRESSION
    # ==========================================================================
    ridge_cv_folds: int = Field(
        default=10,
        ge=2,
        le=20,
        description="Number of cross-validation folds for penalty selection"
    )
    ridge_n_penalties: int = Field(
        default=50,
        ge=2,
        le=200,
        description="Number of penalty strengths on the search grid"
    )
    ridge_c_min: float = Field(
        default=1e-4,
        gt=0.0,
        description="Smallest inverse penalty strength (most regularized)"
    )
    ridge_c_max: float = Field(
        default=1e2,
        gt=0.0,
        description="Largest inverse penalty strength (least regularized)"
    )
    ridge_max_iter: int = Field(
        default=5000,
        description="Solver iteration limit"
    )

    # ==========================================================================
    # RANDOM FOREST
    # ==========================================================================
    rf_n_estimators: int = Field(
        default=500,
        ge=10,
        description="Number of independently grown trees"
    )
    rf_max_features: int = Field(
        default=5,
        ge=1,
        description="Candidate features examined at each split"
    )

    # ==========================================================================
    # GRADIENT-BOOSTED TREES
    # ==========================================================================
    xgb_n_estimators: int = Field(
        default=200,
        ge=1,
        description="Number of sequential boosting rounds"
    )
    xgb_learning_rate: float = Field(
        default=0.3,
        gt=0.0,
        le=1.0,
        description="Boosting learning rate (shrinkage)"
    )
    xgb_max_depth: int = Field(
        default=6,
        ge=1,
        le=15,
        description="Maximum tree depth"
    )

    # ==========================================================================
    # EXECUTION
    # ==========================================================================
    n_jobs: int = Field(
        default=1,
        description="Worker threads used inside the forest and booster"
    )
    parallel_training: bool = Field(
        default=False,
        description="Fit the three independent trainers concurrently"
    )

    # ==========================================================================
    # MLFLOW CONFIGURATION
    # ==========================================================================
    mlflow_enabled: bool = Field(
        default=True,
        description="Log the run to MLflow"
    )
    mlflow_tracking_uri: str = Field(
        default="file:./mlruns",
        description="MLflow tracking URI for experiment logging"
    )
    mlflow_experiment_name: str = Field(
        default="readmission_30d",
        description="MLflow experiment name for organizing runs"
    )

    # ==========================================================================
    # LOGGING CONFIGURATION
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached Settings instance.

    Using lru_cache ensures we only parse environment variables once,
    improving performance and consistency across the application.

    Returns:
        Settings: Application configuration object
    """
    return Settings()


@dataclass(frozen=True)
class AnalysisContext:
    """
    Explicit run context handed to every pipeline stage.

    Attributes:
        settings: Configuration for this run
    """
    settings: Settings = field(default_factory=get_settings)

    @property
    def random_state(self) -> int:
        return self.settings.random_seed

    def excluded_columns(self) -> List[str]:
        """Columns that must never reach a model, in training or scoring."""
        excluded = list(self.settings.identifier_columns)
        excluded.append(self.settings.outcome_column)
        excluded.extend(self.settings.leakage_columns)
        if self.settings.drop_lace_columns:
            excluded.extend(self.settings.lace_columns)
        return excluded


# ==========================================================================
# CONVENIENCE EXPORTS
# ==========================================================================
settings = get_settings()
