"""
Readmission Analysis - Analysis Pipeline

This module runs the end-to-end analysis:
1. Load the labeled encounters (and the unlabeled hold-out set)
2. Score the precomputed LACE baseline with ROC/AUC
3. Split into stratified train/test sets
4. Fit the penalized logistic, random forest and boosted-tree models
5. Select the model with the highest test AUC
6. Score the hold-out set with the selected model and persist the results

================================================================================
ORDERING
================================================================================

Control flow is strictly linear. The three trainers in step 4 only read the
shared training frame and are independent of each other, so with
`parallel_training` enabled they run in a thread pool; the fitted models
are identical to a sequential run because every trainer is seeded.

The hold-out schema and completeness are checked against the training
features BEFORE any model is fitted, so a schema mismatch or a missing value
aborts the run immediately instead of after minutes of training.

================================================================================
"""

from __future__ import annotations

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd

from .config import AnalysisContext, Settings
from .data import (
    DataSplit,
    EncounterLoader,
    FeatureEncoder,
    check_schema_parity,
    ensure_complete,
    prepare_features,
    split_train_test,
)
from .evaluation import ModelComparison, compare_models
from .exceptions import SchemaMismatchError
from .metrics import RocCurve, score_baseline
from .model import ReadmissionModel, build_models
from .report import AnalysisReport, build_report
from .scoring import apply_to_holdout, save_predictions

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Outputs of one analysis run."""
    baseline: RocCurve
    split: DataSplit
    encoder: FeatureEncoder
    comparison: ModelComparison
    report: AnalysisReport
    predictions: Optional[pd.DataFrame] = None
    run_id: Optional[str] = None

    @property
    def selected_model(self) -> ReadmissionModel:
        return self.comparison.best.model


def train_models(
    models: Sequence[ReadmissionModel],
    X_train: pd.DataFrame,
    y_train: pd.Series,
    parallel: bool = False,
) -> List[ReadmissionModel]:
    """
    Fit each model on the same training split.

    Returns:
        The fitted models, in the order given
    """
    if not parallel:
        return [model.fit(X_train, y_train) for model in models]

    logger.info(f"Training {len(models)} models in parallel")
    with ThreadPoolExecutor(max_workers=len(models)) as executor:
        futures = [executor.submit(model.fit, X_train, y_train) for model in models]
        return [future.result() for future in futures]


def run_analysis(
    encounters: pd.DataFrame,
    holdout: Optional[pd.DataFrame] = None,
    context: Optional[AnalysisContext] = None,
) -> AnalysisResult:
    """
    Run the analysis on in-memory frames.

    Args:
        encounters: Labeled encounter frame
        holdout: Unlabeled encounters to score with the selected model
        context: Run context (default: environment settings)

    Returns:
        AnalysisResult with the baseline, split, models, report and predictions
    """
    context = context or AnalysisContext()
    s = context.settings

    logger.info(
        "Starting readmission analysis",
        extra={"n_encounters": len(encounters), "random_seed": context.random_state},
    )

    baseline = score_baseline(
        encounters,
        score_column=s.baseline_score_column,
        outcome_column=s.outcome_column,
        positive_label=s.positive_label,
        negative_label=s.negative_label,
    )

    X_raw, y = prepare_features(encounters, context)
    if y is None:
        raise SchemaMismatchError([s.outcome_column], context="encounter dataset")

    if holdout is not None:
        X_holdout_raw, _ = prepare_features(holdout, context, labeled=False)
        check_schema_parity(list(X_raw.columns), X_holdout_raw, context="hold-out")
        ensure_complete(X_holdout_raw, context="hold-out features")

    ensure_complete(X_raw, context="encounter features")

    split = split_train_test(y, train_fraction=s.train_fraction, random_state=context.random_state)

    encoder = FeatureEncoder()
    X_train = encoder.fit_transform(split.train(X_raw))
    X_test = encoder.transform(split.test(X_raw), context="test split")
    y_train, y_test = split.train(y), split.test(y)

    models = train_models(build_models(context), X_train, y_train, parallel=s.parallel_training)
    comparison = compare_models(models, X_test, y_test)

    predictions = None
    if holdout is not None:
        predictions = apply_to_holdout(comparison.best.model, encoder, holdout, context, comparison)

    report = build_report(
        s.baseline_score_column,
        baseline,
        comparison,
        metadata={
            "random_seed": context.random_state,
            "train_fraction": s.train_fraction,
            "n_train": len(split.train_index),
            "n_test": len(split.test_index),
            "n_features": len(encoder.feature_names),
            "n_holdout": 0 if holdout is None else len(holdout),
            "completed_at": datetime.utcnow().isoformat(),
        },
    )

    for line in report.summary_lines():
        logger.info(line)

    return AnalysisResult(
        baseline=baseline,
        split=split,
        encoder=encoder,
        comparison=comparison,
        report=report,
        predictions=predictions,
    )


def run_pipeline(
    context: Optional[AnalysisContext] = None,
    use_synthetic: bool = False,
    n_synthetic: int = 5000,
    encounters_path: Optional[str] = None,
    holdout_path: Optional[str] = None,
    output_path: Optional[str] = None,
    track: Optional[bool] = None,
) -> AnalysisResult:
    """
    Execute the full pipeline from files (or synthetic data) to artifacts.

    Writes the hold-out predictions, the JSON report and the selected model,
    then logs the run to MLflow when tracking is enabled.
    """
    context = context or AnalysisContext()
    s = context.settings
    loader = EncounterLoader(context)

    if use_synthetic:
        logger.info("Using synthetic encounters")
        encounters = loader.generate_synthetic_data(n_encounters=n_synthetic)
        holdout = loader.generate_synthetic_data(n_encounters=max(n_synthetic // 5, 1), labeled=False)
    else:
        encounters = loader.load_encounters(encounters_path)
        holdout = loader.load_holdout(holdout_path)

    result = run_analysis(encounters, holdout, context)

    save_predictions(result.predictions, output_path or s.predictions_path)
    result.report.write(s.report_path)
    model_dir = Path(s.model_dir)
    result.selected_model.save(model_dir / f"{result.selected_model.name}.joblib")

    track = s.mlflow_enabled if track is None else track
    if track:
        from .mlflow_tracking import log_analysis_run

        run_name = f"analysis_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}"
        result.run_id = log_analysis_run(result, context, run_name=run_name)
        logger.info(f"Analysis run logged to MLflow: {result.run_id}")

    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Command-line interface for the analysis.

    Usage:
        readmission-analysis [--synthetic] [--encounters PATH] [--holdout PATH]
                             [--output PATH] [--no-mlflow] [--parallel]
    """
    import argparse

    parser = argparse.ArgumentParser(description="30-day readmission risk analysis")
    parser.add_argument(
        "--synthetic",
        action="store_true",
        help="Use synthetic encounters instead of the configured files",
    )
    parser.add_argument(
        "--n-synthetic",
        type=int,
        default=5000,
        help="Number of synthetic labeled encounters",
    )
    parser.add_argument("--encounters", type=str, default=None, help="Labeled encounters CSV")
    parser.add_argument("--holdout", type=str, default=None, help="Unlabeled hold-out CSV")
    parser.add_argument("--output", type=str, default=None, help="Predictions CSV to write")
    parser.add_argument(
        "--no-mlflow",
        action="store_true",
        help="Don't log the run to MLflow",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Fit the three models concurrently",
    )

    args = parser.parse_args(argv)

    overrides = {"parallel_training": True} if args.parallel else {}
    context = AnalysisContext(settings=Settings(**overrides))

    logging.basicConfig(
        level=getattr(logging, context.settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    result = run_pipeline(
        context=context,
        use_synthetic=args.synthetic,
        n_synthetic=args.n_synthetic,
        encounters_path=args.encounters,
        holdout_path=args.holdout,
        output_path=args.output,
        track=False if args.no_mlflow else None,
    )

    print(f"\n{'='*60}")
    print("ANALYSIS COMPLETE")
    print(f"{'='*60}")
    for line in result.report.summary_lines():
        print(line)
    if result.run_id:
        print(f"MLflow Run ID: {result.run_id}")
    print(f"{'='*60}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
