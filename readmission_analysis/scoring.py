"""
Readmission Analysis - Hold-out Scoring

Applies the selected model to the unlabeled hold-out encounters and persists
the resulting prediction vector. No evaluation is possible here because the
hold-out set carries no outcome.

The hold-out frame goes through the same column removal as training
(identifiers, outcome, leakage and LACE-derived columns) and is encoded with
the encoder fitted on the training split. A training feature that is absent
from the hold-out schema aborts scoring with a SchemaMismatchError. Hold-out rows
with missing feature values are rejected rather than encoded.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from .config import AnalysisContext
from .data import FeatureEncoder, ensure_complete, prepare_features
from .evaluation import ModelComparison
from .model import ReadmissionModel

# Configure module logger
logger = logging.getLogger(__name__)

PROBABILITY_COLUMN = "readmission_probability"


def apply_to_holdout(
    model: ReadmissionModel,
    encoder: FeatureEncoder,
    holdout: pd.DataFrame,
    context: AnalysisContext,
    comparison: Optional[ModelComparison] = None,
) -> pd.DataFrame:
    """
    Score the hold-out encounters with the selected model.

    Args:
        model: Fitted model to apply
        encoder: Encoder fitted on the training split
        holdout: Unlabeled encounter frame
        context: Run context (column roles)
        comparison: When given, ``model`` must be its selected winner

    Returns:
        DataFrame aligned to ``holdout`` rows with the identifier columns that
        are present and a readmission_probability column

    Raises:
        ValueError: If ``model`` is not the selected model of ``comparison``
        SchemaMismatchError: If a training feature is missing from the hold-out
        MissingValueError: If a hold-out feature value is missing
    """
    if comparison is not None and not comparison.is_selected(model):
        raise ValueError(
            f"Only the selected model ({comparison.best.name}) may score the "
            f"hold-out set, got {model.name}"
        )

    X_raw, _ = prepare_features(holdout, context, labeled=False)
    ensure_complete(X_raw, context="hold-out features")
    X = encoder.transform(X_raw, context="hold-out")
    probabilities = model.predict_proba(X)

    id_columns = [c for c in context.settings.identifier_columns if c in holdout.columns]
    predictions = holdout[id_columns].copy()
    predictions[PROBABILITY_COLUMN] = probabilities

    logger.info(
        f"Scored {len(predictions)} hold-out encounters with {model.name}",
        extra={"mean_probability": float(probabilities.mean()) if len(probabilities) else 0.0},
    )
    return predictions


def save_predictions(predictions: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Write the prediction vector as CSV, replacing any previous file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    predictions.to_csv(path, index=False)

    logger.info(f"Saved {len(predictions)} predictions to {path}")
    return path
