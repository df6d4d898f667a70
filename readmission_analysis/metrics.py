"""
Readmission Analysis - ROC / AUC and the LACE Baseline

The same ROC procedure scores the precomputed LACE baseline and every fitted
model: rank encounters by score, sweep the threshold from high to low while
accumulating true- and false-positive rates, and integrate the resulting
curve with the trapezoidal rule.

AUC is the probability that a randomly chosen readmitted encounter is scored
above a randomly chosen non-readmitted one. It is undefined when only one
outcome class is present; in that case a DegenerateLabelError is raised
instead of returning a placeholder.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import numpy as np
import pandas as pd
from sklearn.metrics import auc, roc_curve

from .data import compute_lace_score, encode_outcome
from .exceptions import DegenerateLabelError, MissingValueError, SchemaMismatchError

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RocCurve:
    """
    Receiver operating characteristic of one scoring function.

    Attributes:
        fpr: False-positive rate at each threshold (non-decreasing)
        tpr: True-positive rate at each threshold (non-decreasing)
        thresholds: Score thresholds, highest first
        auc: Trapezoidal area under (fpr, tpr)
    """
    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray
    auc: float

    def points(self) -> List[Dict[str, float]]:
        """Curve points for reporting."""
        return [
            {"fpr": float(f), "tpr": float(t)}
            for f, t in zip(self.fpr, self.tpr)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {"auc": round(self.auc, 6), "points": self.points()}


def compute_roc(y_true, scores) -> RocCurve:
    """
    Compute the ROC curve and AUC of ``scores`` against binary ``y_true``.

    Args:
        y_true: 0/1 outcome per encounter
        scores: Real-valued score per encounter (higher = more likely readmitted)

    Returns:
        RocCurve

    Raises:
        ValueError: If the inputs are not aligned
        MissingValueError: If any score is missing
        DegenerateLabelError: If fewer than two outcome classes are present
    """
    y = np.asarray(y_true)
    s = np.asarray(scores, dtype=float)

    if y.shape[0] != s.shape[0]:
        raise ValueError(f"Outcome and score lengths differ: {y.shape[0]} vs {s.shape[0]}")
    if np.isnan(s).any():
        raise MissingValueError(f"{int(np.isnan(s).sum())} scores are missing")

    classes = np.unique(y)
    if classes.size < 2:
        raise DegenerateLabelError(
            f"AUC is undefined when only one outcome class is present (found {classes.tolist()})"
        )

    fpr, tpr, thresholds = roc_curve(y, s)
    return RocCurve(fpr=fpr, tpr=tpr, thresholds=thresholds, auc=float(auc(fpr, tpr)))


def score_baseline(
    frame: pd.DataFrame,
    score_column: str = "lace_score",
    outcome_column: str = "readmit_30d",
    positive_label: str = "Readmit",
    negative_label: str = "No Readmit",
) -> RocCurve:
    """
    Evaluate a precomputed clinical risk score against the outcome.

    When ``score_column`` is absent but the LACE inputs are present, the
    LACE score is derived first.
    """
    if outcome_column not in frame.columns:
        raise SchemaMismatchError([outcome_column], context="baseline scoring")

    if score_column not in frame.columns:
        logger.info(f"'{score_column}' not present, deriving LACE from its components")
        frame = compute_lace_score(frame)
        score_column = "lace_score"

    y = encode_outcome(frame[outcome_column], positive_label, negative_label)
    roc = compute_roc(y, frame[score_column])

    logger.info(
        f"Baseline {score_column} AUC: {roc.auc:.4f}",
        extra={"n_encounters": len(frame), "readmission_rate": float(y.mean())},
    )
    return roc
