"""
Readmission Analysis - Model Evaluation and Selection

Each fitted model scores the held-out test split, its ROC/AUC is computed
with the same procedure as the LACE baseline, and the model with the highest
test AUC is selected for the hold-out set.

Tie-breaking: AUCs within AUC_TIE_TOLERANCE of each other are treated as
equal and the simpler model family wins (linear, then forest, then boosted).
The rule is deterministic and does not depend on the order in which the
models were trained.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

import numpy as np
import pandas as pd

from .exceptions import DegenerateLabelError
from .metrics import RocCurve, compute_roc
from .model import COMPLEXITY_RANK, ReadmissionModel

# Configure module logger
logger = logging.getLogger(__name__)

AUC_TIE_TOLERANCE = 1e-12


@dataclass
class ModelEvaluation:
    """
    Test-split performance of one fitted model.

    Attributes:
        model: The fitted model that was scored
        roc: ROC curve on the test split
        probabilities: Predicted readmission probability per test row
        importance: Feature importance mapping, highest first
    """
    model: ReadmissionModel
    roc: RocCurve
    probabilities: np.ndarray
    importance: Dict[str, float] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def auc(self) -> float:
        return self.roc.auc

    def to_dict(self, top_n: int = 15) -> Dict[str, Any]:
        return {
            "model": self.name,
            "kind": self.model.kind.value,
            "auc": round(self.auc, 6),
            "params": self.model.get_params(),
            "top_features": dict(list(self.importance.items())[:top_n]),
        }


@dataclass
class ModelComparison:
    """All evaluations of a run plus the selected winner."""
    evaluations: List[ModelEvaluation]
    best: ModelEvaluation

    def aucs(self) -> Dict[str, float]:
        return {e.name: e.auc for e in self.evaluations}

    def is_selected(self, model: ReadmissionModel) -> bool:
        return model is self.best.model


def evaluate_model(model: ReadmissionModel, X_test: pd.DataFrame, y_test: pd.Series) -> ModelEvaluation:
    """
    Score one fitted model on the test split.

    Raises:
        DegenerateLabelError: If the test split contains a single class
    """
    probabilities = model.predict_proba(X_test)
    roc = compute_roc(y_test, probabilities)

    logger.info(
        f"{model.name} test AUC: {roc.auc:.4f}",
        extra={"model": model.name, "n_test": len(X_test)},
    )
    return ModelEvaluation(
        model=model,
        roc=roc,
        probabilities=probabilities,
        importance=model.feature_importance(),
    )


def evaluate_models(
    models: Sequence[ReadmissionModel],
    X_test: pd.DataFrame,
    y_test: pd.Series,
) -> List[ModelEvaluation]:
    """Score every fitted model on the same test split."""
    if np.unique(np.asarray(y_test)).size < 2:
        raise DegenerateLabelError("Test split contains a single outcome class")

    return [evaluate_model(model, X_test, y_test) for model in models]


def select_best(evaluations: Sequence[ModelEvaluation]) -> ModelEvaluation:
    """
    Pick the evaluation with the highest AUC.

    Ties (within AUC_TIE_TOLERANCE) go to the simpler model family.

    Raises:
        ValueError: If there is nothing to choose from
    """
    if not evaluations:
        raise ValueError("No model evaluations to select from")

    top_auc = max(e.auc for e in evaluations)
    tied = [e for e in evaluations if top_auc - e.auc <= AUC_TIE_TOLERANCE]
    best = min(tied, key=lambda e: COMPLEXITY_RANK[e.model.kind])

    if len(tied) > 1:
        logger.info(
            f"AUC tie between {[e.name for e in tied]}, preferring simpler {best.name}"
        )

    logger.info(f"Selected model: {best.name} (AUC {best.auc:.4f})")
    return best


def compare_models(
    models: Sequence[ReadmissionModel],
    X_test: pd.DataFrame,
    y_test: pd.Series,
) -> ModelComparison:
    """Evaluate every model and select the best one."""
    evaluations = evaluate_models(models, X_test, y_test)
    return ModelComparison(evaluations=evaluations, best=select_best(evaluations))
