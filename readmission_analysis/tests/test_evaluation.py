"""
Model comparison and selection tests.
"""

from unittest.mock import MagicMock

import numpy as np
import pandas as pd
import pytest

from readmission_analysis.evaluation import (
    ModelEvaluation,
    compare_models,
    evaluate_models,
    select_best,
)
from readmission_analysis.exceptions import DegenerateLabelError
from readmission_analysis.model import ModelKind


def _mock_model(name: str, kind: ModelKind, probabilities=None):
    model = MagicMock()
    model.name = name
    model.kind = kind
    model.predict_proba.return_value = probabilities
    model.feature_importance.return_value = {"signal": 0.9, "noise": 0.1}
    model.get_params.return_value = {"model": name}
    return model


def _evaluation(name: str, kind: ModelKind, auc: float) -> ModelEvaluation:
    roc = MagicMock()
    roc.auc = auc
    return ModelEvaluation(model=_mock_model(name, kind), roc=roc, probabilities=np.array([]))


class TestSelectBest:
    """Tests for the selection rule."""

    def test_highest_auc_wins(self):
        evaluations = [
            _evaluation("penalized_logistic", ModelKind.LINEAR, 0.70),
            _evaluation("random_forest", ModelKind.FOREST, 0.74),
            _evaluation("gradient_boosting", ModelKind.BOOSTED, 0.72),
        ]
        assert select_best(evaluations).name == "random_forest"

    def test_exact_tie_goes_to_simpler_family(self):
        evaluations = [
            _evaluation("gradient_boosting", ModelKind.BOOSTED, 0.8),
            _evaluation("random_forest", ModelKind.FOREST, 0.8),
            _evaluation("penalized_logistic", ModelKind.LINEAR, 0.8),
        ]
        assert select_best(evaluations).name == "penalized_logistic"

    def test_tie_within_tolerance(self):
        evaluations = [
            _evaluation("gradient_boosting", ModelKind.BOOSTED, 0.8 + 1e-14),
            _evaluation("random_forest", ModelKind.FOREST, 0.8),
        ]
        assert select_best(evaluations).name == "random_forest"

    def test_selection_ignores_training_order(self):
        evaluations = [
            _evaluation("penalized_logistic", ModelKind.LINEAR, 0.71),
            _evaluation("random_forest", ModelKind.FOREST, 0.75),
            _evaluation("gradient_boosting", ModelKind.BOOSTED, 0.75),
        ]
        assert select_best(evaluations).name == select_best(evaluations[::-1]).name == "random_forest"

    def test_empty_is_rejected(self):
        with pytest.raises(ValueError):
            select_best([])


class TestCompareModels:
    """Tests for scoring fitted models on the test split."""

    @pytest.fixture
    def y_test(self):
        return pd.Series([0, 0, 1, 1])

    def test_every_model_is_scored(self, y_test):
        good = _mock_model("random_forest", ModelKind.FOREST, np.array([0.1, 0.2, 0.8, 0.9]))
        weak = _mock_model("penalized_logistic", ModelKind.LINEAR, np.array([0.1, 0.9, 0.2, 0.8]))
        X_test = pd.DataFrame({"signal": [0, 0, 1, 1]})

        comparison = compare_models([weak, good], X_test, y_test)

        assert comparison.aucs() == {"penalized_logistic": pytest.approx(0.5), "random_forest": pytest.approx(1.0)}
        assert comparison.best.model is good
        assert comparison.is_selected(good)
        assert not comparison.is_selected(weak)
        good.predict_proba.assert_called_once_with(X_test)

    def test_evaluation_summary(self, y_test):
        model = _mock_model("random_forest", ModelKind.FOREST, np.array([0.1, 0.2, 0.8, 0.9]))
        evaluation = evaluate_models([model], pd.DataFrame({"a": range(4)}), y_test)[0]

        summary = evaluation.to_dict(top_n=1)
        assert summary["kind"] == "forest"
        assert summary["auc"] == 1.0
        assert summary["top_features"] == {"signal": 0.9}

    def test_single_class_test_split_fails(self):
        model = _mock_model("random_forest", ModelKind.FOREST, np.array([0.1, 0.2]))
        with pytest.raises(DegenerateLabelError):
            evaluate_models([model], pd.DataFrame({"a": [1, 2]}), pd.Series([1, 1]))
        model.predict_proba.assert_not_called()
