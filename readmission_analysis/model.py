"""
Readmission Analysis - Predictive Models

Three independent model families are fitted on the same training split and
compared on the held-out test split:

================================================================================
MODEL FAMILIES
================================================================================

1. PENALIZED LOGISTIC REGRESSION (ridge-style, "linear"):
   ─────────────────────────────────────────────────────
   Features are standardized and an L2 penalty shrinks every coefficient
   toward zero without eliminating any. The penalty strength is chosen by
   stratified k-fold cross-validation on binomial deviance using the
   ONE-STANDARD-ERROR RULE: among all penalties whose mean CV deviance is
   within one standard error of the minimum, take the most regularized.
   This prefers a stabler model over the naive minimum.

2. RANDOM FOREST ("forest"):
   ─────────────────────────
   500 independently grown trees, 5 candidate features per split, probability
   output averaged over trees. Importance = mean impurity decrease.

3. GRADIENT-BOOSTED TREES ("boosted"):
   ───────────────────────────────────
   200 sequential XGBoost rounds with shrinkage 0.3 on the binary logistic
   loss. Importance = average gain, normalized to sum to 1.

================================================================================
COMMON INTERFACE
================================================================================

Every family is a ReadmissionModel exposing:

    fit(X, y)              -> self
    predict_proba(X)       -> readmission probability per row
    feature_importance()   -> {feature: score}, highest first
    get_params()           -> hyperparameters for tracking
    save(path) / load(path)

so the evaluator never dispatches on the concrete type.

================================================================================
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import joblib
import numpy as np
import pandas as pd
import xgboost as xgb
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import StratifiedKFold, validation_curve
from sklearn.pipeline import Pipeline, make_pipeline
from sklearn.preprocessing import StandardScaler

from .config import AnalysisContext, settings
from .data import check_schema_parity, ensure_complete
from .exceptions import DegenerateLabelError

# Configure module logger
logger = logging.getLogger(__name__)


class ModelKind(str, Enum):
    """
    Model family tags.

    The order of COMPLEXITY_RANK is used to break AUC ties in favour of the
    simpler family.
    """
    LINEAR = "linear"
    FOREST = "forest"
    BOOSTED = "boosted"


COMPLEXITY_RANK: Dict[ModelKind, int] = {
    ModelKind.LINEAR: 0,
    ModelKind.FOREST: 1,
    ModelKind.BOOSTED: 2,
}


# =============================================================================
# BASE MODEL
# =============================================================================

class ReadmissionModel:
    """
    Base class for a fitted readmission predictor.

    Subclasses implement ``_fit``, ``_predict`` and ``_importances``; the base
    class handles input validation, feature alignment and metadata.

    Attributes:
        name: Human-readable model name used in reports and tracking
        kind: Model family tag
        random_state: Seed for every stochastic step of fitting
        feature_names: Design-matrix columns seen during fit
        is_fitted: Whether the model has been trained
        training_metadata: Information about the training run
    """

    name: str = "model"
    kind: ModelKind = ModelKind.LINEAR

    def __init__(self, random_state: int = 2017) -> None:
        self.random_state = random_state
        self.feature_names: List[str] = []
        self.is_fitted: bool = False
        self.training_metadata: Dict[str, Any] = {}

    def fit(self, X: pd.DataFrame, y: pd.Series) -> "ReadmissionModel":
        """
        Train the model.

        Args:
            X: Encoded feature matrix
            y: 0/1 readmission outcome aligned with X

        Returns:
            self for method chaining

        Raises:
            ValueError: If X is empty or not aligned with y
            DegenerateLabelError: If only one outcome class is present
        """
        if X.empty:
            raise ValueError("Cannot fit on empty DataFrame")
        if len(X) != len(y):
            raise ValueError(f"Feature and outcome lengths differ: {len(X)} vs {len(y)}")

        y_arr = np.asarray(y).astype(int)
        if np.unique(y_arr).size < 2:
            raise DegenerateLabelError(f"{self.name} needs both outcome classes to train")

        self.feature_names = [str(c) for c in X.columns]

        logger.info(
            f"Training {self.name} on {len(X)} encounters",
            extra={"n_features": len(self.feature_names), "positive_rate": float(y_arr.mean())},
        )

        self._fit(X, y_arr)
        self.is_fitted = True

        self.training_metadata = {
            "n_samples": len(X),
            "n_features": len(self.feature_names),
            "positive_rate": float(y_arr.mean()),
            "trained_at": datetime.utcnow().isoformat(),
        }

        logger.info(f"{self.name} training complete", extra=self.training_metadata)
        return self

    def predict_proba(self, X: pd.DataFrame) -> np.ndarray:
        """
        Predict the readmission probability of each row.

        Raises:
            RuntimeError: If the model has not been fitted
            SchemaMismatchError: If a training feature is missing from X
        """
        if not self.is_fitted:
            raise RuntimeError("Model must be fitted before prediction. Call fit() first.")

        check_schema_parity(self.feature_names, X, context="scored data")
        return self._predict(X[self.feature_names])

    def feature_importance(self) -> Dict[str, float]:
        """
        Get feature importance scores.

        Returns:
            Dictionary mapping feature names to importance, highest first
        """
        if not self.is_fitted:
            raise RuntimeError("Model must be fitted first")

        importance = self._importances()
        return {
            feature: float(imp)
            for feature, imp in sorted(
                zip(self.feature_names, importance),
                key=lambda x: -x[1],
            )
        }

    def top_features(self, n: int = 10) -> List[str]:
        return list(self.feature_importance())[:n]

    def get_params(self) -> Dict[str, Any]:
        return {"model": self.name, "random_state": self.random_state}

    def save(self, path: Union[str, Path]) -> Path:
        """Save the fitted model to disk with joblib."""
        if not self.is_fitted:
            raise RuntimeError("Cannot save unfitted model")

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, path)

        logger.info(f"Model saved to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ReadmissionModel":
        instance = joblib.load(path)
        if not isinstance(instance, cls):
            raise TypeError(f"{path} does not contain a {cls.__name__}")

        logger.info(f"Model loaded from {path}")
        return instance

    # Subclass hooks

    def _fit(self, X: pd.DataFrame, y: np.ndarray) -> None:
        raise NotImplementedError

    def _predict(self, X: pd.DataFrame) -> np.ndarray:
        raise NotImplementedError

    def _importances(self) -> np.ndarray:
        raise NotImplementedError


# =============================================================================
# PENALIZED LOGISTIC REGRESSION
# =============================================================================

class PenalizedLogisticModel(ReadmissionModel):
    """
    L2-penalized logistic regression with a cross-validated penalty.

    Attributes:
        cv_results: Per-penalty mean and standard error of CV deviance
        c_min_deviance: Inverse penalty with the lowest mean CV deviance
        c_selected: Inverse penalty chosen by the one-standard-error rule
        pipeline: Fitted StandardScaler + LogisticRegression

    Example:
        >>> model = PenalizedLogisticModel(random_state=2017)
        >>> model.fit(X_train, y_train)
        >>> model.coefficients()["(Intercept)"]
    """

    name = "penalized_logistic"
    kind = ModelKind.LINEAR

    def __init__(
        self,
        cv_folds: Optional[int] = None,
        n_penalties: Optional[int] = None,
        c_min: Optional[float] = None,
        c_max: Optional[float] = None,
        max_iter: Optional[int] = None,
        random_state: int = 2017,
    ) -> None:
        super().__init__(random_state=random_state)
        self.cv_folds = cv_folds if cv_folds is not None else settings.ridge_cv_folds
        self.n_penalties = n_penalties if n_penalties is not None else settings.ridge_n_penalties
        self.c_min = c_min if c_min is not None else settings.ridge_c_min
        self.c_max = c_max if c_max is not None else settings.ridge_c_max
        self.max_iter = max_iter if max_iter is not None else settings.ridge_max_iter

        self.pipeline: Optional[Pipeline] = None
        self.cv_results: Optional[pd.DataFrame] = None
        self.c_min_deviance: Optional[float] = None
        self.c_selected: Optional[float] = None

    def _new_pipeline(self, C: float = 1.0) -> Pipeline:
        return make_pipeline(
            StandardScaler(),
            LogisticRegression(C=C, max_iter=self.max_iter),
        )

    def _fit(self, X: pd.DataFrame, y: np.ndarray) -> None:
        ensure_complete(X, context=f"{self.name} training matrix")

        Cs = np.logspace(np.log10(self.c_min), np.log10(self.c_max), self.n_penalties)
        cv = StratifiedKFold(n_splits=self.cv_folds, shuffle=True, random_state=self.random_state)

        _, test_scores = validation_curve(
            self._new_pipeline(),
            X,
            y,
            param_name="logisticregression__C",
            param_range=Cs,
            cv=cv,
            scoring="neg_log_loss",
        )

        # Binomial deviance per (penalty, fold): twice the mean negative log-likelihood
        deviance = -2.0 * test_scores
        mean_dev = deviance.mean(axis=1)
        se_dev = deviance.std(axis=1, ddof=1) / np.sqrt(deviance.shape[1])

        best = int(np.argmin(mean_dev))
        threshold = mean_dev[best] + se_dev[best]
        eligible = np.flatnonzero(mean_dev <= threshold)
        chosen = int(eligible[np.argmin(Cs[eligible])])

        self.cv_results = pd.DataFrame({
            "C": Cs,
            "penalty": 1.0 / Cs,
            "mean_deviance": mean_dev,
            "se_deviance": se_dev,
        })
        self.c_min_deviance = float(Cs[best])
        self.c_selected = float(Cs[chosen])

        logger.info(
            f"Penalty selected by one-standard-error rule: C={self.c_selected:.6g}",
            extra={
                "c_min_deviance": self.c_min_deviance,
                "min_deviance": float(mean_dev[best]),
                "selected_deviance": float(mean_dev[chosen]),
                "cv_folds": self.cv_folds,
            },
        )

        self.pipeline = self._new_pipeline(C=self.c_selected)
        self.pipeline.fit(X, y)

    def _predict(self, X: pd.DataFrame) -> np.ndarray:
        return self.pipeline.predict_proba(X)[:, 1]

    def _standardized_coefficients(self) -> np.ndarray:
        return self.pipeline.named_steps["logisticregression"].coef_[0]

    def _importances(self) -> np.ndarray:
        return np.abs(self._standardized_coefficients())

    def coefficients(self) -> Dict[str, float]:
        """
        Coefficients on the original feature scale, intercept first.

        Returns:
            Mapping with "(Intercept)" followed by one entry per feature
        """
        if not self.is_fitted:
            raise RuntimeError("Model must be fitted first")

        scaler = self.pipeline.named_steps["standardscaler"]
        lr = self.pipeline.named_steps["logisticregression"]

        beta_std = lr.coef_[0]
        beta = beta_std / scaler.scale_
        intercept = float(lr.intercept_[0] - np.sum(beta_std * scaler.mean_ / scaler.scale_))

        coefs = {"(Intercept)": intercept}
        coefs.update({name: float(b) for name, b in zip(self.feature_names, beta)})
        return coefs

    def get_params(self) -> Dict[str, Any]:
        params = super().get_params()
        params.update({
            "cv_folds": self.cv_folds,
            "n_penalties": self.n_penalties,
            "c_min": self.c_min,
            "c_max": self.c_max,
            "c_selected": self.c_selected,
            "c_min_deviance": self.c_min_deviance,
        })
        return params


# =============================================================================
# RANDOM FOREST
# =============================================================================

class RandomForestModel(ReadmissionModel):
    """Random forest averaging class probabilities over independent trees."""

    name = "random_forest"
    kind = ModelKind.FOREST

    def __init__(
        self,
        n_estimators: Optional[int] = None,
        max_features: Optional[int] = None,
        n_jobs: Optional[int] = None,
        random_state: int = 2017,
    ) -> None:
        super().__init__(random_state=random_state)
        self.n_estimators = n_estimators if n_estimators is not None else settings.rf_n_estimators
        self.max_features = max_features if max_features is not None else settings.rf_max_features
        self.n_jobs = n_jobs if n_jobs is not None else settings.n_jobs
        self.model: Optional[RandomForestClassifier] = None

    def _fit(self, X: pd.DataFrame, y: np.ndarray) -> None:
        self.model = RandomForestClassifier(
            n_estimators=self.n_estimators,
            max_features=min(self.max_features, X.shape[1]),
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )
        self.model.fit(X.to_numpy(), y)

    def _predict(self, X: pd.DataFrame) -> np.ndarray:
        return self.model.predict_proba(X.to_numpy())[:, 1]

    def _importances(self) -> np.ndarray:
        return self.model.feature_importances_

    def get_params(self) -> Dict[str, Any]:
        params = super().get_params()
        params.update({
            "n_estimators": self.n_estimators,
            "max_features": self.max_features,
        })
        return params


# =============================================================================
# GRADIENT-BOOSTED TREES
# =============================================================================

class BoostedTreeModel(ReadmissionModel):
    """XGBoost classifier on the binary logistic objective."""

    name = "gradient_boosting"
    kind = ModelKind.BOOSTED

    def __init__(
        self,
        n_estimators: Optional[int] = None,
        learning_rate: Optional[float] = None,
        max_depth: Optional[int] = None,
        n_jobs: Optional[int] = None,
        random_state: int = 2017,
    ) -> None:
        super().__init__(random_state=random_state)
        self.n_estimators = n_estimators if n_estimators is not None else settings.xgb_n_estimators
        self.learning_rate = learning_rate if learning_rate is not None else settings.xgb_learning_rate
        self.max_depth = max_depth if max_depth is not None else settings.xgb_max_depth
        self.n_jobs = n_jobs if n_jobs is not None else settings.n_jobs
        self.model: Optional[xgb.XGBClassifier] = None

    def _initialize_model(self) -> xgb.XGBClassifier:
        return xgb.XGBClassifier(
            n_estimators=self.n_estimators,
            learning_rate=self.learning_rate,
            max_depth=self.max_depth,
            objective="binary:logistic",
            eval_metric="logloss",
            importance_type="gain",
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )

    def _fit(self, X: pd.DataFrame, y: np.ndarray) -> None:
        self.model = self._initialize_model()
        self.model.fit(X.to_numpy(), y, verbose=False)

    def _predict(self, X: pd.DataFrame) -> np.ndarray:
        return self.model.predict_proba(X.to_numpy())[:, 1]

    def _importances(self) -> np.ndarray:
        return np.nan_to_num(self.model.feature_importances_)

    def get_params(self) -> Dict[str, Any]:
        params = super().get_params()
        params.update({
            "n_estimators": self.n_estimators,
            "learning_rate": self.learning_rate,
            "max_depth": self.max_depth,
            "objective": "binary:logistic",
        })
        return params

    def save(self, path: Union[str, Path]) -> Path:
        """
        Save the booster as native XGBoost JSON plus a metadata file.

        Args:
            path: File path (saved with a .json suffix)
        """
        if not self.is_fitted:
            raise RuntimeError("Cannot save unfitted model")

        path = Path(path).with_suffix(".json")
        path.parent.mkdir(parents=True, exist_ok=True)
        self.model.save_model(str(path))

        metadata = {
            "params": self.get_params(),
            "feature_names": self.feature_names,
            "training_metadata": self.training_metadata,
        }
        with open(path.with_suffix(".meta.json"), "w") as f:
            json.dump(metadata, f, indent=2)

        logger.info(f"Model saved to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "BoostedTreeModel":
        path = Path(path).with_suffix(".json")

        with open(path.with_suffix(".meta.json"), "r") as f:
            metadata = json.load(f)

        params = metadata["params"]
        instance = cls(
            n_estimators=params["n_estimators"],
            learning_rate=params["learning_rate"],
            max_depth=params["max_depth"],
            random_state=params["random_state"],
        )
        instance.feature_names = metadata["feature_names"]
        instance.training_metadata = metadata.get("training_metadata", {})

        instance.model = instance._initialize_model()
        instance.model.load_model(str(path))
        instance.is_fitted = True

        logger.info(f"Model loaded from {path}")
        return instance


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def build_models(context: AnalysisContext) -> List[ReadmissionModel]:
    """
    Create the three unfitted model families configured for a run.

    Returns:
        [penalized logistic, random forest, gradient boosting]
    """
    s = context.settings
    return [
        PenalizedLogisticModel(
            cv_folds=s.ridge_cv_folds,
            n_penalties=s.ridge_n_penalties,
            c_min=s.ridge_c_min,
            c_max=s.ridge_c_max,
            max_iter=s.ridge_max_iter,
            random_state=context.random_state,
        ),
        RandomForestModel(
            n_estimators=s.rf_n_estimators,
            max_features=s.rf_max_features,
            n_jobs=s.n_jobs,
            random_state=context.random_state,
        ),
        BoostedTreeModel(
            n_estimators=s.xgb_n_estimators,
            learning_rate=s.xgb_learning_rate,
            max_depth=s.xgb_max_depth,
            n_jobs=s.n_jobs,
            random_state=context.random_state,
        ),
    ]
