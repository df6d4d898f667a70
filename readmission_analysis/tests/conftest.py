"""
Shared fixtures for the readmission analysis tests.

Run with: pytest readmission_analysis/tests -v
"""

import numpy as np
import pandas as pd
import pytest

from readmission_analysis.config import AnalysisContext, Settings
from readmission_analysis.data import generate_synthetic_encounters


@pytest.fixture
def fast_context():
    """Context with small ensembles and few CV folds for quick tests."""
    return AnalysisContext(settings=Settings(
        mlflow_enabled=False,
        ridge_cv_folds=5,
        ridge_n_penalties=15,
        rf_n_estimators=60,
        xgb_n_estimators=40,
        random_seed=11,
    ))


@pytest.fixture
def default_context():
    """Context with the production hyperparameters, tracking disabled."""
    return AnalysisContext(settings=Settings(mlflow_enabled=False))


@pytest.fixture
def synthetic_encounters():
    """Realistic labeled encounters with the full production schema."""
    return generate_synthetic_encounters(n_encounters=1000, random_state=7)


@pytest.fixture
def synthetic_holdout():
    return generate_synthetic_encounters(n_encounters=200, random_state=8, labeled=False)


def make_separable_encounters(n: int = 1000, random_state: int = 3, labeled: bool = True) -> pd.DataFrame:
    """
    Encounters where ``signal`` perfectly separates the outcome.

    ``signal`` is the outcome plus uniform jitter in [0, 0.9), so every value
    is distinct and every readmitted row scores above every other row. All
    remaining features are independent noise.
    """
    rng = np.random.default_rng(random_state)
    readmitted = rng.random(n) < 0.25

    frame = pd.DataFrame({
        "encounter_id": [f"S{i:05d}" for i in range(n)],
        "patient_id": [f"Q{i:05d}" for i in range(n)],
        "signal": readmitted.astype(float) + rng.uniform(0.0, 0.9, n),
        "ward": rng.choice(["A", "B", "C"], n),
        "lace_score": rng.integers(0, 20, n),
    })
    for i in range(10):
        frame[f"noise_{i}"] = rng.normal(0.0, 1.0, n)

    if labeled:
        frame["readmit_30d"] = np.where(readmitted, "Readmit", "No Readmit")
    return frame


@pytest.fixture
def separable_encounters():
    return make_separable_encounters()


@pytest.fixture
def separable_holdout():
    return make_separable_encounters(n=150, random_state=4, labeled=False)
