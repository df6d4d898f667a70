"""
Readmission Analysis - Data Loading, Preparation and Splitting

This module owns everything that happens to the encounter table before a
model sees it:

1. Loading the labeled encounter dataset and the unlabeled hold-out set
2. Encoding the "Readmit" / "No Readmit" outcome as {1, 0}
3. Deriving the LACE score and the 30-day outcome when they are not supplied
4. Removing identifier, leakage and (optionally) LACE-derived columns
5. Expanding categorical fields into indicator columns with a fitted encoder
6. Producing a seeded, stratified train/test partition

================================================================================
TRAIN / INFERENCE PARITY
================================================================================

The columns removed before training (identifiers, direct readmission
correlates such as the days until the next admission, and LACE-derived
columns) are removed again, by the same code path, before the hold-out set
is scored. The FeatureEncoder fitted on the training split is the only way
features reach a model, and it refuses any frame that lacks a column it was
fitted on. A missing column is a SchemaMismatchError, never a silent zero.

================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import OneHotEncoder

from .config import AnalysisContext
from .exceptions import MissingValueError, SchemaMismatchError, StratificationError

# Configure module logger
logger = logging.getLogger(__name__)


# Elixhauser comorbidity categories carried as 0/1 indicator columns
ELIXHAUSER_CATEGORIES: List[str] = [
    "chf", "arrhythmia", "valvular", "pulm_circ", "pvd",
    "htn_uncomplicated", "htn_complicated", "paralysis", "neuro_other",
    "chronic_pulm", "diabetes_uncomplicated", "diabetes_complicated",
    "hypothyroid", "renal_failure", "liver_disease", "peptic_ulcer",
    "aids_hiv", "lymphoma", "metastatic_cancer", "solid_tumor",
    "rheumatoid", "coagulopathy", "obesity", "weight_loss",
    "fluid_electrolyte", "blood_loss_anemia", "deficiency_anemia",
    "alcohol_abuse", "drug_abuse", "psychoses", "depression",
]

ELIXHAUSER_COLUMNS: List[str] = [f"elix_{name}" for name in ELIXHAUSER_CATEGORIES]


# =============================================================================
# OUTCOME AND LACE
# =============================================================================

def encode_outcome(
    labels: pd.Series,
    positive_label: str = "Readmit",
    negative_label: str = "No Readmit",
) -> pd.Series:
    """
    Encode the readmission outcome as integers (1 = readmitted).

    Accepts the two configured string labels, booleans, or 0/1 integers.

    Raises:
        MissingValueError: If any outcome is missing
        ValueError: If a value is not a recognised outcome
    """
    if labels.isna().any():
        raise MissingValueError(
            f"Outcome column '{labels.name}' has {int(labels.isna().sum())} missing values"
        )

    mapping = {
        positive_label: 1,
        negative_label: 0,
        True: 1,
        False: 0,
        1: 1,
        0: 0,
    }
    unknown = sorted({str(v) for v in labels.unique() if v not in mapping})
    if unknown:
        raise ValueError(
            f"Unrecognised outcome values in '{labels.name}': {unknown} "
            f"(expected '{positive_label}' / '{negative_label}')"
        )

    return labels.map(mapping.get).astype(int)


def _length_of_stay_points(days: pd.Series) -> pd.Series:
    points = np.select(
        [days < 1, days == 1, days == 2, days == 3, days <= 6, days <= 13],
        [0, 1, 2, 3, 4, 5],
        default=7,
    )
    return pd.Series(points, index=days.index, dtype=int)


def _comorbidity_points(charlson: pd.Series) -> pd.Series:
    points = np.select(
        [charlson <= 0, charlson == 1, charlson == 2, charlson == 3],
        [0, 1, 2, 3],
        default=5,
    )
    return pd.Series(points, index=charlson.index, dtype=int)


def compute_lace_score(
    frame: pd.DataFrame,
    los_column: str = "length_of_stay",
    admission_type_column: str = "admission_type",
    charlson_column: str = "charlson_index",
    ed_visits_column: str = "ed_visits_6mo",
    emergency_value: str = "Emergency",
) -> pd.DataFrame:
    """
    Add the four LACE components and their total to a copy of the frame.

    L: length of stay in days (<1: 0, 1: 1, 2: 2, 3: 3, 4-6: 4, 7-13: 5, 14+: 7)
    A: 3 points for an emergency (acute) admission
    C: Charlson comorbidity index (0-3 scored as-is, 4+: 5)
    E: emergency department visits in the prior 6 months, capped at 4

    Returns:
        Copy of ``frame`` with lace_l, lace_a, lace_c, lace_e, lace_score
    """
    required = [los_column, admission_type_column, charlson_column, ed_visits_column]
    missing = [c for c in required if c not in frame.columns]
    if missing:
        raise SchemaMismatchError(missing, context="LACE computation")

    result = frame.copy()
    result["lace_l"] = _length_of_stay_points(result[los_column])
    result["lace_a"] = np.where(result[admission_type_column] == emergency_value, 3, 0)
    result["lace_c"] = _comorbidity_points(result[charlson_column])
    result["lace_e"] = result[ed_visits_column].clip(upper=4).astype(int)
    result["lace_score"] = (
        result["lace_l"] + result["lace_a"] + result["lace_c"] + result["lace_e"]
    )
    return result


def build_readmission_label(
    encounters: pd.DataFrame,
    days: int = 30,
    patient_column: str = "patient_id",
    admit_column: str = "admit_date",
    discharge_column: str = "discharge_date",
    outcome_column: str = "readmit_30d",
    positive_label: str = "Readmit",
    negative_label: str = "No Readmit",
) -> pd.DataFrame:
    """
    Derive the 30-day readmission outcome from a patient encounter timeline.

    An encounter is a readmission index stay when the same patient has a
    subsequent admission starting within ``days`` days of its discharge.
    Also adds ``days_to_readmission`` (days until the next admission), which
    is a leakage column and never a feature.
    """
    for col in (patient_column, admit_column, discharge_column):
        if col not in encounters.columns:
            raise KeyError(f"Encounters must contain a '{col}' column")

    result = encounters.copy()
    result[admit_column] = pd.to_datetime(result[admit_column])
    result[discharge_column] = pd.to_datetime(result[discharge_column])

    ordered = result.sort_values([patient_column, admit_column])
    next_admit = ordered.groupby(patient_column)[admit_column].shift(-1)
    gap_days = (next_admit - ordered[discharge_column]).dt.days

    readmitted = gap_days.notna() & (gap_days >= 0) & (gap_days <= days)

    result["days_to_readmission"] = gap_days.reindex(result.index)
    result[outcome_column] = np.where(
        readmitted.reindex(result.index), positive_label, negative_label
    )

    logger.info(
        f"Derived {days}-day readmission label for {len(result)} encounters",
        extra={"readmission_rate": float(readmitted.mean()) if len(result) else 0.0},
    )
    return result


# =============================================================================
# SYNTHETIC ENCOUNTERS
# =============================================================================

def generate_synthetic_encounters(
    n_encounters: int = 5000,
    random_state: int = 2017,
    labeled: bool = True,
    positive_label: str = "Readmit",
    negative_label: str = "No Readmit",
) -> pd.DataFrame:
    """
    Generate a synthetic encounter table with the production schema.

    Readmission risk rises with LACE, prior admissions, ICU stays and
    discharge to a skilled nursing facility. When ``labeled`` is False the
    outcome and leakage columns are dropped, mimicking the hold-out file.

    Args:
        n_encounters: Number of rows to generate
        random_state: Seed for the generator
        labeled: Whether to keep the outcome and leakage columns

    Returns:
        DataFrame with one row per encounter
    """
    rng = np.random.default_rng(random_state)
    n = n_encounters

    admit_dates = pd.Timestamp("2016-01-01") + pd.to_timedelta(
        rng.integers(0, 365, n), unit="D"
    )
    length_of_stay = rng.geometric(0.25, n)

    data: Dict[str, object] = {
        "encounter_id": [f"E{i:06d}" for i in range(n)],
        "patient_id": [f"P{i:05d}" for i in rng.integers(0, max(n // 2, 1), n)],
        "admit_date": admit_dates,
        "discharge_date": admit_dates + pd.to_timedelta(length_of_stay, unit="D"),
        "age": rng.normal(65, 15, n).clip(18, 100).round().astype(int),
        "sex": rng.choice(["F", "M"], n),
        "race": rng.choice(["White", "Black", "Asian", "Hispanic", "Other"],
                           n, p=[0.6, 0.15, 0.08, 0.12, 0.05]),
        "insurance": rng.choice(["Medicare", "Medicaid", "Commercial", "Self-pay"],
                                n, p=[0.5, 0.2, 0.25, 0.05]),
        "admission_type": rng.choice(["Emergency", "Urgent", "Elective"],
                                     n, p=[0.6, 0.2, 0.2]),
        "discharge_disposition": rng.choice(["Home", "Home Health", "SNF", "Rehab"],
                                            n, p=[0.55, 0.2, 0.15, 0.1]),
        "length_of_stay": length_of_stay,
        "icu_stay": rng.binomial(1, 0.15, n),
        "num_procedures": rng.poisson(1.5, n),
        "num_medications": rng.poisson(8, n),
        "num_diagnoses": rng.poisson(6, n) + 1,
        "ed_visits_6mo": rng.poisson(0.8, n),
        "prior_admissions_12mo": rng.poisson(0.6, n),
    }

    prevalence = rng.uniform(0.02, 0.25, len(ELIXHAUSER_COLUMNS))
    for col, p in zip(ELIXHAUSER_COLUMNS, prevalence):
        data[col] = rng.binomial(1, p, n)

    frame = pd.DataFrame(data)
    frame["charlson_index"] = (
        frame["elix_chf"] + frame["elix_renal_failure"] + frame["elix_chronic_pulm"]
        + 2 * frame["elix_diabetes_complicated"] + 2 * frame["elix_solid_tumor"]
        + 6 * frame["elix_metastatic_cancer"] + rng.poisson(0.5, n)
    ).clip(upper=12)
    frame = compute_lace_score(frame)

    logit = (
        -3.6
        + 0.22 * frame["lace_score"]
        + 0.35 * frame["prior_admissions_12mo"]
        + 0.5 * frame["icu_stay"]
        + 0.4 * (frame["discharge_disposition"] == "SNF")
        + rng.normal(0, 0.5, n)
    )
    readmitted = rng.random(n) < 1.0 / (1.0 + np.exp(-logit))

    frame["days_to_readmission"] = np.where(
        readmitted, rng.integers(1, 31, n), rng.integers(31, 366, n)
    )
    frame["readmission_cost"] = np.where(
        readmitted, rng.gamma(2.0, 6000.0, n).round(2), 0.0
    )
    frame["readmit_30d"] = np.where(readmitted, positive_label, negative_label)

    if not labeled:
        frame = frame.drop(columns=["days_to_readmission", "readmission_cost", "readmit_30d"])

    logger.info(
        f"Generated {n} synthetic encounters",
        extra={"labeled": labeled, "readmission_rate": float(readmitted.mean())},
    )
    return frame


# =============================================================================
# LOADING
# =============================================================================

class EncounterLoader:
    """
    Loads persisted encounter tables for the analysis.

    Encounter and hold-out files are CSV. Both are read once and treated as
    immutable by every later stage.

    Example:
        >>> loader = EncounterLoader(AnalysisContext())
        >>> encounters = loader.load_encounters()
        >>> holdout = loader.load_holdout()
    """

    def __init__(self, context: Optional[AnalysisContext] = None) -> None:
        self.context = context or AnalysisContext()

    def _read(self, path: Union[str, Path], kind: str) -> pd.DataFrame:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Missing {kind} dataset: {path}")

        frame = pd.read_csv(path)
        if frame.empty:
            raise ValueError(f"{kind} dataset {path} has no rows")

        n_missing = int(frame.isna().sum().sum())
        logger.info(
            f"Loaded {len(frame)} {kind} encounters with {len(frame.columns)} columns",
            extra={"path": str(path), "missing_values": n_missing},
        )
        return frame

    def load_encounters(self, path: Optional[Union[str, Path]] = None) -> pd.DataFrame:
        """
        Load the labeled encounter dataset.

        Raises:
            FileNotFoundError: If the file does not exist
            SchemaMismatchError: If the outcome column is absent
        """
        frame = self._read(path or self.context.settings.encounters_path, "labeled")

        outcome = self.context.settings.outcome_column
        if outcome not in frame.columns:
            raise SchemaMismatchError([outcome], context="encounter dataset")

        return frame

    def load_holdout(self, path: Optional[Union[str, Path]] = None) -> pd.DataFrame:
        """Load the unlabeled hold-out dataset."""
        return self._read(path or self.context.settings.holdout_path, "hold-out")

    def generate_synthetic_data(self, n_encounters: int = 5000, labeled: bool = True) -> pd.DataFrame:
        """Generate synthetic encounters using the context's seed and labels."""
        s = self.context.settings
        # Hold-out rows get a different stream so they are not copies of training rows
        seed = self.context.random_state if labeled else self.context.random_state + 1
        return generate_synthetic_encounters(
            n_encounters=n_encounters,
            random_state=seed,
            labeled=labeled,
            positive_label=s.positive_label,
            negative_label=s.negative_label,
        )


# =============================================================================
# FEATURE PREPARATION
# =============================================================================

def prepare_features(
    frame: pd.DataFrame,
    context: AnalysisContext,
    labeled: bool = True,
) -> Tuple[pd.DataFrame, Optional[pd.Series]]:
    """
    Split an encounter frame into model features and the encoded outcome.

    Identifier, outcome, leakage and (when configured) LACE columns are
    dropped. With ``labeled=False`` (hold-out data) an outcome column that is
    present, typically left blank, is dropped without being encoded.

    Returns:
        Tuple of (features, outcome); outcome is None for unlabeled frames
    """
    s = context.settings
    excluded = [c for c in context.excluded_columns() if c in frame.columns]

    y = None
    if labeled and s.outcome_column in frame.columns:
        y = encode_outcome(frame[s.outcome_column], s.positive_label, s.negative_label)

    X = frame.drop(columns=excluded)

    logger.debug(
        f"Prepared {X.shape[1]} feature columns",
        extra={"dropped": excluded},
    )
    return X, y


def ensure_complete(X: pd.DataFrame, context: str = "feature matrix") -> None:
    """
    Fail if any feature value is missing.

    Raises:
        MissingValueError: Listing each incomplete column and its gap count
    """
    gaps = X.isna().sum()
    gaps = gaps[gaps > 0]
    if not gaps.empty:
        per_column = {col: int(n) for col, n in gaps.items()}
        raise MissingValueError(
            f"{context} has missing values in {len(gaps)} column(s): {per_column}"
        )


def check_schema_parity(feature_columns: Sequence[str], frame: pd.DataFrame, context: str = "hold-out") -> None:
    """
    Fail fast when ``frame`` lacks any of the training feature columns.

    Raises:
        SchemaMismatchError: With the list of absent columns
    """
    missing = set(feature_columns) - set(frame.columns)
    if missing:
        raise SchemaMismatchError(missing, context=context)


class FeatureEncoder:
    """
    Turns prepared encounter features into a numeric design matrix.

    Categorical (string) fields become one indicator column per level seen
    during fit; numeric fields pass through unchanged. The column order and
    indicator set are frozen at fit time so train, test and hold-out rows
    share one design.

    Attributes:
        input_columns: Raw columns seen during fit (in order)
        categorical_columns: Subset expanded to indicators
        numeric_columns: Subset passed through
        feature_names: Output design-matrix column names
    """

    def __init__(self) -> None:
        self.input_columns: List[str] = []
        self.categorical_columns: List[str] = []
        self.numeric_columns: List[str] = []
        self.feature_names: List[str] = []
        self._transformer: Optional[ColumnTransformer] = None

    @property
    def is_fitted(self) -> bool:
        return self._transformer is not None

    def fit(self, X: pd.DataFrame) -> "FeatureEncoder":
        if X.empty:
            raise ValueError("Cannot fit encoder on empty DataFrame")

        self.input_columns = list(X.columns)
        self.categorical_columns = [
            c for c in X.columns if not pd.api.types.is_numeric_dtype(X[c])
        ]
        self.numeric_columns = [c for c in X.columns if c not in self.categorical_columns]

        self._transformer = ColumnTransformer(
            transformers=[
                ("cat", OneHotEncoder(handle_unknown="ignore", sparse_output=False),
                 self.categorical_columns),
                ("num", "passthrough", self.numeric_columns),
            ],
            verbose_feature_names_out=False,
        )
        self._transformer.set_output(transform="pandas")
        self._transformer.fit(X)
        self.feature_names = [str(c) for c in self._transformer.get_feature_names_out()]

        logger.info(
            f"Feature encoder fitted: {len(self.input_columns)} columns -> "
            f"{len(self.feature_names)} features",
            extra={"categorical": self.categorical_columns},
        )
        return self

    def transform(self, X: pd.DataFrame, context: str = "input") -> pd.DataFrame:
        """
        Encode ``X`` with the fitted design.

        Raises:
            RuntimeError: If the encoder is not fitted
            SchemaMismatchError: If a fitted column is absent from ``X``
        """
        if not self.is_fitted:
            raise RuntimeError("Encoder must be fitted before transform. Call fit() first.")

        check_schema_parity(self.input_columns, X, context=context)

        encoded = self._transformer.transform(X[self.input_columns])
        encoded.columns = self.feature_names
        encoded.index = X.index
        return encoded.astype(float)

    def fit_transform(self, X: pd.DataFrame) -> pd.DataFrame:
        return self.fit(X).transform(X, context="training data")


# =============================================================================
# SPLITTING
# =============================================================================

@dataclass(frozen=True)
class DataSplit:
    """Disjoint, exhaustive partition of encounter row labels."""
    train_index: pd.Index
    test_index: pd.Index

    def train(self, obj):
        return obj.loc[self.train_index]

    def test(self, obj):
        return obj.loc[self.test_index]


def split_train_test(
    y: pd.Series,
    train_fraction: float = 0.8,
    random_state: int = 2017,
) -> DataSplit:
    """
    Partition rows into stratified train and test subsets.

    Both subsets keep the overall readmission rate within sampling noise, and
    the same seed always yields the same partition.

    Args:
        y: Encoded outcome indexed like the encounter frame
        train_fraction: Share of rows assigned to training
        random_state: Seed for the shuffle

    Returns:
        DataSplit with train and test row labels

    Raises:
        ValueError: If the index has duplicate labels
        StratificationError: If the fraction is invalid or a class is too rare
    """
    if not y.index.is_unique:
        raise ValueError(
            f"Encounter index has {int(y.index.duplicated().sum())} duplicate labels; "
            "reset it before splitting"
        )
    if not 0.0 < train_fraction < 1.0:
        raise StratificationError(f"train_fraction must be in (0, 1), got {train_fraction}")

    counts = y.value_counts()
    if len(counts) < 2:
        raise StratificationError(
            f"Stratified split needs both outcome classes, found {counts.to_dict()}"
        )
    if counts.min() < 2:
        raise StratificationError(
            f"Every outcome class needs at least 2 members to stratify, found {counts.to_dict()}"
        )

    n_test = len(y) - int(np.floor(train_fraction * len(y)))
    if n_test < len(counts) or len(y) - n_test < len(counts):
        raise StratificationError(
            f"{len(y)} rows cannot hold every class in both subsets at "
            f"train_fraction={train_fraction}"
        )

    train_index, test_index = train_test_split(
        y.index,
        train_size=train_fraction,
        random_state=random_state,
        stratify=y,
    )

    split = DataSplit(train_index=pd.Index(train_index), test_index=pd.Index(test_index))

    logger.info(
        f"Split data: {len(split.train_index)} training, {len(split.test_index)} test encounters",
        extra={
            "train_rate": float(y.loc[split.train_index].mean()),
            "test_rate": float(y.loc[split.test_index].mean()),
            "random_state": random_state,
        },
    )
    return split
