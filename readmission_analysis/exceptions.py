"""
Readmission Analysis - Error Taxonomy

Every failure in the analysis is terminal for the run: nothing is retried,
imputed or replaced by a placeholder value. These exceptions let callers tell
the failure classes apart while still being plain ``ValueError``s.
"""


class SchemaMismatchError(ValueError):
    """A feature the model was trained on is missing from the scored data."""

    def __init__(self, missing_columns, context: str = "input") -> None:
        self.missing_columns = sorted(missing_columns)
        super().__init__(
            f"{context} is missing {len(self.missing_columns)} training "
            f"feature column(s): {self.missing_columns}"
        )


class MissingValueError(ValueError):
    """Data handed to a step that requires complete rows contains gaps."""


class DegenerateLabelError(ValueError):
    """Only one outcome class is present, so ranking metrics are undefined."""


class StratificationError(ValueError):
    """The outcome distribution cannot support a stratified split."""
