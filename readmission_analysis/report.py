"""
Readmission Analysis - Reporting

Presentation is kept out of the computational core. The report only
consumes, per scoring function, its AUC, its ROC curve points and (for
fitted models) its feature-importance mapping. It can be serialized to JSON
or summarized as plain text lines for the console.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .evaluation import ModelComparison
from .metrics import RocCurve

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass
class ScoreSummary:
    """AUC, curve points and importance of one scoring function."""
    name: str
    auc: float
    curve: List[Dict[str, float]]
    importance: Dict[str, float] = field(default_factory=dict)

    def to_dict(self, top_n: int = 15) -> Dict[str, Any]:
        return {
            "name": self.name,
            "auc": round(self.auc, 6),
            "roc_curve": self.curve,
            "top_features": dict(list(self.importance.items())[:top_n]),
        }


@dataclass
class AnalysisReport:
    """Everything a reader of the analysis needs, free of model objects."""
    baseline: ScoreSummary
    models: List[ScoreSummary]
    selected_model: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, top_n: int = 15) -> Dict[str, Any]:
        return {
            "baseline": self.baseline.to_dict(top_n),
            "models": [m.to_dict(top_n) for m in self.models],
            "selected_model": self.selected_model,
            "metadata": self.metadata,
        }

    def summary_lines(self, top_n: int = 5) -> List[str]:
        lines = [f"Baseline {self.baseline.name} AUC: {self.baseline.auc:.4f}"]
        for m in self.models:
            marker = " (selected)" if m.name == self.selected_model else ""
            lines.append(f"{m.name} AUC: {m.auc:.4f}{marker}")
            top = ", ".join(list(m.importance)[:top_n])
            if top:
                lines.append(f"  top features: {top}")
        return lines

    def write(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

        logger.info(f"Report written to {path}")
        return path


def build_report(
    baseline_name: str,
    baseline_roc: RocCurve,
    comparison: ModelComparison,
    metadata: Optional[Dict[str, Any]] = None,
) -> AnalysisReport:
    """Reduce a run's results to the values the report consumes."""
    models = [
        ScoreSummary(
            name=e.name,
            auc=e.auc,
            curve=e.roc.points(),
            importance=e.importance,
        )
        for e in comparison.evaluations
    ]
    return AnalysisReport(
        baseline=ScoreSummary(name=baseline_name, auc=baseline_roc.auc, curve=baseline_roc.points()),
        models=models,
        selected_model=comparison.best.name,
        metadata=metadata or {},
    )
