"""
Validation Engine – Compare incident locations with random control points
over a zone raster.

    Histogram:   points per zone, for incidents (observed) and random
                 points (expected)
    Chi-square:  Σ_k (O_k − E_k)² / max(E_k, 1)
    Confusion:   predicted positive ⇔ zone == 3, actual 1 = incident,
                 0 = random point, tabulated once over the merged set
"""

from dataclasses import dataclass

import geopandas as gpd
import numpy as np

import config
from landslide_risk.errors import EmptySampleError
from landslide_risk.raster import Raster
from landslide_risk.sampling import sample_zones


# ── Histograms / chi-square ─────────────────────────────────────────────────

def frequency_histogram(sample: gpd.GeoDataFrame, column: str = "zone") -> dict:
    """Point count per zone; zones without points are reported as 0."""
    counts = sample[column].value_counts()
    return {z: int(counts.get(z, 0)) for z in config.ZONE_LABELS}


def chi_square(observed: dict, expected: dict) -> float:
    """Goodness of fit of observed vs expected counts over the observed keys."""
    stat = 0.0
    for key, o in observed.items():
        e = expected.get(key, 0)
        stat += (o - e) ** 2 / max(e, 1)
    return stat


def chi_square_significance(statistic: float, critical: dict = None) -> dict:
    """Compare the statistic with tabulated critical values (no p-value)."""
    crit = critical or config.CHI_SQUARE_CRITICAL
    exceeded = {level: statistic > value for level, value in sorted(crit.items())}
    passed = [level for level, ok in exceeded.items() if ok]
    return {
        "statistic": statistic,
        "dof": config.CHI_SQUARE_DOF,
        "critical_values": dict(sorted(crit.items())),
        "significant_at": exceeded,
        "max_confidence": max(passed) if passed else None,
    }


# ── Confusion matrix ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ConfusionMatrix:
    tp: int
    fp: int
    fn: int
    tn: int

    @classmethod
    def from_labels(cls, actual, predicted) -> "ConfusionMatrix":
        a = np.asarray(actual).astype(int)
        p = np.asarray(predicted).astype(int)
        if a.shape != p.shape:
            raise ValueError(f"Label arrays differ in shape: {a.shape} vs {p.shape}")
        return cls(
            tp=int(np.sum((a == 1) & (p == 1))),
            fp=int(np.sum((a == 0) & (p == 1))),
            fn=int(np.sum((a == 1) & (p == 0))),
            tn=int(np.sum((a == 0) & (p == 0))),
        )

    @property
    def total(self) -> int:
        return self.tp + self.fp + self.fn + self.tn

    @property
    def accuracy(self) -> float:
        return (self.tp + self.tn) / self.total if self.total else 0.0

    @property
    def precision(self) -> float:
        denom = self.tp + self.fp
        return self.tp / denom if denom else 0.0

    @property
    def recall(self) -> float:
        denom = self.tp + self.fn
        return self.tp / denom if denom else 0.0

    @property
    def f1(self) -> float:
        p, r = self.precision, self.recall
        return 2 * p * r / max(p + r, 1)

    @property
    def degenerate(self) -> list[str]:
        """Metrics whose denominator is zero (reported as 0.0)."""
        out = []
        if self.total == 0:
            out.append("accuracy")
        if self.tp + self.fp == 0:
            out.append("precision")
        if self.tp + self.fn == 0:
            out.append("recall")
        return out

    def as_dict(self) -> dict:
        return {
            "tp": self.tp, "fp": self.fp, "fn": self.fn, "tn": self.tn,
            "total": self.total,
            "accuracy": round(self.accuracy, 4),
            "precision": round(self.precision, 4),
            "recall": round(self.recall, 4),
            "f1": round(self.f1, 4),
            "degenerate": self.degenerate,
        }


def zone_confusion_matrix(
    observed: gpd.GeoDataFrame,
    random: gpd.GeoDataFrame,
    high_zone: int = config.HIGH_ZONE,
) -> ConfusionMatrix:
    """Incidents are actual 1, random points actual 0; High zone predicts 1."""
    actual = np.concatenate([np.ones(len(observed)), np.zeros(len(random))])
    zones = np.concatenate([observed["zone"].to_numpy(), random["zone"].to_numpy()])
    predicted = (zones == high_zone).astype(int)
    return ConfusionMatrix.from_labels(actual, predicted)


# ── Validation pass ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ValidationResult:
    scope: str
    n_observed: int
    n_random: int
    observed_histogram: dict
    expected_histogram: dict
    chi_square: float
    significance: dict
    confusion: ConfusionMatrix
    zone_breaks: tuple = None

    def as_dict(self) -> dict:
        return {
            "scope": self.scope,
            "n_observed": self.n_observed,
            "n_random": self.n_random,
            "zone_breaks": list(self.zone_breaks) if self.zone_breaks else None,
            "observed_histogram": {config.ZONE_LABELS[z]: n for z, n in self.observed_histogram.items()},
            "expected_histogram": {config.ZONE_LABELS[z]: n for z, n in self.expected_histogram.items()},
            "chi_square": round(self.chi_square, 4),
            "significance": self.significance,
            "confusion_matrix": self.confusion.as_dict(),
        }


def validate_zones(
    zones: Raster,
    observed: gpd.GeoDataFrame,
    random: gpd.GeoDataFrame,
    scope: str = "global",
    zone_breaks: tuple = None,
) -> ValidationResult:
    """Histogram, chi-square and confusion matrix for one zone raster."""
    obs = sample_zones(observed, zones)
    rnd = sample_zones(random, zones)
    if len(obs) == 0:
        raise EmptySampleError(f"[{scope}] No incident falls on a zoned pixel")
    if len(rnd) == 0:
        raise EmptySampleError(f"[{scope}] No random point falls on a zoned pixel")

    observed_hist = frequency_histogram(obs)
    expected_hist = frequency_histogram(rnd)
    stat = chi_square(observed_hist, expected_hist)
    significance = chi_square_significance(stat)
    cm = zone_confusion_matrix(obs, rnd)

    print(f"[VAL] {scope}: observed {observed_hist} vs expected {expected_hist}")
    print(f"[VAL] {scope}: χ² = {stat:.2f} (df={config.CHI_SQUARE_DOF}), "
          f"max confidence {significance['max_confidence']}")
    print(f"[VAL] {scope}: P={cm.precision:.3f} R={cm.recall:.3f} F1={cm.f1:.3f} "
          f"acc={cm.accuracy:.3f}")
    if cm.degenerate:
        print(f"[WARN] {scope}: degenerate metric(s) {cm.degenerate} reported as 0")

    return ValidationResult(
        scope=scope,
        n_observed=len(obs),
        n_random=len(rnd),
        observed_histogram=observed_hist,
        expected_histogram=expected_hist,
        chi_square=stat,
        significance=significance,
        confusion=cm,
        zone_breaks=zone_breaks,
    )
