"""
Classifier Trainer – Random-forest landslide classifier on the factor stack.

Steps:
  1. FeatureStack   – unrounded normalised factors as named bands
  2. TrainingSet    – incidents (class 1) + random points (class 0),
                      feature vectors sampled at each point, null rows dropped
  3. Split          – seeded uniform value per record, < ratio → train
  4. Train          – RandomForestClassifier(n_estimators=N_TREES)
  5. Evaluate       – confusion matrix on the validation partition and
                      impurity-based variable importance
  6. Apply          – label (0/1) and class-1 probability rasters
"""

from dataclasses import dataclass, replace

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio.transform import Affine
from sklearn.ensemble import RandomForestClassifier

import config
from landslide_risk.errors import EmptySampleError
from landslide_risk.population import is_populated
from landslide_risk.raster import Raster, pixel_indices
from landslide_risk.sampling import point_coords, label_points
from landslide_risk.validation import ConfusionMatrix

CLASS_COLUMN = "class"
SPLIT_COLUMN = "random"
_CHUNK = 1_000_000  # pixels per predict call


# ── Feature stack ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FeatureStack:
    """Named bands (band, row, col) over one grid."""

    names: tuple
    data: np.ndarray
    transform: Affine
    crs: str = config.CRS

    @classmethod
    def from_layers(cls, layers: dict, bands: dict = None) -> "FeatureStack":
        """`bands` maps band name → factor name (default config.FEATURE_BANDS)."""
        bands = bands or config.FEATURE_BANDS
        rasters = []
        for band, factor in bands.items():
            if factor not in layers:
                raise ValueError(f"No factor layer '{factor}' for band '{band}'")
            rasters.append(getattr(layers[factor], "raster", layers[factor]))

        first = rasters[0]
        for band, r in zip(bands, rasters):
            if not r.same_grid(first):
                raise ValueError(f"Band '{band}' is not on the common grid")

        data = np.stack([r.data for r in rasters])
        print(f"[RF] Feature stack: {list(bands)} – {first.shape}")
        return cls(tuple(bands), data, first.transform, first.crs)

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape[1:]

    @property
    def valid(self) -> np.ndarray:
        """Pixels where every band has data."""
        return ~np.isnan(self.data).any(axis=0)

    def template(self, name: str = "band") -> Raster:
        return Raster(np.full(self.shape, np.nan), self.transform, self.crs, name)

    def masked(self, mask: Raster) -> "FeatureStack":
        """Bands restricted to populated pixels."""
        keep = is_populated(mask)
        return replace(self, data=np.where(keep[np.newaxis], self.data, np.nan))

    def sample(self, points: gpd.GeoDataFrame) -> pd.DataFrame:
        """Feature vector of the pixel under each point (NaN off-grid)."""
        out = np.full((len(points), len(self.names)), np.nan)
        if len(points):
            grid = self.template()
            xs, ys = point_coords(points, grid)
            rows, cols, inside = pixel_indices(grid, xs, ys)
            out[inside] = self.data[:, rows[inside], cols[inside]].T
        return pd.DataFrame(out, columns=list(self.names), index=points.index)


# ── Training set / split ────────────────────────────────────────────────────

def _geometry_only(points: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(geometry=points.geometry.to_numpy(), crs=points.crs)

def build_training_set(
    stack: FeatureStack,
    positives: gpd.GeoDataFrame,
    negatives: gpd.GeoDataFrame,
) -> gpd.GeoDataFrame:
    """Labelled feature vectors; records with any null feature are dropped."""
    pos = label_points(_geometry_only(positives), 1, CLASS_COLUMN)
    neg = label_points(_geometry_only(negatives), 0, CLASS_COLUMN)
    if neg.crs != pos.crs and pos.crs is not None:
        neg = neg.to_crs(pos.crs)

    points = gpd.GeoDataFrame(
        pd.concat([pos, neg], ignore_index=True), geometry="geometry", crs=pos.crs
    )
    features = stack.sample(points)
    training = pd.concat([points, features], axis=1)

    complete = features.notna().all(axis=1)
    dropped = int((~complete).sum())
    training = training[complete].reset_index(drop=True)
    training.insert(0, "record_id", np.arange(len(training)))

    print(f"[RF] Training set: {int((training[CLASS_COLUMN] == 1).sum())} positive, "
          f"{int((training[CLASS_COLUMN] == 0).sum())} negative "
          f"({dropped} dropped for null features)")
    return gpd.GeoDataFrame(training, geometry="geometry", crs=pos.crs)


def split_training_set(
    training: gpd.GeoDataFrame,
    ratio: float = config.SPLIT_RATIO,
    seed: int = config.SEED,
    rng: np.random.Generator = None,
) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """Seeded random partition: `random < ratio` → train, else validation."""
    if not 0.0 < ratio < 1.0:
        raise ValueError(f"Split ratio must be in (0, 1), got {ratio}")
    rng = rng if rng is not None else np.random.default_rng(seed)

    records = training.copy()
    records[SPLIT_COLUMN] = rng.random(len(records))
    in_train = records[SPLIT_COLUMN] < ratio
    train = records[in_train].reset_index(drop=True)
    validation = records[~in_train].reset_index(drop=True)
    print(f"[RF] Split {ratio:.0%}: {len(train)} train / {len(validation)} validation")
    return train, validation


# ── Classifier ──────────────────────────────────────────────────────────────

class LandslideClassifier:
    """Random forest over named feature bands; class 1 = landslide."""

    def __init__(self, bands=None, n_trees: int = config.N_TREES, seed: int = config.SEED):
        self.bands = list(bands or config.FEATURE_BANDS)
        self.model = RandomForestClassifier(n_estimators=n_trees, random_state=seed)

    def _matrix(self, records) -> np.ndarray:
        if isinstance(records, pd.DataFrame):
            return records[self.bands].to_numpy(dtype=np.float64)
        return np.asarray(records, dtype=np.float64)

    def fit(self, training: pd.DataFrame) -> "LandslideClassifier":
        X = self._matrix(training)
        y = training[CLASS_COLUMN].to_numpy(dtype=int)
        self.model.fit(X, y)
        return self

    def predict(self, records) -> np.ndarray:
        return self.model.predict(self._matrix(records)).astype(int)

    def predict_proba(self, records) -> np.ndarray:
        """Probability of class 1 (0 when the forest never saw class 1)."""
        X = self._matrix(records)
        classes = list(self.model.classes_)
        if 1 not in classes:
            return np.zeros(len(X))
        return self.model.predict_proba(X)[:, classes.index(1)]

    def classify(self, stack: FeatureStack, mode: str = "label") -> Raster:
        """Apply to every pixel with a full feature vector; others stay NaN."""
        if mode not in ("label", "probability"):
            raise ValueError(f"Unknown classify mode '{mode}'")
        if list(stack.names) != self.bands:
            raise ValueError(f"Stack bands {stack.names} do not match {self.bands}")

        valid = stack.valid
        X = stack.data[:, valid].T
        values = np.empty(len(X))
        predict = self.predict if mode == "label" else self.predict_proba
        for start in range(0, len(X), _CHUNK):
            values[start:start + _CHUNK] = predict(X[start:start + _CHUNK])

        out = np.full(stack.shape, np.nan)
        out[valid] = values
        name = "classification" if mode == "label" else "probability"
        return stack.template(name).with_data(out)

    def importance(self) -> list[tuple[str, float]]:
        """Impurity-based importance per band, sorted descending."""
        scores = self.model.feature_importances_
        pairs = [(band, float(s)) for band, s in zip(self.bands, scores)]
        return sorted(pairs, key=lambda p: p[1], reverse=True)


def train_classifier(
    train: pd.DataFrame,
    n_trees: int = config.N_TREES,
    seed: int = config.SEED,
    bands=None,
) -> LandslideClassifier:
    if len(train) == 0:
        raise EmptySampleError("Training partition is empty")
    clf = LandslideClassifier(bands, n_trees, seed).fit(train)
    print(f"[RF] Random forest trained – {n_trees} trees on {len(train)} records")
    return clf


# ── Evaluation ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ClassifierEvaluation:
    confusion: ConfusionMatrix
    importance: list
    n_validation: int
    n_dropped: int = 0

    def as_dict(self) -> dict:
        return {
            "n_validation": self.n_validation,
            "n_dropped": self.n_dropped,
            "confusion_matrix": self.confusion.as_dict(),
            "importance": [{"band": b, "importance": round(s, 4)} for b, s in self.importance],
        }


def evaluate_classifier(clf: LandslideClassifier, validation: pd.DataFrame) -> ClassifierEvaluation:
    """Score the validation partition; null-feature records are excluded, not imputed."""
    complete = validation[clf.bands].notna().all(axis=1)
    n_dropped = int((~complete).sum())
    records = validation[complete]
    if len(records) == 0:
        raise EmptySampleError("Validation partition is empty")

    predicted = clf.predict(records)
    cm = ConfusionMatrix.from_labels(records[CLASS_COLUMN].to_numpy(), predicted)
    importance = clf.importance()

    print(f"[RF] Validation: acc={cm.accuracy:.3f} P={cm.precision:.3f} "
          f"R={cm.recall:.3f} F1={cm.f1:.3f} (n={len(records)})")
    print("[RF] Importance: " + ", ".join(f"{b}={s:.3f}" for b, s in importance))
    return ClassifierEvaluation(cm, importance, len(records), n_dropped)


# ── End to end ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ClassifierResult:
    scope: str
    classifier: LandslideClassifier
    evaluation: ClassifierEvaluation
    label: Raster
    probability: Raster
    n_train: int
    n_validation: int

    def as_dict(self) -> dict:
        return {
            "scope": self.scope,
            "n_train": self.n_train,
            "n_validation": self.n_validation,
            **self.evaluation.as_dict(),
        }


def run_classifier(
    stack: FeatureStack,
    positives: gpd.GeoDataFrame,
    negatives: gpd.GeoDataFrame,
    scope: str = "global",
    n_trees: int = config.N_TREES,
    split_ratio: float = config.SPLIT_RATIO,
    seed: int = config.SEED,
    rng: np.random.Generator = None,
) -> ClassifierResult:
    """Build, split, train, evaluate and apply the classifier for one scope."""
    print(f"[RF] ── {scope} ──")
    training = build_training_set(stack, positives, negatives)
    train, validation = split_training_set(training, split_ratio, seed, rng)
    clf = train_classifier(train, n_trees, seed, stack.names)
    evaluation = evaluate_classifier(clf, validation)

    label = clf.classify(stack, "label")
    probability = clf.classify(stack, "probability")
    return ClassifierResult(
        scope=scope,
        classifier=clf,
        evaluation=evaluation,
        label=label,
        probability=probability,
        n_train=len(train),
        n_validation=evaluation.n_validation,
    )
