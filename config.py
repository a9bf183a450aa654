"""
Configuration constants for the Landslide Risk Scoring & Validation System.

Model: Susceptibility(x) = renorm( Σ w_i · Factor_i(x) )
  Factor_i   = min-max normalised environmental layer (domain bounds)
  renorm     = rescale the composite by its own min/max to [0, 1]

Validation compares historical incidents against seeded random control
points, over the whole domain and over populated pixels only.
"""

# ── Common Grid ─────────────────────────────────────────────────────────────
TARGET_SCALE = 1000        # metres – every factor is resampled to this grid
CRS = "EPSG:4326"
EQUAL_AREA_CRS = "EPSG:6933"   # district areas in km²
MAX_PIXELS = 1e7           # best-effort cap for min/max/percentile reductions
METRES_PER_DEGREE = 111_320

# ── Composite Weights (published, must sum to 1.0) ─────────────────────────
# distance_to_drainage is built but carries no weight in the composite.
WEIGHTS = {
    "slope":            0.30,
    "drainage_density": 0.10,
    "elevation":        0.10,
    "clay":             0.20,
    "landcover":        0.10,
    "soil_texture":     0.20,
}
WEIGHT_TOLERANCE = 1e-9

# ── Reclassification Tables (domain knowledge, raw code → risk ordinal) ────
# MODIS MCD12Q1 LC_Type1
LANDCOVER_REMAP = {
    0: 0.0, 15: 0.0, 11: 0.1, 1: 0.1, 2: 0.1, 3: 0.2, 4: 0.2, 5: 0.3,
    6: 0.4, 7: 0.4, 8: 0.5, 9: 0.5, 10: 0.6, 12: 0.7, 14: 0.8, 16: 0.9,
    13: 1.0, 17: 1.0,
}

# USDA texture class (1 = clay … 12 = sand). Higher ordinal = more clay-rich
# = higher risk; the ordinal is NOT inverted before normalisation.
SOIL_TEXTURE_REMAP = {
    1: 3, 2: 3, 3: 3, 4: 3,
    5: 2, 6: 2, 7: 2, 8: 2,
    9: 1, 10: 2, 11: 1, 12: 1,
}

CATEGORICAL_FACTORS = ("landcover", "soil_texture")

# ── Hydrology ───────────────────────────────────────────────────────────────
FLOW_ACCUM_THRESHOLD = 50        # upstream cells for a pixel to count as stream
DRAINAGE_KERNEL_RADIUS_M = 5000  # neighbourhood radius for drainage density

# ── Zonation ────────────────────────────────────────────────────────────────
ZONE_PERCENTILES = (33, 66)
ZONE_LABELS = {1: "Low", 2: "Medium", 3: "High"}
HIGH_ZONE = 3

# Fixed physical thresholds used for district statistics
RISK_THRESHOLDS = {
    "low_max":    0.3,    # 0.00 – 0.30  → Low
    "medium_max": 0.5,    # 0.30 – 0.50  → Medium
                          # 0.50 – 1.00  → High
}

# ── Validation ──────────────────────────────────────────────────────────────
# Chi-square critical values, 2 degrees of freedom (3 zones)
CHI_SQUARE_DOF = 2
CHI_SQUARE_CRITICAL = {
    0.95:  5.991,
    0.99:  9.210,
    0.999: 13.82,
}

# ── Randomness / Random Forest ─────────────────────────────────────────────
SEED = 42
SPLIT_RATIO = 0.7
N_TREES = 50

# band name → factor name, in stack order
FEATURE_BANDS = {
    "slope":     "slope",
    "drainDen":  "drainage_density",
    "elev":      "elevation",
    "clay":      "clay",
    "landcover": "landcover",
    "soiltex":   "soil_texture",
}

# ── Incident / District Fields ─────────────────────────────────────────────
# canonical name → column name in the incident source layer
INCIDENT_FIELDS = {
    "deaths":                   "peopleDeathCount",
    "injuries":                 "peopleInjuredCount",
    "missing":                  "peopleMissingCount",
    "affected":                 "peopleAffectedCount",
    "infrastructure_destroyed": "infrastructureDestroyedCount",
    "date":                     "incidentOn",
    "year":                     "year",
}
DAMAGE_FIELDS = ("deaths", "missing", "injuries", "affected", "infrastructure_destroyed")

DISTRICT_FIELD = "DISTRICT"
NEAREST_DISTRICTS = 2

# ── Output Paths ────────────────────────────────────────────────────────────
OUTPUT_DIR = "output"
SUSCEPTIBILITY_GEOTIFF = "landslide_susceptibility.tif"
SUSCEPTIBILITY_POP_GEOTIFF = "landslide_susceptibility_populated.tif"
ZONES_GEOTIFF = "susceptibility_zones.tif"
ZONES_POP_GEOTIFF = "susceptibility_zones_populated.tif"
RF_LABEL_GEOTIFF = "rf_classified.tif"
RF_PROBABILITY_GEOTIFF = "rf_probability.tif"
RF_LABEL_POP_GEOTIFF = "rf_classified_populated.tif"
RF_PROBABILITY_POP_GEOTIFF = "rf_probability_populated.tif"
REPORT_JSON = "validation_report.json"
DISTRICT_CSV = "district_statistics.csv"
