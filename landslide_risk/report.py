"""
Report Module – Side-by-side validation report (JSON + plain-text summary)
and the district statistics table.
"""

import json
import math
import os

import numpy as np
import pandas as pd

import config


def _json_ready(value):
    """numpy scalars and arrays as Python values, non-finite floats as null, keys as str."""
    if isinstance(value, dict):
        return {str(k): _json_ready(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, np.ndarray)):
        return [_json_ready(v) for v in value]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _validation_lines(result) -> list[str]:
    cm = result.confusion
    sig = result.significance
    conf = sig["max_confidence"]
    return [
        f"[{result.scope}] incidents: {result.n_observed}   random points: {result.n_random}",
        f"  Observed per zone: {result.observed_histogram}",
        f"  Expected per zone: {result.expected_histogram}",
        f"  Chi-square: {result.chi_square:.2f} (df={sig['dof']}) – "
        + (f"significant at {conf:.1%}" if conf else "not significant at 95%"),
        f"  High-zone confusion: TP={cm.tp} FP={cm.fp} FN={cm.fn} TN={cm.tn}",
        f"  Precision {cm.precision:.3f}  Recall {cm.recall:.3f}  "
        f"F1 {cm.f1:.3f}  Accuracy {cm.accuracy:.3f}",
    ]


def _classifier_lines(result) -> list[str]:
    cm = result.evaluation.confusion
    top = ", ".join(f"{b} {s:.3f}" for b, s in result.evaluation.importance)
    return [
        f"[{result.scope}] random forest – {result.n_train} train / {result.n_validation} validation",
        f"  Accuracy {cm.accuracy:.3f}  Precision {cm.precision:.3f}  "
        f"Recall {cm.recall:.3f}  F1 {cm.f1:.3f}",
        f"  Importance: {top}",
    ]


def generate_report(
    validations: dict,
    classifiers: dict = None,
    district_table: pd.DataFrame = None,
    national=None,
    params: dict = None,
    output_dir: str = config.OUTPUT_DIR,
) -> dict:
    """
    Build the validation report and save it as JSON.

    `validations` and `classifiers` map a scope ("global", "populated") to
    a ValidationResult / ClassifierResult.  Scopes are reported side by
    side, never merged.
    """
    classifiers = classifiers or {}
    report = {
        "title": "Landslide Susceptibility Validation Report",
        "parameters": params or {},
        "validation": {scope: r.as_dict() for scope, r in validations.items()},
        "classifier": {scope: r.as_dict() for scope, r in classifiers.items()},
    }
    if national is not None:
        report["national"] = national.as_dict()
    if district_table is not None:
        report["districts"] = district_table.to_dict(orient="records")

    lines = ["═══ LANDSLIDE RISK VALIDATION ═══", ""]
    for result in validations.values():
        lines += _validation_lines(result) + [""]
    for result in classifiers.values():
        lines += _classifier_lines(result) + [""]
    if national is not None:
        lines += [
            f"Districts: {national.n_districts}   incidents: {national.total_incidents}   "
            f"deaths: {national.total_deaths:.0f}",
            f"Mean susceptibility: {national.mean_susceptibility:.4f}",
            "Population by risk class: "
            + ", ".join(f"{k} {v:,.0f}" for k, v in national.population_by_zone.items()),
        ]
    report["summary_text"] = "\n".join(lines).rstrip()

    report = _json_ready(report)

    os.makedirs(output_dir, exist_ok=True)
    out_path = os.path.join(output_dir, config.REPORT_JSON)
    with open(out_path, "w") as f:
        json.dump(report, f, indent=2, default=str)
    print(f"[DSS] Report saved → {out_path}")

    print()
    print(report["summary_text"])
    return report


def export_district_table(table: pd.DataFrame, output_dir: str = config.OUTPUT_DIR) -> str:
    os.makedirs(output_dir, exist_ok=True)
    out_path = os.path.join(output_dir, config.DISTRICT_CSV)
    table.to_csv(out_path, index=False)
    print(f"[EXPORT] District table saved → {out_path}")
    return out_path
