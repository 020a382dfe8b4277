# dosecalc/tables.py
"""DataFrames for displaying calculator results (rounded values)."""
from typing import Dict, List

import pandas as pd

from dosecalc.schemas import (
    METRICS,
    CalculationResult,
    ContraindicationFinding,
    ReferenceData,
    ScheduleEntry,
    round_half_up,
)

DOSE_COLUMNS = ["component", "name", "base_dose", "adjustment_factor", "adjusted_dose",
                "effective_dose", "tissue_dose", "unit", "frequency", "route", "timing"]

METRIC_LABELS = {
    "tgf_reduction": "TGF-beta1 reduction",
    "collagen_reduction": "Collagen reduction",
    "curvature_reduction": "Curvature reduction",
    "plaque_reduction": "Plaque reduction",
    "pain_relief": "Pain relief",
    "overall_success_rate": "Response potential",
}


def dose_table(result: CalculationResult, reference: ReferenceData) -> pd.DataFrame:
    rows = []
    for cid, dose in result.component_doses.items():
        shown = dose.rounded()
        rows.append({
            "component": cid,
            "name": reference.components[cid].name,
            "base_dose": shown.base_dose,
            "adjustment_factor": shown.adjustment_factor,
            "adjusted_dose": shown.adjusted_dose,
            "effective_dose": shown.effective_dose,
            "tissue_dose": shown.tissue_dose,
            "unit": shown.unit,
            "frequency": shown.frequency,
            "route": shown.route,
            "timing": ", ".join(shown.timing),
        })
    return pd.DataFrame(rows, columns=DOSE_COLUMNS)


def synergy_table(result: CalculationResult) -> pd.DataFrame:
    rows = []
    for pair, s in result.synergy_effects.items():
        rows.append({
            "pair": pair,
            "type": s.type,
            "factor": s.factor,
            "significance": s.significance,
            "combination_index": s.combination_index,
            "interpretation": s.interpretation,
            "regeneration_factor": s.regeneration_factor,
            "mechanism": s.mechanism,
        })
    return pd.DataFrame(rows, columns=["pair", "type", "factor", "significance", "combination_index",
                                       "interpretation", "regeneration_factor", "mechanism"])


def effectiveness_table(result: CalculationResult) -> pd.DataFrame:
    eff = result.effectiveness
    keys = list(METRICS) + ["overall_success_rate"]
    return pd.DataFrame({
        "metric": [METRIC_LABELS[k] for k in keys],
        "percent": [round_half_up(getattr(eff, k), 1) for k in keys],
    })


def schedule_table(schedule: Dict[str, List[ScheduleEntry]]) -> pd.DataFrame:
    rows = []
    for slot, entries in schedule.items():
        for e in entries:
            rows.append({
                "slot": slot,
                "component": e.id,
                "name": e.name,
                "dose": round_half_up(e.dose),
                "unit": e.unit,
                "route": e.route,
            })
    return pd.DataFrame(rows, columns=["slot", "component", "name", "dose", "unit", "route"])


def contraindication_table(findings: List[ContraindicationFinding]) -> pd.DataFrame:
    return pd.DataFrame(
        [f.model_dump() for f in findings],
        columns=["type", "component", "severity", "message"],
    )
