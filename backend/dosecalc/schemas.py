# dosecalc/schemas.py
import math
import operator
import re
from typing import Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Frequency = Literal["QD", "BID", "TID", "QID"]
Significance = Literal["low", "moderate", "high"]
Slot = Literal["morning", "noon", "evening", "dinner", "breakfast", "bedtime", "topical"]
LiverFunction = Literal["normal", "childB"]

METRICS = (
    "tgf_reduction",
    "collagen_reduction",
    "curvature_reduction",
    "plaque_reduction",
    "pain_relief",
)

_RULE_OPERATORS = {
    "gte": operator.ge,
    "gt": operator.gt,
    "lte": operator.le,
    "lt": operator.lt,
    "eq": operator.eq,
    "ne": operator.ne,
}


def round_half_up(value: float, digits: int = 0) -> float:
    """Round the way the calculator displays numbers (halves go up)."""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


class RecordModel(BaseModel):
    """Immutable record; camelCase in JSON, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Patient
# ---------------------------------------------------------------------------

class PatientProfile(RecordModel):
    weight: float = Field(gt=0)
    height: Optional[float] = None
    age: float
    bmi: float
    smoking: bool = False
    creatinine_clearance: Optional[float] = None
    liver_function: LiverFunction = "normal"
    stage: str
    has_plaque: bool = False
    has_calcification: bool = False
    curvature: Optional[float] = None
    diabetes: bool = False
    symptom_duration: Optional[float] = None

    def value_of(self, parameter: str) -> Any:
        """Look up a profile attribute by its Python or JSON name."""
        for name, field in type(self).model_fields.items():
            if parameter in (name, field.alias):
                return getattr(self, name)
        return None


# ---------------------------------------------------------------------------
# Reference records
# ---------------------------------------------------------------------------

class ProfileRule(RecordModel):
    """A component-level rule evaluated against the patient profile."""
    parameter: str
    operator: Literal["gte", "gt", "lte", "lt", "eq", "ne"]
    value: Union[bool, float, str]
    severity: Literal["caution", "contraindicated", "warning"] = "warning"
    type: str = "general"
    message: str

    def matches(self, profile: PatientProfile) -> bool:
        actual = profile.value_of(self.parameter)
        if actual is None:
            return False
        try:
            return _RULE_OPERATORS[self.operator](actual, self.value)
        except TypeError:
            return False


class Pharmacokinetics(RecordModel):
    ka: Optional[float] = Field(None, ge=0.01, le=10)
    tmax: float = Field(ge=0.1, le=24)
    f: float = Field(ge=0.1, le=100)
    vd: float = Field(ge=0.01, le=50)
    half_life: float = Field(ge=0.1, le=200)
    kp: float = Field(ge=0.01, le=50)

    @field_validator("ka", mode="before")
    @classmethod
    def _not_applicable(cls, v):
        # topical formulations publish ka as "N/A"
        if isinstance(v, str) and v.strip().upper() == "N/A":
            return None
        return v


class Pharmacodynamics(RecordModel):
    tgf_reduction: float = Field(0.0, ge=0, le=100)
    collagen_reduction: float = Field(0.0, ge=0, le=100)
    curvature_reduction: float = Field(0.0, ge=0, le=100)
    plaque_reduction: float = Field(0.0, ge=0, le=100)
    pain_relief: float = Field(0.0, ge=0, le=100)
    success_rate: float = Field(0.0, ge=0, le=100)


class SafeRange(RecordModel):
    min: float = Field(ge=0)
    max: float = Field(ge=0)

    @model_validator(mode="after")
    def _ordered(self):
        if self.min > self.max:
            raise ValueError(f"safe range min {self.min} exceeds max {self.max}")
        return self


class Component(RecordModel):
    id: str = ""
    name: str
    dose_per_kg: float = Field(gt=0, le=100)
    unit: str = "mg"
    frequency: Frequency
    route: Literal["oral", "topical"] = "oral"
    timing: Tuple[Slot, ...] = ()
    pharmacokinetics: Pharmacokinetics
    pharmacodynamics: Pharmacodynamics = Pharmacodynamics()
    adjustments: Dict[str, float] = {}
    safe_range: Optional[SafeRange] = None
    stages: Tuple[str, ...] = ()
    contraindications: Tuple[ProfileRule, ...] = ()
    warnings: Tuple[ProfileRule, ...] = ()

    @model_validator(mode="after")
    def _oral_needs_absorption(self):
        if self.route == "oral" and self.pharmacokinetics.ka is None:
            raise ValueError("ka is required for oral components")
        return self


class Interaction(RecordModel):
    type: str
    factor: float = Field(gt=0)
    mechanism: str = ""
    significance: Significance
    combination_index: Optional[float] = Field(None, alias="ci", gt=0)
    regeneration_rate: Optional[float] = Field(None, alias="rate", ge=0)
    verification: Optional[str] = None


class MonitoringTimepoint(RecordModel):
    timepoint: str
    clinical: Tuple[str, ...] = ()
    laboratory: Tuple[str, ...] = ()
    imaging: Tuple[str, ...] = ()
    biomarkers: Tuple[str, ...] = ()


class Stage(RecordModel):
    id: str = ""
    name: str
    timeframe: str = ""
    duration: str
    duration_unit: str
    description: str = ""
    characteristics: Tuple[str, ...] = ()
    core_components: Tuple[str, ...]
    optional_components: Tuple[str, ...]
    contraindicated: Tuple[str, ...] = ()
    success_base: float = Field(ge=0, le=100)
    special_considerations: Tuple[str, ...] = ()
    verification: Optional[str] = None

    @property
    def duration_months(self) -> int:
        """Leading number of the duration range ("3-18" -> 3)."""
        m = re.match(r"\s*(\d+)", self.duration)
        return int(m.group(1)) if m else 0


class ReferenceData(RecordModel):
    components: Dict[str, Component]
    interactions: Dict[str, Interaction]
    stages: Dict[str, Stage]
    monitoring_schedule: Dict[str, MonitoringTimepoint] = {}
    ci_interpretation: Dict[str, str] = {}
    reference_patient: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class DoseResult(RecordModel):
    component_id: str
    base_dose: float
    adjustment_factor: float
    adjusted_dose: float
    effective_dose: float
    tissue_dose: float
    frequency: Frequency
    timing: Tuple[Slot, ...]
    unit: str
    route: str

    def rounded(self) -> "DoseResult":
        """Display copy: whole mg amounts, two decimals elsewhere."""
        return self.model_copy(update={
            "base_dose": round_half_up(self.base_dose),
            "adjustment_factor": round_half_up(self.adjustment_factor, 2),
            "adjusted_dose": round_half_up(self.adjusted_dose),
            "effective_dose": round_half_up(self.effective_dose, 2),
            "tissue_dose": round_half_up(self.tissue_dose, 2),
        })


class DoseRangeCheck(RecordModel):
    valid: bool
    error: Optional[str] = None
    warning: Optional[str] = None
    min_dose: Optional[float] = None
    max_dose: Optional[float] = None


class ScheduleEntry(RecordModel):
    id: str
    name: str
    dose: float
    unit: str
    route: str
    frequency: Frequency


class SynergyResult(RecordModel):
    type: str
    factor: float
    mechanism: str = ""
    significance: Significance
    verification: Optional[str] = None
    combination_index: Optional[float] = None
    interpretation: Optional[str] = None
    regeneration_rate: Optional[float] = None
    regeneration_factor: Optional[float] = None


class CombinationIndexResult(RecordModel):
    combination_index: float
    interpretation: str
    synergy_strength: Literal["synergistic", "additive", "antagonistic"]


class ContraindicationFinding(RecordModel):
    type: str
    component: str
    severity: str
    message: str


class InteractionRecommendation(RecordModel):
    type: str
    message: str
    action: str


class InteractionReport(RecordModel):
    total_interactions: int
    overall_synergy_factor: float
    significant_interactions: int
    interactions: Dict[str, SynergyResult]
    recommendations: Tuple[InteractionRecommendation, ...] = ()


class StageRecommendation(RecordModel):
    stage_id: str
    stage_name: str
    timeframe: str
    duration: str
    duration_unit: str
    description: str
    characteristics: Tuple[str, ...]
    core_components: Tuple[str, ...]
    optional_components: Tuple[str, ...]
    contraindicated: Tuple[str, ...]
    special_considerations: Tuple[str, ...]
    expected_success_rate: float
    verification: Optional[str] = None

    @property
    def duration_label(self) -> str:
        return f"{self.duration} {self.duration_unit}"


class StageComponents(RecordModel):
    core: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    excluded: Tuple[str, ...] = ()


class StageValidation(RecordModel):
    type: str
    message: str
    recommendation: str


class AdherenceFactors(RecordModel):
    expected_adherence: float
    complexity_factor: float
    duration_challenge: float
    recommendations: Tuple[str, ...] = ()


class ProgressPrediction(RecordModel):
    expected_success_rate: float
    treatment_duration: str
    milestones: Dict[str, float]
    risk_factors: Tuple[str, ...] = ()
    optimization_suggestions: Tuple[str, ...] = ()


class StageReport(RecordModel):
    stage: StageRecommendation
    components: StageComponents
    monitoring: Dict[str, MonitoringTimepoint]
    validations: Tuple[StageValidation, ...] = ()
    adherence_factors: AdherenceFactors
    progress_predictions: ProgressPrediction


class Effectiveness(RecordModel):
    tgf_reduction: float = 0.0
    collagen_reduction: float = 0.0
    curvature_reduction: float = 0.0
    plaque_reduction: float = 0.0
    pain_relief: float = 0.0
    overall_success_rate: float = 0.0


class CalculationResult(RecordModel):
    component_doses: Dict[str, DoseResult]
    synergy_effects: Dict[str, SynergyResult]
    effectiveness: Effectiveness
    stage_recommendations: StageRecommendation
    warnings: Tuple[str, ...] = ()


class ProfileValidation(RecordModel):
    valid: bool
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
