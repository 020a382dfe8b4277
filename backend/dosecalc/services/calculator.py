# dosecalc/services/calculator.py
"""
Calculator orchestrator.

Composes the dosing, interaction and stage engines into one result per
(profile, selection). Every call rebuilds its result from the reference
data; nothing is carried over between calls.
"""
import logging
from typing import Dict, Iterable, List, Optional

from dosecalc.errors import NotInitialized
from dosecalc.schemas import (
    METRICS,
    CalculationResult,
    Component,
    DoseResult,
    Effectiveness,
    PatientProfile,
    ReferenceData,
    StageRecommendation,
    SynergyResult,
)
from dosecalc.services.dosing import DosingEngine, Schedule
from dosecalc.services.interactions import InteractionEngine, weighted_synergy_product
from dosecalc.services.stages import StageEngine, coverage_ratio

log = logging.getLogger("calculator")

# blending synergy factor
BLEND_HIGH_CAP = 1.6
BLEND_MODERATE_CAP = 1.3
BLEND_FLOOR = 0.5
BLEND_CEILING = 1.8
BLEND_EXPONENT_CAP = 10

MAX_DOSE_WEIGHT = 2.0

# response potential
DEFAULT_SUCCESS_BASE = 70
MAX_RESPONSE_POTENTIAL = 95
SYNERGY_BOOST_CAP = 1.6
SYNERGY_BOOST_FACTOR_CAP = 1.5


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def blended_synergy_factor(synergies: Dict[str, SynergyResult]) -> float:
    """Synergy factor used to blend effectiveness metrics, bounded to [0.5, 1.8]."""
    factor = weighted_synergy_product(synergies.values(), BLEND_HIGH_CAP, BLEND_MODERATE_CAP, BLEND_EXPONENT_CAP)
    return _clamp(factor, BLEND_FLOOR, BLEND_CEILING)


def profile_penalty(profile: PatientProfile) -> float:
    penalty = 0
    if profile.age >= 65:
        penalty += 10
    if profile.bmi >= 30:
        penalty += 5
    if profile.smoking:
        penalty += 5
    if profile.creatinine_clearance is not None and profile.creatinine_clearance < 30:
        penalty += 10
    if profile.liver_function and profile.liver_function != "normal":
        penalty += 10
    return penalty


class Calculator:
    """
    Entry point for the presentation layer.

    Construct it, call initialize() with validated reference data (see
    DataLoader), then call calculate_dosing() as often as the inputs change.
    """

    def __init__(self, reference_data: Optional[ReferenceData] = None):
        self.reference_data = None
        self.dosing = None
        self.interactions = None
        self.stages = None
        if reference_data is not None:
            self.initialize(reference_data)

    @property
    def initialized(self) -> bool:
        return self.reference_data is not None

    def initialize(self, reference_data: ReferenceData):
        self.reference_data = reference_data
        self.dosing = DosingEngine(reference_data)
        self.interactions = InteractionEngine(reference_data)
        self.stages = StageEngine(reference_data)
        log.info(
            "Calculator initialized: %d components, %d interactions, %d stages",
            len(reference_data.components),
            len(reference_data.interactions),
            len(reference_data.stages),
        )

    def _require_initialized(self):
        if not self.initialized:
            raise NotInitialized("Calculator not initialized")

    # ------------------------------------------------------------------
    # Individual engine operations
    # ------------------------------------------------------------------

    def compute_dose(self, component_id: str, profile: PatientProfile) -> DoseResult:
        self._require_initialized()
        return self.dosing.compute_dose(component_id, profile)

    def compute_synergies(self, selected: Iterable[str]) -> Dict[str, SynergyResult]:
        self._require_initialized()
        return self.interactions.compute_synergies(selected)

    def get_recommendations(self, stage_id: str, profile: Optional[PatientProfile] = None) -> StageRecommendation:
        self._require_initialized()
        return self.stages.get_recommendations(stage_id, profile)

    def generate_dosing_schedule(self, component_doses: Dict[str, DoseResult]) -> Schedule:
        self._require_initialized()
        return self.dosing.generate_dosing_schedule(component_doses)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def calculate_dosing(self, profile: PatientProfile, selected: Iterable[str]) -> CalculationResult:
        self._require_initialized()

        selected = list(dict.fromkeys(selected))
        stage_recommendations = self.stages.get_recommendations(profile.stage, profile)

        component_doses = {cid: self.dosing.compute_dose(cid, profile) for cid in selected}
        synergy_effects = self.interactions.compute_synergies(selected)

        effectiveness = self.calculate_overall_effectiveness(selected, component_doses, synergy_effects, profile)
        effectiveness = self.stages.calculate_stage_specific_effectiveness(
            profile.stage, selected, effectiveness, profile
        )

        return CalculationResult(
            component_doses=component_doses,
            synergy_effects=synergy_effects,
            effectiveness=effectiveness,
            stage_recommendations=stage_recommendations,
            warnings=tuple(self.generate_warnings(profile, selected)),
        )

    def calculate_overall_effectiveness(self, selected: List[str], doses: Dict[str, DoseResult],
                                        synergies: Dict[str, SynergyResult],
                                        profile: PatientProfile) -> Effectiveness:
        components = self.reference_data.components
        synergy = blended_synergy_factor(synergies)

        values = {
            metric: self._aggregate_metric(metric, selected, components, doses, synergy, profile)
            for metric in METRICS
        }
        values["overall_success_rate"] = self.response_potential(selected, synergies, profile)
        return Effectiveness(**values)

    @staticmethod
    def _aggregate_metric(metric: str, selected: List[str], components: Dict[str, Component],
                          doses: Dict[str, DoseResult], synergy: float, profile: PatientProfile) -> float:
        """
        Independent-probability aggregation: each component removes a share
        of what is left, so stacking never exceeds 100 %.
        """
        remaining = 1.0
        for cid in selected:
            component = components[cid]
            base = getattr(component.pharmacodynamics, metric)
            nominal = component.dose_per_kg * profile.weight
            weight = _clamp(doses[cid].adjusted_dose / nominal, 0.0, MAX_DOSE_WEIGHT)
            contribution = _clamp((base / 100) * weight, 0.0, 1.0)
            remaining *= 1 - contribution

        raw = max(0.0, 100 * (1 - remaining))
        blend = 0.85 + 0.15 * _clamp((synergy - 1) / 0.8, 0.0, 1.0)
        return _clamp(raw ** 0.9 * blend, 0.0, 100.0)

    def response_potential(self, selected: List[str], synergies: Dict[str, SynergyResult],
                           profile: PatientProfile) -> float:
        """Population-level expected response for the stage, not a per-patient outcome."""
        stage = self.reference_data.stages.get(profile.stage)
        success_base = stage.success_base if stage is not None else DEFAULT_SUCCESS_BASE
        coverage = coverage_ratio(stage, selected) if stage is not None else 0.5

        boost = 1.0
        for s in synergies.values():
            boost *= min(s.factor, SYNERGY_BOOST_FACTOR_CAP)
        boost = min(boost, SYNERGY_BOOST_CAP)

        value = success_base * coverage * (0.9 + 0.1 * _clamp((boost - 1) / 0.6, 0.0, 1.0)) - profile_penalty(profile)
        return _clamp(value, 0.0, MAX_RESPONSE_POTENTIAL)

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    def generate_warnings(self, profile: PatientProfile, selected: Iterable[str]) -> List[str]:
        warnings = []

        if profile.age >= 65:
            warnings.append("Elderly patient: Consider reduced dosing for some components")
        if profile.bmi >= 30:
            warnings.append("Obesity may require dose adjustments for fat-soluble compounds")
        if profile.creatinine_clearance is not None and profile.creatinine_clearance < 30:
            warnings.append("Severe kidney impairment: Dose reductions required")
        if profile.liver_function == "childB":
            warnings.append("Liver impairment: Significant dose adjustments needed")
        if profile.stage == "acute" and profile.has_plaque:
            warnings.append("Acute phase with established plaque: Full protocol recommended")

        for cid in dict.fromkeys(selected):
            component = self.reference_data.components.get(cid)
            if component is None:
                continue
            for rule in component.warnings:
                if rule.matches(profile):
                    warnings.append(rule.message)

        return warnings
