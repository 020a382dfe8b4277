# dosecalc/services/stages.py
"""
Stage protocols: duration and special considerations per disease stage,
the stage-specific effectiveness multiplier, adherence and progress estimates.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from dosecalc.errors import NotFound
from dosecalc.schemas import (
    METRICS,
    AdherenceFactors,
    Effectiveness,
    MonitoringTimepoint,
    PatientProfile,
    ProgressPrediction,
    ReferenceData,
    Stage,
    StageComponents,
    StageRecommendation,
    StageReport,
    StageValidation,
    round_half_up,
)

log = logging.getLogger("stages")

ACUTE_CALCIFIED_DURATION = "18-36"
ACUTE_PLAQUE_DURATION = "6-24"
INJECTABLE_THERAPY = "Injectable therapy mandatory: biweekly for 6 months, then monthly for 12 months"

ACUTE_ANTIOXIDANTS = ("vitamin-c", "vitamin-e")
RHEOLOGY_MODIFIER = "pentoxifylline"
CHRONIC_CORE_THRESHOLD = 0.8
SEVERE_CURVATURE_DEGREES = 60
FULL_PROTOCOL_SIZE = 10

BASE_ADHERENCE = 0.85
MIN_ADHERENCE = 0.5

MILESTONE_FRACTIONS = (
    ("month1", 0.1),
    ("month3", 0.3),
    ("month6", 0.6),
    ("monthFinal", 1.0),
)

Scales = Dict[str, float]


def coverage_ratio(stage: Stage, selected: Iterable[str], default: float = 0.5) -> float:
    """Fraction of the stage's core components present in the selection."""
    core = stage.core_components
    if not core:
        return default
    chosen = set(selected)
    return sum(1 for c in core if c in chosen) / len(core)


class StageEngine:
    def __init__(self, reference_data: ReferenceData):
        self.reference_data = reference_data
        self.stages = reference_data.stages

    def get_stage(self, stage_id: str) -> Stage:
        stage = self.stages.get(stage_id)
        if stage is None:
            raise NotFound(f"Stage {stage_id} not found", {"stage": stage_id})
        return stage

    def get_recommendations(self, stage_id: str, profile: Optional[PatientProfile] = None) -> StageRecommendation:
        stage = self.get_stage(stage_id)

        duration = stage.duration
        special = list(stage.special_considerations)

        if stage_id == "acute" and profile is not None:
            if profile.has_calcification:
                duration = ACUTE_CALCIFIED_DURATION
            elif profile.has_plaque:
                duration = ACUTE_PLAQUE_DURATION
            if profile.has_plaque or profile.has_calcification:
                special.append(INJECTABLE_THERAPY)

        return StageRecommendation(
            stage_id=stage_id,
            stage_name=stage.name,
            timeframe=stage.timeframe,
            duration=duration,
            duration_unit=stage.duration_unit,
            description=stage.description,
            characteristics=stage.characteristics,
            core_components=stage.core_components,
            optional_components=stage.optional_components,
            contraindicated=stage.contraindicated,
            special_considerations=tuple(special),
            expected_success_rate=stage.success_base,
            verification=stage.verification,
        )

    def get_components_for_stage(self, stage_id: str, component_ids: Iterable[str]) -> StageComponents:
        stage = self.get_stage(stage_id)
        core, optional, excluded = [], [], []
        for cid in component_ids:
            if cid in stage.core_components:
                core.append(cid)
            elif cid in stage.optional_components:
                optional.append(cid)
            elif cid in stage.contraindicated:
                excluded.append(cid)
        return StageComponents(core=tuple(core), optional=tuple(optional), excluded=tuple(excluded))

    # ------------------------------------------------------------------
    # Effectiveness multiplier
    # ------------------------------------------------------------------

    def _stage_layer(self, stage_id: str, stage: Stage, selected: List[str],
                     profile: Optional[PatientProfile]) -> Tuple[float, Scales]:
        multiplier = 1.0
        scales = {}

        if stage_id == "acute":
            if any(c in selected for c in ACUTE_ANTIOXIDANTS):
                multiplier *= 1.25
            # acute tissue is less fibrotic
            scales["collagen_reduction"] = 0.8
            scales["plaque_reduction"] = 0.7
            if profile is not None and (profile.has_plaque or profile.has_calcification):
                multiplier *= 1.3
                scales["plaque_reduction"] *= 1.2
        elif stage_id == "chronic":
            present = sum(1 for c in stage.core_components if c in selected)
            multiplier = 1.15 if present >= len(stage.core_components) * CHRONIC_CORE_THRESHOLD else 0.9

        return multiplier, scales

    def _patient_layer(self, selected: List[str], profile: Optional[PatientProfile]) -> Tuple[float, Scales]:
        multiplier = 1.0
        scales = {}
        if profile is None:
            return multiplier, scales

        if profile.has_calcification and RHEOLOGY_MODIFIER in selected:
            scales["plaque_reduction"] = 1.5
            scales["curvature_reduction"] = 1.3
            multiplier *= 1.2

        if profile.curvature and profile.curvature > SEVERE_CURVATURE_DEGREES:
            multiplier *= 1.1 if len(selected) >= FULL_PROTOCOL_SIZE else 0.85
            scales["pain_relief"] = 1.2

        return multiplier, scales

    def stage_multiplier(self, stage_id: str, selected: Iterable[str],
                         profile: Optional[PatientProfile] = None) -> float:
        stage = self.get_stage(stage_id)
        selected = list(selected)
        stage_mult, _ = self._stage_layer(stage_id, stage, selected, profile)
        patient_mult, _ = self._patient_layer(selected, profile)
        return stage_mult * patient_mult

    def calculate_stage_specific_effectiveness(self, stage_id: str, selected: Iterable[str],
                                               effectiveness: Effectiveness,
                                               profile: Optional[PatientProfile] = None) -> Effectiveness:
        """Return a new Effectiveness with the stage and patient multipliers applied."""
        stage = self.get_stage(stage_id)
        selected = list(selected)

        stage_mult, stage_scales = self._stage_layer(stage_id, stage, selected, profile)
        patient_mult, patient_scales = self._patient_layer(selected, profile)
        multiplier = stage_mult * patient_mult

        update = {}
        for metric in METRICS:
            value = getattr(effectiveness, metric)
            value *= stage_scales.get(metric, 1.0) * patient_scales.get(metric, 1.0) * multiplier
            update[metric] = min(max(value, 0.0), 100.0)

        log.debug("stage %s multiplier %.3f", stage_id, multiplier)
        return effectiveness.model_copy(update=update)

    # ------------------------------------------------------------------
    # Monitoring, adherence, progress
    # ------------------------------------------------------------------

    def get_monitoring_schedule(self, stage_id: str) -> Dict[str, MonitoringTimepoint]:
        self.get_stage(stage_id)
        schedule = dict(self.reference_data.monitoring_schedule)
        if stage_id == "acute":
            schedule["week2"] = MonitoringTimepoint(
                timepoint="Week 2",
                clinical=("Early response assessment",),
            )
        return schedule

    def validate_stage_selection(self, profile: PatientProfile) -> List[StageValidation]:
        validations = []
        if profile.stage == "acute" and profile.symptom_duration is not None and profile.symptom_duration > 12:
            validations.append(StageValidation(
                type="warning",
                message="Patient has symptoms >12 months but acute stage selected",
                recommendation="Consider chronic stage classification",
            ))
        return validations

    def calculate_adherence_factors(self, stage_id: str, selected: Iterable[str]) -> AdherenceFactors:
        stage = self.get_stage(stage_id)

        complexity = len(set(selected)) * 0.1
        duration_penalty = 0.1 if stage.duration_months > 12 else 0.0
        adherence = BASE_ADHERENCE - complexity - duration_penalty

        return AdherenceFactors(
            expected_adherence=max(adherence, MIN_ADHERENCE),
            complexity_factor=complexity,
            duration_challenge=duration_penalty,
            recommendations=tuple(self.get_adherence_recommendations(adherence)),
        )

    @staticmethod
    def get_adherence_recommendations(adherence: float) -> List[str]:
        recommendations = []
        if adherence < 0.7:
            recommendations.append("Consider simplifying regimen to improve adherence")
            recommendations.append("Implement dosing reminders and pill organizers")
            recommendations.append("Schedule more frequent follow-up appointments")
        if adherence < 0.6:
            recommendations.append("Consider reducing to core components only initially")
            recommendations.append("Evaluate patient motivation and support systems")
        return recommendations

    def predict_progress(self, stage_id: str, selected: Iterable[str],
                         profile: Optional[PatientProfile] = None) -> ProgressPrediction:
        stage = self.get_stage(stage_id)
        selected = list(selected)

        adjusted = stage.success_base * coverage_ratio(stage, selected)
        milestones = {name: round_half_up(adjusted * fraction) for name, fraction in MILESTONE_FRACTIONS}

        return ProgressPrediction(
            expected_success_rate=adjusted,
            treatment_duration=f"{stage.duration_months} {stage.duration_unit}",
            milestones=milestones,
            risk_factors=tuple(self.identify_risk_factors(profile)) if profile else (),
            optimization_suggestions=tuple(self.get_optimization_suggestions(stage_id, selected, profile)),
        )

    @staticmethod
    def identify_risk_factors(profile: PatientProfile) -> List[str]:
        risks = []
        if profile.age >= 65:
            risks.append("Advanced age")
        if profile.smoking:
            risks.append("Smoking")
        if profile.bmi >= 30:
            risks.append("Obesity")
        if profile.diabetes:
            risks.append("Diabetes")
        if profile.creatinine_clearance is not None and profile.creatinine_clearance < 60:
            risks.append("Kidney impairment")
        return risks

    def get_optimization_suggestions(self, stage_id: str, selected: Iterable[str],
                                     profile: Optional[PatientProfile] = None) -> List[str]:
        stage = self.get_stage(stage_id)
        selected = list(selected)
        suggestions = []

        missing = [c for c in stage.core_components if c not in selected]
        if missing:
            suggestions.append(f"Consider adding missing core components: {', '.join(missing)}")

        if profile is not None:
            if profile.has_calcification and RHEOLOGY_MODIFIER not in selected:
                suggestions.append("Pentoxifylline is priority component for calcified plaques")
            if profile.curvature and profile.curvature > SEVERE_CURVATURE_DEGREES and len(selected) < FULL_PROTOCOL_SIZE:
                suggestions.append("Consider full 12-component protocol for severe curvature (>60°)")

        return suggestions

    def generate_stage_report(self, stage_id: str, profile: PatientProfile, selected: Iterable[str]) -> StageReport:
        selected = list(selected)
        return StageReport(
            stage=self.get_recommendations(stage_id, profile),
            components=self.get_components_for_stage(stage_id, selected),
            monitoring=self.get_monitoring_schedule(stage_id),
            validations=tuple(self.validate_stage_selection(profile)),
            adherence_factors=self.calculate_adherence_factors(stage_id, selected),
            progress_predictions=self.predict_progress(stage_id, selected, profile),
        )
