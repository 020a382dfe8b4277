# dosecalc/services/dosing.py
import logging
from typing import Dict, List

from dosecalc.errors import NotFound
from dosecalc.schemas import (
    Component,
    DoseRangeCheck,
    DoseResult,
    PatientProfile,
    Pharmacokinetics,
    ReferenceData,
    ScheduleEntry,
    round_half_up,
)
from dosecalc.services.dose_rules import (
    ADJUSTMENT_KEYS,
    ELDERLY_AGE,
    FALLBACK_SAFE_RANGES,
    FAT_SOLUBLE,
    FREQUENCY_MULTIPLIERS,
    MEAL_SLOTS,
    OBESE_BMI,
    REDUCED_CRCL,
    SCHEDULE_SLOTS,
    SCHEDULE_SYNERGY_PAIRS,
)

log = logging.getLogger("dosing")

Schedule = Dict[str, List[ScheduleEntry]]


class DosingEngine:
    """Weight-based dosing with patient-factor adjustments."""

    def __init__(self, reference_data: ReferenceData):
        self.reference_data = reference_data
        self.components = reference_data.components

    def get_component(self, component_id: str) -> Component:
        component = self.components.get(component_id)
        if component is None:
            raise NotFound(f"Component {component_id} not found", {"component": component_id})
        return component

    def adjustment_factor(self, component: Component, profile: PatientProfile) -> float:
        """Product of the component's declared factors whose predicate holds."""
        crcl = profile.creatinine_clearance
        applies = {
            "age65": profile.age >= ELDERLY_AGE,
            "bmi30": profile.bmi >= OBESE_BMI,
            "smoking": profile.smoking is True,
            "crCl30": crcl is not None and crcl <= REDUCED_CRCL,
            "childB": profile.liver_function == "childB",
        }
        factor = 1.0
        for key in ADJUSTMENT_KEYS:
            if applies[key] and key in component.adjustments:
                factor *= component.adjustments[key]
        return factor

    def compute_dose(self, component_id: str, profile: PatientProfile) -> DoseResult:
        component = self.get_component(component_id)

        base_dose = component.dose_per_kg * profile.weight
        factor = self.adjustment_factor(component, profile)
        adjusted_dose = base_dose * factor
        effective_dose = adjusted_dose * (component.pharmacokinetics.f / 100)
        tissue_dose = self.tissue_distribution(effective_dose, component.pharmacokinetics, profile)

        return DoseResult(
            component_id=component_id,
            base_dose=base_dose,
            adjustment_factor=factor,
            adjusted_dose=adjusted_dose,
            effective_dose=effective_dose,
            tissue_dose=tissue_dose,
            frequency=component.frequency,
            timing=component.timing,
            unit=component.unit,
            route=component.route,
        )

    @staticmethod
    def tissue_distribution(effective_dose: float, pk: Pharmacokinetics, profile: PatientProfile) -> float:
        """One-compartment estimate of tissue concentration."""
        volume_of_distribution = pk.vd * profile.weight
        plasma_concentration = effective_dose / volume_of_distribution
        return plasma_concentration * pk.kp

    def get_daily_dose(self, component_id: str, profile: PatientProfile) -> float:
        dose = self.compute_dose(component_id, profile)
        return dose.adjusted_dose * FREQUENCY_MULTIPLIERS.get(dose.frequency, 1)

    def validate_dose_range(self, component_id: str, calculated_dose: float) -> DoseRangeCheck:
        component = self.get_component(component_id)

        if component.safe_range is not None:
            low, high = component.safe_range.min, component.safe_range.max
        elif component_id in FALLBACK_SAFE_RANGES:
            low = FALLBACK_SAFE_RANGES[component_id]["min"]
            high = FALLBACK_SAFE_RANGES[component_id]["max"]
        else:
            return DoseRangeCheck(valid=True, warning="No established range")

        shown = round_half_up(calculated_dose)
        if calculated_dose < low:
            return DoseRangeCheck(
                valid=False,
                error=f"Dose {shown:g}mg below minimum safe range ({low:g}mg)",
                min_dose=low,
                max_dose=high,
            )
        if calculated_dose > high:
            return DoseRangeCheck(
                valid=False,
                error=f"Dose {shown:g}mg exceeds maximum safe range ({high:g}mg)",
                min_dose=low,
                max_dose=high,
            )
        return DoseRangeCheck(valid=True, min_dose=low, max_dose=high)

    def check_dose(self, component_id: str, profile: PatientProfile) -> DoseRangeCheck:
        """Range check of the adjusted dose for this patient."""
        dose = self.compute_dose(component_id, profile)
        return self.validate_dose_range(component_id, dose.adjusted_dose)

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    def generate_dosing_schedule(self, component_doses: Dict[str, DoseResult]) -> Schedule:
        schedule = {slot: [] for slot in SCHEDULE_SLOTS}
        self._distribute(component_doses, schedule)
        self._move_fat_soluble_to_meals(schedule)
        self._co_locate_synergy_pairs(schedule)
        return schedule

    def _distribute(self, component_doses: Dict[str, DoseResult], schedule: Schedule):
        for component_id, dose in component_doses.items():
            component = self.get_component(component_id)
            entry = ScheduleEntry(
                id=component_id,
                name=component.name,
                dose=dose.adjusted_dose,
                unit=dose.unit,
                route=dose.route,
                frequency=dose.frequency,
            )
            for slot in component.timing:
                if slot in schedule and not _has(schedule[slot], component_id):
                    schedule[slot].append(entry)

    def _move_fat_soluble_to_meals(self, schedule: Schedule):
        for from_slot, to_slot in MEAL_SLOTS.items():
            moving = [
                e for e in schedule[from_slot]
                if e.id in FAT_SOLUBLE and to_slot in self.components[e.id].timing
            ]
            if not moving:
                continue
            move_ids = {e.id for e in moving}
            schedule[from_slot] = [e for e in schedule[from_slot] if e.id not in move_ids]
            for e in moving:
                if not _has(schedule[to_slot], e.id):
                    schedule[to_slot].append(e)
                log.debug("moved fat-soluble %s from %s to %s", e.id, from_slot, to_slot)

    def _co_locate_synergy_pairs(self, schedule: Schedule):
        location = {}
        for slot in SCHEDULE_SLOTS:
            for e in schedule[slot]:
                location[e.id] = slot

        for comp_a, comp_b in SCHEDULE_SYNERGY_PAIRS:
            if comp_a not in location or comp_b not in location:
                continue
            slot_a, slot_b = location[comp_a], location[comp_b]
            if slot_a == slot_b:
                continue

            if len(schedule[slot_a]) >= len(schedule[slot_b]):
                target, source, mover = slot_a, slot_b, comp_b
            else:
                target, source, mover = slot_b, slot_a, comp_a

            if target not in self.components[mover].timing:
                continue

            for i, e in enumerate(schedule[source]):
                if e.id == mover:
                    item = schedule[source].pop(i)
                    if not _has(schedule[target], mover):
                        schedule[target].append(item)
                    location[mover] = target
                    log.debug("co-located %s with its synergy partner in %s", mover, target)
                    break


def _has(entries: List[ScheduleEntry], component_id: str) -> bool:
    return any(e.id == component_id for e in entries)
