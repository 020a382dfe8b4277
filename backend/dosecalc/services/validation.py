# dosecalc/services/validation.py
"""
Profile validation and sanitising for the presentation layer, plus the
non-fatal data-quality checks run by the loader after schema validation.
"""
import math
from typing import Any, Dict, List, Mapping, Union, get_args

from dosecalc.schemas import LiverFunction, PatientProfile, ProfileValidation, ReferenceData, round_half_up

STAGE_IDS = ("acute", "chronic", "calcified", "severe")
LIVER_FUNCTIONS = get_args(LiverFunction)

PROFILE_RULES = {
    "weight": {"min": 40, "max": 200, "required": True},
    "height": {"min": 140, "max": 220, "required": True},
    "age": {"min": 18, "max": 100, "required": True},
    "bmi": {"min": 15, "max": 50, "required": True},
    "creatinineClearance": {"min": 5, "max": 200, "required": False},
    "stage": {"enum": STAGE_IDS, "required": True},
    "liverFunction": {"enum": LIVER_FUNCTIONS, "required": False},
}

NUMERIC_FIELDS = ("weight", "height", "age", "bmi", "creatinineClearance", "curvature", "symptomDuration")
BOOLEAN_FIELDS = ("smoking", "diabetes", "hasPlaque", "hasCalcification")

# assumed serum creatinine (mg/dL) for the Cockcroft-Gault estimate
DEFAULT_SERUM_CREATININE = 1.0


def _as_dict(profile: Union[PatientProfile, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(profile, PatientProfile):
        return profile.model_dump(by_alias=True)
    return dict(profile)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def validate_patient_profile(profile: Union[PatientProfile, Mapping[str, Any]]) -> ProfileValidation:
    data = _as_dict(profile)
    errors = []
    warnings = []

    for field, rules in PROFILE_RULES.items():
        value = data.get(field)
        if value is None:
            if rules.get("required"):
                errors.append(f"{field} is required")
            continue

        if "enum" in rules:
            if value not in rules["enum"]:
                errors.append(f"{field} must be one of: {', '.join(rules['enum'])}")
            continue

        if not _is_number(value):
            errors.append(f"{field} must be numeric")
            continue
        if value < rules["min"]:
            errors.append(f"{field} must be at least {rules['min']}")
        if value > rules["max"]:
            errors.append(f"{field} must be no more than {rules['max']}")

    weight, height, bmi = data.get("weight"), data.get("height"), data.get("bmi")
    if _is_number(weight) and _is_number(height) and height > 0 and _is_number(bmi):
        calculated = weight / (height / 100) ** 2
        if abs(bmi - calculated) > 1:
            warnings.append("BMI does not match calculated value from weight and height")

    age, crcl = data.get("age"), data.get("creatinineClearance")
    if _is_number(age) and age >= 75:
        warnings.append("Elderly patient: Consider dose adjustments and increased monitoring")
    if _is_number(bmi) and bmi >= 35:
        warnings.append("Severe obesity: Significant pharmacokinetic changes expected")
    if _is_number(crcl) and crcl < 30:
        warnings.append("Severe renal impairment: Major dose adjustments required")

    return ProfileValidation(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def sanitize_patient_profile(profile: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Coerce form values into a profile dict (camelCase keys).

    Fills BMI from height and weight, and estimates creatinine clearance
    with Cockcroft-Gault when it is missing.
    """
    sanitized = dict(profile)

    for field in NUMERIC_FIELDS:
        value = sanitized.get(field)
        if value is None or value == "":
            sanitized.pop(field, None)
            continue
        try:
            sanitized[field] = float(value)
        except (TypeError, ValueError):
            pass  # left for validate_patient_profile to report

    for field in BOOLEAN_FIELDS:
        if field in sanitized:
            sanitized[field] = _to_bool(sanitized[field])

    weight, height = sanitized.get("weight"), sanitized.get("height")
    if not sanitized.get("bmi") and _is_number(weight) and _is_number(height) and height > 0:
        sanitized["bmi"] = weight / (height / 100) ** 2

    age = sanitized.get("age")
    if not sanitized.get("creatinineClearance") and _is_number(age) and _is_number(weight):
        estimated = ((140 - age) * weight) / (72 * DEFAULT_SERUM_CREATININE)
        sanitized["creatinineClearance"] = round_half_up(estimated)

    return sanitized


def data_warnings(reference: ReferenceData) -> List[str]:
    """Findings that do not block loading the reference data."""
    warnings = []

    for cid, component in reference.components.items():
        for name, factor in component.adjustments.items():
            if factor <= 0 or factor > 3:
                warnings.append(f"Component {cid}: adjustment factor {name} ({factor}) seems unusual")
        if not component.stages:
            warnings.append(f"Component {cid}: stage information missing")

    for key, interaction in reference.interactions.items():
        if not interaction.mechanism:
            warnings.append(f"Interaction {key}: mechanism description missing")
        ci = interaction.combination_index
        if ci is not None and ci > 10:
            warnings.append(f"Interaction {key}: unusual combination index value ({ci})")
        if interaction.factor > 5 or interaction.factor < 0.1:
            warnings.append(f"Interaction {key}: unusual factor ({interaction.factor})")

    for sid, stage in reference.stages.items():
        if not stage.core_components:
            warnings.append(f"Stage {sid}: no core components")

    return warnings
