# streamlit_app.py
import streamlit as st
from pydantic import ValidationError

from dosecalc import Calculator, DataLoader, NotFound, PatientProfile
from dosecalc.config import configure_logging
from dosecalc.services.validation import sanitize_patient_profile, validate_patient_profile
from dosecalc.tables import (
    contraindication_table,
    dose_table,
    effectiveness_table,
    schedule_table,
    synergy_table,
)

configure_logging()

st.set_page_config(page_title="Multimodal Protocol Dosing Calculator", layout="wide")
st.title("Multimodal Protocol Dosing Calculator")
st.caption("Educational tool. Not a substitute for clinical judgement.")


@st.cache_resource
def get_calculator():
    loader = DataLoader()
    return Calculator(loader.load_all_data())


calculator = get_calculator()
reference = calculator.reference_data

# Sidebar patient info
with st.sidebar:
    st.header("Patient Profile")
    weight = st.number_input("Weight (kg)", 40.0, 200.0, 75.0)
    height = st.number_input("Height (cm)", 140.0, 220.0, 175.0)
    age = st.number_input("Age (years)", 18.0, 100.0, 45.0)
    crcl = st.number_input("Creatinine clearance (mL/min, 0 = estimate)", 0.0, 200.0, 0.0)
    liver = st.selectbox("Liver function", ["normal", "childB"])
    smoking = st.checkbox("Active smoker")
    diabetes = st.checkbox("Diabetes")

    st.markdown("---")
    st.subheader("Disease")
    stage = st.selectbox("Stage", list(reference.stages), format_func=lambda s: reference.stages[s].name)
    has_plaque = st.checkbox("Palpable plaque")
    has_calcification = st.checkbox("Calcification on ultrasound")
    curvature = st.number_input("Curvature (degrees)", 0.0, 120.0, 30.0)
    symptom_duration = st.number_input("Symptom duration (months)", 0.0, 240.0, 6.0)

raw_profile = sanitize_patient_profile({
    "weight": weight,
    "height": height,
    "age": age,
    "creatinineClearance": crcl or None,
    "liverFunction": liver,
    "smoking": smoking,
    "diabetes": diabetes,
    "stage": stage,
    "hasPlaque": has_plaque,
    "hasCalcification": has_calcification,
    "curvature": curvature,
    "symptomDuration": symptom_duration,
})

check = validate_patient_profile(raw_profile)
for w in check.warnings:
    st.sidebar.warning(w)
if not check.valid:
    for e in check.errors:
        st.error(e)
    st.stop()

try:
    profile = PatientProfile(**raw_profile)
except ValidationError as e:
    st.error(f"Invalid patient profile: {e}")
    st.stop()

stage_protocol = reference.stages[stage]
selected = st.multiselect(
    "Protocol components",
    list(reference.components),
    default=list(stage_protocol.core_components),
    format_func=lambda c: reference.components[c].name,
)

if not selected:
    st.info("Select at least one component.")
    st.stop()

try:
    result = calculator.calculate_dosing(profile, selected)
except NotFound as e:
    st.error(str(e))
    st.stop()

col1, col2 = st.columns([1.2, 1])

with col1:
    st.subheader("Doses")
    st.dataframe(dose_table(result, reference), hide_index=True)

    st.subheader("Dose range checks")
    for cid, dose in result.component_doses.items():
        rng = calculator.dosing.validate_dose_range(cid, dose.adjusted_dose)
        if not rng.valid:
            st.markdown(f"- **{reference.components[cid].name}**: {rng.error}")
        elif rng.warning:
            st.markdown(f"- {reference.components[cid].name}: {rng.warning}")

    st.subheader("Daily schedule")
    st.dataframe(schedule_table(calculator.generate_dosing_schedule(result.component_doses)), hide_index=True)

with col2:
    st.subheader("Effectiveness estimate")
    st.dataframe(effectiveness_table(result), hide_index=True)

    st.subheader("Interactions")
    report = calculator.interactions.generate_interaction_report(selected)
    st.metric("Overall synergy factor", report.overall_synergy_factor)
    if result.synergy_effects:
        st.dataframe(synergy_table(result), hide_index=True)
    else:
        st.info("No documented interactions among the selected components.")
    for rec in report.recommendations:
        st.markdown(f"- {rec.message}. {rec.action}")

    findings = calculator.interactions.check_contraindications(selected, profile)
    if findings:
        st.subheader("Contraindications")
        st.dataframe(contraindication_table(findings), hide_index=True)

    st.subheader("Warnings")
    if result.warnings:
        for w in result.warnings:
            st.warning(w)
    else:
        st.success("No warnings for this profile.")

st.markdown("---")
st.subheader(f"Stage: {result.stage_recommendations.stage_name}")
stage_report = calculator.stages.generate_stage_report(stage, profile, selected)
st.write(f"Duration: {result.stage_recommendations.duration_label}")
for note in result.stage_recommendations.special_considerations:
    st.markdown(f"- {note}")
for v in stage_report.validations:
    st.warning(f"{v.message}. {v.recommendation}")

adherence = stage_report.adherence_factors
st.metric("Expected adherence", f"{adherence.expected_adherence:.0%}")
for rec in adherence.recommendations:
    st.markdown(f"- {rec}")

progress = stage_report.progress_predictions
st.write("Milestones (% expected response):", progress.milestones)
for s in progress.optimization_suggestions:
    st.info(s)
