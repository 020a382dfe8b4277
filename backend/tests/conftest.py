"""
Pytest configuration and shared fixtures for the dosing calculator tests.

This module provides:
- The packaged reference data, loaded once per session
- Raw JSON documents for loader tests (deep-copied per test)
- A builder for small in-memory reference data sets
- Patient profile factories
"""

import copy
import json
import os
import sys

import pytest

# Add backend directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dosecalc import config
from dosecalc.schemas import PatientProfile, ReferenceData
from dosecalc.services.calculator import Calculator
from dosecalc.services.loader import DataLoader


# =============================================================================
# REFERENCE DATA FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def reference_data() -> ReferenceData:
    """Packaged reference data, validated by the loader."""
    return DataLoader().load_all_data()


@pytest.fixture(scope="session")
def _raw_documents():
    docs = {}
    for name, filename in config.DATA_FILES.items():
        with open(os.path.join(config.DATA_DIR, filename), "r", encoding="utf-8") as f:
            docs[name] = json.load(f)
    return docs


@pytest.fixture
def raw_documents(_raw_documents):
    """Mutable copy of the packaged JSON documents."""
    return copy.deepcopy(_raw_documents)


@pytest.fixture
def calculator(reference_data) -> Calculator:
    return Calculator(reference_data)


def make_component(**overrides):
    """camelCase component record with neutral defaults."""
    record = {
        "name": "Test Component",
        "dosePerKg": 10,
        "unit": "mg",
        "frequency": "QD",
        "route": "oral",
        "timing": ["morning"],
        "pharmacokinetics": {"ka": 1.0, "tmax": 2.0, "f": 50, "vd": 1.0, "halfLife": 4.0, "kp": 2.0},
        "pharmacodynamics": {
            "tgfReduction": 0, "collagenReduction": 0, "curvatureReduction": 0,
            "plaqueReduction": 0, "painRelief": 0, "successRate": 0,
        },
        "adjustments": {},
    }
    record.update(overrides)
    return record


def make_stage(**overrides):
    record = {
        "name": "Test Stage",
        "duration": "6-12",
        "durationUnit": "months",
        "coreComponents": [],
        "optionalComponents": [],
        "contraindicated": [],
        "successBase": 60,
    }
    record.update(overrides)
    return record


def build_reference(components, interactions=None, stages=None, interpretation=None) -> ReferenceData:
    """
    Build ReferenceData straight from camelCase records.

    Interaction keys must already be canonical (sorted ids joined by '_').
    """
    return ReferenceData.model_validate({
        "components": {cid: {**rec, "id": cid} for cid, rec in components.items()},
        "interactions": interactions or {},
        "stages": {sid: {**rec, "id": sid} for sid, rec in (stages or {}).items()},
        "ciInterpretation": interpretation or {},
    })


# =============================================================================
# PATIENT FIXTURES
# =============================================================================

def make_profile(**overrides) -> PatientProfile:
    data = {
        "weight": 75,
        "height": 175,
        "age": 45,
        "bmi": 24.5,
        "smoking": False,
        "creatinineClearance": 90,
        "liverFunction": "normal",
        "stage": "chronic",
        "hasPlaque": False,
        "hasCalcification": False,
    }
    data.update(overrides)
    return PatientProfile.model_validate(data)


@pytest.fixture
def healthy_profile() -> PatientProfile:
    return make_profile()


@pytest.fixture
def high_risk_profile() -> PatientProfile:
    """Elderly, obese smoker with renal and hepatic impairment."""
    return make_profile(
        weight=80,
        age=70,
        bmi=31,
        smoking=True,
        creatinineClearance=40,
        liverFunction="childB",
    )
