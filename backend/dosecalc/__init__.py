# dosecalc/__init__.py
from dosecalc.errors import NotFound, NotInitialized, ValidationFailed
from dosecalc.schemas import PatientProfile, ReferenceData
from dosecalc.services.calculator import Calculator
from dosecalc.services.loader import DataLoader

__all__ = [
    "Calculator",
    "DataLoader",
    "NotFound",
    "NotInitialized",
    "PatientProfile",
    "ReferenceData",
    "ValidationFailed",
]
