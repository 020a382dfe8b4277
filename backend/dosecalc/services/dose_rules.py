# dosecalc/services/dose_rules.py
from typing import get_args

from dosecalc.schemas import Slot

# Last-resort per-dose ranges (mg) for records that carry no safeRange.
FALLBACK_SAFE_RANGES = {
    "l-carnitine": {"min": 500, "max": 3000},
    "coq10": {"min": 100, "max": 200},
    "propolis": {"min": 600, "max": 700},
    "ginkgo": {"min": 240, "max": 320},
    "bilberry": {"min": 160, "max": 320},
    "silymarin": {"min": 400, "max": 400},
    "vitamin-e": {"min": 600, "max": 800},
    "vitamin-c": {"min": 750, "max": 1500},
    "sod": {"min": 140, "max": 140},
    "boswellia": {"min": 200, "max": 300},
    "pentoxifylline": {"min": 400, "max": 800},
    "diclofenac": {"min": 3000, "max": 3000},
}

FREQUENCY_MULTIPLIERS = {
    "QD": 1,   # once daily
    "BID": 2,  # twice daily
    "TID": 3,  # three times daily
    "QID": 4,  # four times daily
}

# Patient predicate -> adjustment key declared on the component record
ADJUSTMENT_KEYS = ("age65", "bmi30", "smoking", "crCl30", "childB")

ELDERLY_AGE = 65
OBESE_BMI = 30
REDUCED_CRCL = 50

SCHEDULE_SLOTS = get_args(Slot)

FAT_SOLUBLE = frozenset({"coq10", "vitamin-e", "boswellia", "silymarin"})

# generic slot -> meal slot for fat-soluble components
MEAL_SLOTS = {"morning": "breakfast", "evening": "dinner"}

SCHEDULE_SYNERGY_PAIRS = (
    ("vitamin-c", "vitamin-e"),
    ("vitamin-c", "coq10"),
    ("propolis", "bilberry"),
    ("pentoxifylline", "vitamin-e"),
)
