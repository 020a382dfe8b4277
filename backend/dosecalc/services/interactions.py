# dosecalc/services/interactions.py
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from dosecalc.errors import NotFound
from dosecalc.schemas import (
    CombinationIndexResult,
    ContraindicationFinding,
    Interaction,
    InteractionRecommendation,
    InteractionReport,
    PatientProfile,
    ReferenceData,
    SynergyResult,
    round_half_up,
)

log = logging.getLogger("interactions")

PAIR_SEPARATOR = "_"

# (inclusive upper bound, label); anything below 0.1 or above 3.3 is handled apart
_CI_BUCKETS = (
    (0.3, "0.1-0.3"),
    (0.7, "0.3-0.7"),
    (0.85, "0.7-0.85"),
    (0.90, "0.85-0.90"),
    (1.10, "0.90-1.10"),
    (1.20, "1.10-1.20"),
    (1.45, "1.20-1.45"),
    (3.3, "1.45-3.3"),
)

# (rate threshold, factor), checked from the top
_REGENERATION_FACTORS = (
    (100000, 2.5),
    (10000, 2.0),
    (1000, 1.5),
    (100, 1.2),
)

CHOU_TALALAY_ALPHA = 0.5


def pair_key(a: str, b: str) -> str:
    """Canonical key of an unordered component pair."""
    return PAIR_SEPARATOR.join(sorted((a, b)))


def ci_bucket(ci: float) -> str:
    if ci < 0.1:
        return "CI < 0.1"
    for upper, label in _CI_BUCKETS:
        if ci <= upper:
            return label
    return "> 3.3"


def regeneration_factor(rate: float) -> float:
    for threshold, factor in _REGENERATION_FACTORS:
        if rate > threshold:
            return factor
    return 1.1


def weighted_synergy_product(synergies: Iterable[SynergyResult], high_cap: float, moderate_cap: float,
                             exponent_cap: Optional[int] = None) -> float:
    """
    Product of capped high/moderate synergy factors with diminishing returns:
    0.9 per extra high pair beyond the first, 0.95 per moderate pair beyond two.
    Low-significance pairs do not contribute. exponent_cap limits how many
    extra pairs are penalised.
    """
    factor = 1.0
    high = 0
    moderate = 0
    for s in synergies:
        if s.significance == "high":
            factor *= min(s.factor, high_cap)
            high += 1
        elif s.significance == "moderate":
            factor *= min(s.factor, moderate_cap)
            moderate += 1
    extra_high = max(high - 1, 0)
    extra_moderate = max(moderate - 2, 0)
    if exponent_cap is not None:
        extra_high = min(extra_high, exponent_cap)
        extra_moderate = min(extra_moderate, exponent_cap)
    return factor * 0.9 ** extra_high * 0.95 ** extra_moderate


def _unique(ids: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


class InteractionEngine:
    def __init__(self, reference_data: ReferenceData):
        self.reference_data = reference_data
        self.interactions = reference_data.interactions
        self.interpretation = reference_data.ci_interpretation

    def lookup_interaction(self, a: str, b: str) -> Optional[Interaction]:
        if not a or not b or a == b:
            return None
        return self.interactions.get(pair_key(a, b))

    def _found_pairs(self, selected: Iterable[str]) -> Iterator[Tuple[str, str, Interaction]]:
        ids = _unique(selected)
        for i in range(len(ids)):
            for j in range(i + 1, len(ids)):
                rec = self.lookup_interaction(ids[i], ids[j])
                if rec:
                    yield ids[i], ids[j], rec

    def compute_synergies(self, selected: Iterable[str]) -> Dict[str, SynergyResult]:
        """Documented interactions among the selection; undocumented pairs are left out."""
        return {pair_key(a, b): self.process_interaction(rec) for a, b, rec in self._found_pairs(selected)}

    def process_interaction(self, interaction: Interaction) -> SynergyResult:
        extra = {}
        if interaction.combination_index is not None:
            extra["combination_index"] = interaction.combination_index
            extra["interpretation"] = self.interpret_combination_index(interaction.combination_index)
        if interaction.type == "regeneration" and interaction.regeneration_rate:
            extra["regeneration_rate"] = interaction.regeneration_rate
            extra["regeneration_factor"] = regeneration_factor(interaction.regeneration_rate)
        return SynergyResult(
            type=interaction.type,
            factor=interaction.factor,
            mechanism=interaction.mechanism,
            significance=interaction.significance,
            verification=interaction.verification,
            **extra,
        )

    def interpret_combination_index(self, ci: float) -> str:
        bucket = ci_bucket(ci)
        return self.interpretation.get(bucket, bucket)

    def calculate_overall_synergy_factor(self, synergies: Dict[str, SynergyResult]) -> float:
        """Reporting factor, capped at 3x."""
        return min(weighted_synergy_product(synergies.values(), 2.0, 1.5), 3.0)

    def check_contraindications(self, selected: Iterable[str], profile: PatientProfile) -> List[ContraindicationFinding]:
        findings = []
        for component_id in _unique(selected):
            component = self.reference_data.components.get(component_id)
            if component is None:
                raise NotFound(f"Component {component_id} not found", {"component": component_id})
            for rule in component.contraindications:
                if rule.matches(profile):
                    findings.append(ContraindicationFinding(
                        type=rule.type,
                        component=component_id,
                        severity=rule.severity,
                        message=rule.message,
                    ))
        return findings

    def calculate_chou_talalay_index(self, dose1: float, dose2: float, ic50_1: float, ic50_2: float,
                                     alpha: float = CHOU_TALALAY_ALPHA) -> CombinationIndexResult:
        if ic50_1 <= 0 or ic50_2 <= 0:
            raise ValueError("IC50 reference values must be positive")
        d1 = dose1 / ic50_1
        d2 = dose2 / ic50_2
        ci = d1 + d2 + alpha * d1 * d2

        if ci < 0.7:
            strength = "synergistic"
        elif ci > 1.1:
            strength = "antagonistic"
        else:
            strength = "additive"

        return CombinationIndexResult(
            combination_index=ci,
            interpretation=self.interpret_combination_index(ci),
            synergy_strength=strength,
        )

    def generate_interaction_report(self, selected: Iterable[str]) -> InteractionReport:
        pairs = list(self._found_pairs(selected))
        synergies = {pair_key(a, b): self.process_interaction(rec) for a, b, rec in pairs}

        recommendations = []
        for a, b, _ in pairs:
            s = synergies[pair_key(a, b)]
            if s.significance == "high" and s.factor > 2:
                recommendations.append(InteractionRecommendation(
                    type="optimization",
                    message=f"Strong synergy between {a} and {b}: {s.mechanism}",
                    action="Consider prioritizing this combination for maximum benefit",
                ))
            if s.combination_index is not None and s.combination_index < 0.3:
                recommendations.append(InteractionRecommendation(
                    type="synergy",
                    message=f"Very strong synergistic interaction: {a} and {b}",
                    action="Excellent combination - maintain both components",
                ))

        return InteractionReport(
            total_interactions=len(synergies),
            overall_synergy_factor=round_half_up(self.calculate_overall_synergy_factor(synergies), 2),
            significant_interactions=sum(1 for s in synergies.values() if s.significance == "high"),
            interactions=synergies,
            recommendations=tuple(recommendations),
        )
