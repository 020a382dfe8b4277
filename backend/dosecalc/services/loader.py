# dosecalc/services/loader.py
"""
Reference data loader.

Reads components, interactions and stage protocols from a directory or an
HTTP base URL, validates them and caches one immutable ReferenceData.
Schema or cross-reference problems raise ValidationFailed; softer findings
are logged as warnings.
"""
import json
import logging
import os
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

import requests
from pydantic import ValidationError

from dosecalc import config
from dosecalc.errors import NotFound, NotInitialized, ValidationFailed
from dosecalc.schemas import (
    Component,
    Interaction,
    MonitoringTimepoint,
    ReferenceData,
    Stage,
    StageComponents,
)
from dosecalc.services.interactions import PAIR_SEPARATOR, pair_key
from dosecalc.services.validation import STAGE_IDS, data_warnings

log = logging.getLogger("loader")


def _pydantic_errors(prefix: str, exc: ValidationError) -> List[str]:
    out = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        out.append(f"{prefix}: {loc} {err['msg']}" if loc else f"{prefix}: {err['msg']}")
    return out


def _section(data: Any, key: str) -> Optional[Mapping[str, Any]]:
    if isinstance(data, Mapping) and isinstance(data.get(key), Mapping):
        return data[key]
    return None


def parse_reference_data(components_data: Any, interactions_data: Any,
                         stages_data: Any) -> Tuple[ReferenceData, List[str]]:
    """
    Build ReferenceData from the three parsed JSON documents.

    Returns the data and a list of non-fatal warnings. Raises
    ValidationFailed with every error found.
    """
    errors = []

    # components
    components = {}
    raw_components = _section(components_data, "components")
    if raw_components is None:
        errors.append("Components data must contain a components object")
    else:
        for cid, rec in raw_components.items():
            if not isinstance(rec, Mapping):
                errors.append(f"Component {cid}: record must be an object")
                continue
            try:
                components[cid] = Component.model_validate({**rec, "id": cid})
            except ValidationError as e:
                errors.extend(_pydantic_errors(f"Component {cid}", e))

    # interactions
    interactions = {}
    raw_interactions = _section(interactions_data, "drugInteractions")
    if raw_interactions is None:
        errors.append("Interactions data must contain drugInteractions object")
    else:
        for key, rec in raw_interactions.items():
            parts = key.split(PAIR_SEPARATOR)
            if len(parts) != 2 or not all(parts) or parts[0] == parts[1]:
                errors.append(f"Interaction {key}: key must join two distinct component ids with '{PAIR_SEPARATOR}'")
                continue
            canonical = pair_key(*parts)
            if canonical in interactions:
                errors.append(f"Interaction {key}: duplicate record for pair {canonical}")
                continue
            if raw_components is not None:
                for cid in parts:
                    if cid not in raw_components:
                        errors.append(f"Interaction {key}: unknown component {cid}")
            try:
                interactions[canonical] = Interaction.model_validate(rec)
            except ValidationError as e:
                errors.extend(_pydantic_errors(f"Interaction {key}", e))

    interpretation = {}
    calc = _section(interactions_data, "synergyCalculation")
    if calc is not None and isinstance(calc.get("interpretation"), Mapping):
        interpretation = {str(k): str(v) for k, v in calc["interpretation"].items()}

    # stages
    stages = {}
    monitoring = {}
    raw_stages = _section(stages_data, "stageProtocols")
    if raw_stages is None:
        errors.append("Stages data must contain stageProtocols object")
    else:
        for sid in STAGE_IDS:
            if sid not in raw_stages:
                errors.append(f"Required stage '{sid}' is missing")
        for sid, rec in raw_stages.items():
            if not isinstance(rec, Mapping):
                errors.append(f"Stage {sid}: record must be an object")
                continue
            try:
                stage = Stage.model_validate({**rec, "id": sid})
            except ValidationError as e:
                errors.extend(_pydantic_errors(f"Stage {sid}", e))
                continue
            stages[sid] = stage
            if raw_components is not None:
                referenced = stage.core_components + stage.optional_components + stage.contraindicated
                for cid in referenced:
                    if cid not in raw_components:
                        errors.append(f"Stage {sid}: unknown component {cid}")

        for point_id, rec in (_section(stages_data, "monitoringSchedule") or {}).items():
            try:
                monitoring[point_id] = MonitoringTimepoint.model_validate(rec)
            except ValidationError as e:
                errors.extend(_pydantic_errors(f"Monitoring {point_id}", e))

    if errors:
        raise ValidationFailed(f"Data validation failed: {len(errors)} error(s), first: {errors[0]}", errors)

    reference_patient = components_data.get("referencePatient") if isinstance(components_data, Mapping) else None
    reference = ReferenceData(
        components=components,
        interactions=interactions,
        stages=stages,
        monitoring_schedule=monitoring,
        ci_interpretation=interpretation,
        reference_patient=reference_patient,
    )
    return reference, data_warnings(reference)


class DataLoader:
    """Loads and caches reference data; hands it to the Calculator."""

    def __init__(self, data_dir: Optional[str] = None, base_url: Optional[str] = None,
                 retries: Optional[int] = None, backoff_seconds: Optional[float] = None,
                 timeout_seconds: Optional[float] = None):
        self.data_dir = str(data_dir or config.DATA_DIR)
        self.base_url = base_url if base_url is not None else config.DATA_URL
        self.retries = retries if retries is not None else config.FETCH_RETRIES
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else config.FETCH_BACKOFF_SECONDS
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else config.FETCH_TIMEOUT_SECONDS
        self._data = None
        self.last_loaded = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_all_data(self) -> ReferenceData:
        log.info("Loading reference data from %s", self.base_url or self.data_dir)
        raw = {name: self._read(filename) for name, filename in config.DATA_FILES.items()}
        return self._install(raw, "Reference data")

    def load_test_data(self, test_data: Mapping[str, Any]) -> ReferenceData:
        """Install in-memory documents with the same validation as files."""
        raw = {name: test_data.get(name) for name in config.DATA_FILES}
        return self._install(raw, "Test data")

    def _install(self, raw: Mapping[str, Any], label: str) -> ReferenceData:
        try:
            data, warnings = parse_reference_data(raw["components"], raw["interactions"], raw["stages"])
        except ValidationFailed as e:
            log.error("%s validation errors: %s", label, e.errors)
            raise
        for w in warnings:
            log.warning("%s: %s", label, w)
        self._data = data
        self.last_loaded = datetime.now()
        log.info("%s loaded and validated", label)
        return data

    def _read(self, filename: str) -> Any:
        if self.base_url:
            url = f"{self.base_url.rstrip('/')}/{filename}"
            return self.fetch_with_retry(url).json()
        path = os.path.join(self.data_dir, filename)
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def fetch_with_retry(self, url: str, retries: Optional[int] = None,
                         delay: Optional[float] = None) -> requests.Response:
        """GET with exponential backoff: delay, 2*delay, 4*delay ..."""
        retries = retries if retries is not None else self.retries
        delay = delay if delay is not None else self.backoff_seconds
        for attempt in range(retries):
            try:
                r = requests.get(url, timeout=self.timeout_seconds)
                r.raise_for_status()
                return r
            except requests.RequestException as e:
                if attempt == retries - 1:
                    raise
                log.warning("Fetch attempt %d failed for %s (%s), retrying...", attempt + 1, url, e)
                time.sleep(delay * 2 ** attempt)
        raise ValueError("retries must be at least 1")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def reference_data(self) -> ReferenceData:
        if self._data is None:
            raise NotInitialized("Reference data not loaded. Call load_all_data() first.")
        return self._data

    def get_component(self, component_id: str) -> Component:
        self.validate_component_exists(component_id)
        return self.reference_data.components[component_id]

    def get_all_component_ids(self) -> List[str]:
        return list(self.reference_data.components)

    def get_components_by_stage(self, stage_id: str) -> StageComponents:
        self.validate_stage_exists(stage_id)
        stage = self.reference_data.stages[stage_id]
        return StageComponents(
            core=stage.core_components,
            optional=stage.optional_components,
            excluded=stage.contraindicated,
        )

    def validate_component_exists(self, component_id: str) -> bool:
        if component_id not in self.reference_data.components:
            raise NotFound(f"Component '{component_id}' not found in data", {"component": component_id})
        return True

    def validate_stage_exists(self, stage_id: str) -> bool:
        if stage_id not in self.reference_data.stages:
            raise NotFound(f"Stage '{stage_id}' not found in data", {"stage": stage_id})
        return True

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def is_data_stale(self, max_age_minutes: Optional[float] = None) -> bool:
        if self.last_loaded is None:
            return True
        max_age = max_age_minutes if max_age_minutes is not None else config.DATA_MAX_AGE_MINUTES
        age_minutes = (datetime.now() - self.last_loaded).total_seconds() / 60
        return age_minutes > max_age

    def refresh_data_if_needed(self, max_age_minutes: Optional[float] = None) -> ReferenceData:
        if self.is_data_stale(max_age_minutes):
            log.info("Reference data is stale, refreshing...")
            return self.load_all_data()
        return self.reference_data

    def clear_cache(self):
        self._data = None
        self.last_loaded = None
        log.info("Reference data cache cleared")

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def get_loaded_data_summary(self) -> Dict[str, Any]:
        if self._data is None:
            return {"loaded": False, "message": "No data loaded"}
        return {
            "loaded": True,
            "last_loaded": self.last_loaded,
            "summary": {
                "components": len(self._data.components),
                "interactions": len(self._data.interactions),
                "stages": len(self._data.stages),
            },
        }

    def get_data_integrity_report(self) -> Dict[str, Any]:
        if self._data is None:
            return {"error": "No data loaded"}
        data = self._data
        now = datetime.now()

        report = {
            "timestamp": now,
            "data_age_seconds": (now - self.last_loaded).total_seconds(),
            "components": {
                "count": len(data.components),
                "invalid_doses": [cid for cid, c in data.components.items() if c.dose_per_kg <= 0],
                "missing_stages": [cid for cid, c in data.components.items() if not c.stages],
            },
            "interactions": {
                "count": len(data.interactions),
                "missing_mechanisms": [k for k, i in data.interactions.items() if not i.mechanism],
                "unusual_factors": [
                    {"id": k, "factor": i.factor}
                    for k, i in data.interactions.items()
                    if i.factor > 5 or i.factor < 0.1
                ],
            },
            "stages": {
                "count": len(data.stages),
                "missing_components": [sid for sid, s in data.stages.items() if not s.core_components],
            },
            "cross_references": {
                "orphaned_interactions": [],
                "unknown_stage_components": [],
            },
        }

        for key in data.interactions:
            for cid in key.split(PAIR_SEPARATOR):
                if cid not in data.components:
                    report["cross_references"]["orphaned_interactions"].append(
                        {"interaction": key, "unknown_component": cid}
                    )
        for sid, stage in data.stages.items():
            for cid in stage.core_components + stage.optional_components:
                if cid not in data.components:
                    report["cross_references"]["unknown_stage_components"].append(
                        {"stage": sid, "unknown_component": cid}
                    )

        return report
