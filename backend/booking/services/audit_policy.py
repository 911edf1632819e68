from __future__ import annotations

from typing import Any, Dict, Optional, Set

RESOURCE_METADATA_KEYS: Dict[str, Set[str]] = {
    "appointment": {
        "patient_ref",
        "practitioner_id",
        "status",
        "previous_status",
        "start_utc",
        "end_utc",
        "reason",
        "fields",
    },
}

ACTION_METADATA_KEYS: Dict[str, Set[str]] = {
    "appointment.reschedule": {"previous_start", "previous_end", "rescheduled_count"},
    "appointment.cancel": {"reminders_cancelled"},
}


def _allowed_keys(resource_type: str, action: str) -> Set[str]:
    allowed = set(RESOURCE_METADATA_KEYS.get(resource_type, set()))
    allowed.update(ACTION_METADATA_KEYS.get(action, set()))
    return allowed


def sanitize_metadata(
    resource_type: str,
    action: str,
    metadata: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    if not metadata:
        return {}

    allowed = _allowed_keys(resource_type, action)
    sanitized: Dict[str, Any] = {}
    for key, value in metadata.items():
        if key not in allowed:
            raise ValueError(
                f"Audit metadata key '{key}' is not allowed for action '{action}' on '{resource_type}'"
            )
        if value is not None:
            sanitized[key] = value
    return sanitized


def make_patient_reference(patient_id: str) -> str:
    return f"patient:{patient_id}"


def ensure_appointment_metadata(
    *,
    patient_id: Optional[str] = None,
    reason: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {}
    if patient_id is not None:
        metadata["patient_ref"] = make_patient_reference(patient_id)
    if reason is not None:
        metadata["reason"] = reason
    if extra:
        metadata.update(extra)
    return metadata
