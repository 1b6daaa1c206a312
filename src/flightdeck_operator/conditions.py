"""Status conditions of a Flightdeck and their projection from child deployments."""

import datetime
import logging
from typing import Any, Dict, List, Optional

from . import constants as C
from .kube import ResourceKind

logger = logging.getLogger(__name__)

# Condition type on the Flightdeck -> condition type reported by the Deployment
MAIN_DEPLOYMENT_CONDITIONS = {
    C.CONDITION_MAIN_AVAILABLE: "Available",
    C.CONDITION_MAIN_PROGRESSING: "Progressing",
    C.CONDITION_MAIN_REPLICA_FAILURE: "ReplicaFailure",
}

DATABASE_DEPLOYMENT_CONDITIONS = {
    C.CONDITION_DATABASE_AVAILABLE: "Available",
    C.CONDITION_DATABASE_PROGRESSING: "Progressing",
    C.CONDITION_DATABASE_REPLICA_FAILURE: "ReplicaFailure",
}

STORAGE_DEPLOYMENT_CONDITIONS = {
    C.CONDITION_STORAGE_AVAILABLE: "Available",
    C.CONDITION_STORAGE_PROGRESSING: "Progressing",
    C.CONDITION_STORAGE_REPLICA_FAILURE: "ReplicaFailure",
}

REPORTS_DEPLOYMENT_CONDITIONS = {
    C.CONDITION_REPORTS_AVAILABLE: "Available",
    C.CONDITION_REPORTS_PROGRESSING: "Progressing",
    C.CONDITION_REPORTS_REPLICA_FAILURE: "ReplicaFailure",
}


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def find_condition(conditions: List[Dict[str, Any]], condition_type: str) -> Optional[Dict[str, Any]]:
    for condition in conditions:
        if condition.get("type") == condition_type:
            return condition
    return None


def set_condition(
    conditions: List[Dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str = "",
) -> None:
    """Add or replace a condition in place.

    lastTransitionTime only moves when the status changes.
    """
    existing = find_condition(conditions, condition_type)
    if existing is None:
        conditions.append({
            "type": condition_type,
            "status": status,
            "reason": reason,
            "message": message,
            "lastTransitionTime": _now(),
        })
        return
    if existing.get("status") != status:
        existing["lastTransitionTime"] = _now()
    existing["status"] = status
    existing["reason"] = reason
    existing["message"] = message


def remove_condition(conditions: List[Dict[str, Any]], condition_type: str) -> None:
    conditions[:] = [c for c in conditions if c.get("type") != condition_type]


def project_deployment_conditions(
    instance,
    client,
    name: str,
    namespace: str,
    mapping: Dict[str, str],
    log: Optional[logging.LoggerAdapter] = None,
) -> None:
    """Mirror the conditions of a Deployment onto the instance.

    Conditions the Deployment does not report (or all of them, when the
    Deployment does not exist) are removed from the instance rather than
    left describing a component that is gone.
    """
    log = log or logger
    deployment = client.get(ResourceKind.DEPLOYMENT, name, namespace)
    child_conditions = []
    if deployment is not None:
        child_conditions = (deployment.get("status") or {}).get("conditions") or []
    else:
        log.debug(f"Deployment {namespace}/{name} not found, clearing its conditions")

    for condition_type, child_type in mapping.items():
        child = find_condition(child_conditions, child_type)
        if child is None:
            remove_condition(instance.conditions, condition_type)
            continue
        set_condition(
            instance.conditions,
            condition_type,
            child.get("status", "Unknown"),
            child.get("reason") or "",
            child.get("message") or "",
        )


def remove_conditions(instance, mapping: Dict[str, str]) -> None:
    """Drop every condition of a mapping from the instance."""
    for condition_type in mapping:
        remove_condition(instance.conditions, condition_type)
