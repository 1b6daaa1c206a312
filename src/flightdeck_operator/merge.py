"""Pure helpers used by merge functions to compute desired objects from live ones."""

import base64
import copy
import hashlib
from typing import Any, Dict, Optional, Tuple

from . import constants as C


def start_from(live: Optional[Dict[str, Any]], stub: Dict[str, Any]) -> Dict[str, Any]:
    """Return a mutable copy of the live object, or of the stub when creating."""
    return copy.deepcopy(live if live is not None else stub)


def merge_labels_and_annotations(
    metadata: Dict[str, Any],
    labels: Optional[Dict[str, str]] = None,
    annotations: Optional[Dict[str, str]] = None,
) -> None:
    """Merge labels and annotations into metadata, preferring the given values."""
    # Empty maps are left out, as the API server omits them
    for key, values in (("labels", labels), ("annotations", annotations)):
        merged = dict(metadata.get(key) or {})
        merged.update(values or {})
        if merged:
            metadata[key] = merged


def replace_fields(desired: Dict[str, Any], *fields: str):
    """Merge function taking the given top-level fields from desired.

    Labels and annotations are merged so that ones added by others survive.
    """
    def merge(live: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        obj = start_from(live, desired)
        for name in fields:
            if name in desired:
                obj[name] = copy.deepcopy(desired[name])
        metadata = desired.get("metadata", {})
        merge_labels_and_annotations(obj["metadata"], metadata.get("labels"), metadata.get("annotations"))
        return obj
    return merge


def encode_data(values: Dict[str, str]) -> Dict[str, str]:
    """Base64 encode secret values the way the API server stores them."""
    return {k: base64.b64encode(v.encode("utf-8")).decode("ascii") for k, v in values.items()}


def encode_bytes(values: Dict[str, bytes]) -> Dict[str, str]:
    return {k: base64.b64encode(v).decode("ascii") for k, v in values.items()}


def decode_data(secret: Dict[str, Any], key: str) -> bytes:
    value = (secret.get("data") or {}).get(key)
    if value is None:
        return b""
    return base64.b64decode(value)


def owner_reference(owner) -> Dict[str, Any]:
    """Build a controller owner reference to the given instance."""
    return {
        "apiVersion": owner.api_version,
        "kind": owner.kind,
        "name": owner.name,
        "uid": owner.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def controller_of(obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for ref in obj.get("metadata", {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


def is_controlled_by(obj: Dict[str, Any], owner) -> bool:
    ref = controller_of(obj)
    return ref is not None and ref.get("uid") == owner.uid


def set_controller_reference(obj: Dict[str, Any], owner) -> None:
    """Make the owner the controller of obj, keeping other owner references."""
    metadata = obj.setdefault("metadata", {})
    refs = [
        ref for ref in metadata.get("ownerReferences") or []
        if not ref.get("controller") and ref.get("uid") != owner.uid
    ]
    refs.append(owner_reference(owner))
    metadata["ownerReferences"] = refs


def tracking_labels(owner) -> Dict[str, str]:
    """Labels identifying the instance that manages an unownable object."""
    return {
        C.TRACKING_LABEL_NAME: owner.name,
        C.TRACKING_LABEL_NAMESPACE: owner.install_namespace,
        C.TRACKING_LABEL_KIND: owner.kind,
    }


def tracked_by(obj: Dict[str, Any]) -> Optional[Tuple[str, str, str]]:
    """Return (kind, name, namespace) from an object's tracking labels, if any."""
    labels = obj.get("metadata", {}).get("labels") or {}
    if C.TRACKING_LABEL_NAME not in labels:
        return None
    return (
        labels.get(C.TRACKING_LABEL_KIND, ""),
        labels[C.TRACKING_LABEL_NAME],
        labels.get(C.TRACKING_LABEL_NAMESPACE, ""),
    )


def tracking_selector(owner) -> str:
    """Label selector matching every object tracked by the owner."""
    return ",".join(f"{k}={v}" for k, v in sorted(tracking_labels(owner).items()))


def cluster_unique_name(kind: str, name: str, namespace: str, *extra: str) -> str:
    """Name for an object that must be unique per (kind, namespace, name) across the cluster."""
    key = "/".join((namespace, name) + extra)
    suffix = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return f"{kind.lower()}-{suffix}"
