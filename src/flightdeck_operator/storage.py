"""Persistent volume claims for the database and object storage."""

import copy
import logging
from typing import Any, Dict, Optional

from kubernetes.client.rest import ApiException

from . import constants as C
from . import merge as M
from . import resources
from .kube import stub_of

logger = logging.getLogger(__name__)


def pvc_merge(desired: Dict[str, Any]):
    """Merge function for a PersistentVolumeClaim.

    Only the storage request can change after creation, which lets a claim
    be expanded.
    """
    def merge(live):
        if live is None:
            return copy.deepcopy(desired)
        pvc = M.start_from(live, desired)
        metadata = desired["metadata"]
        M.merge_labels_and_annotations(pvc["metadata"], metadata.get("labels"), metadata.get("annotations"))
        requests = desired["spec"]["resources"]["requests"]
        pvc.setdefault("spec", {}).setdefault("resources", {})["requests"] = copy.deepcopy(requests)
        return pvc
    return merge


def reconcile_pvcs(instance, applier, recorder, log: Optional[logging.LoggerAdapter] = None) -> None:
    """Create or update the database and storage claims, unless emptyDir is used."""
    log = log or logger
    if resources.uses_empty_dir(instance):
        log.debug(f"{instance.kind} {instance.name} uses emptyDir, skipping persistent volume claims")
        return

    for component in (resources.COMPONENT_DATABASE, resources.COMPONENT_STORAGE):
        desired = resources.build_pvc(instance, component)
        try:
            applier.apply(stub_of(desired), pvc_merge(desired), owner=instance, log=log)
        except ApiException as e:
            if e.status == 422:
                message = (
                    f"PersistentVolumeClaim {desired['metadata']['name']} is invalid, "
                    f"it may not support resizing: {e.reason}"
                )
                log.error(message)
                recorder.warning(instance, C.EVENT_PVC_INVALID, message)
            raise
