"""Convergence of Deployments, recreating them when their selector changed."""

import copy
import logging
from typing import Any, Dict, Optional

from . import merge as M
from .applier import ApplyResult, Operation
from .errors import ImmutableFieldConflict, RecreateIncompleteError
from .kube import ResourceKind, new_object, stub_of

logger = logging.getLogger(__name__)


def deployment_merge(desired: Dict[str, Any]):
    """Merge function for a Deployment.

    The selector is only written on creation. Replicas, strategy and the pod
    template spec always come from desired; metadata of the Deployment and of
    the pod template is merged.
    """
    def merge(live):
        if live is None:
            return copy.deepcopy(desired)
        wanted = desired["spec"]
        if (live.get("spec") or {}).get("selector") != wanted["selector"]:
            raise ImmutableFieldConflict("spec.selector")

        deployment = M.start_from(live, desired)
        metadata = desired["metadata"]
        M.merge_labels_and_annotations(deployment["metadata"], metadata.get("labels"), metadata.get("annotations"))

        spec = deployment["spec"]
        spec["replicas"] = wanted["replicas"]
        spec["strategy"] = copy.deepcopy(wanted["strategy"])
        template = spec.setdefault("template", {})
        template_metadata = wanted["template"].get("metadata") or {}
        M.merge_labels_and_annotations(
            template.setdefault("metadata", {}),
            template_metadata.get("labels"),
            template_metadata.get("annotations"),
        )
        template["spec"] = copy.deepcopy(wanted["template"]["spec"])
        return deployment
    return merge


class DeploymentConvergence:
    def __init__(self, applier):
        self.applier = applier

    def converge(self, instance, desired: Dict[str, Any], log: Optional[logging.LoggerAdapter] = None) -> ApplyResult:
        """Apply a Deployment, deleting and recreating it if its selector was modified."""
        log = log or logger
        stub = stub_of(desired)
        result = self.applier.apply(stub, deployment_merge(desired), owner=instance, log=log)
        if result.operation is not Operation.IMMUTABLE_CONFLICT:
            return result

        log.info(f"Deployment {desired['metadata']['name']} has a modified selector, recreating it")
        self.applier.delete(stub, owner=instance, log=log)
        result = self.applier.apply(stub, deployment_merge(desired), owner=instance, log=log)
        if result.operation is Operation.IMMUTABLE_CONFLICT:
            metadata = desired["metadata"]
            raise RecreateIncompleteError("Deployment", metadata["name"], metadata["namespace"], "spec.selector")
        return result

    def delete(self, instance, name: str, log: Optional[logging.LoggerAdapter] = None) -> None:
        self.applier.delete(
            new_object(ResourceKind.DEPLOYMENT, name, instance.install_namespace), owner=instance, log=log
        )
