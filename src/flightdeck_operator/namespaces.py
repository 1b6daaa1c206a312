"""Tracking of the target namespaces an instance has set up."""

from typing import List

from . import merge as M
from .kube import ResourceKind


def applied_namespaces(instance, client) -> List[str]:
    """Namespaces that may still hold objects for the instance.

    This is the set recorded in status by the last successful pass, plus any
    namespace where a tracked role binding or secret is found. The second
    part covers passes that created objects but failed before status was
    written.
    """
    namespaces = set(instance.target_namespace_status)
    selector = M.tracking_selector(instance)
    for kind in (ResourceKind.ROLE_BINDING, ResourceKind.SECRET):
        for obj in client.list(kind, selector):
            namespace = obj["metadata"].get("namespace")
            if namespace:
                namespaces.add(namespace)
    return sorted(namespaces)


def stale_namespaces(instance, client) -> List[str]:
    """Namespaces set up before that are no longer targeted."""
    current = set(instance.target_namespaces)
    return [ns for ns in applied_namespaces(instance, client) if ns not in current]
