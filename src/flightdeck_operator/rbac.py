"""Service account, roles and bindings of an instance across its target namespaces."""

import json
import logging
from typing import Any, Dict, Iterable, Optional

from . import constants as C
from . import merge as M
from . import resources
from .applier import Operation
from .errors import ImmutableFieldConflict, RecreateIncompleteError
from .kube import ResourceKind, new_object, stub_of

logger = logging.getLogger(__name__)

RBAC_API_GROUP = "rbac.authorization.k8s.io"

# Permissions the core needs inside its own namespace
LOCAL_ROLE_RULES = [
    {"apiGroups": [""], "resources": ["endpoints"], "verbs": ["get", "list", "watch"]},
    {"apiGroups": [""], "resources": ["pods", "replicationcontrollers"], "verbs": ["get"]},
    {"apiGroups": ["apps"], "resources": ["replicasets", "deployments", "daemonsets", "statefulsets"], "verbs": ["get"]},
    {"apiGroups": ["route.openshift.io"], "resources": ["routes"], "verbs": ["get", "list"]},
]


def local_binding_name(instance) -> str:
    return f"{instance.name}-local"


def cluster_role_binding_name(instance) -> str:
    return M.cluster_unique_name(instance.kind, instance.name, instance.install_namespace)


def _subjects(instance):
    return [{"kind": "ServiceAccount", "name": instance.name, "namespace": instance.install_namespace}]


def build_service_account(instance, openshift: bool) -> Dict[str, Any]:
    account = new_object(ResourceKind.SERVICE_ACCOUNT, instance.name, instance.install_namespace)
    account["metadata"]["labels"] = resources.build_labels(instance.name, resources.COMPONENT_CORE)
    if openshift:
        reference = {
            "kind": "OAuthRedirectReference",
            "apiVersion": "v1",
            "reference": {"kind": "Route", "name": instance.name},
        }
        account["metadata"]["annotations"] = {C.OAUTH_REDIRECT_ANNOTATION: json.dumps(reference)}
    return account


def build_role(instance) -> Dict[str, Any]:
    role = new_object(ResourceKind.ROLE, instance.name, instance.install_namespace)
    role["metadata"]["labels"] = resources.build_labels(instance.name, resources.COMPONENT_CORE)
    role["rules"] = LOCAL_ROLE_RULES
    return role


def build_local_role_binding(instance) -> Dict[str, Any]:
    binding = new_object(ResourceKind.ROLE_BINDING, local_binding_name(instance), instance.install_namespace)
    binding["subjects"] = _subjects(instance)
    binding["roleRef"] = {"apiGroup": RBAC_API_GROUP, "kind": "Role", "name": instance.name}
    return binding


def build_role_binding(instance, namespace: str) -> Dict[str, Any]:
    """RoleBinding granting the service account access to one target namespace."""
    binding = new_object(ResourceKind.ROLE_BINDING, instance.name, namespace)
    binding["subjects"] = _subjects(instance)
    binding["roleRef"] = {"apiGroup": RBAC_API_GROUP, "kind": "ClusterRole", "name": C.NAMESPACED_CLUSTER_ROLE_NAME}
    return binding


def build_cluster_role_binding(instance) -> Dict[str, Any]:
    binding = new_object(ResourceKind.CLUSTER_ROLE_BINDING, cluster_role_binding_name(instance))
    binding["subjects"] = _subjects(instance)
    binding["roleRef"] = {"apiGroup": RBAC_API_GROUP, "kind": "ClusterRole", "name": C.CLUSTER_ROLE_NAME}
    return binding


def binding_merge(desired: Dict[str, Any]):
    """Merge function for (Cluster)RoleBindings.

    Subjects are always rewritten. roleRef cannot be changed in place, so a
    different live roleRef raises ImmutableFieldConflict.
    """
    def merge(live):
        if live is not None and live.get("roleRef") != desired["roleRef"]:
            raise ImmutableFieldConflict("roleRef")
        return M.replace_fields(desired, "subjects", "roleRef")(live)
    return merge


class RBACReconciler:
    """Keeps RBAC objects in step with the set of target namespaces."""

    def __init__(self, client, applier, openshift: bool = False):
        self.client = client
        self.applier = applier
        self.openshift = openshift

    def reconcile(self, instance, stale: Iterable[str], log: Optional[logging.LoggerAdapter] = None) -> None:
        log = log or logger
        account = build_service_account(instance, self.openshift)
        self.applier.apply(stub_of(account), M.replace_fields(account), owner=instance, log=log)

        role = build_role(instance)
        self.applier.apply(stub_of(role), M.replace_fields(role, "rules"), owner=instance, log=log)
        self._apply_binding(build_local_role_binding(instance), instance, log)

        for namespace in instance.target_namespaces:
            self._apply_binding(build_role_binding(instance, namespace), instance, log)
        self.cleanup_namespaces(instance, stale, log)

        self._apply_binding(build_cluster_role_binding(instance), instance, log)

    def cleanup_namespaces(self, instance, namespaces: Iterable[str], log: Optional[logging.LoggerAdapter] = None) -> None:
        """Delete the role bindings of namespaces the instance no longer targets."""
        log = log or logger
        for namespace in namespaces:
            self.applier.delete(
                new_object(ResourceKind.ROLE_BINDING, instance.name, namespace), owner=instance, log=log
            )

    def finalize(self, instance, namespaces: Iterable[str], log: Optional[logging.LoggerAdapter] = None) -> None:
        """Delete the cluster role binding and every per-namespace role binding."""
        log = log or logger
        self.applier.delete(
            new_object(ResourceKind.CLUSTER_ROLE_BINDING, cluster_role_binding_name(instance)),
            owner=instance,
            log=log,
        )
        self.cleanup_namespaces(instance, namespaces, log)

    def _apply_binding(self, desired: Dict[str, Any], instance, log):
        stub = stub_of(desired)
        result = self.applier.apply(stub, binding_merge(desired), owner=instance, log=log)
        if result.operation is Operation.IMMUTABLE_CONFLICT:
            log.info(f"Recreating {desired['kind']} {desired['metadata']['name']} with a new roleRef")
            self.applier.delete(stub, owner=instance, log=log)
            result = self.applier.apply(stub, binding_merge(desired), owner=instance, log=log)
            if result.operation is Operation.IMMUTABLE_CONFLICT:
                metadata = desired["metadata"]
                raise RecreateIncompleteError(desired["kind"], metadata["name"], metadata.get("namespace"), "roleRef")
        return result
