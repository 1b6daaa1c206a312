"""Kubernetes API access for every resource kind the operator manages.

All objects are handled as plain dicts in their JSON (camelCase) form. The
typed client APIs are reached through an explicit dispatch table keyed by
``ResourceKind``, so adding a kind means adding one table entry.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import kubernetes
from kubernetes import client
from kubernetes.client.rest import ApiException

from . import constants as C

logger = logging.getLogger(__name__)


class ResourceKind(enum.Enum):
    """Closed set of kinds the operator reads or writes."""

    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"
    SERVICE = "Service"
    SERVICE_ACCOUNT = "ServiceAccount"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    NAMESPACE = "Namespace"
    DEPLOYMENT = "Deployment"
    ROLE = "Role"
    ROLE_BINDING = "RoleBinding"
    CLUSTER_ROLE_BINDING = "ClusterRoleBinding"
    INGRESS = "Ingress"
    NETWORK_POLICY = "NetworkPolicy"
    ROUTE = "Route"
    ISSUER = "Issuer"
    CERTIFICATE = "Certificate"
    CONSOLE_LINK = "ConsoleLink"
    API_SERVER = "APIServer"
    FLIGHTDECK = C.KIND
    CLUSTER_FLIGHTDECK = C.CLUSTER_KIND


@dataclass(frozen=True)
class KindSpec:
    """How to reach one kind through the Kubernetes client."""

    api_version: str
    namespaced: bool
    # Typed APIs: key into the clients dict and method name suffix
    api: Optional[str] = None
    suffix: Optional[str] = None
    # Custom objects: plural resource name
    plural: Optional[str] = None

    @property
    def custom(self) -> bool:
        return self.plural is not None

    @property
    def group(self) -> str:
        return self.api_version.split("/")[0] if "/" in self.api_version else ""

    @property
    def version(self) -> str:
        return self.api_version.split("/")[-1]


KINDS: Dict[ResourceKind, KindSpec] = {
    ResourceKind.CONFIG_MAP: KindSpec("v1", True, api="core", suffix="config_map"),
    ResourceKind.SECRET: KindSpec("v1", True, api="core", suffix="secret"),
    ResourceKind.SERVICE: KindSpec("v1", True, api="core", suffix="service"),
    ResourceKind.SERVICE_ACCOUNT: KindSpec("v1", True, api="core", suffix="service_account"),
    ResourceKind.PERSISTENT_VOLUME_CLAIM: KindSpec(
        "v1", True, api="core", suffix="persistent_volume_claim"
    ),
    ResourceKind.NAMESPACE: KindSpec("v1", False, api="core", suffix="namespace"),
    ResourceKind.DEPLOYMENT: KindSpec("apps/v1", True, api="apps", suffix="deployment"),
    ResourceKind.ROLE: KindSpec("rbac.authorization.k8s.io/v1", True, api="rbac", suffix="role"),
    ResourceKind.ROLE_BINDING: KindSpec(
        "rbac.authorization.k8s.io/v1", True, api="rbac", suffix="role_binding"
    ),
    ResourceKind.CLUSTER_ROLE_BINDING: KindSpec(
        "rbac.authorization.k8s.io/v1", False, api="rbac", suffix="cluster_role_binding"
    ),
    ResourceKind.INGRESS: KindSpec("networking.k8s.io/v1", True, api="networking", suffix="ingress"),
    ResourceKind.NETWORK_POLICY: KindSpec(
        "networking.k8s.io/v1", True, api="networking", suffix="network_policy"
    ),
    ResourceKind.ROUTE: KindSpec("route.openshift.io/v1", True, plural="routes"),
    ResourceKind.ISSUER: KindSpec(
        f"{C.CERT_MANAGER_GROUP}/{C.CERT_MANAGER_VERSION}", True, plural="issuers"
    ),
    ResourceKind.CERTIFICATE: KindSpec(
        f"{C.CERT_MANAGER_GROUP}/{C.CERT_MANAGER_VERSION}", True, plural="certificates"
    ),
    ResourceKind.CONSOLE_LINK: KindSpec("console.openshift.io/v1", False, plural="consolelinks"),
    ResourceKind.API_SERVER: KindSpec("config.openshift.io/v1", False, plural="apiservers"),
    ResourceKind.FLIGHTDECK: KindSpec(f"{C.API_GROUP}/{C.API_VERSION}", True, plural=C.PLURAL),
    ResourceKind.CLUSTER_FLIGHTDECK: KindSpec(
        f"{C.API_GROUP}/{C.API_VERSION}", False, plural=C.CLUSTER_PLURAL
    ),
}


def kind_of(obj: Dict[str, Any]) -> ResourceKind:
    """Return the ResourceKind of an object from its ``kind`` field."""
    return ResourceKind(obj["kind"])


def new_object(kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
    """Build an identity-only stub for the given kind."""
    metadata = {"name": name}
    if KINDS[kind].namespaced:
        metadata["namespace"] = namespace
    return {
        "apiVersion": KINDS[kind].api_version,
        "kind": kind.value,
        "metadata": metadata,
    }


def stub_of(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Strip an object down to its kind and identity."""
    metadata = obj["metadata"]
    return new_object(kind_of(obj), metadata["name"], metadata.get("namespace"))


def get_k8s_clients() -> Dict[str, Any]:
    """Get Kubernetes API clients."""
    try:
        kubernetes.config.load_incluster_config()
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()

    return {
        "core": client.CoreV1Api(),
        "apps": client.AppsV1Api(),
        "rbac": client.RbacAuthorizationV1Api(),
        "networking": client.NetworkingV1Api(),
        "custom": client.CustomObjectsApi(),
        "apis": client.ApisApi(),
        "api_client": client.ApiClient(),
    }


class KubernetesResourceClient:
    """Uniform dict-based access to the Kubernetes API."""

    def __init__(self, clients: Dict[str, Any]):
        self.clients = clients
        self._timeout = C.API_TIMEOUT_SECONDS

    def _to_dict(self, kind: ResourceKind, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            data = obj
        else:
            data = self.clients["api_client"].sanitize_for_serialization(obj)
        # Typed responses do not carry their own type information
        data.setdefault("apiVersion", KINDS[kind].api_version)
        data.setdefault("kind", kind.value)
        return data

    def _typed(self, spec: KindSpec, verb: str):
        if spec.namespaced:
            method = f"{verb}_namespaced_{spec.suffix}"
        else:
            method = f"{verb}_{spec.suffix}"
        return getattr(self.clients[spec.api], method)

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Fetch an object, returning None if it does not exist."""
        spec = KINDS[kind]
        try:
            if spec.custom:
                custom = self.clients["custom"]
                if spec.namespaced:
                    obj = custom.get_namespaced_custom_object(
                        spec.group, spec.version, namespace, spec.plural, name,
                        _request_timeout=self._timeout,
                    )
                else:
                    obj = custom.get_cluster_custom_object(
                        spec.group, spec.version, spec.plural, name,
                        _request_timeout=self._timeout,
                    )
            elif spec.namespaced:
                obj = self._typed(spec, "read")(name, namespace, _request_timeout=self._timeout)
            else:
                obj = self._typed(spec, "read")(name, _request_timeout=self._timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._to_dict(kind, obj)

    def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        kind = kind_of(body)
        spec = KINDS[kind]
        namespace = body["metadata"].get("namespace")
        if spec.custom:
            custom = self.clients["custom"]
            if spec.namespaced:
                obj = custom.create_namespaced_custom_object(
                    spec.group, spec.version, namespace, spec.plural, body,
                    _request_timeout=self._timeout,
                )
            else:
                obj = custom.create_cluster_custom_object(
                    spec.group, spec.version, spec.plural, body,
                    _request_timeout=self._timeout,
                )
        elif spec.namespaced:
            obj = self._typed(spec, "create")(namespace, body, _request_timeout=self._timeout)
        else:
            obj = self._typed(spec, "create")(body, _request_timeout=self._timeout)
        return self._to_dict(kind, obj)

    def replace(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Replace an object; the body's resourceVersion guards against lost updates."""
        kind = kind_of(body)
        spec = KINDS[kind]
        name = body["metadata"]["name"]
        namespace = body["metadata"].get("namespace")
        if spec.custom:
            custom = self.clients["custom"]
            if spec.namespaced:
                obj = custom.replace_namespaced_custom_object(
                    spec.group, spec.version, namespace, spec.plural, name, body,
                    _request_timeout=self._timeout,
                )
            else:
                obj = custom.replace_cluster_custom_object(
                    spec.group, spec.version, spec.plural, name, body,
                    _request_timeout=self._timeout,
                )
        elif spec.namespaced:
            obj = self._typed(spec, "replace")(name, namespace, body, _request_timeout=self._timeout)
        else:
            obj = self._typed(spec, "replace")(name, body, _request_timeout=self._timeout)
        return self._to_dict(kind, obj)

    def replace_status(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the status subresource of a custom object."""
        kind = kind_of(body)
        spec = KINDS[kind]
        name = body["metadata"]["name"]
        custom = self.clients["custom"]
        if spec.namespaced:
            obj = custom.replace_namespaced_custom_object_status(
                spec.group, spec.version, body["metadata"]["namespace"], spec.plural, name, body,
                _request_timeout=self._timeout,
            )
        else:
            obj = custom.replace_cluster_custom_object_status(
                spec.group, spec.version, spec.plural, name, body,
                _request_timeout=self._timeout,
            )
        return self._to_dict(kind, obj)

    def patch(self, kind: ResourceKind, name: str, namespace: Optional[str], patch: Dict[str, Any]) -> Dict[str, Any]:
        """Merge-patch a custom object."""
        spec = KINDS[kind]
        custom = self.clients["custom"]
        if spec.namespaced:
            obj = custom.patch_namespaced_custom_object(
                spec.group, spec.version, namespace, spec.plural, name, patch,
                _request_timeout=self._timeout,
            )
        else:
            obj = custom.patch_cluster_custom_object(
                spec.group, spec.version, spec.plural, name, patch,
                _request_timeout=self._timeout,
            )
        return self._to_dict(kind, obj)

    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> bool:
        """Delete an object. Returns False if it did not exist."""
        spec = KINDS[kind]
        try:
            if spec.custom:
                custom = self.clients["custom"]
                if spec.namespaced:
                    custom.delete_namespaced_custom_object(
                        spec.group, spec.version, namespace, spec.plural, name,
                        _request_timeout=self._timeout,
                    )
                else:
                    custom.delete_cluster_custom_object(
                        spec.group, spec.version, spec.plural, name,
                        _request_timeout=self._timeout,
                    )
            elif spec.namespaced:
                self._typed(spec, "delete")(
                    name, namespace,
                    body=client.V1DeleteOptions(propagation_policy="Background"),
                    _request_timeout=self._timeout,
                )
            else:
                self._typed(spec, "delete")(name, _request_timeout=self._timeout)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def list(self, kind: ResourceKind, label_selector: str) -> List[Dict[str, Any]]:
        """List objects of a kind across all namespaces matching a label selector."""
        spec = KINDS[kind]
        if spec.custom:
            result = self.clients["custom"].list_cluster_custom_object(
                spec.group, spec.version, spec.plural,
                label_selector=label_selector,
                _request_timeout=self._timeout,
            )
            return [self._to_dict(kind, item) for item in result.get("items", [])]
        api = self.clients[spec.api]
        if spec.namespaced:
            method = getattr(api, f"list_{spec.suffix}_for_all_namespaces")
        else:
            method = getattr(api, f"list_{spec.suffix}")
        result = method(label_selector=label_selector, _request_timeout=self._timeout)
        return [self._to_dict(kind, item) for item in (result.items or [])]

    def crd_installed(self, name: str) -> bool:
        """Check if a CustomResourceDefinition is installed in the cluster."""
        try:
            self.clients["custom"].get_cluster_custom_object(
                "apiextensions.k8s.io", "v1", "customresourcedefinitions", name,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def api_group_available(self, group: str) -> bool:
        """Check if the API server serves the given API group."""
        groups = self.clients["apis"].get_api_versions(_request_timeout=self._timeout)
        return any(g.name == group for g in groups.groups or [])
