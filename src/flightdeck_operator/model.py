"""Kind-agnostic view over Flightdeck and ClusterFlightdeck resources."""

import copy
import enum
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import constants as C
from .errors import InvalidSpecError
from .kube import ResourceKind


class Instance:
    """One Flightdeck installation, regardless of the custom resource kind.

    Build one with ``from_namespaced`` or ``from_cluster`` at the boundary.
    Nothing downstream needs to know which kind it came from.
    """

    def __init__(
        self,
        body: Dict[str, Any],
        resource_kind: ResourceKind,
        install_namespace: str,
        target_namespaces: List[str],
        spec: Dict[str, Any],
    ):
        self.object = body
        self.resource_kind = resource_kind
        self.install_namespace = install_namespace
        self.target_namespaces = list(dict.fromkeys(target_namespaces))
        self.spec = spec
        self.object.setdefault("status", {})

    @classmethod
    def from_namespaced(cls, body: Dict[str, Any]) -> "Instance":
        """Create an Instance from a namespace-scoped Flightdeck."""
        body = copy.deepcopy(dict(body))
        namespace = body["metadata"]["namespace"]
        spec = body.setdefault("spec", {})
        targets = spec.get("targetNamespaces") or [namespace]
        return cls(body, ResourceKind.FLIGHTDECK, namespace, targets, spec)

    @classmethod
    def from_cluster(cls, body: Dict[str, Any]) -> "Instance":
        """Create an Instance from a cluster-scoped ClusterFlightdeck."""
        body = copy.deepcopy(dict(body))
        spec = body.setdefault("spec", {})
        if not spec.get("installNamespace"):
            raise InvalidSpecError(f"{C.CLUSTER_KIND} {body['metadata']['name']} has no spec.installNamespace")
        return cls(
            body,
            ResourceKind.CLUSTER_FLIGHTDECK,
            spec["installNamespace"],
            spec.get("targetNamespaces") or [],
            spec,
        )

    @property
    def name(self) -> str:
        return self.object["metadata"]["name"]

    @property
    def kind(self) -> str:
        return self.resource_kind.value

    @property
    def api_version(self) -> str:
        return self.object.get("apiVersion", f"{C.API_GROUP}/{C.API_VERSION}")

    @property
    def uid(self) -> str:
        return self.object["metadata"].get("uid", "")

    @property
    def namespace(self) -> Optional[str]:
        """Namespace of the custom resource itself (None when cluster-scoped)."""
        return self.object["metadata"].get("namespace")

    @property
    def resource_version(self) -> Optional[str]:
        return self.object["metadata"].get("resourceVersion")

    @property
    def status(self) -> Dict[str, Any]:
        return self.object["status"]

    @property
    def conditions(self) -> List[Dict[str, Any]]:
        return self.status.setdefault("conditions", [])

    @property
    def target_namespace_status(self) -> List[str]:
        """Namespaces set up by the last fully successful reconcile."""
        return list(self.status.get("targetNamespaces") or [])

    def commit_target_namespaces(self) -> None:
        """Record the desired target namespaces as successfully applied."""
        self.status["targetNamespaces"] = list(self.target_namespaces)

    @property
    def finalizers(self) -> List[str]:
        return list(self.object["metadata"].get("finalizers") or [])

    @property
    def deleting(self) -> bool:
        return bool(self.object["metadata"].get("deletionTimestamp"))

    @property
    def minimal(self) -> bool:
        return bool(self.spec.get("minimal"))

    def refresh(self, body: Dict[str, Any]) -> None:
        """Take metadata and status from a response, keeping the local spec."""
        self.object["metadata"] = copy.deepcopy(body["metadata"])
        if "status" in body:
            self.object["status"] = copy.deepcopy(body["status"])
        self.object.setdefault("status", {})

    def __repr__(self):
        return f"<{self.kind} {self.install_namespace}/{self.name}>"


@dataclass
class TLSConfig:
    """Secret names and CA bytes produced by one TLS bootstrap pass."""

    core_secret: str
    reports_secret: str
    keystore_pass_secret: str
    ca_cert: bytes = b""
    grafana_secret: Optional[str] = None
    # Target namespace -> name of the agent certificate secret
    agent_secrets: Dict[str, str] = field(default_factory=dict)


@dataclass
class ImageTags:
    core: str
    datasource: str
    grafana: str
    reports: str
    database: str
    storage: str


def get_env_or_default(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


def get_image_tags() -> ImageTags:
    """Read image references from the environment, falling back to defaults."""
    return ImageTags(
        core=get_env_or_default(C.CORE_IMAGE_ENV, C.DEFAULT_CORE_IMAGE),
        datasource=get_env_or_default(C.DATASOURCE_IMAGE_ENV, C.DEFAULT_DATASOURCE_IMAGE),
        grafana=get_env_or_default(C.GRAFANA_IMAGE_ENV, C.DEFAULT_GRAFANA_IMAGE),
        reports=get_env_or_default(C.REPORTS_IMAGE_ENV, C.DEFAULT_REPORTS_IMAGE),
        database=get_env_or_default(C.DATABASE_IMAGE_ENV, C.DEFAULT_DATABASE_IMAGE),
        storage=get_env_or_default(C.STORAGE_IMAGE_ENV, C.DEFAULT_STORAGE_IMAGE),
    )


@dataclass
class ServiceSpecs:
    """URLs discovered while exposing services."""

    core_url: Optional[str] = None
    reports_url: Optional[str] = None


class Readiness(enum.Enum):
    """Outcome of a step that waits on another controller."""

    READY = "ready"
    NOT_READY = "not-ready"
    UNAVAILABLE = "unavailable"


@dataclass
class Result:
    """Outcome of one reconcile invocation."""

    requeue_after: Optional[float] = None
    message: str = ""

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None
