"""Services, the Route or Ingress, and network policies of an instance."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from . import constants as C
from . import merge as M
from . import resources
from .kube import ResourceKind, new_object, stub_of
from .model import Readiness, ServiceSpecs, TLSConfig

logger = logging.getLogger(__name__)


@dataclass
class ExposureResult:
    readiness: Readiness
    specs: ServiceSpecs = field(default_factory=ServiceSpecs)
    message: str = ""


def service_merge(desired: Dict[str, Any]):
    """Merge function for a Service that keeps fields allocated by the cluster."""
    def merge(live):
        service = M.start_from(live, desired)
        metadata = desired["metadata"]
        M.merge_labels_and_annotations(service["metadata"], metadata.get("labels"), metadata.get("annotations"))
        spec = service.setdefault("spec", {})
        for key in ("type", "selector", "ports"):
            spec[key] = desired["spec"][key]
        return service
    return merge


def route_merge(desired: Dict[str, Any]):
    """Merge function for a Route; the host assigned by the router is kept."""
    def merge(live):
        route = M.replace_fields(desired, "spec")(live)
        live_host = ((live or {}).get("spec") or {}).get("host")
        if live_host and not desired["spec"].get("host"):
            route["spec"]["host"] = live_host
        return route
    return merge


def route_host(route: Optional[Dict[str, Any]]) -> Optional[str]:
    if route is None:
        return None
    for ingress in (route.get("status") or {}).get("ingress") or []:
        if ingress.get("host"):
            return ingress["host"]
    return (route.get("spec") or {}).get("host") or None


def ingress_url(ingress: Dict[str, Any]) -> Optional[str]:
    spec = ingress.get("spec") or {}
    rules = spec.get("rules") or []
    if not rules or not rules[0].get("host"):
        return None
    scheme = "https" if spec.get("tls") else "http"
    return f"{scheme}://{rules[0]['host']}"


class Exposure:
    """Makes the core reachable and restricts traffic between components."""

    def __init__(self, client, applier, openshift: bool = False):
        self.client = client
        self.applier = applier
        self.openshift = openshift

    def reconcile(self, instance, tls: Optional[TLSConfig], log: Optional[logging.LoggerAdapter] = None) -> ExposureResult:
        log = log or logger
        for service in (
            resources.build_core_service(instance),
            resources.build_database_service(instance),
            resources.build_storage_service(instance),
        ):
            self.applier.apply(stub_of(service), service_merge(service), owner=instance, log=log)

        specs = ServiceSpecs()
        if resources.report_replicas(instance) > 0:
            specs.reports_url = resources.service_url(
                f"{instance.name}-reports", instance.install_namespace, C.REPORTS_PORT, tls is not None
            )

        if self.openshift:
            route = resources.build_route(instance, tls)
            result = self.applier.apply(stub_of(route), route_merge(route), owner=instance, log=log)
            host = route_host(result.object)
            if host is None:
                log.info(f"Route {instance.name} has no host yet")
                return ExposureResult(Readiness.NOT_READY, specs, message="Waiting for the route to be assigned a host")
            specs.core_url = f"https://{host}"
        elif resources.ingress_spec(instance) is not None:
            ingress = resources.build_ingress(instance)
            result = self.applier.apply(stub_of(ingress), M.replace_fields(ingress, "spec"), owner=instance, log=log)
            specs.core_url = ingress_url(result.object)
        else:
            self.applier.delete(
                new_object(ResourceKind.INGRESS, instance.name, instance.install_namespace), owner=instance, log=log
            )

        self.reconcile_network_policies(instance, log)
        return ExposureResult(Readiness.READY, specs)

    def reconcile_network_policies(self, instance, log: Optional[logging.LoggerAdapter] = None) -> None:
        log = log or logger
        core = resources.COMPONENT_CORE
        policies = (
            ("coreConfig", core, C.CORE_HTTP_PORT, None),
            ("reportsConfig", resources.COMPONENT_REPORTS, C.REPORTS_PORT, core),
            ("databaseConfig", resources.COMPONENT_DATABASE, C.DATABASE_PORT, core),
            ("storageConfig", resources.COMPONENT_STORAGE, C.STORAGE_PORT, core),
        )
        for key, component, port, source in policies:
            policy = resources.build_network_policy(instance, component, port, source)
            if resources.network_policy_disabled(instance, key):
                self.applier.delete(stub_of(policy), owner=instance, log=log)
            else:
                self.applier.apply(stub_of(policy), M.replace_fields(policy, "spec"), owner=instance, log=log)
