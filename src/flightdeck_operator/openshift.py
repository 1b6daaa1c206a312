"""OpenShift specific objects: console link, API server CORS origins and fsGroup."""

import logging
import re
from typing import Optional

from . import constants as C
from . import merge as M
from . import resources
from .kube import ResourceKind, new_object, stub_of

logger = logging.getLogger(__name__)

API_SERVER_NAME = "cluster"


def _api_server_stub():
    return new_object(ResourceKind.API_SERVER, API_SERVER_NAME)


def console_link_name(instance) -> str:
    return M.cluster_unique_name(instance.kind, instance.name, instance.install_namespace)


def cors_origin(url: str) -> str:
    """CORS allowed origins are regular expressions."""
    return re.escape(url)


def get_fs_group(instance, client, openshift: bool) -> int:
    """fsGroup for pods, from the namespace's supplemental groups on OpenShift."""
    if not openshift:
        return C.DEFAULT_FS_GROUP
    namespace = client.get(ResourceKind.NAMESPACE, instance.install_namespace)
    annotation = ((namespace or {}).get("metadata", {}).get("annotations") or {}).get(
        C.SUPPLEMENTAL_GROUPS_ANNOTATION
    )
    if annotation:
        # Either "<start>/<size>" or "<start>-<end>"
        match = re.match(r"\s*(\d+)", annotation)
        if match:
            return int(match.group(1))
        logger.warning(f"Could not parse {C.SUPPLEMENTAL_GROUPS_ANNOTATION}={annotation!r}")
    return C.DEFAULT_FS_GROUP


class OpenShiftExtras:
    def __init__(self, client, applier):
        self.client = client
        self.applier = applier

    def reconcile(self, instance, url: Optional[str], log: Optional[logging.LoggerAdapter] = None) -> None:
        log = log or logger
        link = resources.build_console_link(instance, console_link_name(instance), url or "")
        if url:
            self.applier.apply(stub_of(link), M.replace_fields(link, "spec"), owner=instance, log=log)
            self._add_cors_origin(url, log)
        else:
            self.applier.delete(stub_of(link), owner=instance, log=log)

    def finalize(self, instance, log: Optional[logging.LoggerAdapter] = None) -> None:
        log = log or logger
        self.applier.delete(
            new_object(ResourceKind.CONSOLE_LINK, console_link_name(instance)), owner=instance, log=log
        )
        url = instance.status.get("applicationUrl")
        if url:
            self._remove_cors_origin(url, log)
        else:
            log.info("No application URL to remove from the APIServer CORS allowed origins")

    def _add_cors_origin(self, url: str, log) -> None:
        origin = cors_origin(url)

        def merge(live):
            api_server = M.start_from(live, _api_server_stub())
            origins = api_server.setdefault("spec", {}).setdefault("additionalCORSAllowedOrigins", [])
            if origin not in origins:
                origins.append(origin)
            return api_server

        self._update_api_server(merge, log)

    def _remove_cors_origin(self, url: str, log) -> None:
        origin = cors_origin(url)

        def merge(live):
            api_server = M.start_from(live, _api_server_stub())
            spec = api_server.setdefault("spec", {})
            origins = spec.get("additionalCORSAllowedOrigins") or []
            if origin in origins:
                spec["additionalCORSAllowedOrigins"] = [o for o in origins if o != origin]
            return api_server

        self._update_api_server(merge, log)

    def _update_api_server(self, merge, log) -> None:
        # The APIServer config belongs to the cluster and is never created or owned here
        if self.client.get(ResourceKind.API_SERVER, API_SERVER_NAME) is None:
            log.warning(f"APIServer {API_SERVER_NAME} not found, skipping CORS configuration")
            return
        self.applier.apply(_api_server_stub(), merge, log=log)
