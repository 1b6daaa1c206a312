"""Reconciliation of one Flightdeck instance.

A pass runs every step in order and is safe to repeat: each step reads the
live state and only writes what differs. The pass either completes, asks to
be retried after a short delay while cert-manager or the router catch up,
or raises.
"""

import copy
import logging
from typing import Optional

from . import conditions as cond
from . import constants as C
from . import merge as M
from . import resources
from .applier import ResourceApplier
from .conflicts import ConflictResolver, EventRecorder
from .credentials import reconcile_credentials
from .deployments import DeploymentConvergence
from .errors import CertManagerUnavailableError
from .exposure import Exposure, service_merge
from .kube import ResourceKind, new_object, stub_of
from .model import Readiness, Result, get_image_tags
from .namespaces import applied_namespaces, stale_namespaces
from .openshift import OpenShiftExtras, get_fs_group
from .rbac import RBACReconciler
from .storage import reconcile_pvcs
from .tls import TLSBootstrapper, tls_enabled

logger = logging.getLogger(__name__)


class Reconciler:
    """Sequences every step of a pass and owns the finalizer."""

    def __init__(self, client, recorder: Optional[EventRecorder] = None, openshift: bool = False):
        self.client = client
        self.recorder = recorder or EventRecorder()
        self.openshift = openshift
        self.applier = ResourceApplier(client)
        self.tls = TLSBootstrapper(client, self.applier)
        self.rbac = RBACReconciler(client, self.applier, openshift)
        self.exposure = Exposure(client, self.applier, openshift)
        self.deployments = DeploymentConvergence(self.applier)
        self.extras = OpenShiftExtras(client, self.applier)
        self.conflicts = ConflictResolver(self.recorder)

    def reconcile(self, instance, log: Optional[logging.LoggerAdapter] = None) -> Result:
        """Run one pass for the instance."""
        log = log or logger
        with self.conflicts.guard(instance, log):
            if instance.deleting:
                return self.finalize(instance, log)
            return self._reconcile(instance, log)

    def finalize(self, instance, log: Optional[logging.LoggerAdapter] = None) -> Result:
        """Delete objects garbage collection cannot reach, then release the instance."""
        log = log or logger
        if C.FINALIZER not in instance.finalizers:
            log.debug(f"{instance.kind} {instance.name} has no finalizer, nothing to clean up")
            return Result(message="Nothing to clean up")

        namespaces = sorted(set(applied_namespaces(instance, self.client)) | set(instance.target_namespaces))
        log.info(f"Cleaning up {instance.kind} {instance.name} in namespaces {', '.join(namespaces)}")
        self.rbac.finalize(instance, namespaces, log)
        self.tls.finalize(instance, namespaces, log)
        if self.openshift:
            self.extras.finalize(instance, log)

        # Only reached when every delete above succeeded
        finalizers = [f for f in instance.finalizers if f != C.FINALIZER]
        self._patch_finalizers(instance, finalizers)
        log.info(f"Removed finalizer from {instance.kind} {instance.name}")
        return Result(message="Cleaned up")

    def _reconcile(self, instance, log) -> Result:
        name = instance.name
        namespace = instance.install_namespace

        if C.FINALIZER not in instance.finalizers:
            self._patch_finalizers(instance, instance.finalizers + [C.FINALIZER])
            log.info(f"Added finalizer to {instance.kind} {name}")

        lock = new_object(ResourceKind.CONFIG_MAP, f"{name}-lock", namespace)
        lock["metadata"]["labels"] = resources.build_labels(name, resources.COMPONENT_CORE)
        self.applier.apply(stub_of(lock), M.replace_fields(lock), owner=instance, log=log)

        reconcile_pvcs(instance, self.applier, self.recorder, log)
        reconcile_credentials(instance, self.applier, log)

        stale = stale_namespaces(instance, self.client)
        if stale:
            log.info(f"Namespaces no longer targeted: {', '.join(stale)}")

        tls_config = None
        if tls_enabled(instance):
            result = self.tls.reconcile(instance, log)
            if result.readiness is Readiness.NOT_READY:
                cond.set_condition(
                    instance.conditions, C.CONDITION_TLS_SETUP_COMPLETE, "False",
                    C.REASON_WAITING_FOR_CERT, result.message,
                )
                self._write_status(instance)
                return Result(requeue_after=C.REQUEUE_DELAY_SECONDS, message=result.message)
            if result.readiness is Readiness.UNAVAILABLE:
                cond.set_condition(
                    instance.conditions, C.CONDITION_TLS_SETUP_COMPLETE, "False",
                    C.REASON_CERT_MANAGER_UNAVAILABLE, result.message,
                )
                self._write_status(instance)
                self.recorder.warning(instance, C.EVENT_CERT_MANAGER_UNAVAILABLE, result.message)
                raise CertManagerUnavailableError(result.message)
            cond.set_condition(
                instance.conditions, C.CONDITION_TLS_SETUP_COMPLETE, "True",
                C.REASON_ALL_CERTS_READY, result.message,
            )
            tls_config = result.config
        else:
            cond.set_condition(
                instance.conditions, C.CONDITION_TLS_SETUP_COMPLETE, "True",
                C.REASON_CERT_MANAGER_DISABLED, "TLS is disabled for this instance",
            )
        self.tls.cleanup_namespaces(instance, stale, log)

        self.rbac.reconcile(instance, stale, log)

        exposure = self.exposure.reconcile(instance, tls_config, log)
        if exposure.readiness is not Readiness.READY:
            cond.set_condition(
                instance.conditions, C.CONDITION_APPLICATION_URL_AVAILABLE, "False",
                C.REASON_WAITING_FOR_ROUTE_HOST, exposure.message,
            )
            self._write_status(instance)
            return Result(requeue_after=C.REQUEUE_DELAY_SECONDS, message=exposure.message)
        specs = exposure.specs
        if specs.core_url:
            cond.set_condition(
                instance.conditions, C.CONDITION_APPLICATION_URL_AVAILABLE, "True",
                C.REASON_URL_ASSIGNED, f"Application is available at {specs.core_url}",
            )
        else:
            cond.remove_condition(instance.conditions, C.CONDITION_APPLICATION_URL_AVAILABLE)

        images = get_image_tags()
        fs_group = get_fs_group(instance, self.client, self.openshift)

        self._reconcile_reports(instance, images, tls_config, log)

        self.deployments.converge(instance, resources.build_database_deployment(instance, images, fs_group), log)
        self.deployments.converge(instance, resources.build_storage_deployment(instance, images, fs_group), log)
        self.deployments.converge(
            instance, resources.build_core_deployment(instance, specs, images, tls_config, fs_group), log
        )

        if specs.core_url:
            instance.status["applicationUrl"] = specs.core_url
        else:
            instance.status.pop("applicationUrl", None)
        instance.commit_target_namespaces()
        instance.status["storageSecret"] = resources.storage_secret_name(instance)
        instance.status["databaseSecret"] = resources.database_secret_name(instance)
        self._write_status(instance)
        written = copy.deepcopy(instance.status)

        if self.openshift:
            self.extras.reconcile(instance, specs.core_url, log)

        for deployment, mapping in (
            (name, cond.MAIN_DEPLOYMENT_CONDITIONS),
            (f"{name}-database", cond.DATABASE_DEPLOYMENT_CONDITIONS),
            (f"{name}-storage", cond.STORAGE_DEPLOYMENT_CONDITIONS),
        ):
            cond.project_deployment_conditions(instance, self.client, deployment, namespace, mapping, log)
        if instance.status != written:
            self._write_status(instance)

        log.info(f"Reconciled {instance.kind} {name}")
        return Result(message="Reconciled")

    def refresh_conditions(self, instance, log: Optional[logging.LoggerAdapter] = None) -> None:
        """Project deployment health into conditions outside of a full pass."""
        log = log or logger
        before = copy.deepcopy(instance.status)
        name = instance.name
        mappings = [
            (name, cond.MAIN_DEPLOYMENT_CONDITIONS),
            (f"{name}-database", cond.DATABASE_DEPLOYMENT_CONDITIONS),
            (f"{name}-storage", cond.STORAGE_DEPLOYMENT_CONDITIONS),
        ]
        if resources.report_replicas(instance) > 0:
            mappings.append((f"{name}-reports", cond.REPORTS_DEPLOYMENT_CONDITIONS))
        for deployment, mapping in mappings:
            cond.project_deployment_conditions(
                instance, self.client, deployment, instance.install_namespace, mapping, log
            )
        if instance.status != before:
            self._write_status(instance)

    def _reconcile_reports(self, instance, images, tls_config, log) -> None:
        name = f"{instance.name}-reports"
        service = resources.build_reports_service(instance)
        if resources.report_replicas(instance) == 0:
            self.deployments.delete(instance, name, log)
            self.applier.delete(stub_of(service), owner=instance, log=log)
            cond.remove_conditions(instance, cond.REPORTS_DEPLOYMENT_CONDITIONS)
            return

        self.applier.apply(stub_of(service), service_merge(service), owner=instance, log=log)
        self.deployments.converge(instance, resources.build_reports_deployment(instance, images, tls_config), log)
        cond.project_deployment_conditions(
            instance, self.client, name, instance.install_namespace, cond.REPORTS_DEPLOYMENT_CONDITIONS, log
        )

    def _patch_finalizers(self, instance, finalizers) -> None:
        patch = {"metadata": {"finalizers": finalizers, "resourceVersion": instance.resource_version}}
        updated = self.client.patch(instance.resource_kind, instance.name, instance.namespace, patch)
        instance.refresh(updated)

    def _write_status(self, instance) -> None:
        updated = self.client.replace_status(copy.deepcopy(instance.object))
        instance.refresh(updated)
