"""Main Kopf operator for Flightdeck and ClusterFlightdeck resources."""

import functools
import logging

import kopf
from kubernetes.client.rest import ApiException

from . import constants as C
from . import merge as M
from .conflicts import EventRecorder
from .errors import InvalidSpecError
from .kube import KINDS, KubernetesResourceClient, ResourceKind, get_k8s_clients
from .model import Instance
from .reconciler import Reconciler

logger = logging.getLogger(__name__)

# Builds the Instance for each custom resource plural
INSTANCE_BUILDERS = {
    C.PLURAL: Instance.from_namespaced,
    C.CLUSTER_PLURAL: Instance.from_cluster,
}

# Builds the Instance for the kind named in a controller owner reference
KIND_BUILDERS = {
    C.KIND: Instance.from_namespaced,
    C.CLUSTER_KIND: Instance.from_cluster,
}

_reconciler = {}


def get_reconciler() -> Reconciler:
    """Return the shared Reconciler, creating it on first use."""
    if "instance" not in _reconciler:
        client = KubernetesResourceClient(get_k8s_clients())
        openshift = client.api_group_available("route.openshift.io")
        logger.info(f"Running on {'OpenShift' if openshift else 'Kubernetes'}")
        _reconciler["instance"] = Reconciler(client, EventRecorder(), openshift=openshift)
    return _reconciler["instance"]


def backoff(retry: int) -> float:
    """Exponential retry delay for failed passes."""
    return min(2 ** retry, C.MAX_BACKOFF_SECONDS)


def instance_handler(register_fns, **kwargs):
    """Register a handler for both custom resource kinds.

    The handler receives the Instance built from the body. Conflicts with a
    concurrent writer are retried quickly, other failures with an
    exponential backoff.
    """
    def decorator(func):
        func.handlers = {}
        for plural, build in INSTANCE_BUILDERS.items():
            @functools.wraps(func)
            def handler(body, logger, retry=0, build=build, **handler_kwargs):
                try:
                    instance = build(body)
                except InvalidSpecError as exc:
                    raise kopf.PermanentError(str(exc)) from exc
                try:
                    return func(instance=instance, logger=logger, **handler_kwargs)
                except kopf.TemporaryError:
                    raise
                except ApiException as exc:
                    if exc.status == 409:
                        # When a handler fails with a 409, we want to retry quickly
                        raise kopf.TemporaryError(str(exc), delay=C.REQUEUE_DELAY_SECONDS)
                    raise kopf.TemporaryError(str(exc), delay=backoff(retry))
                except Exception as exc:
                    logger.error(f"Failed to reconcile {instance.kind} {instance.name}: {exc}", exc_info=True)
                    raise kopf.TemporaryError(str(exc), delay=backoff(retry)) from exc

            for register_fn in register_fns:
                register_fn(C.API_GROUP, C.API_VERSION, plural, **kwargs)(handler)
            func.handlers[plural] = handler
        return func
    return decorator


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **kwargs):
    """Apply kopf settings."""
    settings.execution.max_workers = C.MAX_WORKERS
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=C.API_GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=C.API_GROUP,
        key="last-handled-configuration",
    )
    get_reconciler()


@instance_handler([kopf.on.resume, kopf.on.create, kopf.on.update])
def reconcile_flightdeck(instance, logger, **kwargs):
    """Reconcile a Flightdeck or ClusterFlightdeck."""
    logger.info(f"Reconciling {instance.kind} {instance.install_namespace}/{instance.name}")
    result = get_reconciler().reconcile(instance, logger)
    if result.requeue:
        raise kopf.TemporaryError(result.message, delay=result.requeue_after)


# Optional, so kopf adds no finalizer of its own: the reconciler manages one
@instance_handler([kopf.on.delete], optional=True)
def delete_flightdeck(instance, logger, **kwargs):
    """Clean up objects of a Flightdeck that garbage collection cannot reach."""
    logger.info(f"{instance.kind} {instance.install_namespace}/{instance.name} is being deleted")
    get_reconciler().reconcile(instance, logger)


@instance_handler([kopf.timer], interval=C.HEALTH_CHECK_INTERVAL, initial_delay=C.HEALTH_CHECK_INTERVAL)
def resync_flightdeck(instance, logger, **kwargs):
    """Periodic full pass.

    Restores children that were edited or deleted out from under the operator,
    including the RoleBindings and secrets in target namespaces that no watch
    covers, and refreshes the deployment conditions.
    """
    if instance.deleting or C.FINALIZER not in instance.finalizers:
        return
    result = get_reconciler().reconcile(instance, logger)
    if result.requeue:
        logger.info(f"Resync of {instance.kind} {instance.name} incomplete: {result.message}")


def owning_instance(body):
    """Return the Instance that controls an object, or None if it has no live owner."""
    ref = M.controller_of(body)
    if ref is None or ref.get("apiVersion", "").split("/")[0] != C.API_GROUP:
        return None
    build = KIND_BUILDERS.get(ref.get("kind"))
    if build is None:
        return None
    kind = ResourceKind(ref["kind"])
    namespace = body["metadata"].get("namespace") if KINDS[kind].namespaced else None
    owner = get_reconciler().client.get(kind, ref["name"], namespace)
    # A recreated owner with the same name does not own the old children
    if owner is None or owner["metadata"].get("uid") != ref.get("uid"):
        return None
    return build(owner)


@kopf.on.event("apps", "v1", "deployments", labels={C.LABEL_MANAGED_BY: C.OPERATOR_NAME})
def deployment_event(body, event, logger, **kwargs):
    """React to changes of the Deployments the operator manages.

    A deleted Deployment triggers a full pass of its owner so it is recreated
    straight away. Any other change only refreshes the owner's conditions.
    """
    instance = owning_instance(body)
    if instance is None or instance.deleting or C.FINALIZER not in instance.finalizers:
        return
    if event.get("type") == "DELETED":
        logger.info(f"Deployment {body['metadata']['name']} was deleted, reconciling {instance.kind} {instance.name}")
        get_reconciler().reconcile(instance, logger)
    else:
        get_reconciler().refresh_conditions(instance, logger)


def main():
    """Entry point for the operator."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    # Kopf takes over from here
    kopf.run(clusterwide=True)


if __name__ == "__main__":
    main()
