"""Generated credentials for the database, object storage and dashboard."""

import logging
import secrets
import string
from typing import Dict, Optional

from . import constants as C
from . import merge as M
from . import resources
from .kube import ResourceKind, new_object

logger = logging.getLogger(__name__)


def generate_password(length: int = 32) -> str:
    """Generate a secure random password."""
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def generated_secret(stub: Dict, keys, labels: Optional[Dict[str, str]] = None):
    """Merge function for a Secret whose values are generated once.

    Keys already present in the live Secret keep their value.
    """
    def merge(live):
        secret = M.start_from(live, stub)
        data = dict(secret.get("data") or {})
        missing = {key: generate_password() for key in keys if not data.get(key)}
        data.update(M.encode_data(missing))
        secret["data"] = data
        secret.setdefault("type", "Opaque")
        M.merge_labels_and_annotations(secret["metadata"], labels)
        return secret
    return merge


def reconcile_credentials(instance, applier, log: Optional[logging.LoggerAdapter] = None) -> None:
    """Create the credential Secrets the workloads read.

    User-supplied Secrets (databaseOptions.secretName and
    objectStorageOptions.secretName) are used as they are.
    """
    log = log or logger
    namespace = instance.install_namespace
    labels = resources.build_labels(instance.name, resources.COMPONENT_CORE)

    if (instance.spec.get("databaseOptions") or {}).get("secretName"):
        log.debug(f"Using database secret {resources.database_secret_name(instance)}")
    else:
        stub = new_object(ResourceKind.SECRET, resources.database_secret_name(instance), namespace)
        applier.apply(
            stub,
            generated_secret(stub, (C.DATABASE_CONNECTION_KEY, C.DATABASE_ENCRYPTION_KEY), labels),
            owner=instance,
            log=log,
        )

    if (instance.spec.get("objectStorageOptions") or {}).get("secretName"):
        log.debug(f"Using object storage secret {resources.storage_secret_name(instance)}")
    else:
        stub = new_object(ResourceKind.SECRET, resources.storage_secret_name(instance), namespace)
        applier.apply(
            stub,
            generated_secret(stub, (C.STORAGE_ACCESS_KEY, C.STORAGE_SECRET_KEY), labels),
            owner=instance,
            log=log,
        )

    grafana = new_object(ResourceKind.SECRET, resources.grafana_secret_name(instance), namespace)
    if instance.minimal:
        applier.delete(grafana, owner=instance, log=log)
        return

    def grafana_merge(live):
        secret = generated_secret(grafana, (C.GRAFANA_PASS_KEY,), labels)(live)
        if not secret["data"].get(C.GRAFANA_USER_KEY):
            secret["data"].update(M.encode_data({C.GRAFANA_USER_KEY: "admin"}))
        return secret

    applier.apply(grafana, grafana_merge, owner=instance, log=log)
