"""TLS bootstrap through cert-manager.

A self-signed issuer signs a CA certificate, and a CA issuer backed by it
signs the leaf certificates for the core, reports and dashboard services as
well as one agent certificate per target namespace. The CA certificate and
agent certificates are copied into target namespaces, where they cannot be
owned by the Flightdeck and are tracked by label instead.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from . import constants as C
from . import merge as M
from . import resources
from .applier import keep_live
from .credentials import generated_secret
from .kube import ResourceKind, new_object, stub_of
from .model import Readiness, TLSConfig

logger = logging.getLogger(__name__)


@dataclass
class TLSResult:
    readiness: Readiness
    config: Optional[TLSConfig] = None
    message: str = ""


def tls_enabled(instance) -> bool:
    """Whether cert-manager should be used for this instance.

    spec.enableCertManager wins when set; otherwise TLS is on unless the
    operator runs with DISABLE_SERVICE_TLS=true.
    """
    enabled = instance.spec.get("enableCertManager")
    if enabled is None:
        return os.getenv(C.DISABLE_SERVICE_TLS_ENV, "").lower() != "true"
    return bool(enabled)


def agent_cert_name(instance, target_namespace: str) -> str:
    return M.cluster_unique_name(
        "flightdeck-agent", instance.name, instance.install_namespace, target_namespace
    )


def agent_secret_copy_name(instance) -> str:
    return f"{instance.name}-agent-tls"


def ca_secret_name(instance) -> str:
    return f"{instance.name}-ca"


def is_certificate_ready(cert: Optional[Dict[str, Any]]) -> bool:
    if cert is None:
        return False
    for condition in (cert.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


class TLSBootstrapper:
    """Drives the certificate chain of an instance one pass at a time."""

    def __init__(self, client, applier):
        self.client = client
        self.applier = applier

    def reconcile(self, instance, log: Optional[logging.LoggerAdapter] = None) -> TLSResult:
        log = log or logger
        if not self.client.crd_installed(C.CERT_MANAGER_CRD):
            return TLSResult(
                Readiness.UNAVAILABLE,
                message="cert-manager is not installed in the cluster, "
                "install it or disable TLS with spec.enableCertManager=false",
            )

        self._apply(resources.build_self_signed_issuer(instance), instance, log)
        ca_cert = self._apply(resources.build_ca_cert(instance), instance, log)
        self._apply(resources.build_ca_issuer(instance), instance, log)

        keystore = new_object(ResourceKind.SECRET, resources.keystore_secret_name(instance), instance.install_namespace)
        self.applier.apply(
            keystore,
            generated_secret(keystore, (C.KEYSTORE_PASS_KEY,)),
            owner=instance,
            log=log,
        )

        certs = [
            ca_cert,
            self._apply(resources.build_core_cert(instance, keystore["metadata"]["name"]), instance, log),
            self._apply(resources.build_reports_cert(instance), instance, log),
        ]
        grafana_cert = resources.build_grafana_cert(instance)
        if instance.minimal:
            self._delete_certificate(grafana_cert, instance, log)
        else:
            certs.append(self._apply(grafana_cert, instance, log))

        agent_certs = {}
        for namespace in instance.target_namespaces:
            name = agent_cert_name(instance, namespace)
            agent_certs[namespace] = self._apply(resources.build_agent_cert(instance, name, namespace), instance, log)
        certs.extend(agent_certs.values())

        pending = [cert["metadata"]["name"] for cert in certs if not is_certificate_ready(cert)]
        if pending:
            log.info(f"Waiting for certificates to be issued: {', '.join(pending)}")
            return TLSResult(Readiness.NOT_READY, message=f"Waiting for certificates: {', '.join(pending)}")

        secrets = {}
        for cert in certs:
            secret = self.client.get(ResourceKind.SECRET, cert["spec"]["secretName"], instance.install_namespace)
            if secret is None:
                log.info(f"Certificate {cert['metadata']['name']} is ready but its secret is missing")
                return TLSResult(
                    Readiness.NOT_READY,
                    message=f"Waiting for secret of certificate {cert['metadata']['name']}",
                )
            secrets[cert["metadata"]["name"]] = secret

        # cert-manager creates the secrets without an owner
        for secret in secrets.values():
            self.applier.apply(stub_of(secret), keep_live(stub_of(secret)), owner=instance, log=log)

        ca_bytes = M.decode_data(secrets[ca_cert["metadata"]["name"]], C.TLS_CERT_KEY)
        for namespace in instance.target_namespaces:
            if namespace != instance.install_namespace:
                self._copy_ca(instance, namespace, ca_bytes, log)
            agent_secret = secrets[agent_certs[namespace]["metadata"]["name"]]
            self._copy_agent_secret(instance, namespace, agent_secret, log)

        config = TLSConfig(
            core_secret=certs[1]["spec"]["secretName"],
            reports_secret=certs[2]["spec"]["secretName"],
            keystore_pass_secret=keystore["metadata"]["name"],
            ca_cert=ca_bytes,
            grafana_secret=None if instance.minimal else grafana_cert["spec"]["secretName"],
            agent_secrets={ns: cert["spec"]["secretName"] for ns, cert in agent_certs.items()},
        )
        return TLSResult(Readiness.READY, config=config, message="All certificates are ready")

    def cleanup_namespaces(self, instance, namespaces: Iterable[str], log: Optional[logging.LoggerAdapter] = None) -> None:
        """Delete agent certificates and secret copies for the given namespaces."""
        log = log or logger
        for namespace in namespaces:
            cert = resources.build_agent_cert(instance, agent_cert_name(instance, namespace), namespace)
            self._delete_certificate(cert, instance, log)
            self.applier.delete(
                new_object(ResourceKind.SECRET, agent_secret_copy_name(instance), namespace),
                owner=instance,
                log=log,
            )
            # In the install namespace this name belongs to the CA secret itself
            if namespace != instance.install_namespace:
                self.applier.delete(
                    new_object(ResourceKind.SECRET, ca_secret_name(instance), namespace),
                    owner=instance,
                    log=log,
                )

    def finalize(self, instance, namespaces: List[str], log: Optional[logging.LoggerAdapter] = None) -> None:
        """Delete every cross-namespace TLS artifact ahead of deletion of the instance."""
        self.cleanup_namespaces(instance, namespaces, log)

    def _apply(self, desired: Dict[str, Any], instance, log) -> Dict[str, Any]:
        result = self.applier.apply(
            stub_of(desired), M.replace_fields(desired, "spec"), owner=instance, log=log
        )
        return result.object

    def _delete_certificate(self, cert: Dict[str, Any], instance, log) -> None:
        self.applier.delete(stub_of(cert), owner=instance, log=log)
        self.applier.delete(
            new_object(ResourceKind.SECRET, cert["spec"]["secretName"], cert["metadata"]["namespace"]),
            owner=instance,
            log=log,
        )

    def _copy_ca(self, instance, namespace: str, ca_bytes: bytes, log) -> None:
        stub = new_object(ResourceKind.SECRET, ca_secret_name(instance), namespace)
        desired = dict(stub, type="Opaque", data=M.encode_bytes({C.CA_CERT_KEY: ca_bytes}))
        self.applier.apply(stub, M.replace_fields(desired, "type", "data"), owner=instance, log=log)

    def _copy_agent_secret(self, instance, namespace: str, secret: Dict[str, Any], log) -> None:
        stub = new_object(ResourceKind.SECRET, agent_secret_copy_name(instance), namespace)
        desired = dict(stub, type=secret.get("type", "kubernetes.io/tls"), data=dict(secret.get("data") or {}))
        self.applier.apply(stub, M.replace_fields(desired, "type", "data"), owner=instance, log=log)

