"""Resource builders for Flightdeck managed resources.

Builders are pure: they turn an instance and its resolved configuration into
the desired object. Deciding whether and how to write it is left to callers.
"""

import re
from typing import Any, Dict, List, Optional

from . import constants as C
from .kube import KINDS, ResourceKind
from .model import ImageTags, ServiceSpecs, TLSConfig

COMPONENT_CORE = "core"
COMPONENT_REPORTS = "reports"
COMPONENT_DATABASE = "database"
COMPONENT_STORAGE = "storage"

# Mount points inside the core container
KEYSTORE_PATH = "/var/run/secrets/flightdeck/keystore"
TLS_CERT_PATH = "/var/run/secrets/flightdeck/tls"

# Image tags with a development suffix are always pulled
_DEVEL_TAG = re.compile(r"(:latest|SNAPSHOT|dev|BETA\d+)$", re.IGNORECASE)


def build_labels(name: str, component: str) -> Dict[str, str]:
    """Build standard labels for a resource."""
    return {
        "app": name,
        "component": component,
        C.LABEL_NAME: C.OPERATOR_NAME.replace("-operator", ""),
        C.LABEL_INSTANCE: name,
        C.LABEL_COMPONENT: component,
        C.LABEL_PART_OF: C.OPERATOR_NAME.replace("-operator", ""),
        C.LABEL_MANAGED_BY: C.OPERATOR_NAME,
    }


def selector_labels(name: str, component: str) -> Dict[str, str]:
    """Pod labels a component's Deployment and Service select on."""
    return {"app": name, "component": component}


def get_pull_policy(image: str) -> str:
    return "Always" if _DEVEL_TAG.search(image) else "IfNotPresent"


def _metadata(kind: ResourceKind, name: str, namespace: Optional[str], labels=None, annotations=None):
    metadata = {"name": name}
    if KINDS[kind].namespaced:
        metadata["namespace"] = namespace
    if labels:
        metadata["labels"] = dict(labels)
    if annotations:
        metadata["annotations"] = dict(annotations)
    return {"apiVersion": KINDS[kind].api_version, "kind": kind.value, "metadata": metadata}


def database_secret_name(instance) -> str:
    return (instance.spec.get("databaseOptions") or {}).get("secretName") or f"{instance.name}-db"


def storage_secret_name(instance) -> str:
    options = instance.spec.get("objectStorageOptions") or {}
    return options.get("secretName") or f"{instance.name}-storage-secret"


def grafana_secret_name(instance) -> str:
    return f"{instance.name}-grafana-basic"


def keystore_secret_name(instance) -> str:
    return f"{instance.name}-keystore"


def uses_empty_dir(instance) -> bool:
    storage = instance.spec.get("storageOptions") or {}
    return bool((storage.get("emptyDir") or {}).get("enabled"))


def service_url(name: str, namespace: str, port: int, tls: bool) -> str:
    scheme = "https" if tls else "http"
    return f"{scheme}://{name}.{namespace}.svc:{port}"


# =============================================================================
# Storage
# =============================================================================

def build_pvc(instance, component: str) -> Dict[str, Any]:
    """Build a PersistentVolumeClaim for a component from spec.storageOptions.pvc."""
    config = (instance.spec.get("storageOptions") or {}).get("pvc") or {}
    labels = dict(config.get("labels") or {})
    labels.update(selector_labels(instance.name, component))
    spec = dict(config.get("spec") or {})
    resources = dict(spec.get("resources") or {})
    if not resources.get("requests"):
        resources["requests"] = {"storage": C.DEFAULT_PVC_STORAGE}
    spec["resources"] = resources
    if not spec.get("accessModes"):
        spec["accessModes"] = ["ReadWriteOnce"]

    pvc = _metadata(
        ResourceKind.PERSISTENT_VOLUME_CLAIM,
        f"{instance.name}-{component}",
        instance.install_namespace,
        labels,
        config.get("annotations"),
    )
    pvc["spec"] = spec
    return pvc


def _data_volume(instance, component: str) -> Dict[str, Any]:
    if uses_empty_dir(instance):
        storage = instance.spec["storageOptions"]["emptyDir"]
        source = {"emptyDir": {}}
        if storage.get("medium"):
            source["emptyDir"]["medium"] = storage["medium"]
        if storage.get("sizeLimit"):
            source["emptyDir"]["sizeLimit"] = storage["sizeLimit"]
    else:
        source = {"persistentVolumeClaim": {"claimName": f"{instance.name}-{component}"}}
    return {"name": f"{component}-data", **source}


# =============================================================================
# Deployments
# =============================================================================

def _secret_env(name: str, secret: str, key: str) -> Dict[str, Any]:
    return {"name": name, "valueFrom": {"secretKeyRef": {"name": secret, "key": key}}}


def _deployment(
    instance,
    name: str,
    component: str,
    pod_spec: Dict[str, Any],
    replicas: int = 1,
    strategy: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    operand = instance.spec.get("operandMetadata") or {}
    deployment_meta = operand.get("deploymentMetadata") or {}
    pod_meta = operand.get("podMetadata") or {}

    labels = dict(deployment_meta.get("labels") or {})
    labels.update(build_labels(instance.name, component))
    pod_labels = dict(pod_meta.get("labels") or {})
    pod_labels.update(build_labels(instance.name, component))

    deployment = _metadata(
        ResourceKind.DEPLOYMENT,
        name,
        instance.install_namespace,
        labels,
        deployment_meta.get("annotations"),
    )
    template_metadata = {"labels": pod_labels}
    if pod_meta.get("annotations"):
        template_metadata["annotations"] = dict(pod_meta["annotations"])
    deployment["spec"] = {
        "replicas": replicas,
        "selector": {"matchLabels": selector_labels(instance.name, component)},
        "strategy": strategy or {"type": "Recreate"},
        "template": {
            "metadata": template_metadata,
            "spec": pod_spec,
        },
    }
    return deployment


def build_core_deployment(
    instance,
    specs: ServiceSpecs,
    images: ImageTags,
    tls: Optional[TLSConfig],
    fs_group: int,
) -> Dict[str, Any]:
    """Build the main Deployment: core, datasource and (unless minimal) grafana."""
    name = instance.name
    namespace = instance.install_namespace

    env = [
        {"name": "FLIGHTDECK_HTTP_PORT", "value": str(C.CORE_HTTP_PORT)},
        {"name": "FLIGHTDECK_TARGET_NAMESPACES", "value": ",".join(instance.target_namespaces)},
        {"name": "FLIGHTDECK_DATASOURCE_URL", "value": f"http://127.0.0.1:{C.DATASOURCE_PORT}"},
        {
            "name": "FLIGHTDECK_DATABASE_URL",
            "value": f"postgresql://{name}-database.{namespace}.svc:{C.DATABASE_PORT}/flightdeck",
        },
        _secret_env("FLIGHTDECK_DATABASE_CONNECTION_KEY", database_secret_name(instance), C.DATABASE_CONNECTION_KEY),
        _secret_env("FLIGHTDECK_DATABASE_ENCRYPTION_KEY", database_secret_name(instance), C.DATABASE_ENCRYPTION_KEY),
        {"name": "FLIGHTDECK_STORAGE_URL", "value": f"http://{name}-storage.{namespace}.svc:{C.STORAGE_PORT}"},
        _secret_env("FLIGHTDECK_STORAGE_ACCESS_KEY", storage_secret_name(instance), C.STORAGE_ACCESS_KEY),
        _secret_env("FLIGHTDECK_STORAGE_SECRET_KEY", storage_secret_name(instance), C.STORAGE_SECRET_KEY),
    ]
    if specs.core_url:
        env.append({"name": "FLIGHTDECK_WEB_URL", "value": specs.core_url})
    if specs.reports_url:
        env.append({"name": "FLIGHTDECK_REPORTS_URL", "value": specs.reports_url})

    volumes: List[Dict[str, Any]] = []
    mounts: List[Dict[str, Any]] = []
    scheme = "HTTP"
    if tls is not None:
        scheme = "HTTPS"
        env.extend([
            {"name": "FLIGHTDECK_KEYSTORE_PATH", "value": f"{KEYSTORE_PATH}/keystore.p12"},
            _secret_env("FLIGHTDECK_KEYSTORE_PASS", tls.keystore_pass_secret, C.KEYSTORE_PASS_KEY),
        ])
        volumes.append({
            "name": "keystore",
            "secret": {
                "secretName": tls.core_secret,
                "items": [{"key": "keystore.p12", "path": "keystore.p12", "mode": 0o440}],
            },
        })
        mounts.append({"name": "keystore", "mountPath": KEYSTORE_PATH, "readOnly": True})

    image = images.core
    probe = {
        "httpGet": {"path": "/health/liveness", "port": C.CORE_HTTP_PORT, "scheme": scheme},
        "periodSeconds": 10,
    }
    containers = [{
        "name": name,
        "image": image,
        "imagePullPolicy": get_pull_policy(image),
        "ports": [{"containerPort": C.CORE_HTTP_PORT, "name": C.HTTP_PORT_NAME}],
        "env": env,
        "volumeMounts": mounts,
        "livenessProbe": probe,
        "startupProbe": dict(probe, failureThreshold=18),
    }, {
        "name": f"{name}-jfr-datasource",
        "image": images.datasource,
        "imagePullPolicy": get_pull_policy(images.datasource),
        "ports": [{"containerPort": C.DATASOURCE_PORT}],
        "env": [
            {"name": "LISTEN_HOST", "value": "127.0.0.1"},
            {"name": "QUARKUS_HTTP_PORT", "value": str(C.DATASOURCE_PORT)},
        ],
    }]

    if not instance.minimal:
        grafana_env = [
            {"name": "JFR_DATASOURCE_URL", "value": f"http://127.0.0.1:{C.DATASOURCE_PORT}"},
            _secret_env(C.GRAFANA_USER_KEY, grafana_secret_name(instance), C.GRAFANA_USER_KEY),
            _secret_env(C.GRAFANA_PASS_KEY, grafana_secret_name(instance), C.GRAFANA_PASS_KEY),
        ]
        grafana_mounts = []
        grafana_scheme = "HTTP"
        if tls is not None and tls.grafana_secret:
            grafana_scheme = "HTTPS"
            grafana_env.extend([
                {"name": "GF_SERVER_PROTOCOL", "value": "https"},
                {"name": "GF_SERVER_CERT_FILE", "value": f"{TLS_CERT_PATH}/tls.crt"},
                {"name": "GF_SERVER_CERT_KEY", "value": f"{TLS_CERT_PATH}/tls.key"},
            ])
            volumes.append({"name": "grafana-tls", "secret": {"secretName": tls.grafana_secret}})
            grafana_mounts.append({"name": "grafana-tls", "mountPath": TLS_CERT_PATH, "readOnly": True})
        containers.append({
            "name": f"{name}-grafana",
            "image": images.grafana,
            "imagePullPolicy": get_pull_policy(images.grafana),
            "ports": [{"containerPort": C.GRAFANA_PORT}],
            "env": grafana_env,
            "volumeMounts": grafana_mounts,
            "livenessProbe": {
                "httpGet": {"path": "/api/health", "port": C.GRAFANA_PORT, "scheme": grafana_scheme},
            },
        })

    pod_spec = {
        "serviceAccountName": name,
        "containers": containers,
        "volumes": volumes,
        "securityContext": {"fsGroup": fs_group, "runAsNonRoot": True},
    }
    return _deployment(instance, name, COMPONENT_CORE, pod_spec)


def report_replicas(instance) -> int:
    return int((instance.spec.get("reportOptions") or {}).get("replicas") or 0)


def build_reports_deployment(instance, images: ImageTags, tls: Optional[TLSConfig]) -> Dict[str, Any]:
    """Build the report generator Deployment with spec.reportOptions.replicas replicas."""
    options = instance.spec.get("reportOptions") or {}
    resources = options.get("resources") or {}
    env = [
        {"name": "QUARKUS_HTTP_HOST", "value": "0.0.0.0"},
        {"name": "QUARKUS_HTTP_PORT", "value": str(C.REPORTS_PORT)},
    ]
    volumes = []
    mounts = []
    scheme = "HTTP"
    if tls is not None:
        scheme = "HTTPS"
        env.extend([
            {"name": "QUARKUS_HTTP_SSL_PORT", "value": str(C.REPORTS_PORT)},
            {"name": "QUARKUS_HTTP_SSL_CERTIFICATE_FILES", "value": f"{TLS_CERT_PATH}/tls.crt"},
            {"name": "QUARKUS_HTTP_SSL_CERTIFICATE_KEY_FILES", "value": f"{TLS_CERT_PATH}/tls.key"},
            {"name": "QUARKUS_HTTP_INSECURE_REQUESTS", "value": "disabled"},
        ])
        volumes.append({"name": "reports-tls", "secret": {"secretName": tls.reports_secret}})
        mounts.append({"name": "reports-tls", "mountPath": TLS_CERT_PATH, "readOnly": True})

    probe = {"httpGet": {"path": "/health", "port": C.REPORTS_PORT, "scheme": scheme}}
    pod_spec = {
        "serviceAccountName": instance.name,
        "containers": [{
            "name": f"{instance.name}-reports",
            "image": images.reports,
            "imagePullPolicy": get_pull_policy(images.reports),
            "ports": [{"containerPort": C.REPORTS_PORT}],
            "env": env,
            "resources": resources,
            "volumeMounts": mounts,
            "livenessProbe": probe,
            "startupProbe": probe,
        }],
        "volumes": volumes,
    }
    return _deployment(
        instance,
        f"{instance.name}-reports",
        COMPONENT_REPORTS,
        pod_spec,
        replicas=report_replicas(instance),
        strategy={"type": "RollingUpdate"},
    )


def build_database_deployment(instance, images: ImageTags, fs_group: int) -> Dict[str, Any]:
    secret = database_secret_name(instance)
    pod_spec = {
        "serviceAccountName": instance.name,
        "containers": [{
            "name": f"{instance.name}-db",
            "image": images.database,
            "imagePullPolicy": get_pull_policy(images.database),
            "ports": [{"containerPort": C.DATABASE_PORT}],
            "env": [
                {"name": "POSTGRESQL_USER", "value": "flightdeck"},
                {"name": "POSTGRESQL_DATABASE", "value": "flightdeck"},
                _secret_env("POSTGRESQL_PASSWORD", secret, C.DATABASE_CONNECTION_KEY),
                _secret_env("PG_ENCRYPT_KEY", secret, C.DATABASE_ENCRYPTION_KEY),
            ],
            "volumeMounts": [{"name": "database-data", "mountPath": "/data"}],
            "readinessProbe": {"exec": {"command": ["pg_isready", "-U", "flightdeck", "-d", "flightdeck"]}},
        }],
        "volumes": [_data_volume(instance, COMPONENT_DATABASE)],
        "securityContext": {"fsGroup": fs_group, "runAsNonRoot": True},
    }
    return _deployment(instance, f"{instance.name}-database", COMPONENT_DATABASE, pod_spec)


def build_storage_deployment(instance, images: ImageTags, fs_group: int) -> Dict[str, Any]:
    secret = storage_secret_name(instance)
    pod_spec = {
        "serviceAccountName": instance.name,
        "containers": [{
            "name": f"{instance.name}-storage",
            "image": images.storage,
            "imagePullPolicy": get_pull_policy(images.storage),
            "ports": [{"containerPort": C.STORAGE_PORT}],
            "env": [
                {"name": "FLIGHTDECK_BUCKETS", "value": "archivedrecordings,archivedreports,eventtemplates,probes"},
                _secret_env("ACCESS_KEY", secret, C.STORAGE_ACCESS_KEY),
                _secret_env("SECRET_KEY", secret, C.STORAGE_SECRET_KEY),
            ],
            "volumeMounts": [{"name": "storage-data", "mountPath": "/data"}],
            "livenessProbe": {"httpGet": {"path": "/status", "port": C.STORAGE_PORT}},
        }],
        "volumes": [_data_volume(instance, COMPONENT_STORAGE)],
        "securityContext": {"fsGroup": fs_group, "runAsNonRoot": True},
    }
    return _deployment(instance, f"{instance.name}-storage", COMPONENT_STORAGE, pod_spec)


# =============================================================================
# Services and exposure
# =============================================================================

def _service(instance, name: str, component: str, ports: List[Dict[str, Any]], config=None) -> Dict[str, Any]:
    config = config or {}
    labels = dict(config.get("labels") or {})
    labels.update(build_labels(instance.name, component))
    service = _metadata(
        ResourceKind.SERVICE, name, instance.install_namespace, labels, config.get("annotations")
    )
    service["spec"] = {
        "type": config.get("serviceType") or "ClusterIP",
        "selector": selector_labels(instance.name, component),
        "ports": ports,
    }
    return service


def _service_config(instance, key: str) -> Dict[str, Any]:
    return (instance.spec.get("serviceOptions") or {}).get(key) or {}


def build_core_service(instance) -> Dict[str, Any]:
    return _service(
        instance,
        instance.name,
        COMPONENT_CORE,
        [{"name": C.HTTP_PORT_NAME, "port": C.CORE_HTTP_PORT, "targetPort": C.CORE_HTTP_PORT}],
        _service_config(instance, "coreConfig"),
    )


def build_reports_service(instance) -> Dict[str, Any]:
    return _service(
        instance,
        f"{instance.name}-reports",
        COMPONENT_REPORTS,
        [{"name": C.HTTP_PORT_NAME, "port": C.REPORTS_PORT, "targetPort": C.REPORTS_PORT}],
        _service_config(instance, "reportsConfig"),
    )


def build_database_service(instance) -> Dict[str, Any]:
    return _service(
        instance,
        f"{instance.name}-database",
        COMPONENT_DATABASE,
        [{"name": "postgresql", "port": C.DATABASE_PORT, "targetPort": C.DATABASE_PORT}],
    )


def build_storage_service(instance) -> Dict[str, Any]:
    return _service(
        instance,
        f"{instance.name}-storage",
        COMPONENT_STORAGE,
        [{"name": C.HTTP_PORT_NAME, "port": C.STORAGE_PORT, "targetPort": C.STORAGE_PORT}],
    )


def _network_config(instance) -> Dict[str, Any]:
    return (instance.spec.get("networkOptions") or {}).get("coreConfig") or {}


def build_route(instance, tls: Optional[TLSConfig]) -> Dict[str, Any]:
    """Build the OpenShift Route exposing the core service."""
    config = _network_config(instance)
    labels = dict(config.get("labels") or {})
    labels.update(build_labels(instance.name, COMPONENT_CORE))
    route = _metadata(
        ResourceKind.ROUTE, instance.name, instance.install_namespace, labels, config.get("annotations")
    )
    route_tls = {"termination": "edge", "insecureEdgeTerminationPolicy": "Redirect"}
    if tls is not None:
        route_tls = {
            "termination": "reencrypt",
            "insecureEdgeTerminationPolicy": "Redirect",
            "destinationCACertificate": tls.ca_cert.decode("utf-8"),
        }
    route["spec"] = {
        "to": {"kind": "Service", "name": instance.name},
        "port": {"targetPort": C.HTTP_PORT_NAME},
        "tls": route_tls,
    }
    return route


def ingress_spec(instance) -> Optional[Dict[str, Any]]:
    return _network_config(instance).get("ingressSpec")


def build_ingress(instance) -> Dict[str, Any]:
    """Build an Ingress from spec.networkOptions.coreConfig.ingressSpec."""
    config = _network_config(instance)
    labels = dict(config.get("labels") or {})
    labels.update(build_labels(instance.name, COMPONENT_CORE))
    ingress = _metadata(
        ResourceKind.INGRESS, instance.name, instance.install_namespace, labels, config.get("annotations")
    )
    ingress["spec"] = dict(config.get("ingressSpec") or {})
    return ingress


def network_policy_disabled(instance, key: str) -> bool:
    config = (instance.spec.get("networkPolicies") or {}).get(key) or {}
    return bool(config.get("disabled"))


def build_network_policy(instance, component: str, port: int, from_component: Optional[str]) -> Dict[str, Any]:
    """Build an ingress NetworkPolicy for a component.

    With from_component set, only pods of that component may connect.
    Otherwise the port is open to any source.
    """
    policy = _metadata(
        ResourceKind.NETWORK_POLICY,
        f"{instance.name}-{component}-ingress",
        instance.install_namespace,
        build_labels(instance.name, component),
    )
    rule: Dict[str, Any] = {"ports": [{"protocol": "TCP", "port": port}]}
    if from_component is not None:
        rule["from"] = [{"podSelector": {"matchLabels": selector_labels(instance.name, from_component)}}]
    policy["spec"] = {
        "podSelector": {"matchLabels": selector_labels(instance.name, component)},
        "policyTypes": ["Ingress"],
        "ingress": [rule],
    }
    return policy


# =============================================================================
# cert-manager
# =============================================================================

def _issuer(instance, name: str, issuer_spec: Dict[str, Any]) -> Dict[str, Any]:
    issuer = _metadata(ResourceKind.ISSUER, name, instance.install_namespace)
    issuer["spec"] = issuer_spec
    return issuer


def build_self_signed_issuer(instance) -> Dict[str, Any]:
    return _issuer(instance, f"{instance.name}-self-signed", {"selfSigned": {}})


def build_ca_issuer(instance) -> Dict[str, Any]:
    return _issuer(instance, f"{instance.name}-ca", {"ca": {"secretName": f"{instance.name}-ca"}})


def _certificate(instance, name: str, cert_spec: Dict[str, Any]) -> Dict[str, Any]:
    cert = _metadata(ResourceKind.CERTIFICATE, name, instance.install_namespace)
    cert["spec"] = cert_spec
    return cert


def _dns_names(service: str, namespace: str) -> List[str]:
    return [service, f"{service}.{namespace}.svc", f"{service}.{namespace}.svc.cluster.local"]


def build_ca_cert(instance) -> Dict[str, Any]:
    return _certificate(instance, f"{instance.name}-ca", {
        "commonName": f"ca.{instance.name}.cert-manager",
        "secretName": f"{instance.name}-ca",
        "issuerRef": {"name": f"{instance.name}-self-signed"},
        "isCA": True,
    })


def build_core_cert(instance, keystore_secret: str) -> Dict[str, Any]:
    namespace = instance.install_namespace
    return _certificate(instance, instance.name, {
        "commonName": f"{instance.name}.{namespace}.svc",
        "dnsNames": _dns_names(instance.name, namespace),
        "secretName": f"{instance.name}-tls",
        "keystores": {
            "pkcs12": {
                "create": True,
                "passwordSecretRef": {"name": keystore_secret, "key": C.KEYSTORE_PASS_KEY},
            },
        },
        "issuerRef": {"name": f"{instance.name}-ca"},
        "usages": ["digital signature", "key encipherment", "server auth", "client auth"],
    })


def build_reports_cert(instance) -> Dict[str, Any]:
    service = f"{instance.name}-reports"
    namespace = instance.install_namespace
    return _certificate(instance, service, {
        "commonName": f"{service}.{namespace}.svc",
        "dnsNames": _dns_names(service, namespace),
        "secretName": f"{service}-tls",
        "issuerRef": {"name": f"{instance.name}-ca"},
        "usages": ["digital signature", "key encipherment", "server auth"],
    })


def build_grafana_cert(instance) -> Dict[str, Any]:
    service = f"{instance.name}-grafana"
    namespace = instance.install_namespace
    return _certificate(instance, service, {
        "commonName": f"{service}.{namespace}.svc",
        "dnsNames": _dns_names(service, namespace) + ["localhost"],
        "secretName": f"{service}-tls",
        "issuerRef": {"name": f"{instance.name}-ca"},
        "usages": ["digital signature", "key encipherment", "server auth"],
    })


def build_agent_cert(instance, name: str, target_namespace: str) -> Dict[str, Any]:
    """Certificate for agents in a target namespace to authenticate against the core."""
    return _certificate(instance, name, {
        "commonName": f"*.{target_namespace}.pod",
        "dnsNames": [f"*.{target_namespace}.pod"],
        "secretName": name,
        "issuerRef": {"name": f"{instance.name}-ca"},
        "usages": ["digital signature", "key encipherment", "server auth", "client auth"],
    })


# =============================================================================
# OpenShift console
# =============================================================================

def build_console_link(instance, name: str, url: str) -> Dict[str, Any]:
    link = _metadata(ResourceKind.CONSOLE_LINK, name, None)
    link["spec"] = {
        "text": C.APP_NAME,
        "href": url,
        "location": "NamespaceDashboard",
        "namespaceDashboard": {"namespaces": [instance.install_namespace]},
    }
    return link
