"""Default values and constants for flightdeck-operator."""

import os

# API Group and Version
API_GROUP = "operator.flightdeck.io"
API_VERSION = "v1"
PLURAL = "flightdecks"
CLUSTER_PLURAL = "clusterflightdecks"
KIND = "Flightdeck"
CLUSTER_KIND = "ClusterFlightdeck"

# Operator name
OPERATOR_NAME = "flightdeck-operator"
APP_NAME = "Flightdeck"

# Finalizer that holds a Flightdeck until cross-namespace cleanup is done
FINALIZER = f"{API_GROUP}/flightdeck.finalizer"

# =============================================================================
# Component Images (configurable via environment variables)
# =============================================================================

CORE_IMAGE_ENV = "RELATED_IMAGE_CORE"
DATASOURCE_IMAGE_ENV = "RELATED_IMAGE_DATASOURCE"
GRAFANA_IMAGE_ENV = "RELATED_IMAGE_GRAFANA"
REPORTS_IMAGE_ENV = "RELATED_IMAGE_REPORTS"
DATABASE_IMAGE_ENV = "RELATED_IMAGE_DATABASE"
STORAGE_IMAGE_ENV = "RELATED_IMAGE_STORAGE"

DEFAULT_CORE_IMAGE = "quay.io/flightdeck/flightdeck:latest"
DEFAULT_DATASOURCE_IMAGE = "quay.io/flightdeck/jfr-datasource:latest"
DEFAULT_GRAFANA_IMAGE = "quay.io/flightdeck/flightdeck-grafana-dashboard:latest"
DEFAULT_REPORTS_IMAGE = "quay.io/flightdeck/flightdeck-reports:latest"
DEFAULT_DATABASE_IMAGE = "quay.io/flightdeck/flightdeck-db:latest"
DEFAULT_STORAGE_IMAGE = "quay.io/flightdeck/flightdeck-storage:latest"

# =============================================================================
# Operator behaviour
# =============================================================================

# Set to "true" to disable cert-manager TLS unless a CR enables it explicitly
DISABLE_SERVICE_TLS_ENV = "DISABLE_SERVICE_TLS"

# Size of the worker pool running synchronous handlers
MAX_WORKERS = int(os.getenv("MAX_WORKERS", "10"))

# Timeout applied to every Kubernetes API request
API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", "30"))

# Interval of the periodic deployment health check
HEALTH_CHECK_INTERVAL = float(os.getenv("HEALTH_CHECK_INTERVAL", "60"))

# Delay before retrying when certificates or routes are not ready yet
REQUEUE_DELAY_SECONDS = 5.0

# Upper bound for the exponential retry delay of failed reconciles
MAX_BACKOFF_SECONDS = 300.0

# =============================================================================
# Ports
# =============================================================================

CORE_HTTP_PORT = 8181
GRAFANA_PORT = 3000
DATASOURCE_PORT = 8989
REPORTS_PORT = 10000
STORAGE_PORT = 8333
DATABASE_PORT = 5432
HTTP_PORT_NAME = "http"

# fsGroup to use when the namespace does not constrain it
DEFAULT_FS_GROUP = 18500

# Default size of each persistent volume claim
DEFAULT_PVC_STORAGE = "500Mi"

# =============================================================================
# Labels and annotations
# =============================================================================

LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_COMPONENT = "app.kubernetes.io/component"
LABEL_PART_OF = "app.kubernetes.io/part-of"

# Labels tracking objects that cannot carry an owner reference
TRACKING_LABEL_NAME = f"{API_GROUP}/name"
TRACKING_LABEL_NAMESPACE = f"{API_GROUP}/namespace"
TRACKING_LABEL_KIND = f"{API_GROUP}/kind"

OAUTH_REDIRECT_ANNOTATION = "serviceaccounts.openshift.io/oauth-redirectreference.route"
SUPPLEMENTAL_GROUPS_ANNOTATION = "openshift.io/sa.scc.supplemental-groups"

# =============================================================================
# RBAC
# =============================================================================

CLUSTER_ROLE_NAME = "flightdeck-operator-flightdeck"
NAMESPACED_CLUSTER_ROLE_NAME = "flightdeck-operator-flightdeck-namespaced"

# =============================================================================
# Secret keys
# =============================================================================

DATABASE_CONNECTION_KEY = "CONNECTION_KEY"
DATABASE_ENCRYPTION_KEY = "ENCRYPTION_KEY"
STORAGE_ACCESS_KEY = "ACCESS_KEY"
STORAGE_SECRET_KEY = "SECRET_KEY"
GRAFANA_USER_KEY = "GF_SECURITY_ADMIN_USER"
GRAFANA_PASS_KEY = "GF_SECURITY_ADMIN_PASSWORD"
KEYSTORE_PASS_KEY = "KEYSTORE_PASS"
TLS_CERT_KEY = "tls.crt"
CA_CERT_KEY = "ca.crt"

# =============================================================================
# cert-manager
# =============================================================================

CERT_MANAGER_GROUP = "cert-manager.io"
CERT_MANAGER_VERSION = "v1"
CERT_MANAGER_CRD = "issuers.cert-manager.io"

# =============================================================================
# Conditions
# =============================================================================

CONDITION_MAIN_AVAILABLE = "MainDeploymentAvailable"
CONDITION_MAIN_PROGRESSING = "MainDeploymentProgressing"
CONDITION_MAIN_REPLICA_FAILURE = "MainDeploymentReplicaFailure"
CONDITION_DATABASE_AVAILABLE = "DatabaseDeploymentAvailable"
CONDITION_DATABASE_PROGRESSING = "DatabaseDeploymentProgressing"
CONDITION_DATABASE_REPLICA_FAILURE = "DatabaseDeploymentReplicaFailure"
CONDITION_STORAGE_AVAILABLE = "StorageDeploymentAvailable"
CONDITION_STORAGE_PROGRESSING = "StorageDeploymentProgressing"
CONDITION_STORAGE_REPLICA_FAILURE = "StorageDeploymentReplicaFailure"
CONDITION_REPORTS_AVAILABLE = "ReportsDeploymentAvailable"
CONDITION_REPORTS_PROGRESSING = "ReportsDeploymentProgressing"
CONDITION_REPORTS_REPLICA_FAILURE = "ReportsDeploymentReplicaFailure"
CONDITION_TLS_SETUP_COMPLETE = "TLSSetupComplete"
CONDITION_APPLICATION_URL_AVAILABLE = "ApplicationURLAvailable"

REASON_WAITING_FOR_CERT = "WaitingForCertificate"
REASON_ALL_CERTS_READY = "AllCertificatesReady"
REASON_CERT_MANAGER_UNAVAILABLE = "CertManagerUnavailable"
REASON_CERT_MANAGER_DISABLED = "CertManagerDisabled"
REASON_WAITING_FOR_ROUTE_HOST = "WaitingForRouteHost"
REASON_URL_ASSIGNED = "URLAssigned"

# Event reasons
EVENT_NAME_CONFLICT = "FlightdeckNameConflict"
EVENT_PVC_INVALID = "PersistentVolumeClaimInvalid"
EVENT_CERT_MANAGER_UNAVAILABLE = REASON_CERT_MANAGER_UNAVAILABLE
