import copy
import unittest
from unittest import mock

from kubernetes.client.rest import ApiException

from flightdeck_operator import conditions as cond
from flightdeck_operator import constants as C
from flightdeck_operator import merge as M
from flightdeck_operator import tls
from flightdeck_operator.errors import AlreadyOwnedError, CertManagerUnavailableError
from flightdeck_operator.kube import ResourceKind, new_object
from flightdeck_operator.reconciler import Reconciler
from flightdeck_operator.tests.fake import FakeCluster, load_fixture


def get_flightdeck(name="a", namespace="flightdeck", targets=("ns1", "ns2"), **spec):
    body = load_fixture("flightdeck.yaml")
    body["metadata"].update(name=name, namespace=namespace)
    body["spec"]["targetNamespaces"] = list(targets)
    body["spec"].update(spec)
    return body


class TestReconciler(unittest.TestCase):
    # make debugging dict comparisons easier
    maxDiff = None

    def setUp(self):
        self.cluster = FakeCluster()
        self.recorder = mock.Mock()
        self.reconciler = Reconciler(self.cluster, self.recorder)

    def reconcile(self, name="a", namespace="flightdeck", kind=ResourceKind.FLIGHTDECK):
        return self.reconciler.reconcile(self.cluster.instance(kind, name, namespace))

    def reconcile_until_ready(self, name="a", namespace="flightdeck", kind=ResourceKind.FLIGHTDECK):
        self.reconcile(name, namespace, kind)
        self.cluster.issue_certificates()
        result = self.reconcile(name, namespace, kind)
        self.assertFalse(result.requeue, result.message)
        return result

    def stored(self, name="a", namespace="flightdeck", kind=ResourceKind.FLIGHTDECK):
        return self.cluster.get(kind, name, namespace)

    def condition(self, condition_type, name="a", namespace="flightdeck", kind=ResourceKind.FLIGHTDECK):
        conditions = self.stored(name, namespace, kind)["status"].get("conditions") or []
        return cond.find_condition(conditions, condition_type)

    def children(self, exclude):
        return {key: obj for key, obj in self.cluster.objects.items() if key[0] is not exclude}

    def test_waits_for_certificates(self):
        self.cluster.add(get_flightdeck())

        result = self.reconcile()

        self.assertEqual(result.requeue_after, 5)
        condition = self.condition(C.CONDITION_TLS_SETUP_COMPLETE)
        self.assertEqual(condition["status"], "False")
        self.assertEqual(condition["reason"], C.REASON_WAITING_FOR_CERT)
        self.assertIn(C.FINALIZER, self.stored()["metadata"]["finalizers"])
        # Nothing past the TLS step has run
        self.assertEqual(self.cluster.names(ResourceKind.ROLE_BINDING), [])
        self.assertEqual(self.cluster.names(ResourceKind.DEPLOYMENT), [])
        self.assertNotIn("targetNamespaces", self.stored()["status"])
        self.recorder.warning.assert_not_called()

    def test_full_pass(self):
        self.cluster.add(get_flightdeck())

        result = self.reconcile_until_ready()

        self.assertEqual(result.message, "Reconciled")
        status = self.stored()["status"]
        self.assertEqual(status["targetNamespaces"], ["ns1", "ns2"])
        self.assertEqual(status["storageSecret"], "a-storage-secret")
        self.assertEqual(status["databaseSecret"], "a-db")
        self.assertNotIn("applicationUrl", status)
        condition = self.condition(C.CONDITION_TLS_SETUP_COMPLETE)
        self.assertEqual((condition["status"], condition["reason"]), ("True", C.REASON_ALL_CERTS_READY))

        self.assertEqual(self.cluster.names(ResourceKind.DEPLOYMENT), ["a", "a-database", "a-storage"])
        self.assertEqual(self.cluster.names(ResourceKind.PERSISTENT_VOLUME_CLAIM), ["a-database", "a-storage"])
        self.assertEqual(self.cluster.names(ResourceKind.SERVICE), ["a", "a-database", "a-storage"])
        self.assertEqual(len(self.cluster.names(ResourceKind.NETWORK_POLICY)), 4)
        self.assertIsNotNone(self.cluster.get(ResourceKind.CONFIG_MAP, "a-lock", "flightdeck"))
        for name in ("a-db", "a-storage-secret", "a-grafana-basic", "a-keystore"):
            self.assertIsNotNone(self.cluster.get(ResourceKind.SECRET, name, "flightdeck"), name)

        core = self.cluster.get(ResourceKind.DEPLOYMENT, "a", "flightdeck")
        volumes = [v["name"] for v in core["spec"]["template"]["spec"]["volumes"]]
        self.assertEqual(volumes, ["keystore", "grafana-tls"])
        self.assertEqual(core["spec"]["template"]["spec"]["securityContext"]["fsGroup"], C.DEFAULT_FS_GROUP)

    def test_idempotent(self):
        self.cluster.add(get_flightdeck())
        self.reconcile_until_ready()
        children = copy.deepcopy(self.children(ResourceKind.FLIGHTDECK))
        status = copy.deepcopy(self.stored()["status"])
        self.cluster.clear_actions()

        self.reconcile()

        self.assertEqual(self.children(ResourceKind.FLIGHTDECK), children)
        self.assertEqual(self.stored()["status"], status)
        self.assertEqual(self.cluster.actions, [("replace_status", ResourceKind.FLIGHTDECK, "flightdeck", "a")])

    def test_deleted_children_are_restored(self):
        self.cluster.add(get_flightdeck())
        self.reconcile_until_ready()
        deployment = self.cluster.get(ResourceKind.DEPLOYMENT, "a-storage", "flightdeck")
        binding = self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns2")
        self.cluster.delete(ResourceKind.DEPLOYMENT, "a-storage", "flightdeck")
        self.cluster.delete(ResourceKind.ROLE_BINDING, "a", "ns2")

        result = self.reconcile()

        self.assertFalse(result.requeue, result.message)
        restored = self.cluster.get(ResourceKind.DEPLOYMENT, "a-storage", "flightdeck")
        self.assertEqual(restored["spec"], deployment["spec"])
        self.assertNotEqual(restored["metadata"]["uid"], deployment["metadata"]["uid"])
        self.assertEqual(self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns2")["roleRef"], binding["roleRef"])

    def test_target_namespace_removed(self):
        self.cluster.add(get_flightdeck())
        self.reconcile_until_ready()
        self.assertEqual(self.cluster.namespaces_with(ResourceKind.ROLE_BINDING, "a"), ["ns1", "ns2"])
        ns1 = {key: copy.deepcopy(obj) for key, obj in self.cluster.objects.items() if key[1] == "ns1"}
        instance = self.cluster.instance(ResourceKind.FLIGHTDECK, "a", "flightdeck")
        ns1_cert = tls.agent_cert_name(instance, "ns1")
        ns2_cert = tls.agent_cert_name(instance, "ns2")

        self.cluster.update_spec(ResourceKind.FLIGHTDECK, "a", "flightdeck", targetNamespaces=["ns1"])
        result = self.reconcile()

        self.assertFalse(result.requeue)
        self.assertEqual(self.cluster.namespaces_with(ResourceKind.ROLE_BINDING, "a"), ["ns1"])
        self.assertEqual(self.cluster.names(ResourceKind.SECRET, "ns2"), [])
        self.assertIsNone(self.cluster.get(ResourceKind.CERTIFICATE, ns2_cert, "flightdeck"))
        self.assertIsNone(self.cluster.get(ResourceKind.SECRET, ns2_cert, "flightdeck"))
        self.assertIsNotNone(self.cluster.get(ResourceKind.CERTIFICATE, ns1_cert, "flightdeck"))
        self.assertEqual(
            {key: obj for key, obj in self.cluster.objects.items() if key[1] == "ns1"},
            ns1,
        )
        self.assertEqual(self.stored()["status"]["targetNamespaces"], ["ns1"])

    def test_target_namespace_added(self):
        self.cluster.add(get_flightdeck(targets=["ns1"]))
        self.reconcile_until_ready()

        self.cluster.update_spec(ResourceKind.FLIGHTDECK, "a", "flightdeck", targetNamespaces=["ns1", "ns2"])
        result = self.reconcile()

        # The new agent certificate has to be issued first
        self.assertTrue(result.requeue)
        self.assertEqual(self.stored()["status"]["targetNamespaces"], ["ns1"])

        self.cluster.issue_certificates()
        self.reconcile()
        self.assertEqual(self.cluster.namespaces_with(ResourceKind.ROLE_BINDING, "a"), ["ns1", "ns2"])
        self.assertEqual(self.cluster.names(ResourceKind.SECRET, "ns2"), ["a-agent-tls", "a-ca"])
        self.assertEqual(self.stored()["status"]["targetNamespaces"], ["ns1", "ns2"])

    def test_tls_disabled(self):
        self.cluster.add(get_flightdeck(enableCertManager=False))

        result = self.reconcile()

        self.assertFalse(result.requeue)
        condition = self.condition(C.CONDITION_TLS_SETUP_COMPLETE)
        self.assertEqual((condition["status"], condition["reason"]), ("True", C.REASON_CERT_MANAGER_DISABLED))
        self.assertEqual(self.cluster.names(ResourceKind.CERTIFICATE), [])
        self.assertEqual(self.cluster.names(ResourceKind.SECRET, "ns1"), [])
        core = self.cluster.get(ResourceKind.DEPLOYMENT, "a", "flightdeck")
        self.assertEqual(core["spec"]["template"]["spec"]["volumes"], [])

    def test_cert_manager_unavailable(self):
        self.cluster.crds = set()
        self.cluster.add(get_flightdeck())

        with self.assertRaises(CertManagerUnavailableError):
            self.reconcile()

        condition = self.condition(C.CONDITION_TLS_SETUP_COMPLETE)
        self.assertEqual((condition["status"], condition["reason"]), ("False", C.REASON_CERT_MANAGER_UNAVAILABLE))
        self.recorder.warning.assert_called_once_with(mock.ANY, C.EVENT_CERT_MANAGER_UNAVAILABLE, mock.ANY)

    def test_name_conflict(self):
        self.cluster.add(get_flightdeck())
        self.reconcile_until_ready()
        self.cluster.add(load_fixture("clusterflightdeck.yaml"))
        before = copy.deepcopy(self.children(ResourceKind.CLUSTER_FLIGHTDECK))

        with self.assertRaises(AlreadyOwnedError):
            self.reconcile(namespace=None, kind=ResourceKind.CLUSTER_FLIGHTDECK)

        self.recorder.warning.assert_called_once()
        _, reason, message = self.recorder.warning.call_args[0]
        self.assertEqual(reason, C.EVENT_NAME_CONFLICT)
        self.assertIn("ConfigMap a-lock in namespace flightdeck", message)
        self.assertIn("owned by Flightdeck a", message)
        self.assertEqual(self.children(ResourceKind.CLUSTER_FLIGHTDECK), before)

    def test_overlapping_targets(self):
        self.cluster.add(get_flightdeck("a", "team-a", targets=["shared"]))
        self.cluster.add(get_flightdeck("b", "team-b", targets=["shared"]))
        self.reconcile_until_ready("a", "team-a")
        self.reconcile_until_ready("b", "team-b")
        shared = {key: copy.deepcopy(obj) for key, obj in self.cluster.objects.items() if key[1] == "shared"}

        self.reconcile("a", "team-a")

        self.assertEqual(self.cluster.names(ResourceKind.ROLE_BINDING, "shared"), ["a", "b"])
        self.assertEqual(
            self.cluster.names(ResourceKind.SECRET, "shared"),
            ["a-agent-tls", "a-ca", "b-agent-tls", "b-ca"],
        )
        self.assertEqual({key: obj for key, obj in self.cluster.objects.items() if key[1] == "shared"}, shared)
        self.recorder.warning.assert_not_called()

    def test_finalizer_waits_for_cleanup(self):
        self.cluster.add(get_flightdeck())
        self.reconcile_until_ready()
        self.cluster.delete(ResourceKind.FLIGHTDECK, "a", "flightdeck")

        delete = self.cluster.delete

        def failing_delete(kind, name, namespace=None):
            if kind is ResourceKind.ROLE_BINDING and namespace == "ns2":
                raise ApiException(status=500, reason="Internal Server Error")
            return delete(kind, name, namespace)

        self.cluster.delete = failing_delete
        with self.assertRaises(ApiException):
            self.reconcile()
        self.assertIn(C.FINALIZER, self.stored()["metadata"]["finalizers"])

        self.cluster.delete = delete
        result = self.reconcile()

        self.assertEqual(result.message, "Cleaned up")
        self.assertIsNone(self.stored())
        self.assertEqual(self.cluster.namespaces_with(ResourceKind.ROLE_BINDING, "a"), [])
        self.assertEqual(self.cluster.names(ResourceKind.CLUSTER_ROLE_BINDING), [])
        self.assertEqual(self.cluster.names(ResourceKind.SECRET, "ns1"), [])
        self.assertEqual(self.cluster.names(ResourceKind.SECRET, "ns2"), [])

    def test_finalizer_cleans_namespaces_missing_from_status(self):
        self.cluster.add(get_flightdeck())
        self.reconcile_until_ready()
        instance = self.cluster.instance(ResourceKind.FLIGHTDECK, "a", "flightdeck")
        # Left behind by a pass that failed before writing status
        orphan = new_object(ResourceKind.ROLE_BINDING, "a", "ns9")
        orphan["metadata"]["labels"] = M.tracking_labels(instance)
        self.cluster.add(orphan)
        self.cluster.delete(ResourceKind.FLIGHTDECK, "a", "flightdeck")

        self.reconcile()

        self.assertIsNone(self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns9"))
        self.assertIsNone(self.stored())

    def test_stale_namespace_missing_from_status(self):
        self.cluster.add(get_flightdeck())
        self.reconcile_until_ready()
        instance = self.cluster.instance(ResourceKind.FLIGHTDECK, "a", "flightdeck")
        orphan = new_object(ResourceKind.SECRET, "a-ca", "ns9")
        orphan["metadata"]["labels"] = M.tracking_labels(instance)
        self.cluster.add(orphan)

        self.reconcile()

        self.assertIsNone(self.cluster.get(ResourceKind.SECRET, "a-ca", "ns9"))

    def test_delete_without_finalizer(self):
        body = get_flightdeck()
        body["metadata"]["deletionTimestamp"] = "2026-01-02T00:00:00Z"
        body["metadata"]["finalizers"] = ["other"]
        self.cluster.add(body)
        self.cluster.clear_actions()

        result = self.reconcile()

        self.assertEqual(result.message, "Nothing to clean up")
        self.assertEqual(self.cluster.actions, [])

    def test_reports_scale_to_zero(self):
        self.cluster.add(get_flightdeck(reportOptions={"replicas": 2}))
        self.reconcile_until_ready()
        reports = self.cluster.get(ResourceKind.DEPLOYMENT, "a-reports", "flightdeck")
        self.assertEqual(reports["spec"]["replicas"], 2)
        core = self.cluster.get(ResourceKind.DEPLOYMENT, "a", "flightdeck")
        env = {e["name"]: e.get("value") for e in core["spec"]["template"]["spec"]["containers"][0]["env"]}
        self.assertEqual(env["FLIGHTDECK_REPORTS_URL"], f"https://a-reports.flightdeck.svc:{C.REPORTS_PORT}")

        self.cluster.set_deployment_conditions("a-reports", "flightdeck", [
            {"type": "Available", "status": "True", "reason": "MinimumReplicasAvailable"},
        ])
        self.reconciler.refresh_conditions(self.cluster.instance(ResourceKind.FLIGHTDECK, "a", "flightdeck"))
        self.assertIsNotNone(self.condition(C.CONDITION_REPORTS_AVAILABLE))

        self.cluster.update_spec(ResourceKind.FLIGHTDECK, "a", "flightdeck", reportOptions={"replicas": 0})
        self.reconcile()

        self.assertIsNone(self.cluster.get(ResourceKind.DEPLOYMENT, "a-reports", "flightdeck"))
        self.assertIsNone(self.cluster.get(ResourceKind.SERVICE, "a-reports", "flightdeck"))
        self.assertIsNone(self.condition(C.CONDITION_REPORTS_AVAILABLE))

    def test_deployment_conditions_are_projected(self):
        self.cluster.add(get_flightdeck())
        self.reconcile_until_ready()
        self.cluster.set_deployment_conditions("a", "flightdeck", [
            {"type": "Available", "status": "False", "reason": "MinimumReplicasUnavailable", "message": "0/1"},
            {"type": "ReplicaFailure", "status": "True", "reason": "FailedCreate"},
        ])

        self.reconcile()

        available = self.condition(C.CONDITION_MAIN_AVAILABLE)
        self.assertEqual((available["status"], available["message"]), ("False", "0/1"))
        self.assertIsNotNone(self.condition(C.CONDITION_MAIN_REPLICA_FAILURE))
        self.assertIsNone(self.condition(C.CONDITION_MAIN_PROGRESSING))
        self.assertIsNone(self.condition(C.CONDITION_DATABASE_AVAILABLE))

    def test_empty_dir_skips_claims(self):
        self.cluster.add(load_fixture("clusterflightdeck.yaml"))

        self.reconcile_until_ready(namespace=None, kind=ResourceKind.CLUSTER_FLIGHTDECK)

        self.assertEqual(self.cluster.names(ResourceKind.PERSISTENT_VOLUME_CLAIM), [])
        database = self.cluster.get(ResourceKind.DEPLOYMENT, "a-database", "flightdeck")
        self.assertEqual(
            database["spec"]["template"]["spec"]["volumes"],
            [{"name": "database-data", "emptyDir": {"medium": "Memory"}}],
        )
        # Minimal installs have no dashboard
        self.assertIsNone(self.cluster.get(ResourceKind.SECRET, "a-grafana-basic", "flightdeck"))
        self.assertEqual(self.cluster.namespaces_with(ResourceKind.ROLE_BINDING, "a"), ["flightdeck", "ns3"])

    def test_invalid_claim_is_reported(self):
        self.cluster.add(get_flightdeck())
        create = self.cluster.create

        def failing_create(body):
            if body["kind"] == "PersistentVolumeClaim":
                raise ApiException(status=422, reason="Unprocessable Entity")
            return create(body)

        self.cluster.create = failing_create

        with self.assertRaises(ApiException):
            self.reconcile()

        self.recorder.warning.assert_called_once_with(mock.ANY, C.EVENT_PVC_INVALID, mock.ANY)
