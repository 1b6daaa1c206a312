import json
import unittest

from flightdeck_operator import constants as C
from flightdeck_operator import merge as M
from flightdeck_operator import rbac
from flightdeck_operator.applier import ResourceApplier
from flightdeck_operator.errors import ImmutableFieldConflict, RecreateIncompleteError
from flightdeck_operator.kube import ResourceKind
from flightdeck_operator.tests.fake import FakeCluster, load_fixture


class TestRBACReconciler(unittest.TestCase):
    def setUp(self):
        self.cluster = FakeCluster()
        self.cluster.add(load_fixture("flightdeck.yaml"))
        self.instance = self.cluster.instance(ResourceKind.FLIGHTDECK, "a", "flightdeck")
        self.reconciler = rbac.RBACReconciler(self.cluster, ResourceApplier(self.cluster))

    def test_binding_per_target_namespace(self):
        self.reconciler.reconcile(self.instance, [])

        self.assertEqual(self.cluster.namespaces_with(ResourceKind.ROLE_BINDING, "a"), ["ns1", "ns2"])
        binding = self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns1")
        self.assertEqual(binding["roleRef"]["name"], C.NAMESPACED_CLUSTER_ROLE_NAME)
        self.assertEqual(binding["subjects"], [{"kind": "ServiceAccount", "name": "a", "namespace": "flightdeck"}])
        self.assertEqual(M.tracked_by(binding), ("Flightdeck", "a", "flightdeck"))

        local = self.cluster.get(ResourceKind.ROLE_BINDING, "a-local", "flightdeck")
        self.assertEqual(local["roleRef"], {"apiGroup": rbac.RBAC_API_GROUP, "kind": "Role", "name": "a"})
        self.assertTrue(M.is_controlled_by(local, self.instance))

        name = rbac.cluster_role_binding_name(self.instance)
        cluster_binding = self.cluster.get(ResourceKind.CLUSTER_ROLE_BINDING, name)
        self.assertEqual(cluster_binding["roleRef"]["name"], C.CLUSTER_ROLE_NAME)
        self.assertEqual(M.tracked_by(cluster_binding), ("Flightdeck", "a", "flightdeck"))

    def test_service_account_annotation_on_openshift(self):
        self.assertNotIn("annotations", rbac.build_service_account(self.instance, False)["metadata"])

        account = rbac.build_service_account(self.instance, True)

        reference = json.loads(account["metadata"]["annotations"][C.OAUTH_REDIRECT_ANNOTATION])
        self.assertEqual(reference["reference"], {"kind": "Route", "name": "a"})

    def test_subjects_drift_is_corrected_and_labels_kept(self):
        self.reconciler.reconcile(self.instance, [])
        binding = self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns1")
        binding["subjects"] = []
        binding["metadata"]["labels"]["team"] = "x"
        self.cluster.replace(binding)

        self.reconciler.reconcile(self.instance, [])

        binding = self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns1")
        self.assertEqual(len(binding["subjects"]), 1)
        self.assertEqual(binding["metadata"]["labels"]["team"], "x")

    def test_binding_merge_rejects_new_role_ref(self):
        desired = rbac.build_role_binding(self.instance, "ns1")
        live = dict(desired, roleRef={"apiGroup": rbac.RBAC_API_GROUP, "kind": "ClusterRole", "name": "old"})

        with self.assertRaises(ImmutableFieldConflict):
            rbac.binding_merge(desired)(live)

    def test_role_ref_change_recreates_binding(self):
        self.reconciler.reconcile(self.instance, [])
        binding = self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns1")
        binding["roleRef"]["name"] = "old"
        self.cluster.replace(binding)
        self.cluster.clear_actions()

        self.reconciler.reconcile(self.instance, [])

        binding = self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns1")
        self.assertEqual(binding["roleRef"]["name"], C.NAMESPACED_CLUSTER_ROLE_NAME)
        self.assertEqual(
            [action for action in self.cluster.actions if action[1] is ResourceKind.ROLE_BINDING],
            [
                ("delete", ResourceKind.ROLE_BINDING, "ns1", "a"),
                ("create", ResourceKind.ROLE_BINDING, "ns1", "a"),
            ],
        )

    def test_role_ref_change_held_by_finalizer(self):
        self.reconciler.reconcile(self.instance, [])
        binding = self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns1")
        binding["roleRef"]["name"] = "old"
        binding["metadata"]["finalizers"] = ["example.com/hold"]
        self.cluster.replace(binding)

        with self.assertRaises(RecreateIncompleteError) as ctx:
            self.reconciler.reconcile(self.instance, [])

        self.assertEqual((ctx.exception.kind, ctx.exception.namespace), ("RoleBinding", "ns1"))
        self.assertEqual(self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns1")["roleRef"]["name"], "old")

    def test_stale_namespaces_are_cleaned_up(self):
        self.reconciler.reconcile(self.instance, [])
        before = self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns1")

        self.cluster.update_spec(ResourceKind.FLIGHTDECK, "a", "flightdeck", targetNamespaces=["ns1"])
        instance = self.cluster.instance(ResourceKind.FLIGHTDECK, "a", "flightdeck")
        self.reconciler.reconcile(instance, ["ns2"])

        self.assertEqual(self.cluster.namespaces_with(ResourceKind.ROLE_BINDING, "a"), ["ns1"])
        self.assertEqual(self.cluster.get(ResourceKind.ROLE_BINDING, "a", "ns1"), before)

        # Bindings already gone count as cleaned up
        self.reconciler.cleanup_namespaces(instance, ["ns2", "never-targeted"])

    def test_finalize(self):
        self.reconciler.reconcile(self.instance, [])

        self.reconciler.finalize(self.instance, ["ns1", "ns2"])

        self.assertEqual(self.cluster.names(ResourceKind.CLUSTER_ROLE_BINDING), [])
        self.assertEqual(self.cluster.namespaces_with(ResourceKind.ROLE_BINDING, "a"), [])
        # Owned objects in the install namespace are left to garbage collection
        self.assertIsNotNone(self.cluster.get(ResourceKind.ROLE_BINDING, "a-local", "flightdeck"))
