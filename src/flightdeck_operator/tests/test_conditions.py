import unittest
from unittest import mock

from flightdeck_operator import conditions as cond
from flightdeck_operator import constants as C
from flightdeck_operator.model import Instance


def get_instance():
    return Instance.from_namespaced({
        "apiVersion": "operator.flightdeck.io/v1",
        "kind": "Flightdeck",
        "metadata": {"name": "a", "namespace": "flightdeck"},
        "spec": {},
    })


def get_deployment(*conditions):
    return {"metadata": {"name": "a"}, "status": {"conditions": list(conditions)}}


class TestConditions(unittest.TestCase):
    def test_set_condition_adds(self):
        conditions = []

        cond.set_condition(conditions, "Ready", "True", "Done", "all good")

        self.assertEqual(len(conditions), 1)
        self.assertEqual(conditions[0]["reason"], "Done")
        self.assertIn("lastTransitionTime", conditions[0])

    @mock.patch.object(cond, "_now")
    def test_set_condition_transition_time(self, now):
        now.return_value = "t1"
        conditions = []
        cond.set_condition(conditions, "Ready", "False", "Waiting")

        now.return_value = "t2"
        cond.set_condition(conditions, "Ready", "False", "StillWaiting", "msg")
        self.assertEqual(conditions[0]["lastTransitionTime"], "t1")
        self.assertEqual(conditions[0]["reason"], "StillWaiting")

        now.return_value = "t3"
        cond.set_condition(conditions, "Ready", "True", "Done")
        self.assertEqual(conditions[0]["lastTransitionTime"], "t3")
        self.assertEqual(len(conditions), 1)

    def test_remove_condition(self):
        conditions = [{"type": "A"}, {"type": "B"}]

        cond.remove_condition(conditions, "A")
        cond.remove_condition(conditions, "missing")

        self.assertEqual(conditions, [{"type": "B"}])

    def test_project_mirrors_deployment(self):
        instance = get_instance()
        client = mock.Mock()
        client.get.return_value = get_deployment(
            {"type": "Available", "status": "True", "reason": "MinimumReplicasAvailable", "message": "ok"},
            {"type": "Progressing", "status": "True", "reason": "NewReplicaSetAvailable"},
        )

        cond.project_deployment_conditions(
            instance, client, "a", "flightdeck", cond.MAIN_DEPLOYMENT_CONDITIONS
        )

        available = cond.find_condition(instance.conditions, C.CONDITION_MAIN_AVAILABLE)
        self.assertEqual(available["status"], "True")
        self.assertEqual(available["reason"], "MinimumReplicasAvailable")
        self.assertEqual(available["message"], "ok")
        progressing = cond.find_condition(instance.conditions, C.CONDITION_MAIN_PROGRESSING)
        self.assertEqual(progressing["message"], "")
        self.assertIsNone(cond.find_condition(instance.conditions, C.CONDITION_MAIN_REPLICA_FAILURE))

    def test_project_removes_conditions_the_deployment_dropped(self):
        instance = get_instance()
        cond.set_condition(instance.conditions, C.CONDITION_MAIN_REPLICA_FAILURE, "True", "FailedCreate")
        client = mock.Mock()
        client.get.return_value = get_deployment({"type": "Available", "status": "False", "reason": "x"})

        cond.project_deployment_conditions(
            instance, client, "a", "flightdeck", cond.MAIN_DEPLOYMENT_CONDITIONS
        )

        self.assertEqual([c["type"] for c in instance.conditions], [C.CONDITION_MAIN_AVAILABLE])

    def test_project_missing_deployment_clears_conditions(self):
        instance = get_instance()
        cond.set_condition(instance.conditions, C.CONDITION_REPORTS_AVAILABLE, "True", "x")
        cond.set_condition(instance.conditions, C.CONDITION_TLS_SETUP_COMPLETE, "True", "y")
        client = mock.Mock()
        client.get.return_value = None

        cond.project_deployment_conditions(
            instance, client, "a-reports", "flightdeck", cond.REPORTS_DEPLOYMENT_CONDITIONS
        )

        self.assertEqual([c["type"] for c in instance.conditions], [C.CONDITION_TLS_SETUP_COMPLETE])
