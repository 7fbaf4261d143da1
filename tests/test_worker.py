import unittest

from factory_balancer.worker import (
    MESSAGE_DEFICIENCY_RESULT,
    MESSAGE_RESULT,
    ComputeDispatcher,
    ComputeInProgressError,
    make_snapshot,
    run_compute,
)

from tests.fixtures import plate_chain, starved_loop


class TestRunCompute(unittest.TestCase):

    def collect(self, snapshot):
        posted = []
        run_compute(snapshot, posted.append)
        return posted

    def test_feasible_network_posts_one_result(self):
        nodes, connections = plate_chain()
        posted = self.collect(make_snapshot(nodes, connections, ["C"]))

        self.assertEqual([m["type"] for m in posted], [MESSAGE_RESULT])
        self.assertTrue(posted[0]["result"]["feasible"])

    def test_deficiency_posts_permissive_followup(self):
        nodes, connections = starved_loop()
        posted = self.collect(make_snapshot(nodes, connections, ["T"]))

        self.assertEqual([m["type"] for m in posted], [MESSAGE_RESULT, MESSAGE_DEFICIENCY_RESULT])
        self.assertEqual(posted[0]["result"]["status"], "infeasible")
        self.assertTrue(posted[1]["result"]["feasible"])
        self.assertTrue(posted[1]["result"]["hasDeficiency"])

    def test_snapshot_is_detached(self):
        nodes, connections = plate_chain()
        snapshot = make_snapshot(nodes, connections, {"C"}, {"A": 2})
        nodes[0]["machineCount"] = 99
        self.assertEqual(snapshot["nodes"][0]["machineCount"], 1)
        self.assertEqual(snapshot["targets"], ["C"])
        self.assertEqual(snapshot["weights"], {"A": 2})


class TestComputeDispatcher(unittest.TestCase):

    def test_round_trip_through_child_process(self):
        nodes, connections = starved_loop()
        messages = ComputeDispatcher().compute(make_snapshot(nodes, connections, ["T"]))

        self.assertEqual([m["type"] for m in messages], [MESSAGE_RESULT, MESSAGE_DEFICIENCY_RESULT])
        self.assertEqual(messages[0]["result"]["deficiencies"][0]["targets"], ["T"])

    def test_second_dispatch_while_busy_is_refused(self):
        nodes, connections = plate_chain()
        snapshot = make_snapshot(nodes, connections, ["C"])
        dispatcher = ComputeDispatcher()

        dispatcher.dispatch(snapshot)
        self.assertTrue(dispatcher.busy)
        with self.assertRaises(ComputeInProgressError):
            dispatcher.dispatch(snapshot)

        messages = list(dispatcher.messages())
        self.assertFalse(dispatcher.busy)
        self.assertEqual(len(messages), 1)
        self.assertAlmostEqual(messages[0]["result"]["machineCountByNode"]["B"], 6.0, places=6)

    def test_abandoned_messages_stop_the_worker(self):
        nodes, connections = starved_loop()
        dispatcher = ComputeDispatcher()
        dispatcher.dispatch(make_snapshot(nodes, connections, ["T"]))
        process = dispatcher._process

        stream = dispatcher.messages()
        first = next(stream)
        stream.close()

        self.assertEqual(first["type"], MESSAGE_RESULT)
        self.assertFalse(dispatcher.busy)
        self.assertIsNotNone(process.returncode)

        # the dispatcher is usable again
        again = dispatcher.compute(make_snapshot(nodes, connections, ["T"]))
        self.assertEqual(len(again), 2)

    def test_failed_dispatch_leaves_dispatcher_idle(self):
        dispatcher = ComputeDispatcher()
        with self.assertRaises(TypeError):
            dispatcher.dispatch({"nodes": [object()]})
        self.assertFalse(dispatcher.busy)


if __name__ == "__main__":
    unittest.main()
