import unittest

from factory_balancer.graph import build_production_graph
from factory_balancer.lp import EquilibriumLP, solve_full_graph
from factory_balancer.solver import SolveOptions, solve
from gen_factory import generate_factory_network
from verify_factory import reference_minimum, validate_solution

from tests.fixtures import conn, node, plate_chain, starved_loop, two_producer_scenario

TOLERANCE = 1e-6


class TestEquilibriumSolver(unittest.TestCase):

    def assert_conserved(self, result, graph_connections):
        connected_inputs = {(c["targetNodeId"], c["targetInputIndex"]) for c in graph_connections}
        for node_id, flow in result.flow_by_node.items():
            for k, f in enumerate(flow.input_flows):
                if (node_id, k) in connected_inputs:
                    self.assertGreaterEqual(f.connected, f.needed - TOLERANCE, f"{node_id} input {k} short")

    def test_two_producers_prefer_higher_rate(self):
        nodes, connections = two_producer_scenario()
        result = solve(nodes, connections, {"C"})

        self.assertTrue(result.feasible)
        counts = result.machine_count_by_node
        self.assertGreaterEqual(2 * counts["P1"] + 3 * counts["P2"], 10 - TOLERANCE)
        self.assertAlmostEqual(counts["P1"] + counts["P2"], 10 / 3, places=6)
        self.assertAlmostEqual(counts["P2"], 10 / 3, places=6)
        self.assertEqual(counts["C"], 1)
        self.assert_conserved(result, connections)

    def test_chain_scales_to_target(self):
        nodes, connections = plate_chain(target_count=3)
        result = solve(nodes, connections, ["C"])

        self.assertTrue(result.feasible)
        self.assertAlmostEqual(result.machine_count_by_node["B"], 6.0, places=6)
        self.assertAlmostEqual(result.machine_count_by_node["A"], 6.0, places=6)
        self.assertEqual(result.updates.keys(), {"A", "B"})
        self.assertEqual(result.message, "Updated 2 nodes")
        self.assert_conserved(result, connections)

    def test_fractional_counts_are_not_rounded(self):
        nodes, connections = plate_chain(target_count=1)
        nodes[1]["cycleTime"] = 3  # plate at 1/3 per second
        result = solve(nodes, connections, ["C"])
        self.assertAlmostEqual(result.machine_count_by_node["B"], 3.0, places=6)
        self.assertAlmostEqual(result.machine_count_by_node["A"], 2.0, places=6)

    def test_target_counts_are_untouched(self):
        nodes, connections = plate_chain(target_count=2.37)
        nodes.append(node("D", inputs=[("plate", 1)], count=1.1))
        connections.append(conn("c3", "B", "D"))
        result = solve(nodes, connections, ["C", "D"])

        self.assertTrue(result.feasible)
        self.assertEqual(result.machine_count_by_node["C"], 2.37)
        self.assertEqual(result.machine_count_by_node["D"], 1.1)
        self.assertNotIn("C", result.updates)
        self.assertAlmostEqual(result.machine_count_by_node["B"], 2 * (2.37 + 1.1), places=6)

    def test_unconnected_inputs_impose_no_demand(self):
        nodes = [
            node("C", inputs=[("ore", 5)], count=2),
            node("Idle", outputs=[("ore", 1)], count=4),
        ]
        result = solve(nodes, [], ["C"])
        self.assertTrue(result.feasible)
        self.assertEqual(result.machine_count_by_node["Idle"], 0.0)
        self.assertEqual(result.updates, {})

    def test_unrelated_line_is_left_alone(self):
        nodes, connections = plate_chain(target_count=3)
        nodes += [
            node("IslandSrc", outputs=[("sand", 1)], count=5),
            node("IslandUse", inputs=[("sand", 1)], count=5),
        ]
        connections.append(conn("island", "IslandSrc", "IslandUse"))
        result = solve(nodes, connections, ["C"])

        self.assertTrue(result.feasible)
        self.assertEqual(result.machine_count_by_node["IslandSrc"], 0.0)
        self.assertEqual(result.updates.keys(), {"A", "B"})

    def test_already_balanced(self):
        nodes, connections = plate_chain(target_count=3)
        nodes[0]["machineCount"] = 6
        nodes[1]["machineCount"] = 6
        result = solve(nodes, connections, ["C"])
        for node_id, count in result.updates.items():
            self.assertAlmostEqual(count, 6.0, places=8, msg=node_id)

    def test_no_targets(self):
        nodes, connections = plate_chain()
        result = solve(nodes, connections, [])
        self.assertFalse(result.feasible)
        self.assertEqual(result.status, "no_targets")

        # unknown target ids are ignored too
        self.assertEqual(solve(nodes, connections, ["ghost"]).status, "no_targets")

    def test_starved_loop_is_infeasible(self):
        nodes, connections = starved_loop()
        result = solve(nodes, connections, ["T"])

        self.assertFalse(result.feasible)
        self.assertEqual(result.status, "infeasible")
        self.assertTrue(result.has_deficiency)
        self.assertAlmostEqual(sum(d.shortfall for d in result.deficiencies), 1.0, places=5)
        for d in result.deficiencies:
            self.assertEqual(d.targets, ["T"])
        self.assertEqual(result.updates, {})
        self.assertIn("insufficient input supply", result.message)

    def test_self_consuming_target_is_infeasible(self):
        nodes = [node("X", inputs=[("p", 2)], outputs=[("p", 1)], count=1)]
        result = solve(nodes, [conn("loop", "X", "X")], ["X"])
        self.assertEqual(result.status, "infeasible")
        self.assertEqual(result.deficiencies[0].node_id, "X")
        self.assertAlmostEqual(result.deficiencies[0].shortfall, 1.0, places=6)

    def test_permissive_mode_minimizes_shortfall(self):
        nodes, connections = starved_loop()
        result = solve(nodes, connections, ["T"], {"allowDeficiency": True})

        self.assertTrue(result.feasible)
        self.assertTrue(result.has_deficiency)
        self.assertAlmostEqual(sum(d.shortfall for d in result.deficiencies), 1.0, places=5)
        # any U in [1, 2] leaves the same shortfall; the smallest is chosen
        self.assertAlmostEqual(result.machine_count_by_node["U"], 1.0, places=6)
        self.assertEqual(result.machine_count_by_node["T"], 1)

    def test_permissive_mode_without_shortage_matches_strict(self):
        nodes, connections = two_producer_scenario()
        strict = solve(nodes, connections, ["C"])
        permissive = solve(nodes, connections, ["C"], SolveOptions(allow_deficiency=True))
        self.assertFalse(permissive.has_deficiency)
        self.assertAlmostEqual(sum(strict.machine_count_by_node.values()),
                               sum(permissive.machine_count_by_node.values()), places=6)

    def test_weights_change_the_preferred_producer(self):
        nodes, connections = two_producer_scenario()
        result = solve(nodes, connections, ["C"], {"weights": {"P2": 10}})
        self.assertAlmostEqual(result.machine_count_by_node["P1"], 5.0, places=6)
        self.assertAlmostEqual(result.machine_count_by_node["P2"], 0.0, places=6)

    def test_variable_supply_needs_no_machines(self):
        nodes = [
            node("Well", outputs=[("water", "Variable")], count=3),
            node("Q", inputs=[("water", 12)], count=1),
        ]
        result = solve(nodes, [conn("c", "Well", "Q")], ["Q"])
        self.assertTrue(result.feasible)
        self.assertEqual(result.machine_count_by_node["Well"], 0.0)

    def test_inputs_are_not_mutated(self):
        nodes, connections = plate_chain()
        solve(nodes, connections, ["C"])
        self.assertEqual(nodes[0]["machineCount"], 1)
        self.assertEqual(nodes[1]["machineCount"], 1)

    def test_to_dict_boundary_shape(self):
        nodes, connections = two_producer_scenario()
        data = solve(nodes, connections, ["C"]).to_dict()
        for key in ("feasible", "machineCountByNode", "flowByNode", "flowByConnection"):
            self.assertIn(key, data)
        self.assertAlmostEqual(data["flowByConnection"]["c2"], 10.0, places=6)

    def test_lp_layout(self):
        nodes, connections = plate_chain()
        lp = EquilibriumLP(build_production_graph(nodes, connections), {"C", "ghost"})
        self.assertEqual(lp.targets, {"C"})
        self.assertEqual(lp.demand_handles, [("B", 0), ("C", 0)])
        A_ub, b_ub = lp.build_constraints(with_deficits=False)
        # two capacity rows (A, B outputs) and two demand rows
        self.assertEqual(A_ub.shape, (4, 5))
        self.assertEqual(len(b_ub), 4)

    def test_solve_full_graph_direct(self):
        nodes, connections = two_producer_scenario()
        graph = build_production_graph(nodes, connections)
        lp_result = solve_full_graph(graph, {"C"})
        self.assertTrue(lp_result.feasible)
        self.assertAlmostEqual(lp_result.objective, 1 + 10 / 3, places=6)
        self.assertAlmostEqual(lp_result.connection_flows["c2"], 10.0, places=6)


class TestAgainstReference(unittest.TestCase):
    # Generated acyclic networks: valid, conserved and as small as the reference LP

    def test_generated_networks(self):
        for seed in range(12):
            problem = generate_factory_network(seed)
            with self.subTest(seed=seed):
                result = solve(problem["nodes"], problem["connections"], problem["targets"], problem["options"])
                self.assertTrue(result.feasible)
                errors = validate_solution(problem, result.to_dict())
                self.assertEqual(errors, [])

    def test_reference_matches_scenario(self):
        nodes, connections = two_producer_scenario()
        problem = {"nodes": nodes, "connections": connections, "targets": ["C"]}
        self.assertAlmostEqual(reference_minimum(problem), 1 + 10 / 3, places=5)


if __name__ == "__main__":
    unittest.main()
