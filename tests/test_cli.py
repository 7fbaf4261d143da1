import unittest
import json
import subprocess
import sys
import os

from verify_factory import validate_solution

from tests.fixtures import simple_chain, starved_loop, two_producer_scenario

# --- PATHS ---
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
TEST_OUTPUT_DIR = os.path.join(PROJECT_ROOT, "test_outputs")


class TestBalancerCli(unittest.TestCase):

    def run_balancer(self, input_data, output_filename=None, raw_input=None):
        # Runs the CLI as a subprocess with JSON input and optionally writes the result
        process = subprocess.run(
            [sys.executable, "-m", "factory_balancer.main"],
            input=raw_input if raw_input is not None else json.dumps(input_data),
            text=True,
            capture_output=True,
            cwd=PROJECT_ROOT
        )

        if process.stderr:
            print("Balancer STDERR:", process.stderr)

        self.assertEqual(process.returncode, 0, "Balancer CLI failed")

        try:
            output_data = json.loads(process.stdout)
        except json.JSONDecodeError:
            self.fail(f"Balancer did not output valid JSON. Output: {process.stdout}")

        if output_filename:
            os.makedirs(TEST_OUTPUT_DIR, exist_ok=True)
            with open(os.path.join(TEST_OUTPUT_DIR, output_filename), 'w') as f:
                json.dump(output_data, f, indent=2)

        return output_data

    def test_two_producer_solve(self):
        nodes, connections = two_producer_scenario()
        test_input = {"nodes": nodes, "connections": connections, "targets": ["C"]}

        output = self.run_balancer(test_input, "two_producer_output.json")

        self.assertTrue(output["feasible"])
        self.assertEqual(output["status"], "ok")
        self.assertAlmostEqual(output["machineCountByNode"]["P2"], 10 / 3, places=6)
        self.assertEqual(validate_solution(test_input, output), [])

    def test_infeasible_loop(self):
        nodes, connections = starved_loop()
        output = self.run_balancer({"nodes": nodes, "connections": connections, "targets": ["T"]},
                                   "starved_loop_output.json")

        self.assertFalse(output["feasible"])
        self.assertEqual(output["status"], "infeasible")
        self.assertTrue(output["hasDeficiency"])

    def test_permissive_option(self):
        nodes, connections = starved_loop()
        output = self.run_balancer({"nodes": nodes, "connections": connections, "targets": ["T"],
                                    "options": {"allowDeficiency": True}})
        self.assertTrue(output["feasible"])
        self.assertTrue(output["hasDeficiency"])

    def test_propagate_mode(self):
        nodes, connections = simple_chain()
        output = self.run_balancer({
            "mode": "propagate",
            "nodes": nodes,
            "connections": connections,
            "edit": {"nodeId": "A", "oldCount": 2, "newCount": 4},
        })

        self.assertEqual(output["status"], "ok")
        self.assertEqual(output["machineCountByNode"], {"A": 4.0, "B": 4.0, "C": 4.0})
        self.assertTrue(output["trace"]["converged"])

    def test_bad_json_reports_error(self):
        output = self.run_balancer(None, raw_input="{not json")
        self.assertEqual(output["status"], "error")

    def test_bad_handle_side_reports_error(self):
        nodes, connections = simple_chain()
        output = self.run_balancer({
            "mode": "propagate",
            "nodes": nodes,
            "connections": connections,
            "edit": {"nodeId": "B", "oldCount": 2, "newCount": 4, "side": "top"},
        })
        self.assertEqual(output["status"], "error")


if __name__ == "__main__":
    unittest.main()
