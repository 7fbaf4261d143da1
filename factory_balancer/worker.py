#!/usr/bin/env python
"""Off-thread compute worker.

The caller's snapshot (nodes, connections, targets, weights) is copied into a
separate Python process as JSON on stdin. The worker writes one JSON message
per line on stdout:

    {"type": "result", "result": {...}}              strict solve, always sent
    {"type": "deficiency_result", "result": {...}}   permissive solve, only when
                                                     the strict one hit a deficiency

so the caller can offer the permissive answer without a second round trip.
"""
import json
import logging
import os
import subprocess
import sys
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from .solver import STATUS_INFEASIBLE, SolveOptions, solve

logger = logging.getLogger(__name__)

MESSAGE_RESULT = "result"
MESSAGE_DEFICIENCY_RESULT = "deficiency_result"

PACKAGE_PARENT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ComputeInProgressError(RuntimeError):
    pass


def make_snapshot(nodes, connections, targets, weights: Optional[Mapping[str, float]] = None) -> Dict[str, Any]:
    # Deep copy through JSON so nothing is shared with the caller's objects
    def plain(item):
        return item.to_dict() if hasattr(item, "to_dict") else item

    snapshot = {
        "nodes": [plain(n) for n in nodes],
        "connections": [plain(c) for c in connections],
        "targets": sorted(str(t) for t in targets),
        "weights": dict(weights or {}),
    }
    return json.loads(json.dumps(snapshot))


def run_compute(snapshot: Mapping[str, Any], post: Callable[[Dict[str, Any]], None]) -> None:
    nodes = snapshot.get("nodes", [])
    connections = snapshot.get("connections", [])
    targets = snapshot.get("targets", [])
    weights = snapshot.get("weights") or None

    # First pass: strict, no deficiency allowed
    result = solve(nodes, connections, targets, SolveOptions(allow_deficiency=False, weights=weights))
    post({"type": MESSAGE_RESULT, "result": result.to_dict()})

    if result.status == STATUS_INFEASIBLE and result.has_deficiency:
        logger.info("Strict solve hit a deficiency, running permissive pass")
        permissive = solve(nodes, connections, targets, SolveOptions(allow_deficiency=True, weights=weights))
        post({"type": MESSAGE_DEFICIENCY_RESULT, "result": permissive.to_dict()})


class ComputeDispatcher:
    """Runs compute requests in a child process, one at a time.

    A second dispatch while one is outstanding raises ComputeInProgressError;
    a stale result has nowhere sensible to go. Abandoning the messages()
    generator early kills and reaps the worker.
    """

    def __init__(self, python_exe: Optional[str] = None):
        self.python_exe = python_exe or sys.executable
        self._process: Optional[subprocess.Popen] = None

    @property
    def busy(self) -> bool:
        return self._process is not None

    def dispatch(self, snapshot: Mapping[str, Any]) -> None:
        if self.busy:
            raise ComputeInProgressError("a compute request is already running")

        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(p for p in (PACKAGE_PARENT, env.get("PYTHONPATH")) if p)

        self._process = subprocess.Popen(
            [self.python_exe, "-m", "factory_balancer.worker"],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        try:
            self._process.stdin.write(json.dumps(snapshot))
            self._process.stdin.close()
        except (OSError, TypeError, ValueError):
            self._reap(self._process)
            self._process = None
            raise

    @staticmethod
    def _reap(process: subprocess.Popen) -> None:
        # Kill a worker that is still running and wait for it, closing its pipes
        if process.poll() is None:
            process.kill()
        process.wait()
        for pipe in (process.stdin, process.stdout, process.stderr):
            if pipe is None or pipe.closed:
                continue
            try:
                pipe.close()
            except OSError as e:
                logger.debug("Closing worker pipe failed: %s", e)

    def messages(self) -> Iterator[Dict[str, Any]]:
        # Yields worker messages as they arrive, then frees the dispatcher
        if self._process is None:
            return
        process = self._process
        try:
            for line in process.stdout:
                line = line.strip()
                if line:
                    yield json.loads(line)
            stderr = process.stderr.read()
            process.wait()
            if process.returncode != 0:
                logger.error("Compute worker exited with %s: %s", process.returncode, stderr.strip())
        finally:
            self._reap(process)
            self._process = None

    def compute(self, snapshot: Mapping[str, Any]) -> List[Dict[str, Any]]:
        self.dispatch(snapshot)
        return list(self.messages())


def main():
    # Entry point: read snapshot JSON, emit one message per line

    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)

    def post(message):
        sys.stdout.write(json.dumps(message) + "\n")
        sys.stdout.flush()

    try:
        snapshot = json.load(sys.stdin)
        run_compute(snapshot, post)
    except Exception as e:
        post({
            "type": MESSAGE_RESULT,
            "result": {"feasible": False, "status": "error",
                       "message": f"An unexpected error occurred: {str(e)}"},
        })


if __name__ == "__main__":
    main()
