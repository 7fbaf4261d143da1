#!/usr/bin/env python
# Balances machine counts for a production network.
# Reads JSON from stdin, runs the LP solve (or a ratio propagation), prints result as JSON.

import sys
import json
import logging
from typing import Dict, Any

from .debug import DebugRecorder
from .graph import build_production_graph
from .propagation import propagate_from_edit, propagate_from_handle
from .solver import solve


def run_propagation(data: Dict[str, Any]) -> Dict[str, Any]:
    # Interactive edit: {"edit": {"nodeId", "oldCount", "newCount", ["side", "handleIndex"]}}
    edit = data["edit"]
    graph = build_production_graph(data.get("nodes", []), data.get("connections", []))
    recorder = DebugRecorder()

    node_id = str(edit["nodeId"])
    old_count = float(edit["oldCount"])
    new_count = float(edit["newCount"])

    if "side" in edit:
        counts = propagate_from_handle(node_id, edit["side"], int(edit.get("handleIndex", 0)),
                                       old_count, new_count, graph, recorder)
    else:
        counts = propagate_from_edit(node_id, old_count, new_count, graph, recorder)

    return {"status": "ok", "machineCountByNode": counts, "trace": recorder.to_dict()}


def run(data: Dict[str, Any]) -> Dict[str, Any]:
    if data.get("mode") == "propagate":
        return run_propagation(data)

    result = solve(data.get("nodes", []), data.get("connections", []),
                   data.get("targets", []), data.get("options"))
    return result.to_dict()


def main():
    # Entry point: read JSON, run solver, output JSON

    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)

    try:
        input_data = json.load(sys.stdin)
        output_data = run(input_data)

    except Exception as e:
        output_data = {
            "status": "error",
            "message": f"An unexpected error occurred: {str(e)}"
        }

    print(json.dumps(output_data, indent=2))


if __name__ == "__main__":
    main()
