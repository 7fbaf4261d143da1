import sys
import json
import numpy as np
from scipy.optimize import linprog

TOLERANCE = 1e-6


def per_machine_rate(node, quantity):
    # Re-compute per-machine rate straight from the raw input (same rules as the graph builder).
    if not isinstance(quantity, (int, float)) or isinstance(quantity, bool):
        return None
    if node.get("isRateModel") or node.get("kind") == "rate":
        return float(quantity)
    cycle_time = node.get("cycleTime", 1.0)
    if not isinstance(cycle_time, (int, float)) or cycle_time <= 0:
        return None
    return float(quantity) / cycle_time


def valid_connections(inp):
    # Connections whose endpoints exist and whose products line up
    nodes = {n["id"]: n for n in inp.get("nodes", [])}
    kept = []
    for c in inp.get("connections", []):
        src = nodes.get(c["sourceNodeId"])
        dst = nodes.get(c["targetNodeId"])
        if src is None or dst is None:
            continue
        if not 0 <= c["sourceOutputIndex"] < len(src.get("outputs", [])):
            continue
        if not 0 <= c["targetInputIndex"] < len(dst.get("inputs", [])):
            continue
        p_out = src["outputs"][c["sourceOutputIndex"]]["productId"]
        p_in = dst["inputs"][c["targetInputIndex"]]["productId"]
        if p_out != p_in and "any" not in (p_out, p_in):
            continue
        kept.append(c)
    return kept


def reference_minimum(inp):
    # Independent LP (interior point) for the minimal total machine count.
    # Returns None if the reference model is infeasible.
    nodes = inp.get("nodes", [])
    targets = set(inp.get("targets", []))
    conns = valid_connections(inp)
    n_idx = {n["id"]: i for i, n in enumerate(nodes)}
    num_vars = len(nodes) + len(conns)

    rows, rhs = [], []
    for node in nodes:
        i = n_idx[node["id"]]
        for k, slot in enumerate(node.get("outputs", [])):
            rate = per_machine_rate(node, slot.get("quantity"))
            outgoing = [j for j, c in enumerate(conns) if c["sourceNodeId"] == node["id"] and c["sourceOutputIndex"] == k]
            if rate is None or not outgoing:
                continue
            row = np.zeros(num_vars)
            row[i] = -rate
            for j in outgoing:
                row[len(nodes) + j] = 1.0
            rows.append(row)
            rhs.append(0.0)
        for k, slot in enumerate(node.get("inputs", [])):
            rate = per_machine_rate(node, slot.get("quantity"))
            incoming = [j for j, c in enumerate(conns) if c["targetNodeId"] == node["id"] and c["targetInputIndex"] == k]
            if rate is None or not incoming:
                continue
            row = np.zeros(num_vars)
            row[i] = rate
            for j in incoming:
                row[len(nodes) + j] = -1.0
            rows.append(row)
            rhs.append(0.0)

    bounds = []
    for node in nodes:
        if node["id"] in targets:
            count = float(node.get("machineCount", 0.0))
            bounds.append((count, count))
        else:
            bounds.append((0, None))
    bounds += [(0, None)] * len(conns)

    c = np.zeros(num_vars)
    c[:len(nodes)] = 1.0

    result = linprog(
        c=c,
        A_ub=np.array(rows) if rows else None,
        b_ub=np.array(rhs) if rows else None,
        bounds=bounds,
        method='highs-ipm'
    )
    if not result.success:
        return None
    return float(np.sum(result.x[:len(nodes)]))


def validate_solution(inp, out):
    # Validate solver output against input rules.
    # Returns a list of error messages (empty if valid).
    errors = []

    if not out.get("feasible"):
        errors.append(f"Output is not feasible: {out.get('status')}")
        return errors

    nodes = {n["id"]: n for n in inp.get("nodes", [])}
    counts = out.get("machineCountByNode", {})

    # Targets stay exactly where they were
    for target in inp.get("targets", []):
        if target in nodes and counts.get(target) != float(nodes[target].get("machineCount", 0.0)):
            errors.append(f"Target '{target}' moved: {nodes[target].get('machineCount')} -> {counts.get(target)}")

    # Connected inputs are fully supplied
    connected_inputs = {(c["targetNodeId"], c["targetInputIndex"]) for c in valid_connections(inp)}
    allow_deficiency = inp.get("options", {}).get("allowDeficiency", False)
    for node_id, flow in out.get("flowByNode", {}).items():
        for k, f in enumerate(flow.get("inputFlows", [])):
            if (node_id, k) not in connected_inputs or allow_deficiency:
                continue
            if f["connected"] < f["needed"] - TOLERANCE:
                errors.append(f"Input {k} of '{node_id}' short: connected {f['connected']:.4f} < needed {f['needed']:.4f}")

    # No negative counts
    for node_id, count in counts.items():
        if count < 0:
            errors.append(f"Node '{node_id}' has negative machine count {count}")

    # Minimality against the reference LP
    if not allow_deficiency:
        reference = reference_minimum(inp)
        total = sum(counts.values())
        if reference is not None and total > reference + TOLERANCE * max(1.0, reference):
            errors.append(f"Total machine count {total:.6f} exceeds reference minimum {reference:.6f}")

    return errors


def main():
    # CLI usage: verify_factory.py <input.json> <output.json>
    if len(sys.argv) != 3:
        print("Usage: python verify_factory.py <input.json> <output.json>", file=sys.stderr)
        sys.exit(1)

    input_file = sys.argv[1]
    output_file = sys.argv[2]

    def load_json(filepath):
        try:
            with open(filepath, 'r', encoding='utf-8-sig') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            print(f"Failed to read {filepath}: {e}", file=sys.stderr)
            return None

    inp = load_json(input_file)
    out = load_json(output_file)

    if inp is None or out is None:
        print("Error: Could not load JSON files.", file=sys.stderr)
        sys.exit(1)

    print(f"Verifying '{output_file}' against '{input_file}'...")
    errors = validate_solution(inp, out)

    if not errors:
        print("\nSolution is VALID")
    else:
        print("\nSolution is INVALID:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)


if __name__ == "__main__":
    main()
