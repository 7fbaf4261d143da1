"""Ratio propagation for single-node machine count edits.

When the user changes one node's count from old to new, every node reachable
through connections is rescaled by the ratio its neighbours settle on. The
most demanding neighbour wins so nothing is left under-supplied, and the pass
count is bounded so an edit always finishes within one interaction.
"""
import logging
from typing import Dict, List, Optional

from .debug import DebugRecorder, NeighbourVote
from .flows import FlowResult
from .graph import ProductionGraph

logger = logging.getLogger(__name__)

EPSILON = 1e-10
RATIO_TOLERANCE = 1e-4
MAX_PROPAGATION_PASSES = 10

INPUT_SIDES = ("input", "left")
OUTPUT_SIDES = ("output", "right")


def _collect_votes(graph: ProductionGraph, node_id: str, ratios: Dict[str, float]):
    node = graph.nodes[node_id]
    downstream: List[NeighbourVote] = []
    upstream: List[NeighbourVote] = []

    # consumers this node feeds
    for slot in node.outputs:
        for conn in graph.outgoing(node_id, slot.index):
            if conn.target_node_id in ratios:
                downstream.append(NeighbourVote(conn.target_node_id, slot.product_id, ratios[conn.target_node_id],
                                                graph.nodes[conn.target_node_id].machine_count))

    # producers this node draws from
    for slot in node.inputs:
        for conn in graph.incoming(node_id, slot.index):
            if conn.source_node_id in ratios:
                upstream.append(NeighbourVote(conn.source_node_id, slot.product_id, ratios[conn.source_node_id],
                                              graph.nodes[conn.source_node_id].machine_count))

    return downstream, upstream


def propagate_from_edit(node_id: str, old_count: float, new_count: float, graph: ProductionGraph,
                        recorder: Optional[DebugRecorder] = None) -> Dict[str, float]:
    """Rescale everything connected to node_id after its count changed.

    Returns a node -> new count map covering every reachable node, including
    the edited one. With old_count ~ 0 there is no ratio to apply, so only the
    edited node is returned.
    """
    if recorder is not None:
        recorder.start(node_id, old_count, new_count)

    if old_count <= EPSILON:
        if recorder is not None:
            recorder.warn(f"{node_id} had no machines, nothing to scale from")
            recorder.finish({node_id: new_count}, 0, True)
        return {node_id: new_count}

    ratio = new_count / old_count
    reachable = graph.reachable_from(node_id)

    ratios: Dict[str, float] = {node_id: ratio}
    new_counts: Dict[str, float] = {n: graph.nodes[n].machine_count for n in reachable}
    new_counts[node_id] = new_count

    passes = 0
    changed = True
    while changed and passes < MAX_PROPAGATION_PASSES:
        changed = False
        passes += 1

        for other in reachable:
            if other == node_id:
                continue

            original = graph.nodes[other].machine_count
            if original <= EPSILON:
                continue

            downstream, upstream = _collect_votes(graph, other, ratios)
            votes = downstream + upstream
            if not votes:
                continue

            final_ratio = max(v.ratio for v in votes)
            current_ratio = ratios.get(other, 1.0)
            applied = abs(final_ratio - current_ratio) > RATIO_TOLERANCE

            if applied:
                ratios[other] = final_ratio
                new_counts[other] = original * final_ratio
                changed = True

            if recorder is not None:
                for v in votes:
                    v.applied = applied and v.ratio == final_ratio
                reason = "scaled to most demanding neighbour" if applied else "ratio unchanged"
                recorder.record_step(passes, other, original * current_ratio, new_counts[other], reason,
                                     applied, downstream, upstream)

    converged = not changed
    if not converged:
        logger.debug("Propagation from %s stopped after %d passes without converging", node_id, passes)

    if recorder is not None:
        for other in reachable:
            if other != node_id and graph.nodes[other].machine_count <= EPSILON:
                recorder.warn(f"{other} has no machines, ratio scaling skipped")
        if not converged:
            recorder.warn(f"propagation did not converge within {MAX_PROPAGATION_PASSES} passes")
        recorder.finish(new_counts, passes, converged)

    return new_counts


def _handle_neighbours(graph: ProductionGraph, node_id: str, side: str, handle_index: int) -> set:
    node = graph.nodes[node_id]
    if side in INPUT_SIDES:
        if not 0 <= handle_index < len(node.inputs):
            return set()
        return {c.source_node_id for c in graph.incoming(node_id, handle_index)}
    if side in OUTPUT_SIDES:
        if not 0 <= handle_index < len(node.outputs):
            return set()
        return {c.target_node_id for c in graph.outgoing(node_id, handle_index)}
    raise ValueError(f"unknown handle side {side!r}")


def propagate_from_handle(node_id: str, side: str, handle_index: int, old_count: float, new_count: float,
                          graph: ProductionGraph, recorder: Optional[DebugRecorder] = None) -> Dict[str, float]:
    # Like propagate_from_edit, minus the nodes wired straight to the handle
    if old_count <= EPSILON:
        return propagate_from_edit(node_id, old_count, new_count, graph, recorder)

    if node_id not in graph.nodes:
        return {}

    excluded = _handle_neighbours(graph, node_id, side, handle_index)
    excluded.discard(node_id)

    all_counts = propagate_from_edit(node_id, old_count, new_count, graph, recorder)
    return {n: count for n, count in all_counts.items() if n not in excluded}


def machines_for_new_connection(rate_per_machine: Optional[float], node_id: str, side: str, handle_index: int,
                                flows: FlowResult) -> float:
    """Machine count for a new node wired to an existing handle.

    On an output handle the new node soaks up the excess; on an input handle
    it covers the shortage. rate_per_machine is the new node's rate for the
    product on the matching slot. Falls back to 1 when there is nothing to go on.
    """
    if node_id not in flows.by_node:
        return 1.0

    if side in OUTPUT_SIDES:
        target_rate = max(0.0, flows.output_flow(node_id, handle_index).excess_rate)
    elif side in INPUT_SIDES:
        target_rate = max(0.0, flows.input_flow(node_id, handle_index).shortage)
    else:
        raise ValueError(f"unknown handle side {side!r}")

    if target_rate <= EPSILON:
        return 0.0
    if rate_per_machine is None or rate_per_machine <= 0:
        return 1.0
    return target_rate / rate_per_machine
