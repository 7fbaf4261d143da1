import logging
from typing import Dict, Mapping

from .graph import ProductionGraph

logger = logging.getLogger(__name__)

EPSILON = 1e-10


def extract_machine_updates(counts: Mapping[str, float], graph: ProductionGraph) -> Dict[str, float]:
    # Turn raw solver counts into the node -> new count deltas the caller merges back
    updates: Dict[str, float] = {}

    for node_id, node in graph.nodes.items():
        if node_id not in counts:
            continue
        new_count = counts[node_id]
        if new_count < -EPSILON:
            logger.debug("Discarding negative count %.3g for %s", new_count, node_id)
            continue

        final_count = max(0.0, new_count)
        if final_count < EPSILON:
            # ~0 counts are never merged back
            continue

        if abs(final_count - node.machine_count) > EPSILON:
            updates[node_id] = final_count

    return updates
