"""solve(): the one-shot LP entry point.

build graph -> LP -> extract deltas -> recompute handle flows at the new
counts. Every outcome comes back as a SolveResult; nothing is raised for an
infeasible or unsolvable network.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .flows import ConnectionFlow, NodeFlow, calculate_flows
from .graph import build_production_graph, with_machine_counts
from .lp import STATUS_ERROR, STATUS_INFEASIBLE, STATUS_OK, Deficiency, solve_full_graph
from .model import Catalog, Connection, Node
from .updates import extract_machine_updates

logger = logging.getLogger(__name__)

STATUS_NO_TARGETS = "no_targets"


@dataclass
class SolveOptions:
    allow_deficiency: bool = False
    weights: Optional[Dict[str, float]] = None  # per-node objective weight, default 1

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SolveOptions":
        data = data or {}
        weights = data.get("weights")
        return cls(
            allow_deficiency=bool(data.get("allowDeficiency", data.get("allow_deficiency", False))),
            weights={str(k): float(v) for k, v in weights.items()} if weights else None,
        )


@dataclass
class SolveResult:
    feasible: bool
    status: str
    machine_count_by_node: Dict[str, float] = field(default_factory=dict)
    flow_by_node: Dict[str, NodeFlow] = field(default_factory=dict)
    flow_by_connection: Dict[str, ConnectionFlow] = field(default_factory=dict)
    updates: Dict[str, float] = field(default_factory=dict)
    deficiencies: List[Deficiency] = field(default_factory=list)
    message: str = ""

    @property
    def has_deficiency(self) -> bool:
        return bool(self.deficiencies)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feasible": self.feasible,
            "status": self.status,
            "machineCountByNode": dict(self.machine_count_by_node),
            "flowByNode": {nid: f.to_dict() for nid, f in self.flow_by_node.items()},
            "flowByConnection": {cid: f.flow_rate for cid, f in self.flow_by_connection.items()},
            "updates": dict(self.updates),
            "hasDeficiency": self.has_deficiency,
            "deficiencies": [d.to_dict() for d in self.deficiencies],
            "message": self.message,
        }


def solve(nodes: Iterable[Union[Node, Mapping[str, Any]]],
          connections: Iterable[Union[Connection, Mapping[str, Any]]],
          targets: Iterable[str],
          options: Optional[Union[SolveOptions, Mapping[str, Any]]] = None,
          catalog: Optional[Catalog] = None) -> SolveResult:
    if not isinstance(options, SolveOptions):
        options = SolveOptions.from_dict(options)

    graph = build_production_graph(nodes, connections, catalog)
    target_ids = {str(t) for t in targets if str(t) in graph.nodes}

    if not target_ids:
        return SolveResult(False, STATUS_NO_TARGETS, message="No target recipes selected")

    lp_result = solve_full_graph(graph, target_ids, options.allow_deficiency, options.weights)

    if lp_result.status == STATUS_ERROR:
        return SolveResult(False, STATUS_ERROR, message=lp_result.message)

    if lp_result.status == STATUS_INFEASIBLE:
        return SolveResult(False, STATUS_INFEASIBLE, deficiencies=lp_result.deficiencies,
                           message=lp_result.message)

    updates = extract_machine_updates(lp_result.machine_counts, graph)
    flows = calculate_flows(with_machine_counts(graph, lp_result.machine_counts))

    if lp_result.deficiencies:
        message = f"Balanced with {len(lp_result.deficiencies)} deficient input(s)"
    elif updates:
        message = f"Updated {len(updates)} nodes"
    else:
        message = "Network already balanced"
    logger.info(message)

    return SolveResult(
        feasible=True,
        status=STATUS_OK,
        machine_count_by_node=lp_result.machine_counts,
        flow_by_node=flows.by_node,
        flow_by_connection=flows.by_connection,
        updates=updates,
        deficiencies=lp_result.deficiencies,
        message=message,
    )
