"""LP equilibrium solver.

Variables are one machine count per node, one flow per connection and (in
permissive mode) one shortfall per connected input. Output handles cap their
outgoing flow at count x rate, connected inputs need at least count x rate,
targets are pinned at their current count. Minimizing total (weighted) machine
count gives the smallest network that keeps every connected input fed.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

import numpy as np
from scipy.optimize import linprog

from .graph import ProductionGraph

logger = logging.getLogger(__name__)

EXTRACTION_TOLERANCE = 1e-10
DEFICIT_TOLERANCE = 1e-6
SHORTFALL_SLACK = 1e-9  # phase 2 may exceed the phase 1 optimum by this much (relative)
LP_SOLVER_METHOD = 'highs'  # HiGHS dual simplex / IPM, picked by scipy

STATUS_OK = "ok"
STATUS_INFEASIBLE = "infeasible"
STATUS_ERROR = "error"


@dataclass
class Deficiency:
    node_id: str
    input_index: int
    product_id: str
    shortfall: float
    targets: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "inputIndex": self.input_index,
            "productId": self.product_id,
            "shortfall": self.shortfall,
            "targets": list(self.targets),
        }


@dataclass
class LPResult:
    status: str
    machine_counts: Dict[str, float] = field(default_factory=dict)
    connection_flows: Dict[str, float] = field(default_factory=dict)
    deficiencies: List[Deficiency] = field(default_factory=list)
    objective: Optional[float] = None
    message: str = ""

    @property
    def feasible(self) -> bool:
        return self.status == STATUS_OK

    @property
    def total_shortfall(self) -> float:
        return sum(d.shortfall for d in self.deficiencies)


def snap(value: float) -> float:
    return 0.0 if abs(value) < EXTRACTION_TOLERANCE else float(value)


class EquilibriumLP:
    # Holds the variable layout for one graph and builds / solves the LP

    def __init__(self, graph: ProductionGraph, targets: Set[str], weights: Optional[Mapping[str, float]] = None):
        self.graph = graph
        self.targets = {t for t in targets if t in graph.nodes}
        self.weights = dict(weights or {})

        self.node_ids = list(graph.nodes.keys())
        self.node_to_index = {nid: i for i, nid in enumerate(self.node_ids)}
        self.num_nodes = len(self.node_ids)

        self.connection_ids = [c.id for c in graph.connections]
        self.num_connections = len(self.connection_ids)

        self._collect_demands()

    def _collect_demands(self):
        # Connected input handles with a definite rate; only these get a demand row
        self.demand_handles: List[Tuple[str, int]] = []
        for node_id in self.node_ids:
            node = self.graph.nodes[node_id]
            for slot in node.inputs:
                if slot.is_variable:
                    continue
                if self.graph.is_input_connected(node_id, slot.index):
                    self.demand_handles.append((node_id, slot.index))
        self.num_deficits = len(self.demand_handles)

    def _flow_column(self, conn_index: int) -> int:
        return self.num_nodes + conn_index

    def _deficit_column(self, demand_index: int) -> int:
        return self.num_nodes + self.num_connections + demand_index

    def build_constraints(self, with_deficits: bool) -> Tuple[np.ndarray, np.ndarray]:
        # A_ub x <= b_ub rows for capacity and demand

        num_vars = self.num_nodes + self.num_connections + (self.num_deficits if with_deficits else 0)
        conn_index = {cid: i for i, cid in enumerate(self.connection_ids)}
        rows: List[np.ndarray] = []

        # capacity: sum(outgoing flow) - rate * m <= 0
        for node_id in self.node_ids:
            node = self.graph.nodes[node_id]
            for slot in node.outputs:
                outgoing = self.graph.outgoing(node_id, slot.index)
                if slot.is_variable or not outgoing:
                    continue
                row = np.zeros(num_vars)
                row[self.node_to_index[node_id]] = -slot.rate_per_machine
                for conn in outgoing:
                    row[self._flow_column(conn_index[conn.id])] += 1.0
                rows.append(row)

        # demand: rate * m - sum(incoming flow) - deficit <= 0
        for d, (node_id, input_index) in enumerate(self.demand_handles):
            slot = self.graph.nodes[node_id].inputs[input_index]
            row = np.zeros(num_vars)
            row[self.node_to_index[node_id]] = slot.rate_per_machine
            for conn in self.graph.incoming(node_id, input_index):
                row[self._flow_column(conn_index[conn.id])] -= 1.0
            if with_deficits:
                row[self._deficit_column(d)] = -1.0
            rows.append(row)

        A_ub = np.array(rows) if rows else np.empty((0, num_vars))
        b_ub = np.zeros(len(rows))
        return A_ub, b_ub

    def build_bounds(self, with_deficits: bool) -> List[Tuple[float, Optional[float]]]:
        bounds: List[Tuple[float, Optional[float]]] = []
        for node_id in self.node_ids:
            if node_id in self.targets:
                current = self.graph.nodes[node_id].machine_count
                bounds.append((current, current))
            else:
                bounds.append((0, None))
        bounds += [(0, None)] * self.num_connections
        if with_deficits:
            bounds += [(0, None)] * self.num_deficits
        return bounds

    def machine_objective(self, num_vars: int) -> np.ndarray:
        c = np.zeros(num_vars)
        for node_id, i in self.node_to_index.items():
            c[i] = float(self.weights.get(node_id, 1.0))
        return c

    def _run(self, c, A_ub, b_ub, bounds):
        try:
            return linprog(c=c, A_ub=A_ub if A_ub.size else None, b_ub=b_ub if b_ub.size else None,
                           bounds=bounds, method=LP_SOLVER_METHOD)
        except ValueError as e:
            logger.error("linprog rejected the model: %s", e)
            return None

    def solve(self, allow_deficiency: bool = False) -> LPResult:
        logger.debug("LP model: %d nodes, %d connections, %d demand rows, %d targets",
                     self.num_nodes, self.num_connections, self.num_deficits, len(self.targets))

        if allow_deficiency:
            return self._solve_permissive()

        A_ub, b_ub = self.build_constraints(with_deficits=False)
        bounds = self.build_bounds(with_deficits=False)
        c = self.machine_objective(self.num_nodes + self.num_connections)

        result = self._run(c, A_ub, b_ub, bounds)
        if result is None:
            return LPResult(STATUS_ERROR, message="Solver rejected the model")

        if result.status == 0:
            return self.format_success_output(result.x, result.fun)

        if result.status == 2:
            # Strict model has no solution; find out which inputs can't be fed
            diagnosis = self._minimize_shortfall()
            deficiencies = diagnosis[1] if diagnosis else []
            return LPResult(STATUS_INFEASIBLE, deficiencies=deficiencies,
                            message=self.format_infeasible_message(deficiencies))

        return LPResult(STATUS_ERROR, message=f"Solver failed: {result.message}")

    def _minimize_shortfall(self):
        # Phase 1: smallest total shortfall reachable with the targets pinned
        num_vars = self.num_nodes + self.num_connections + self.num_deficits
        A_ub, b_ub = self.build_constraints(with_deficits=True)
        bounds = self.build_bounds(with_deficits=True)

        c = np.zeros(num_vars)
        c[self.num_nodes + self.num_connections:] = 1.0

        result = self._run(c, A_ub, b_ub, bounds)
        if result is None or result.status != 0:
            return None
        return result.fun, self.extract_deficiencies(result.x)

    def _solve_permissive(self) -> LPResult:
        phase1 = self._minimize_shortfall()
        if phase1 is None:
            return LPResult(STATUS_ERROR, message="Solver failed while minimizing shortfall")
        best_shortfall, _ = phase1

        # Phase 2: keep the shortfall at its optimum, minimize machines
        num_vars = self.num_nodes + self.num_connections + self.num_deficits
        A_ub, b_ub = self.build_constraints(with_deficits=True)
        cap_row = np.zeros(num_vars)
        cap_row[self.num_nodes + self.num_connections:] = 1.0
        A_ub = np.vstack([A_ub, cap_row]) if A_ub.size else cap_row.reshape(1, -1)
        b_ub = np.append(b_ub, best_shortfall + SHORTFALL_SLACK * max(1.0, best_shortfall))

        result = self._run(self.machine_objective(num_vars), A_ub, b_ub, self.build_bounds(with_deficits=True))
        if result is None or result.status != 0:
            return LPResult(STATUS_ERROR, message="Solver failed while minimizing machine count")

        output = self.format_success_output(result.x, result.fun)
        output.deficiencies = self.extract_deficiencies(result.x)
        return output

    def extract_deficiencies(self, x: np.ndarray) -> List[Deficiency]:
        deficiencies = []
        for d, (node_id, input_index) in enumerate(self.demand_handles):
            shortfall = snap(x[self._deficit_column(d)])
            if shortfall > DEFICIT_TOLERANCE:
                deficiencies.append(Deficiency(
                    node_id=node_id,
                    input_index=input_index,
                    product_id=self.graph.nodes[node_id].inputs[input_index].product_id,
                    shortfall=shortfall,
                    targets=self.affected_targets(node_id),
                ))
        deficiencies.sort(key=lambda d: -d.shortfall)
        return deficiencies

    def affected_targets(self, node_id: str) -> List[str]:
        # Targets whose supply chain runs through node_id
        found = [node_id] if node_id in self.targets else []
        found += [n for n in self.graph.downstream_of(node_id) if n in self.targets]
        return sorted(set(found))

    def format_success_output(self, x: np.ndarray, objective: float) -> LPResult:
        counts: Dict[str, float] = {}
        for node_id, i in self.node_to_index.items():
            if node_id in self.targets:
                # pinned exactly, no float round-trip
                counts[node_id] = self.graph.nodes[node_id].machine_count
            else:
                counts[node_id] = max(0.0, snap(x[i]))

        flows = {cid: max(0.0, snap(x[self._flow_column(k)])) for k, cid in enumerate(self.connection_ids)}

        for node_id, count in counts.items():
            old = self.graph.nodes[node_id].machine_count
            if abs(count - old) > EXTRACTION_TOLERANCE:
                logger.debug("  %s: %.4f -> %.4f", node_id, old, count)

        return LPResult(STATUS_OK, machine_counts=counts, connection_flows=flows, objective=float(objective))

    def format_infeasible_message(self, deficiencies: List[Deficiency]) -> str:
        if not deficiencies:
            return "No feasible solution found (infeasible constraints)"
        details = "\n".join(
            f"  {d.node_id}: needs {d.shortfall:.4f}/s more of {d.product_id}" for d in deficiencies
        )
        return ("Cannot balance production - insufficient input supply detected:\n"
                f"{details}\n\nThis usually means a loop consumes more than it produces.")


def solve_full_graph(graph: ProductionGraph, targets: Set[str], allow_deficiency: bool = False,
                     weights: Optional[Mapping[str, float]] = None) -> LPResult:
    return EquilibriumLP(graph, targets, weights).solve(allow_deficiency=allow_deficiency)
