"""Structured trace of the iterative (propagation / suggestion) paths.

Purely diagnostic: nothing in here is read back by the solvers.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class NeighbourVote:
    node_id: str
    product_id: str
    ratio: float
    count: float    # neighbour's original machine count
    applied: bool = False  # True when this vote set the node's ratio

    def to_dict(self) -> Dict[str, Any]:
        return {"nodeId": self.node_id, "productId": self.product_id, "ratio": self.ratio,
                "count": self.count, "applied": self.applied}


@dataclass
class PropagationStep:
    step: int
    pass_index: int
    node_id: str
    old_count: float
    new_count: float
    reason: str
    applied: bool
    downstream: List[NeighbourVote] = field(default_factory=list)
    upstream: List[NeighbourVote] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "pass": self.pass_index,
            "nodeId": self.node_id,
            "oldCount": self.old_count,
            "newCount": self.new_count,
            "reason": self.reason,
            "applied": self.applied,
            "downstream": [v.to_dict() for v in self.downstream],
            "upstream": [v.to_dict() for v in self.upstream],
        }


class DebugRecorder:

    def __init__(self):
        self.source_node_id: Optional[str] = None
        self.old_machine_count: Optional[float] = None
        self.new_machine_count: Optional[float] = None
        self.steps: List[PropagationStep] = []
        self.warnings: List[str] = []
        self.final_counts: Dict[str, float] = {}
        self.passes = 0
        self.converged = False

    def start(self, source_node_id: str, old_count: float, new_count: float) -> None:
        self.source_node_id = source_node_id
        self.old_machine_count = old_count
        self.new_machine_count = new_count

    @property
    def ratio(self) -> Optional[float]:
        if not self.old_machine_count:
            return None
        return self.new_machine_count / self.old_machine_count

    def record_step(self, pass_index: int, node_id: str, old_count: float, new_count: float, reason: str,
                    applied: bool, downstream: List[NeighbourVote], upstream: List[NeighbourVote]) -> PropagationStep:
        step = PropagationStep(len(self.steps) + 1, pass_index, node_id, old_count, new_count, reason,
                               applied, downstream, upstream)
        self.steps.append(step)
        return step

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def finish(self, final_counts: Dict[str, float], passes: int, converged: bool) -> None:
        self.final_counts = dict(final_counts)
        self.passes = passes
        self.converged = converged

    def applied_steps(self) -> List[PropagationStep]:
        return [s for s in self.steps if s.applied]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceNodeId": self.source_node_id,
            "oldMachineCount": self.old_machine_count,
            "newMachineCount": self.new_machine_count,
            "ratio": self.ratio,
            "steps": [s.to_dict() for s in self.steps],
            "warnings": list(self.warnings),
            "finalCounts": dict(self.final_counts),
            "passes": self.passes,
            "converged": self.converged,
        }
