"""Excess / deficiency reporting and machine-count fix suggestions."""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .debug import DebugRecorder
from .flows import FLOW_TOLERANCE, FlowResult
from .graph import ProductionGraph
from .model import Catalog

logger = logging.getLogger(__name__)

EPSILON = 1e-10


@dataclass
class ExcessProduct:
    product_id: str
    category: Optional[str]
    excess_rate: float
    total_production: float
    connected_consumption: float

    @property
    def percentage_excess(self) -> float:
        return self.excess_rate / self.total_production * 100 if self.total_production > 0 else 0.0


@dataclass
class DeficientProduct:
    product_id: str
    category: Optional[str]
    deficiency_rate: float
    total_consumption: float
    connected_production: float
    affected_nodes: List[Dict[str, Any]]

    @property
    def percentage_deficient(self) -> float:
        return self.deficiency_rate / self.total_consumption * 100 if self.total_consumption > 0 else 0.0


@dataclass
class Suggestion:
    node_id: str
    handle_type: str        # 'input' or 'output'
    handle_index: int
    product_id: str
    adjustment_type: str    # 'increase' or 'decrease'
    reason: str
    current_flow: float
    target_flow: float
    current_machine_count: float
    suggested_machine_count: float
    has_constrained_outputs: bool = False
    is_multi_output: bool = False

    @property
    def delta_flow(self) -> float:
        return self.target_flow - self.current_flow

    @property
    def machine_delta(self) -> float:
        return self.suggested_machine_count - self.current_machine_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "handleType": self.handle_type,
            "handleIndex": self.handle_index,
            "productId": self.product_id,
            "adjustmentType": self.adjustment_type,
            "reason": self.reason,
            "currentFlow": self.current_flow,
            "targetFlow": self.target_flow,
            "deltaFlow": self.delta_flow,
            "currentMachineCount": self.current_machine_count,
            "suggestedMachineCount": self.suggested_machine_count,
            "machineDelta": self.machine_delta,
            "hasConstrainedOutputs": self.has_constrained_outputs,
            "isMultiOutput": self.is_multi_output,
        }


def determine_excess_and_deficiency(graph: ProductionGraph, flows: FlowResult, catalog: Optional[Catalog] = None):
    excess: List[ExcessProduct] = []
    deficiency: Dict[str, DeficientProduct] = {}

    for product_id, bucket in graph.products.items():
        product_flow = flows.by_product.get(product_id)
        if product_flow is None:
            continue
        category = catalog.category(product_id) if catalog else bucket.category

        excess_rate = product_flow.total_production - product_flow.connected_flow
        if excess_rate > FLOW_TOLERANCE:
            excess.append(ExcessProduct(product_id, category, excess_rate,
                                        product_flow.total_production, product_flow.connected_flow))

        for handle in bucket.consumers:
            shortage = flows.input_flow(handle.node_id, handle.index).shortage
            if shortage <= FLOW_TOLERANCE:
                continue
            entry = deficiency.get(product_id)
            if entry is None:
                entry = DeficientProduct(product_id, category, 0.0, product_flow.total_consumption,
                                         product_flow.connected_flow, [])
                deficiency[product_id] = entry
            entry.deficiency_rate += shortage
            entry.affected_nodes.append({"nodeId": handle.node_id, "inputIndex": handle.index, "shortage": shortage})

    excess.sort(key=lambda e: -e.excess_rate)
    deficient = sorted(deficiency.values(), key=lambda d: -d.deficiency_rate)
    return excess, deficient


def find_outputs_for_deficient_input(graph: ProductionGraph, node_id: str, input_index: int) -> Dict[tuple, dict]:
    """Outputs that could help feed a short input.

    Direct suppliers, plus suppliers of the inputs that compete with it for
    the same outputs (raising those frees up supply for this one).
    """
    candidates: Dict[tuple, dict] = {}
    node = graph.nodes.get(node_id)
    if node is None or not 0 <= input_index < len(node.inputs):
        return candidates

    visited = {(node_id, input_index)}
    queue = deque([(node_id, input_index)])

    while queue:
        consumer_id, consumer_index = queue.popleft()
        for conn in graph.incoming(consumer_id, consumer_index):
            key = (conn.source_node_id, conn.source_output_index)
            candidates[key] = {"nodeId": conn.source_node_id, "outputIndex": conn.source_output_index}

            for competing in graph.outgoing(conn.source_node_id, conn.source_output_index):
                competing_key = (competing.target_node_id, competing.target_input_index)
                if competing_key in visited:
                    continue
                visited.add(competing_key)
                queue.append(competing_key)

    return candidates


def _has_constrained_outputs(graph: ProductionGraph, node_id: str, output_index: int) -> bool:
    # Would raising this node also push other outputs into consumers with no alternative supplier?
    node = graph.nodes[node_id]
    if len(node.outputs) < 2:
        return False
    for slot in node.outputs:
        if slot.index == output_index:
            continue
        for conn in graph.outgoing(node_id, slot.index):
            alternatives = [c for c in graph.incoming(conn.target_node_id, conn.target_input_index)
                            if c.source_node_id != node_id]
            if not alternatives:
                return True
    return False


def _round_count(value: float) -> float:
    return round(value, 10)


def calculate_suggestions(graph: ProductionGraph, flows: FlowResult,
                          recorder: Optional[DebugRecorder] = None) -> List[Suggestion]:
    suggestions: List[Suggestion] = []

    # Deficient inputs: raise their suppliers, or lower the consumer
    for node_id, node in graph.nodes.items():
        for slot in node.inputs:
            input_flow = flows.input_flow(node_id, slot.index)
            shortage = input_flow.shortage
            if shortage <= FLOW_TOLERANCE:
                continue

            candidates = find_outputs_for_deficient_input(graph, node_id, slot.index)
            external = {k: v for k, v in candidates.items() if v["nodeId"] != node_id}

            if candidates and not external:
                message = (f"{node_id} input {slot.index} ({slot.product_id}): shortage is self-loop only, "
                           "skipped, no external supplier")
                logger.debug(message)
                if recorder is not None:
                    recorder.warn(message)
                # no machine-count ratio can satisfy self-consumption
                continue

            for info in external.values():
                supplier = graph.nodes[info["nodeId"]]
                current = supplier.machine_count
                if current <= 0:
                    continue
                out_slot = supplier.outputs[info["outputIndex"]]
                if out_slot.is_variable or out_slot.rate_per_machine <= EPSILON:
                    continue

                produced = flows.output_flow(supplier.id, out_slot.index).produced
                suggestions.append(Suggestion(
                    node_id=supplier.id,
                    handle_type="output",
                    handle_index=out_slot.index,
                    product_id=out_slot.product_id,
                    adjustment_type="increase",
                    reason="connected_shortage",
                    current_flow=produced,
                    target_flow=produced + shortage,
                    current_machine_count=current,
                    suggested_machine_count=_round_count(current + shortage / out_slot.rate_per_machine),
                    has_constrained_outputs=_has_constrained_outputs(graph, supplier.id, out_slot.index),
                    is_multi_output=len(supplier.outputs) > 1,
                ))

            if not slot.is_variable and slot.rate_per_machine > EPSILON:
                reduced = node.machine_count - shortage / slot.rate_per_machine
                if reduced > EPSILON:
                    suggestions.append(Suggestion(
                        node_id=node_id,
                        handle_type="input",
                        handle_index=slot.index,
                        product_id=slot.product_id,
                        adjustment_type="decrease",
                        reason="shortage",
                        current_flow=input_flow.connected,
                        target_flow=input_flow.connected,
                        current_machine_count=node.machine_count,
                        suggested_machine_count=_round_count(reduced),
                    ))

    # Excess outputs: lower the producer, or raise the consumers it feeds
    for node_id, node in graph.nodes.items():
        if node.machine_count <= 0:
            continue
        for slot in node.outputs:
            output_flow = flows.output_flow(node_id, slot.index)
            excess = output_flow.excess_rate
            if excess <= FLOW_TOLERANCE or slot.is_variable or slot.rate_per_machine <= EPSILON:
                continue

            reduced = node.machine_count - excess / slot.rate_per_machine
            if reduced > EPSILON:
                suggestions.append(Suggestion(
                    node_id=node_id,
                    handle_type="output",
                    handle_index=slot.index,
                    product_id=slot.product_id,
                    adjustment_type="decrease",
                    reason="excess",
                    current_flow=output_flow.produced,
                    target_flow=output_flow.produced - excess,
                    current_machine_count=node.machine_count,
                    suggested_machine_count=_round_count(reduced),
                ))

            for conn in graph.outgoing(node_id, slot.index):
                consumer = graph.nodes[conn.target_node_id]
                in_slot = consumer.inputs[conn.target_input_index]
                if consumer.machine_count <= 0 or in_slot.is_variable or in_slot.rate_per_machine <= EPSILON:
                    continue
                connected = flows.input_flow(consumer.id, in_slot.index).connected
                suggestions.append(Suggestion(
                    node_id=consumer.id,
                    handle_type="input",
                    handle_index=in_slot.index,
                    product_id=in_slot.product_id,
                    adjustment_type="increase",
                    reason="excess_available",
                    current_flow=connected,
                    target_flow=connected + excess,
                    current_machine_count=consumer.machine_count,
                    suggested_machine_count=_round_count(consumer.machine_count + excess / in_slot.rate_per_machine),
                ))

    return suggestions


def suggestion_for_handle(suggestions: List[Suggestion], node_id: str, handle_type: str,
                          handle_index: int) -> Optional[Suggestion]:
    for s in suggestions:
        if s.node_id == node_id and s.handle_type == handle_type and s.handle_index == handle_index:
            return s
    return None


def suggestions_for_node(suggestions: List[Suggestion], node_id: str) -> List[Suggestion]:
    return [s for s in suggestions if s.node_id == node_id]
