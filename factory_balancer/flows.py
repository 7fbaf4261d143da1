"""Flow calculator.

Routes every connected output's production to the inputs it is wired to and
reports, per handle, how much is needed or produced versus what actually
arrives. Routing is a single max-flow problem: super source -> output handle
(capacity = production) -> connection -> input handle -> super sink
(capacity = need).
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import networkx as nx
from networkx.algorithms.flow import edmonds_karp

from .graph import ProductionGraph, get_total_consumption, get_total_production

FLOW_TOLERANCE = 1e-6   # absorbs LP noise when flagging deficient/excess handles
CLAMP_TOLERANCE = 1e-10

SUPER_SOURCE = "_SUPER_SOURCE_"
SUPER_SINK = "_SUPER_SINK_"


@dataclass
class InputFlow:
    product_id: str
    needed: float
    connected: float = 0.0
    variable: bool = False

    @property
    def shortage(self) -> float:
        return self.needed - self.connected

    @property
    def deficient(self) -> bool:
        return self.shortage > FLOW_TOLERANCE

    def to_dict(self) -> Dict[str, Any]:
        return {"productId": self.product_id, "needed": self.needed, "connected": self.connected,
                "deficient": self.deficient, "variable": self.variable}


@dataclass
class OutputFlow:
    product_id: str
    produced: float  # for a Variable output, whatever its connections draw
    connected: float = 0.0
    variable: bool = False

    @property
    def excess_rate(self) -> float:
        return self.produced - self.connected

    @property
    def excess(self) -> bool:
        return self.excess_rate > FLOW_TOLERANCE

    def to_dict(self) -> Dict[str, Any]:
        return {"productId": self.product_id, "produced": self.produced, "connected": self.connected,
                "excess": self.excess, "variable": self.variable}


@dataclass
class NodeFlow:
    input_flows: List[InputFlow] = field(default_factory=list)
    output_flows: List[OutputFlow] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputFlows": [f.to_dict() for f in self.input_flows],
            "outputFlows": [f.to_dict() for f in self.output_flows],
        }


@dataclass
class ConnectionFlow:
    flow_rate: float
    supply_ratio: float  # share of the source handle's production
    demand_ratio: float  # share of the target handle's need

    def to_dict(self) -> Dict[str, Any]:
        return {"flowRate": self.flow_rate, "supplyRatio": self.supply_ratio, "demandRatio": self.demand_ratio}


@dataclass
class ProductFlow:
    total_production: float
    total_consumption: float
    connected_flow: float = 0.0


@dataclass
class FlowResult:
    by_node: Dict[str, NodeFlow] = field(default_factory=dict)
    by_connection: Dict[str, ConnectionFlow] = field(default_factory=dict)
    by_product: Dict[str, ProductFlow] = field(default_factory=dict)

    def input_flow(self, node_id: str, input_index: int) -> InputFlow:
        node = self.by_node.get(node_id)
        if node is None or not 0 <= input_index < len(node.input_flows):
            return InputFlow("", 0.0, 0.0)
        return node.input_flows[input_index]

    def output_flow(self, node_id: str, output_index: int) -> OutputFlow:
        node = self.by_node.get(node_id)
        if node is None or not 0 <= output_index < len(node.output_flows):
            return OutputFlow("", 0.0, 0.0)
        return node.output_flows[output_index]

    def connection_flow(self, connection_id: str) -> float:
        conn = self.by_connection.get(connection_id)
        return conn.flow_rate if conn else 0.0

    def deficient_handles(self) -> List[Tuple[str, int]]:
        return [(node_id, i)
                for node_id, node in self.by_node.items()
                for i, f in enumerate(node.input_flows) if f.deficient]

    def excess_handles(self) -> List[Tuple[str, int]]:
        return [(node_id, i)
                for node_id, node in self.by_node.items()
                for i, f in enumerate(node.output_flows) if f.excess]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "byNode": {node_id: f.to_dict() for node_id, f in self.by_node.items()},
            "byConnection": {cid: f.to_dict() for cid, f in self.by_connection.items()},
        }


def clamp_flow(flow: float) -> float:
    # Kill float dust left over by the max-flow augmentations
    return 0.0 if abs(flow) < CLAMP_TOLERANCE else round(flow, 10)


def _route_connections(graph: ProductionGraph) -> Dict[str, float]:
    # Max-flow over all handles at once; returns flow per connection id
    G = nx.DiGraph()
    G.add_node(SUPER_SOURCE)
    G.add_node(SUPER_SINK)

    for conn in graph.connections:
        out_port = ("out", conn.source_node_id, conn.source_output_index)
        in_port = ("in", conn.target_node_id, conn.target_input_index)
        conn_node = ("conn", conn.id)

        if not G.has_edge(SUPER_SOURCE, out_port):
            source = graph.nodes[conn.source_node_id]
            if source.outputs[conn.source_output_index].is_variable:
                G.add_edge(SUPER_SOURCE, out_port)  # no capacity attribute = unbounded
            else:
                G.add_edge(SUPER_SOURCE, out_port, capacity=source.output_rate(conn.source_output_index))

        if not G.has_edge(in_port, SUPER_SINK):
            target = graph.nodes[conn.target_node_id]
            G.add_edge(in_port, SUPER_SINK, capacity=target.input_rate(conn.target_input_index))

        G.add_edge(out_port, conn_node)
        G.add_edge(conn_node, in_port)

    if not graph.connections:
        return {}

    _, flow_dict = nx.maximum_flow(G, SUPER_SOURCE, SUPER_SINK, flow_func=edmonds_karp)

    flows = {}
    for conn in graph.connections:
        out_port = ("out", conn.source_node_id, conn.source_output_index)
        flows[conn.id] = clamp_flow(flow_dict.get(out_port, {}).get(("conn", conn.id), 0.0))
    return flows


def calculate_flows(graph: ProductionGraph) -> FlowResult:
    result = FlowResult()

    for node_id, node in graph.nodes.items():
        result.by_node[node_id] = NodeFlow(
            input_flows=[InputFlow(s.product_id, node.input_rate(s.index), 0.0, s.is_variable) for s in node.inputs],
            output_flows=[OutputFlow(s.product_id, node.output_rate(s.index), 0.0, s.is_variable) for s in node.outputs],
        )

    for product_id in graph.products:
        result.by_product[product_id] = ProductFlow(
            total_production=get_total_production(graph, product_id),
            total_consumption=get_total_consumption(graph, product_id),
        )

    routed = _route_connections(graph)

    for conn in graph.connections:
        flow_rate = routed.get(conn.id, 0.0)
        source_flow = result.by_node[conn.source_node_id].output_flows[conn.source_output_index]
        target_flow = result.by_node[conn.target_node_id].input_flows[conn.target_input_index]

        source_flow.connected += flow_rate
        target_flow.connected += flow_rate
        result.by_product[conn.product_id].connected_flow += flow_rate
        if source_flow.variable:
            # a Variable output produces exactly what is drawn from it
            source_flow.produced += flow_rate
            result.by_product[conn.product_id].total_production += flow_rate

    for conn in graph.connections:
        flow_rate = routed.get(conn.id, 0.0)
        source_flow = result.by_node[conn.source_node_id].output_flows[conn.source_output_index]
        target_flow = result.by_node[conn.target_node_id].input_flows[conn.target_input_index]
        result.by_connection[conn.id] = ConnectionFlow(
            flow_rate=flow_rate,
            supply_ratio=flow_rate / source_flow.produced if source_flow.produced > 0 else 0.0,
            demand_ratio=flow_rate / target_flow.needed if target_flow.needed > 0 else 0.0,
        )

    return result
