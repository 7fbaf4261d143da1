"""Production graph builder.

Turns the caller's node and connection lists into per-machine slot rates and a
per-product index of producers, consumers and connections. The graph is
rebuilt from scratch on every solve and never shares state with the inputs.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

from .model import ANY_PRODUCT, Catalog, Connection, Node, as_connections, as_nodes

logger = logging.getLogger(__name__)


@dataclass
class GraphSlot:
    product_id: str
    index: int
    rate_per_machine: Optional[float]  # None when the quantity or cycle time is Variable

    @property
    def is_variable(self) -> bool:
        return self.rate_per_machine is None


@dataclass
class GraphNode:
    id: str
    machine_count: float
    cycle_time: Optional[float]
    is_rate_model: bool
    inputs: List[GraphSlot] = field(default_factory=list)
    outputs: List[GraphSlot] = field(default_factory=list)

    def input_rate(self, index: int, machine_count: Optional[float] = None) -> float:
        # Total consumption at the given (or current) machine count
        slot = self.inputs[index]
        if slot.is_variable:
            return 0.0
        count = self.machine_count if machine_count is None else machine_count
        return slot.rate_per_machine * count

    def output_rate(self, index: int, machine_count: Optional[float] = None) -> float:
        slot = self.outputs[index]
        if slot.is_variable:
            return 0.0
        count = self.machine_count if machine_count is None else machine_count
        return slot.rate_per_machine * count


@dataclass(frozen=True)
class HandleRef:
    node_id: str
    index: int


@dataclass
class GraphConnection:
    id: str
    source_node_id: str
    source_output_index: int
    target_node_id: str
    target_input_index: int
    product_id: str

    @property
    def is_self_loop(self) -> bool:
        return self.source_node_id == self.target_node_id


@dataclass
class ProductBucket:
    category: Optional[str] = None
    producers: List[HandleRef] = field(default_factory=list)
    consumers: List[HandleRef] = field(default_factory=list)
    connections: List[GraphConnection] = field(default_factory=list)


class ProductionGraph:

    def __init__(self):
        self.nodes: Dict[str, GraphNode] = {}
        self.products: Dict[str, ProductBucket] = {}
        self.connections: List[GraphConnection] = []
        self._incoming: Dict[tuple, List[GraphConnection]] = {}
        self._outgoing: Dict[tuple, List[GraphConnection]] = {}

    def bucket(self, product_id: str) -> ProductBucket:
        if product_id not in self.products:
            self.products[product_id] = ProductBucket()
        return self.products[product_id]

    def add_connection(self, conn: GraphConnection) -> None:
        self.connections.append(conn)
        self.bucket(conn.product_id).connections.append(conn)
        self._outgoing.setdefault((conn.source_node_id, conn.source_output_index), []).append(conn)
        self._incoming.setdefault((conn.target_node_id, conn.target_input_index), []).append(conn)

    def incoming(self, node_id: str, input_index: int) -> List[GraphConnection]:
        return self._incoming.get((node_id, input_index), [])

    def outgoing(self, node_id: str, output_index: int) -> List[GraphConnection]:
        return self._outgoing.get((node_id, output_index), [])

    def is_input_connected(self, node_id: str, input_index: int) -> bool:
        return bool(self._incoming.get((node_id, input_index)))

    def neighbours(self, node_id: str) -> Set[str]:
        # Producers this node draws from plus consumers it feeds
        node = self.nodes.get(node_id)
        if node is None:
            return set()
        found = set()
        for slot in node.inputs:
            found.update(c.source_node_id for c in self.incoming(node_id, slot.index))
        for slot in node.outputs:
            found.update(c.target_node_id for c in self.outgoing(node_id, slot.index))
        return found

    def reachable_from(self, start: str) -> List[str]:
        # Worklist BFS, bounded by the node count through the visited set
        if start not in self.nodes:
            return []
        visited = {start}
        order = [start]
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for other in sorted(self.neighbours(current)):
                if other not in visited and other in self.nodes:
                    visited.add(other)
                    order.append(other)
                    queue.append(other)
        return order

    def downstream_of(self, start: str) -> List[str]:
        # Nodes fed, directly or not, by the outputs of start
        if start not in self.nodes:
            return []
        visited = {start}
        queue = deque([start])
        order = []
        while queue:
            current = queue.popleft()
            for slot in self.nodes[current].outputs:
                for conn in self.outgoing(current, slot.index):
                    if conn.target_node_id not in visited:
                        visited.add(conn.target_node_id)
                        order.append(conn.target_node_id)
                        queue.append(conn.target_node_id)
        return order


def _resolve_cycle_time(node: Node) -> Optional[float]:
    if node.is_rate_model:
        return None
    if isinstance(node.cycle_time, float) and node.cycle_time > 0:
        return node.cycle_time
    return None


def _per_machine_rate(node: Node, quantity, cycle_time: Optional[float]) -> Optional[float]:
    if not isinstance(quantity, float):
        return None
    if node.is_rate_model:
        return quantity
    if cycle_time is None:
        return None
    return quantity / cycle_time


def build_production_graph(
    nodes: Iterable[Union[Node, Mapping[str, Any]]],
    connections: Iterable[Union[Connection, Mapping[str, Any]]],
    catalog: Optional[Catalog] = None,
) -> ProductionGraph:
    # Build the in-memory graph; connections that don't line up are dropped
    graph = ProductionGraph()

    for node in as_nodes(nodes):
        if node.id in graph.nodes:
            logger.debug("Duplicate node id %s, keeping the first definition", node.id)
            continue
        cycle_time = _resolve_cycle_time(node)
        graph_node = GraphNode(
            id=node.id,
            machine_count=max(0.0, node.machine_count),
            cycle_time=cycle_time,
            is_rate_model=node.is_rate_model,
        )

        for i, slot in enumerate(node.inputs):
            graph_node.inputs.append(GraphSlot(slot.product_id, i, _per_machine_rate(node, slot.quantity, cycle_time)))
            graph.bucket(slot.product_id).consumers.append(HandleRef(node.id, i))

        for i, slot in enumerate(node.outputs):
            graph_node.outputs.append(GraphSlot(slot.product_id, i, _per_machine_rate(node, slot.quantity, cycle_time)))
            graph.bucket(slot.product_id).producers.append(HandleRef(node.id, i))

        graph.nodes[node.id] = graph_node

    for conn in as_connections(connections):
        source = graph.nodes.get(conn.source_node_id)
        target = graph.nodes.get(conn.target_node_id)
        if source is None or target is None:
            logger.debug("Dropping connection %s: missing endpoint node", conn.id)
            continue

        if not 0 <= conn.source_output_index < len(source.outputs):
            logger.debug("Dropping connection %s: no output %d on %s", conn.id, conn.source_output_index, source.id)
            continue
        if not 0 <= conn.target_input_index < len(target.inputs):
            logger.debug("Dropping connection %s: no input %d on %s", conn.id, conn.target_input_index, target.id)
            continue

        source_product = source.outputs[conn.source_output_index].product_id
        target_product = target.inputs[conn.target_input_index].product_id

        if source_product == ANY_PRODUCT:
            product_id = target_product
        elif target_product == ANY_PRODUCT or source_product == target_product:
            product_id = source_product
        else:
            logger.debug("Dropping connection %s: %s does not feed %s", conn.id, source_product, target_product)
            continue

        graph.add_connection(GraphConnection(
            id=conn.id,
            source_node_id=conn.source_node_id,
            source_output_index=conn.source_output_index,
            target_node_id=conn.target_node_id,
            target_input_index=conn.target_input_index,
            product_id=product_id,
        ))

    if catalog is not None:
        for product_id, bucket in graph.products.items():
            bucket.category = catalog.category(product_id)

    return graph


def with_machine_counts(graph: ProductionGraph, counts: Mapping[str, float]) -> ProductionGraph:
    # Shallow copy of the graph with some machine counts replaced
    copy = ProductionGraph()
    copy.products = graph.products
    copy.connections = graph.connections
    copy._incoming = graph._incoming
    copy._outgoing = graph._outgoing
    for node_id, node in graph.nodes.items():
        copy.nodes[node_id] = GraphNode(
            id=node.id,
            machine_count=counts.get(node_id, node.machine_count),
            cycle_time=node.cycle_time,
            is_rate_model=node.is_rate_model,
            inputs=node.inputs,
            outputs=node.outputs,
        )
    return copy


def get_produced_products(graph: ProductionGraph) -> List[str]:
    return [pid for pid, bucket in graph.products.items() if bucket.producers]


def get_consumed_products(graph: ProductionGraph) -> List[str]:
    return [pid for pid, bucket in graph.products.items() if bucket.consumers]


def get_total_production(graph: ProductionGraph, product_id: str) -> float:
    bucket = graph.products.get(product_id)
    if bucket is None:
        return 0.0
    return sum(graph.nodes[h.node_id].output_rate(h.index) for h in bucket.producers)


def get_total_consumption(graph: ProductionGraph, product_id: str) -> float:
    bucket = graph.products.get(product_id)
    if bucket is None:
        return 0.0
    return sum(graph.nodes[h.node_id].input_rate(h.index) for h in bucket.consumers)
