"""Plain data shapes exchanged with the surrounding application.

Nodes and connections arrive as camelCase dicts (the editor's wire shape) or
as the dataclasses below. The solver only ever looks at the common projection
of a node: its slots, cycle time, machine count and whether it is a rate-model
node. Kind-specific settings ride along untouched.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

VARIABLE = "Variable"
ANY_PRODUCT = "any"

KIND_RECIPE = "recipe"
KIND_RATE = "rate"
NODE_KINDS = (KIND_RECIPE, KIND_RATE)

Quantity = Union[float, str]


@dataclass(frozen=True)
class Product:
    id: str
    category: str = "item"  # 'item' or 'fluid'


class Catalog:
    # Reference data built once by the caller and handed to the graph builder

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {p.id: p for p in products}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Catalog":
        products = []
        for pid, info in data.items():
            category = info.get("category", "item") if isinstance(info, Mapping) else str(info)
            products.append(Product(pid, category))
        return cls(products)

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def category(self, product_id: str) -> Optional[str]:
        product = self._products.get(product_id)
        return product.category if product else None

    def __contains__(self, product_id: str) -> bool:
        return product_id in self._products

    def __len__(self) -> int:
        return len(self._products)


@dataclass(frozen=True)
class Slot:
    product_id: str
    quantity: Quantity

    @property
    def is_variable(self) -> bool:
        return self.quantity == VARIABLE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Slot":
        product_id = data.get("productId", data.get("product_id"))
        if product_id is None:
            raise ValueError(f"slot is missing productId: {dict(data)}")
        return cls(str(product_id), _parse_quantity(data.get("quantity", 0.0)))

    def to_dict(self) -> Dict[str, Any]:
        return {"productId": self.product_id, "quantity": self.quantity}


@dataclass(frozen=True)
class Node:
    id: str
    inputs: Tuple[Slot, ...] = ()
    outputs: Tuple[Slot, ...] = ()
    cycle_time: Quantity = 1.0
    machine_count: float = 0.0
    kind: str = KIND_RECIPE
    settings: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_rate_model(self) -> bool:
        return self.kind == KIND_RATE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        if "id" not in data:
            raise ValueError(f"node is missing an id: {dict(data)}")

        kind = data.get("kind")
        if kind is None:
            kind = KIND_RATE if data.get("isRateModel", data.get("is_rate_model", False)) else KIND_RECIPE
        if kind not in NODE_KINDS:
            raise ValueError(f"node {data['id']} has unknown kind {kind!r}")

        cycle_time = data.get("cycleTime", data.get("cycle_time", 1.0))

        return cls(
            id=str(data["id"]),
            inputs=tuple(Slot.from_dict(s) for s in data.get("inputs", [])),
            outputs=tuple(Slot.from_dict(s) for s in data.get("outputs", [])),
            cycle_time=_parse_quantity(cycle_time),
            machine_count=float(data.get("machineCount", data.get("machine_count", 0.0)) or 0.0),
            kind=kind,
            settings=dict(data.get("settings", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "inputs": [s.to_dict() for s in self.inputs],
            "outputs": [s.to_dict() for s in self.outputs],
            "cycleTime": self.cycle_time,
            "machineCount": self.machine_count,
            "isRateModel": self.is_rate_model,
            "kind": self.kind,
            "settings": dict(self.settings),
        }


@dataclass(frozen=True)
class Connection:
    id: str
    source_node_id: str
    source_output_index: int
    target_node_id: str
    target_input_index: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Connection":
        try:
            return cls(
                id=str(data["id"]),
                source_node_id=str(data.get("sourceNodeId", data.get("source_node_id"))),
                source_output_index=int(data.get("sourceOutputIndex", data.get("source_output_index"))),
                target_node_id=str(data.get("targetNodeId", data.get("target_node_id"))),
                target_input_index=int(data.get("targetInputIndex", data.get("target_input_index"))),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed connection {dict(data)}: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceNodeId": self.source_node_id,
            "sourceOutputIndex": self.source_output_index,
            "targetNodeId": self.target_node_id,
            "targetInputIndex": self.target_input_index,
        }


def _parse_quantity(value: Any) -> Quantity:
    if isinstance(value, bool):
        raise ValueError(f"invalid quantity {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        if value == VARIABLE:
            return VARIABLE
        try:
            return float(value)
        except ValueError:
            return VARIABLE
    if value is None:
        return VARIABLE
    raise ValueError(f"invalid quantity {value!r}")


def as_nodes(nodes: Iterable[Union[Node, Mapping[str, Any]]]) -> List[Node]:
    return [n if isinstance(n, Node) else Node.from_dict(n) for n in nodes]


def as_connections(connections: Iterable[Union[Connection, Mapping[str, Any]]]) -> List[Connection]:
    return [c if isinstance(c, Connection) else Connection.from_dict(c) for c in connections]
