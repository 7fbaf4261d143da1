"""Machine-count balancing for factory production networks."""
from .debug import DebugRecorder
from .diagnostics import calculate_suggestions, determine_excess_and_deficiency
from .flows import FlowResult, calculate_flows
from .graph import ProductionGraph, build_production_graph
from .lp import Deficiency, EquilibriumLP, LPResult, solve_full_graph
from .model import ANY_PRODUCT, VARIABLE, Catalog, Connection, Node, Product, Slot
from .propagation import machines_for_new_connection, propagate_from_edit, propagate_from_handle
from .solver import SolveOptions, SolveResult, solve
from .updates import extract_machine_updates

__all__ = [
    "ANY_PRODUCT", "VARIABLE",
    "Catalog", "Connection", "Node", "Product", "Slot",
    "ProductionGraph", "build_production_graph",
    "FlowResult", "calculate_flows",
    "calculate_suggestions", "determine_excess_and_deficiency",
    "Deficiency", "EquilibriumLP", "LPResult", "solve_full_graph",
    "machines_for_new_connection", "propagate_from_edit", "propagate_from_handle",
    "SolveOptions", "SolveResult", "solve",
    "extract_machine_updates",
    "DebugRecorder",
]
