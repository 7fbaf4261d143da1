# Small builders for hand-written production networks


def node(node_id, inputs=(), outputs=(), cycle_time=1.0, count=1.0, rate_model=False):
    # inputs / outputs are (product, quantity) pairs
    return {
        "id": node_id,
        "inputs": [{"productId": p, "quantity": q} for p, q in inputs],
        "outputs": [{"productId": p, "quantity": q} for p, q in outputs],
        "cycleTime": cycle_time,
        "machineCount": count,
        "isRateModel": rate_model,
    }


def conn(conn_id, source, target, source_index=0, target_index=0):
    return {
        "id": conn_id,
        "sourceNodeId": source,
        "sourceOutputIndex": source_index,
        "targetNodeId": target,
        "targetInputIndex": target_index,
    }


def two_producer_scenario():
    # P1 makes 2/s per machine, P2 3/s, both feed C which needs 10/s
    nodes = [
        node("P1", outputs=[("gear", 2)], count=1),
        node("P2", outputs=[("gear", 3)], count=1),
        node("C", inputs=[("gear", 10)], outputs=[("engine", 1)], count=1),
    ]
    connections = [conn("c1", "P1", "C"), conn("c2", "P2", "C")]
    return nodes, connections


def plate_chain(target_count=3):
    # ore source -> smelter -> assembler (target)
    nodes = [
        node("A", outputs=[("ore", 1)], count=1, rate_model=True),
        node("B", inputs=[("ore", 2)], outputs=[("plate", 1)], cycle_time=2, count=1),
        node("C", inputs=[("plate", 1)], outputs=[("gear", 1)], cycle_time=1, count=target_count),
    ]
    connections = [conn("c1", "A", "B"), conn("c2", "B", "C")]
    return nodes, connections


def starved_loop():
    # T (target) needs 2/s of b; b only comes from U, which needs a that only T makes at 1/s
    nodes = [
        node("T", inputs=[("b", 2)], outputs=[("a", 1)], count=1),
        node("U", inputs=[("a", 1)], outputs=[("b", 1)], count=1),
    ]
    connections = [conn("c1", "T", "U"), conn("c2", "U", "T")]
    return nodes, connections


def simple_chain(counts=(2, 2, 2)):
    # A -> B -> C, one unit per second through each link
    a, b, c = counts
    nodes = [
        node("A", outputs=[("x", 1)], count=a),
        node("B", inputs=[("x", 1)], outputs=[("y", 1)], count=b),
        node("C", inputs=[("y", 1)], count=c),
    ]
    connections = [conn("c1", "A", "B"), conn("c2", "B", "C")]
    return nodes, connections
