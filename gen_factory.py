import json
import sys
import random


def generate_factory_network(seed=None):
    # Generates a random, acyclic (hence feasible) production network.
    # Raw sources are rate-model nodes with no inputs; every recipe consumes
    # items made earlier in the chain and the last recipe is the target.

    rng = random.Random(seed)

    num_raw = rng.randint(1, 3)
    num_recipes = rng.randint(2, 6)

    nodes = []
    connections = []
    producers = {}  # item -> [(node_id, output_index)]

    for i in range(num_raw):
        item = f"raw_{i+1}"
        node_id = f"source_{i+1}"
        nodes.append({
            "id": node_id,
            "inputs": [],
            "outputs": [{"productId": item, "quantity": rng.choice([0.5, 1, 2, 7.5])}],
            "cycleTime": 1,
            "machineCount": rng.randint(1, 4),
            "isRateModel": True
        })
        producers[item] = [(node_id, 0)]

    for i in range(num_recipes):
        node_id = f"recipe_{i+1}"

        # Inputs: 1-2 distinct items from raw or previously created items
        available = sorted(producers.keys())
        in_items = rng.sample(available, min(len(available), rng.randint(1, 2)))
        inputs = [{"productId": item, "quantity": rng.randint(1, 4)} for item in in_items]

        new_item = f"item_{i+1}"
        nodes.append({
            "id": node_id,
            "inputs": inputs,
            "outputs": [{"productId": new_item, "quantity": rng.randint(1, 3)}],
            "cycleTime": round(rng.uniform(0.5, 5.0), 1),
            "machineCount": rng.randint(1, 5),
            "isRateModel": False
        })

        # Wire each input to one or two of the item's producers
        for k, item in enumerate(in_items):
            suppliers = producers[item]
            for src_id, src_index in rng.sample(suppliers, min(len(suppliers), rng.randint(1, 2))):
                connections.append({
                    "id": f"c{len(connections)+1}",
                    "sourceNodeId": src_id,
                    "sourceOutputIndex": src_index,
                    "targetNodeId": node_id,
                    "targetInputIndex": k
                })

        producers[new_item] = [(node_id, 0)]

        # Sometimes add a second recipe for an earlier item so items get several producers
        if rng.random() < 0.3 and i > 0:
            item = f"item_{rng.randint(1, i)}"
            alt_id = f"alt_{i+1}"
            raw = f"raw_{rng.randint(1, num_raw)}"
            nodes.append({
                "id": alt_id,
                "inputs": [{"productId": raw, "quantity": 1}],
                "outputs": [{"productId": item, "quantity": rng.randint(1, 4)}],
                "cycleTime": round(rng.uniform(0.5, 5.0), 1),
                "machineCount": 1,
                "isRateModel": False
            })
            connections.append({
                "id": f"c{len(connections)+1}",
                "sourceNodeId": producers[raw][0][0],
                "sourceOutputIndex": 0,
                "targetNodeId": alt_id,
                "targetInputIndex": 0
            })
            producers[item].append((alt_id, 0))

    target_id = f"recipe_{num_recipes}"

    return {
        "nodes": nodes,
        "connections": connections,
        "targets": [target_id],
        "options": {"allowDeficiency": False}
    }


def main():
    # Optional command-line seed argument for reproducibility
    seed = int(sys.argv[1]) if len(sys.argv) > 1 else None

    problem = generate_factory_network(seed)

    # Output generated problem as JSON
    print(json.dumps(problem, indent=2))


if __name__ == "__main__":
    main()
