"""Simple usage example for Psyche.

Builds a small network, drives its sensors, reads its effectors, then
evolves an offspring and round-trips it through the codec.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import psyche_registry as psyche
from psyche_config import BrainConfig, OffspringParams


def main():
    config = BrainConfig(
        propagation_speed=2.0,
        neuron_potential_decay=0.2,
        synapse_reconnection_range=2.0,
        synapse_overdose_receptors=3.0,
    )
    brain = psyche.build(
        config=config,
        neurons=60,
        connections=200,
        radius=4.0,
        max_neurogenesis_range=2.0,
        sensors=3,
        effectors=2,
        seed=7,
    )

    ok, stats = psyche.activity_stats(brain)
    print("=== Initial State ===")
    print(f"nodes={stats.node_count} edges={stats.edge_count}")

    sensors = psyche.get_sensors(brain)
    effectors = psyche.get_effectors(brain)

    print("\n=== Driving sensors (30 ticks) ===")
    for tick in range(30):
        for sensor in sensors:
            psyche.inject_sensor_signal(brain, sensor, 1.5)
        psyche.process(brain, 0.25)
        outputs = [psyche.release_effector_potential(brain, e)[1] for e in effectors]
        if tick % 5 == 0:
            ok, stats = psyche.activity_stats(brain)
            print(
                f"t={tick:02d} signals={stats.signal_count} "
                f"edges={stats.edge_count} effectors={[round(o, 3) for o in outputs]}"
            )

    print("\n=== Evolution ===")
    child = psyche.evolve_mutated(None, brain, params=OffspringParams(new_neurons=5, radius=4.0))
    ok, child_stats = psyche.activity_stats(child)
    print(f"child nodes={child_stats.node_count} edges={child_stats.edge_count}")

    payload = psyche.serialize_bytes(child)
    restored = psyche.deserialize_bytes(payload, discard_signals=True)
    print(f"binary payload: {len(payload)} bytes, restored={psyche.exists(restored)}")

    for handle in (brain, child, restored):
        psyche.destroy(handle)


if __name__ == "__main__":
    main()
