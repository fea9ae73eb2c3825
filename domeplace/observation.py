"""Fixed-width observation vector for episode drivers."""

import numpy as np

OBSERVATION_SIZE = 31


def encode_observation(unused_vertices, placed_count, size=OBSERVATION_SIZE):
    """Encode episode progress as a fixed-width float32 vector.

    Slot 0 is the number of unused surface vertices, slot 1 the number of
    cylinders judged stable so far. The remaining slots are reserved and
    always zero, so the length never changes with episode progress.
    """
    if size < 2:
        raise ValueError(f"Observation size must be at least 2, got {size}")
    obs = np.zeros(size, dtype=np.float32)
    obs[0] = unused_vertices
    obs[1] = placed_count
    return obs
