import random


class RandomStream:
    """
    Seeded source of every random draw in a run.

    All stochastic behaviour of the simulator goes through one instance, so a
    run is a pure function of the seed and the order of calls.
    """

    def __init__(self, seed: int):
        self.seed = seed
        self._rng = random.Random(seed)

    def uniform(self, low: float, high: float) -> float:
        """Uniform real in [low, high]."""
        return self._rng.uniform(low, high)

    def uniform_int(self, low: int, high: int) -> int:
        """Uniform integer in [low, high], both ends inclusive."""
        return self._rng.randint(low, high)
