import math
from collections import deque
from dataclasses import dataclass
from typing import Deque

from random_stream import RandomStream
from sim_types import QueueConfig, QueueEconomics, QueueSnapshot

HEAT_MIN = 0.5
HEAT_MAX = 1.5
ACTIVE_SPIKE_MULTIPLIER = 1.5
NEW_SPIKE_MULTIPLIER = 2.0
SPIKE_DURATION_RANGE = (2, 4)
NOISE_BAND = 0.15
FRESHNESS_BONUS = 0.3
TIMEOUT_PENALTY = 0.5


@dataclass
class RequestBatch:
    """Requests that arrived in the same timestep; they age and expire together."""

    arrived_at: int
    count: int


class DemandQueue:
    """
    One named stream of stochastic demand and its FIFO backlog.

    Demand follows a compounding base rate scaled by a bounded random-walk
    "heat" factor, with occasional multi-step spikes and +/-15% noise.
    Draining pays per request served on time, adds a freshness bonus for fast
    service and charges a penalty for every request that aged past the
    timeout threshold.

    The backlog holds one RequestBatch per arrival timestep, oldest first, so
    its memory grows with the number of distinct arrival steps and not with
    the number of requests.
    """

    def __init__(self, name: str, config: QueueConfig, rng: RandomStream):
        self.name = name
        self.config = config
        self.rng = rng

        self.base_rate: float = config.initial_rate
        self.heat: float = 1.0
        self.spike_remaining: int = 0
        self.demand_rate: float = 0.0
        self.capacity: float = 0.0
        self.requests: Deque[RequestBatch] = deque()
        self.size: int = 0
        # Last processed step only, overwritten on every process_requests call
        self.requests_completed: int = 0
        self.requests_timed_out: int = 0

    def generate_demand(self, timestep: int) -> None:
        """Draw this step's demand and append the new requests to the backlog."""
        self.base_rate *= 1 + self.config.growth_factor

        volatility = self.config.heat_volatility
        self.heat += self.rng.uniform(-volatility, volatility)
        self.heat = min(max(self.heat, HEAT_MIN), HEAT_MAX)

        spike = 0.0
        if self.spike_remaining > 0:
            spike = self.base_rate * ACTIVE_SPIKE_MULTIPLIER
            self.spike_remaining -= 1
        elif self.rng.uniform(0.0, 1.0) < self.config.spike_probability:
            spike = self.base_rate * NEW_SPIKE_MULTIPLIER
            self.spike_remaining = self.rng.uniform_int(*SPIKE_DURATION_RANGE)

        variation = self.rng.uniform(-NOISE_BAND, NOISE_BAND) * self.base_rate
        self.demand_rate = max(self.base_rate * self.heat + variation + spike, 0.0)

        # Half-up rounding; demand_rate is never negative
        arrivals = math.floor(self.demand_rate + 0.5)
        if arrivals > 0:
            self.requests.append(RequestBatch(arrived_at=timestep, count=arrivals))
            self.size += arrivals

    def process_requests(self, capacity: float, timestep: int) -> float:
        """
        Serve up to floor(capacity) of the oldest requests, then evict anything
        left in the backlog that is past the timeout.

        Returns:
            The revenue delta of this step; negative when penalties dominate.
        """
        self.capacity = capacity
        revenue_per_request = self.config.revenue_per_request
        timeout = self.config.timeout_threshold
        remaining = min(math.floor(capacity), self.size)

        revenue = 0.0
        completed = 0
        timed_out = 0

        while remaining > 0:
            batch = self.requests[0]
            taken = min(batch.count, remaining)
            age = timestep - batch.arrived_at
            if age <= timeout:
                revenue += taken * revenue_per_request
                if age <= timeout * 0.5:
                    revenue += taken * revenue_per_request * FRESHNESS_BONUS
                completed += taken
            else:
                # Served too late
                revenue -= taken * revenue_per_request * TIMEOUT_PENALTY
                timed_out += taken

            batch.count -= taken
            remaining -= taken
            if batch.count == 0:
                self.requests.popleft()

        survivors: Deque[RequestBatch] = deque()
        for batch in self.requests:
            if timestep - batch.arrived_at > timeout:
                revenue -= batch.count * revenue_per_request * TIMEOUT_PENALTY
                timed_out += batch.count
            else:
                survivors.append(batch)
        self.requests = survivors

        self.size = sum(batch.count for batch in self.requests)
        self.requests_completed = completed
        self.requests_timed_out = timed_out

        return revenue

    def economics(self) -> QueueEconomics:
        return QueueEconomics(
            revenue_per_request=self.config.revenue_per_request,
            timeout_threshold=self.config.timeout_threshold,
        )

    def snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(
            size=self.size,
            demand_rate=round(self.demand_rate, 2),
            capacity=round(self.capacity, 2),
            heat=round(self.heat, 3),
            requests_completed=self.requests_completed,
            requests_timed_out=self.requests_timed_out,
        )

    def __repr__(self):
        return f"DemandQueue({self.name!r}, size={self.size}, heat={self.heat:.2f})"
