from typing import Annotated, Callable, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

# --- Scenario Configuration ---


class QueueConfig(BaseModel):
    """Parameters of one demand queue, as read from a scenario file."""

    model_config = ConfigDict(frozen=True)

    initial_rate: Annotated[
        float, Field(description="Base demand (requests/step) at t=0.", ge=0)
    ]
    growth_factor: Annotated[
        float,
        Field(description="Per-step compounding growth of the base rate.", gt=-1),
    ] = 0.0
    heat_volatility: Annotated[
        float, Field(description="Half-width of the heat random walk step.", ge=0)
    ] = 0.0
    spike_probability: Annotated[
        float, Field(description="Chance that a new spike starts.", ge=0, le=1)
    ] = 0.0
    revenue_per_request: Annotated[
        float, Field(description="Revenue for one on-time request.", ge=0)
    ]
    timeout_threshold: Annotated[
        int, Field(description="Max age (steps) at which a request still pays.", ge=0)
    ]


class ServerTypeConfig(BaseModel):
    """Cost/throughput/timing profile shared by every server of one type."""

    model_config = ConfigDict(frozen=True)

    throughput: Annotated[float, Field(description="Requests per step.", ge=0)]
    cost_per_step: Annotated[float, Field(description="Running cost.", ge=0)]
    warmup_time: Annotated[int, Field(description="Steps spent STARTING.", ge=0)]
    startup_cost: Annotated[float, Field(description="One-off start cost.", ge=0)]
    switching_time: Annotated[int, Field(description="Steps spent SWITCHING.", ge=0)]
    switching_cost: Annotated[float, Field(description="One-off reassign cost.", ge=0)]
    max_specialization: Annotated[
        float, Field(description="Cap of the throughput bonus.", ge=0)
    ]


class ScenarioConfig(BaseModel):
    """Everything needed to start one run."""

    model_config = ConfigDict(frozen=True)

    seed: int
    initial_budget: float
    max_servers: Annotated[int, Field(ge=1)]
    max_queue_size: Annotated[int, Field(ge=0)]
    bankruptcy_threshold: Annotated[int, Field(ge=1)]
    queues: Annotated[Dict[str, QueueConfig], Field(min_length=1)]
    server_types: Annotated[Dict[str, ServerTypeConfig], Field(min_length=1)]


# --- Server Lifecycle ---


class ServerState(str, Enum):
    """Lifecycle of a server. Only ACTIVE servers work and cost money."""

    STARTING = "STARTING"
    ACTIVE = "ACTIVE"
    SWITCHING = "SWITCHING"
    STOPPING = "STOPPING"


# --- Controller Boundary: Snapshot ---


class QueueSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: int
    demand_rate: float
    capacity: float
    heat: float
    requests_completed: int = 0
    requests_timed_out: int = 0


class ServerSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    queue: str
    state: ServerState
    specialization: float


class QueueEconomics(BaseModel):
    """The part of a queue's configuration a controller may reason about."""

    model_config = ConfigDict(frozen=True)

    revenue_per_request: float
    timeout_threshold: int


class SnapshotConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    queues: Dict[str, QueueEconomics]
    server_types: Dict[str, ServerTypeConfig]


class SimulationStats(BaseModel):
    """Per-step and cumulative money flows."""

    revenue_this_step: float = 0.0
    action_costs_this_step: float = 0.0
    operational_costs_this_step: float = 0.0
    costs_this_step: float = 0.0
    total_revenue: float = 0.0
    total_costs: float = 0.0


class SnapshotStats(SimulationStats):
    """Read-only copy of the money flows handed to the controller."""

    model_config = ConfigDict(frozen=True)


class StateSnapshot(BaseModel):
    """Read-only view of the run handed to the controller once per step."""

    model_config = ConfigDict(frozen=True)

    timestep: int
    budget: float
    max_servers: int
    max_queue_size: int
    bankruptcy_threshold: int
    queues: Dict[str, QueueSnapshot]
    servers: List[ServerSnapshot]
    config: SnapshotConfig
    stats: SnapshotStats


# --- Controller Boundary: Actions ---


class StartAction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str
    queue: str


class ReassignAction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    server: str
    queue: str


class ActionSet(BaseModel):
    """
    Actions requested by a controller for one timestep. Every list is optional
    and each entry is validated independently by the simulator.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: List[StartAction] = Field(default_factory=list)
    stop: List[str] = Field(default_factory=list)
    reassign: List[ReassignAction] = Field(default_factory=list)


# A controller may hand back the model itself, a plain mapping or nothing.
ControllerOutput = Union[ActionSet, dict, None]
Controller = Callable[[StateSnapshot], ControllerOutput]


# --- Simulation Output Structure ---


class StepRecord(BaseModel):
    """One row of the optional per-step run history."""

    timestep: int
    budget: float
    revenue: float
    costs: float
    num_servers: int
    queue_sizes: Dict[str, int]


class RunResult(BaseModel):
    """Final state of a run."""

    score: int
    timesteps: int
    budget: float
    total_revenue: float
    total_costs: float
    game_over_reason: Optional[str] = None

    @property
    def profit(self) -> float:
        return self.total_revenue - self.total_costs


class ScenarioResult(BaseModel):
    """One line of a batch evaluation."""

    scenario: str
    score: int
    timesteps: int
    reason: Optional[str] = None
    budget: float = 0.0
    total_revenue: float = 0.0
    total_costs: float = 0.0
