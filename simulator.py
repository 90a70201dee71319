import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional

from pydantic import TypeAdapter, ValidationError

from demand_queue import DemandQueue
from random_stream import RandomStream
from server import Server
from sim_types import (
    ActionSet,
    Controller,
    ControllerOutput,
    ReassignAction,
    RunResult,
    ScenarioConfig,
    ServerState,
    SimulationStats,
    SnapshotStats,
    SnapshotConfig,
    StartAction,
    StateSnapshot,
    StepRecord,
)

logger = logging.getLogger(__name__)

ACTION_ADAPTERS = {
    "start": TypeAdapter(StartAction),
    "stop": TypeAdapter(str),
    "reassign": TypeAdapter(ReassignAction),
}


@dataclass
class SimulationState:
    """Mutable aggregate of one run, owned by the Simulator."""

    budget: float
    max_servers: int
    max_queue_size: int
    bankruptcy_threshold: int
    timestep: int = 0
    game_over: bool = False
    game_over_reason: Optional[str] = None
    bankruptcy_streak: int = 0
    stats: SimulationStats = field(default_factory=SimulationStats)


class Simulator:
    """
    Discrete-time simulation of a server fleet draining stochastic demand.

    Every timestep runs the same pipeline:

    1. ask the controller for actions (read-only snapshot in, ActionSet out)
    2. validate and apply start/stop/reassign actions, charge their costs
    3. generate demand on every queue
    4. advance every server's lifecycle, drop stopped ones, charge running cost
    5. let each queue with assigned servers process requests, credit revenue
    6. check for queue overflow, then for sustained bankruptcy

    The run ends at the first terminal condition and is scored by the number
    of timesteps survived.
    """

    def __init__(self, config: ScenarioConfig, record_history: bool = False):
        """
        Initialize the simulator.

        Args:
            config: The scenario configuration
            record_history: If True, keep one StepRecord per timestep in `history`
        """
        self.config = config
        self.record_history = record_history
        self.rng = RandomStream(config.seed)

        self.state = SimulationState(
            budget=float(config.initial_budget),
            max_servers=config.max_servers,
            max_queue_size=config.max_queue_size,
            bankruptcy_threshold=config.bankruptcy_threshold,
        )

        # Insertion order of the scenario is the fixed iteration order
        self.queues: Dict[str, DemandQueue] = {
            name: DemandQueue(name, queue_config, self.rng)
            for name, queue_config in config.queues.items()
        }
        self.servers: List[Server] = []
        self.server_counter: int = 0
        self.history: List[StepRecord] = []

    # --- Run Loop ---

    def run(self, controller: Controller, max_timesteps: Optional[int] = None) -> int:
        """
        Run until a terminal condition, or until `max_timesteps` steps have
        been simulated when a cap is given.

        Returns:
            The score (timesteps survived).
        """
        while not self.state.game_over:
            if max_timesteps is not None and self.state.timestep >= max_timesteps:
                break
            self.step(controller)
        return self.compute_score()

    def iter_steps(self, controller: Controller) -> Iterator[SimulationState]:
        """
        Yield a copy of the state after each timestep; stops once the run is
        over. The copies are detached, so collecting them keeps every step.
        """
        while not self.state.game_over:
            self.step(controller)
            yield replace(self.state, stats=self.state.stats.model_copy())

    def step(self, controller: Controller) -> None:
        """Simulate exactly one timestep."""
        if self.state.game_over:
            raise RuntimeError("Simulation is already over")

        actions = self._invoke_controller(controller)
        self.apply_actions(actions)
        self.update_demand()
        self.update_servers()
        self.process_queues()
        self.check_game_over()

        if self.record_history:
            self.history.append(self._step_record())

        self.state.timestep += 1

    # --- Controller Boundary ---

    def build_snapshot(self) -> StateSnapshot:
        """Build the immutable state object passed to the controller."""
        return StateSnapshot(
            timestep=self.state.timestep,
            budget=round(self.state.budget, 2),
            max_servers=self.state.max_servers,
            max_queue_size=self.state.max_queue_size,
            bankruptcy_threshold=self.state.bankruptcy_threshold,
            queues={name: queue.snapshot() for name, queue in self.queues.items()},
            servers=[server.snapshot() for server in self.servers],
            config=SnapshotConfig(
                queues={
                    name: queue.economics() for name, queue in self.queues.items()
                },
                server_types=dict(self.config.server_types),
            ),
            stats=SnapshotStats(**self.state.stats.model_dump()),
        )

    def _invoke_controller(self, controller: Controller) -> ActionSet:
        snapshot = self.build_snapshot()
        try:
            output = controller(snapshot)
        except Exception:
            logger.exception("Controller error at timestep %d", self.state.timestep)
            return ActionSet()
        return self._coerce_actions(output)

    def _coerce_actions(self, output: ControllerOutput) -> ActionSet:
        """
        Turn controller output into an ActionSet. Entries of a plain mapping are
        validated one by one so a single bad entry does not drop the rest.
        """
        if output is None:
            return ActionSet()
        if isinstance(output, ActionSet):
            return output
        if not isinstance(output, Mapping):
            logger.warning(
                "Ignoring controller output of type %s at timestep %d",
                type(output).__name__,
                self.state.timestep,
            )
            return ActionSet()

        unknown = set(output) - set(ACTION_ADAPTERS)
        if unknown:
            logger.warning(
                "Ignoring unknown action kinds at timestep %d: %s",
                self.state.timestep,
                ", ".join(sorted(map(str, unknown))),
            )

        valid = {}
        for kind, adapter in ACTION_ADAPTERS.items():
            entries = output.get(kind)
            if entries is None:
                continue
            if not isinstance(entries, (list, tuple)):
                logger.warning(
                    "Ignoring '%s' actions at timestep %d: expected a list",
                    kind,
                    self.state.timestep,
                )
                continue

            valid[kind] = []
            for entry in entries:
                try:
                    valid[kind].append(adapter.validate_python(entry))
                except ValidationError as e:
                    logger.warning(
                        "Skipping malformed '%s' action at timestep %d: %s",
                        kind,
                        self.state.timestep,
                        e,
                    )
        return ActionSet(**valid)

    # --- Pipeline Phases ---

    def apply_actions(self, actions: ActionSet) -> float:
        """
        Validate and execute actions; rejected ones are logged and skipped.

        Returns:
            Total start and switching costs charged this step.
        """
        costs_this_step = 0.0

        for start_action in actions.start:
            costs_this_step += self._start_server(start_action)
        for server_id in actions.stop:
            self._stop_server(server_id)
        for reassign_action in actions.reassign:
            costs_this_step += self._reassign_server(reassign_action)

        stats = self.state.stats
        self.state.budget -= costs_this_step
        stats.action_costs_this_step = costs_this_step
        stats.costs_this_step = costs_this_step
        stats.total_costs += costs_this_step
        return costs_this_step

    def _start_server(self, action: StartAction) -> float:
        if len(self.servers) >= self.state.max_servers:
            logger.warning(
                "Cannot start server: at max_servers limit (%d)",
                self.state.max_servers,
            )
            return 0.0

        type_config = self.config.server_types.get(action.type)
        if type_config is None:
            logger.warning("Cannot start server: invalid type '%s'", action.type)
            return 0.0

        if action.queue not in self.queues:
            logger.warning("Cannot start server: invalid queue '%s'", action.queue)
            return 0.0

        startup_cost = Server.startup_cost(type_config)
        if self.state.budget < startup_cost:
            logger.warning(
                "Cannot start server: insufficient budget (need %s, have %.2f)",
                startup_cost,
                self.state.budget,
            )
            return 0.0

        self.server_counter += 1
        server = Server(
            id=f"server_{self.server_counter:03d}",
            type=action.type,
            queue=action.queue,
            config=type_config,
        )
        self.servers.append(server)
        logger.debug("Started %s on '%s'", server.id, server.queue)
        return startup_cost

    def _stop_server(self, server_id: str) -> None:
        server = self._find_server(server_id)
        if server is None:
            logger.warning("Cannot stop server: server '%s' not found", server_id)
            return

        if server.state == ServerState.STOPPING:
            logger.warning("Cannot stop server: server '%s' already stopping", server_id)
            return

        server.stop()

    def _reassign_server(self, action: ReassignAction) -> float:
        server = self._find_server(action.server)
        if server is None:
            logger.warning(
                "Cannot reassign server: server '%s' not found", action.server
            )
            return 0.0

        if action.queue not in self.queues:
            logger.warning("Cannot reassign server: invalid queue '%s'", action.queue)
            return 0.0

        if server.state != ServerState.ACTIVE:
            logger.warning(
                "Cannot reassign server: server '%s' not in ACTIVE state",
                action.server,
            )
            return 0.0

        switching_cost = Server.switching_cost(server.config)
        server.reassign_to(action.queue)
        return switching_cost

    def _find_server(self, server_id: str) -> Optional[Server]:
        for server in self.servers:
            if server.id == server_id:
                return server
        return None

    def update_demand(self) -> None:
        for queue in self.queues.values():
            queue.generate_demand(self.state.timestep)

    def update_servers(self) -> float:
        """Advance lifecycles, remove stopped servers and charge running costs."""
        for server in self.servers:
            server.update(self.state.timestep)

        self.servers = [server for server in self.servers if not server.can_remove()]

        operational_costs = sum(server.cost_per_step() for server in self.servers)
        stats = self.state.stats
        self.state.budget -= operational_costs
        stats.operational_costs_this_step = operational_costs
        stats.costs_this_step += operational_costs
        stats.total_costs += operational_costs
        return operational_costs

    def queue_capacities(self) -> Dict[str, float]:
        """
        Summed throughput per queue that has at least one assigned server.
        Servers that are not ACTIVE contribute 0 but still count as assigned.
        """
        capacities: Dict[str, float] = defaultdict(float)
        for server in self.servers:
            capacities[server.queue] += server.throughput()
        return dict(capacities)

    def process_queues(self) -> float:
        capacities = self.queue_capacities()

        revenue_this_step = 0.0
        for name, queue in self.queues.items():
            if name not in capacities:
                continue
            revenue_this_step += queue.process_requests(
                capacities[name], self.state.timestep
            )

        stats = self.state.stats
        self.state.budget += revenue_this_step
        stats.revenue_this_step = round(revenue_this_step, 2)
        stats.total_revenue += revenue_this_step
        return revenue_this_step

    def check_game_over(self) -> None:
        for name, queue in self.queues.items():
            if queue.size > self.state.max_queue_size:
                self._end(f"queue_overflow: {name}")
                return

        if self.state.budget < 0:
            self.state.bankruptcy_streak += 1
            if self.state.bankruptcy_streak >= self.state.bankruptcy_threshold:
                self._end("bankruptcy")
        else:
            self.state.bankruptcy_streak = 0

    def _end(self, reason: str) -> None:
        self.state.game_over = True
        self.state.game_over_reason = reason
        logger.info(
            "Simulation over at timestep %d: %s", self.state.timestep, reason
        )

    # --- Results ---

    def compute_score(self) -> int:
        """Score is survival time, not profit."""
        return self.state.timestep

    def result(self) -> RunResult:
        return RunResult(
            score=self.compute_score(),
            timesteps=self.state.timestep,
            budget=self.state.budget,
            total_revenue=self.state.stats.total_revenue,
            total_costs=self.state.stats.total_costs,
            game_over_reason=self.state.game_over_reason,
        )

    def _step_record(self) -> StepRecord:
        stats = self.state.stats
        return StepRecord(
            timestep=self.state.timestep,
            budget=self.state.budget,
            revenue=stats.revenue_this_step,
            costs=stats.costs_this_step,
            num_servers=len(self.servers),
            queue_sizes={name: queue.size for name, queue in self.queues.items()},
        )
