from sim_types import ServerSnapshot, ServerState, ServerTypeConfig

# Consecutive ACTIVE steps on one queue needed to reach full specialization
SPECIALIZATION_RAMP_STEPS = 20
# A stopped server drains for this many lifecycle updates before removal
STOP_DRAIN_STEPS = 1


class Server:
    """
    A rented worker attached to one queue.

    Lifecycle: STARTING -> ACTIVE -> {SWITCHING -> ACTIVE, STOPPING -> removed}.
    STARTING, SWITCHING and STOPPING are timed; only ACTIVE servers produce
    throughput and incur running cost. Staying ACTIVE on the same queue builds
    a specialization bonus that ramps linearly up to the type's cap.
    """

    def __init__(self, id: str, type: str, queue: str, config: ServerTypeConfig):
        self.id = id
        self.type = type
        self.queue = queue
        self.config = config
        self.state = ServerState.STARTING
        self.state_timer: int = config.warmup_time
        self.specialization: float = 0.0
        self.steps_on_queue: int = 0

    def update(self, timestep: int) -> None:
        """Advance the lifecycle by one step."""
        if self.state in (ServerState.STARTING, ServerState.SWITCHING):
            self.state_timer -= 1
            if self.state_timer <= 0:
                self.state = ServerState.ACTIVE
                self.state_timer = 0
        elif self.state == ServerState.ACTIVE:
            self.steps_on_queue += 1
            max_spec = self.config.max_specialization
            self.specialization = min(
                (self.steps_on_queue / SPECIALIZATION_RAMP_STEPS) * max_spec,
                max_spec,
            )
        elif self.state == ServerState.STOPPING:
            self.state_timer -= 1
        else:
            raise ValueError(f"Unknown server state: {self.state}")

    def throughput(self) -> float:
        if self.state != ServerState.ACTIVE:
            return 0.0
        return self.config.throughput * (1 + self.specialization)

    def cost_per_step(self) -> float:
        return self.config.cost_per_step if self.state == ServerState.ACTIVE else 0.0

    def reassign_to(self, new_queue: str) -> bool:
        """Move to another queue. Only an ACTIVE server can be reassigned."""
        if self.state != ServerState.ACTIVE:
            return False

        self.queue = new_queue
        self.state = ServerState.SWITCHING
        self.state_timer = self.config.switching_time
        self._reset_specialization()
        return True

    def stop(self) -> None:
        self.state = ServerState.STOPPING
        self.state_timer = STOP_DRAIN_STEPS
        self._reset_specialization()

    def can_remove(self) -> bool:
        return self.state == ServerState.STOPPING and self.state_timer <= 0

    def _reset_specialization(self) -> None:
        self.specialization = 0.0
        self.steps_on_queue = 0

    @staticmethod
    def startup_cost(config: ServerTypeConfig) -> float:
        return config.startup_cost

    @staticmethod
    def switching_cost(config: ServerTypeConfig) -> float:
        return config.switching_cost

    def snapshot(self) -> ServerSnapshot:
        return ServerSnapshot(
            id=self.id,
            type=self.type,
            queue=self.queue,
            state=self.state,
            specialization=round(self.specialization, 3),
        )

    def __repr__(self):
        return f"Server({self.id}, {self.type}, {self.queue}, {self.state.value})"
