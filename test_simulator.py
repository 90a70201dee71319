import pytest

from conftest import queue_config, server_type
from controllers import idle_controller, reactive_controller
from scenario_loader import DEFAULT_SCENARIO_DIR, load_scenario
from sim_types import ActionSet, ReassignAction, ServerState, StartAction
from simulator import Simulator


def start(type="SMALL", queue="api"):
    return ActionSet(start=[StartAction(type=type, queue=queue)])


def start_once(type="SMALL", queue="api"):
    def controller(state):
        return start(type, queue) if state.timestep == 0 else None

    return controller


def test_unserved_queue_overflows(make_scenario):
    config = make_scenario(
        seed=1,
        max_queue_size=100,
        queues={"api": queue_config(initial_rate=10, timeout_threshold=15)},
    )
    sim = Simulator(config, record_history=True)

    score = sim.run(idle_controller)

    assert sim.state.game_over_reason == "queue_overflow: api"
    sizes = [h.queue_sizes["api"] for h in sim.history]
    growth = [b - a for a, b in zip([0] + sizes, sizes)]
    assert all(9 <= g <= 12 for g in growth)
    assert sizes[-1] > 100
    assert sizes[-2] <= 100
    # The terminal step counts as survived
    assert score == len(sim.history) == sim.state.timestep
    # Never served, so never any timeout penalties
    assert sim.queues["api"].requests_timed_out == 0
    assert sim.state.stats.total_revenue == 0


def test_start_rejected_when_budget_below_startup_cost(make_scenario):
    config = make_scenario(
        initial_budget=100,
        server_types={"BIG": server_type(startup_cost=1000)},
        queues={"api": queue_config(initial_rate=0)},
    )
    sim = Simulator(config)

    sim.step(lambda state: start(type="BIG"))

    assert sim.servers == []
    assert sim.state.budget == 100
    assert sim.state.stats.total_costs == 0


def test_start_charges_startup_cost_and_assigns_ids(make_scenario):
    config = make_scenario(initial_budget=100, max_servers=2)
    sim = Simulator(config)

    sim.step(
        lambda state: ActionSet(start=[StartAction(type="SMALL", queue="api")] * 3)
    )

    assert [s.id for s in sim.servers] == ["server_001", "server_002"]
    assert sim.state.stats.action_costs_this_step == 20
    assert sim.state.budget == 80
    assert all(s.state == ServerState.STARTING for s in sim.servers)


def test_invalid_actions_are_skipped_not_fatal(make_scenario):
    sim = Simulator(make_scenario())

    actions = ActionSet(
        start=[
            StartAction(type="HUGE", queue="api"),
            StartAction(type="SMALL", queue="nowhere"),
            StartAction(type="SMALL", queue="api"),
        ],
        stop=["server_999"],
        reassign=[ReassignAction(server="server_042", queue="api")],
    )
    sim.step(lambda state: actions)

    assert len(sim.servers) == 1
    assert sim.state.stats.action_costs_this_step == 10


def test_bankruptcy_after_threshold_consecutive_negative_steps(make_scenario):
    config = make_scenario(
        initial_budget=10,
        bankruptcy_threshold=3,
        queues={"api": queue_config(initial_rate=0)},
        server_types={
            "SMALL": server_type(startup_cost=10, warmup_time=1, cost_per_step=5)
        },
    )
    sim = Simulator(config)
    controller = start_once()

    sim.step(controller)
    sim.step(controller)
    assert not sim.state.game_over
    assert sim.state.bankruptcy_streak == 2
    assert sim.state.budget == pytest.approx(-10)

    sim.step(controller)
    assert sim.state.game_over
    assert sim.state.game_over_reason == "bankruptcy"
    assert sim.compute_score() == 3


def test_bankruptcy_streak_resets_on_non_negative_budget(make_scenario):
    sim = Simulator(make_scenario(bankruptcy_threshold=3))

    sim.state.budget = -1
    sim.check_game_over()
    sim.check_game_over()
    assert sim.state.bankruptcy_streak == 2

    sim.state.budget = 0
    sim.check_game_over()
    assert sim.state.bankruptcy_streak == 0

    sim.state.budget = -1
    sim.check_game_over()
    sim.check_game_over()
    assert not sim.state.game_over


def test_overflow_takes_priority_over_bankruptcy(make_scenario):
    config = make_scenario(
        max_queue_size=5,
        bankruptcy_threshold=1,
        queues={"api": queue_config(), "batch": queue_config()},
    )
    sim = Simulator(config)
    sim.state.budget = -100
    sim.queues["api"].size = 6
    sim.queues["batch"].size = 6

    sim.check_game_over()

    assert sim.state.game_over_reason == "queue_overflow: api"
    assert sim.state.bankruptcy_streak == 0


def test_stopped_server_is_free_immediately_and_gone_next_step(make_scenario):
    config = make_scenario(
        initial_budget=1000,
        queues={"api": queue_config(initial_rate=3)},
        server_types={"SMALL": server_type(warmup_time=1, cost_per_step=2)},
    )
    sim = Simulator(config)
    stop_at = 3

    def controller(state):
        if state.timestep == 0:
            return start()
        if state.timestep == stop_at:
            return ActionSet(stop=["server_001"])
        return None

    for _ in range(stop_at):
        sim.step(controller)
    assert sim.servers[0].state == ServerState.ACTIVE
    assert sim.state.stats.operational_costs_this_step == 2

    sim.step(controller)
    assert sim.state.stats.operational_costs_this_step == 0
    assert sim.queue_capacities() == {}

    snapshot = sim.build_snapshot()
    assert snapshot.timestep == stop_at + 1
    assert snapshot.servers == []


def test_stopping_twice_is_rejected(make_scenario):
    sim = Simulator(make_scenario(initial_budget=1000))
    sim.step(start_once())

    sim.apply_actions(ActionSet(stop=["server_001", "server_001"]))
    assert sim.servers[0].state == ServerState.STOPPING


def test_reassign_charges_switching_cost_only_when_active(make_scenario):
    config = make_scenario(
        initial_budget=1000,
        queues={"api": queue_config(), "batch": queue_config()},
        server_types={"SMALL": server_type(warmup_time=1, switching_cost=5)},
    )
    sim = Simulator(config)
    sim.apply_actions(start())

    # Still STARTING
    costs = sim.apply_actions(
        ActionSet(reassign=[ReassignAction(server="server_001", queue="batch")])
    )
    assert costs == 0
    assert sim.servers[0].queue == "api"

    sim.update_servers()
    assert sim.servers[0].state == ServerState.ACTIVE

    costs = sim.apply_actions(
        ActionSet(reassign=[ReassignAction(server="server_001", queue="batch")])
    )
    assert costs == 5
    assert sim.servers[0].queue == "batch"
    assert sim.servers[0].state == ServerState.SWITCHING


def test_queue_without_servers_is_not_processed(make_scenario):
    config = make_scenario(
        initial_budget=10_000,
        max_queue_size=10_000,
        queues={
            "api": queue_config(initial_rate=2, timeout_threshold=2),
            "batch": queue_config(initial_rate=2, timeout_threshold=2),
        },
        server_types={"SMALL": server_type(warmup_time=0, throughput=50)},
    )
    sim = Simulator(config)
    controller = start_once(queue="api")

    sim.run(controller, max_timesteps=20)

    batch = sim.queues["batch"]
    assert batch.requests_completed == 0
    assert batch.requests_timed_out == 0
    assert batch.capacity == 0.0
    # Aged requests are not evicted from an unserved queue
    assert batch.requests[0].arrived_at == 0
    assert sim.queues["api"].capacity > 0


def test_assigned_but_inactive_servers_still_trigger_processing(make_scenario):
    config = make_scenario(
        queues={"api": queue_config(initial_rate=2, timeout_threshold=0)},
        server_types={"SMALL": server_type(warmup_time=10)},
    )
    sim = Simulator(config)

    sim.step(start_once())
    sim.step(start_once())

    api = sim.queues["api"]
    assert sim.queue_capacities() == {"api": 0.0}
    # Requests from step 0 are evicted at step 1 despite zero capacity
    assert api.requests_timed_out > 0
    assert all(r.arrived_at == 1 for r in api.requests)


def test_costs_and_revenue_are_recorded_separately(make_scenario):
    config = make_scenario(
        initial_budget=100,
        queues={"api": queue_config(initial_rate=0)},
        server_types={"SMALL": server_type(warmup_time=0, cost_per_step=2)},
    )
    sim = Simulator(config)

    sim.step(start_once())

    stats = sim.state.stats
    assert stats.action_costs_this_step == 10
    assert stats.operational_costs_this_step == 2
    assert stats.costs_this_step == 12
    assert stats.total_costs == 12
    assert stats.revenue_this_step == 0
    assert sim.state.budget == 88


def test_controller_errors_are_survived(make_scenario):
    sim = Simulator(make_scenario())

    def broken(state):
        raise RuntimeError("boom")

    sim.step(broken)
    assert sim.state.timestep == 1
    assert not sim.state.game_over


@pytest.mark.parametrize(
    "output", ["nonsense", 42, {"start": "SMALL"}, {"launch": []}, [1, 2]]
)
def test_malformed_controller_output_means_no_actions(make_scenario, output):
    sim = Simulator(make_scenario())
    sim.step(lambda state: output)
    assert sim.servers == []
    assert sim.state.stats.total_costs == 0


def test_plain_mapping_actions_are_accepted(make_scenario):
    sim = Simulator(make_scenario())
    sim.step(lambda state: {"start": [{"type": "SMALL", "queue": "api"}]})
    assert [s.id for s in sim.servers] == ["server_001"]


def test_snapshot_is_immutable(make_scenario):
    sim = Simulator(make_scenario())
    snapshot = sim.build_snapshot()
    with pytest.raises(Exception):
        snapshot.budget = 1e9
    assert snapshot.config.queues["api"].revenue_per_request == 5


def test_runs_are_deterministic():
    config = load_scenario(DEFAULT_SCENARIO_DIR / "spiky.json")

    def recorded_run():
        snapshots = []

        def controller(state):
            snapshots.append(state.model_dump_json())
            return reactive_controller(state)

        sim = Simulator(config)
        score = sim.run(controller, max_timesteps=150)
        return score, snapshots

    assert recorded_run() == recorded_run()


def test_max_timesteps_cap_leaves_no_reason(make_scenario):
    sim = Simulator(make_scenario(queues={"api": queue_config(initial_rate=0)}))
    score = sim.run(idle_controller, max_timesteps=25)
    assert score == 25
    assert sim.result().game_over_reason is None


def test_iter_steps_yields_each_timestep(make_scenario):
    sim = Simulator(make_scenario(max_queue_size=30))
    timesteps = [state.timestep for state in sim.iter_steps(idle_controller)]
    assert timesteps == list(range(1, len(timesteps) + 1))
    assert sim.state.game_over


def test_step_after_game_over_raises(make_scenario):
    sim = Simulator(make_scenario(max_queue_size=0))
    sim.run(idle_controller)
    with pytest.raises(RuntimeError):
        sim.step(idle_controller)


def test_malformed_entry_does_not_drop_valid_actions(make_scenario):
    sim = Simulator(make_scenario())
    sim.step(start_once())
    assert [s.id for s in sim.servers] == ["server_001"]

    actions = sim._coerce_actions(
        {"start": [{"type": "SMALL"}], "stop": ["server_001"]}
    )
    assert actions.start == []
    assert actions.stop == ["server_001"]

    sim.step(lambda state: {"start": [{"type": "SMALL"}], "stop": ["server_001"]})
    assert sim.servers == []
    # The broken start was not charged
    assert sim.state.stats.action_costs_this_step == 0


def test_valid_entries_survive_beside_malformed_ones(make_scenario):
    sim = Simulator(make_scenario())
    sim.step(
        lambda state: {
            "start": [
                {"type": "SMALL", "queue": "api", "size": "XL"},
                {"type": "SMALL", "queue": "api"},
                "SMALL",
            ],
            "stop": [None, "server_999"],
            "reassign": [{"server": "server_001"}],
        }
    )
    assert [s.id for s in sim.servers] == ["server_001"]
    assert sim.state.stats.action_costs_this_step == 10


def test_snapshot_carries_bankruptcy_threshold(make_scenario):
    sim = Simulator(make_scenario(bankruptcy_threshold=4))
    seen = []
    sim.step(lambda state: seen.append(state.bankruptcy_threshold))
    assert seen == [4]
    assert sim.build_snapshot().bankruptcy_threshold == 4


def test_snapshot_stats_are_frozen_copies(make_scenario):
    sim = Simulator(make_scenario(server_types={"SMALL": server_type(warmup_time=0)}))
    sim.step(start_once())
    snapshot = sim.build_snapshot()

    with pytest.raises(Exception):
        snapshot.stats.total_costs = 0.0
    assert snapshot.stats.total_costs == sim.state.stats.total_costs

    sim.step(idle_controller)
    assert snapshot.stats.total_costs != sim.state.stats.total_costs


def test_iter_steps_yields_detached_states(make_scenario):
    sim = Simulator(
        make_scenario(
            queues={"api": queue_config(initial_rate=0)},
            server_types={"SMALL": server_type(warmup_time=0)},
        )
    )
    sim.step(start_once())

    states = []
    for state in sim.iter_steps(idle_controller):
        states.append(state)
        if len(states) == 5:
            break

    assert [s.timestep for s in states] == [2, 3, 4, 5, 6]
    # Each step charges running cost, so collected totals must differ
    totals = [s.stats.total_costs for s in states]
    assert totals == sorted(set(totals))
    assert states[-1] is not sim.state
