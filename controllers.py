"""Simple reference controllers."""

from sim_types import ActionSet, StartAction, StateSnapshot


def idle_controller(state: StateSnapshot) -> ActionSet:
    """Never does anything. Useful as a baseline and in tests."""
    return ActionSet()


def reactive_controller(state: StateSnapshot) -> ActionSet:
    """
    Add one server of the cheapest type to the most under-provisioned queue
    each step, as long as there is room and more than 50 in the bank.
    """
    worst_queue = min(
        state.queues,
        key=lambda name: state.queues[name].capacity
        / max(state.queues[name].demand_rate, 1),
    )
    cheapest_type = min(
        state.config.server_types,
        key=lambda name: state.config.server_types[name].startup_cost,
    )

    if len(state.servers) < state.max_servers and state.budget > 50:
        return ActionSet(start=[StartAction(type=cheapest_type, queue=worst_queue)])
    return ActionSet()


CONTROLLERS = {
    "idle": idle_controller,
    "reactive": reactive_controller,
}
