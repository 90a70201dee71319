import pytest

from sim_types import QueueConfig, ScenarioConfig, ServerTypeConfig


def queue_config(**overrides) -> QueueConfig:
    params = {
        "initial_rate": 10,
        "growth_factor": 0.0,
        "heat_volatility": 0.0,
        "spike_probability": 0.0,
        "revenue_per_request": 5,
        "timeout_threshold": 15,
    }
    params.update(overrides)
    return QueueConfig(**params)


def server_type(**overrides) -> ServerTypeConfig:
    params = {
        "throughput": 5,
        "cost_per_step": 2,
        "warmup_time": 3,
        "startup_cost": 10,
        "switching_time": 3,
        "switching_cost": 5,
        "max_specialization": 0.15,
    }
    params.update(overrides)
    return ServerTypeConfig(**params)


@pytest.fixture
def make_scenario():
    """Factory for small scenarios: one 'api' queue and one 'SMALL' type by default."""

    def _make(queues=None, server_types=None, **overrides) -> ScenarioConfig:
        params = {
            "seed": 1,
            "initial_budget": 200,
            "max_servers": 20,
            "max_queue_size": 500,
            "bankruptcy_threshold": 10,
            "queues": queues or {"api": queue_config()},
            "server_types": server_types or {"SMALL": server_type()},
        }
        params.update(overrides)
        return ScenarioConfig(**params)

    return _make
