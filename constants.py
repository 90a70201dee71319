import json
from typing import List

from pydantic import BaseModel, ConfigDict

from sim_types import ReassignAction, StartAction, StateSnapshot

DEFAULT_LLM_MODEL = "gpt-4o-mini"


class ControllerResponse(BaseModel):
    """LLM response schema for one timestep of fleet decisions."""

    model_config = ConfigDict(extra="forbid")

    reasoning: str
    start: List[StartAction]
    stop: List[str]
    reassign: List[ReassignAction]


def build_controller_prompt(state: StateSnapshot) -> str:
    """Build the system prompt describing the current state of the run."""
    queues = {
        name: {
            **queue.model_dump(),
            **state.config.queues[name].model_dump(),
        }
        for name, queue in state.queues.items()
    }
    servers = [server.model_dump(mode="json") for server in state.servers]
    server_types = {
        name: config.model_dump() for name, config in state.config.server_types.items()
    }

    return f"""You are operating a fleet of rented servers that drain named request queues.

GOAL: survive as many timesteps as possible. The run ends when
  - any queue holds more than {state.max_queue_size} requests (queue overflow), or
  - the budget stays negative for {state.bankruptcy_threshold} consecutive timesteps (bankruptcy).
Profit does not count directly; it only keeps you out of bankruptcy.

CURRENT TIMESTEP: {state.timestep}
BUDGET: {state.budget:.2f}
SERVERS: {len(state.servers)} / {state.max_servers}

QUEUES (size, demand_rate, capacity, heat, last-step completed/timed out, economics):
{json.dumps(queues, indent=2)}

SERVERS:
{json.dumps(servers, indent=2) if servers else "No servers running."}

SERVER TYPES:
{json.dumps(server_types, indent=2)}

LAST STEP: revenue {state.stats.revenue_this_step:.2f}, costs {state.stats.costs_this_step:.2f}

RULES:
- start: new server of a type on a queue. Pays startup_cost now, works after warmup_time steps.
- stop: a server id. It stops working immediately and is gone next step.
- reassign: move an ACTIVE server to another queue. Pays switching_cost, idle for switching_time steps,
  and loses its specialization bonus.
- Only ACTIVE servers process requests and cost cost_per_step.
- Requests older than timeout_threshold cost half their revenue instead of paying.
- Specialization grows while a server stays ACTIVE on one queue, up to max_specialization.

Return empty lists when no change is needed."""
