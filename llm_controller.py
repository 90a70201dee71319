import os
from typing import Optional

from langfuse import observe
from langfuse.openai import openai

from constants import DEFAULT_LLM_MODEL, ControllerResponse, build_controller_prompt
from sim_types import ActionSet, StateSnapshot


class LLMController:
    """
    Controller that asks an OpenAI model for fleet actions.

    The model answers with a structured ControllerResponse. Any API or parsing
    error is left to propagate; the simulator treats it as a controller fault
    and carries on with no actions for that timestep.
    """

    def __init__(
        self,
        model: str = DEFAULT_LLM_MODEL,
        decision_interval: int = 1,
        client=None,
    ):
        """
        Args:
            model: OpenAI model name
            decision_interval: Only consult the model every N timesteps
            client: Preconfigured OpenAI-compatible client (defaults to a new one)
        """
        if decision_interval < 1:
            raise ValueError("decision_interval must be >= 1")
        self.model = model
        self.decision_interval = decision_interval
        self.client = client or openai.OpenAI(api_key=os.getenv("OPENAI_API_KEY"))
        self.last_reasoning: Optional[str] = None

    @observe()
    def __call__(self, state: StateSnapshot) -> ActionSet:
        if state.timestep % self.decision_interval != 0:
            return ActionSet()

        response = self.client.responses.parse(
            model=self.model,
            input=[
                {"role": "system", "content": build_controller_prompt(state)},
                {
                    "role": "user",
                    "content": "Decide which servers to start, stop and reassign this timestep.",
                },
            ],
            text_format=ControllerResponse,
        )

        result = response.output_parsed
        self.last_reasoning = result.reasoning

        return ActionSet(start=result.start, stop=result.stop, reassign=result.reassign)
