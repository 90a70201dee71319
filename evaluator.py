from pathlib import Path
from typing import List, Optional, Sequence, Union

import click
import numpy as np
import pandas as pd
from langfuse import observe

from scenario_loader import load_scenario
from sim_types import Controller, ScenarioResult
from simulator import Simulator


class Evaluator:
    """Runs one controller across several scenario files and reports the scores."""

    def __init__(
        self,
        scenario_paths: Sequence[Union[str, Path]],
        max_timesteps: Optional[int] = None,
    ):
        """
        Args:
            scenario_paths: JSON scenario files, one independent run each
            max_timesteps: Optional cap per run; a capped run has no end reason
        """
        self.scenario_paths = [Path(p) for p in scenario_paths]
        self.max_timesteps = max_timesteps

    def evaluate(self, controller: Controller) -> List[ScenarioResult]:
        return [self.evaluate_scenario(path, controller) for path in self.scenario_paths]

    @observe()
    def evaluate_scenario(self, path: Path, controller: Controller) -> ScenarioResult:
        sim = Simulator(load_scenario(path))
        score = sim.run(controller, max_timesteps=self.max_timesteps)

        return ScenarioResult(
            scenario=path.stem,
            score=score,
            timesteps=sim.state.timestep,
            reason=sim.state.game_over_reason,
            budget=sim.state.budget,
            total_revenue=sim.state.stats.total_revenue,
            total_costs=sim.state.stats.total_costs,
        )

    @staticmethod
    def average_score(results: List[ScenarioResult]) -> float:
        if not results:
            return 0.0
        return float(np.mean([r.score for r in results]))

    @staticmethod
    def results_frame(results: List[ScenarioResult]) -> pd.DataFrame:
        df = pd.DataFrame([r.model_dump() for r in results])
        if not df.empty:
            df["profit"] = df["total_revenue"] - df["total_costs"]
        return df

    def print_results(self, results: List[ScenarioResult]) -> None:
        click.echo("\n" + "=" * 60)
        click.echo("EVALUATION RESULTS")
        click.echo("=" * 60)

        for r in results:
            click.echo(f"\n{r.scenario}:")
            click.echo(f"  Survived: {r.timesteps} timesteps")
            if r.reason:
                click.echo(f"  Ended: {r.reason}")

        click.echo("\n" + "-" * 60)
        click.echo(f"Average Score: {self.average_score(results):.2f}")
        click.echo("=" * 60)
