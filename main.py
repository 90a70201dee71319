#!/usr/bin/env python3
"""Command line interface for the server-fleet economy simulator."""

import json
import logging
import os
import sys
from pathlib import Path

import click

from controllers import CONTROLLERS
from constants import DEFAULT_LLM_MODEL
from evaluator import Evaluator
from scenario_loader import DEFAULT_SCENARIO_DIR, ScenarioError, load_scenario, load_scenarios
from simulator import Simulator

CONTROLLER_CHOICES = sorted(CONTROLLERS) + ["llm"]


def build_controller(name: str, model: str, decision_interval: int):
    if name != "llm":
        return CONTROLLERS[name]

    if not os.getenv("OPENAI_API_KEY"):
        click.echo("Error: OPENAI_API_KEY not set", err=True)
        sys.exit(1)

    from llm_controller import LLMController

    return LLMController(model=model, decision_interval=decision_interval)


def controller_options(f):
    f = click.option(
        "-c",
        "--controller",
        type=click.Choice(CONTROLLER_CHOICES),
        default="reactive",
        show_default=True,
        help="Controller driving the fleet",
    )(f)
    f = click.option(
        "-m",
        "--model",
        default=DEFAULT_LLM_MODEL,
        show_default=True,
        help="LLM model for the llm controller",
    )(f)
    f = click.option(
        "--decision-interval",
        default=1,
        show_default=True,
        type=click.IntRange(min=1),
        help="Consult the llm controller every N timesteps",
    )(f)
    f = click.option(
        "--max-steps",
        default=None,
        type=click.IntRange(min=1),
        help="Stop a run after this many timesteps",
    )(f)
    return f


@click.group()
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.option("-v", "--verbose", is_flag=True, help="Log every engine event")
def cli(quiet, verbose):
    """Server-fleet economy simulator."""
    level = logging.WARNING
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@cli.command()
@click.argument("scenario", type=click.Path(dir_okay=False, path_type=Path))
@controller_options
@click.option("--plot", "plot_file", default=None, help="Save a run history plot here")
def run(scenario, controller, model, decision_interval, max_steps, plot_file):
    """Run a single SCENARIO file."""
    try:
        config = load_scenario(scenario)
    except ScenarioError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)

    sim = Simulator(config, record_history=plot_file is not None)
    sim.run(build_controller(controller, model, decision_interval), max_timesteps=max_steps)
    result = sim.result()

    click.echo("\n" + "=" * 60)
    click.echo("SIMULATION COMPLETE")
    click.echo("=" * 60)
    click.echo(f"Scenario: {scenario.stem}")
    click.echo(f"Survived: {result.timesteps} timesteps")
    click.echo(f"Final Budget: ${result.budget:.2f}")
    click.echo(f"Total Revenue: ${result.total_revenue:.2f}")
    click.echo(f"Total Costs: ${result.total_costs:.2f}")
    click.echo(f"Total Profit: ${result.profit:.2f}")
    if result.game_over_reason:
        click.echo(f"Reason: {result.game_over_reason}")
    click.echo("=" * 60)

    if plot_file:
        from visualize import plot_run_history

        plot_run_history(sim.history, config.max_queue_size, plot_file)


@cli.command()
@click.argument(
    "scenario_dir",
    required=False,
    default=DEFAULT_SCENARIO_DIR,
    type=click.Path(file_okay=False, exists=True, path_type=Path),
)
@controller_options
@click.option("-o", "--output", default=None, help="Output JSON file")
@click.option("--plot", "plot_file", default=None, help="Save a score bar chart here")
def evaluate(
    scenario_dir, controller, model, decision_interval, max_steps, output, plot_file
):
    """Run every scenario in SCENARIO_DIR and report the average score."""
    scenarios = load_scenarios(scenario_dir)
    if not scenarios:
        click.echo(f"No scenario files found in {scenario_dir}", err=True)
        sys.exit(1)

    evaluator = Evaluator(scenarios, max_timesteps=max_steps)
    try:
        results = evaluator.evaluate(build_controller(controller, model, decision_interval))
    except ScenarioError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    evaluator.print_results(results)

    if output:
        json_results = {
            "average_score": evaluator.average_score(results),
            "results": [r.model_dump() for r in results],
        }
        with open(output, "w") as f:
            json.dump(json_results, f, indent=2)
        click.echo(f"\nResults saved to {output}")

    if plot_file:
        from visualize import plot_evaluation

        plot_evaluation(results, plot_file)


if __name__ == "__main__":
    cli()
