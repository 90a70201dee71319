"""Visualization tools for simulation runs and batch evaluations."""

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from typing import List, Optional

from sim_types import ScenarioResult, StepRecord


def plot_run_history(
    history: List[StepRecord],
    max_queue_size: Optional[int] = None,
    output_file: str = None,
):
    """
    Plot budget and queue sizes over the course of one run.

    Args:
        history: StepRecords collected with Simulator(record_history=True)
        max_queue_size: Optional overflow limit drawn as a reference line
        output_file: Optional file to save plot
    """
    if not history:
        return

    steps = [h.timestep for h in history]
    budgets = [h.budget for h in history]
    servers = [h.num_servers for h in history]

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 8), sharex=True)

    ax1.plot(steps, budgets, "b-", linewidth=2, label="Budget")
    ax1.axhline(0, color="red", linestyle="--", alpha=0.6)
    ax_servers = ax1.twinx()
    ax_servers.step(steps, servers, "g-", where="post", alpha=0.6, label="Servers")
    ax1.set_ylabel("Budget")
    ax_servers.set_ylabel("Servers", color="g")
    ax1.set_title("Budget and Fleet Size")
    ax1.grid(True, alpha=0.3)

    for name in history[0].queue_sizes:
        sizes = [h.queue_sizes.get(name, 0) for h in history]
        ax2.plot(steps, sizes, "-", label=name)
    if max_queue_size is not None:
        ax2.axhline(
            max_queue_size, color="red", linestyle="--", label="Overflow limit"
        )
    ax2.set_xlabel("Timestep")
    ax2.set_ylabel("Queue Size")
    ax2.set_title("Backlog per Queue")
    ax2.legend()
    ax2.grid(True, alpha=0.3)

    plt.tight_layout()

    if output_file:
        plt.savefig(output_file, dpi=150)
        print(f"Plot saved to {output_file}")
    else:
        plt.show()


def plot_evaluation(results: List[ScenarioResult], output_file: str = None):
    """Bar chart of survived timesteps per scenario, with the average marked."""
    if not results:
        return

    sns.set_style("whitegrid")
    names = [r.scenario for r in results]
    scores = [r.score for r in results]

    plt.figure(figsize=(10, 6))
    ax = sns.barplot(x=names, y=scores, hue=names, palette="husl", legend=False)
    ax.axhline(
        np.mean(scores),
        color="red",
        linestyle="--",
        label=f"Average: {np.mean(scores):.2f}",
    )
    for i, r in enumerate(results):
        if r.reason:
            ax.text(i, r.score, r.reason, ha="center", va="bottom", fontsize=8)

    ax.set_xlabel("Scenario")
    ax.set_ylabel("Timesteps Survived")
    ax.set_title("Evaluation Scores")
    ax.legend()
    plt.tight_layout()

    if output_file:
        plt.savefig(output_file, dpi=150)
        print(f"Plot saved to {output_file}")
    else:
        plt.show()
