"""
Plots per-episode values from a JSON log of a twiddle run.

Outputs
  - Matplotlib plots for selected fields.

Run (example)
  python3 tuning/twiddle/json_plot.py twiddle_log.json -p kp kd best_error
"""

import json
from pathlib import Path

import numpy as np
import matplotlib.pyplot as plt

import argparse


CRASH_CLIP = 1e5  # keep crash-penalized episodes from flattening the plots


def load_data(json_path):
    with open(json_path, "r") as f:
        return json.load(f)


def episode_series(records, field, clip=None):
    """
    records: list[dict] from the JSON file
    clip: optional upper bound applied to the values (crash penalties)
    returns: (episodes, values) numpy arrays for one numeric field
    """
    episodes = []
    values = []
    for rec in records:
        v = rec.get(field)
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            continue
        episodes.append(rec["episode"])
        values.append(float(v))
    values = np.asarray(values)
    if clip is not None:
        values = np.minimum(values, clip)
    return np.asarray(episodes), values


def plot_fields(records, fields_to_plot, clip=CRASH_CLIP):
    for field in fields_to_plot:
        episodes, y = episode_series(
            records, field, clip if field in ("error", "best_error") else None)
        plt.figure()
        plt.plot(episodes, y, marker="o")
        plt.xlabel("Episode")
        plt.ylabel(field)
        plt.title(f"{field} per episode")
        plt.grid(True)
        plt.tight_layout()

    plt.show()


def main():
    default_fields = [
        "tried_kp",
        "tried_ki",
        "tried_kd",
        "dkp",
        "dki",
        "dkd",
        "error",
        "best_error",
    ]

    parser = argparse.ArgumentParser(
        description="Plot twiddle PID tuning results from JSON file"
    )
    parser.add_argument("file", type=str, nargs="?", default="twiddle_log.json")
    parser.add_argument(
        "-p",
        "--plot",
        metavar="FIELD",
        nargs="+",
        help="Variables to plot (space-separated list)",
    )

    args = parser.parse_args()

    data = load_data(Path(args.file))
    if not data:
        raise ValueError(f"No episodes in {args.file}")

    fields_to_plot = args.plot if args.plot is not None else default_fields

    # Filter to only fields that actually exist
    existing_fields = [f for f in fields_to_plot if f in data[0]]

    if not existing_fields:
        raise ValueError("None of the requested fields exist in the data")

    plot_fields(data, existing_fields)


if __name__ == "__main__":
    main()
