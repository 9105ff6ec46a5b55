"""
Twiddle (coordinate descent) tuning of the steering PID gains, offline,
against the lateral vehicle simulation.

Each episode drives the car with one candidate gain set for --n-reset
telemetry ticks (or until it crashes). The episode error is

    sum(|steering_angle| + |cte|)   over ticks after --n-start-error

and twiddle decides the next candidate from it. A crash (car leaves the
track and stops) forces the error to 999999 so that candidate is rejected.

Run (example)
  python3 tuning/twiddle/twiddle_pid_tuning.py --episodes 60 -o twiddle_log.json

Outputs
  - Per-episode progress on stdout and the best gains at the end.
  - JSON log of one record per episode (plot with json_plot.py).
"""

import argparse
import json

from steerlib.drive import (
    DriveConfig,
    DriveSession,
    TUNED_GAINS,
    make_default_pid,
)
from steerlib.lateral_sim import LateralSim, SimConfig
from steerlib.Twiddle import DEFAULT_DELTAS, Twiddle


JSON_FILE = "twiddle_log.json"


def twiddle_tune(gains, n_episodes, drive_cfg, sim_cfg, deltas=DEFAULT_DELTAS,
                 verbose=False, log_path=None):
    pid = make_default_pid(gains)
    twiddle = Twiddle(pid, deltas=deltas, verbose=verbose)

    logs = []
    best = {"error": float("inf"), "gains": tuple(gains)}
    tried = {"gains": tuple(gains)}

    def on_episode_end(result):
        rec = result.as_record()
        tk, ti, td = tried["gains"]
        rec.update({"tried_kp": tk, "tried_ki": ti, "tried_kd": td})
        logs.append(rec)

        # The error belongs to the gains that were driven this episode
        if result.error < best["error"]:
            best["error"] = result.error
            best["gains"] = tried["gains"]
        tried["gains"] = result.gains

        flag = " CRASH" if result.crashed else ""
        print(f"Episode {result.episode} - error: {result.error:.3f}{flag} "
              f"- best: {result.best_error:.3f}")
        print(f"    Next gains: Kp={result.gains[0]:.6f} Ki={result.gains[1]:.6f} "
              f"Kd={result.gains[2]:.6f}")

    session = DriveSession(pid, drive_cfg, twiddle=twiddle, on_episode_end=on_episode_end)
    sim = LateralSim(sim_cfg)

    t = sim.reset()
    try:
        while session.episode < n_episodes:
            cmd = session.step(t)
            if cmd.reset:
                sim.reset()
            t = sim.step(cmd.steering_angle, cmd.throttle)
    except KeyboardInterrupt:
        print(f"INTERRUPTED Episode {session.episode}, best values:")

    if log_path is not None:
        with open(log_path, "w") as f:
            json.dump(logs, f, indent=2, default=float)
        print(f"Saved log to {log_path}")

    return best["gains"], best["error"], logs


def main(args):
    drive_cfg = DriveConfig(
        throttle=args.throttle,
        use_twiddle=True,
        n_start_error=args.n_start_error,
        n_reset=args.n_reset,
        verbose=args.v,
    )
    sim_cfg = SimConfig(ts=args.ts, cte_noise_std=args.noise, seed=args.seed)

    best_gains, best_error, _ = twiddle_tune(
        (args.kp, args.ki, args.kd),
        args.episodes,
        drive_cfg,
        sim_cfg,
        deltas=(args.dkp, args.dki, args.dkd),
        verbose=args.v,
        log_path=args.o,
    )
    kp, ki, kd = best_gains
    print(f"Best gains: Kp={kp:.6f} Ki={ki:.6f} Kd={kd:.6f}\nBest error: {best_error:.6f}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Twiddle steering PID tuning")
    parser.add_argument("--kp", type=float, default=TUNED_GAINS[0], help="Initial proportional gain")
    parser.add_argument("--ki", type=float, default=TUNED_GAINS[1], help="Initial integral gain")
    parser.add_argument("--kd", type=float, default=TUNED_GAINS[2], help="Initial derivative gain")
    parser.add_argument("--dkp", type=float, default=DEFAULT_DELTAS[0], help="Initial Kp delta")
    parser.add_argument("--dki", type=float, default=DEFAULT_DELTAS[1], help="Initial Ki delta")
    parser.add_argument("--dkd", type=float, default=DEFAULT_DELTAS[2], help="Initial Kd delta")
    parser.add_argument("--episodes", type=int, default=30, help="Number of twiddle episodes")
    parser.add_argument("--n-start-error", type=int, default=1000, help="Warm-up ticks per episode")
    parser.add_argument("--n-reset", type=int, default=5000, help="Ticks per episode")
    parser.add_argument("--throttle", type=float, default=0.3, help="Constant throttle")
    parser.add_argument("--ts", type=float, default=0.05, help="Telemetry period [s]")
    parser.add_argument("--noise", type=float, default=0.0, help="CTE measurement noise std [m]")
    parser.add_argument("--seed", type=int, default=0, help="Noise random generator seed")
    parser.add_argument("-v", action="store_true", help="Enable verbose output")
    parser.add_argument("-o", type=str, default=JSON_FILE, help="JSON log path")
    args = parser.parse_args()
    main(args)
