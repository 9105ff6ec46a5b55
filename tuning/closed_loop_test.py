"""
Closed-loop run of the steering PID with fixed gains on the offline
lateral simulation.

Outputs
  - Console summary (max/mean |cte|, steering effort) and matplotlib plots
    of cte, steering command and the P/I/D terms.

Run (example)
  python3 tuning/closed_loop_test.py --kp 0.1 --ki 0.001 --kd 2.0 --ticks 4000
"""

import argparse

import numpy as np
import matplotlib.pyplot as plt

from steerlib.drive import DriveConfig, DriveSession, TUNED_GAINS, make_default_pid
from steerlib.lateral_sim import LateralSim, SimConfig, run_session


def main(args):
    pid = make_default_pid((args.kp, args.ki, args.kd))
    session = DriveSession(pid, DriveConfig(throttle=args.throttle, verbose=args.v))
    sim = LateralSim(SimConfig(ts=args.ts, cte_noise_std=args.noise, seed=args.seed))

    trace = run_session(session, sim, args.ticks)

    print(f"Gains: Kp={pid.kp:.6f} Ki={pid.ki:.6f} Kd={pid.kd:.6f}")
    print(f"Max |CTE|: {np.max(np.abs(trace['cte'])):.4f}")
    print(f"Mean |CTE|: {np.mean(np.abs(trace['cte'])):.4f}")
    print(f"Mean |steer|: {np.mean(np.abs(trace['steer'])):.4f}")
    if sim.stalled:
        print("Car left the track")

    time = trace["time"]
    fig, (ax_cte, ax_u, ax_pid) = plt.subplots(3, 1, figsize=(14, 9), sharex=True)

    ax_cte.plot(time, trace["cte"], label="cte")
    ax_cte.axhline(0.0, color="k", linewidth=0.8, alpha=0.3)
    ax_cte.grid(True)
    ax_cte.set_ylabel("CTE [m]")
    ax_cte.legend(loc="best")

    ax_u.plot(time, trace["steer"], label="steer cmd")
    ax_u.plot(time, trace["steering_angle"] / sim.config.max_steer_deg, label="steer actual")
    ax_u.axhline(-1.0, color="k", linewidth=0.8, alpha=0.3)
    ax_u.axhline(1.0, color="k", linewidth=0.8, alpha=0.3)
    ax_u.grid(True)
    ax_u.set_ylabel("Steering [-]")
    ax_u.legend(loc="best")

    ax_pid.plot(time, trace["p"], label="P")
    ax_pid.plot(time, trace["i"], label="I")
    ax_pid.plot(time, trace["d"], label="D")
    ax_pid.grid(True)
    ax_pid.set_ylabel("PID terms")
    ax_pid.set_xlabel("t [s]")
    ax_pid.legend(loc="best")

    plt.tight_layout()
    plt.show()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Steering PID closed-loop test")
    parser.add_argument("--kp", type=float, default=TUNED_GAINS[0], help="Proportional gain")
    parser.add_argument("--ki", type=float, default=TUNED_GAINS[1], help="Integral gain")
    parser.add_argument("--kd", type=float, default=TUNED_GAINS[2], help="Derivative gain")
    parser.add_argument("--throttle", type=float, default=0.3, help="Constant throttle")
    parser.add_argument("--ticks", type=int, default=3000, help="Telemetry ticks to simulate")
    parser.add_argument("--ts", type=float, default=0.05, help="Telemetry period [s]")
    parser.add_argument("--noise", type=float, default=0.0, help="CTE measurement noise std [m]")
    parser.add_argument("--seed", type=int, default=0, help="Noise random generator seed")
    parser.add_argument("-v", action="store_true", help="Print every tick")
    args = parser.parse_args()
    main(args)
