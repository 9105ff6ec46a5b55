"""
Offline lateral vehicle simulation for driving the steering PID without the
simulator: a kinematic bicycle following a looped track of constant-curvature
segments, with first-order steering actuator and throttle->speed plants.

The actuator and speed plants are discretized with the control library and
stepped in state-space form:
    x_{k+1} = A x_k + B u_k
    y_k     = C x_k + D u_k

Sign convention: positive steering increases cte, so the controller's
negative feedback (-Kp * cte) corrects it.

Usage (minimal)
  sim = LateralSim(SimConfig(ts=0.05))
  t = sim.reset()
  t = sim.step(steer, throttle)
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import control as ctl

from steerlib.telemetry import Telemetry


MPH_TO_MPS = 0.44704


@dataclass
class SimConfig:
    ts: float = 0.05              # telemetry period [s]
    wheelbase: float = 2.7        # [m]
    max_steer_deg: float = 25.0   # steering angle at command 1.0
    steer_tau: float = 0.1        # steering actuator time constant [s]
    speed_gain: float = 70.0      # steady state mph per unit throttle
    speed_tau: float = 3.0        # speed response time constant [s]
    off_track_cte: float = 4.0    # |cte| beyond this the car hits the curb and stops [m]
    cte_noise_std: float = 0.0    # measurement noise on cte [m]
    seed: Optional[int] = None

    def __post_init__(self):
        for name in ("ts", "wheelbase", "max_steer_deg", "steer_tau", "speed_tau", "off_track_cte"):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.cte_noise_std < 0.0:
            raise ValueError(f"cte_noise_std must be >= 0, got {self.cte_noise_std}")


class Track:
    """Looped track made of (length_m, curvature_1_per_m) segments."""

    def __init__(self, segments: List[Tuple[float, float]]):
        if not segments:
            raise ValueError("Track needs at least one segment")
        for length, _ in segments:
            if length <= 0.0:
                raise ValueError(f"Segment length must be > 0, got {length}")
        self.segments = list(segments)
        self.ends = np.cumsum([length for length, _ in segments])
        self.length = float(self.ends[-1])

    def curvature_at(self, s):
        s = s % self.length
        i = int(np.searchsorted(self.ends, s, side="right"))
        i = min(i, len(self.segments) - 1)
        return self.segments[i][1]


def default_track():
    # Lake-like loop: long straights, gentle and tight turns both ways
    return Track([
        (200.0, 0.0),
        (150.0, 1.0 / 120.0),
        (120.0, 0.0),
        (90.0, -1.0 / 80.0),
        (100.0, 0.0),
        (110.0, 1.0 / 60.0),
        (160.0, 0.0),
        (130.0, 1.0 / 150.0),
    ])


class FirstOrderPlant:
    """gain / (tau s + 1), zero-order-hold discretized at ts."""

    def __init__(self, gain, tau, ts):
        G0 = ctl.TransferFunction([gain], [tau, 1.0])
        Gd = ctl.c2d(G0, ts, method="zoh")

        Ad, Bd, Cd, Dd = ctl.ssdata(ctl.ss(Gd))
        self.Ad = np.asarray(Ad)
        self.Bd = np.asarray(Bd).reshape(-1)
        self.Cd = np.asarray(Cd)
        self.Dd = np.asarray(Dd).reshape(-1)
        self.gain = gain

        self.x = np.zeros(self.Ad.shape[0])
        self.y = 0.0

    def reset(self):
        self.x = np.zeros(self.Ad.shape[0])
        self.y = 0.0

    def step(self, u):
        self.y = (self.Cd @ self.x + self.Dd * u).item()
        self.x = self.Ad @ self.x + self.Bd * u
        return self.y


class LateralSim:
    def __init__(self, config: Optional[SimConfig] = None, track: Optional[Track] = None):
        self.config = config if config is not None else SimConfig()
        self.track = track if track is not None else default_track()
        cfg = self.config

        self.steer_plant = FirstOrderPlant(1.0, cfg.steer_tau, cfg.ts)
        self.speed_plant = FirstOrderPlant(cfg.speed_gain, cfg.speed_tau, cfg.ts)
        self.rng = np.random.default_rng(cfg.seed)

        self.reset()

    def reset(self):
        """Put the car back at the start line, standing still and centered."""
        self.steer_plant.reset()
        self.speed_plant.reset()
        self.s = 0.0        # distance along the track [m]
        self.cte = 0.0      # lateral offset [m]
        self.psi = 0.0      # heading relative to the track [rad]
        self.speed = 0.0    # [mph]
        self.steer = 0.0    # actuator position [-1, 1]
        self.throttle = 0.0
        self.stalled = False
        self.n_steps = 0
        return self.observe()

    def observe(self) -> Telemetry:
        cte = self.cte
        if self.config.cte_noise_std > 0.0:
            cte += float(self.rng.normal(0.0, self.config.cte_noise_std))
        return Telemetry(
            cte=cte,
            speed=self.speed,
            steering_angle=self.steer * self.config.max_steer_deg,
            throttle=self.throttle,
        )

    def step(self, steer, throttle) -> Telemetry:
        cfg = self.config
        self.n_steps += 1
        self.throttle = float(throttle)

        self.steer = float(np.clip(self.steer_plant.step(float(steer)), -1.0, 1.0))

        if self.stalled:
            self.speed_plant.reset()
            self.speed = 0.0
        else:
            self.speed = max(0.0, self.speed_plant.step(self.throttle))

        v = self.speed * MPH_TO_MPS
        delta = math.radians(self.steer * cfg.max_steer_deg)
        kappa = self.track.curvature_at(self.s)

        # Kinematic bicycle in path coordinates (explicit Euler)
        self.psi += (v / cfg.wheelbase * math.tan(delta) - v * kappa) * cfg.ts
        self.cte += v * math.sin(self.psi) * cfg.ts
        self.s += v * math.cos(self.psi) * cfg.ts

        if abs(self.cte) > cfg.off_track_cte:
            self.stalled = True
            self.speed_plant.reset()
            self.speed = 0.0

        return self.observe()


def run_session(session, sim: LateralSim, n_ticks: int):
    """
    Drive a DriveSession against the simulation for n_ticks telemetry ticks.
    The sim is reset whenever the session requests it, like the simulator
    does on a reset frame.

    Returns a dict of per-tick numpy arrays.
    """
    cte = np.zeros(n_ticks)
    speed = np.zeros(n_ticks)
    angle = np.zeros(n_ticks)
    steer = np.zeros(n_ticks)
    p = np.zeros(n_ticks)
    i = np.zeros(n_ticks)
    d = np.zeros(n_ticks)
    resets = np.zeros(n_ticks, dtype=bool)

    t = sim.observe()
    for k in range(n_ticks):
        cmd = session.step(t)

        cte[k] = t.cte
        speed[k] = t.speed
        angle[k] = t.steering_angle
        steer[k] = cmd.steering_angle
        p[k] = session.pid.p_error
        i[k] = session.pid.i_error
        d[k] = session.pid.d_error
        resets[k] = cmd.reset

        if cmd.reset:
            sim.reset()
        t = sim.step(cmd.steering_angle, cmd.throttle)

    return {
        "time": np.arange(n_ticks) * sim.config.ts,
        "cte": cte,
        "speed": speed,
        "steering_angle": angle,
        "steer": steer,
        "p": p,
        "i": i,
        "d": d,
        "reset": resets,
    }
