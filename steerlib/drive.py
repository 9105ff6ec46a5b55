"""
Drive session: the per-tick loop around the steering PID.

Receives telemetry (cte, speed, steering angle), optionally runs twiddle
episodes, and produces the steering command for the vehicle. No sockets here;
the caller feeds frames/telemetry and sends back whatever this returns.

Episode handling (twiddle enabled)
  - ticks 1..n_start_error are warm-up and not counted in the error
  - after warm-up, speed < stall_speed means the car crashed or got stuck;
    the episode error is forced to crash_error
  - the episode ends after n_reset ticks or on a crash; the gains are
    twiddled, the PID is reset and a simulator reset is requested

Run (example)
  session = DriveSession(make_default_pid(), DriveConfig(use_twiddle=True))
  for frame in incoming:
      for reply in session.handle_frame(frame):
          send(reply)
"""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from steerlib.PID import PID
from steerlib.Twiddle import CRASH_ERROR, Twiddle, TwiddlePhase
from steerlib.telemetry import (
    Telemetry,
    decode_frame,
    encode_manual,
    encode_reset,
    encode_steer,
    parse_telemetry,
)


# Steering PID limits
K_MAX_I = 1.0             # max guard for I term
K_MAX_D = 0.2             # max guard for D term
K_SMOOTH_D = 3.0          # smoothing factor for D term
K_MAX_ERROR_RATE = 0.05   # max rate limit for PID output

# Twiddled gains (Kp, Ki, Kd)
TUNED_GAINS = (0.084271, 0.000690, 3.000000)


def make_default_pid(gains=TUNED_GAINS):
    kp, ki, kd = gains
    return PID(kp, ki, kd, K_MAX_I, K_MAX_D, K_SMOOTH_D, K_MAX_ERROR_RATE)


@dataclass
class DriveConfig:
    throttle: float = 0.3           # constant throttle for simplicity
    use_twiddle: bool = False
    n_start_error: int = 1000       # loops before twiddle error starts
    n_reset: int = 5000             # loops to run each twiddle parameter set
    stall_speed: float = 10.0       # mph
    crash_error: float = CRASH_ERROR
    verbose: bool = True

    def __post_init__(self):
        if not -1.0 <= self.throttle <= 1.0:
            raise ValueError(f"throttle must be in [-1, 1], got {self.throttle}")
        if self.n_start_error < 0:
            raise ValueError(f"n_start_error must be >= 0, got {self.n_start_error}")
        if self.n_reset <= self.n_start_error:
            raise ValueError(
                f"n_reset ({self.n_reset}) must be greater than n_start_error ({self.n_start_error})")
        if self.stall_speed < 0.0:
            raise ValueError(f"stall_speed must be >= 0, got {self.stall_speed}")


@dataclass(frozen=True)
class DriveCommand:
    steering_angle: float
    throttle: float
    reset: bool = False


@dataclass(frozen=True)
class EpisodeResult:
    episode: int
    error: float
    crashed: bool
    gains: Tuple[float, float, float]       # gains to be tried next
    deltas: Tuple[float, float, float]
    best_error: float
    idx: int
    phase: TwiddlePhase

    def as_record(self):
        kp, ki, kd = self.gains
        dkp, dki, dkd = self.deltas
        return {
            "episode": self.episode,
            "error": float(self.error),
            "crashed": self.crashed,
            "kp": kp, "ki": ki, "kd": kd,
            "dkp": dkp, "dki": dki, "dkd": dkd,
            "best_error": float(self.best_error),
            "idx": self.idx,
            "phase": self.phase.value,
        }


class DriveSession:
    def __init__(self, pid: PID, config: Optional[DriveConfig] = None,
                 twiddle: Optional[Twiddle] = None,
                 on_episode_end: Optional[Callable[[EpisodeResult], None]] = None):
        self.pid = pid
        self.config = config if config is not None else DriveConfig()
        if self.config.use_twiddle and twiddle is None:
            twiddle = Twiddle(pid, verbose=self.config.verbose)
        if twiddle is not None and twiddle.pid is not pid:
            raise ValueError("twiddle must tune the session's PID")
        self.twiddle = twiddle
        self.on_episode_end = on_episode_end

        self.n_loop = 0
        self.episode = 0

    def _log(self, msg):
        if self.config.verbose:
            print(msg)

    def _end_episode(self, crashed):
        cfg = self.config
        tw = self.twiddle

        # A crashed run is scored as a bad parameter set
        if crashed:
            tw.penalize(cfg.crash_error)

        error = tw.error
        self._log(f"Result error: {error:.6f}")

        tw.param_update()

        kp, ki, kd = tw.gains
        dkp, dki, dkd = tw.deltas
        self._log(f"\nTry gains: {tw.idx}, Kp: {kp:.6f}, Ki: {ki:.6f}, Kd: {kd:.6f}")
        self._log(f"        Delta dKp: {dkp:.6f}, dKi: {dki:.6f}, dKd: {dkd:.6f}")
        self._log(f"        Current best error: {tw.best_error:.6f}")

        result = EpisodeResult(
            episode=self.episode,
            error=error,
            crashed=crashed,
            gains=tw.gains,
            deltas=tw.deltas,
            best_error=tw.best_error,
            idx=tw.idx,
            phase=tw.phase,
        )

        self.n_loop = 0
        self.pid.reset()
        tw.new_episode()
        self.episode += 1

        if self.on_episode_end is not None:
            self.on_episode_end(result)

    def step(self, t: Telemetry) -> DriveCommand:
        cfg = self.config
        self.n_loop += 1
        reset = False

        if cfg.use_twiddle:
            measuring = self.n_loop > cfg.n_start_error

            # Accumulate error term after driving has stabilized
            if measuring:
                self.twiddle.error_update(t.cte, t.steering_angle)

            # Off track or into a wall shows up as the car slowing to a stop
            crashed = measuring and t.speed < cfg.stall_speed

            if self.n_loop > cfg.n_reset or crashed:
                self._end_episode(crashed)
                reset = True

        # Disable I term if the car is not moving fast enough (standing start)
        self.pid.set_integral_cut(t.speed < cfg.stall_speed)

        self.pid.update_error(t.cte)
        steer = self.pid.total_error()

        if not cfg.use_twiddle:
            self._log(f"N: {self.n_loop}, Steer: {steer:.6f}, CTE: {t.cte:.6f}, "
                      f"Speed: {t.speed:.6f}, P: {self.pid.p_error:.6f}, "
                      f"I: {self.pid.i_error:.6f}, D: {self.pid.d_error:.6f}, "
                      f"Throttle: {cfg.throttle:.6f}")

        return DriveCommand(steering_angle=steer, throttle=cfg.throttle, reset=reset)

    def handle_frame(self, frame: str):
        """Process one incoming text frame and return the frames to send back."""
        decoded = decode_frame(frame)
        if decoded is None:
            return []

        event, data = decoded
        if event == "telemetry":
            cmd = self.step(parse_telemetry(data))
            replies = []
            if cmd.reset:
                replies.append(encode_reset())
            replies.append(encode_steer(cmd.steering_angle, cmd.throttle))
            return replies

        # Event without data: the simulator is in manual driving mode
        if event == "manual" and data is None:
            return [encode_manual()]
        return []
