"""
Twiddle (coordinate descent) auto-tuning of the steering PID gains.

Each episode is driven with one candidate gain set. The episode error is the
accumulated |steering| + |cte| after warm-up; at the episode boundary
param_update() picks the next candidate:

  1.  Increase the active gain by its delta and run an episode.
  2a. Better: boost the delta, move to the next gain and increase it.
  2b. Worse: move the gain to (original - delta) and run again.
  3a. Better in that direction: boost the delta and move on.
  3b. Still worse: restore the original gain, shrink the delta and move on.

Usage (minimal)
  twiddle = Twiddle(pid)
  twiddle.error_update(cte, steering_angle)   # every measured tick
  twiddle.param_update()                      # at the episode boundary
  twiddle.new_episode()
"""

import math
from enum import Enum

from steerlib.PID import GAIN_NAMES


DEFAULT_DELTAS = (0.05, 0.0005, 1.0)  # dKp, dKi, dKd
DELTA_BOOST = 1.2
DELTA_SHRINK = 0.8
CRASH_ERROR = 999999.0  # forced episode error for a crashed/stalled run


class TwiddlePhase(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"


class Twiddle:
    def __init__(self, pid, deltas=DEFAULT_DELTAS, verbose=False):
        deltas = [float(d) for d in deltas]
        if len(deltas) != len(GAIN_NAMES):
            raise ValueError(f"Expected {len(GAIN_NAMES)} deltas, got {len(deltas)}")
        for name, d in zip(GAIN_NAMES, deltas):
            if not (math.isfinite(d) and d > 0.0):
                raise ValueError(f"Delta for {name} must be a positive finite number, got {d}")

        self.pid = pid
        self._deltas = deltas
        self.error = 0.0
        self.best_error = math.inf
        self.idx = 0
        self.phase = TwiddlePhase.INCREASING
        self.verbose = verbose

    @property
    def deltas(self):
        return tuple(self._deltas)

    @property
    def gains(self):
        return self.pid.gains

    @property
    def n_gains(self):
        return len(self._deltas)

    def new_episode(self):
        """Start accumulating a fresh episode error. Search state is kept."""
        self.error = 0.0

    def error_update(self, cte, steer):
        self.error += abs(steer)
        self.error += abs(cte)

    def penalize(self, value=CRASH_ERROR):
        """Force a large episode error so the current gain set is rejected."""
        self.error = float(value)

    def _log(self, msg):
        if self.verbose:
            print(msg)

    def _next_index(self):
        self.idx = (self.idx + 1) % self.n_gains
        self.pid.add_to_gain(self.idx, self._deltas[self.idx])
        self.phase = TwiddlePhase.INCREASING

    def param_update(self):
        """Decide the gain set for the next episode from this episode's error."""
        i = self.idx

        if self.phase is TwiddlePhase.INCREASING:
            if self.error < self.best_error:
                self.best_error = self.error
                self._deltas[i] *= DELTA_BOOST
                self._log("Error better, boost delta and move to next index.")
                self._next_index()
            else:
                self.pid.add_to_gain(i, -2.0 * self._deltas[i])
                self.phase = TwiddlePhase.DECREASING
                self._log("Error worse, try other direction.")
            return

        # DECREASING: the gain sits at (original - delta)
        if self.error < self.best_error:
            self.best_error = self.error
            self._deltas[i] *= DELTA_BOOST
            self._log("Error better in this direction, boost delta.")
        else:
            self.pid.add_to_gain(i, self._deltas[i])
            self._deltas[i] *= DELTA_SHRINK
            self._log("Error still worse in this direction, set back gain and reduce delta.")

        self._log("Twiddle next gain index.")
        self._next_index()
