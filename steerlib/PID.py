"""
Discrete steering PID controller driven by cross-track error (CTE),
with integral windup guard, latched and smoothed derivative, and a rate
limited output clipped to the steering range [-1, 1].

Usage (minimal)
  pid = PID(kp, ki, kd, i_max, d_max, d_smooth, error_rate_max)
  pid.set_integral_cut(speed < 10.0)
  pid.update_error(cte)
  steer = pid.total_error()
"""

import math


GAIN_NAMES = ("Kp", "Ki", "Kd")
STEER_LIMIT = 1.0


def rate_limit(raw_value, prev_value, rate_max):
    """Limit the change from prev_value to at most rate_max in either direction."""
    if (raw_value - prev_value) > rate_max:
        return prev_value + rate_max
    if (raw_value - prev_value) < -rate_max:
        return prev_value - rate_max
    return raw_value


def min_max_limit(raw_value, minmax_limit):
    """Clamp raw_value to [-minmax_limit, minmax_limit]."""
    if raw_value > minmax_limit:
        return minmax_limit
    if raw_value < -minmax_limit:
        return -minmax_limit
    return raw_value


class PID:
    def __init__(self, kp, ki, kd, i_max=math.inf, d_max=math.inf,
                 d_smooth=1.0, error_rate_max=math.inf):
        for name, gain in zip(GAIN_NAMES, (kp, ki, kd)):
            if not math.isfinite(gain):
                raise ValueError(f"{name} must be finite, got {gain}")
        for name, bound in (("i_max", i_max), ("d_max", d_max),
                            ("error_rate_max", error_rate_max)):
            if math.isnan(bound) or bound < 0.0:
                raise ValueError(f"{name} must be >= 0, got {bound}")
        if not math.isfinite(d_smooth) or d_smooth < 1.0:
            raise ValueError(f"d_smooth must be finite and >= 1 (1 = no smoothing), got {d_smooth}")

        # Gain slots, mutated by the tuner through set_gain/add_to_gain
        self._gains = [float(kp), float(ki), float(kd)]

        self.i_max = float(i_max)
        self.d_max = float(d_max)
        self.d_smooth = float(d_smooth)
        self.error_rate_max = float(error_rate_max)
        self.i_cut = False

        self.reset()

    # ------------------------------------------------------------------
    # Gain slots
    # ------------------------------------------------------------------

    @property
    def kp(self):
        return self._gains[0]

    @property
    def ki(self):
        return self._gains[1]

    @property
    def kd(self):
        return self._gains[2]

    @property
    def gains(self):
        """Current (Kp, Ki, Kd) as a tuple copy."""
        return tuple(self._gains)

    def get_gain(self, idx: int) -> float:
        return self._gains[idx]

    def _check_gain(self, idx, value):
        if not math.isfinite(value):
            raise ValueError(f"{GAIN_NAMES[idx]} must be finite, got {value}")
        return value

    def set_gain(self, idx: int, value: float) -> None:
        self._gains[idx] = self._check_gain(idx, float(value))

    def add_to_gain(self, idx: int, delta: float) -> float:
        """Shift one gain slot by delta and return the new value."""
        self._gains[idx] = self._check_gain(idx, self._gains[idx] + float(delta))
        return self._gains[idx]

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    def reset(self):
        """Clear error terms and filter memory. Gains, limits and cut flag are kept."""
        self.p_error = 0.0
        self.i_error = 0.0
        self.d_error = 0.0

        self.prev_cte = 0.0
        self.prev_d_error = 0.0
        self.prev_total_error = 0.0

    def set_integral_cut(self, active: bool) -> None:
        """Suspend and discharge the I term, e.g. while standing still."""
        self.i_cut = bool(active)

    def update_error(self, cte):
        kp, ki, kd = self._gains

        self.p_error = -kp * cte

        if not self.i_cut:
            self.i_error += -ki * cte
            self.i_error = min_max_limit(self.i_error, self.i_max)
        else:
            self.i_error = 0.0

        # D term latched until the next discrete cte update
        if cte != self.prev_cte:
            d_raw = -kd * (cte - self.prev_cte)
            d_filt = (self.prev_d_error * (self.d_smooth - 1.0) / self.d_smooth
                      + d_raw / self.d_smooth)
            self.d_error = min_max_limit(d_filt, self.d_max)
            self.prev_d_error = self.d_error

        self.prev_cte = cte

    def total_error(self):
        """
        Steering command for this tick: P + I + D, rate limited against the
        previous output and clipped to [-1, 1].
        """
        total_raw = self.p_error + self.i_error + self.d_error

        total_filt = rate_limit(total_raw, self.prev_total_error, self.error_rate_max)
        total_filt = min_max_limit(total_filt, STEER_LIMIT)

        self.prev_total_error = total_filt
        return total_filt
