"""
Framing of the driving simulator's socket.io text messages.

A frame starting with "42" is a socket.io event ("4" = message, "2" = event)
whose payload is a JSON array [event_name, data]. Telemetry fields arrive as
strings.

  in : 42["telemetry",{"cte":"0.7598","speed":"0.4380","steering_angle":"0", ...}]
  out: 42["steer",{"steering_angle":-0.05,"throttle":0.3}]
       42["reset",{}]
       42["manual",{}]
"""

import json
from dataclasses import dataclass


EVENT_PREFIX = "42"


class TelemetryError(ValueError):
    pass


@dataclass(frozen=True)
class Telemetry:
    cte: float
    speed: float            # mph
    steering_angle: float   # deg, as reported by the vehicle
    throttle: float = 0.0


def has_data(s: str) -> str:
    """
    Return the JSON array part of an event frame, or "" when the frame
    carries no data (contains null or has no brackets).
    """
    if "null" in s:
        return ""
    b1 = s.find("[")
    b2 = s.rfind("]")
    if b1 != -1 and b2 != -1 and b2 > b1:
        return s[b1:b2 + 1]
    return ""


def decode_frame(frame: str):
    """
    Decode one text frame into (event, data).

    Returns None for frames that are not socket.io events, and
    ("manual", None) for event frames without data (manual driving).
    """
    if len(frame) <= len(EVENT_PREFIX) or not frame.startswith(EVENT_PREFIX):
        return None

    s = has_data(frame)
    if s == "":
        return "manual", None

    try:
        payload = json.loads(s)
    except json.JSONDecodeError as e:
        raise TelemetryError(f"Malformed event payload: {e}") from e

    if not isinstance(payload, list) or not payload or not isinstance(payload[0], str):
        raise TelemetryError(f"Event payload must be [name, data], got {s!r}")

    data = payload[1] if len(payload) > 1 else None
    return payload[0], data


def _field(data, key, default=None):
    if key not in data:
        if default is not None:
            return default
        raise TelemetryError(f"Telemetry missing field '{key}'")
    try:
        return float(data[key])
    except (TypeError, ValueError) as e:
        raise TelemetryError(f"Telemetry field '{key}' is not a number: {data[key]!r}") from e


def parse_telemetry(data) -> Telemetry:
    if not isinstance(data, dict):
        raise TelemetryError(f"Telemetry data must be an object, got {type(data).__name__}")
    return Telemetry(
        cte=_field(data, "cte"),
        speed=_field(data, "speed"),
        steering_angle=_field(data, "steering_angle"),
        throttle=_field(data, "throttle", 0.0),
    )


def _encode(event, data):
    return EVENT_PREFIX + json.dumps([event, data], separators=(",", ":"))


def encode_steer(steering_angle, throttle):
    return _encode("steer", {"steering_angle": float(steering_angle),
                             "throttle": float(throttle)})


def encode_reset():
    return _encode("reset", {})


def encode_manual():
    return _encode("manual", {})


def encode_telemetry(t: Telemetry):
    """Build a telemetry frame the way the simulator sends it (string fields)."""
    return _encode("telemetry", {
        "cte": f"{t.cte:.6f}",
        "speed": f"{t.speed:.6f}",
        "steering_angle": f"{t.steering_angle:.6f}",
        "throttle": f"{t.throttle:.6f}",
    })
