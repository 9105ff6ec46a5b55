import math

import pytest

from steerlib.PID import PID
from steerlib.Twiddle import (
    CRASH_ERROR,
    DEFAULT_DELTAS,
    Twiddle,
    TwiddlePhase,
)


def make_twiddle(gains=(1.0, 1.0, 1.0), deltas=(1.0, 1.0, 1.0), best=None):
    pid = PID(*gains)
    tw = Twiddle(pid, deltas=deltas)
    if best is not None:
        tw.best_error = best
    return pid, tw


def run_episode(tw, error):
    tw.new_episode()
    tw.error = error
    tw.param_update()


def test_initial_state():
    pid = PID(0.1, 0.001, 2.0)
    tw = Twiddle(pid)
    assert tw.deltas == DEFAULT_DELTAS
    assert tw.best_error == math.inf
    assert tw.error == 0.0
    assert tw.idx == 0
    assert tw.phase is TwiddlePhase.INCREASING
    assert tw.gains == (0.1, 0.001, 2.0)


def test_error_update_accumulates_absolute_values():
    _, tw = make_twiddle()
    tw.error_update(-0.5, 2.0)
    tw.error_update(0.25, -1.0)
    assert tw.error == pytest.approx(3.75)

    tw.new_episode()
    assert tw.error == 0.0


def test_new_episode_keeps_search_state():
    pid, tw = make_twiddle(best=10.0)
    tw.error = 11.0
    tw.param_update()
    state = (tw.best_error, tw.deltas, tw.idx, tw.phase, pid.gains)
    assert tw.phase is TwiddlePhase.DECREASING

    tw.error_update(1.0, 1.0)
    tw.new_episode()

    assert tw.error == 0.0
    assert (tw.best_error, tw.deltas, tw.idx, tw.phase, pid.gains) == state


def test_first_update_from_infinity_always_improves():
    for err in (0.0, 12.5, 1e8):
        pid, tw = make_twiddle(deltas=(0.5, 0.25, 2.0))
        tw.error = err
        tw.param_update()

        assert tw.best_error == err
        assert tw.deltas[0] == pytest.approx(0.6)
        assert tw.idx == 1
        assert tw.phase is TwiddlePhase.INCREASING
        assert pid.gains == pytest.approx((1.0, 1.25, 1.0))


def test_improvement_while_increasing():
    pid, tw = make_twiddle(best=10.0)
    tw.error = 5.0
    tw.param_update()

    assert tw.best_error == 5.0
    assert tw.deltas == pytest.approx((1.2, 1.0, 1.0))
    assert tw.idx == 1
    assert tw.phase is TwiddlePhase.INCREASING
    # Kp kept where it was tested, Ki raised by its own delta
    assert pid.gains == pytest.approx((1.0, 2.0, 1.0))


def test_no_improvement_switches_direction():
    pid, tw = make_twiddle(best=10.0)
    tw.error = 11.0
    tw.param_update()

    assert tw.best_error == 10.0
    assert tw.idx == 0
    assert tw.phase is TwiddlePhase.DECREASING
    assert pid.gains == pytest.approx((-1.0, 1.0, 1.0))
    assert tw.deltas == (1.0, 1.0, 1.0)


def test_tie_counts_as_not_improved():
    pid, tw = make_twiddle(best=10.0)
    tw.error = 10.0
    tw.param_update()
    assert tw.phase is TwiddlePhase.DECREASING
    assert pid.get_gain(0) == pytest.approx(-1.0)


def test_improvement_in_decreasing_direction_keeps_gain():
    # Kp tested at original + delta (2.0); original is 1.0
    pid, tw = make_twiddle(gains=(2.0, 1.0, 1.0), best=10.0)
    run_episode(tw, 11.0)
    assert pid.get_gain(0) == pytest.approx(0.0)

    run_episode(tw, 4.0)
    assert tw.best_error == 4.0
    assert tw.deltas == pytest.approx((1.2, 1.0, 1.0))
    assert tw.idx == 1
    assert tw.phase is TwiddlePhase.INCREASING
    assert pid.gains == pytest.approx((0.0, 2.0, 1.0))


def test_worse_both_ways_restores_and_shrinks():
    pid, tw = make_twiddle(gains=(2.0, 1.0, 1.0), best=10.0)
    run_episode(tw, 11.0)
    run_episode(tw, 12.0)

    assert tw.best_error == 10.0
    assert tw.deltas == pytest.approx((0.8, 1.0, 1.0))
    assert tw.idx == 1
    assert tw.phase is TwiddlePhase.INCREASING
    assert pid.gains == pytest.approx((1.0, 2.0, 1.0))


def test_index_wraps_around():
    pid, tw = make_twiddle(deltas=(0.1, 0.01, 1.0))
    run_episode(tw, 30.0)   # Kp better -> idx 1
    run_episode(tw, 20.0)   # Ki better -> idx 2
    run_episode(tw, 10.0)   # Kd better -> idx 0
    assert tw.idx == 0
    assert tw.best_error == 10.0
    assert pid.gains == pytest.approx((1.12, 1.01, 2.0))
    assert tw.deltas == pytest.approx((0.12, 0.012, 1.2))


def test_penalized_episode_is_rejected():
    pid, tw = make_twiddle(best=10.0)
    tw.error_update(0.1, 0.1)
    tw.penalize()
    assert tw.error == CRASH_ERROR
    tw.param_update()
    assert tw.best_error == 10.0
    assert tw.phase is TwiddlePhase.DECREASING


def test_gains_are_not_clamped():
    pid, tw = make_twiddle(gains=(0.0, 0.0, 0.0), best=1.0)
    run_episode(tw, 2.0)
    assert pid.get_gain(0) == pytest.approx(-2.0)


def test_only_one_gain_moves_per_update():
    pid, tw = make_twiddle(best=10.0)
    before = pid.gains
    run_episode(tw, 11.0)
    changed = [i for i, (a, b) in enumerate(zip(before, pid.gains)) if a != b]
    assert changed == [0]


@pytest.mark.parametrize("deltas", [(1.0, 1.0), (1.0, 0.0, 1.0), (1.0, -1.0, 1.0)])
def test_invalid_deltas_rejected(deltas):
    with pytest.raises(ValueError):
        Twiddle(PID(0.1, 0.0, 1.0), deltas=deltas)


def test_verbose_prints_decisions(capsys):
    pid = PID(1.0, 1.0, 1.0)
    tw = Twiddle(pid, deltas=(1.0, 1.0, 1.0), verbose=True)
    tw.error = 1.0
    tw.param_update()
    assert "Error better, boost delta and move to next index." in capsys.readouterr().out
