# test/test_scaling.py
import numpy as np
import pytest

from bdfstore.core import ArgumentError, Scaling


def test_derived_constants():
    s = Scaling(0.5, 1.0, 2.0, 3.0)
    assert s.bin_to_physical_factor == pytest.approx(1.0)
    assert s.bin_to_physical_constant == pytest.approx(5.0)


def test_two_step_equals_direct():
    s = Scaling(1e-3, -0.25, 40.0, 7.5)
    analog = np.array([-32768, -1, 0, 1, 32767], dtype=np.int32)
    two_step = s.volt_to_physical(s.bin_to_volt(analog))
    assert np.allclose(two_step, s.bin_to_physical(analog))


def test_inverse_directions():
    s = Scaling(2e-4, 0.1, 25.0, -3.0)
    analog = np.array([-100.0, 0.0, 1234.0])
    volt = s.bin_to_volt(analog)
    phys = s.volt_to_physical(volt)
    assert np.allclose(s.physical_to_volt(phys), volt)
    assert np.allclose(s.volt_to_bin(volt), analog)


def test_from_range_spans_signed_word():
    s = Scaling.from_range(20.0, 0.0, 2)
    assert s.bin_to_volt_factor == pytest.approx(20.0 / 65536)
    assert s.bin_to_volt(32767) == pytest.approx(10.0, abs=1e-3)
    assert s.bin_to_volt(-32768) == pytest.approx(-10.0)

    s4 = Scaling.from_range(20.0, 1.0, 4)
    assert s4.bin_to_volt_factor == pytest.approx(20.0 / 2 ** 32)
    assert s4.bin_to_volt_constant == 1.0


@pytest.mark.parametrize("range_", [0.0, -1.0, float("nan"), float("inf")])
def test_from_range_rejects_bad_range(range_):
    with pytest.raises(ArgumentError):
        Scaling.from_range(range_, 0.0, 2)


def test_rejects_zero_or_non_finite_factor():
    with pytest.raises(ArgumentError):
        Scaling(1.0, 0.0, 0.0, 0.0)
    with pytest.raises(ArgumentError):
        Scaling(1.0, 0.0, float("nan"), 0.0)
    with pytest.raises(ArgumentError):
        Scaling(0.0, 0.0)


def test_physical_envelope_swaps_for_negative_factor():
    s = Scaling(1.0, 0.0, -2.0, 0.0)
    lo, hi = s.physical_envelope(np.array([-1, 3]), np.array([4, 5]))
    assert np.allclose(lo, [-8.0, -10.0])
    assert np.allclose(hi, [2.0, -6.0])


def test_agrees_with():
    s = Scaling(0.5, 1.0, 2.0, 3.0)
    assert s.agrees_with(1.0, 5.0)
    assert not s.agrees_with(1.1, 5.0)
    assert not s.agrees_with(1.0, 5.5)
