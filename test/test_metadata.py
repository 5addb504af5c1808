# test/test_metadata.py
import datetime as dt

import pytest

from bdfstore.core import ArgumentError, DateTime, OperationMode, WriterConfig


def test_datetime_roundtrip_with_milliseconds():
    value = dt.datetime(2024, 2, 29, 13, 45, 7, 123456)
    d = DateTime.from_datetime(value)
    assert d.millisecond == 123
    assert d.to_datetime() == dt.datetime(2024, 2, 29, 13, 45, 7, 123000)


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(year=2023, month=2, day=29),
        dict(year=2024, month=13, day=1),
        dict(year=2024, month=1, day=1, millisecond=1000),
        dict(year=2024, month=1, day=1, hour=24),
    ],
)
def test_datetime_rejects_invalid(kwargs):
    with pytest.raises(ArgumentError):
        DateTime(**kwargs)


def test_operation_modes():
    assert OperationMode(0) is OperationMode.CONTINUOUS
    assert OperationMode.SINGLE_EVENT_RECORDER.independent_inputs
    assert OperationMode.SINGLE_EVENT_RECORDER_DUAL.independent_inputs
    assert not OperationMode.MULTI_EVENT_RECORDER.independent_inputs
    assert not OperationMode.CONTINUOUS.independent_inputs
    assert OperationMode.MULTI_EVENT_RECORDER_DUAL.is_dual
    assert not OperationMode.CONTINUOUS.is_dual


def test_writer_config_defaults_and_validation():
    cfg = WriterConfig()
    assert (cfg.reduction_factor, cfg.max_reductions, cfg.transfer_size) == (16, 8, 65536)
    assert cfg.temp_suffix == ".tmp"

    with pytest.raises(ArgumentError):
        WriterConfig(reduction_factor=1)
    with pytest.raises(ArgumentError):
        WriterConfig(transfer_size=0)
    with pytest.raises(ArgumentError):
        WriterConfig(max_reductions=-1)
    with pytest.raises(ArgumentError):
        WriterConfig(temp_suffix="tmp")
