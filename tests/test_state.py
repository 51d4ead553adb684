from __future__ import annotations

import pytest

from pyavrctl.protocol import (
    Dimension,
    InputMap,
    InputState,
    MuteState,
    PowerState,
    Unrecognized,
    VolumeState,
)
from pyavrctl.state import AvrSnapshot, AvrStateCache


def test_initial_snapshot_is_all_invalid():
    snapshot = AvrStateCache().snapshot()
    assert snapshot == AvrSnapshot()
    assert not any(snapshot.is_valid(dimension) for dimension in Dimension)


def test_apply_marks_field_valid():
    cache = AvrStateCache()
    assert cache.apply(PowerState(True)) is True
    assert cache.apply(VolumeState(121)) is True
    assert cache.apply(MuteState(False)) is True
    assert cache.apply(InputState("04")) is True

    snapshot = cache.snapshot()
    assert snapshot.power is True and snapshot.power_valid
    assert snapshot.volume == 121 and snapshot.volume_valid
    assert snapshot.mute is False and snapshot.mute_valid
    assert snapshot.input == "CD" and snapshot.input_code == "04" and snapshot.input_valid
    assert snapshot.all_valid()


def test_apply_same_value_reports_no_change():
    cache = AvrStateCache()
    cache.apply(VolumeState(50))
    assert cache.apply(VolumeState(50)) is False
    assert cache.apply(VolumeState(51)) is True


def test_unrecognized_is_ignored():
    cache = AvrStateCache()
    assert cache.apply(Unrecognized("E04")) is False
    assert cache.snapshot() == AvrSnapshot()


def test_unmapped_input_code_is_kept_raw():
    cache = AvrStateCache(InputMap({"TV": "05"}))
    cache.apply(InputState("04"))
    snapshot = cache.snapshot()
    assert snapshot.input == "04"
    assert snapshot.input_code == "04"


def test_invalidate_all_keeps_values_but_clears_validity():
    cache = AvrStateCache()
    cache.apply(PowerState(True))
    cache.apply(VolumeState(80))
    cache.invalidate_all()

    snapshot = cache.snapshot()
    assert snapshot.power is True
    assert snapshot.volume == 80
    assert not snapshot.power_valid
    assert not snapshot.volume_valid
    assert not snapshot.all_valid([Dimension.POWER])

    # A fresh event re-validates only its own field
    cache.apply(PowerState(False))
    snapshot = cache.snapshot()
    assert snapshot.power_valid and snapshot.power is False
    assert not snapshot.volume_valid


def test_snapshot_is_a_point_in_time_copy():
    cache = AvrStateCache()
    cache.apply(VolumeState(10))
    before = cache.snapshot()
    cache.apply(VolumeState(20))
    assert before.volume == 10
    assert cache.snapshot().volume == 20
    with pytest.raises(Exception):
        before.volume = 30


def test_snapshot_value_helpers():
    cache = AvrStateCache()
    cache.apply(MuteState(True))
    snapshot = cache.snapshot()
    assert snapshot.value(Dimension.MUTE) is True
    assert snapshot.is_valid(Dimension.MUTE)
    assert snapshot.all_valid([Dimension.MUTE])
    assert not snapshot.all_valid([Dimension.MUTE, Dimension.INPUT])
