# tests/property/core/test_checkpoint_serialization_properties.py
"""Property-based tests for type-preserving checkpoint serialization.

Properties:
- Free-form state survives dumps/loads, even when user dicts use the
  reserved envelope key
- Output is byte-stable and key-order independent
- Checkpoint <-> dict mapping is lossless
"""

from __future__ import annotations

from typing import Any

from hypothesis import given

from lifeline.contracts.checkpoint import Checkpoint
from lifeline.contracts.signals import SignalSnapshot
from lifeline.core.checkpoint.serialization import (
    checkpoint_dumps,
    checkpoint_from_dict,
    checkpoint_loads,
    checkpoint_to_dict,
    signals_from_dict,
    signals_to_dict,
)
from tests.property.conftest import checkpoints, json_values, signal_snapshots, state_dicts
from tests.property.settings import DETERMINISM_SETTINGS, STANDARD_SETTINGS


class TestStateRoundTrip:
    @given(state=state_dicts)
    @DETERMINISM_SETTINGS
    def test_state_dicts_round_trip(self, state: dict[str, Any]) -> None:
        assert checkpoint_loads(checkpoint_dumps(state)) == state

    @given(value=json_values)
    @STANDARD_SETTINGS
    def test_nested_values_round_trip(self, value: Any) -> None:
        wrapped = {"state": value}
        assert checkpoint_loads(checkpoint_dumps(wrapped)) == wrapped

    @given(inner=state_dicts)
    @STANDARD_SETTINGS
    def test_reserved_key_nested_in_lists(self, inner: dict[str, Any]) -> None:
        data = {"history": [inner, {"__lifeline_type__": "datetime", "__lifeline_value__": "not-a-date"}]}
        assert checkpoint_loads(checkpoint_dumps(data)) == data


class TestStability:
    @given(state=state_dicts)
    @DETERMINISM_SETTINGS
    def test_dumps_is_deterministic(self, state: dict[str, Any]) -> None:
        assert checkpoint_dumps(state) == checkpoint_dumps(state)

    @given(state=state_dicts)
    @STANDARD_SETTINGS
    def test_key_order_does_not_matter(self, state: dict[str, Any]) -> None:
        reversed_state = dict(reversed(list(state.items())))
        assert checkpoint_dumps(reversed_state) == checkpoint_dumps(state)

    @given(state=state_dicts)
    @STANDARD_SETTINGS
    def test_dumps_of_loads_is_fixed_point(self, state: dict[str, Any]) -> None:
        encoded = checkpoint_dumps(state)
        assert checkpoint_dumps(checkpoint_loads(encoded)) == encoded


class TestMapping:
    @given(checkpoint=checkpoints())
    @DETERMINISM_SETTINGS
    def test_checkpoint_dict_round_trip(self, checkpoint: Checkpoint) -> None:
        data = checkpoint_loads(checkpoint_dumps(checkpoint_to_dict(checkpoint)))
        assert checkpoint_from_dict(data) == checkpoint

    @given(signals=signal_snapshots())
    @STANDARD_SETTINGS
    def test_signals_dict_round_trip(self, signals: SignalSnapshot) -> None:
        data = checkpoint_loads(checkpoint_dumps(signals_to_dict(signals)))
        assert signals_from_dict(data) == signals

