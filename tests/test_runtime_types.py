from __future__ import annotations

import pytest

from localfm.native.events import DoneEvent, ErrorEvent, TextDeltaEvent, is_terminal
from localfm.native.runtime import Availability, AvailabilityReason, GenerationOptions
from localfm.utils.exceptions import InvalidInput


def test_generation_options_normalize_defaults():
    assert GenerationOptions(temperature=0, max_tokens=0).normalized() == GenerationOptions()
    assert GenerationOptions(temperature=None, max_tokens=-5).normalized() == GenerationOptions()
    assert GenerationOptions(temperature=0.7, max_tokens=100).normalized() == GenerationOptions(
        temperature=0.7, max_tokens=100
    )


@pytest.mark.parametrize("temperature", [-0.1, 1.01, 2])
def test_generation_options_reject_out_of_range_temperature(temperature):
    with pytest.raises(InvalidInput):
        GenerationOptions(temperature=temperature)


def test_availability_helpers():
    assert Availability.ok() == Availability(available=True, reason=AvailabilityReason.OK)
    down = Availability.unavailable(AvailabilityReason.DEVICE_NOT_ELIGIBLE, "Unsupported device.")
    assert down.available is False
    assert down.reason.value == "device_not_eligible"
    assert down.reason_text == "Unsupported device."


def test_terminal_events():
    assert is_terminal(DoneEvent())
    assert is_terminal(ErrorEvent("x"))
    assert not is_terminal(TextDeltaEvent("x"))
