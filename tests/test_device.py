from __future__ import annotations

import asyncio
import logging

import pytest

from commissionctl.core.device import (
    OnOffLightDevice,
    OnOffPlugInUnitDevice,
    RootEndpoint,
    device_for_type,
)
from commissionctl.core.errors import (
    CommandFailedError,
    ConstraintError,
    UnsupportedAttributeError,
    UnsupportedCommandError,
)
from commissionctl.core.model import DeviceType


@pytest.mark.asyncio
async def test_on_off_commands_update_state_and_notify() -> None:
    device = OnOffLightDevice()
    seen: list[bool] = []
    device.add_on_off_listener(seen.append)

    await device.dispatch("on")
    await device.dispatch("on")
    await device.dispatch("toggle")

    assert device.is_on is False
    assert seen == [True, False]


@pytest.mark.asyncio
async def test_listeners_run_in_registration_order() -> None:
    device = OnOffPlugInUnitDevice()
    order: list[str] = []

    async def first(attribute: str, value: object) -> None:
        await asyncio.sleep(0)
        order.append("first")

    device.add_state_listener(first)
    device.add_state_listener(lambda attribute, value: order.append("second"))

    await device.dispatch("on")
    assert order == ["first", "second"]


@pytest.mark.asyncio
async def test_concurrent_dispatches_are_serialized() -> None:
    device = RootEndpoint()
    events: list[str] = []

    async def slow(args: dict) -> str:
        events.append(f"start-{args['n']}")
        await asyncio.sleep(0.01)
        events.append(f"end-{args['n']}")
        return f"done-{args['n']}"

    device.add_command_handler("slow", slow)
    results = await asyncio.gather(*(device.dispatch("slow", {"n": n}) for n in range(3)))

    assert results == ["done-0", "done-1", "done-2"]
    assert events == ["start-0", "end-0", "start-1", "end-1", "start-2", "end-2"]


@pytest.mark.asyncio
async def test_failed_handler_does_not_block_next_dispatch() -> None:
    device = RootEndpoint()

    def broken(args: dict) -> None:
        raise RuntimeError("relay stuck")

    device.add_command_handler("broken", broken)
    device.add_command_handler("ping", lambda args: "pong")

    with pytest.raises(CommandFailedError, match="relay stuck"):
        await device.dispatch("broken")
    assert await device.dispatch("ping") == "pong"


@pytest.mark.asyncio
async def test_unknown_command_rejected() -> None:
    with pytest.raises(UnsupportedCommandError):
        await OnOffLightDevice().dispatch("dim")


def test_duplicate_handler_overrides_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    device = RootEndpoint()
    device.add_command_handler("testEventTrigger", lambda args: 1)
    with caplog.at_level(logging.WARNING):
        device.add_command_handler("testEventTrigger", lambda args: 2)
    assert "overrides" in caplog.text
    assert device.supported_commands() == ("testEventTrigger",)


@pytest.mark.asyncio
async def test_write_attribute_checks_type() -> None:
    device = OnOffLightDevice()
    await device.write_attribute("onOff", True)
    assert device.read_attribute("onOff") is True

    with pytest.raises(ConstraintError):
        await device.write_attribute("onOff", 1)
    with pytest.raises(UnsupportedAttributeError):
        await device.write_attribute("identifyTime", 5)
    with pytest.raises(UnsupportedAttributeError):
        device.read_attribute("level")


@pytest.mark.asyncio
async def test_identify_notifies_even_when_repeated() -> None:
    device = OnOffLightDevice()
    seen: list[tuple[str, object]] = []
    device.add_state_listener(lambda attribute, value: seen.append((attribute, value)))

    await device.dispatch("identify", {"identifyTime": 5})
    await device.dispatch("identify", {"identifyTime": 5})
    assert seen == [("identifyTime", 5), ("identifyTime", 5)]

    with pytest.raises(ConstraintError):
        await device.dispatch("identify", {"identifyTime": 70000})


def test_device_for_type() -> None:
    assert isinstance(device_for_type(DeviceType.ON_OFF_LIGHT), OnOffLightDevice)
    assert isinstance(device_for_type(DeviceType.ON_OFF_PLUG_IN_UNIT), OnOffPlugInUnitDevice)
    with pytest.raises(ValueError):
        device_for_type(DeviceType.ROOT_NODE)


@pytest.mark.asyncio
async def test_failing_listener_on_write_is_wrapped() -> None:
    device = OnOffLightDevice()
    calls: list[bool] = []

    def relay(value: bool) -> None:
        calls.append(value)
        if value:
            raise RuntimeError("relay driver failed")

    device.add_on_off_listener(relay)

    with pytest.raises(CommandFailedError, match="relay driver failed"):
        await device.write_attribute("onOff", True)
    await device.write_attribute("onOff", False)
    assert calls == [True, False]
