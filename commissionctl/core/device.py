"""Device models exposed on server endpoints.

A device model owns a command-handler registry, a small attribute table and
an ordered list of state listeners. Handler invocations on one device are
serialized: each dispatch waits for the previous one to finish before it
runs, so physical side effects (relay toggles) keep their order. No lock is
held while a handler runs; ordering is carried by chaining completion
futures.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from commissionctl.core.errors import (
    CommandFailedError,
    CommissioningError,
    ConstraintError,
    UnsupportedAttributeError,
    UnsupportedCommandError,
)
from commissionctl.core.model import DeviceType

LOGGER = logging.getLogger(__name__)

CommandHandler = Callable[[dict[str, Any]], Any]
StateListener = Callable[[str, Any], Any]
OnOffListener = Callable[[bool], Any]

ATTR_ON_OFF = "onOff"
ATTR_IDENTIFY_TIME = "identifyTime"


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class DeviceModel:
    device_type: DeviceType = DeviceType.ROOT_NODE

    def __init__(self, *, name: str | None = None) -> None:
        self.name = name or self.device_type.name.lower()
        self._handlers: dict[str, CommandHandler] = {}
        self._listeners: list[StateListener] = []
        self._attributes: dict[str, Any] = {}
        self._writable: dict[str, type] = {}
        self._tail: asyncio.Future[None] | None = None

    def add_command_handler(self, name: str, handler: CommandHandler) -> None:
        """Register a handler; registering a name again replaces the earlier handler."""
        if name in self._handlers:
            LOGGER.warning("Command handler '%s' on %s overrides an earlier registration", name, self.name)
        self._handlers[name] = handler

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def supported_commands(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    def attributes(self) -> dict[str, Any]:
        return dict(self._attributes)

    def read_attribute(self, name: str) -> Any:
        if name not in self._attributes:
            raise UnsupportedAttributeError(f"{self.name} has no attribute '{name}'")
        return self._attributes[name]

    async def dispatch(self, command: str, args: dict[str, Any] | None = None) -> Any:
        handler = self._handlers.get(command)
        if handler is None:
            raise UnsupportedCommandError(f"{self.name} does not support command '{command}'")
        return await self._serialized(self._invoke, command, handler, dict(args or {}))

    async def write_attribute(self, name: str, value: Any) -> None:
        expected = self._writable.get(name)
        if expected is None:
            raise UnsupportedAttributeError(f"Attribute '{name}' on {self.name} is not writable")
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise ConstraintError(
                f"Attribute '{name}' expects {expected.__name__}, got {type(value).__name__}"
            )
        await self._serialized(self._write, name, value)

    async def _invoke(self, command: str, handler: CommandHandler, args: dict[str, Any]) -> Any:
        try:
            return await _maybe_await(handler(args))
        except CommissioningError:
            raise
        except Exception as exc:
            raise CommandFailedError(f"Command '{command}' on {self.name} failed: {exc}") from exc

    async def _write(self, name: str, value: Any) -> None:
        try:
            await self._set_attribute(name, value)
        except CommissioningError:
            raise
        except Exception as exc:
            raise CommandFailedError(f"Write of '{name}' on {self.name} failed: {exc}") from exc

    async def _serialized(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        previous = self._tail
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._tail = done
        try:
            if previous is not None and not previous.done():
                await asyncio.shield(previous)
            return await func(*args)
        finally:
            if previous is None or previous.done():
                done.set_result(None)
            else:
                previous.add_done_callback(lambda _: done.done() or done.set_result(None))

    async def _set_attribute(self, name: str, value: Any, *, force: bool = False) -> None:
        """Update an attribute and notify listeners, in registration order, when it changed."""
        if not force and self._attributes.get(name) == value:
            return
        self._attributes[name] = value
        LOGGER.debug("%s.%s = %r", self.name, name, value)
        for listener in list(self._listeners):
            await _maybe_await(listener(name, value))


class RootEndpoint(DeviceModel):
    device_type = DeviceType.ROOT_NODE


class OnOffDevice(DeviceModel):
    """On/off actuator with identify support."""

    def __init__(self, *, name: str | None = None) -> None:
        super().__init__(name=name)
        self._attributes[ATTR_ON_OFF] = False
        self._attributes[ATTR_IDENTIFY_TIME] = 0
        self._writable[ATTR_ON_OFF] = bool
        self._handlers["on"] = self._handle_on
        self._handlers["off"] = self._handle_off
        self._handlers["toggle"] = self._handle_toggle
        self._handlers["identify"] = self._handle_identify

    @property
    def is_on(self) -> bool:
        return bool(self._attributes[ATTR_ON_OFF])

    def add_on_off_listener(self, listener: OnOffListener) -> None:
        async def _on_change(attribute: str, value: Any) -> None:
            if attribute == ATTR_ON_OFF:
                await _maybe_await(listener(bool(value)))

        self.add_state_listener(_on_change)

    async def _handle_on(self, args: dict[str, Any]) -> None:
        await self._set_attribute(ATTR_ON_OFF, True)

    async def _handle_off(self, args: dict[str, Any]) -> None:
        await self._set_attribute(ATTR_ON_OFF, False)

    async def _handle_toggle(self, args: dict[str, Any]) -> None:
        await self._set_attribute(ATTR_ON_OFF, not self.is_on)

    async def _handle_identify(self, args: dict[str, Any]) -> None:
        identify_time = args.get("identifyTime", 0)
        if isinstance(identify_time, bool) or not isinstance(identify_time, int) or not 0 <= identify_time <= 0xFFFF:
            raise ConstraintError(f"identifyTime must be 0..65535, got {identify_time!r}")
        await self._set_attribute(ATTR_IDENTIFY_TIME, identify_time, force=True)


class OnOffLightDevice(OnOffDevice):
    device_type = DeviceType.ON_OFF_LIGHT


class OnOffPlugInUnitDevice(OnOffDevice):
    device_type = DeviceType.ON_OFF_PLUG_IN_UNIT


def device_for_type(device_type: DeviceType, *, name: str | None = None) -> OnOffDevice:
    if device_type is DeviceType.ON_OFF_PLUG_IN_UNIT:
        return OnOffPlugInUnitDevice(name=name)
    if device_type is DeviceType.ON_OFF_LIGHT:
        return OnOffLightDevice(name=name)
    raise ValueError(f"No device model for device type {device_type.name}")
