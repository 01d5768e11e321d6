"""
Message Bus

Asynchronous message passing between the three contexts (coordinator,
capture worker, UI). Nothing is shared: every message is serialized to JSON
on send and validated against the receiver's inbound union on delivery.

Each delivery runs as its own task, dispatched in send order: handlers
between any two endpoints are entered in the order the messages were sent.
Completion order is not preserved; a handler that awaits can still be
running when the next message is handled. There is no ordering across
different senders.

Usage:
    bus = LocalMessageBus()
    bus.register("worker", worker.handle_message, WorkerCommand)

    bus.send("worker", StopCapture())                         # fire-and-forget
    reply = await bus.request("worker", StopCapture(), StopCaptureReply, timeout=15)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from .errors import DeliveryError, ProtocolAnomaly, ProtocolTimeout

logger = logging.getLogger(__name__)

# Endpoint names
COORDINATOR = "coordinator"
WORKER = "worker"
UI = "ui"

Handler = Callable[[Any], Awaitable[BaseModel | None]]
ReplyT = TypeVar("ReplyT", bound=BaseModel)


class MessageBus(Protocol):
    def register(self, name: str, handler: Handler, inbound: Any) -> None: ...

    def unregister(self, name: str) -> None: ...

    def send(self, target: str, message: BaseModel) -> None: ...

    async def request(
        self,
        target: str,
        message: BaseModel,
        reply_type: type[ReplyT],
        timeout: float | None = None,
    ) -> ReplyT: ...


@dataclass
class _Endpoint:
    name: str
    handler: Handler
    adapter: TypeAdapter


class LocalMessageBus:
    """In-process bus: every endpoint lives on the same event loop."""

    def __init__(self):
        self._endpoints: dict[str, _Endpoint] = {}
        self._tasks: set[asyncio.Task] = set()

    def register(self, name: str, handler: Handler, inbound: Any) -> None:
        """
        Attach an endpoint.

        Args:
            name: Endpoint name other contexts address
            handler: Async callable receiving validated messages; its return
                value is the reply for request()
            inbound: Type (usually a discriminated union) inbound JSON is
                validated against
        """
        self._endpoints[name] = _Endpoint(name=name, handler=handler, adapter=TypeAdapter(inbound))
        logger.debug(f"Endpoint registered: {name}")

    def unregister(self, name: str) -> None:
        if self._endpoints.pop(name, None) is not None:
            logger.debug(f"Endpoint unregistered: {name}")

    def has_endpoint(self, name: str) -> bool:
        return name in self._endpoints

    def _lookup(self, target: str) -> _Endpoint:
        endpoint = self._endpoints.get(target)
        if endpoint is None:
            raise DeliveryError(f"Receiving end does not exist: {target}")
        return endpoint

    def send(self, target: str, message: BaseModel) -> None:
        """
        Fire-and-forget delivery.

        Raises:
            DeliveryError: If no endpoint with that name is registered
        """
        self._lookup(target)
        raw = message.model_dump_json(by_alias=True)
        asyncio.get_running_loop().call_soon(self._deliver, target, raw, None)

    async def request(
        self,
        target: str,
        message: BaseModel,
        reply_type: type[ReplyT],
        timeout: float | None = None,
    ) -> ReplyT:
        """
        Deliver a message and wait for the handler's reply.

        Raises:
            DeliveryError: If the endpoint does not exist, fails or gives no reply
            ProtocolTimeout: If no reply arrived within the timeout
        """
        self._lookup(target)
        raw = message.model_dump_json(by_alias=True)
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        loop.call_soon(self._deliver, target, raw, future)

        try:
            reply_raw = await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise ProtocolTimeout(f"No reply from {target} within {timeout}s") from None

        try:
            return TypeAdapter(reply_type).validate_json(reply_raw)
        except ValidationError as e:
            raise ProtocolAnomaly(f"Malformed reply from {target}: {e}") from e

    def _deliver(self, target: str, raw: str, future: asyncio.Future | None) -> None:
        endpoint = self._endpoints.get(target)
        if endpoint is None:
            logger.debug(f"Dropped message for vanished endpoint {target}")
            if future is not None and not future.done():
                future.set_exception(DeliveryError(f"Receiving end does not exist: {target}"))
            return

        try:
            message = endpoint.adapter.validate_json(raw)
        except ValidationError as e:
            logger.error(f"Invalid message for {target}: {e}")
            if future is not None and not future.done():
                future.set_exception(ProtocolAnomaly(f"Invalid message for {target}"))
            return

        task = asyncio.get_running_loop().create_task(self._run(endpoint, message, future))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, endpoint: _Endpoint, message: Any, future: asyncio.Future | None) -> None:
        try:
            reply = await endpoint.handler(message)
        except Exception as e:
            logger.exception(f"Handler {endpoint.name} failed on {type(message).__name__}")
            if future is not None and not future.done():
                future.set_exception(DeliveryError(f"{endpoint.name} failed: {e}"))
            return

        if future is None or future.done():
            return
        if reply is None:
            future.set_exception(DeliveryError(f"{endpoint.name} sent no reply"))
        else:
            future.set_result(reply.model_dump_json(by_alias=True))

    async def drain(self) -> None:
        """Wait until every scheduled delivery has been handled."""
        await asyncio.sleep(0)
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)
