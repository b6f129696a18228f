"""
core.shards
===========
Best-effort fan-out of global enable/disable and whitelist changes to sibling shard
processes over ZeroMQ PUB/SUB.

Every shard binds a PUB socket on ``base_port + shard_id`` and connects
a SUB socket to every other shard's PUB socket. Nothing is acknowledged;
a shard which misses a message only catches up on its next restart.
"""
import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import zmq
import zmq.asyncio
from red_commons.logging import getLogger
from schema import And, Or, Regex, Schema, SchemaError

from .errors import InvalidBroadcast
from .events import OverrideScope

__all__ = [
    "BROADCAST_SCOPES",
    "MESSAGE_SCHEMA",
    "NullBroadcaster",
    "ShardBroadcaster",
    "parse_message",
]

log = getLogger("commando.shards")

BROADCAST_SCOPES = (
    OverrideScope.SERVER.value,
    OverrideScope.ROLES_WHITELIST.value,
    OverrideScope.CHANNELS_WHITELIST.value,
)

MESSAGE_SCHEMA = Schema(
    {
        "shard": And(int, lambda n: n >= 0),
        "key": Regex(r"^(cmd|grp)-.+$"),
        "value": bool,
        "scope": Or(*BROADCAST_SCOPES),
    }
)

Handler = Callable[[str, bool, str], Optional[Awaitable[Any]]]


def parse_message(raw: bytes) -> Dict[str, Any]:
    """Decode and validate a message published by a shard.

    Raises
    ------
    InvalidBroadcast
        The message isn't JSON, or doesn't match `MESSAGE_SCHEMA`.
    """
    try:
        message = json.loads(raw)
    except ValueError as e:
        raise InvalidBroadcast(f"Message is not valid JSON: {e}") from e
    try:
        return MESSAGE_SCHEMA.validate(message)
    except SchemaError as e:
        raise InvalidBroadcast(f"Message doesn't match the expected schema: {e}") from e


class NullBroadcaster:
    """Used when the process isn't sharded. Publishing does nothing."""

    async def initialize(self, handler: Handler) -> None:
        return

    async def publish(self, key: str, value: bool, scope: str = "server") -> None:
        return

    async def close(self) -> None:
        return


class ShardBroadcaster:
    """
    ZeroMQ publisher/subscriber pair for a single shard.

    Parameters
    ----------
    shard_id : int
        This process' shard ID.
    shard_count : int
        The total number of shards.
    host : str
        The address every shard binds to and connects to.
    base_port : int
        Shard ``n`` publishes on ``base_port + n``.
    """

    def __init__(
        self,
        shard_id: int,
        shard_count: int,
        *,
        host: str = "127.0.0.1",
        base_port: int = 5560,
        context: Optional[zmq.asyncio.Context] = None,
    ):
        if not 0 <= shard_id < shard_count:
            raise ValueError(f"Shard ID {shard_id} is out of range for {shard_count} shards.")
        self.shard_id = shard_id
        self.shard_count = shard_count
        self.host = host
        self.base_port = base_port

        self.context = context or zmq.asyncio.Context.instance()
        self._pub: Optional[zmq.asyncio.Socket] = None
        self._sub: Optional[zmq.asyncio.Socket] = None
        self._handler: Optional[Handler] = None
        self._main_task: Optional[asyncio.Task] = None
        self._queue: Set[asyncio.Task] = set()
        self._started = False

    def address(self, shard_id: int) -> str:
        return f"tcp://{self.host}:{self.base_port + shard_id}"

    async def initialize(self, handler: Handler) -> None:
        """
        Bind the publisher, connect to every sibling and start
        processing incoming messages with ``handler(key, value, scope)``.
        """
        self._handler = handler
        self._pub = self.context.socket(zmq.PUB)
        self._pub.bind(self.address(self.shard_id))

        self._sub = self.context.socket(zmq.SUB)
        self._sub.setsockopt(zmq.SUBSCRIBE, b"")
        for shard_id in range(self.shard_count):
            if shard_id != self.shard_id:
                self._sub.connect(self.address(shard_id))

        self._started = True
        log.debug(
            "Shard %s publishing on %s to %s siblings",
            self.shard_id,
            self.address(self.shard_id),
            self.shard_count - 1,
        )
        self._main_task = asyncio.create_task(self._processor())

    async def publish(self, key: str, value: bool, scope: str = "server") -> None:
        if not self._started:
            log.debug("Broadcaster not started, not publishing %s", key)
            return
        message = {"shard": self.shard_id, "key": key, "value": bool(value), "scope": scope}
        try:
            await self._pub.send(json.dumps(message).encode("utf-8"))
        except zmq.ZMQError:
            log.warning("Failed to publish %s to sibling shards", key, exc_info=True)
        else:
            log.verbose("Published %s %s=%s to sibling shards", scope, key, value)

    async def _processor(self) -> None:
        while True:
            raw = await self._sub.recv()
            try:
                message = parse_message(raw)
            except InvalidBroadcast as e:
                log.warning("Dropping message from a sibling shard: %s", e)
                continue
            if message["shard"] == self.shard_id:
                continue
            task = asyncio.create_task(self._handle(message))
            self._queue.add(task)
            task.add_done_callback(self._queue.discard)

    async def _handle(self, message: Dict[str, Any]) -> None:
        log.debug(
            "Received %s %s=%s from shard %s",
            message["scope"],
            message["key"],
            message["value"],
            message["shard"],
        )
        try:
            result = self._handler(message["key"], message["value"], message["scope"])
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.exception("Failed to apply %s from shard %s", message["key"], message["shard"])

    async def close(self) -> None:
        """
        Stops processing messages and closes both sockets.
        """
        if not self._started:
            return
        self._started = False
        self._main_task.cancel()
        for task in self._queue:
            task.cancel()
        self._pub.close(linger=0)
        self._sub.close(linger=0)
