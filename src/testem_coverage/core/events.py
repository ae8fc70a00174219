"""Lifecycle events with priority-ordered listeners.

A :class:`LifecycleEvent` is a named broadcast point. Listeners are registered
under a unique name together with a priority tag:

- ``"first"`` / ``"last"``: pinned to the start or end of the list
- ``"before:<name>"`` / ``"after:<name>"``: relative to another listener
- a number: higher numbers run earlier; unprioritized listeners count as 0

The order is computed once by a topological sort (Kahn's algorithm) and cached
until the listener set changes. Ties keep registration order.

Events can be fired two ways:

- :meth:`LifecycleEvent.fire` broadcasts synchronously (used for signals such
  as "server started")
- :meth:`LifecycleEvent.fire_chain` runs listeners sequentially, awaiting each
  result, and settles into an explicit ``Success | Failure`` outcome; the first
  failure short-circuits the chain

:class:`GatedEvent` fires once all of its source events have fired, and
:class:`SecondaryEventWait` turns "the next firing of an event" into an
awaitable that gives up after a timeout and always deregisters itself.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import logging
import re
from collections import defaultdict
from collections.abc import Generator, Sequence
from dataclasses import dataclass
from typing import Final, Self

from testem_coverage.exceptions import EventHandlerError, PriorityError
from testem_coverage.types import Failure, Listener, Outcome, Priority, Success

__all__ = [
    "GatedEvent",
    "LifecycleEvent",
    "ListenerRecord",
    "SecondaryEventWait",
    "order_by_priority",
    "validate_priority",
]

logger = logging.getLogger(__name__)

_RELATIVE_PRIORITY: Final[re.Pattern[str]] = re.compile(r"^(before|after):(.+)$")
_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._:\-]+$")

# Base ranks for fixed priorities; numeric priorities sit between them
_FIRST_RANK: Final[float] = float("-inf")
_LAST_RANK: Final[float] = float("inf")


@dataclass(slots=True, frozen=True)
class ListenerRecord:
    """A named listener together with its priority tag."""

    name: str
    listener: Listener
    priority: Priority = None


def validate_priority(priority: Priority) -> None:
    """Validate the syntax of a priority tag.

    Args:
        priority: Tag to validate

    Raises:
        ValueError: If the tag is not a recognized form
    """
    if priority is None or isinstance(priority, int):
        return
    if priority in ("first", "last"):
        return
    if _RELATIVE_PRIORITY.match(priority):
        return
    try:
        _ = float(priority)
    except ValueError:
        msg = f"Invalid priority '{priority}': expected first, last, before:<name>, after:<name> or a number"
        raise ValueError(msg) from None


def _base_rank(priority: Priority) -> float:
    if priority is None:
        return 0.0
    if isinstance(priority, int):
        return -float(priority)
    if priority == "first":
        return _FIRST_RANK
    if priority == "last":
        return _LAST_RANK
    if _RELATIVE_PRIORITY.match(priority):
        return 0.0
    return -float(priority)


def order_by_priority[T](items: Sequence[T], names: Sequence[str], priorities: Sequence[Priority]) -> list[T]:
    """Order items by their priority tags.

    Relative constraints (``before:``/``after:``) are edges in a dependency
    graph; among the items whose predecessors have all been placed, the one
    with the lowest base rank wins and ties fall back to declaration order.

    Args:
        items: Items to order
        names: Unique name of each item, used as the target of relative tags
        priorities: Priority tag of each item

    Returns:
        Items in execution order

    Raises:
        PriorityError: On invalid tags, duplicate names, unknown references or cycles

    Examples:
        >>> order_by_priority(["a", "b", "c"], ["a", "b", "c"], ["last", "after:c", "first"])
        ['c', 'b', 'a']
    """
    if not len(items) == len(names) == len(priorities):
        msg = "items, names and priorities must have the same length"
        raise PriorityError(msg)

    index_by_name: dict[str, int] = {}
    for index, name in enumerate(names):
        if name in index_by_name:
            msg = f"Duplicate listener name '{name}'"
            raise PriorityError(msg, {"name": name})
        index_by_name[name] = index

    successors: dict[int, list[int]] = defaultdict(list)
    in_degree = [0] * len(items)
    ranks: list[float] = []

    for index, priority in enumerate(priorities):
        try:
            validate_priority(priority)
        except ValueError as exc:
            raise PriorityError(str(exc), {"name": names[index]}) from exc
        ranks.append(_base_rank(priority))

        if not isinstance(priority, str):
            continue
        match = _RELATIVE_PRIORITY.match(priority)
        if match is None:
            continue
        relation, target = match.group(1), match.group(2)
        if target not in index_by_name:
            msg = f"Listener '{names[index]}' refers to unknown listener '{target}' in priority '{priority}'"
            raise PriorityError(msg, {"name": names[index], "priority": priority})
        target_index = index_by_name[target]
        if relation == "after":
            successors[target_index].append(index)
            in_degree[index] += 1
        else:
            successors[index].append(target_index)
            in_degree[target_index] += 1

    ready: list[tuple[float, int]] = [(ranks[i], i) for i in range(len(items)) if in_degree[i] == 0]
    heapq.heapify(ready)
    ordered: list[T] = []

    while ready:
        _, current = heapq.heappop(ready)
        ordered.append(items[current])
        for dependent in successors[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (ranks[dependent], dependent))

    if len(ordered) != len(items):
        unresolved = sorted(names[i] for i in range(len(items)) if in_degree[i] > 0)
        msg = f"Circular priority constraints between listeners: {', '.join(unresolved)}"
        raise PriorityError(msg, {"listeners": unresolved})

    return ordered


class LifecycleEvent:
    """A named event with priority-ordered listeners."""

    def __init__(self, name: str) -> None:
        """Initialize event.

        Args:
            name: Event name (alphanumerics, dots, colons, underscores, hyphens)

        Raises:
            ValueError: If the name is invalid
        """
        if not _NAME_PATTERN.match(name):
            msg = f"Invalid event name: '{name}'"
            raise ValueError(msg)
        self.name: str = name
        self._records: dict[str, ListenerRecord] = {}
        self._ordered: list[ListenerRecord] | None = None

    @property
    def listener_names(self) -> list[str]:
        """Listener names in execution order."""
        return [record.name for record in self.ordered_listeners()]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def add_listener(self, name: str, listener: Listener, *, priority: Priority = None) -> None:
        """Register a listener, replacing any listener with the same name.

        Args:
            name: Unique listener name (the target of ``before:``/``after:`` tags)
            listener: Callable invoked when the event fires
            priority: Priority tag

        Raises:
            PriorityError: If the priority tag is malformed
        """
        try:
            validate_priority(priority)
        except ValueError as exc:
            raise PriorityError(str(exc), {"event": self.name, "name": name}) from exc
        self._records[name] = ListenerRecord(name=name, listener=listener, priority=priority)
        self._ordered = None
        logger.debug(
            "Registered listener",
            extra={"event": self.name, "listener": name, "priority": priority},
        )

    def remove_listener(self, name: str) -> bool:
        """Deregister a listener.

        Args:
            name: Listener name

        Returns:
            True if a listener was removed
        """
        if self._records.pop(name, None) is None:
            return False
        self._ordered = None
        return True

    def ordered_listeners(self) -> list[ListenerRecord]:
        """Resolve and cache the listener order.

        Raises:
            PriorityError: If the priorities cannot be ordered
        """
        if self._ordered is None:
            records = list(self._records.values())
            self._ordered = order_by_priority(
                records,
                [record.name for record in records],
                [record.priority for record in records],
            )
        return list(self._ordered)

    def fire(self, *args: object) -> None:
        """Broadcast to all listeners synchronously, in priority order.

        Args:
            args: Payload passed to every listener

        Raises:
            EventHandlerError: If a listener raises
        """
        for record in self.ordered_listeners():
            try:
                _ = record.listener(*args)
            except Exception as exc:
                msg = f"Listener '{record.name}' failed while handling event '{self.name}': {exc}"
                raise EventHandlerError(
                    msg,
                    event_name=self.name,
                    listener_name=record.name,
                    original_error=exc,
                ) from exc

    async def fire_chain(self, *args: object) -> Outcome:
        """Run listeners sequentially, awaiting each result.

        Each listener receives ``args``; a listener may return a plain value or
        an awaitable. The first exception stops the chain.

        Args:
            args: Payload passed to every listener

        Returns:
            Success carrying the last listener's result, or Failure naming the step
        """
        try:
            records = self.ordered_listeners()
        except PriorityError as exc:
            return Failure(error=exc, step=None)

        value: object = None
        for record in records:
            try:
                result = record.listener(*args)
                if inspect.isawaitable(result):
                    result = await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.debug(
                    "Chain step failed",
                    extra={"event": self.name, "step": record.name, "error": str(exc)},
                )
                return Failure(error=exc, step=record.name)
            value = result
        return Success(value=value)


class GatedEvent(LifecycleEvent):
    """An event that fires once every one of its source events has fired.

    Each source contributes its payload; when the last outstanding source
    fires, the gated event fires with one payload tuple per source (in the
    order the sources were given) and re-arms for the next round.
    """

    def __init__(self, name: str, sources: Sequence[LifecycleEvent]) -> None:
        super().__init__(name)
        if not sources:
            msg = "A gated event needs at least one source event"
            raise ValueError(msg)
        self.sources: tuple[LifecycleEvent, ...] = tuple(sources)
        self._pending: dict[str, tuple[object, ...]] = {}
        self._listener_name: str = f"gate:{name}"
        for source in self.sources:
            source.add_listener(self._listener_name, self._make_source_listener(source.name), priority="last")

    def _make_source_listener(self, source_name: str) -> Listener:
        def _on_source(*args: object) -> None:
            self._pending[source_name] = args
            if all(source.name in self._pending for source in self.sources):
                payload = tuple(self._pending[source.name] for source in self.sources)
                self._pending.clear()
                self.fire(*payload)

        return _on_source

    def reset(self) -> None:
        """Forget source firings recorded in the current round."""
        self._pending.clear()

    def detach(self) -> None:
        """Stop listening to the source events."""
        for source in self.sources:
            _ = source.remove_listener(self._listener_name)


class SecondaryEventWait:
    """Awaitable that resolves on the next firing of an event, or after a timeout.

    The single-use listener is registered on construction (or :meth:`arm`) so
    that a firing which happens before anyone awaits is still captured. It is
    removed as soon as the wait settles, whichever way it settles, and also by
    :meth:`cancel`.

    Example:
        >>> wait = SecondaryEventWait(server_started, timeout_ms=30000)
        >>> await start_server()
        >>> payload = await wait  # payload tuple, or None on timeout
    """

    _counter: int = 0

    def __init__(self, event: LifecycleEvent, *, timeout_ms: int, owner: str = "harness") -> None:
        """Initialize and arm the wait.

        Args:
            event: Event to wait for
            timeout_ms: Milliseconds to wait before resolving without a payload
            owner: Identifier included in the listener name
        """
        if timeout_ms <= 0:
            msg = "timeout_ms must be greater than zero"
            raise ValueError(msg)
        SecondaryEventWait._counter += 1
        self.event: LifecycleEvent = event
        self.timeout_ms: int = timeout_ms
        self.timed_out: bool = False
        self.listener_name: str = f"singleUse.{owner}.{SecondaryEventWait._counter}"
        self._future: asyncio.Future[tuple[object, ...]] = asyncio.get_running_loop().create_future()
        self._armed: bool = False
        self.arm()

    @property
    def armed(self) -> bool:
        """True while the single-use listener is registered."""
        return self._armed

    def arm(self) -> None:
        """Register the single-use listener if it is not registered yet."""
        if self._armed or self._future.done():
            return
        self.event.add_listener(self.listener_name, self._on_fire, priority="last")
        self._armed = True

    def disarm(self) -> None:
        """Remove the single-use listener."""
        if self._armed:
            _ = self.event.remove_listener(self.listener_name)
            self._armed = False

    def cancel(self) -> None:
        """Abandon the wait and deregister the listener."""
        self.disarm()
        if not self._future.done():
            _ = self._future.cancel()

    def _on_fire(self, *args: object) -> None:
        if not self._future.done():
            self._future.set_result(args)
        self.disarm()

    async def wait(self) -> tuple[object, ...] | None:
        """Wait for the event.

        Returns:
            The payload the event fired with, or None on timeout
        """
        try:
            async with asyncio.timeout(self.timeout_ms / 1000.0):
                return await asyncio.shield(self._future)
        except TimeoutError:
            self.timed_out = True
            logger.warning(
                "Timed out while waiting for event '%s' to fire...",
                self.event.name,
                extra={"event": self.event.name, "timeout_ms": self.timeout_ms},
            )
            return None
        finally:
            self.disarm()
            if not self._future.done():
                _ = self._future.cancel()

    def __await__(self) -> Generator[object, None, tuple[object, ...] | None]:
        return self.wait().__await__()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.cancel()

