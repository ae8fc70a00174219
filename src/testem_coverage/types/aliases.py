"""Type aliases using PEP 695 syntax."""

from collections.abc import Awaitable, Callable, Mapping

from testem_coverage.types.models import Failure, Success

# Settled result of a lifecycle chain or cleanup stage
type Outcome = Success | Failure

# Priority tag accepted by listener registration and directory definitions:
# "first", "last", "before:<name>", "after:<name>", or a number (higher runs earlier)
type Priority = str | int | None

# Proxy configuration handed to the runner: {"/src": {"target": "http://localhost:7000"}}
type ProxyMap = dict[str, dict[str, str]]

# Listener registered on a lifecycle event; may return a plain value or an awaitable
type Listener = Callable[..., object]

# Callback supplied by the external runner; must be invoked exactly once
type RunnerCallback = Callable[[], object | Awaitable[object]]

# Options passed through to the runner, untyped at this boundary
type RunnerOptions = Mapping[str, object]
