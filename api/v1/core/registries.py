from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def has(self, name: str) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
@dataclass
class JobContext:
    """Execution context handed to a job handler alongside its payload."""

    job_id: int
    job_type: str
    attempt: int
    worker_id: str
    dry_run: bool = False
    extra: dict[str, Any] = field(default_factory=dict)


class JobHandler(Protocol):
    """Protocol for job handlers that process background tasks."""

    async def handle(
        self,
        payload: dict[str, Any],
        context: JobContext,
    ) -> dict[str, Any] | None:
        """
        Handle a background job.

        Handlers run with at-least-once semantics: a job may be re-run after a
        worker crash, so side effects must be idempotent or keyed.

        Raise PermanentJobError to move the job straight to the dead-letter
        state; any other exception is retried with backoff.
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry for background job handlers."""

    def __init__(self):
        super().__init__("Job")


# Event Route Registry - outbox event name -> job type and payload
class EventRoute(Protocol):
    """Protocol for turning an outbox event into job parameters."""

    job_type: str

    def build_payload(self, event: Any) -> dict[str, Any]:
        """Build the job payload from an outbox row."""
        ...


class EventRouteRegistry(Registry[EventRoute]):
    """Registry of outbox event routes with a fallback for unlisted events."""

    def __init__(self):
        super().__init__("EventRoute")
        self._default: EventRoute | None = None

    def set_default(self, route: EventRoute) -> None:
        if self._frozen:
            raise RuntimeError(
                "Cannot set default route: registry is frozen in production mode"
            )
        self._default = route

    def resolve(self, event_name: str) -> EventRoute:
        """Route for an event name, falling back to the default route."""
        if self.has(event_name):
            return self.get(event_name)
        if self._default is None:
            raise KeyError(f"No event route registered for: {event_name}")
        return self._default


# Global registry instances (singletons)
job_registry = JobRegistry()
event_route_registry = EventRouteRegistry()
