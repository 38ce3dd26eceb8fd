from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Generic, Protocol, TypeVar

from switchyard.core.cancellation import CancellationToken
from switchyard.core.exceptions import HandlerMissingError

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

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process background tasks."""

    async def handle(self, payload: dict[str, Any], token: CancellationToken) -> None:
        """
        Handle a background job.

        Args:
            payload: Job-specific parameters, exactly as enqueued
            token: Cooperative cancellation signal; poll it between units of work

        Raising marks the attempt as failed; returning marks the job completed.
        """
        ...


HandlerFunction = Callable[[dict[str, Any], CancellationToken], Awaitable[None]]


class FunctionHandler:
    """Adapts a plain coroutine function to the JobHandler protocol."""

    def __init__(self, func: HandlerFunction):
        self.func = func

    async def handle(self, payload: dict[str, Any], token: CancellationToken) -> None:
        await self.func(payload, token)


class HandlerRegistry(Registry[JobHandler]):
    """Registry mapping job types to their handlers."""

    def __init__(self, handlers: dict[str, JobHandler] | None = None):
        super().__init__("Job")
        for job_type, handler in (handlers or {}).items():
            self.register(job_type, handler)

    def register(self, name: str, implementation: JobHandler) -> None:
        # Accept enum members and plain strings alike
        super().register(str(getattr(name, "value", name)), implementation)

    def register_function(self, job_type: str, func: HandlerFunction) -> None:
        """Register a coroutine function as the handler for a job type."""
        self.register(job_type, FunctionHandler(func))

    def get(self, name: str) -> JobHandler:
        try:
            return super().get(name)
        except KeyError:
            raise HandlerMissingError(name) from None

    def missing(self, job_types: Iterable[str]) -> list[str]:
        """Return the job types from `job_types` that have no handler."""
        return [
            str(getattr(job_type, "value", job_type))
            for job_type in job_types
            if str(getattr(job_type, "value", job_type)) not in self
        ]
