from __future__ import annotations


class ServiceManagerError(RuntimeError):
    """Base class for every failure raised while loading a service."""


class DefinitionNotFoundError(ServiceManagerError):
    """No service definition matches the requested instance name."""


class InvalidInjectionError(ServiceManagerError):
    """An injection is neither a service reference nor a custom injection."""


class InvalidPostBuildActionError(ServiceManagerError):
    """A post-build action is missing or not callable on the built instance."""


class InvalidPathError(ServiceManagerError):
    """The module accessor of a definition raised while loading."""


class PathNotFoundError(ServiceManagerError):
    """The module accessor resolved to nothing usable."""


class CircularDependencyError(ServiceManagerError):
    """Service definitions reference each other in a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Detected circular service dependency: {' -> '.join(cycle)}")


__all__ = [
    "CircularDependencyError",
    "DefinitionNotFoundError",
    "InvalidInjectionError",
    "InvalidPathError",
    "InvalidPostBuildActionError",
    "PathNotFoundError",
    "ServiceManagerError",
]
