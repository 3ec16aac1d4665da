from __future__ import annotations

import importlib
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Union

from loguru import logger

# A module accessor takes no arguments and yields a module-like object
# exposing the service constructor. It may be:
# - an `async def` returning the module
# - a synchronous callable returning the module (run in a worker thread)
# - a synchronous callable returning an awaitable of the module
ModuleAccessor = Callable[[], object | Awaitable[object]]

SERVICE_CLASS_NAME_KEY = "serviceClassName"
SERVICE_INSTANCE_NAME_KEY = "serviceInstanceName"
SERVICE_INJECTIONS_KEY = "serviceInjections"
POST_BUILD_ACTIONS_KEY = "postBuildAsyncActions"
PATH_TO_SERVICE_KEY = "pathToService"
CUSTOM_INJECTION_KEY = "customInjection"
SERVICE_DEFINITIONS_KEY = "serviceDefinitions"
DROP_FALSY_INJECTIONS_KEY = "dropFalsyInjections"


@dataclass(frozen=True)
class ServiceReference:
    """Injects another managed singleton, loaded recursively when needed."""

    service_instance_name: str


@dataclass(frozen=True)
class CustomInjection:
    """Injects a literal value as-is."""

    value: object


ServiceInjection = Union[ServiceReference, CustomInjection]


def parse_injection(raw: object) -> ServiceInjection | object:
    """
    Convert a wire-format injection into its tagged form.

    Unknown shapes are returned unchanged; they are rejected when the owning
    service is built, not when the configuration is read.
    """
    if isinstance(raw, (ServiceReference, CustomInjection)):
        return raw
    if isinstance(raw, Mapping):
        instance_name = raw.get(SERVICE_INSTANCE_NAME_KEY)
        if isinstance(instance_name, str):
            return ServiceReference(instance_name)
        if CUSTOM_INJECTION_KEY in raw:
            return CustomInjection(raw[CUSTOM_INJECTION_KEY])
    return raw


def _normalize_actions(
    actions: Sequence[str] | None,
    class_name: str,
) -> tuple[str, ...]:
    if actions is None:
        return ()
    if isinstance(actions, str):
        raise TypeError(
            f"{POST_BUILD_ACTIONS_KEY} of '{class_name}' must be a sequence of method names, not a string."
        )
    normalized = tuple(actions)
    for action in normalized:
        if not isinstance(action, str):
            raise TypeError(
                f"Post build action {action!r} of '{class_name}' must be a method name (str)."
            )
    return normalized


@dataclass(frozen=True)
class ServiceDefinition:
    """
    Static declaration of one service.

    `service_instance_name` is the key the singleton is cached under; when it
    is omitted the class name is used instead (see `instance_name`).
    """

    service_class_name: str
    path_to_service: ModuleAccessor
    service_instance_name: str | None = None
    service_injections: tuple[ServiceInjection | object, ...] = ()
    post_build_async_actions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.service_class_name, str) or not self.service_class_name:
            raise ValueError(f"{SERVICE_CLASS_NAME_KEY} must be a non-empty string.")
        if self.service_instance_name is not None and (
            not isinstance(self.service_instance_name, str) or not self.service_instance_name
        ):
            raise ValueError(
                f"{SERVICE_INSTANCE_NAME_KEY} of '{self.service_class_name}' must be a non-empty string when provided."
            )
        if not callable(self.path_to_service):
            raise TypeError(
                f"{PATH_TO_SERVICE_KEY} of '{self.service_class_name}' must be callable."
            )
        # Frozen dataclass: normalize sequences in place.
        object.__setattr__(
            self,
            "service_injections",
            tuple(parse_injection(i) for i in self.service_injections or ()),
        )
        object.__setattr__(
            self,
            "post_build_async_actions",
            _normalize_actions(self.post_build_async_actions, self.service_class_name),
        )

    @property
    def instance_name(self) -> str:
        return self.service_instance_name or self.service_class_name

    def matches(self, name: str) -> bool:
        if self.service_instance_name:
            return self.service_instance_name == name
        return self.service_class_name == name

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object]) -> ServiceDefinition:
        """Build a definition from its camelCase wire format."""
        if not isinstance(raw, Mapping):
            raise TypeError(f"Service definition must be a mapping, got {type(raw)!r}.")
        class_name = raw.get(SERVICE_CLASS_NAME_KEY)
        if not isinstance(class_name, str) or not class_name:
            raise ValueError(
                f"Service definition {raw!r} requires a non-empty '{SERVICE_CLASS_NAME_KEY}'."
            )
        injections = raw.get(SERVICE_INJECTIONS_KEY) or ()
        if isinstance(injections, (str, Mapping)) or not isinstance(injections, Sequence):
            raise TypeError(
                f"{SERVICE_INJECTIONS_KEY} of '{class_name}' must be a sequence of injections."
            )
        return cls(
            service_class_name=class_name,
            service_instance_name=raw.get(SERVICE_INSTANCE_NAME_KEY),  # type: ignore[arg-type]
            service_injections=tuple(injections),
            post_build_async_actions=raw.get(POST_BUILD_ACTIONS_KEY),  # type: ignore[arg-type]
            path_to_service=raw.get(PATH_TO_SERVICE_KEY),  # type: ignore[arg-type]
        )


def coerce_definition(raw: ServiceDefinition | Mapping[str, object]) -> ServiceDefinition:
    if isinstance(raw, ServiceDefinition):
        return raw
    return ServiceDefinition.from_mapping(raw)


@dataclass(frozen=True)
class ServiceManagerConfig:
    """
    Configuration of a ServiceManager.

    drop_falsy_injections:
        When True (the default), resolved injection values that are falsy
        (None, False, 0, "", empty containers) are left out of the
        constructor arguments instead of being passed positionally. Set to
        False to pass every resolved value through.
    """

    service_definitions: tuple[ServiceDefinition, ...] = field(default_factory=tuple)
    drop_falsy_injections: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "service_definitions",
            tuple(coerce_definition(d) for d in self.service_definitions),
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object]) -> ServiceManagerConfig:
        definitions = raw.get(SERVICE_DEFINITIONS_KEY, ())
        if isinstance(definitions, (str, Mapping)) or not isinstance(definitions, Sequence):
            raise TypeError(f"'{SERVICE_DEFINITIONS_KEY}' must be a sequence of service definitions.")
        drop_falsy = raw.get(DROP_FALSY_INJECTIONS_KEY, True)
        if not isinstance(drop_falsy, bool):
            raise TypeError(f"'{DROP_FALSY_INJECTIONS_KEY}' must be a bool, got {drop_falsy!r}.")
        return cls(
            service_definitions=tuple(definitions),  # type: ignore[arg-type]
            drop_falsy_injections=drop_falsy,
        )


def module_loader(module_path: str) -> ModuleAccessor:
    """
    Return a lazy accessor importing `module_path` on first use.

        ServiceDefinition(
            service_class_name="Mailer",
            path_to_service=module_loader("app.services.mailer"),
        )
    """
    if not isinstance(module_path, str) or not module_path:
        raise ValueError("module_loader() requires a dotted module path.")

    def _import() -> object:
        logger.debug(f"Importing service module: {module_path}")
        return importlib.import_module(module_path)

    safe_suffix = "".join(ch if ch.isalnum() else "_" for ch in module_path).strip("_")
    _import.__name__ = f"import_{safe_suffix}"
    _import.__qualname__ = _import.__name__
    return _import


__all__ = [
    "CustomInjection",
    "ModuleAccessor",
    "ServiceDefinition",
    "ServiceInjection",
    "ServiceManagerConfig",
    "ServiceReference",
    "coerce_definition",
    "module_loader",
    "parse_injection",
]
