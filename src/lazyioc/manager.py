from __future__ import annotations

import asyncio
import contextvars
import inspect
import os
from collections.abc import Mapping, Sequence
from types import MappingProxyType

from loguru import logger

from .definitions import (
    CUSTOM_INJECTION_KEY,
    SERVICE_INSTANCE_NAME_KEY,
    CustomInjection,
    ServiceDefinition,
    ServiceManagerConfig,
    ServiceReference,
)
from .errors import (
    CircularDependencyError,
    DefinitionNotFoundError,
    InvalidInjectionError,
    InvalidPostBuildActionError,
)
from .resolver import DependencyResolver

# (id(manager), instance name) pairs for the services being built along the
# current chain of recursive loads. Each asyncio task sees its own chain.
_BUILD_CHAIN: contextvars.ContextVar[tuple[tuple[int, str], ...]] = contextvars.ContextVar(
    "_lazyioc_build_chain",
    default=(),
)


class ServiceManager:
    """
    IoC container over a static list of service definitions.

    Nothing is loaded up front. `load_service()` imports the implementation
    module of a service and of everything it depends on, builds the instance
    with its injections, runs its post-build actions and caches it as a
    singleton under its instance name.

        manager = ServiceManager(
            ServiceManagerConfig(
                service_definitions=(
                    ServiceDefinition(
                        service_class_name="Mailer",
                        service_injections=(ServiceReference("Smtp"),),
                        path_to_service=module_loader("app.services.mailer"),
                    ),
                    ServiceDefinition(
                        service_class_name="Smtp",
                        service_injections=(CustomInjection("smtp.local"),),
                        path_to_service=module_loader("app.services.smtp"),
                    ),
                )
            )
        )
        mailer = await manager.load_service(manager.SERVICES["Mailer"])

    Concurrency model
    -----------------
    * The manager is intended to be used **within a single asyncio event loop**.
    * Every instance is built at most once: concurrent requests for the same
      name wait on a per-name lock and then read the singleton cache.
    * Module loads are shared through the resolver's in-flight table.
    """

    def __init__(
        self,
        config: ServiceManagerConfig | Mapping[str, object] | None = None,
    ) -> None:
        if config is None:
            config = ServiceManagerConfig()
        elif isinstance(config, Mapping):
            config = ServiceManagerConfig.from_mapping(config)
        elif not isinstance(config, ServiceManagerConfig):
            raise TypeError(
                f"ServiceManager expects a ServiceManagerConfig or a mapping, got {type(config)!r}."
            )

        self._config = config
        self._resolver = DependencyResolver(config.service_definitions)
        # instance name -> singleton
        self._loaded_services: dict[str, object] = {}
        # instance name -> lock guarding single construction
        self._instance_locks: dict[str, asyncio.Lock] = {}
        self._services: dict[str, str] = {}

        self._loop: asyncio.AbstractEventLoop | None = None
        self._pid: int = os.getpid()

        self._populate_available_service_names()

    # --------------------------------------------------------------------- #
    # Internal helpers                                                      #
    # --------------------------------------------------------------------- #

    def _populate_available_service_names(self) -> None:
        services: dict[str, str] = {}
        for definition in self._resolver.service_definitions:
            name = definition.instance_name
            services[name] = name
        self._services = services

    def _ensure_event_loop(self) -> asyncio.AbstractEventLoop:
        """
        Ensure the manager is always used from the same process and event loop.
        """
        current_pid = os.getpid()
        if self._pid != current_pid:
            msg = (
                f"ServiceManager accessed from different process "
                f"(created in PID {self._pid}, accessed from PID {current_pid}). "
                f"Each process must have its own ServiceManager instance."
            )
            logger.error(msg)
            raise RuntimeError(msg)

        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
        elif self._loop is not loop:
            msg = (
                "ServiceManager used from multiple event loops; "
                "this is not supported. Create a separate manager per loop."
            )
            logger.error(msg)
            raise RuntimeError(msg)
        return loop

    def _check_build_chain(self, name: str) -> None:
        chain = [n for manager_id, n in _BUILD_CHAIN.get() if manager_id == id(self)]
        if name in chain:
            error = CircularDependencyError(chain[chain.index(name):] + [name])
            logger.error(str(error))
            raise error

    async def _get_instance(self, definition: ServiceDefinition) -> object:
        name = definition.instance_name
        if not self._resolver.is_module_loaded(name):
            await self._resolver.resolve(definition)
        instance = await self._create_instance(definition)
        self._loaded_services[name] = instance
        logger.debug(f"Singleton service created: {name}")
        return instance

    async def _create_instance(self, definition: ServiceDefinition) -> object:
        name = definition.instance_name
        injections = await self._parse_injections(definition)
        ctor = self._resolver.get_loaded_module(name)

        instance = ctor(*injections)
        if inspect.isawaitable(instance):
            instance = await instance

        await self._run_post_build_actions(definition, instance)
        self._resolver.release(name)
        return instance

    async def _parse_injections(self, definition: ServiceDefinition) -> list[object]:
        loaded: list[object] = []
        for injection in definition.service_injections:
            if isinstance(injection, ServiceReference):
                value = await self.load_service(injection.service_instance_name)
            elif isinstance(injection, CustomInjection):
                value = injection.value
            else:
                msg = (
                    f"Invalid injection object: {injection!r}. Only "
                    f"'{SERVICE_INSTANCE_NAME_KEY}' and '{CUSTOM_INJECTION_KEY}' keys are allowed."
                )
                logger.error(msg)
                raise InvalidInjectionError(msg)

            if value or not self._config.drop_falsy_injections:
                loaded.append(value)
        return loaded

    @staticmethod
    async def _run_post_build_actions(definition: ServiceDefinition, instance: object) -> None:
        for method_name in definition.post_build_async_actions:
            method = getattr(instance, method_name, None)
            if not callable(method):
                msg = (
                    f'Post build action "{method_name}" failed to execute in '
                    f"{definition.service_class_name}."
                )
                logger.error(msg)
                raise InvalidPostBuildActionError(msg)
            result = method()
            if inspect.isawaitable(result):
                await result

    # --------------------------------------------------------------------- #
    # Public API                                                            #
    # --------------------------------------------------------------------- #

    @property
    def SERVICES(self) -> Mapping[str, str]:  # noqa: N802
        """Read-only map of every known instance name to itself."""
        return MappingProxyType(self._services)

    @property
    def definitions(self) -> tuple[ServiceDefinition, ...]:
        return self._resolver.service_definitions

    @property
    def config(self) -> ServiceManagerConfig:
        return self._config

    def is_loaded(self, name: str) -> bool:
        return name in self._loaded_services

    async def load_service(self, name: str) -> object:
        """
        Return the singleton registered under `name`, building it (and its
        dependencies, recursively) on first use.

        Raises DefinitionNotFoundError, InvalidInjectionError,
        InvalidPostBuildActionError, InvalidPathError, PathNotFoundError or
        CircularDependencyError.
        """
        self._ensure_event_loop()

        if name in self._loaded_services:
            return self._loaded_services[name]

        definition = self._resolver.find_definition(name)
        if definition is None:
            msg = f'Could not find service definition for instance name "{name}".'
            logger.error(msg)
            raise DefinitionNotFoundError(msg)

        self._check_build_chain(name)

        lock = self._instance_locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._instance_locks[name] = lock

        async with lock:
            if name in self._loaded_services:
                return self._loaded_services[name]

            token = _BUILD_CHAIN.set((*_BUILD_CHAIN.get(), (id(self), name)))
            try:
                return await self._get_instance(definition)
            finally:
                _BUILD_CHAIN.reset(token)

    async def load_services(self, names: Sequence[str] = ()) -> list[object]:
        """
        Load several services concurrently. Results follow the order of
        `names`, not completion order.
        """
        if isinstance(names, str):
            raise TypeError("load_services() expects a sequence of instance names, not a string.")
        results = await asyncio.gather(*(self.load_service(name) for name in names))
        logger.debug(f"Loaded services batch: count={len(results)}")
        return list(results)

    def reset(self) -> None:
        """
        Drop every cached instance, loaded module and definition.

        Intended for test harnesses; normal code builds a fresh manager instead.
        """
        self._resolver.reset()
        self._loaded_services.clear()
        self._instance_locks.clear()
        self._services.clear()
        self._loop = None
        logger.debug("ServiceManager reset.")


__all__ = ["ServiceManager"]
