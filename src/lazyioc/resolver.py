from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Callable, Mapping, Sequence

from loguru import logger

from .definitions import ModuleAccessor, ServiceDefinition, ServiceReference
from .errors import CircularDependencyError, InvalidPathError, PathNotFoundError

Ctor = Callable[..., object]

_DEFAULT_EXPORT = "default"


class DependencyResolver:
    """
    Lazy loader for the implementation modules behind service definitions.

    Two tables are kept per resolver:

    * loaded modules: instance name -> constructor, filled once per name and
      never invalidated (except by `reset()`).
    * in-flight loads: instance name -> shared `asyncio.Task`. Concurrent
      requests for the same name await the same task, so a module accessor
      runs at most once. Entries are released by the instance builder once
      the instance has been constructed, not when the module resolves.

    A module load that fails is evicted from the in-flight table so a later
    request can retry it; every caller already awaiting it gets the failure.
    """

    def __init__(self, service_definitions: Sequence[ServiceDefinition] = ()) -> None:
        self.service_definitions: tuple[ServiceDefinition, ...] = tuple(service_definitions)
        self._loaded_modules: dict[str, Ctor] = {}
        self._module_tasks: dict[str, asyncio.Task[Ctor]] = {}

    # --------------------------------------------------------------------- #
    # Lookup                                                                #
    # --------------------------------------------------------------------- #

    def find_definition(self, name: str) -> ServiceDefinition | None:
        """
        Return the first definition whose instance name (or class name, when
        no instance name is set) equals `name`.
        """
        for definition in self.service_definitions:
            if definition.matches(name):
                return definition
        return None

    def is_module_loaded(self, name: str) -> bool:
        return name in self._loaded_modules

    def is_loading(self, name: str) -> bool:
        return name in self._module_tasks

    def get_loaded_module(self, name: str) -> Ctor:
        ctor = self._loaded_modules.get(name)
        if ctor is None:
            msg = f"Module for '{name}' has not been loaded."
            logger.error(msg)
            raise RuntimeError(msg)
        return ctor

    def release(self, name: str) -> None:
        """Drop the in-flight marker of `name`."""
        self._module_tasks.pop(name, None)

    def reset(self) -> None:
        self.service_definitions = ()
        self._loaded_modules.clear()
        self._module_tasks.clear()

    # --------------------------------------------------------------------- #
    # Dependency walk                                                       #
    # --------------------------------------------------------------------- #

    def unloaded_dependency_names(self, definition: ServiceDefinition) -> list[str]:
        """
        Names of the not-yet-loaded modules `definition` depends on.

        Depth-first, parent before its own children. Duplicates are kept;
        the in-flight table collapses them when loading. Children whose module
        is already loaded are not descended into.
        """
        return self._collect_unloaded(definition, [definition.instance_name])

    def _collect_unloaded(
        self,
        definition: ServiceDefinition | None,
        path: list[str],
    ) -> list[str]:
        names: list[str] = []
        if definition is None:
            return names

        for injection in definition.service_injections:
            if not isinstance(injection, ServiceReference):
                continue
            name = injection.service_instance_name
            if self.is_module_loaded(name):
                continue
            if name in path:
                cycle = path[path.index(name):] + [name]
                error = CircularDependencyError(cycle)
                logger.error(str(error))
                raise error
            names.append(name)
            names.extend(self._collect_unloaded(self.find_definition(name), [*path, name]))
        return names

    # --------------------------------------------------------------------- #
    # Loading                                                               #
    # --------------------------------------------------------------------- #

    async def resolve(self, definition: ServiceDefinition) -> None:
        """
        Load the module of `definition` and of every service it depends on,
        transitively. Sibling loads run concurrently.

        Module tasks are shared between callers, so a cancelled caller stops
        waiting without cancelling the loads themselves.
        """
        names = self.unloaded_dependency_names(definition)
        names.append(definition.instance_name)
        pending = [self._module_task(name) for name in names if not self.is_module_loaded(name)]
        if pending:
            await asyncio.gather(*(asyncio.shield(task) for task in pending))

    def _module_task(self, name: str) -> asyncio.Task[Ctor]:
        task = self._module_tasks.get(name)
        if task is None:
            task = asyncio.create_task(self._load_module(name), name=f"lazyioc-load-{name}")
            task.add_done_callback(functools.partial(self._on_module_task_done, name))
            self._module_tasks[name] = task
        return task

    def _on_module_task_done(self, name: str, task: asyncio.Task[Ctor]) -> None:
        if task.cancelled():
            failed = True
        else:
            # Retrieve the exception so failed siblings are not reported as
            # "never retrieved" after gather() already propagated the first one.
            failed = task.exception() is not None
        if failed and self._module_tasks.get(name) is task:
            del self._module_tasks[name]
            logger.debug(f"Evicted failed module load: {name}")

    async def _load_module(self, name: str) -> Ctor:
        definition = self.find_definition(name)
        if definition is None:
            msg = f'The path specified in the service definition for "{name}" could not be resolved.'
            logger.error(msg)
            raise PathNotFoundError(msg)

        try:
            result = await self._call_accessor(definition.path_to_service)
        except Exception as exc:
            msg = f'The module for "{name}" could not be loaded because the path is invalid.'
            logger.error(f"{msg} ({type(exc).__name__}: {exc})")
            raise InvalidPathError(msg) from exc

        ctor = self._default_export(result, definition.service_class_name)
        if ctor is None:
            msg = f'The path specified in the service definition for "{name}" could not be resolved.'
            logger.error(msg)
            raise PathNotFoundError(msg)

        self._loaded_modules[name] = ctor
        logger.debug(f"Service module loaded: {name}")
        return ctor

    @staticmethod
    async def _call_accessor(accessor: ModuleAccessor) -> object:
        if inspect.iscoroutinefunction(accessor):
            return await accessor()
        # Run sync accessors (e.g. importlib) in a separate thread to avoid blocking the loop.
        result = await asyncio.to_thread(accessor)
        if inspect.isawaitable(result):
            result = await result
        return result

    @staticmethod
    def _default_export(result: object, class_name: str) -> Ctor | None:
        """
        Pick the constructor out of an accessor result: its `default` export,
        else the attribute (or key) named after the service class.
        """
        if result is None:
            return None
        if isinstance(result, Mapping):
            candidate = result.get(_DEFAULT_EXPORT)
            if candidate is None:
                candidate = result.get(class_name)
        else:
            candidate = getattr(result, _DEFAULT_EXPORT, None)
            if candidate is None:
                candidate = getattr(result, class_name, None)
        if candidate is None or not callable(candidate):
            return None
        return candidate


__all__ = ["DependencyResolver"]
