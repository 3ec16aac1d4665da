from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from lazyioc import (
    CircularDependencyError,
    CustomInjection,
    DependencyResolver,
    InvalidPathError,
    ServiceDefinition,
    ServiceReference,
)


class Plain:
    pass


def _counting_accessor(calls: dict[str, int], name: str, delay: float = 0):
    async def _load() -> SimpleNamespace:
        calls[name] = calls.get(name, 0) + 1
        await asyncio.sleep(delay)
        return SimpleNamespace(default=Plain)

    return _load


def _graph(calls: dict[str, int]) -> DependencyResolver:
    """A -> (B, literal, C); B -> D; C -> D."""
    return DependencyResolver(
        [
            ServiceDefinition(
                "A",
                _counting_accessor(calls, "A"),
                service_injections=(
                    ServiceReference("B"),
                    CustomInjection("literal"),
                    ServiceReference("C"),
                ),
            ),
            ServiceDefinition("B", _counting_accessor(calls, "B"), service_injections=(ServiceReference("D"),)),
            ServiceDefinition("C", _counting_accessor(calls, "C"), service_injections=(ServiceReference("D"),)),
            ServiceDefinition("D", _counting_accessor(calls, "D", delay=0.01)),
        ]
    )


def _definition(resolver: DependencyResolver, name: str) -> ServiceDefinition:
    definition = resolver.find_definition(name)
    assert definition is not None
    return definition


def test_find_definition_prefers_first_match():
    first = ServiceDefinition("Plain", _counting_accessor({}, "first"))
    second = ServiceDefinition("Plain", _counting_accessor({}, "second"))
    named = ServiceDefinition("Plain", _counting_accessor({}, "named"), service_instance_name="Named")
    resolver = DependencyResolver([named, first, second])

    assert resolver.find_definition("Plain") is first
    assert resolver.find_definition("Named") is named
    assert resolver.find_definition("Missing") is None


def test_unloaded_names_are_depth_first_with_duplicates():
    resolver = _graph({})

    assert resolver.unloaded_dependency_names(_definition(resolver, "A")) == ["B", "D", "C", "D"]


@pytest.mark.asyncio
async def test_loaded_children_are_pruned():
    resolver = _graph({})

    await resolver.resolve(_definition(resolver, "B"))

    assert resolver.is_module_loaded("B")
    assert resolver.is_module_loaded("D")
    assert resolver.unloaded_dependency_names(_definition(resolver, "A")) == ["C"]


@pytest.mark.asyncio
async def test_resolve_twice_with_shared_dependency_loads_it_once():
    calls: dict[str, int] = {}
    resolver = _graph(calls)

    await resolver.resolve(_definition(resolver, "B"))
    await resolver.resolve(_definition(resolver, "C"))

    assert calls == {"B": 1, "D": 1, "C": 1}


@pytest.mark.asyncio
async def test_concurrent_resolves_share_in_flight_loads():
    calls: dict[str, int] = {}
    resolver = _graph(calls)

    await asyncio.gather(
        resolver.resolve(_definition(resolver, "A")),
        resolver.resolve(_definition(resolver, "B")),
        resolver.resolve(_definition(resolver, "C")),
    )

    assert calls == {"A": 1, "B": 1, "C": 1, "D": 1}
    assert resolver.get_loaded_module("D") is Plain


@pytest.mark.asyncio
async def test_in_flight_marker_lives_until_released():
    resolver = _graph({})

    await resolver.resolve(_definition(resolver, "D"))

    assert resolver.is_loading("D")
    resolver.release("D")
    assert not resolver.is_loading("D")
    assert resolver.is_module_loaded("D")


@pytest.mark.asyncio
async def test_failed_load_is_evicted_from_in_flight_table():
    async def _broken() -> object:
        raise ModuleNotFoundError("gone")

    resolver = DependencyResolver([ServiceDefinition("Broken", _broken)])

    with pytest.raises(InvalidPathError):
        await resolver.resolve(_definition(resolver, "Broken"))

    assert not resolver.is_loading("Broken")
    assert not resolver.is_module_loaded("Broken")


def test_cycle_in_walk_raises():
    resolver = DependencyResolver(
        [
            ServiceDefinition("A", _counting_accessor({}, "A"), service_injections=(ServiceReference("B"),)),
            ServiceDefinition("B", _counting_accessor({}, "B"), service_injections=(ServiceReference("C"),)),
            ServiceDefinition("C", _counting_accessor({}, "C"), service_injections=(ServiceReference("B"),)),
        ]
    )

    with pytest.raises(CircularDependencyError) as exc_info:
        resolver.unloaded_dependency_names(_definition(resolver, "A"))

    assert exc_info.value.cycle == ["B", "C", "B"]


def test_get_loaded_module_requires_load():
    resolver = _graph({})

    with pytest.raises(RuntimeError, match="has not been loaded"):
        resolver.get_loaded_module("A")


@pytest.mark.asyncio
async def test_reset_clears_tables():
    resolver = _graph({})
    await resolver.resolve(_definition(resolver, "D"))

    resolver.reset()

    assert resolver.service_definitions == ()
    assert not resolver.is_module_loaded("D")
    assert not resolver.is_loading("D")
