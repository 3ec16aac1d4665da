from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Sequence

from fastapi import FastAPI
from fastapi.params import Depends
from starlette.requests import HTTPConnection

from .definitions import ServiceDefinition, ServiceManagerConfig, coerce_definition
from .discovery import collect_service_definitions
from .manager import ServiceManager

logger = logging.getLogger(__name__)

APP_STATE_KEY = "service_manager"


@dataclass(frozen=True)
class ServiceManagerSettings:
    definition_packages: tuple[str, ...] = ()
    eager_services: tuple[str, ...] = ()
    strict: bool = True
    allow_private_modules: bool = False
    drop_falsy_injections: bool = True
    eager_init_timeout_sec: float | None = None


def _normalize_names(names: str | Sequence[str]) -> tuple[str, ...]:
    if isinstance(names, str):
        return (names,) if names else ()
    return tuple(n for n in names if n)


def install_service_manager(
    app: FastAPI,
    *,
    definitions: Sequence[ServiceDefinition | Mapping[str, object]] = (),
    definition_packages: str | Sequence[str] = (),
    eager_services: str | Sequence[str] = (),
    strict: bool = True,
    allow_private_modules: bool = False,
    drop_falsy_injections: bool = True,
    eager_init_timeout_sec: float | None = None,
) -> ServiceManagerSettings:
    """
    Install a ServiceManager into a FastAPI app's lifespan.

    On startup the manager is built from `definitions` followed by whatever
    `definition_packages` declare, stored on `app.state.service_manager`, and
    `eager_services` are loaded. Everything else stays lazy until first
    injected with `Inject()`.
    """
    if eager_init_timeout_sec is not None and eager_init_timeout_sec <= 0:
        raise ValueError("eager_init_timeout_sec must be > 0 when provided.")
    if isinstance(getattr(app.state, "service_manager_settings", None), ServiceManagerSettings):
        raise RuntimeError("install_service_manager() has already been called for this FastAPI app.")

    static_definitions = tuple(coerce_definition(d) for d in definitions)
    settings = ServiceManagerSettings(
        definition_packages=_normalize_names(definition_packages),
        eager_services=_normalize_names(eager_services),
        strict=strict,
        allow_private_modules=allow_private_modules,
        drop_falsy_injections=drop_falsy_injections,
        eager_init_timeout_sec=eager_init_timeout_sec,
    )
    if not static_definitions and not settings.definition_packages:
        raise ValueError(
            "install_service_manager() requires service definitions or at least one definition package."
        )

    previous_lifespan = app.router.lifespan_context

    @asynccontextmanager
    async def _combined_lifespan(inner_app: FastAPI) -> AsyncIterator[None]:
        try:
            try:
                collected = list(static_definitions)
                if settings.definition_packages:
                    collected.extend(
                        collect_service_definitions(
                            settings.definition_packages,
                            allow_private_modules=settings.allow_private_modules,
                        )
                    )
                manager = ServiceManager(
                    ServiceManagerConfig(
                        service_definitions=tuple(collected),
                        drop_falsy_injections=settings.drop_falsy_injections,
                    )
                )
                setattr(inner_app.state, APP_STATE_KEY, manager)

                if settings.eager_services:
                    if settings.eager_init_timeout_sec is not None:
                        await asyncio.wait_for(
                            manager.load_services(settings.eager_services),
                            timeout=settings.eager_init_timeout_sec,
                        )
                    else:
                        await manager.load_services(settings.eager_services)
                logger.debug(
                    "[LIFESPAN] Service manager ready definitions=%s eager=%s",
                    len(collected),
                    len(settings.eager_services),
                )

            except Exception:
                if settings.strict:
                    raise

                logger.exception(
                    "Service manager startup failed; continuing without it because strict=False"
                )
                setattr(inner_app.state, APP_STATE_KEY, None)

            async with previous_lifespan(inner_app):
                yield

        finally:
            setattr(inner_app.state, APP_STATE_KEY, None)

    app.router.lifespan_context = _combined_lifespan
    app.state.service_manager_settings = settings
    setattr(app.state, APP_STATE_KEY, None)
    return settings


def resolve_service_manager(app_state: object) -> ServiceManager | None:
    """Return the ServiceManager installed on a FastAPI app state, if any."""
    if app_state is None:
        return None
    manager = getattr(app_state, APP_STATE_KEY, None)
    if isinstance(manager, ServiceManager):
        return manager
    return None


def Inject(name: str) -> Depends:
    """
    Create a FastAPI dependency marker for a managed service.

        @router.get("/mail")
        async def endpoint(mailer: Mailer = Inject("Mailer")):
            ...
    """
    if not isinstance(name, str) or not name:
        raise TypeError("Inject() expects a service instance name (str).")

    async def _dependency_callable(request: HTTPConnection) -> object:
        manager = resolve_service_manager(getattr(request.app, "state", None))
        if manager is None:
            msg = "Service manager not initialized on FastAPI app state (service_manager)."
            logger.error(msg)
            raise RuntimeError(msg)
        return await manager.load_service(name)

    # Improve callable name for better error stacks & docs
    safe_suffix = "".join(ch if ch.isalnum() else "_" for ch in name).strip("_") or "service"
    _dependency_callable.__name__ = f"inject_{safe_suffix}"
    _dependency_callable.__qualname__ = _dependency_callable.__name__

    return Depends(_dependency_callable)


__all__ = [
    "Inject",
    "ServiceManagerSettings",
    "install_service_manager",
    "resolve_service_manager",
]
