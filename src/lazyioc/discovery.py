from __future__ import annotations

import importlib
import logging
import pkgutil
import sys
from collections.abc import Mapping, Sequence

from .definitions import ServiceDefinition, coerce_definition

logger = logging.getLogger(__name__)

DEFINITIONS_ATTR = "SERVICE_DEFINITIONS"
DEFINITIONS_MODULE_SUFFIX = "definitions"


def _normalize_package_names(
    package_names: str | Sequence[str],
) -> tuple[str, ...]:
    if isinstance(package_names, str):
        return (package_names,)
    normalized = tuple(name for name in package_names if name)
    if not normalized:
        raise ValueError("At least one definition package must be provided.")
    return normalized


def _is_definitions_module(module_name: str, suffix: str) -> bool:
    last = module_name.rsplit(".", 1)[-1]
    return last == suffix or last.endswith(f"_{suffix}")


def import_definition_modules(
    package_names: str | Sequence[str],
    *,
    allow_private_modules: bool = False,
    module_suffix: str = DEFINITIONS_MODULE_SUFFIX,
) -> list[str]:
    """
    Import the definition modules found under `package_names`.

    Only modules named `<suffix>` or `*_<suffix>` are imported, so the
    service implementations themselves stay unloaded until first use.
    """
    imported_modules: list[str] = []
    for package_name in _normalize_package_names(package_names):
        package = importlib.import_module(package_name)
        if _is_definitions_module(package.__name__, module_suffix):
            imported_modules.append(package.__name__)
        package_path = getattr(package, "__path__", None)
        if package_path is None:
            continue

        base_parts_len = len(package.__name__.split("."))
        for module_info in pkgutil.walk_packages(
            package_path,
            prefix=f"{package.__name__}.",
        ):
            module_name = module_info.name
            if not allow_private_modules:
                parts = module_name.split(".")
                if any(part.startswith("_") for part in parts[base_parts_len:]):
                    continue
            if not _is_definitions_module(module_name, module_suffix):
                continue
            importlib.import_module(module_name)
            imported_modules.append(module_name)
    return imported_modules


def _module_service_definitions(module_name: str) -> list[ServiceDefinition]:
    module = sys.modules.get(module_name)
    if module is None:
        return []

    raw = getattr(module, DEFINITIONS_ATTR, None)
    if raw is None:
        logger.warning("Definition module %s has no %s attribute", module_name, DEFINITIONS_ATTR)
        return []
    if isinstance(raw, (str, Mapping)) or not isinstance(raw, Sequence):
        raise TypeError(
            f"{module_name}.{DEFINITIONS_ATTR} must be a sequence of service definitions."
        )
    return [coerce_definition(item) for item in raw]


def collect_service_definitions(
    package_names: str | Sequence[str],
    *,
    allow_private_modules: bool = False,
    module_suffix: str = DEFINITIONS_MODULE_SUFFIX,
) -> list[ServiceDefinition]:
    """
    Gather the `SERVICE_DEFINITIONS` of every definition module under
    `package_names`, in import order.
    """
    definitions: list[ServiceDefinition] = []
    module_names = import_definition_modules(
        package_names,
        allow_private_modules=allow_private_modules,
        module_suffix=module_suffix,
    )
    for module_name in module_names:
        definitions.extend(_module_service_definitions(module_name))
    logger.debug(
        "Collected service definitions count=%s modules=%s",
        len(definitions),
        len(module_names),
    )
    return definitions


__all__ = [
    "DEFINITIONS_ATTR",
    "collect_service_definitions",
    "import_definition_modules",
]
