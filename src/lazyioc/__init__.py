from .definitions import (
    CustomInjection,
    ServiceDefinition,
    ServiceInjection,
    ServiceManagerConfig,
    ServiceReference,
    module_loader,
)
from .discovery import collect_service_definitions, import_definition_modules
from .errors import (
    CircularDependencyError,
    DefinitionNotFoundError,
    InvalidInjectionError,
    InvalidPathError,
    InvalidPostBuildActionError,
    PathNotFoundError,
    ServiceManagerError,
)
from .install import (
    Inject,
    ServiceManagerSettings,
    install_service_manager,
    resolve_service_manager,
)
from .manager import ServiceManager
from .resolver import DependencyResolver

__all__ = [
    "CircularDependencyError",
    "CustomInjection",
    "DefinitionNotFoundError",
    "DependencyResolver",
    "Inject",
    "InvalidInjectionError",
    "InvalidPathError",
    "InvalidPostBuildActionError",
    "PathNotFoundError",
    "ServiceDefinition",
    "ServiceInjection",
    "ServiceManager",
    "ServiceManagerConfig",
    "ServiceManagerError",
    "ServiceManagerSettings",
    "ServiceReference",
    "collect_service_definitions",
    "import_definition_modules",
    "install_service_manager",
    "module_loader",
    "resolve_service_manager",
]
