"""
Modularity - Module Options

Typed options for modules, bound from the ``Modules:<Name>`` configuration
section.

Usage:
    class OrdersOptions(ModuleOptionsBase):
        port: int = 8000
        connection_string: str = ""

        def validate_options(self) -> None:
            if not self.connection_string:
                raise ConfigurationError(
                    "Orders needs a connection string",
                    config_key="Modules:Orders:ConnectionString",
                )

    class OrdersModule(ModuleBase):
        def configure_services(self, context):
            configure_module_options(
                context.services, context.configuration, OrdersOptions, self
            )
"""

from __future__ import annotations

from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from di.container import ServiceCollection
from modularity.configuration import ConfigurationSection
from modularity.context import MODULES_SECTION
from modularity.declarations import module_section_name
from modularity.errors import ConfigurationError
from observability.logging import get_logger

logger = get_logger("modularity.options")

TOptions = TypeVar("TOptions", bound="ModuleOptionsBase")


class ModuleOptionsBase(BaseModel):
    """Base class for module options."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    enabled: bool = True
    properties: Dict[str, str] = Field(default_factory=dict)

    def validate_options(self) -> None:
        """Override to reject invalid option combinations (raise ConfigurationError)."""


def module_options_section(configuration: ConfigurationSection, module: Any) -> ConfigurationSection:
    return configuration.get_section(f"{MODULES_SECTION}:{module_section_name(module)}")


def bind_module_options(
    configuration: ConfigurationSection,
    options_type: Type[TOptions],
    module: Any,
) -> TOptions:
    """
    Bind ``Modules:<Name>`` onto ``options_type`` and validate it.

    ``module`` may be a module class, instance or section name.

    Raises:
        ConfigurationError: Binding or ``validate_options()`` failed.
    """
    section = module_options_section(configuration, module)
    options = section.bind(options_type)
    try:
        options.validate_options()
    except ConfigurationError:
        raise
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            f"Invalid options for module '{module_section_name(module)}': {e}",
            config_key=section.path,
            cause=e,
        ) from e
    return options


def configure_module_options(
    services: ServiceCollection,
    configuration: ConfigurationSection,
    options_type: Type[TOptions],
    module: Any,
) -> TOptions:
    """Bind and validate module options, then register them as a singleton."""
    options = bind_module_options(configuration, options_type, module)
    services.add_instance(options_type, options)
    logger.debug(
        "module_options_configured",
        module=module_section_name(module),
        options=options_type.__name__,
        enabled=options.enabled,
    )
    return options


__all__ = [
    "ModuleOptionsBase",
    "bind_module_options",
    "configure_module_options",
    "module_options_section",
]
