"""
Centralized registry of component types.

The ComponentRegistry maps ``(kind, type)`` to the component class and builds
configured instances from raw config sections. Built-in components are
registered by ``default_registry()``; extra types can be added at runtime.
"""

from typing import Any

from pydantic import ValidationError

from .base import Component, ComponentID, ComponentKind, ConfigError


class ComponentNotFoundError(ConfigError):
    """Raised when a component type is not registered."""


class DuplicateComponentError(ConfigError):
    """Raised when registering a type that already exists."""


class ComponentRegistry:
    """Registry of component classes per kind.

    Example:
        >>> registry = ComponentRegistry()
        >>> registry.register(DebugExporter)
        >>> exporter = registry.create("exporter", "debug/verbose", {"verbosity": "detailed"})
    """

    def __init__(self) -> None:
        self._types: dict[ComponentKind, dict[str, type[Component]]] = {
            kind: {} for kind in ComponentKind
        }

    def register(self, component_cls: type[Component], allow_override: bool = False) -> None:
        """Register a component class under its ``kind`` and ``type_name``.

        Raises:
            DuplicateComponentError: If the type exists and allow_override=False
        """
        kind = ComponentKind(component_cls.kind)
        types = self._types[kind]
        if component_cls.type_name in types and not allow_override:
            raise DuplicateComponentError(
                f"{kind.value} '{component_cls.type_name}' is already registered. "
                f"Use allow_override=True to overwrite."
            )
        types[component_cls.type_name] = component_cls

    def get(self, kind: ComponentKind | str, type_name: str) -> type[Component]:
        """Return the class registered for ``(kind, type_name)``.

        Raises:
            ComponentNotFoundError: If the type does not exist
        """
        kind = ComponentKind(kind)
        types = self._types[kind]
        if type_name not in types:
            available = ", ".join(sorted(types)) if types else "(none)"
            raise ComponentNotFoundError(
                f"Unknown {kind.value} type '{type_name}'. Available: {available}"
            )
        return types[type_name]

    def has(self, kind: ComponentKind | str, type_name: str) -> bool:
        return type_name in self._types[ComponentKind(kind)]

    def list_types(self, kind: ComponentKind | str) -> list[str]:
        return sorted(self._types[ComponentKind(kind)])

    def create(
        self,
        kind: ComponentKind | str,
        component_id: ComponentID | str,
        settings: dict[str, Any] | None = None,
    ) -> Component:
        """Validate ``settings`` and build a component instance.

        Args:
            kind: Component kind.
            component_id: ``type`` or ``type/name``.
            settings: Raw config section (None = defaults).

        Raises:
            ComponentNotFoundError: If the type is not registered.
            ConfigError: If the settings do not validate.
        """
        if isinstance(component_id, str):
            try:
                component_id = ComponentID.parse(component_id)
            except ValueError as e:
                raise ConfigError(str(e)) from e

        component_cls = self.get(kind, component_id.type)
        try:
            parsed = component_cls.settings_model(**(settings or {}))
        except ValidationError as e:
            raise ConfigError(f"{ComponentKind(kind).value} '{component_id}': {e}") from e
        return component_cls(component_id, parsed)


def default_registry() -> ComponentRegistry:
    """Registry with every built-in receiver, processor, exporter and connector."""
    from ..connectors import BUILTIN_CONNECTORS
    from ..exporters import BUILTIN_EXPORTERS
    from ..processors import BUILTIN_PROCESSORS
    from ..receivers import BUILTIN_RECEIVERS

    registry = ComponentRegistry()
    for component_cls in (
        *BUILTIN_RECEIVERS,
        *BUILTIN_PROCESSORS,
        *BUILTIN_EXPORTERS,
        *BUILTIN_CONNECTORS,
    ):
        registry.register(component_cls)
    return registry
