"""Thread-safe registry of TCC components."""

from __future__ import annotations

import threading

from sharddoc.tcc.component import TCCError, TccComponent


class RegistryCenter:
    """Holds the registered components, keyed by their id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._components: dict[str, TccComponent] = {}

    def register(self, component: TccComponent) -> None:
        """Add a component; an id can be registered only once."""
        with self._lock:
            if component.component_id in self._components:
                raise TCCError("repeat component id")
            self._components[component.component_id] = component

    def get_components(self, *component_ids: str) -> list[TccComponent]:
        """Return the components for the ids, in order; any unknown id raises."""
        with self._lock:
            try:
                return [self._components[ident] for ident in component_ids]
            except KeyError as exc:
                raise TCCError(f"component id :{exc.args[0]} not existed") from None