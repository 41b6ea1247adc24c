# src/dailycast/plugins/manager.py
"""Stage discovery and registration.

Uses pluggy for hook-based plugin registration. The result is an
immutable StageRegistry handed to the Engine; nothing is looked up
from global state at run time.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType

import pluggy

from dailycast.plugins.hookspecs import PROJECT_NAME, DailycastStageSpec
from dailycast.plugins.protocols import StageProtocol


class StageRegistry(Mapping[str, StageProtocol]):
    """Immutable mapping of stage name to unit of work."""

    def __init__(self, stages: Mapping[str, StageProtocol]) -> None:
        for name, stage in stages.items():
            if not callable(stage):
                raise TypeError(f"Stage {name!r} is not callable: {stage!r}")
        self._stages = MappingProxyType(dict(stages))

    @classmethod
    def from_mapping(cls, stages: Mapping[str, StageProtocol]) -> StageRegistry:
        return cls(stages)

    def __getitem__(self, name: str) -> StageProtocol:
        return self._stages[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __repr__(self) -> str:
        return f"StageRegistry({sorted(self._stages)!r})"


class StagePluginManager:
    """Collects stage units of work from pluggy plugins.

    Usage:
        manager = StagePluginManager()
        manager.register(MyStagesPlugin())
        manager.load_entrypoints()
        registry = manager.build_registry()
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(DailycastStageSpec)

    def register(self, plugin: object, name: str | None = None) -> None:
        self._pm.register(plugin, name=name)

    def load_entrypoints(self) -> int:
        """Load plugins advertised under the "dailycast" entry-point group.

        Returns:
            Number of plugins loaded
        """
        return self._pm.load_setuptools_entrypoints(PROJECT_NAME)

    def build_registry(self) -> StageRegistry:
        """Merge every plugin's stages into one registry.

        Raises:
            ValueError: If two plugins register the same stage name
        """
        merged: dict[str, StageProtocol] = {}
        for contribution in self._pm.hook.dailycast_register_stages():
            for name, stage in contribution.items():
                if name in merged:
                    raise ValueError(f"Stage {name!r} registered by more than one plugin")
                merged[name] = stage
        return StageRegistry(merged)
