# src/dailycast/plugins/hookspecs.py
"""pluggy hook specifications for dailycast stage plugins.

Usage (implementing a plugin):
    from dailycast.plugins.hookspecs import hookimpl

    class TTSPlugin:
        @hookimpl  # NOT @hookspec - that's for defining specs
        def dailycast_register_stages(self):
            return {"tts": synthesize}

Plugins shipped as separate distributions register under the
"dailycast" entry-point group and are picked up by
StagePluginManager.load_entrypoints().
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from dailycast.plugins.protocols import StageProtocol

# Project name for pluggy (also the entry-point group)
PROJECT_NAME = "dailycast"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class DailycastStageSpec:
    """Hook specifications for stage plugins."""

    @hookspec
    def dailycast_register_stages(self) -> dict[str, "StageProtocol"]:  # type: ignore[empty-body]
        """Return stage units of work keyed by stage name.

        Returns:
            Mapping of stage name to callable
        """
