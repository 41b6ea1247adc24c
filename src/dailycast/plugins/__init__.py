"""Stage plugin registration (pluggy)."""

from dailycast.plugins.hookspecs import PROJECT_NAME, hookimpl, hookspec
from dailycast.plugins.manager import StagePluginManager, StageRegistry
from dailycast.plugins.protocols import StageProtocol

__all__ = [
    "PROJECT_NAME",
    "StagePluginManager",
    "StageProtocol",
    "StageRegistry",
    "hookimpl",
    "hookspec",
]
