from __future__ import annotations

import importlib
import logging
from typing import Any, Callable, Dict, Iterable, List

from .hooks import BasePlugin, HookRegistry
from .moderation import ModerationPlugin
from .statistics import StatisticsPlugin

logger = logging.getLogger("barkle_agent")

PluginFactory = Callable[[Any], BasePlugin]

BUILTIN_PLUGINS: Dict[str, PluginFactory] = {
    "moderation": lambda settings: ModerationPlugin(),
    "statistics": lambda settings: StatisticsPlugin(getattr(settings, "stats_path", None)),
}


def create_plugin(name: str, settings: Any) -> BasePlugin:
    """Build a built-in plugin by name, or import one given as ``package.module:ClassName``."""
    key = name.strip()
    factory = BUILTIN_PLUGINS.get(key.casefold())
    if factory is not None:
        return factory(settings)

    module_name, sep, attr = key.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Unknown plugin {name!r}; use a built-in name or 'module:ClassName'")
    plugin_class = getattr(importlib.import_module(module_name), attr)
    plugin = plugin_class()
    if not isinstance(plugin, BasePlugin):
        raise TypeError(f"Plugin {name!r} does not subclass BasePlugin")
    return plugin


async def load_plugins(hooks: HookRegistry, names: Iterable[str], settings: Any) -> List[str]:
    loaded: List[str] = []
    for name in names:
        try:
            plugin = create_plugin(name, settings)
            if await hooks.register_plugin(plugin):
                loaded.append(plugin.name)
        except Exception as exc:
            logger.error("Failed to load plugin %s: %s", name, exc)
    logger.info("Plugins loaded: %s", ", ".join(loaded) if loaded else "none")
    return loaded
