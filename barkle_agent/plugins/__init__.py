from .hooks import AFTER_RESPONSE, BEFORE_RESPONSE, ON_NOTIFICATION, BasePlugin, HookRegistry
from .loader import BUILTIN_PLUGINS, create_plugin, load_plugins
from .moderation import ModerationPlugin
from .statistics import StatisticsPlugin

__all__ = [
    "AFTER_RESPONSE",
    "BEFORE_RESPONSE",
    "BUILTIN_PLUGINS",
    "ON_NOTIFICATION",
    "BasePlugin",
    "HookRegistry",
    "ModerationPlugin",
    "StatisticsPlugin",
    "create_plugin",
    "load_plugins",
]
