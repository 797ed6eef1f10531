from __future__ import annotations

import inspect
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Union

logger = logging.getLogger("barkle_agent")

HookHandler = Callable[[Any, Mapping[str, Any]], Union[Any, Awaitable[Any]]]

BEFORE_RESPONSE = "before_response"
AFTER_RESPONSE = "after_response"
ON_NOTIFICATION = "on_notification"


class BasePlugin:
    name = ""
    version = "1.0.0"
    description = ""

    def hooks(self) -> Dict[str, HookHandler]:
        return {}

    async def initialize(self) -> None:
        return None

    async def cleanup(self) -> None:
        return None


class HookRegistry:
    """Ordered hook chains; each handler receives the previous handler's output."""

    def __init__(self) -> None:
        self._hooks: Dict[str, "OrderedDict[str, HookHandler]"] = {}
        self._plugins: Dict[str, BasePlugin] = {}

    def register_hook(self, hook_name: str, handler: HookHandler, owner: str) -> None:
        self._hooks.setdefault(hook_name, OrderedDict())[owner] = handler
        logger.debug("Registered hook %s for %s", hook_name, owner)

    async def register_plugin(self, plugin: BasePlugin) -> bool:
        missing = [attr for attr in ("name", "version", "description") if not getattr(plugin, attr, "")]
        if missing:
            logger.warning("Plugin %r missing required properties: %s", plugin, ", ".join(missing))
            return False
        await plugin.initialize()
        self._plugins[plugin.name] = plugin
        for hook_name, handler in plugin.hooks().items():
            self.register_hook(hook_name, handler, plugin.name)
        logger.info("Loaded plugin: %s v%s", plugin.name, plugin.version)
        return True

    async def unregister_plugin(self, name: str) -> None:
        plugin = self._plugins.pop(name, None)
        if plugin is None:
            logger.warning("Plugin %s not found", name)
            return
        for handlers in self._hooks.values():
            handlers.pop(name, None)
        try:
            await plugin.cleanup()
        except Exception as exc:
            logger.error("Plugin %s cleanup failed: %s", name, exc)
        logger.info("Unloaded plugin: %s", name)

    def plugins(self) -> List[BasePlugin]:
        return list(self._plugins.values())

    def has_hook(self, hook_name: str) -> bool:
        return bool(self._hooks.get(hook_name))

    async def execute(self, hook_name: str, data: Any, context: Mapping[str, Any] | None = None) -> Any:
        handlers = self._hooks.get(hook_name)
        if not handlers:
            return data
        result = data
        for owner, handler in list(handlers.items()):
            try:
                outcome = handler(result, context or {})
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as exc:
                logger.error("Error in hook %s for %s: %s", hook_name, owner, exc)
                continue
            if outcome is not None:
                result = outcome
        return result

    async def close(self) -> None:
        for name in list(self._plugins):
            await self.unregister_plugin(name)
