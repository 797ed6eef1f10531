
from .agent_mixin import AgentMixin
from .command_mixin import CommandMixin
from .message_mixin import MessageMixin
from .prompt_mixin import PromptMixin
from .workers_mixin import WorkersMixin

__all__ = [
    "AgentMixin",
    "CommandMixin",
    "MessageMixin",
    "PromptMixin",
    "WorkersMixin",
]
