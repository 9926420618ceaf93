"""
TopDash Host Agent - Lightweight monitoring agent for servers.

Reports system metrics to the TopDash API and replaces its own executable
when the API offers a newer, verified build.
"""

from .agent import Agent, run_agent
from .config import AGENT_VERSION, AgentConfig, AgentIdentity, load_config
from .reporter import MetricsSnapshot, Reporter, SendResult
from .scheduler import Scheduler
from .update_checker import UpdateChecker, UpdateCheckResult, UpdateDescriptor
from .updater import Updater, UpdateOutcome, UpdateState

__version__ = AGENT_VERSION

__all__ = [
    "Agent",
    "AgentConfig",
    "AgentIdentity",
    "MetricsSnapshot",
    "Reporter",
    "Scheduler",
    "SendResult",
    "UpdateChecker",
    "UpdateCheckResult",
    "UpdateDescriptor",
    "UpdateOutcome",
    "UpdateState",
    "Updater",
    "load_config",
    "run_agent",
]
