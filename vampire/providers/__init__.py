"""
Vampire Agent Providers

Each provider is:
  - A ProviderInfo (name, display name, commit co-author)
  - A connection test
  - A way to run one unattended coding agent in a directory

Providers are stateless between runs. State lives in the workspace.
"""

from vampire.providers.base import (
    AgentExitError,
    AgentHandle,
    AgentProvider,
    AgentTimeoutError,
    ConnectionResult,
    ProviderInfo,
    StreamCallbacks,
)
from vampire.providers.claude import ClaudeProvider
from vampire.providers.registry import (
    DEFAULT_PROVIDER,
    ComingSoonProvider,
    ProviderNotFoundError,
    ProviderRegistry,
    ProviderUnavailableError,
    build_registry,
)

__all__ = [
    "AgentExitError",
    "AgentHandle",
    "AgentProvider",
    "AgentTimeoutError",
    "ClaudeProvider",
    "ComingSoonProvider",
    "ConnectionResult",
    "DEFAULT_PROVIDER",
    "ProviderInfo",
    "ProviderNotFoundError",
    "ProviderRegistry",
    "ProviderUnavailableError",
    "StreamCallbacks",
    "build_registry",
]
