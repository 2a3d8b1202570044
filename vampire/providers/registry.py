"""
Provider registry: the closed set of agent backends, built once from config.
"""

from __future__ import annotations

from pathlib import Path

from vampire.config_loader import VampireConfig
from vampire.providers.base import (
    AgentHandle,
    AgentProvider,
    ConnectionResult,
    ProviderInfo,
    StreamCallbacks,
)
from vampire.providers.claude import ClaudeProvider

DEFAULT_PROVIDER = "claude"


class ProviderNotFoundError(LookupError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown provider: {name}")


class ProviderUnavailableError(RuntimeError):
    pass


class ComingSoonProvider(AgentProvider):
    """Listed so the UI can show it; cannot run anything yet."""

    def __init__(self, name: str, display_name: str):
        self.info = ProviderInfo(name=name, display_name=display_name, coming_soon=True)

    async def test_connection(self) -> ConnectionResult:
        return ConnectionResult(False, f"{self.info.display_name} is not supported yet.")

    async def run_agent(self, prompt: str, cwd: Path, callbacks: StreamCallbacks) -> AgentHandle:
        raise ProviderUnavailableError(f"{self.info.display_name} is not supported yet.")


class ProviderRegistry:

    def __init__(self, providers: list[AgentProvider] | None = None):
        self._providers: dict[str, AgentProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: AgentProvider) -> None:
        self._providers[provider.info.name] = provider

    def get(self, name: str) -> AgentProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise ProviderNotFoundError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def list_providers(self) -> list[ProviderInfo]:
        """Runnable providers first, coming-soon ones after."""
        infos = [p.info for p in self._providers.values()]
        return sorted(infos, key=lambda info: info.coming_soon)


def build_registry(config: VampireConfig | None = None) -> ProviderRegistry:
    config = config or VampireConfig()
    claude = config.providers.claude
    return ProviderRegistry([
        ClaudeProvider(
            executable=claude.executable,
            co_author=claude.co_author,
            test_timeout=config.timeouts.connection_test,
        ),
        ComingSoonProvider("gemini", "Gemini CLI"),
        ComingSoonProvider("codex", "Codex"),
    ])
