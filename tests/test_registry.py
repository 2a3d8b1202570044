import pytest

from vampire.config_loader import VampireConfig
from vampire.providers import (
    ClaudeProvider,
    ProviderNotFoundError,
    ProviderRegistry,
    ProviderUnavailableError,
    build_registry,
)


def test_default_registry():
    registry = build_registry()

    assert isinstance(registry.get("claude"), ClaudeProvider)
    assert "gemini" in registry
    assert "codex" in registry

    infos = registry.list_providers()
    assert infos[0].name == "claude"
    assert not infos[0].coming_soon
    assert all(info.coming_soon for info in infos[1:])


def test_unknown_provider():
    with pytest.raises(ProviderNotFoundError, match="Unknown provider: nope"):
        build_registry().get("nope")


def test_claude_settings_come_from_config():
    config = VampireConfig()
    config.providers.claude.executable = "/usr/local/bin/claude"
    config.providers.claude.co_author = "Bot <bot@example.com>"

    claude = build_registry(config).get("claude")
    assert claude.executable == "/usr/local/bin/claude"
    assert claude.info.co_author == "Bot <bot@example.com>"


@pytest.mark.asyncio
async def test_coming_soon_provider_cannot_run(tmp_path):
    gemini = build_registry().get("gemini")

    result = await gemini.test_connection()
    assert not result.ok

    with pytest.raises(ProviderUnavailableError):
        await gemini.run_agent("prompt", tmp_path, None)


def test_register_replaces_by_name():
    first, second = ClaudeProvider(executable="a"), ClaudeProvider(executable="b")
    registry = ProviderRegistry([first])
    registry.register(second)
    assert registry.get("claude") is second
