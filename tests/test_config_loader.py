from vampire.config_loader import VampireConfig, load_config


def test_builtin_defaults(tmp_path):
    config = load_config(tmp_path / "missing.yaml")

    assert config.engine.max_retry == 2
    assert config.engine.flush_interval == 2.0
    assert config.timeouts.agent == 3600
    assert config.bus.max_subscribers == 50
    assert config.providers.claude.executable == "claude"


def test_user_file_overrides_defaults(tmp_path):
    user = tmp_path / "config.yaml"
    user.write_text("engine:\n  max_retry: 4\ntimeouts:\n  git: 10\n")

    config = load_config(user)

    assert config.engine.max_retry == 4
    assert config.timeouts.git == 10
    # untouched keys keep their defaults
    assert config.engine.kill_grace == 5.0
    assert config.bus.retained_topics == 200
    assert config.timeouts.metadata == 30


def test_env_overrides_win(tmp_path, monkeypatch):
    user = tmp_path / "config.yaml"
    user.write_text("timeouts:\n  agent: 100\n")
    monkeypatch.setenv("VAMPIRE_AGENT_TIMEOUT", "50")
    monkeypatch.setenv("VAMPIRE_CLAUDE_BIN", "/opt/claude/bin/claude")

    config = load_config(user)

    assert config.timeouts.agent == 50
    assert config.providers.claude.executable == "/opt/claude/bin/claude"


def test_model_defaults_match_file(tmp_path):
    assert load_config(tmp_path / "missing.yaml") == VampireConfig()
