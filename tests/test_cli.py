from typer.testing import CliRunner
from vampire.cli import app
from vampire import __version__

runner = CliRunner()

def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"Vampire v{__version__}" in result.stdout


def test_providers_lists_claude_first():
    result = runner.invoke(app, ["providers"])
    assert result.exit_code == 0
    assert "Claude Code" in result.stdout
    assert "coming soon" in result.stdout
    assert result.stdout.index("claude") < result.stdout.index("gemini")


def test_test_provider_unknown_name():
    result = runner.invoke(app, ["test-provider", "nope"])
    assert result.exit_code == 1
    assert "Unknown provider: nope" in result.stdout


def test_run_needs_a_task(tmp_path):
    result = runner.invoke(app, ["run", "--repo", str(tmp_path)])
    assert result.exit_code == 1
    assert "--issue" in result.stdout


def test_follow_up_needs_a_message(tmp_path):
    result = runner.invoke(app, ["run", "--repo", str(tmp_path), "--follow-up-branch", "feat/42"])
    assert result.exit_code == 1
    assert "--message" in result.stdout
