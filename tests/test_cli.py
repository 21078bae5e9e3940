import pytest
from click.testing import CliRunner

from agentdex.cli import cli


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> str:
    monkeypatch.chdir(tmp_path)
    url = f"sqlite+aiosqlite:///{tmp_path / 'agentdex.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("ENABLE_INDEXER", "false")
    return url


def test_run_refuses_when_disabled(env: str) -> None:
    result = CliRunner().invoke(cli, ["run"])
    assert result.exit_code == 2
    assert "ENABLE_INDEXER" in result.output


def test_init_db_then_status(env: str) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["init-db"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 0, result.output
    assert "No cursors yet" in result.output
