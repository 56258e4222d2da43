import json

import pytest
from typer.testing import CliRunner

from repofeed import cli
from repofeed.registry import AggregationEngine

runner = CliRunner()


@pytest.fixture
def fake_engine(gitlab, monkeypatch):
    monkeypatch.setattr(
        cli, "AggregationEngine", lambda settings: AggregationEngine(settings, client=gitlab)
    )
    return gitlab


def test_build_writes_index(settings, fake_engine) -> None:
    repo = fake_engine.add_repository("acme/lib")
    fake_engine.add_ref(repo, "main", {"name": "acme/lib"})

    result = runner.invoke(cli.app, ["build", "--config", str(settings.config_path)])

    assert result.exit_code == 0, result.output
    assert "packages=1" in result.output
    assert "acme/lib" in json.loads(settings.packages_file.read_text())["packages"]

    again = runner.invoke(cli.app, ["build", "--config", str(settings.config_path)])
    assert "Index up to date" in again.output


def test_build_without_config_exits_with_code_2(tmp_path) -> None:
    result = runner.invoke(cli.app, ["build", "--config", str(tmp_path / "missing.toml")])

    assert result.exit_code == 2


def test_clear_cache(settings) -> None:
    settings.cache_dir.mkdir(parents=True)
    (settings.cache_dir / "acme").mkdir()
    (settings.cache_dir / "packages.json").write_text("{}")

    result = runner.invoke(cli.app, ["clear-cache", "--yes", "--config", str(settings.config_path)])

    assert result.exit_code == 0, result.output
    assert list(settings.cache_dir.iterdir()) == []


def test_inspect_lists_refs(settings, gitlab, monkeypatch) -> None:
    repo = gitlab.add_repository("acme/lib")
    gitlab.add_ref(repo, "main", {"name": "acme/lib"})
    gitlab.add_ref(repo, "1.0.0", tag=True)
    gitlab.get_project = lambda project: repo
    monkeypatch.setattr(cli, "_client", lambda settings: gitlab)

    result = runner.invoke(cli.app, ["inspect", "acme/lib", "--config", str(settings.config_path)])

    assert result.exit_code == 0, result.output
    assert "dev-main" in result.output
    assert "Latest commit: abc1234" in result.output


def test_config_masks_api_key(settings) -> None:
    result = runner.invoke(cli.app, ["config", "--config", str(settings.config_path)])

    assert result.exit_code == 0, result.output
    assert "********" in result.output
    assert "token" not in result.output.replace("gitlab_api_key", "")
