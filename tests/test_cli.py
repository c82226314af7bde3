import importlib.util
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import FakeProvider
from errors import ConflictError
from resources import ResourceKind

ROOT = Path(__file__).resolve().parent.parent

FAST_CONFIG = """
name: cli
wait:
  poll_interval_seconds: 0.01
  max_wait_seconds: 5
retry:
  delay_seconds: 0
"""

ENV = {
    "COMPARTMENT_ID": "ocid1.compartment.oc1..cli",
    "OCIR_FN_IMAGE": "phx.ocir.io/t/r/fn:1",
    "FN_PAYLOAD": "ping",
}


def load_cli():
    spec = importlib.util.spec_from_file_location("function_lifecycle_cli", ROOT / "__main__.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def cli(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text(FAST_CONFIG)
    module = load_cli()
    fake = FakeProvider(ready_polls=0, gone_polls=0)
    monkeypatch.setattr(module, "create_provider", lambda config: fake)
    module.fake = fake
    return module


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def test_setup_and_invoke(cli, runner) -> None:
    result = runner.invoke(cli.app, ["setup", "invoke"], env=ENV)

    assert result.exit_code == 0, result.output
    assert "pong" in result.stdout
    assert [r.ref.display_name for r in cli.fake.resources.values()] == ["cli-vcn", "cli-subnet", "cli-app", "cli-fn"]
    assert cli.fake.closed


def test_teardown_only(cli, runner) -> None:
    runner.invoke(cli.app, ["setup"], env=ENV)

    result = runner.invoke(cli.app, ["teardown"], env=ENV)

    assert result.exit_code == 0
    assert cli.fake.deletes == [
        ResourceKind.FUNCTION, ResourceKind.APPLICATION, ResourceKind.SUBNET, ResourceKind.NETWORK
    ]


def test_missing_compartment_exits_non_zero(cli, runner) -> None:
    result = runner.invoke(cli.app, ["teardown"], env={"COMPARTMENT_ID": ""})

    assert result.exit_code == 2
    assert cli.fake.deletes == []


def test_setup_requires_image(cli, runner) -> None:
    result = runner.invoke(cli.app, ["setup"], env={**ENV, "OCIR_FN_IMAGE": ""})

    assert result.exit_code == 2
    assert sum(cli.fake.create_calls.values()) == 0


def test_teardown_failure_exits_one(cli, runner) -> None:
    runner.invoke(cli.app, ["setup"], env=ENV)
    cli.fake.delete_errors[ResourceKind.SUBNET] = [ConflictError("in use") for _ in range(5)]

    result = runner.invoke(cli.app, ["teardown"], env=ENV)

    assert result.exit_code == 1
    assert cli.fake.delete_calls[ResourceKind.NETWORK] == 1


def test_unknown_phase_is_rejected(cli, runner) -> None:
    result = runner.invoke(cli.app, ["deploy"], env=ENV)

    assert result.exit_code != 0


def test_explicit_config_file(cli, runner, tmp_path) -> None:
    other = tmp_path / "other.yaml"
    other.write_text(FAST_CONFIG.replace("name: cli", "name: other"))

    result = runner.invoke(cli.app, ["--config", str(other), "setup"], env=ENV)

    assert result.exit_code == 0
    assert [r.ref.display_name for r in cli.fake.resources.values()][0] == "other-vcn"


def test_provider_construction_failure_exits_one(cli, runner, monkeypatch) -> None:
    def broken(config):
        raise RuntimeError("no route to identity endpoint")

    monkeypatch.setattr(cli, "create_provider", broken)

    result = runner.invoke(cli.app, ["teardown"], env=ENV)

    assert result.exit_code == 1
    assert not isinstance(result.exception, RuntimeError)
