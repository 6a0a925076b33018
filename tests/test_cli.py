"""Tests for the routerctl command line interface."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import FakeMetadataSession, routerctl_env
from routerctl import __version__
from routerctl import cli as cli_module
from routerctl.cli import app
from routerctl.keyring import init_keyring
from routerctl.providers.session import MetadataError, ServerAddress

runner = CliRunner()


def _extract_json(output: str) -> dict[str, object]:
    """Extract the first JSON object embedded in *output*."""
    start = output.find("{")
    end = output.rfind("}")
    assert start != -1 and end != -1, f"No JSON payload found in output: {output}"
    return json.loads(output[start : end + 1])


def _read_operations(env: dict[str, str]) -> list[dict[str, object]]:
    path = Path(env["ROUTERCTL_LOGS_DIR"]) / "operations.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


@pytest.fixture
def env(tmp_path: Path, router_executable: Path) -> dict[str, str]:
    (tmp_path / "system").mkdir(exist_ok=True)
    return routerctl_env(tmp_path, router_executable)


@pytest.fixture
def connections(
    monkeypatch: pytest.MonkeyPatch, fake_session: FakeMetadataSession
) -> list[ServerAddress]:
    """Route every CLI connection to the fake metadata server."""
    opened: list[ServerAddress] = []

    def fake_open(address: ServerAddress, connect_timeout: float) -> FakeMetadataSession:
        opened.append(address)
        return fake_session

    monkeypatch.setattr(cli_module, "_open_session", fake_open)
    monkeypatch.setattr(cli_module.console, "width", 240)
    return opened


def test_version_flag(env: dict[str, str]) -> None:
    result = runner.invoke(app, ["--version"], env=env)

    assert result.exit_code == 0
    assert f"routerctl {__version__}" in result.stdout


def test_config_show_json(env: dict[str, str]) -> None:
    result = runner.invoke(app, ["config", "show", "--json"], env=env)

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert payload["router_executable"] == env["ROUTERCTL_ROUTER_EXECUTABLE"]
    assert payload["logs_dir"] == env["ROUTERCTL_LOGS_DIR"]


def test_invalid_config_exits_with_validation_code(env: dict[str, str], tmp_path: Path) -> None:
    Path(env["ROUTERCTL_CONFIG_FILE"]).write_text("unknown: 1\n", encoding="utf-8")

    result = runner.invoke(app, ["config", "show"], env=env)

    assert result.exit_code == 2
    assert "Unknown configuration keys" in result.stdout


def test_bootstrap_directory(
    env: dict[str, str],
    tmp_path: Path,
    connections: list[ServerAddress],
    fake_session: FakeMetadataSession,
) -> None:
    deploy = tmp_path / "router"
    master_key = tmp_path / "mkey"

    result = runner.invoke(
        app,
        [
            "bootstrap",
            "mysql://admin:pw@db1:3310",
            "--directory",
            str(deploy),
            "--name",
            "edge",
            "--master-key-path",
            str(master_key),
            "--conf-use-sockets",
        ],
        env=env,
    )

    assert result.exit_code == 0, result.stdout
    assert connections[0] == ServerAddress("db1", 3310, "admin", "pw")
    assert fake_session.closed is True
    assert "Bootstrapping MySQL Router instance at" in result.stdout
    assert (
        "MySQL Router 'edge' has now been configured for the InnoDB cluster 'mycluster'."
        in result.stdout
    )
    assert "- Read/Write Connections: localhost:6446" in result.stdout
    assert f"- Read/Write Connections: {deploy.resolve()}/mysql.sock" in result.stdout
    assert "- Read/Only Connections: localhost:64470" in result.stdout
    assert (deploy / "mysqlrouter.conf").exists()
    assert (deploy / "start.sh").exists()

    keyring = init_keyring(deploy.resolve() / "run" / "keyring", master_key, create_if_missing=False)
    assert keyring.lookup("mysql_innodb_cluster_router1", "password") is not None

    record = _read_operations(env)[-1]
    assert record["command"] == "bootstrap"
    result_block = record["result"]
    assert isinstance(result_block, dict)
    assert result_block["status"] == "success"
    assert result_block["message"] == "Router bootstrapped."
    assert result_block["context"]["router_id"] == 1


def test_bootstrap_rerun_reports_backup_and_reconfigure(
    env: dict[str, str],
    tmp_path: Path,
    connections: list[ServerAddress],
) -> None:
    deploy = tmp_path / "router"
    base_args = [
        "bootstrap",
        "admin:pw@db1",
        "--directory",
        str(deploy),
        "--master-key-path",
        str(tmp_path / "mkey"),
    ]
    assert runner.invoke(app, base_args, env=env).exit_code == 0

    result = runner.invoke(app, [*base_args, "--conf-base-port", "7000"], env=env)

    assert result.exit_code == 0, result.stdout
    assert "Reconfiguring MySQL Router instance at" in result.stdout
    assert f"Existing configurations backed up to {deploy.resolve()}/mysqlrouter.conf.bak" in result.stdout
    record = _read_operations(env)[-1]
    assert record["result"]["message"] == "Router reconfigured."  # type: ignore[index]
    assert record["result"]["backups"] == [  # type: ignore[index]
        f"{deploy.resolve()}/mysqlrouter.conf.bak"
    ]


def test_bootstrap_json_output(
    env: dict[str, str],
    tmp_path: Path,
    connections: list[ServerAddress],
) -> None:
    result = runner.invoke(
        app,
        [
            "bootstrap",
            "admin:pw@db1",
            "-d",
            str(tmp_path / "router"),
            "--master-key-path",
            str(tmp_path / "mkey"),
            "--json",
        ],
        env=env,
    )

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert payload["status"] == "registered"
    assert payload["cluster"] == "mycluster"
    assert payload["replicaset"] == "default"
    assert payload["username"] == "mysql_innodb_cluster_router1"
    assert payload["endpoints"] == {
        "RWEndpoint": "6446",
        "ROEndpoint": "6447",
        "RWXEndpoint": "64460",
        "ROXEndpoint": "64470",
    }
    assert "Bootstrapping" not in result.stdout


def test_bootstrap_prompts_for_server_password(
    env: dict[str, str],
    tmp_path: Path,
    connections: list[ServerAddress],
) -> None:
    result = runner.invoke(
        app,
        [
            "bootstrap",
            "db1",
            "-d",
            str(tmp_path / "router"),
            "--master-key-path",
            str(tmp_path / "mkey"),
            "--quiet",
        ],
        input="s3cret\n",
        env=env,
    )

    assert result.exit_code == 0, result.stdout
    assert "Please enter MySQL password for root" in result.stdout
    assert connections[0].password == "s3cret"


def test_bootstrap_system_deployment(
    env: dict[str, str],
    tmp_path: Path,
    connections: list[ServerAddress],
) -> None:
    result = runner.invoke(
        app,
        ["bootstrap", "root:pw@db1", "--master-key-path", str(tmp_path / "mkey")],
        env=env,
    )

    assert result.exit_code == 0, result.stdout
    assert "Bootstrapping system MySQL Router instance..." in result.stdout
    assert "MySQL Router has now been configured" in result.stdout
    config_file = Path(env["ROUTERCTL_SYSTEM__CONFIG_FILE"])
    assert "name=system\n" in config_file.read_text(encoding="utf-8")


def test_bootstrap_cancelled_at_key_prompt(
    env: dict[str, str],
    tmp_path: Path,
    connections: list[ServerAddress],
) -> None:
    deploy = tmp_path / "router"

    result = runner.invoke(
        app,
        ["bootstrap", "root:pw@db1", "-d", str(deploy)],
        input="\n",
        env=env,
    )

    assert result.exit_code == 0, result.stdout
    assert "Bootstrap cancelled by operator." in result.stdout
    assert not deploy.exists()
    record = _read_operations(env)[-1]
    assert record["result"]["status"] == "warning"  # type: ignore[index]
    assert record["result"]["warnings"] == ["user-cancelled"]  # type: ignore[index]


def test_bootstrap_invalid_url(env: dict[str, str], connections: list[ServerAddress]) -> None:
    result = runner.invoke(app, ["bootstrap", "http://db1"], env=env)

    assert result.exit_code == 2
    assert "Unsupported URL scheme" in result.stdout
    assert connections == []


def test_bootstrap_connection_failure(
    env: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    def refuse(address: ServerAddress, connect_timeout: float) -> FakeMetadataSession:
        raise MetadataError("Unable to connect to the metadata server: refused", code=2003)

    monkeypatch.setattr(cli_module, "_open_session", refuse)

    result = runner.invoke(app, ["bootstrap", "root:pw@db1"], env=env)

    assert result.exit_code == 4
    assert "Unable to connect to the metadata server" in result.stdout
    record = _read_operations(env)[-1]
    assert record["result"]["rc"] == 4  # type: ignore[index]


def test_bootstrap_conflict_exit_code(
    env: dict[str, str],
    tmp_path: Path,
    connections: list[ServerAddress],
) -> None:
    deploy = tmp_path / "router"
    deploy.mkdir()
    (deploy / "notes.txt").write_text("occupied", encoding="utf-8")

    result = runner.invoke(
        app,
        ["bootstrap", "root:pw@db1", "-d", str(deploy), "--master-key-path", str(tmp_path / "k")],
        env=env,
    )

    assert result.exit_code == 2
    assert "already contains files" in result.stdout


def test_bootstrap_remote_failure_exit_code(
    env: dict[str, str],
    tmp_path: Path,
    connections: list[ServerAddress],
    fake_session: FakeMetadataSession,
) -> None:
    fake_session.fail_on("CREATE USER", MetadataError("Access denied", code=1227))
    deploy = tmp_path / "router"

    result = runner.invoke(
        app,
        ["bootstrap", "root:pw@db1", "-d", str(deploy), "--master-key-path", str(tmp_path / "k")],
        env=env,
    )

    assert result.exit_code == 4
    assert "Error creating MySQL account for router: Access denied" in result.stdout
    assert not deploy.exists()
    assert fake_session.closed is True
