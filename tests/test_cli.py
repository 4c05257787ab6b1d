from __future__ import annotations

import pytest
from click.testing import CliRunner

import taskq_publisher.__main__ as cli
from taskq_publisher import __version__


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> dict:
    """Replace logging setup and serving so no server is started."""
    seen: dict = {}

    def fake_setup_logging(**kwargs) -> None:
        seen["logging"] = kwargs

    async def fake_serve(service) -> None:
        seen["service"] = service

    monkeypatch.setattr(cli, "setup_logging", fake_setup_logging)
    monkeypatch.setattr(cli, "serve", fake_serve)
    for name in ("CONFIG_PATH", "BIND_ADDRESS", "REDIS_ADDRESS", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return seen


def test_version_prints_identity_and_exits(captured) -> None:
    result = CliRunner().invoke(cli.main, ["--version"])

    assert result.exit_code == 0
    assert result.output == f"TaskQ Redis Publisher\nVersion: {__version__}\n"
    assert captured == {}


def test_flags_override_defaults(captured, tmp_path) -> None:
    result = CliRunner().invoke(
        cli.main,
        [
            "--bind", "127.0.0.1:9090",
            "--redis-address", "127.0.0.1:6390",
            "--verbose",
            "--config", str(tmp_path / "missing.yml"),
        ],
    )

    assert result.exit_code == 0, result.output
    service = captured["service"]
    assert str(service.listen_address) == "127.0.0.1:9090"
    assert str(service.redis_address) == "127.0.0.1:6390"
    assert service.config.metrics.notifier_enabled is True
    assert captured["logging"]["level"] == "DEBUG"


def test_defaults_are_info_without_notifier(captured, tmp_path) -> None:
    result = CliRunner().invoke(cli.main, ["--config", str(tmp_path / "missing.yml")])

    assert result.exit_code == 0, result.output
    service = captured["service"]
    assert str(service.listen_address) == "127.0.0.1:8080"
    assert str(service.redis_address) == "127.0.0.1:6379"
    assert service.config.metrics.notifier_enabled is False
    assert captured["logging"]["level"] == "INFO"


@pytest.mark.parametrize("flag", ["--bind", "--redis-address"])
def test_malformed_address_exits_before_serving(captured, tmp_path, flag: str) -> None:
    result = CliRunner().invoke(
        cli.main, [flag, "not-an-address", "--config", str(tmp_path / "missing.yml")]
    )

    assert result.exit_code != 0
    assert "service" not in captured
