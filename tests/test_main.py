import json
import sys

import pytest

from warden import main as cli

from conftest import APP_DIGEST, OTHER_DIGEST


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "notary:\n"
        "  url: https://notary.example.com\n"
        "  allowedRegistries: registry.example.com/prod\n"
    )
    return str(path)


@pytest.fixture
def trust_data(tmp_path):
    path = tmp_path / "trust.yaml"
    path.write_text(f"registry.example.com/prod/app:\n  - {APP_DIGEST}\n")
    return str(path)


def run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["warden", *argv])
    cli.main()


def test_validate_image_trusted(monkeypatch, capsys, config_path, trust_data):
    run_cli(monkeypatch, "--config-path", config_path, "validate-image",
            "registry.example.com/prod/app:1.0", "--digest", APP_DIGEST, "--trust-data", trust_data)

    output = json.loads(capsys.readouterr().out)
    assert output["Verdict"] == "Trusted"


def test_validate_image_untrusted_exits_nonzero(monkeypatch, capsys, config_path, trust_data):
    with pytest.raises(SystemExit) as exc:
        run_cli(monkeypatch, "--config-path", config_path, "validate-image",
                "registry.example.com/prod/app:1.0", "--digest", OTHER_DIGEST, "--trust-data", trust_data)

    assert exc.value.code == 1
    assert json.loads(capsys.readouterr().out)["Verdict"] == "Untrusted"


def test_validate_image_with_bad_config(monkeypatch, capsys, tmp_path):
    with pytest.raises(SystemExit) as exc:
        run_cli(monkeypatch, "--config-path", str(tmp_path / "missing.yaml"), "validate-image", "nginx")

    assert exc.value.code == 1
    assert json.loads(capsys.readouterr().out)["Status"] == "Failed"


def test_no_command_prints_help(monkeypatch):
    with pytest.raises(SystemExit) as exc:
        run_cli(monkeypatch)
    assert exc.value.code == 1
