import argparse
import json

import pytest

import src.config as config
from src.cli import _config


def test_config_show(capsys):
    _config(argparse.Namespace(set=None))
    shown = json.loads(capsys.readouterr().out)
    assert shown["PORT"] == config.PORT
    assert "NOTIFY_TIMEOUT" in shown


def test_config_set_persists(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(config, "BASE_DIR", tmp_path)
    _config(argparse.Namespace(set=["port=4000", "NOTIFY_ENABLED=false"]))

    saved = json.loads((tmp_path / "data" / "config.json").read_text(encoding="utf-8"))
    assert saved == {"PORT": "4000", "NOTIFY_ENABLED": "false"}
    assert "restart" in capsys.readouterr().out


def test_config_rejects_unknown_key(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "BASE_DIR", tmp_path)
    with pytest.raises(SystemExit):
        _config(argparse.Namespace(set=["COLOUR=blue"]))
    assert not (tmp_path / "data" / "config.json").exists()
