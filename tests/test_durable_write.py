from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from codex_vault.shared.services import durable_write
from codex_vault.shared.services.durable_write import atomic_write_json, read_json


def test_write_then_read(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "data.json"

    atomic_write_json(path, {"title": "Ünïcode", "n": 1})

    assert read_json(path) == {"title": "Ünïcode", "n": 1}
    assert [p.name for p in path.parent.iterdir()] == ["data.json"]


def test_failed_replace_keeps_old_file_and_no_temp(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "data.json"
    path.write_text(json.dumps({"old": True}), encoding="utf-8")

    def fail_replace(src, dst) -> None:
        raise OSError("rename failed")

    monkeypatch.setattr(durable_write.os, "replace", fail_replace)

    with pytest.raises(OSError):
        atomic_write_json(path, {"old": False})

    assert json.loads(path.read_text(encoding="utf-8")) == {"old": True}
    assert os.listdir(tmp_path) == ["data.json"]


def test_unserializable_payload_raises_type_error(tmp_path: Path) -> None:
    path = tmp_path / "data.json"
    with pytest.raises(TypeError):
        atomic_write_json(path, {"bad": object()})
    assert not path.exists()
