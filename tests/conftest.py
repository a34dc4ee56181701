import io
from pathlib import Path

import pytest
import yaml
from rich.console import Console


class CapturedConsole(Console):
    """Console writing into a buffer; .text() returns everything printed so far."""

    def __init__(self):
        self._sink = io.StringIO()
        super().__init__(file=self._sink, width=240, soft_wrap=True, highlight=False, color_system=None)

    def text(self) -> str:
        return self._sink.getvalue()


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    monkeypatch.setenv("MFER_LOG_FILE", str(tmp_path / "logs" / "mfer.log"))
    monkeypatch.setenv("MFER_CONFIG", str(tmp_path / "config" / "config.yaml"))


@pytest.fixture
def console():
    return CapturedConsole()


@pytest.fixture
def mfe_dir(tmp_path):
    base = tmp_path / "mfes"
    for name in ("mfe1", "mfe2", "mfe3"):
        (base / name).mkdir(parents=True)
    return base


@pytest.fixture
def write_config(tmp_path):
    def _write(data: dict) -> Path:
        path = tmp_path / "config" / "config.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data))
        return path
    return _write

