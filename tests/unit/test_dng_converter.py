import subprocess
import pytest
from pathlib import Path
from unittest.mock import patch
from cti.config.models import DngConfig
from cti.domain.errors import ConfigError, ConversionError, ToolNotFoundError
from cti.infrastructure import dng_converter
from cti.infrastructure.dng_converter import DngConverterAdapter


def _adapter(tmp_path, **overrides):
    adapter = DngConverterAdapter(DngConfig(enabled=True, **overrides), tmp_path / "dng")
    adapter.executable = "/opt/Adobe DNG Converter"
    return adapter


def test_dng_command_generation(tmp_path):
    cmd = _adapter(tmp_path)._build_command(Path("/card/A.ORF"))

    assert cmd == [
        "/opt/Adobe DNG Converter",
        "-c",
        "-d", str(tmp_path / "dng"),
        "-o", "A.dng",
        "/card/A.ORF",
    ]


def test_dng_command_optional_flags(tmp_path):
    cmd = _adapter(tmp_path, compressed=True, embed_original=True)._build_command(Path("/card/A.ORF"))

    assert "-lossy" in cmd
    assert "-e" in cmd
    assert cmd[-1] == "/card/A.ORF"


def test_dng_convert_success(tmp_path):
    adapter = _adapter(tmp_path)
    (tmp_path / "dng").mkdir()

    def fake_run(cmd, **kwargs):
        (tmp_path / "dng" / "A.dng").write_bytes(b"dng")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    with patch("subprocess.run", side_effect=fake_run):
        assert adapter.convert(Path("/card/A.ORF")) == tmp_path / "dng" / "A.dng"


def test_dng_convert_accepts_uppercase_extension(tmp_path):
    adapter = _adapter(tmp_path)
    (tmp_path / "dng").mkdir()

    def fake_run(cmd, **kwargs):
        (tmp_path / "dng" / "A.DNG").write_bytes(b"dng")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    with patch("subprocess.run", side_effect=fake_run):
        result = adapter.convert(Path("/card/A.ORF"))

    assert result.name in ("A.DNG", "A.dng")  # case-insensitive filesystems
    assert result.exists()


def test_dng_convert_nonzero_exit(tmp_path):
    adapter = _adapter(tmp_path)
    completed = subprocess.CompletedProcess([], 2, stdout="", stderr="unsupported")

    with patch("subprocess.run", return_value=completed):
        with pytest.raises(ConversionError, match="exited with code 2"):
            adapter.convert(Path("/card/A.ORF"))


def test_dng_convert_missing_output(tmp_path, monkeypatch):
    monkeypatch.setattr(dng_converter, "OUTPUT_SETTLE_S", 0.0)
    adapter = _adapter(tmp_path)
    (tmp_path / "dng").mkdir()
    completed = subprocess.CompletedProcess([], 0, stdout="done", stderr="")

    with patch("subprocess.run", return_value=completed):
        with pytest.raises(ConversionError, match="DNG output file was not created"):
            adapter.convert(Path("/card/A.ORF"))


def test_dng_check_available_missing_tool(tmp_path):
    adapter = DngConverterAdapter(DngConfig(enabled=True), tmp_path / "dng")
    with patch("cti.infrastructure.dng_converter.find_executable", return_value=None):
        with pytest.raises(ToolNotFoundError, match="Adobe DNG Converter not found"):
            adapter.check_available()


def test_dng_check_available_requires_output_dir():
    adapter = DngConverterAdapter(DngConfig(enabled=True))
    with patch("cti.infrastructure.dng_converter.find_executable", return_value="/opt/dng"):
        with pytest.raises(ConfigError, match="output directory is not set"):
            adapter.check_available()


def test_dng_check_available_creates_output_dir(tmp_path):
    adapter = DngConverterAdapter(DngConfig(enabled=True), tmp_path / "nested" / "dng")
    with patch("cti.infrastructure.dng_converter.find_executable", return_value="/opt/dng"):
        adapter.check_available()
    assert (tmp_path / "nested" / "dng").is_dir()
