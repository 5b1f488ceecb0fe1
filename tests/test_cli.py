from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from flyergen.cli import app

runner = CliRunner()

KEY_ENVS = ("IDEOGRAM_API_KEY", "HF_TOKEN", "STABILITY_API_KEY", "FAL_KEY")


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in KEY_ENVS:
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "flyergen.toml"
    path.write_text("""
[providers.ideogram]

[providers.huggingface]

[generation]
base_prompt = "crisp"
""")
    return path


class TestCli:
    def test_prompt_preview(self, config_file: Path) -> None:
        result = runner.invoke(
            app, ["--config", str(config_file), "prompt", "sunset", "--event-type", "WEDDING"]
        )
        assert result.exit_code == 0, result.output
        assert "sunset, crisp" in result.output
        assert "Wedding" in result.output

    def test_providers_without_keys(self, config_file: Path) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "providers"])
        assert result.exit_code == 2
        assert "ideogram" in result.output

    def test_providers_selects_keyed(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HF_TOKEN", "hf")
        result = runner.invoke(app, ["--config", str(config_file), "providers"])
        assert result.exit_code == 0, result.output
        assert "Selected: huggingface" in result.output

    def test_generate_without_provider_exits_2(self, config_file: Path) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "generate", "sunset"])
        assert result.exit_code == 2

    def test_bad_detail(self, config_file: Path) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "prompt", "x", "--detail", "novalue"])
        assert result.exit_code == 2

    def test_missing_config(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--config", str(tmp_path / "nope.toml"), "providers"])
        assert result.exit_code == 2

    def test_sign_without_bucket(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("flyergen.storage.cache._default_cache", None)
        result = runner.invoke(app, ["--config", str(config_file), "sign", "u/a.png"])
        assert result.exit_code == 2
        assert "bucket" in result.output
