"""Tests for settings resolution."""

import pytest
from pydantic import ValidationError

from phasegate.core.config import PhasegateSettings, get_settings


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Empty working directory with an empty PHASEGATE_HOME."""
    home = tmp_path / "home"
    home.mkdir()
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setenv("PHASEGATE_HOME", str(home))
    monkeypatch.chdir(work)
    for name in PhasegateSettings.model_fields:
        monkeypatch.delenv(f"PHASEGATE_{name.upper()}", raising=False)
    return work


class TestSettings:
    def test_defaults(self, workdir):
        settings = get_settings()
        assert settings.min_success_rate == 0.95
        assert settings.global_concurrency_cap == 8
        assert settings.fail_fast is False
        assert settings.allow_optional_failures is True
        assert settings.webhook_events == ["run.blocked"]

    def test_local_toml(self, workdir):
        (workdir / "phasegate.toml").write_text("global_concurrency_cap = 6\nmin_success_rate = 0.9\n")
        settings = get_settings()
        assert settings.global_concurrency_cap == 6
        assert settings.min_success_rate == 0.9

    def test_local_toml_overrides_home(self, workdir, tmp_path):
        (tmp_path / "home" / "phasegate.toml").write_text("global_concurrency_cap = 3\nfail_fast = true\n")
        (workdir / "phasegate.toml").write_text("global_concurrency_cap = 5\n")
        settings = get_settings()
        assert settings.global_concurrency_cap == 5
        assert settings.fail_fast is True

    def test_env_overrides_toml(self, workdir, monkeypatch):
        (workdir / "phasegate.toml").write_text("global_concurrency_cap = 6\n")
        monkeypatch.setenv("PHASEGATE_GLOBAL_CONCURRENCY_CAP", "4")
        assert get_settings().global_concurrency_cap == 4

    def test_overrides_win(self, workdir, monkeypatch):
        monkeypatch.setenv("PHASEGATE_GLOBAL_CONCURRENCY_CAP", "4")
        settings = get_settings(global_concurrency_cap=2, min_success_rate=None)
        assert settings.global_concurrency_cap == 2
        assert settings.min_success_rate == 0.95

    def test_unknown_toml_keys_ignored(self, workdir):
        (workdir / "phasegate.toml").write_text('colour = "blue"\n')
        assert get_settings().global_concurrency_cap == 8

    def test_unreadable_toml_ignored(self, workdir, caplog):
        (workdir / "phasegate.toml").write_text("this is = = not toml")
        assert get_settings().global_concurrency_cap == 8
        assert "Ignoring unreadable config file" in caplog.text

    def test_cap_limit(self, workdir):
        with pytest.raises(ValidationError):
            get_settings(global_concurrency_cap=21)
