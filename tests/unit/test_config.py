from pathlib import Path

import pytest
from pydantic import ValidationError

from slotwise.config import AppConfig, BackendAdapter, BackendConfig, SchedulingConfig


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run without a .env file and without backend/scheduling variables."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "BACKEND_ADAPTER",
        "BACKEND_URL",
        "BACKEND_API_KEY",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "SCHEDULING_SLOT_MINUTES",
        "SCHEDULING_RESPONSE_WINDOW_HOURS",
        "CLINIC_TIMEZONE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestSchedulingConfig:
    def test_defaults(self) -> None:
        config = SchedulingConfig()

        assert config.slot_minutes == 30
        assert config.default_duration_minutes == 30
        assert config.response_window_hours == 24
        assert config.booking_horizon_days == 90

    def test_reads_prefixed_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SCHEDULING_RESPONSE_WINDOW_HOURS", "48")

        assert SchedulingConfig().response_window_hours == 48

    def test_rejects_non_positive_granularity(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SCHEDULING_SLOT_MINUTES", "0")

        with pytest.raises(ValidationError):
            SchedulingConfig()


class TestBackendConfig:
    def test_defaults_to_memory(self) -> None:
        config = BackendConfig()

        assert config.adapter is BackendAdapter.MEMORY
        assert config.url == ""

    def test_supabase_aliases(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SUPABASE_URL", "https://clinic.supabase.test/rest/v1")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "secret")

        config = BackendConfig()

        assert config.url == "https://clinic.supabase.test/rest/v1"
        assert config.api_key == "secret"

    def test_backend_names_win_over_supabase(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BACKEND_URL", "https://primary.test")
        monkeypatch.setenv("SUPABASE_URL", "https://fallback.test")

        assert BackendConfig().url == "https://primary.test"

    def test_unknown_adapter(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BACKEND_ADAPTER", "mysql")

        with pytest.raises(ValidationError):
            BackendConfig()


class TestAppConfig:
    def test_nested_sections(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLINIC_TIMEZONE", "Europe/Madrid")
        monkeypatch.setenv("BACKEND_ADAPTER", "postgrest")

        config = AppConfig()

        assert config.clinic_timezone == "Europe/Madrid"
        assert config.backend.adapter is BackendAdapter.POSTGREST
        assert config.scheduling.slot_minutes == 30
