"""
Tests for environment-driven settings.
"""

from pathlib import Path

from shared.config import Settings


class TestSettings:
    def test_reads_environment(self, monkeypatch, tmp_path):
        """Settings come from the environment."""
        monkeypatch.setenv("VAPID_PUBLIC_KEY", "pub")
        monkeypatch.setenv("VAPID_PRIVATE_KEY", "priv")
        monkeypatch.setenv("VAPID_SUBJECT", "mailto:ops@example.net")
        monkeypatch.setenv("PUSH_TIMEOUT_SECONDS", "1.5")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("HISTORY_LIMIT", "25")

        settings = Settings()

        assert settings.push_enabled
        assert settings.push_timeout_seconds == 1.5
        assert settings.data_dir == Path(tmp_path)
        assert settings.history_limit == 25
        assert settings.vapid_claims == {"sub": "mailto:ops@example.net"}

    def test_defaults_without_vapid(self, monkeypatch):
        """Defaults apply and push is off without VAPID."""
        for name in ("VAPID_PUBLIC_KEY", "VAPID_PRIVATE_KEY", "VAPID_SUBJECT", "NOTIFICATION_LIST_LIMIT", "HISTORY_LIMIT"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings()

        assert not settings.push_enabled
        assert settings.notification_list_limit == 50
        assert settings.history_limit == 1000
