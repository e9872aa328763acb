from __future__ import annotations

import pytest

from starsync.config import load_config

_ENV_VARS = (
    "GITHUB_TOKEN",
    "GITHUB_USERNAME",
    "SYNC_PER_PAGE",
    "SYNC_MAX_PAGES",
    "SYNC_STARS_CRON",
    "SYNC_TIMEZONE",
    "BULL_ROLE",
    "BULL_PREFIX",
    "NOTIFY_ENABLED",
    "NOTIFY_EMAIL_ENABLED",
    "MAIL_TO",
    "REDIS_URL",
    "MAINT_CRON",
    "RT_CLEAN_DRY_RUN",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GITHUB_USERNAME", "octocat")


class TestLoadConfig:
    def test_defaults(self):
        cfg = load_config()

        assert cfg.sync.source == "github:stars"
        assert cfg.sync.per_page == 50
        assert cfg.sync.max_pages == 0
        assert cfg.sync.soft_delete_unstarred is False
        assert cfg.queue.sync_cron == "0 5 * * *"
        assert cfg.queue.role == "both"
        assert cfg.maintenance.rt_dry_run is True
        assert cfg.notify.enabled is True
        assert cfg.sync_key == "user:octocat"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SYNC_PER_PAGE", "20")
        monkeypatch.setenv("SYNC_STARS_CRON", "*/10  * * * *")
        monkeypatch.setenv("BULL_ROLE", "WORKER")
        monkeypatch.setenv("NOTIFY_EMAIL_ENABLED", "false")
        monkeypatch.setenv("MAIL_TO", "ops@example.com")
        monkeypatch.setenv("RT_CLEAN_DRY_RUN", "0")

        cfg = load_config()

        assert cfg.sync.per_page == 20
        assert cfg.queue.sync_cron == "*/10 * * * *"
        assert cfg.queue.role == "worker"
        assert cfg.notify.enabled is False
        assert cfg.notify.mail_to == "ops@example.com"
        assert cfg.maintenance.rt_dry_run is False

    def test_keyword_overrides_beat_environment(self, monkeypatch):
        monkeypatch.setenv("SYNC_PER_PAGE", "20")

        cfg = load_config(sync={"per_page": 10}, database={"path": "/tmp/x.db"})

        assert cfg.sync.per_page == 10
        assert cfg.database.path == "/tmp/x.db"

    def test_username_is_normalized(self, monkeypatch):
        monkeypatch.setenv("GITHUB_USERNAME", " @octocat ")
        assert load_config().github.username == "octocat"

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("SYNC_PER_PAGE", "500"),
            ("SYNC_PER_PAGE", "many"),
            ("SYNC_MAX_PAGES", "-1"),
            ("SYNC_STARS_CRON", "every day"),
            ("MAINT_CRON", "61 * * * *"),
            ("BULL_ROLE", "janitor"),
            ("BULL_PREFIX", "has space"),
            ("GITHUB_USERNAME", "not/valid"),
            ("LOG_LEVEL", "LOUD"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(RuntimeError, match="Configuration validation failed"):
            load_config()

    def test_username_required_for_sync(self, monkeypatch):
        monkeypatch.delenv("GITHUB_USERNAME")

        with pytest.raises(RuntimeError, match="GITHUB_USERNAME"):
            load_config()

        assert load_config(require_github=False).github.username == ""
