import os

from client_verification.config import Settings, get_settings


def test_polling_defaults():
    for name in (
        "VERIFICATION_POLLING_ENABLED",
        "VERIFICATION_POLLING_MAX_MESSAGES",
        "VERIFICATION_POLLING_WAIT_TIME_SECONDS",
        "VERIFICATION_POLLING_HEALTH_CHECK_INTERVAL_SECONDS",
        "VERIFICATION_POLLING_MAX_RESTART_ATTEMPTS",
        "VERIFICATION_POLLING_RESTART_DELAY_SECONDS",
    ):
        os.environ.pop(name, None)
    s = Settings()
    assert s.polling_enabled is True
    assert s.max_messages == 10
    assert s.wait_time_seconds == 20
    assert s.health_check_interval_seconds == 60
    assert s.max_restart_attempts == 5
    assert s.restart_delay_seconds == 10


def test_env_override(monkeypatch):
    monkeypatch.setenv("VERIFICATION_POLLING_ENABLED", "false")
    monkeypatch.setenv("VERIFICATION_POLLING_WAIT_TIME_SECONDS", "5")
    monkeypatch.setenv("VERIFICATION_RESULTS_QUEUE", "results.staging.q")
    s = Settings()
    assert s.polling_enabled is False
    assert s.wait_time_seconds == 5
    assert s.verification_results_queue == "results.staging.q"


def test_keyword_override_wins_over_env(monkeypatch):
    monkeypatch.setenv("WORKER_CONCURRENCY", "8")
    assert Settings(worker_concurrency=2).worker_concurrency == 2


def test_is_prod(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "Production")
    assert get_settings().is_prod() is True
    monkeypatch.setenv("ENVIRONMENT", "staging")
    assert get_settings().is_prod() is False
