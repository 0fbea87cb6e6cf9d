from farmland.config import DEFAULT_DATABASE_URL, Settings


def test_defaults(monkeypatch):
    for var in ("FARMLAND_DATABASE_URL", "FARMLAND_REJECT_OVERLAPS", "FARMLAND_VERIFY_ROLLUPS",
                "FARMLAND_RETRY_MAX_ATTEMPTS", "FARMLAND_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)

    s = Settings.from_env()

    assert s.database_url == DEFAULT_DATABASE_URL
    assert s.reject_overlaps is False
    assert s.verify_rollups is False
    assert s.retry.max_attempts == 5
    assert s.log_level == "INFO"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("FARMLAND_DATABASE_URL", ' "postgresql://farm@db/farms" ')
    monkeypatch.setenv("FARMLAND_REJECT_OVERLAPS", "true")
    monkeypatch.setenv("FARMLAND_RETRY_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("FARMLAND_RETRY_INITIAL_DELAY", "0.2")
    monkeypatch.setenv("FARMLAND_LOG_LEVEL", "debug")

    s = Settings.from_env()

    assert s.database_url == "postgresql://farm@db/farms"
    assert s.reject_overlaps is True
    assert (s.retry.max_attempts, s.retry.initial_delay) == (7, 0.2)
    assert s.log_level == "DEBUG"


def test_farm_size_bounds(monkeypatch):
    monkeypatch.delenv("FARMLAND_MIN_FARM_HA", raising=False)
    monkeypatch.delenv("FARMLAND_MAX_FARM_HA", raising=False)
    s = Settings.from_env()
    assert (s.min_farm_ha, s.max_farm_ha) == (0.01, 100.0)

    monkeypatch.setenv("FARMLAND_MAX_FARM_HA", "")
    monkeypatch.setenv("FARMLAND_MIN_FARM_HA", "0.5")
    s = Settings.from_env()
    assert (s.min_farm_ha, s.max_farm_ha) == (0.5, None)
