from __future__ import annotations

import pytest

from cmsync.config import (
    ConfigurationError,
    MissingConfigurationError,
    SyncConfig,
    get_instance_config,
    get_sync_config,
    instance_env_prefix,
    int_env_var,
    require_env_vars,
)

SYNC_VARIABLES = (
    "CMSYNC_FETCH_CONCURRENCY",
    "CMSYNC_FINGERPRINT_CONCURRENCY",
    "CMSYNC_MAX_PARALLEL_UPLOADS",
    "CMSYNC_APPLY_WORKERS",
    "CMSYNC_PAGE_SIZE",
    "CMSYNC_HAMMING_THRESHOLD",
    "CMSYNC_SNAPSHOT_KEEP",
    "CMSYNC_PROGRESS_BUFFER",
)


@pytest.fixture
def clean_sync_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in SYNC_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_require_env_vars_lists_every_missing_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PRESENT_VAR", "value")
    monkeypatch.setenv("BLANK_VAR", "   ")
    monkeypatch.delenv("MISSING_VAR", raising=False)

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["PRESENT_VAR", "MISSING_VAR", "BLANK_VAR"])

    assert "BLANK_VAR, MISSING_VAR" in str(exc.value)


def test_int_env_var_validates_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("EXAMPLE_INT", raising=False)
    assert int_env_var("EXAMPLE_INT", 5) == 5

    monkeypatch.setenv("EXAMPLE_INT", "12")
    assert int_env_var("EXAMPLE_INT", 5) == 12

    monkeypatch.setenv("EXAMPLE_INT", "twelve")
    with pytest.raises(ConfigurationError, match="must be an integer"):
        int_env_var("EXAMPLE_INT", 5)

    monkeypatch.setenv("EXAMPLE_INT", "0")
    with pytest.raises(ConfigurationError, match=">= 1"):
        int_env_var("EXAMPLE_INT", 5)
    assert int_env_var("EXAMPLE_INT", 5, minimum=0) == 0


def test_sync_config_defaults(clean_sync_env: pytest.MonkeyPatch) -> None:  # noqa: ARG001
    assert get_sync_config() == SyncConfig()


def test_sync_config_reads_overrides(clean_sync_env: pytest.MonkeyPatch) -> None:
    clean_sync_env.setenv("CMSYNC_PAGE_SIZE", "50")
    clean_sync_env.setenv("CMSYNC_HAMMING_THRESHOLD", "0")
    clean_sync_env.setenv("CMSYNC_SNAPSHOT_KEEP", "5")

    config = get_sync_config()

    assert config.page_size == 50
    assert config.hamming_threshold == 0
    assert config.snapshot_keep == 5
    assert config.fetch_concurrency == SyncConfig().fetch_concurrency


def test_sync_config_rejects_non_positive_sizes(clean_sync_env: pytest.MonkeyPatch) -> None:
    clean_sync_env.setenv("CMSYNC_PAGE_SIZE", "-1")

    with pytest.raises(ConfigurationError, match="CMSYNC_PAGE_SIZE"):
        get_sync_config()


def test_instance_config_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CMSYNC_EU_PROD_URL", "https://cms.example.com/")
    monkeypatch.setenv("CMSYNC_EU_PROD_API_TOKEN", "token")
    monkeypatch.setenv("CMSYNC_EU_PROD_USERNAME", "admin@example.com")
    monkeypatch.delenv("CMSYNC_EU_PROD_PASSWORD", raising=False)
    monkeypatch.delenv("CMSYNC_EU_PROD_DATABASE_URL", raising=False)

    config = get_instance_config("eu-prod")

    assert config.name == "eu-prod"
    assert config.base_url == "https://cms.example.com"
    assert config.api_token == "token"
    assert config.username == "admin@example.com"
    assert config.password is None
    assert not config.supports_snapshots
    assert config.resilience.base_url == "https://cms.example.com"
    assert config.resilience.cache is not None
    assert config.resilience.cache.enabled
    assert config.resilience.cache.backend == "memory"
    assert config.resilience.cache.cache_paths == ("/api/content-type-builder/",)


def test_instance_config_requires_url_and_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CMSYNC_STAGING_URL", "https://staging.example.com")
    monkeypatch.delenv("CMSYNC_STAGING_API_TOKEN", raising=False)

    with pytest.raises(MissingConfigurationError, match="CMSYNC_STAGING_API_TOKEN"):
        get_instance_config("staging")


def test_instance_names_are_validated() -> None:
    assert instance_env_prefix(" qa-2 ") == "CMSYNC_QA_2_"

    with pytest.raises(ConfigurationError):
        instance_env_prefix("prod/eu")
    with pytest.raises(ConfigurationError):
        instance_env_prefix("")
