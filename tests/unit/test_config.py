"""Unit tests for configuration loading and the logging context."""

import pytest
from utils.config import load_config, validate_config
from utils.logging import add_job_context, clear_job_context, set_job_context


@pytest.mark.unit
class TestConfig:
    """Tests for load_config and validate_config."""

    def test_defaults(self, monkeypatch):
        for var in (("BUDGET_TIER", "CLIP_PARALLELISM", "SCHEDULER_ENABLED", "LOG_JSON", "CLIP_QA_ENABLED")):
            monkeypatch.delenv(var, raising=False)

        config = load_config()

        assert config["budget_tier"] == "balanced"
        assert config["clip_parallelism"] == 3
        assert config["scheduler_enabled"] is True
        assert config["log_json"] is False
        assert config["clip_qa_enabled"] is True

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CLIP_PARALLELISM", "5")
        monkeypatch.setenv("SCHEDULER_ENABLED", "false")
        monkeypatch.setenv("JOB_DB_PATH", str(tmp_path / "jobs.db"))

        config = load_config()

        assert config["clip_parallelism"] == 5
        assert config["scheduler_enabled"] is False
        assert config["job_db_path"] == str(tmp_path / "jobs.db")

    def test_missing_providers_are_reported(self, sample_config):
        errors = validate_config(sample_config)

        assert "GEMINI_API_KEY is required" in errors
        assert any("narration provider" in e for e in errors)

    def test_valid_config(self, sample_config):
        sample_config.update(gemini_api_key="g", openai_api_key="o")

        assert validate_config(sample_config) == []

    def test_bad_values(self, sample_config):
        sample_config.update(
            gemini_api_key="g",
            openai_api_key="o",
            scheduler_timezone="Nowhere/Special",
            budget_tier="lavish",
            clip_parallelism=0,
        )

        errors = validate_config(sample_config)

        assert len(errors) == 3


@pytest.mark.unit
class TestJobLogContext:
    """Tests for job correlation ids on log records."""

    def test_ids_are_added_while_set(self):
        set_job_context("job-1", "sched-9")
        try:
            event = add_job_context(None, "info", {"event": "hello"})
        finally:
            clear_job_context()

        assert event["job_id"] == "job-1"
        assert event["schedule_id"] == "sched-9"

    def test_nothing_added_when_clear(self):
        clear_job_context()

        assert add_job_context(None, "info", {"event": "hello"}) == {"event": "hello"}
