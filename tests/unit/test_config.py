"""
Unit tests for TaskConfig validation and CoordinatorRuntimeSettings.
"""

import pytest

from copy_client.errors import ConfigurationError
from copy_client.models import ColumnOption
from copy_sink.config import TaskConfig
from copy_sink.coordinator import CoordinatorRuntimeSettings


class TestTaskConfigDefaults:
    def test_minimal_job(self, job):
        cfg = TaskConfig.from_mapping(job)

        assert cfg.host == "localhost"
        assert cfg.port == 5433
        assert cfg.database == "vdb"
        assert cfg.schema_name == "public"
        assert cfg.mode == "DIRECT_COPY"
        assert cfg.copy_mode == "DIRECT"
        assert cfg.delimiter == "|"
        assert cfg.abort_on_error is False
        assert cfg.pool_size is None
        assert cfg.write_timeout is None
        assert cfg.default_timezone == "UTC"

    def test_pool_size_defaults_to_partition_count(self, job):
        assert TaskConfig.from_mapping(job, partition_count=6).pool_size == 6

    def test_explicit_pool_size_wins(self, job):
        cfg = TaskConfig.from_mapping({**job, "pool_size": 2}, partition_count=6)
        assert cfg.pool_size == 2

    def test_resolved_pool_size_requires_a_value(self, job):
        with pytest.raises(ConfigurationError, match="pool_size"):
            TaskConfig.from_mapping(job).resolved_pool_size

    def test_zero_partitions_rejected(self, job):
        with pytest.raises(ConfigurationError, match="partition count"):
            TaskConfig.from_mapping(job, partition_count=0)

    def test_frozen(self, job):
        cfg = TaskConfig.from_mapping(job)
        with pytest.raises(Exception):
            cfg.table = "other"  # type: ignore


class TestTaskConfigKeys:
    def test_camel_case_keys(self):
        cfg = TaskConfig.from_mapping(
            {
                "user": "u",
                "table": "t",
                "copyMode": "trickle",
                "abortOnError": True,
                "writeTimeout": 5,
                "loadTimeCol": "loaded_at",
                "defaultTimezone": "Asia/Tokyo",
            }
        )
        assert cfg.copy_mode == "TRICKLE"
        assert cfg.abort_on_error is True
        assert cfg.write_timeout == 5.0
        assert cfg.load_time_col == "loaded_at"
        assert cfg.default_timezone == "Asia/Tokyo"

    def test_schema_key(self, job):
        assert TaskConfig.from_mapping({**job, "schema": "staging"}).schema_name == "staging"

    def test_aliases(self):
        cfg = TaskConfig.from_mapping(
            {"username": "u", "table": "t", "enqueue_timeout": 3, "pool": 4}
        )
        assert cfg.user == "u"
        assert cfg.write_timeout == 3.0
        assert cfg.pool_size == 4

    def test_canonical_key_beats_alias(self):
        cfg = TaskConfig.from_mapping({"username": "alias", "user": "real", "table": "t"})
        assert cfg.user == "real"

    def test_unknown_key_rejected(self, job):
        with pytest.raises(ConfigurationError, match="bogus"):
            TaskConfig.from_mapping({**job, "bogus": 1})

    def test_column_options(self, job):
        cfg = TaskConfig.from_mapping(
            {**job, "column_options": {"name": {"type": "VARCHAR(64)"}}}
        )
        assert cfg.column_options == {"name": ColumnOption(type="VARCHAR(64)")}


class TestTaskConfigValidation:
    def test_user_required(self):
        with pytest.raises(ConfigurationError, match='required field "user" is not set'):
            TaskConfig.from_mapping({"table": "t"})

    def test_table_required(self):
        with pytest.raises(ConfigurationError, match="table"):
            TaskConfig.from_mapping({"user": "u"})

    def test_mode_must_be_direct_copy(self, job):
        with pytest.raises(ConfigurationError, match="mode"):
            TaskConfig.from_mapping({**job, "mode": "INSERT"})

    def test_mode_case_insensitive(self, job):
        assert TaskConfig.from_mapping({**job, "mode": "direct_copy"}).mode == "DIRECT_COPY"

    @pytest.mark.parametrize("copy_mode", ["auto", "DIRECT", "Trickle"])
    def test_copy_modes(self, job, copy_mode):
        cfg = TaskConfig.from_mapping({**job, "copy_mode": copy_mode})
        assert cfg.copy_mode == copy_mode.upper()

    def test_unknown_copy_mode(self, job):
        with pytest.raises(ConfigurationError, match="copy_mode"):
            TaskConfig.from_mapping({**job, "copy_mode": "FAST"})

    @pytest.mark.parametrize("delimiter", ["", "||", "\\", "\n"])
    def test_bad_delimiter(self, job, delimiter):
        with pytest.raises(ConfigurationError, match="delimiter"):
            TaskConfig.from_mapping({**job, "delimiter": delimiter})

    @pytest.mark.parametrize("key", ["write_timeout", "dequeue_timeout", "finish_timeout"])
    def test_non_positive_timeout(self, job, key):
        with pytest.raises(ConfigurationError, match="timeouts must be > 0"):
            TaskConfig.from_mapping({**job, key: 0})

    def test_pool_size_positive(self, job):
        with pytest.raises(ConfigurationError, match="pool_size"):
            TaskConfig.from_mapping({**job, "pool_size": 0})

    def test_unknown_timezone(self, job):
        with pytest.raises(ConfigurationError, match="timezone"):
            TaskConfig.from_mapping({**job, "default_timezone": "Mars/Olympus"})


class TestTaskConfigViews:
    def test_connection_params(self, job):
        cfg = TaskConfig.from_mapping(
            {**job, "host": "wh", "password": "s3cret", "resource_pool": "etl"}
        )
        params = cfg.connection_params
        assert (params.host, params.port, params.user) == ("wh", 5433, "dbadmin")
        assert params.password == "s3cret"
        assert params.resource_pool == "etl"

    def test_load_format(self, job):
        fmt = TaskConfig.from_mapping(
            {**job, "delimiter": ",", "copy_mode": "auto", "abort_on_error": True}
        ).load_format
        assert (fmt.delimiter, fmt.copy_mode, fmt.abort_on_error) == (",", "AUTO", True)


class TestRuntimeSettings:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("COPY_SINK_QUEUE_CAPACITY", "16")
        monkeypatch.setenv("COPY_SINK_LOG_LEVEL", "debug")

        settings = CoordinatorRuntimeSettings()
        assert settings.queue_capacity == 16
        assert settings.log_level == "debug"

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("COPY_SINK_QUEUE_CAPACITY", raising=False)
        settings = CoordinatorRuntimeSettings(_env_file=None)
        assert settings.queue_capacity == 8
        assert settings.high_watermark is None
