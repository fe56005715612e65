# -*- coding: utf-8 -*-
"""
config 单元测试

验证:
1. PostgresSettings 必填项校验与默认值
2. from_mapping 的环境变量兜底与 tableName 兼容写法
3. Config 的配置文件解析优先级（--config > PGCONFIGSTORE_CONFIG > 默认路径）
"""

import pytest

from pgconfigstore.config import (
    DEFAULT_ADMIN_DATABASE,
    ENV_CONFIG_PATH,
    Config,
    PostgresSettings,
    get_config,
)
from pgconfigstore.errors import (
    ConfigError,
    ConfigNotFoundError,
    ConfigParseError,
    ConfigurationMissingError,
)

pytestmark = [pytest.mark.unit]

PG_ENV_VARS = ["PGHOST", "PGPORT", "PGDATABASE", "PGUSER", "PGPASSWORD", "PGCONFIGSTORE_TABLE"]


@pytest.fixture
def clean_env(monkeypatch):
    for name in PG_ENV_VARS + [ENV_CONFIG_PATH]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestPostgresSettings:
    def test_defaults(self):
        settings = PostgresSettings(database="app_config")
        assert settings.host == "localhost"
        assert settings.port == 5432
        assert settings.default_database == DEFAULT_ADMIN_DATABASE
        assert settings.table_name == "config"
        assert settings.constraint_name == "config_un"
        assert settings.primary_key_name == "config_pk"
        assert settings.use_pool is True

    def test_missing_database(self):
        with pytest.raises(ConfigurationMissingError):
            PostgresSettings(database="")

    def test_port_coerced(self):
        assert PostgresSettings(database="db", port="6543").port == 6543

    def test_invalid_port(self):
        with pytest.raises(ConfigError):
            PostgresSettings(database="db", port="abc")

    def test_invalid_pool_size(self):
        with pytest.raises(ConfigError):
            PostgresSettings(database="db", pool_min_size=5, pool_max_size=2)

    def test_constraint_follows_table_name(self):
        settings = PostgresSettings(database="db", table_name="app_settings")
        assert settings.constraint_name == "app_settings_un"


class TestFromMapping:
    def test_none_without_env_is_missing(self, clean_env):
        with pytest.raises(ConfigurationMissingError):
            PostgresSettings.from_mapping(None)

    def test_env_fallback(self, clean_env):
        clean_env.setenv("PGHOST", "db.internal")
        clean_env.setenv("PGPORT", "6432")
        clean_env.setenv("PGDATABASE", "from_env")
        clean_env.setenv("PGUSER", "svc")
        settings = PostgresSettings.from_mapping({})
        assert settings.host == "db.internal"
        assert settings.port == 6432
        assert settings.database == "from_env"
        assert settings.user == "svc"

    def test_explicit_value_wins_over_env(self, clean_env):
        clean_env.setenv("PGDATABASE", "from_env")
        settings = PostgresSettings.from_mapping({"database": "explicit"})
        assert settings.database == "explicit"

    def test_table_name_alias(self, clean_env):
        settings = PostgresSettings.from_mapping({"database": "db", "tableName": "settings"})
        assert settings.table_name == "settings"

    def test_unknown_key_rejected(self, clean_env):
        with pytest.raises(ConfigError) as exc_info:
            PostgresSettings.from_mapping({"database": "db", "dsn": "postgresql://x"})
        assert exc_info.value.details["keys"] == ["dsn"]


class TestConfigFile:
    def test_explicit_path_loaded(self, clean_env, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            """
[postgres]
database = "app_config"
user = "postgres"
table_name = "settings"

[namespaces]
global_root = "app/global"

[logging]
level = "debug"
""",
            encoding="utf-8",
        )
        config = Config(str(path))
        assert config.get("postgres.user") == "postgres"
        assert config.get("postgres.missing", "fallback") == "fallback"

        app_config = config.to_app_config()
        assert app_config.postgres.table_name == "settings"
        assert app_config.namespaces.global_root == "app/global"
        assert app_config.namespaces.user_root == "internal/user"
        assert app_config.logging.level == "DEBUG"

    def test_explicit_path_missing(self, clean_env, tmp_path):
        with pytest.raises(ConfigNotFoundError):
            Config(str(tmp_path / "nope.toml"))

    def test_env_path_used(self, clean_env, tmp_path):
        path = tmp_path / "env.toml"
        path.write_text('[postgres]\ndatabase = "from_file"\n', encoding="utf-8")
        clean_env.setenv(ENV_CONFIG_PATH, str(path))
        assert get_config(reload=True).to_settings().database == "from_file"

    def test_env_path_missing(self, clean_env, tmp_path):
        clean_env.setenv(ENV_CONFIG_PATH, str(tmp_path / "nope.toml"))
        with pytest.raises(ConfigNotFoundError):
            Config()

    def test_parse_error(self, clean_env, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[postgres\ndatabase = ", encoding="utf-8")
        with pytest.raises(ConfigParseError):
            Config(str(path)).load()

    def test_require(self, clean_env, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[postgres]\ndatabase = "db"\n', encoding="utf-8")
        config = Config(str(path))
        assert config.require("postgres.database") == "db"
        with pytest.raises(ConfigError):
            config.require("postgres.user")
