"""
pgconfigstore.config - 配置管理模块

支持:
- CLI --config 参数覆盖
- 环境变量 PGCONFIGSTORE_CONFIG 指定配置文件路径
- TOML 格式配置文件
- libpq 风格环境变量兜底（PGHOST/PGPORT/PGDATABASE/PGUSER/PGPASSWORD）

优先级: --config > PGCONFIGSTORE_CONFIG > ./.pgconfigstore/config.toml > ~/.pgconfigstore/config.toml

配置文件示例:

    [postgres]
    host = "localhost"
    port = 5432
    database = "app_config"
    default_database = "postgres"
    user = "postgres"
    password = "postgres"
    table_name = "config"
    use_pool = true

    [namespaces]
    global_root = "internal/global"
    user_root = "internal/user"

    [logging]
    level = "INFO"
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import ConfigError, ConfigNotFoundError, ConfigParseError, ConfigurationMissingError

# 环境变量名称
ENV_CONFIG_PATH = "PGCONFIGSTORE_CONFIG"
ENV_TABLE_NAME = "PGCONFIGSTORE_TABLE"

# postgres 字段 -> 兜底环境变量
POSTGRES_ENV_FALLBACKS = {
    "host": "PGHOST",
    "port": "PGPORT",
    "database": "PGDATABASE",
    "user": "PGUSER",
    "password": "PGPASSWORD",
    "table_name": ENV_TABLE_NAME,
}

# 默认配置文件搜索路径（按优先级）
DEFAULT_CONFIG_PATHS = [
    Path("./.pgconfigstore/config.toml"),
    Path.home() / ".pgconfigstore" / "config.toml",
]

DEFAULT_TABLE_NAME = "config"
DEFAULT_ADMIN_DATABASE = "postgres"
DEFAULT_GLOBAL_ROOT = "internal/global"
DEFAULT_USER_ROOT = "internal/user"


# === 规范化配置对象 ===


@dataclass
class PostgresSettings:
    """PostgreSQL 连接与建表配置"""

    database: str
    host: Optional[str] = "localhost"
    port: int = 5432
    # 用于检查/创建目标数据库的管理库
    default_database: str = DEFAULT_ADMIN_DATABASE
    user: Optional[str] = None
    password: Optional[str] = None
    table_name: str = DEFAULT_TABLE_NAME
    connect_timeout: float = 10.0
    use_pool: bool = True
    pool_min_size: int = 1
    pool_max_size: int = 10

    def __post_init__(self):
        if not self.database:
            raise ConfigurationMissingError(
                "配置项 [postgres].database 不能为空",
                {"section": "postgres", "key": "database"},
            )
        if not self.table_name:
            raise ConfigError(
                "配置项 [postgres].table_name 不能为空",
                {"section": "postgres", "key": "table_name"},
            )
        try:
            self.port = int(self.port)
        except (TypeError, ValueError):
            raise ConfigError(
                f"配置项 [postgres].port 无效: {self.port!r}",
                {"section": "postgres", "key": "port"},
            )
        if self.pool_min_size < 0 or self.pool_max_size < max(self.pool_min_size, 1):
            raise ConfigError(
                "连接池大小配置无效",
                {"pool_min_size": self.pool_min_size, "pool_max_size": self.pool_max_size},
            )

    @property
    def constraint_name(self) -> str:
        """config_path 唯一约束名"""
        return f"{self.table_name}_un"

    @property
    def primary_key_name(self) -> str:
        return f"{self.table_name}_pk"

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "PostgresSettings":
        """
        从字典构造，未出现的字段回退到环境变量

        Raises:
            ConfigurationMissingError: 未提供任何连接参数
        """
        data = dict(data or {})
        # 兼容 tableName 写法
        if "tableName" in data and "table_name" not in data:
            data["table_name"] = data.pop("tableName")

        for key, env_name in POSTGRES_ENV_FALLBACKS.items():
            if data.get(key) in (None, ""):
                env_value = os.environ.get(env_name)
                if env_value:
                    data[key] = env_value

        if not data.get("database"):
            raise ConfigurationMissingError(
                "未找到 PostgreSQL 连接配置",
                {"checked": ["postgres.database", "PGDATABASE"]},
            )

        known = set(cls.__dataclass_fields__)
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            raise ConfigError(
                f"未知的 [postgres] 配置项: {', '.join(unknown)}",
                {"section": "postgres", "keys": unknown},
            )
        return cls(**data)


@dataclass
class NamespaceSettings:
    """命名空间根路径配置"""

    global_root: str = DEFAULT_GLOBAL_ROOT
    user_root: str = DEFAULT_USER_ROOT


@dataclass
class LoggingSettings:
    """日志配置"""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class AppConfig:
    """规范化后的完整配置"""

    postgres: PostgresSettings
    namespaces: NamespaceSettings = field(default_factory=NamespaceSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppConfig":
        namespaces_data = data.get("namespaces", {})
        logging_data = data.get("logging", {})
        return cls(
            postgres=PostgresSettings.from_mapping(data.get("postgres", {})),
            namespaces=NamespaceSettings(
                global_root=namespaces_data.get("global_root", DEFAULT_GLOBAL_ROOT),
                user_root=namespaces_data.get("user_root", DEFAULT_USER_ROOT),
            ),
            logging=LoggingSettings(
                level=str(logging_data.get("level", "INFO")).upper(),
                format=logging_data.get(
                    "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                ),
            ),
        )


# === TOML 解析工具 ===


def _get_toml_parser():
    """获取 TOML 解析器（兼容 Python 3.11 以下版本）"""
    if sys.version_info >= (3, 11):
        import tomllib

        return tomllib
    import tomli

    return tomli


def _parse_toml_file(path: Path) -> dict:
    """解析 TOML 文件"""
    tomllib = _get_toml_parser()
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigParseError(
            f"配置文件解析失败: {e}",
            {"path": str(path), "error": str(e)},
        )


# === 配置管理类 ===


class Config:
    """配置管理类"""

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: 配置文件路径，优先级:
                1. 显式传入的 config_path（来自 --config 参数）
                2. 环境变量 PGCONFIGSTORE_CONFIG
                3. ./.pgconfigstore/config.toml
                4. ~/.pgconfigstore/config.toml
        """
        self._config_path: Optional[Path] = None
        self._data: dict = {}
        self._loaded = False
        self._app_config: Optional[AppConfig] = None

        self._resolve_config_path(config_path)

    def _resolve_config_path(self, explicit_path: Optional[str] = None) -> None:
        if explicit_path:
            path = Path(explicit_path)
            if not path.exists():
                raise ConfigNotFoundError(
                    f"指定的配置文件不存在: {explicit_path}",
                    {"path": str(path.absolute())},
                )
            self._config_path = path
            return

        env_path = os.environ.get(ENV_CONFIG_PATH)
        if env_path:
            path = Path(env_path)
            if not path.exists():
                raise ConfigNotFoundError(
                    f"环境变量 {ENV_CONFIG_PATH} 指定的配置文件不存在: {env_path}",
                    {"path": str(path.absolute()), "env_var": ENV_CONFIG_PATH},
                )
            self._config_path = path
            return

        for default_path in DEFAULT_CONFIG_PATHS:
            if default_path.exists():
                self._config_path = default_path
                return

        # 未找到配置文件（允许仅使用环境变量配置）
        self._config_path = None

    def load(self) -> "Config":
        """加载配置文件"""
        if self._loaded:
            return self
        if self._config_path is not None:
            self._data = _parse_toml_file(self._config_path)
        self._loaded = True
        return self

    def get(self, key: str, default: Any = None) -> Any:
        """
        获取配置值，支持点分隔的嵌套键，如 "postgres.host"
        """
        if not self._loaded:
            self.load()

        value = self._data
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def require(self, key: str) -> Any:
        """
        获取必需的配置值

        Raises:
            ConfigError: 如果配置项不存在或为空
        """
        value = self.get(key)
        if value is None or value == "":
            raise ConfigError(
                f"缺少必需的配置项: {key}",
                {"key": key, "config_path": str(self._config_path)},
            )
        return value

    def to_app_config(self) -> AppConfig:
        """转换为规范化的 AppConfig（结果缓存）"""
        if self._app_config is None:
            if not self._loaded:
                self.load()
            self._app_config = AppConfig.from_dict(self._data)
        return self._app_config

    def to_settings(self) -> PostgresSettings:
        return self.to_app_config().postgres

    @property
    def config_path(self) -> Optional[Path]:
        """当前使用的配置文件路径"""
        return self._config_path

    def __repr__(self) -> str:
        return f"Config(path={self._config_path}, loaded={self._loaded})"


# 全局配置实例（延迟初始化）
_global_config: Optional[Config] = None


def get_config(config_path: Optional[str] = None, reload: bool = False) -> Config:
    """
    获取全局配置实例

    Args:
        config_path: 配置文件路径（仅首次调用或 reload=True 时生效）
        reload: 是否强制重新加载
    """
    global _global_config
    if _global_config is None or reload:
        _global_config = Config(config_path)
    return _global_config


def reset_config() -> None:
    """重置全局配置实例（测试用）"""
    global _global_config
    _global_config = None
