"""
pgconfigstore - 基于 PostgreSQL 的路径式键值配置存储

提供全局命名空间（internal/global/...）与用户命名空间（internal/user/<user_id>/...），
值以 JSON 文档存储在单张配置表中，按 config_path 唯一。

模块:
- config: 配置管理（TOML + 环境变量）
- connection: 连接提供者（连接池 / 单次连接）
- bootstrap: 目标数据库与配置表的幂等初始化
- paths: 路径规范化与命名空间
- store: 读取/写入（set 覆盖、update 浅合并、get 缺省写入）
- errors: 错误定义
- cli: 命令行入口
"""

__version__ = "0.1.0"

from .bootstrap import ensure_ready
from .config import (
    AppConfig,
    Config,
    NamespaceSettings,
    PostgresSettings,
    get_config,
)
from .connection import (
    ConnectionProvider,
    DirectConnectionProvider,
    PooledConnectionProvider,
    build_provider,
)
from .errors import (
    ConfigError,
    ConfigNotFoundError,
    ConfigParseError,
    ConfigStoreError,
    ConfigurationMissingError,
    DatabaseError,
    DbConnectionError,
    ProvisioningError,
    StorageError,
    ValidationError,
)
from .paths import NamespaceRouter, join_path, normalize_path
from .store import ConfigEntry, PostgresConfigurationStore, WriteMode

__all__ = [
    "__version__",
    # config
    "AppConfig",
    "Config",
    "NamespaceSettings",
    "PostgresSettings",
    "get_config",
    # connection
    "ConnectionProvider",
    "DirectConnectionProvider",
    "PooledConnectionProvider",
    "build_provider",
    # bootstrap
    "ensure_ready",
    # paths
    "NamespaceRouter",
    "join_path",
    "normalize_path",
    # store
    "ConfigEntry",
    "PostgresConfigurationStore",
    "WriteMode",
    # errors
    "ConfigStoreError",
    "ConfigError",
    "ConfigurationMissingError",
    "ConfigNotFoundError",
    "ConfigParseError",
    "DatabaseError",
    "DbConnectionError",
    "ProvisioningError",
    "StorageError",
    "ValidationError",
]
