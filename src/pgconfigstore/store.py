"""
pgconfigstore.store - 基于 PostgreSQL 的路径式配置存储

数据模型:
    每行一个 ConfigEntry: (id uuid, config_path varchar UNIQUE, data json)

写入模式:
    - REPLACE (set):    ON CONFLICT 时整体覆盖 data
    - MERGE   (update): 已存值与新值都是 JSON 对象时做顶层浅合并（新键优先），
                        否则等同 REPLACE；合并在同一条 upsert 语句内完成

读取（get）有副作用:
    路径不存在时，会把 default 以 REPLACE 方式写入该路径并返回 default。
    未提供 default 时写入 JSON null 并返回 None。
    需要区分 "不存在" 与 "存的是 null" 时使用无副作用的 get_entry()。

资源纪律:
    每个操作获取一个连接 -> 执行 -> commit（异常时 rollback）-> 释放。
    同一路径的并发写由数据库唯一约束裁决（后写者胜），进程内不加锁。

使用方法:
    settings = PostgresSettings(database="app_config", user="postgres", password="...")
    with PostgresConfigurationStore(settings) as store:
        store.set_user_data("1234", "profile", {"name": "Jim", "age": 25})
        store.update_user_data("1234", "profile", {"age": 26})
        store.get_user_data("1234", "profile")
        # => {"name": "Jim", "age": 26}
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional

import psycopg
from psycopg import sql

from .bootstrap import ensure_ready
from .config import Config, NamespaceSettings, PostgresSettings
from .connection import ConnectionProvider, build_provider
from .errors import ConfigurationMissingError, DbConnectionError, StorageError, ValidationError
from .paths import NamespaceRouter

logger = logging.getLogger(__name__)


class WriteMode(str, Enum):
    """写入模式"""

    REPLACE = "replace"
    MERGE = "merge"


@dataclass
class ConfigEntry:
    """配置表中的一行"""

    path: str
    value: Any
    id: Optional[str] = None


def _rollback_quietly(conn: psycopg.Connection) -> None:
    """回滚失败（如连接已断开）只记 warning，保留原始异常"""
    try:
        conn.rollback()
    except psycopg.Error as e:
        logger.warning("回滚失败（忽略）: %s", e)


def _log_sql(query: sql.Composable, params: tuple) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("SQL: %s params=%r", query.as_string(None), params)


def serialize_value(value: Any, path: str) -> str:
    """值 -> JSON 文本（作为绑定参数传入，配合 CAST(... AS json)）"""
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise StorageError(
            f"值无法序列化为 JSON: {e}",
            {"path": path, "value_type": type(value).__name__},
        )


class PostgresConfigurationStore:
    """PostgreSQL 配置存储（全局/用户两个命名空间）"""

    def __init__(
        self,
        settings: Optional[PostgresSettings],
        provider: Optional[ConnectionProvider] = None,
        namespaces: Optional[NamespaceSettings] = None,
        bootstrap: bool = True,
    ):
        """
        Args:
            settings: PostgreSQL 配置，为 None 时抛出 ConfigurationMissingError
            provider: 连接提供者，默认按 settings.use_pool 选定
            namespaces: 命名空间根路径，默认 internal/global 与 internal/user
            bootstrap: open() 时是否确保数据库与配置表存在
        """
        if settings is None:
            raise ConfigurationMissingError("必须提供 PostgreSQL 配置")
        self._settings = settings
        self._provider = provider or build_provider(settings)
        self._router = NamespaceRouter.from_settings(namespaces or NamespaceSettings())
        self._bootstrap = bootstrap
        self._opened = False

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "PostgresConfigurationStore":
        """由 Config（TOML/环境变量）构造"""
        app_config = config.to_app_config()
        return cls(app_config.postgres, namespaces=app_config.namespaces, **kwargs)

    # ---------- 生命周期 ----------

    def open(self) -> "PostgresConfigurationStore":
        """
        bootstrap（如启用）并打开连接提供者

        Raises:
            DbConnectionError: 无法连接数据库
            ProvisioningError: 建表失败
        """
        if self._opened:
            return self
        if self._bootstrap:
            ensure_ready(self._settings)
        self._provider.open()
        self._opened = True
        return self

    def close(self) -> None:
        if self._opened:
            self._provider.close()
            self._opened = False

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def is_open(self) -> bool:
        return self._opened

    @property
    def settings(self) -> PostgresSettings:
        return self._settings

    @property
    def router(self) -> NamespaceRouter:
        return self._router

    @property
    def table_name(self) -> str:
        return self._settings.table_name

    # ---------- 连接作用域 ----------

    @contextmanager
    def _transaction(self, operation: str, details: Dict[str, Any]) -> Iterator[psycopg.Connection]:
        """一个操作一个连接：成功 commit，失败 rollback，始终释放"""
        if not self._opened:
            raise DbConnectionError(
                "配置存储尚未打开，请先调用 open()",
                {"operation": operation},
            )
        with self._provider.connection() as conn:
            try:
                yield conn
                conn.commit()
            except psycopg.Error as e:
                _rollback_quietly(conn)
                raise StorageError(
                    f"{operation}失败: {e}",
                    {**details, "error": str(e)},
                )
            except Exception:
                _rollback_quietly(conn)
                raise

    # ---------- SQL ----------

    def _select_sql(self, path: str) -> sql.Composed:
        query = sql.SQL("SELECT id, config_path, data FROM {table}").format(
            table=sql.Identifier(self.table_name)
        )
        # 空路径不加过滤条件（兼容行为：返回任意一行）
        if path:
            query += sql.SQL(" WHERE config_path = %s")
        return query + sql.SQL(" LIMIT 1")

    def _upsert_sql(self, mode: WriteMode) -> sql.Composed:
        table = sql.Identifier(self.table_name)
        if mode is WriteMode.MERGE:
            new_value = sql.SQL(
                "CASE WHEN json_typeof({table}.data) = 'object'"
                " AND json_typeof(EXCLUDED.data) = 'object'"
                " THEN ({table}.data::jsonb || EXCLUDED.data::jsonb)::json"
                " ELSE EXCLUDED.data END"
            ).format(table=table)
        else:
            new_value = sql.SQL("EXCLUDED.data")
        return sql.SQL(
            "INSERT INTO {table} (config_path, data) VALUES (%s, CAST(%s AS json))"
            " ON CONFLICT ON CONSTRAINT {constraint} DO UPDATE SET data = {new_value}"
        ).format(
            table=table,
            constraint=sql.Identifier(self._settings.constraint_name),
            new_value=new_value,
        )

    def _fetch_entry(self, conn: psycopg.Connection, path: str) -> Optional[ConfigEntry]:
        query = self._select_sql(path)
        params = (path,) if path else ()
        _log_sql(query, params)
        with conn.cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        if row is None:
            return None
        entry_id, config_path, data = row
        return ConfigEntry(
            path=config_path,
            value=data,
            id=str(entry_id) if entry_id is not None else None,
        )

    def _execute_upsert(
        self, conn: psycopg.Connection, path: str, value: Any, mode: WriteMode
    ) -> None:
        query = self._upsert_sql(mode)
        payload = serialize_value(value, path)
        _log_sql(query, (path, payload))
        with conn.cursor() as cur:
            cur.execute(query, (path, payload))

    @staticmethod
    def _check_path(path: Any) -> str:
        if not isinstance(path, str):
            raise ValidationError(
                f"path 必须是字符串: {path!r}",
                {"path_type": type(path).__name__},
            )
        return path

    # ---------- 路径级操作 ----------

    def get_entry(self, path: str) -> Optional[ConfigEntry]:
        """按路径查询一行，不存在返回 None（无副作用）"""
        path = self._check_path(path)
        with self._transaction("查询配置", {"path": path}) as conn:
            return self._fetch_entry(conn, path)

    def get_data(self, path: str, default: Any = None) -> Any:
        """
        读取路径上的值；路径不存在时写入 default 并返回 default

        注意：这是一个会写库的读操作。未提供 default 时存入 JSON null。
        空路径会省略过滤条件，返回表中任意一行（兼容历史行为）。

        Raises:
            StorageError: 查询或写入失败
        """
        path = self._check_path(path)
        logger.debug("get_data path=%s", path)
        with self._transaction("读取配置", {"path": path}) as conn:
            entry = self._fetch_entry(conn, path)
            if entry is not None:
                return entry.value
            logger.debug("路径不存在，写入默认值: %s", path)
            self._execute_upsert(conn, path, default, WriteMode.REPLACE)
            return default

    def upsert(self, path: str, value: Any, mode: WriteMode = WriteMode.REPLACE) -> Any:
        """
        按模式写入路径

        Returns:
            写入的值（MERGE 模式返回传入的增量，而不是合并后的完整文档）

        Raises:
            StorageError: 写入失败
        """
        path = self._check_path(path)
        mode = WriteMode(mode)
        logger.debug("upsert path=%s mode=%s", path, mode.value)
        with self._transaction("写入配置", {"path": path, "mode": mode.value}) as conn:
            self._execute_upsert(conn, path, value, mode)
        return value

    def set_data(self, path: str, value: Any) -> Any:
        """整体覆盖路径上的值"""
        return self.upsert(path, value, WriteMode.REPLACE)

    def update_data(self, path: str, value: Any) -> Any:
        """与已有对象做顶层浅合并；任一侧不是对象时等同 set_data"""
        return self.upsert(path, value, WriteMode.MERGE)

    # ---------- 全局命名空间 ----------

    def get_global_data(self, key: str, default: Any = None) -> Any:
        return self.get_data(self._router.global_path(key), default)

    def set_global_data(self, key: str, value: Any) -> Any:
        return self.set_data(self._router.global_path(key), value)

    def update_global_data(self, key: str, value: Any) -> Any:
        return self.update_data(self._router.global_path(key), value)

    # ---------- 用户命名空间 ----------

    def get_user_data(self, user_id: str, key: str, default: Any = None) -> Any:
        return self.get_data(self._router.user_path(user_id, key), default)

    def set_user_data(self, user_id: str, key: str, value: Any) -> Any:
        return self.set_data(self._router.user_path(user_id, key), value)

    def update_user_data(self, user_id: str, key: str, value: Any) -> Any:
        return self.update_data(self._router.user_path(user_id, key), value)

    def __repr__(self) -> str:
        return (
            f"PostgresConfigurationStore(database={self._settings.database!r}, "
            f"table={self.table_name!r}, open={self._opened})"
        )
