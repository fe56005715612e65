"""
pgconfigstore.connection - 数据库连接提供者

每个存储操作都遵循同一纪律：获取一个连接 -> 执行 -> 释放，
无论是否抛出异常都必须释放。

两种实现共享同一接口（acquire/release/connection），构造时选定一次:
- PooledConnectionProvider: 基于 psycopg_pool.ConnectionPool，store 常规读写使用
- DirectConnectionProvider: 每次 acquire 新建连接、release 时关闭，bootstrap 使用

连接超时等行为继承自驱动配置（connect_timeout），本模块不做重试。
"""

import logging
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg
from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool, PoolTimeout

from .config import PostgresSettings
from .errors import DbConnectionError

logger = logging.getLogger(__name__)


def build_conninfo(settings: PostgresSettings, database: Optional[str] = None) -> str:
    """
    由配置生成 libpq conninfo 字符串

    Args:
        settings: PostgreSQL 配置
        database: 覆盖目标数据库名（bootstrap 连接管理库时使用）
    """
    return make_conninfo(
        host=settings.host or None,
        port=settings.port,
        dbname=database or settings.database,
        user=settings.user or None,
        password=settings.password or None,
        connect_timeout=max(int(settings.connect_timeout), 1),
    )


def mask_conninfo(conninfo: str) -> str:
    """隐藏 conninfo/DSN 中的密码，用于日志输出"""
    masked = re.sub(r"(password\s*=\s*)('[^']*'|\S+)", r"\1***", conninfo)
    return re.sub(r"://([^:/@]+):([^@]+)@", r"://\1:***@", masked)


class ConnectionProvider(ABC):
    """连接能力接口"""

    def __init__(self, conninfo: str):
        self.conninfo = conninfo

    def open(self) -> None:
        """打开底层资源（默认无操作）"""

    def close(self) -> None:
        """关闭底层资源（默认无操作）"""

    @abstractmethod
    def acquire(self) -> psycopg.Connection:
        """获取一个连接"""

    @abstractmethod
    def release(self, conn: psycopg.Connection) -> None:
        """归还/关闭连接"""

    @contextmanager
    def connection(self) -> Iterator[psycopg.Connection]:
        """作用域内持有连接，退出时（含异常路径）保证释放"""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({mask_conninfo(self.conninfo)})"


class DirectConnectionProvider(ConnectionProvider):
    """单次使用连接：acquire 建立新连接，release 关闭"""

    def __init__(self, conninfo: str, autocommit: bool = False):
        super().__init__(conninfo)
        self.autocommit = autocommit

    def acquire(self) -> psycopg.Connection:
        try:
            return psycopg.connect(self.conninfo, autocommit=self.autocommit)
        except psycopg.Error as e:
            raise DbConnectionError(
                f"数据库连接失败: {e}",
                {"conninfo": mask_conninfo(self.conninfo), "error": str(e)},
            )

    def release(self, conn: psycopg.Connection) -> None:
        conn.close()


class PooledConnectionProvider(ConnectionProvider):
    """基于 psycopg_pool 的连接池"""

    def __init__(
        self,
        conninfo: str,
        min_size: int = 1,
        max_size: int = 10,
        timeout: float = 30.0,
    ):
        super().__init__(conninfo)
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self._pool = self._new_pool()

    def _new_pool(self) -> ConnectionPool:
        return ConnectionPool(
            self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            open=False,
        )

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    def open(self) -> None:
        logger.debug("打开连接池: %s", mask_conninfo(self.conninfo))
        self._pool.open()

    def close(self) -> None:
        logger.debug("关闭连接池: %s", mask_conninfo(self.conninfo))
        self._pool.close()
        # 已关闭的 ConnectionPool 不能再次 open，换一个未打开的新池
        self._pool = self._new_pool()

    def acquire(self) -> psycopg.Connection:
        try:
            return self._pool.getconn()
        except PoolTimeout as e:
            raise DbConnectionError(
                f"获取连接池连接超时: {e}",
                {"conninfo": mask_conninfo(self.conninfo), "timeout": self.timeout},
            )
        except psycopg.Error as e:
            raise DbConnectionError(
                f"数据库连接失败: {e}",
                {"conninfo": mask_conninfo(self.conninfo), "error": str(e)},
            )

    def release(self, conn: psycopg.Connection) -> None:
        self._pool.putconn(conn)


def build_provider(
    settings: PostgresSettings,
    database: Optional[str] = None,
    autocommit: bool = False,
) -> ConnectionProvider:
    """
    按配置选定连接提供者

    use_pool=True 时返回连接池；autocommit 连接（bootstrap 的 DDL）总是单次连接。
    """
    conninfo = build_conninfo(settings, database)
    if settings.use_pool and not autocommit:
        return PooledConnectionProvider(
            conninfo,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            timeout=max(settings.connect_timeout, 1.0),
        )
    return DirectConnectionProvider(conninfo, autocommit=autocommit)
