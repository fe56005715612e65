"""
pgconfigstore.bootstrap - 目标数据库与配置表的幂等初始化

执行步骤:
    1. 以 autocommit 单次连接连上管理库（default_database，默认 postgres）
    2. 在 pg_database 中按小写名称查找目标数据库
    3. 不存在则 CREATE DATABASE <name> TEMPLATE template0
       （失败只记 warning 不抛出，覆盖并发进程抢先创建的情况）
    4. 连上目标数据库，执行 CREATE TABLE IF NOT EXISTS

失败语义:
    - 步骤 1/4 连接失败: DbConnectionError，store 不可用
    - 步骤 2 查询失败或步骤 4 建表失败（"已存在" 除外）: ProvisioningError
    - 步骤 3 失败: 不致命

两个连接各自独立获取、释放。所有标识符都经 psycopg.sql.Identifier 引用。
"""

import logging
from typing import Any, Dict, Optional

import psycopg
from psycopg import errors as pg_errors
from psycopg import sql

from .config import PostgresSettings
from .connection import ConnectionProvider, DirectConnectionProvider, build_conninfo
from .errors import ProvisioningError

logger = logging.getLogger(__name__)

# 建表并发竞争时可能出现的 "已存在" 类错误
ALREADY_EXISTS_ERRORS = (
    pg_errors.DuplicateTable,
    pg_errors.DuplicateObject,
    pg_errors.UniqueViolation,
)


def build_create_table_sql(settings: PostgresSettings) -> sql.Composed:
    """配置表 DDL（可在每次进程启动时重复执行）"""
    return sql.SQL(
        """
        CREATE TABLE IF NOT EXISTS {table} (
            id uuid NOT NULL DEFAULT gen_random_uuid(),
            config_path varchar NOT NULL,
            "data" json NULL,
            CONSTRAINT {pk} PRIMARY KEY (id),
            CONSTRAINT {un} UNIQUE (config_path)
        )
        """
    ).format(
        table=sql.Identifier(settings.table_name),
        pk=sql.Identifier(settings.primary_key_name),
        un=sql.Identifier(settings.constraint_name),
    )


def check_database_exists(conn: psycopg.Connection, db_name: str) -> bool:
    """检测数据库是否存在（名称大小写不敏感）"""
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT 1 FROM pg_database WHERE lower(datname) = %s",
                (db_name.lower(),),
            )
            return cur.fetchone() is not None
    except psycopg.Error as e:
        raise ProvisioningError(
            f"检测数据库存在性失败: {e}",
            {"database": db_name, "error": str(e)},
        )


def create_database(conn: psycopg.Connection, db_name: str) -> bool:
    """
    创建数据库（conn 必须是 autocommit 连接）

    Returns:
        True 表示本次创建成功；False 表示创建失败（已记录 warning）
    """
    statement = sql.SQL("CREATE DATABASE {} TEMPLATE template0").format(sql.Identifier(db_name))
    logger.info("创建数据库: %s", db_name)
    try:
        with conn.cursor() as cur:
            cur.execute(statement)
    except psycopg.Error as e:
        logger.warning("数据库创建失败（忽略）: %s: %s", db_name, e)
        return False
    return True


def ensure_table(conn: psycopg.Connection, settings: PostgresSettings) -> None:
    """
    在 conn 所在数据库中创建配置表（如不存在）

    Raises:
        ProvisioningError: 建表失败且不是 "已存在" 类错误
    """
    table_name = settings.table_name
    statement = build_create_table_sql(settings)
    try:
        with conn.cursor() as cur:
            cur.execute(statement)
        if not conn.autocommit:
            conn.commit()
    except ALREADY_EXISTS_ERRORS as e:
        if not conn.autocommit:
            conn.rollback()
        logger.warning("配置表已由其他进程创建: %s: %s", table_name, e)
    except psycopg.Error as e:
        if not conn.autocommit:
            conn.rollback()
        raise ProvisioningError(
            f"创建配置表失败: {e}",
            {"table": table_name, "error": str(e)},
        )


def ensure_ready(
    settings: PostgresSettings,
    admin_provider: Optional[ConnectionProvider] = None,
    target_provider: Optional[ConnectionProvider] = None,
) -> Dict[str, Any]:
    """
    确保目标数据库和配置表存在

    Args:
        settings: PostgreSQL 配置
        admin_provider: 管理库连接提供者（默认 autocommit 单次连接）
        target_provider: 目标库连接提供者（默认 autocommit 单次连接）

    Returns:
        {ok, database, created, table}

    Raises:
        DbConnectionError: 无法连接管理库或目标库
        ProvisioningError: 建表失败
    """
    if admin_provider is None:
        admin_provider = DirectConnectionProvider(
            build_conninfo(settings, settings.default_database), autocommit=True
        )
    if target_provider is None:
        target_provider = DirectConnectionProvider(build_conninfo(settings), autocommit=True)

    created = False
    with admin_provider.connection() as conn:
        if check_database_exists(conn, settings.database):
            logger.debug("数据库 %s 已存在", settings.database)
        else:
            created = create_database(conn, settings.database)

    with target_provider.connection() as conn:
        ensure_table(conn, settings)
    logger.info("配置表就绪: %s.%s", settings.database, settings.table_name)

    return {
        "ok": True,
        "database": settings.database,
        "created": created,
        "table": settings.table_name,
    }
