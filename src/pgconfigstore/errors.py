"""
pgconfigstore.errors - 错误定义模块

定义配置存储可能抛出的异常类型，统一错误码和错误消息格式。

退出码约定:
    0   - 成功
    1   - 通用错误 (CONFIGSTORE_ERROR)
    2   - 配置错误 (CONFIG_ERROR)
    3   - 数据库错误 (DATABASE_ERROR)
    6   - 校验错误 (VALIDATION_ERROR)

传播策略:
    所有错误都直接抛给调用方，不做自动重试；
    唯一被吞掉的是 bootstrap 阶段 CREATE DATABASE 失败（记录 warning）。
"""

from typing import Any, Dict, Optional

# =============================================================================
# 退出码枚举
# =============================================================================


class ExitCode:
    """退出码常量"""

    SUCCESS = 0
    CONFIGSTORE_ERROR = 1
    CONFIG_ERROR = 2
    DATABASE_ERROR = 3
    VALIDATION_ERROR = 6


# =============================================================================
# 基础异常类
# =============================================================================


class ConfigStoreError(Exception):
    """pgconfigstore 基础异常类"""

    exit_code: int = ExitCode.CONFIGSTORE_ERROR
    error_type: str = "CONFIGSTORE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        转换为可序列化的字典格式

        格式: {ok: false, code: str, message: str, detail: dict}
        """
        return make_error_result(self.error_type, self.message, self.details)


# =============================================================================
# 配置相关错误 (exit_code = 2)
# =============================================================================


class ConfigError(ConfigStoreError):
    """配置相关错误"""

    exit_code = ExitCode.CONFIG_ERROR
    error_type = "CONFIG_ERROR"


class ConfigurationMissingError(ConfigError):
    """初始化时未提供连接参数，存储不可用"""

    error_type = "CONFIGURATION_MISSING"


class ConfigNotFoundError(ConfigError):
    """配置文件未找到"""

    error_type = "CONFIG_NOT_FOUND"


class ConfigParseError(ConfigError):
    """配置文件解析错误"""

    error_type = "CONFIG_PARSE_ERROR"


# =============================================================================
# 数据库相关错误 (exit_code = 3)
# =============================================================================


class DatabaseError(ConfigStoreError):
    """数据库相关错误"""

    exit_code = ExitCode.DATABASE_ERROR
    error_type = "DATABASE_ERROR"


class DbConnectionError(DatabaseError):
    """数据库连接错误"""

    error_type = "CONNECTION_ERROR"


class ProvisioningError(DatabaseError):
    """建表/建约束失败（"已存在" 以外的原因）"""

    error_type = "PROVISIONING_ERROR"


class StorageError(DatabaseError):
    """读写查询失败"""

    error_type = "STORAGE_ERROR"


# =============================================================================
# 校验错误 (exit_code = 6)
# =============================================================================


class ValidationError(ConfigStoreError):
    """输入验证错误"""

    exit_code = ExitCode.VALIDATION_ERROR
    error_type = "VALIDATION_ERROR"


# =============================================================================
# 工具函数
# =============================================================================


def make_success_result(**kwargs) -> Dict[str, Any]:
    """
    构造成功结果

    Returns:
        {ok: true, ...kwargs}
    """
    return {"ok": True, **kwargs}


def make_error_result(
    code: str, message: str, detail: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    构造错误结果

    Returns:
        {ok: false, code, message, detail}
    """
    return {
        "ok": False,
        "code": code,
        "message": message,
        "detail": detail or {},
    }
