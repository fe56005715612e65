"""
pgconfigstore.paths - 路径编码与命名空间

路径以原样作为唯一键存储（config_path 列），这里只负责斜杠规范化:
- 去掉首尾 "/"
- 合并连续的 "/"

命名空间:
- 全局: <global_root>/<key>，默认 internal/global
- 用户: <user_root>/<user_id>/<key>，默认 internal/user
"""

from dataclasses import dataclass

from .config import DEFAULT_GLOBAL_ROOT, DEFAULT_USER_ROOT, NamespaceSettings
from .errors import ValidationError

SEPARATOR = "/"


def normalize_path(path: str) -> str:
    """将路径规范化为存储键；已规范的路径原样返回"""
    if path is None:
        raise ValidationError("path 不能为 None")
    return SEPARATOR.join(segment for segment in str(path).split(SEPARATOR) if segment)


def join_path(*segments: str) -> str:
    """拼接路径段，避免重复或缺失的 "/"；空段被忽略"""
    parts = []
    for segment in segments:
        if segment is None:
            continue
        normalized = normalize_path(segment)
        if normalized:
            parts.append(normalized)
    return SEPARATOR.join(parts)


@dataclass(frozen=True)
class NamespaceRouter:
    """为全局/用户命名空间生成完整路径"""

    global_root: str = DEFAULT_GLOBAL_ROOT
    user_root: str = DEFAULT_USER_ROOT

    @classmethod
    def from_settings(cls, settings: NamespaceSettings) -> "NamespaceRouter":
        return cls(global_root=settings.global_root, user_root=settings.user_root)

    def global_path(self, key: str) -> str:
        return join_path(self.global_root, key)

    def user_path(self, user_id: str, key: str) -> str:
        # user_id 中出现 "/" 会让不同用户的路径互相覆盖
        user_id = str(user_id) if user_id is not None else ""
        if not user_id or SEPARATOR in user_id:
            raise ValidationError(
                f"user_id 无效: {user_id!r}",
                {"user_id": user_id, "reason": "不能为空且不能包含 '/'"},
            )
        return join_path(self.user_root, user_id, key)
