"""
pgconfigstore.cli - 命令行入口

约定:
- stdout 输出结构化 JSON: 成功 {ok: true, ...}，失败 {ok: false, code, message, detail}
- 失败时以错误对应的 exit code 退出
- 日志输出到 stderr，级别取自配置文件 [logging].level（--verbose 强制 DEBUG）

示例:
    pgconfigstore init --config ./config.toml
    pgconfigstore set theme '"dark"'
    pgconfigstore update profile '{"age": 26}' --scope user --user-id 1234
    pgconfigstore get profile --scope user --user-id 1234 --default '{}'
"""

import json
import logging
from enum import Enum
from typing import Any, Callable, Optional

import typer

from .bootstrap import ensure_ready
from .config import AppConfig, get_config
from .errors import ConfigStoreError, ValidationError, make_success_result
from .store import PostgresConfigurationStore, WriteMode

app = typer.Typer(add_completion=False, help="PostgreSQL 配置存储命令")


class Scope(str, Enum):
    GLOBAL = "global"
    USER = "user"
    PATH = "path"


def _emit_json(data: dict, exit_code: int = 0) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, default=str))
    raise typer.Exit(code=exit_code)


def _load_app_config(config_path: Optional[str], verbose: bool) -> AppConfig:
    app_config = get_config(config_path, reload=True).to_app_config()
    logging.basicConfig(
        level=logging.DEBUG if verbose else app_config.logging.level,
        format=app_config.logging.format,
    )
    return app_config


def _parse_json_arg(raw: Optional[str], name: str) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(
            f"{name} 不是合法的 JSON: {e}",
            {"argument": name, "value": raw},
        )


def _resolve_path(store: PostgresConfigurationStore, scope: Scope, key: str, user_id: Optional[str]) -> str:
    if scope is Scope.GLOBAL:
        return store.router.global_path(key)
    if scope is Scope.USER:
        if not user_id:
            raise ValidationError("--scope user 需要 --user-id", {"scope": scope.value})
        return store.router.user_path(user_id, key)
    return key


def _run(
    config_path: Optional[str],
    verbose: bool,
    action: Callable[[PostgresConfigurationStore], dict],
) -> None:
    try:
        app_config = _load_app_config(config_path, verbose)
        store = PostgresConfigurationStore(
            app_config.postgres,
            namespaces=app_config.namespaces,
        )
        with store:
            result = action(store)
    except ConfigStoreError as e:
        _emit_json(e.to_dict(), exit_code=e.exit_code)
    _emit_json(make_success_result(**result))


ConfigOption = typer.Option(None, "--config", "-c", help="配置文件路径")
VerboseOption = typer.Option(False, "--verbose", "-v", help="输出 DEBUG 日志")
ScopeOption = typer.Option(Scope.GLOBAL, "--scope", help="命名空间: global/user/path")
UserIdOption = typer.Option(None, "--user-id", help="用户 ID（--scope user 时必填）")


@app.command("init")
def init_command(
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """确保目标数据库与配置表存在"""
    try:
        app_config = _load_app_config(config, verbose)
        result = ensure_ready(app_config.postgres)
    except ConfigStoreError as e:
        _emit_json(e.to_dict(), exit_code=e.exit_code)
    _emit_json(result)


@app.command("get")
def get_command(
    key: str = typer.Argument(..., help="键或完整路径"),
    default: Optional[str] = typer.Option(None, "--default", help="默认值（JSON），路径不存在时写入"),
    scope: Scope = ScopeOption,
    user_id: Optional[str] = UserIdOption,
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """读取值（路径不存在时会写入默认值）"""

    def action(store: PostgresConfigurationStore) -> dict:
        path = _resolve_path(store, scope, key, user_id)
        value = store.get_data(path, _parse_json_arg(default, "--default"))
        return {"path": path, "value": value}

    _run(config, verbose, action)


def _write(mode: WriteMode, key: str, value: str, scope: Scope, user_id: Optional[str], config, verbose) -> None:
    def action(store: PostgresConfigurationStore) -> dict:
        path = _resolve_path(store, scope, key, user_id)
        written = store.upsert(path, _parse_json_arg(value, "VALUE"), mode)
        return {"path": path, "mode": mode.value, "value": written}

    _run(config, verbose, action)


@app.command("set")
def set_command(
    key: str = typer.Argument(..., help="键或完整路径"),
    value: str = typer.Argument(..., help="值（JSON）"),
    scope: Scope = ScopeOption,
    user_id: Optional[str] = UserIdOption,
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """整体覆盖路径上的值"""
    _write(WriteMode.REPLACE, key, value, scope, user_id, config, verbose)


@app.command("update")
def update_command(
    key: str = typer.Argument(..., help="键或完整路径"),
    value: str = typer.Argument(..., help="值（JSON）"),
    scope: Scope = ScopeOption,
    user_id: Optional[str] = UserIdOption,
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """与已有对象做顶层浅合并"""
    _write(WriteMode.MERGE, key, value, scope, user_id, config, verbose)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
