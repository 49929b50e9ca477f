import functools
import os
import sys
import shutil
import json
import argparse
import inspect
import subprocess
from collections.abc import Callable
from typing import ParamSpec, TypeVar


class fatal_error(RuntimeError):
    """无法继续构建时抛出的异常，会中止整个构建流程"""


class command_dry_run:
    """是否只显示命令而不实际执行"""

    _dry_run: bool = False

    @classmethod
    def get(cls) -> bool:
        return cls._dry_run

    @classmethod
    def set(cls, dry_run: bool) -> None:
        cls._dry_run = dry_run


P = ParamSpec("P")
R = TypeVar("R")


def _support_dry_run(echo_fn: Callable[..., str | None] | None = None) -> Callable[[Callable[P, R]], Callable[P, R | None]]:
    """根据dry_run参数和command_dry_run中的全局状态确定是否只回显命令而不执行，若fn没有dry_run参数则只会使用全局状态

    Args:
        echo_fn (Callable[..., str | None] | None, optional): 回调函数，返回要显示的命令字符串或None，无回调或返回None时不显示命令，所有参数需要能在主函数的参数列表中找到，默认为无回调.
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R | None]:
        signature = inspect.signature(fn)

        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R | None:
            bound_args = signature.bind(*args, **kwargs)
            bound_args.apply_defaults()
            if echo_fn:
                param_list: list = []
                for key in inspect.signature(echo_fn).parameters.keys():
                    assert (
                        key in bound_args.arguments
                    ), f"The param {key} of echo_fn is not in the param list of fn. Every param of echo_fn should be able to find in the param list of fn."
                    param_list.append(bound_args.arguments[key])
                echo = echo_fn(*param_list)
                if echo is not None:
                    print(echo)
            dry_run: bool | None = bound_args.arguments.get("dry_run")
            assert isinstance(dry_run, bool | None), f"The param dry_run must be a bool or None."
            if dry_run is None and command_dry_run.get() or dry_run:
                return
            return fn(*bound_args.args, **bound_args.kwargs)

        return wrapper

    return decorator


def _command_echo(command: str, cwd: str | None) -> str:
    return f"[toolchains] Run command: {command}" + (f" (in {cwd})" if cwd else "")


@_support_dry_run(lambda command, cwd, echo: _command_echo(command, cwd) if echo else None)
def run_command(
    command: str,
    ignore_error: bool = False,
    capture: bool = False,
    echo: bool = True,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    dry_run: bool | None = None,
) -> subprocess.CompletedProcess[str] | None:
    """运行指定命令, 若不忽略错误, 则在命令执行出错时抛出RuntimeError, 反之打印错误码

    Args:
        command (str): 要运行的命令
        ignore_error (bool, optional): 是否忽略错误. 默认不忽略错误.
        capture (bool, optional): 是否捕获命令输出，默认为不捕获.
        echo (bool, optional): 是否回显信息，设置为False将不回显任何信息，包括错误提示，默认为回显.
        cwd (str | None, optional): 命令的工作目录，默认为当前目录.
        env (dict[str, str] | None, optional): 命令的环境变量，默认继承当前进程.
        dry_run (bool | None, optional): 是否只回显命令而不执行，默认为None.

    Raises:
        RuntimeError: 命令执行失败且ignore_error为False时抛出异常

    Returns:
        None | subprocess.CompletedProcess[str]: 在命令正常执行结束后返回执行结果，否则返回None
    """

    if capture:
        pipe = subprocess.PIPE  # capture为True，不论是否回显都需要捕获输出
    elif echo:
        pipe = None  # 回显而不捕获输出则正常输出
    else:
        pipe = subprocess.DEVNULL  # 不回显又不捕获输出则丢弃输出
    try:
        result = subprocess.run(command, stdout=pipe, stderr=pipe, shell=True, check=True, text=True, cwd=cwd, env=env)
    except subprocess.CalledProcessError as e:
        if not ignore_error:
            raise RuntimeError(f'Command "{command}" failed.')
        elif echo:
            print(f'Command "{command}" failed with errno={e.returncode}, but it is ignored.')
        return None
    return result


@_support_dry_run(_command_echo)
def log_command(
    command: str,
    log_path: str,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    append: bool = False,
    echo_output: bool = False,
    dry_run: bool | None = None,
) -> int | None:
    """运行指定命令并将标准输出和标准错误写入日志文件，不会因命令失败而抛出异常

    Args:
        command (str): 要运行的命令
        log_path (str): 日志文件路径
        cwd (str | None, optional): 命令的工作目录，默认为当前目录.
        env (dict[str, str] | None, optional): 命令的环境变量，默认继承当前进程.
        append (bool, optional): 是否追加到已有日志，默认覆盖.
        echo_output (bool, optional): 是否同时将输出显示到标准错误，默认不显示.
        dry_run (bool | None, optional): 是否只回显命令而不执行，默认为None.

    Returns:
        int | None: 命令的返回值，dry run时返回None
    """
    with open(log_path, "a" if append else "w") as log_file:
        process = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            shell=True,
            text=True,
            errors="replace",
            cwd=cwd,
            env=env,
        )
        assert process.stdout
        for line in process.stdout:
            log_file.write(line)
            if echo_output:
                sys.stderr.write(line)
        return process.wait()


@_support_dry_run(lambda path: f"[toolchains] Create directory {path}.")
def mkdir(path: str, remove_if_exist=True, dry_run: bool | None = None) -> None:
    """创建目录

    Args:
        path (str): 要创建的目录
        remove_if_exist (bool, optional): 是否先删除已存在的同名目录. 默认先删除已存在的同名目录.
        dry_run (bool | None, optional): 是否只回显命令而不执行，默认为None.
    """
    if remove_if_exist and os.path.exists(path):
        shutil.rmtree(path)
    os.makedirs(path, exist_ok=True)


@_support_dry_run(lambda path: f"[toolchains] Remove {path}.")
def remove(path: str, dry_run: bool | None = None) -> None:
    """删除指定路径

    Args:
        path (str): 要删除的路径
        dry_run (bool | None, optional): 是否只回显命令而不执行，默认为None.
    """
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.remove(path)


@_support_dry_run(lambda path: f"[toolchains] Remove {path} if path exists.")
def remove_if_exists(path: str, dry_run: bool | None = None) -> None:
    """如果指定路径存在则删除指定路径

    Args:
        path (str): 要删除的路径
        dry_run (bool | None, optional): 是否只回显命令而不执行，默认为None.
    """
    if os.path.lexists(path):
        remove(path)


@_support_dry_run(lambda src, dst: f"[toolchains] Rename {src} -> {dst}.")
def rename(src: str, dst: str, dry_run: bool | None = None) -> None:
    """重命名指定路径

    Args:
        src (str): 源路径
        dst (str): 目标路径
        dry_run (bool | None, optional): 是否只回显命令而不执行，默认为None.
    """
    os.rename(src, dst)


def env_flag(name: str, default: bool) -> bool:
    """读取取值为0或1的环境变量开关

    Args:
        name (str): 环境变量名
        default (bool): 环境变量不存在时的默认值

    Returns:
        bool: 开关状态
    """
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in ("0", "no", "false", "off")


class basic_configure:
    """所有命令行配置的基类，负责命令行参数绑定以及配置文件的导入导出"""

    @staticmethod
    def add_argument(parser: argparse.ArgumentParser) -> None:
        """为argparse添加--export、--import和--dry-run选项

        Args:
            parser (argparse.ArgumentParser): 命令行解析器
        """
        parser.add_argument("--export", dest="export_file", type=str, help="Export settings to specific file.")
        parser.add_argument("--import", dest="import_file", type=str, help="Import settings from specific file.")
        parser.add_argument(
            "--dry-run",
            dest="dry_run",
            action=argparse.BooleanOptionalAction,
            help="Preview the commands without actually executing them.",
            default=False,
        )

    @classmethod
    def parse_args(cls, args: argparse.Namespace):
        """用命令行参数中与__init__同名的值构造配置"""
        command_dry_run.set(args.dry_run)
        arg_list = vars(args)
        param_list = list(inspect.signature(cls.__init__).parameters)[1:]
        missing_list = [param for param in param_list if param not in arg_list]
        assert not missing_list, f"Options {', '.join(missing_list)} are not registered in the argument parser."
        return cls(*(arg_list[param] for param in param_list))

    def save_config(self, export_file: str | None) -> None:
        """将配置以json格式写入文件，未指定文件时什么也不做

        Args:
            export_file (str | None): 导出文件路径
        """
        if not export_file:
            return
        with open(export_file, "w") as file:
            json.dump(vars(self), file, indent=4)
        print(f'[toolchains] Settings have been written to file "{export_file}"')

    def load_config(self, import_file: str | None) -> None:
        """从json文件导入配置，命令行中显式指定的值优先

        Args:
            import_file (str | None): 导入文件路径，未指定时什么也不做

        Raises:
            RuntimeError: 文件无法解析或不是json对象
        """
        if not import_file:
            return
        try:
            with open(import_file) as file:
                imported = json.load(file)
        except (OSError, ValueError) as e:
            raise RuntimeError(f'Import file "{import_file}" failed: {e}')
        if not isinstance(imported, dict):
            raise RuntimeError(f'Invalid configure file "{import_file}".')

        default = vars(type(self)())
        for key, value in list(vars(self).items()):
            # 仍为默认值的选项视为未指定，由导入的值覆盖
            if key in imported and value == default[key]:
                setattr(self, key, imported[key])
        print(f'[toolchains] Settings have been loaded from file "{import_file}"')


assert __name__ != "__main__", "Import this file instead of running it directly."
