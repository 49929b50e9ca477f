import datetime
import enum
import json
import os
import shlex
import common
from environment import build_environment

ledger_file_name = ".toolchains-ledger.jsonl"


class ledger_type(enum.StrEnum):
    """已完成包记录的存储方式"""

    file = "file"  # prefix中的只追加json lines文件
    git = "git"  # prefix的git仓库中的标签


def get_ledger_key(name: str) -> str:
    """去除包名末尾的.src，如llvm-9.0.1.src对应llvm-9.0.1

    Args:
        name (str): 带版本号的包名

    Returns:
        str: 记录中使用的包名
    """
    return name[: -len(".src")] if name.endswith(".src") else name


@common._support_dry_run(lambda path: f"[toolchains] Append record to {path}.")
def _append_line(path: str, line: str) -> None:
    with open(path, "a") as file:
        file.write(f"{line}\n")


class basic_ledger:
    """已完成包的记录，记录存在的包不会被重新构建"""

    env: build_environment

    def __init__(self, env: build_environment) -> None:
        self.env = env

    def entries(self) -> list[str]:
        """按完成顺序返回所有已记录的包名"""
        raise NotImplementedError

    def has(self, name: str) -> bool:
        """包是否已构建完成

        Args:
            name (str): 带版本号的包名
        """
        return get_ledger_key(name) in self.entries()

    def record(self, name: str, files_changed: int = 0) -> None:
        """记录包已构建完成

        Args:
            name (str): 带版本号的包名
            files_changed (int, optional): 安装时改变的文件数. 默认为0.
        """
        raise NotImplementedError


class file_ledger(basic_ledger):
    path: str  # 记录文件路径

    def __init__(self, env: build_environment, path: str | None = None) -> None:
        super().__init__(env)
        self.path = path or os.path.join(env.prefix, ledger_file_name)

    def entries(self) -> list[str]:
        if not os.path.exists(self.path):
            return []
        name_list: list[str] = []
        with open(self.path) as file:
            for number, line in enumerate(file, 1):
                if not line.strip():
                    continue
                try:
                    name_list.append(json.loads(line)["name"])
                except (ValueError, KeyError, TypeError) as e:
                    raise RuntimeError(f'Invalid record at line {number} of ledger "{self.path}": {e}')
        return name_list

    def record(self, name: str, files_changed: int = 0) -> None:
        key = get_ledger_key(name)
        if self.has(key):
            print(f"[toolchains] {key} has been recorded, skip record.")
            return
        line = json.dumps(
            {
                "name": key,
                "files_changed": files_changed,
                "time": datetime.datetime.now().astimezone().isoformat(timespec="seconds"),
            }
        )
        if self.env.sudo.enabled:
            tee = self.env.elevate(f"tee -a {shlex.quote(self.path)}")
            self.env.run(f"echo {shlex.quote(line)} | {tee} > /dev/null")
        else:
            _append_line(self.path, line)


class git_ledger(basic_ledger):
    """使用prefix的git仓库中的标签作为记录"""

    def _has_repository(self) -> bool:
        return os.path.exists(os.path.join(self.env.prefix, ".git"))

    def entries(self) -> list[str]:
        if not self._has_repository():
            return []
        prefix = shlex.quote(self.env.prefix)
        result = self.env.run(f"git -C {prefix} for-each-ref --sort=creatordate --format='%(refname:short)' refs/tags", capture=True, elevate=True)
        if result is None:
            return []
        return result.stdout.split()

    def record(self, name: str, files_changed: int = 0) -> None:
        key = get_ledger_key(name)
        if not self.has(key):
            self.env.run(f"git -C {shlex.quote(self.env.prefix)} tag {shlex.quote(key)}", elevate=True)


def create_ledger(env: build_environment, type: ledger_type) -> basic_ledger:
    """根据存储方式创建记录

    Args:
        env (build_environment): 构建环境
        type (ledger_type): 存储方式
    """
    match type:
        case ledger_type.file:
            return file_ledger(env)
        case ledger_type.git:
            return git_ledger(env)


__all__ = ["ledger_file_name", "ledger_type", "get_ledger_key", "basic_ledger", "file_ledger", "git_ledger", "create_ledger"]
