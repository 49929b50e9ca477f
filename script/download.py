import os
import shlex
import common
import unpack
from environment import build_environment, phase_timer
from package_source import package_source, strip_version_prefix


class resolved_archive:
    path: str  # 压缩包路径
    name: str  # 带版本号的包名

    def __init__(self, path: str, name: str) -> None:
        self.path = path
        self.name = name

    def __repr__(self) -> str:
        return f"resolved_archive({self.path!r}, {self.name!r})"


def _exist_echo(name: str) -> None:
    """压缩包已存在时显示提示"""
    print(f"[toolchains] Archive {name} exists, skip download.")


def _retry(env: build_environment, command: str, action: str, cleanup: str | None = None) -> None:
    """运行网络相关命令，失败时重试

    Args:
        env (build_environment): 构建环境
        command (str): 要运行的命令
        action (str): 操作描述，用于错误提示
        cleanup (str | None, optional): 重试前需要删除的路径. 默认不删除.

    Raises:
        RuntimeError: 重试次数用尽后仍然失败
    """
    for _ in range(env.retry + 1):
        try:
            env.run(command)
            break
        except RuntimeError:
            if cleanup:
                common.remove_if_exists(cleanup)
            print(f"[toolchains] {action} failed, retrying.")
    else:
        raise RuntimeError(f"{action} failed after {env.retry + 1} attempts.")


def fetch_archive(env: build_environment, source: package_source) -> resolved_archive:
    """下载压缩包，已存在时跳过

    Args:
        env (build_environment): 构建环境
        source (package_source): 包来源

    Returns:
        resolved_archive: 压缩包路径和包名
    """
    archive = os.path.join(env.source_dir, source.basename)
    # 在下载前检查压缩格式
    unpack.get_uncat(archive)
    if not os.path.exists(archive):
        print(f"[toolchains] Fetching {source.url}...")
        partial = f"{archive}.part"
        with phase_timer() as timer:
            _retry(env, f"wget --no-verbose -c -O {shlex.quote(partial)} {shlex.quote(source.url)}", f"Download {source.basename}")
        print(timer.times)
        common.rename(partial, archive)
    else:
        _exist_echo(source.basename)
    return resolved_archive(archive, unpack.get_name(archive))


def get_git_version(env: build_environment, repo: str) -> str:
    """从最近的标签获取版本号，去除开头的v或V

    Args:
        env (build_environment): 构建环境
        repo (str): git仓库路径

    Returns:
        str: 版本号
    """
    result = env.run(f"git -C {shlex.quote(repo)} describe --tags", capture=True)
    if result is None:
        return "HEAD"
    return strip_version_prefix(result.stdout)


def fetch_git(env: build_environment, source: package_source) -> resolved_archive:
    """克隆或更新git仓库，并将当前版本打包为压缩包

    Args:
        env (build_environment): 构建环境
        source (package_source): 包来源

    Returns:
        resolved_archive: 压缩包路径和包名
    """
    project = source.project_name
    repo = os.path.join(env.source_dir, f"gitrepo-{project}")
    repo_arg = shlex.quote(repo)
    if not os.path.exists(repo):
        _retry(env, f"git clone {shlex.quote(source.url)} {repo_arg}", f"Clone {project}", cleanup=repo)
    elif env.update_repos:
        _retry(env, f"git -C {repo_arg} fetch --all", f"Fetch {project}")
        _retry(env, f"git -C {repo_arg} pull", f"Pull {project}")
    else:
        print(f"[toolchains] Repository {project} exists, skip update.")

    name = f"{project}-{get_git_version(env, repo)}"
    archive = os.path.join(env.source_dir, f"{name}.tar.xz")
    if not os.path.exists(archive):
        partial = f"{archive}.part"
        env.run(f"git -C {repo_arg} archive --format=tar --prefix={shlex.quote(name)}/ HEAD | xz -9 > {shlex.quote(partial)}")
        common.rename(partial, archive)
    else:
        _exist_echo(os.path.basename(archive))
    return resolved_archive(archive, name)


def resolve(env: build_environment, source: package_source) -> resolved_archive:
    """获取包的压缩包和带版本号的包名

    Args:
        env (build_environment): 构建环境
        source (package_source): 包来源

    Returns:
        resolved_archive: 压缩包路径和包名
    """
    if source.is_git:
        return fetch_git(env, source)
    return fetch_archive(env, source)


__all__ = ["resolved_archive", "fetch_archive", "get_git_version", "fetch_git", "resolve"]
