import os
import shlex
import common
from environment import phase_timer
from package_source import strip_archive_suffix

# 压缩包后缀及对应的解压命令
uncat_list: dict[str, str] = {
    ".tar.gz": "zcat",
    ".tgz": "zcat",
    ".tar.xz": "xzcat",
    ".tar.bz2": "bzcat",
}


def get_uncat(archive: str) -> str:
    """根据压缩包后缀选择解压命令

    Args:
        archive (str): 压缩包路径

    Raises:
        common.fatal_error: 未知的压缩格式

    Returns:
        str: 将压缩包解压到标准输出的命令
    """
    for suffix, uncat in uncat_list.items():
        if archive.endswith(suffix):
            return uncat
    raise common.fatal_error(f'Unknown compression format of archive "{archive}".')


def get_top_level_list(path_list: list[str]) -> list[str]:
    """获取路径列表中所有不同的顶层目录，保持出现的顺序"""
    top_level_list: list[str] = []
    for path in path_list:
        path = path.strip()
        if path.startswith("./"):
            path = path[2:]
        top_level = path.split("/", 1)[0]
        if top_level and top_level not in top_level_list:
            top_level_list.append(top_level)
    return top_level_list


def get_name(archive: str) -> str:
    """读取压缩包中第一个路径的顶层目录名，即包名

    Args:
        archive (str): 压缩包路径

    Returns:
        str: 包名
    """
    uncat = get_uncat(archive)
    result = common.run_command(f"{uncat} {shlex.quote(archive)} | tar -tf - | head -n 1", capture=True, echo=False)
    if result is None:
        # dry run时压缩包可能不存在，从文件名推断
        return strip_archive_suffix(archive)
    name_list = get_top_level_list(result.stdout.splitlines())
    if not name_list:
        raise RuntimeError(f'Cannot read the name of archive "{archive}".')
    return name_list[0]


def unpack(archive: str, dest_dir: str) -> str:
    """将压缩包解压到指定目录

    Args:
        archive (str): 压缩包路径
        dest_dir (str): 解压目录

    Returns:
        str: 解压得到的顶层目录名
    """
    uncat = get_uncat(archive)
    print(f"[toolchains] Unpacking {os.path.basename(archive)}...")
    command = f"{uncat} {shlex.quote(archive)} | tar -C {shlex.quote(dest_dir)} -xvf -"
    with phase_timer() as timer:
        result = common.run_command(command, capture=True)
    print(timer.times)
    if result is None:
        return strip_archive_suffix(archive)
    name_list = get_top_level_list(result.stdout.splitlines())
    if not name_list:
        raise RuntimeError(f'Archive "{archive}" is empty.')
    if len(name_list) > 1:
        print(f"[toolchains] Archive {os.path.basename(archive)} has multiple top level entries: {' '.join(name_list)}, use {name_list[0]}.")
    return name_list[0]


__all__ = ["uncat_list", "get_uncat", "get_top_level_list", "get_name", "unpack"]
