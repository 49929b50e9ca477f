import os
import shlex
import psutil
from environment import build_environment
from ledger import ledger_file_name

doc_dir_list = ("man", "info", "doc")  # share下需要压缩的文档目录
compressed_suffix_list = (".gz", ".xz", ".bz2", ".lzma", ".zst", ".Z")
batch_size = 256  # 每条xz命令压缩的文件数


def plan_doc_compression(prefix: str, threshold: int) -> tuple[list[str], list[tuple[str, str, str]]]:
    """查找需要压缩的文档以及指向这些文档的软链接

    Args:
        prefix (str): 安装目录
        threshold (int): 需要压缩的最小文件大小，单位为字节

    Returns:
        tuple[list[str], list[tuple[str, str, str]]]: 需要压缩的文件列表，以及(软链接, 新软链接, 新链接目标)列表
    """
    file_list: list[str] = []
    link_list: list[str] = []
    for doc in doc_dir_list:
        root = os.path.join(prefix, "share", doc)
        if not os.path.isdir(root):
            continue
        for dir, _, file_name_list in os.walk(root):
            for file in sorted(file_name_list):
                path = os.path.join(dir, file)
                if file.endswith(compressed_suffix_list):
                    continue
                if os.path.islink(path):
                    link_list.append(path)
                elif os.path.isfile(path) and os.path.getsize(path) >= threshold:
                    file_list.append(path)

    file_set = set(file_list)
    relink_list: list[tuple[str, str, str]] = []
    for link in link_list:
        target = os.readlink(link)
        if os.path.normpath(os.path.join(os.path.dirname(link), target)) in file_set:
            relink_list.append((link, f"{link}.xz", f"{target}.xz"))
    return file_list, relink_list


class snapshot:
    """将安装目录作为git仓库，每安装完一个包提交一次并打上标签"""

    env: build_environment
    compress_docs: bool  # 是否压缩文档
    doc_compress_threshold: int  # 需要压缩的最小文档大小

    def __init__(self, env: build_environment, compress_docs: bool = False, doc_compress_threshold: int = 16384) -> None:
        self.env = env
        self.compress_docs = compress_docs
        self.doc_compress_threshold = doc_compress_threshold

    @property
    def git(self) -> str:
        return f"git -C {shlex.quote(self.env.prefix)}"

    def init(self) -> None:
        """在安装目录中初始化git仓库，并忽略记录文件"""
        if os.path.exists(os.path.join(self.env.prefix, ".git")):
            return
        self.env.run(f"git init -q {shlex.quote(self.env.prefix)}", elevate=True)
        exclude_path = shlex.quote(os.path.join(self.env.prefix, ".git", "info", "exclude"))
        self.env.run(f"echo /{ledger_file_name} | {self.env.elevate(f'tee -a {exclude_path}')} > /dev/null")

    # 安装目录由sudo创建时属于root，git拒绝普通用户读取其中的仓库，读取也需要提权
    def _has_tag(self, name: str) -> bool:
        result = self.env.run(f"{self.git} tag -l {shlex.quote(name)}", capture=True, elevate=True)
        return result is not None and name in result.stdout.split()

    def _staged_count(self) -> int:
        result = self.env.run(f"{self.git} diff --cached --name-only", capture=True, elevate=True)
        return len(result.stdout.splitlines()) if result is not None else 0

    def commit(self, name: str) -> int:
        """提交安装目录中所有改变的文件，并以包名打上标签

        Args:
            name (str): 带版本号的包名

        Returns:
            int: 改变的文件数
        """
        self.env.run(f"{self.git} add -A", elevate=True)
        files_changed = self._staged_count()
        self.env.run(f"{self.git} commit -q --allow-empty -m {shlex.quote(name)}", elevate=True)
        if self._has_tag(name):
            print(f"[toolchains] Tag {name} exists, skip tagging.")
        else:
            self.env.run(f"{self.git} tag {shlex.quote(name)}", elevate=True)
        print(f"[toolchains] Committed {name}: {files_changed} files changed.")
        if self.compress_docs:
            self.compress_doc(name)
        return files_changed

    def compress_doc(self, name: str) -> int:
        """压缩较大的文档并重定向指向它们的软链接，作为单独的提交

        Args:
            name (str): 带版本号的包名

        Returns:
            int: 压缩的文件数
        """
        file_list, relink_list = plan_doc_compression(self.env.prefix, self.doc_compress_threshold)
        if not file_list:
            return 0
        memory_MB = max(psutil.virtual_memory().available // 2097152, 64)
        for i in range(0, len(file_list), batch_size):
            files = " ".join(shlex.quote(file) for file in file_list[i : i + batch_size])
            self.env.run(f"xz -f -9 -T 0 --memlimit={memory_MB}MiB {files}", elevate=True)
        for link, new_link, new_target in relink_list:
            self.env.run(f"ln -sfn {shlex.quote(new_target)} {shlex.quote(new_link)}", elevate=True)
            self.env.run(f"rm -f {shlex.quote(link)}", elevate=True)
        self.env.run(f"{self.git} add -A", elevate=True)
        self.env.run(f"{self.git} commit -q -m {shlex.quote(f'{name}: compress documentation')}", elevate=True)
        print(f"[toolchains] Compressed {len(file_list)} documents of {name}.")
        return len(file_list)


__all__ = ["plan_doc_compression", "snapshot"]
