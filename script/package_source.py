import enum
import os
import typing


class package_kind(enum.StrEnum):
    """包类别，每个类别对应一个构建流程，download_only只下载解压而不构建"""

    zlib = "zlib"
    xz = "xz"
    gmp = "gmp"
    mpfr = "mpfr"
    mpc = "mpc"
    isl = "isl"
    guile = "guile"
    autogen = "autogen"
    binutils = "binutils"
    gcc = "gcc"
    llvm = "llvm"
    vim = "vim"
    download_only = "download_only"


class package_version(enum.StrEnum):
    zlib = "1.2.11"
    xz = "5.2.5"
    gmp = "6.1.0"
    mpfr = "3.1.4"
    mpc = "1.0.3"
    isl = "0.18"
    guile = "2.0.14"
    autogen = "5.18.7"
    binutils = "2.34"
    gcc = "9.3.0"
    llvm = "9.0.1"


# 支持的压缩包后缀
archive_suffix_list = (".tar.gz", ".tgz", ".tar.xz", ".tar.bz2")


class package_source:
    url: str  # 下载地址或git仓库地址
    kind: package_kind  # 包类别

    def __init__(self, url: str, kind: package_kind) -> None:
        self.url = url
        self.kind = kind

    @property
    def is_git(self) -> bool:
        """是否是git托管的包"""
        return self.url.endswith(".git") or self.url.startswith(("git@", "git://"))

    @property
    def basename(self) -> str:
        return os.path.basename(self.url.rstrip("/"))

    @property
    def project_name(self) -> str:
        """git仓库的项目名，如https://github.com/vim/vim.git对应vim"""
        name = self.basename
        return name[: -len(".git")] if name.endswith(".git") else name

    def __repr__(self) -> str:
        return f"package_source({self.url!r}, {self.kind})"


def strip_archive_suffix(archive: str) -> str:
    """去除压缩包的后缀，用于在无法读取压缩包时推断包名

    Args:
        archive (str): 压缩包文件名

    Returns:
        str: 去除后缀后的文件名
    """
    name = os.path.basename(archive)
    for suffix in archive_suffix_list:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def strip_version_prefix(tag: str) -> str:
    """去除git标签开头的v或V

    Args:
        tag (str): git describe输出的标签

    Returns:
        str: 版本号
    """
    tag = tag.strip()
    return tag[1:] if tag[:1] in ("v", "V") else tag


gnu_mirror = "https://ftp.gnu.org/gnu"
gcc_infrastructure = "ftp://gcc.gnu.org/pub/gcc/infrastructure"
llvm_release = f"https://github.com/llvm/llvm-project/releases/download/llvmorg-{package_version.llvm}"

# llvm子项目及其在llvm源码树中的位置，移动时需要按照此顺序，clang-tools-extra位于clang内部
llvm_component_list: typing.Final[dict[str, str]] = {
    "clang": os.path.join("tools", "clang"),
    "clang-tools-extra": os.path.join("tools", "clang", "tools", "extra"),
    "compiler-rt": os.path.join("projects", "compiler-rt"),
    "libcxx": os.path.join("projects", "libcxx"),
    "libcxxabi": os.path.join("projects", "libcxxabi"),
    "lld": os.path.join("tools", "lld"),
}

# 构建顺序即依赖顺序，后面的包依赖前面的包已安装到prefix中
package_list: typing.Final[list[package_source]] = [
    package_source(f"https://www.zlib.net/fossils/zlib-{package_version.zlib}.tar.gz", package_kind.zlib),
    package_source(f"https://tukaani.org/xz/xz-{package_version.xz}.tar.xz", package_kind.xz),
    package_source(f"{gcc_infrastructure}/gmp-{package_version.gmp}.tar.bz2", package_kind.gmp),
    package_source(f"{gcc_infrastructure}/mpfr-{package_version.mpfr}.tar.bz2", package_kind.mpfr),
    package_source(f"{gcc_infrastructure}/mpc-{package_version.mpc}.tar.gz", package_kind.mpc),
    package_source(f"{gcc_infrastructure}/isl-{package_version.isl}.tar.bz2", package_kind.isl),
    package_source(f"{gnu_mirror}/guile/guile-{package_version.guile}.tar.xz", package_kind.guile),
    package_source(f"{gnu_mirror}/autogen/autogen-{package_version.autogen}.tar.xz", package_kind.autogen),
    package_source(f"{gnu_mirror}/binutils/binutils-{package_version.binutils}.tar.xz", package_kind.binutils),
    package_source(f"{gnu_mirror}/gcc/gcc-{package_version.gcc}/gcc-{package_version.gcc}.tar.xz", package_kind.gcc),
    # llvm子项目只需解压，由llvm的构建流程移动到llvm源码树中
    *[
        package_source(f"{llvm_release}/{component}-{package_version.llvm}.src.tar.xz", package_kind.download_only)
        for component in llvm_component_list
    ],
    package_source(f"{llvm_release}/llvm-{package_version.llvm}.src.tar.xz", package_kind.llvm),
    package_source("https://github.com/vim/vim.git", package_kind.vim),
]

# 构建所需的宿主系统包
system_package_list: typing.Final[list[str]] = [
    "wget",
    "git",
    "tar",
    "gzip",
    "bzip2",
    "xz-utils",
    "make",
    "gcc",
    "g++",
    "m4",
    "pkg-config",
    "texinfo",
    "dejagnu",
    "cmake",
    "ninja-build",
    "python3",
    "python3-dev",
    "libncurses-dev",
    "libgtk2.0-dev",
    "ruby-dev",
    "libperl-dev",
    "liblua5.3-dev",
    "sudo",
]

__all__ = [
    "package_kind",
    "package_version",
    "package_source",
    "archive_suffix_list",
    "strip_archive_suffix",
    "strip_version_prefix",
    "llvm_component_list",
    "package_list",
    "system_package_list",
]
