#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import argparse
import glob
import os
import re
import sys
import time
import psutil
import common
from build_routines import dispatch
from download import resolve
from environment import build_environment
from ledger import basic_ledger, create_ledger, get_ledger_key, ledger_type
from package_source import package_list, package_source, system_package_list
from privilege import privilege
from snapshot import snapshot
from unpack import unpack

local_config_file = "toolchains.local.json"  # 存在时自动导入的本地配置文件
zero_failure_pattern = re.compile(r"FAIL: *0$")


class configure(common.basic_configure):
    source_dir: str  # 压缩包缓存目录
    build_dir: str  # 解压和构建目录
    prefix: str  # 工具链安装目录
    toolchain_name: str  # 工具链名称
    arch: str  # -march的取值
    jobs: int  # 并发数
    verbose: bool  # 是否显示构建输出
    tests: bool  # 是否运行测试
    update: bool  # 是否更新git仓库
    strict: bool  # 构建阶段失败时是否中止
    ledger: ledger_type  # 已完成包的记录方式
    snapshot: bool  # 是否将安装目录提交到git
    compress_docs: bool  # 是否压缩文档
    nice: int  # 进程优先级
    retry: int  # 网络操作失败时的重试次数

    def __init__(
        self,
        source_dir: str | None = None,
        build_dir: str | None = None,
        prefix: str | None = None,
        toolchain_name: str | None = None,
        arch: str | None = None,
        jobs: int | None = None,
        verbose: bool | None = None,
        tests: bool | None = None,
        update: bool | None = None,
        strict: bool = False,
        ledger: str = ledger_type.file,
        snapshot: bool = True,
        compress_docs: bool = False,
        nice: int = 19,
        retry: int = 4,
    ) -> None:
        # 未指定的选项从环境变量中读取
        self.toolchain_name = toolchain_name or os.environ.get("TC_VERSION") or "toolchain-9.x"
        self.source_dir = os.path.abspath(source_dir or os.environ.get("SOURCE_DIR") or "SOURCE")
        self.build_dir = os.path.abspath(build_dir or os.environ.get("BUILD_DIR") or "/scratch/BUILD")
        self.prefix = os.path.abspath(
            prefix or os.environ.get("INSTALL_DIR") or os.path.join(os.path.expanduser("~"), "opt", self.toolchain_name)
        )
        self.arch = arch or os.environ.get("TC_ARCH") or "native"
        self.jobs = jobs or int(os.environ.get("TC_JOBS") or psutil.cpu_count() or 1)
        self.verbose = common.env_flag("TC_VERBOSE", False) if verbose is None else verbose
        self.tests = common.env_flag("DO_TESTS", True) if tests is None else tests
        self.update = common.env_flag("UPDATE_REPOS", True) if update is None else update
        self.strict = strict
        self.ledger = ledger_type(ledger)
        self.snapshot = snapshot
        self.compress_docs = compress_docs
        self.nice = nice
        self.retry = retry

    def check(self) -> None:
        assert self.jobs > 0, f"Invalid jobs: {self.jobs}."
        assert self.retry >= 0, f"Invalid network retry times: {self.retry}."
        assert -20 <= self.nice <= 19, f"Invalid nice value: {self.nice}."
        assert self.ledger in tuple(ledger_type), f"Invalid ledger type: {self.ledger}."
        assert (
            self.snapshot or ledger_type(self.ledger) != ledger_type.git
        ), "The git ledger requires the install directory snapshot, use --snapshot or --ledger=file."
        assert not (self.compress_docs and not self.snapshot), "Compressing documents requires the install directory snapshot."

    def get_environment(self) -> build_environment:
        return build_environment(
            self.source_dir,
            self.build_dir,
            self.prefix,
            self.toolchain_name,
            self.arch,
            self.jobs,
            self.verbose,
            self.tests,
            self.update,
            self.strict,
            self.retry,
            privilege(self.prefix),
        )


def scan_failures(build_dir: str) -> list[str]:
    """扫描所有构建日志中失败数不为0的行

    Args:
        build_dir (str): 日志所在目录

    Returns:
        list[str]: "日志路径:行内容"格式的列表
    """
    failure_list: list[str] = []
    for log in sorted(glob.glob(os.path.join(build_dir, "*.log"))):
        with open(log, errors="replace") as file:
            for line in file:
                line = line.rstrip("\n")
                if "FAIL" in line and not zero_failure_pattern.search(line):
                    failure_list.append(f"{log}:{line}")
    return failure_list


def dump_failures(failure_list: list[str]) -> None:
    print("Detected Failures:")
    for failure in failure_list:
        print(failure)


class toolchain_builder:
    """按顺序获取、构建并记录所有包"""

    config: configure
    env: build_environment
    ledger: basic_ledger
    snapshot: snapshot | None
    packages: list[package_source]
    built_list: list[str]  # 本次运行构建完成的包
    skipped_list: list[str]  # 本次运行因已完成而跳过的包
    unavailable_list: list[str]  # 本次运行因无法获取源码而跳过的包

    def __init__(self, config: configure, packages: list[package_source] | None = None, env: build_environment | None = None) -> None:
        self.config = config
        self.env = env or config.get_environment()
        self.ledger = create_ledger(self.env, ledger_type(config.ledger))
        self.snapshot = snapshot(self.env, config.compress_docs) if config.snapshot else None
        self.packages = package_list if packages is None else packages
        self.built_list = []
        self.skipped_list = []
        self.unavailable_list = []

    def _lower_priority(self) -> None:
        process = psutil.Process()
        if process.nice() < self.config.nice:
            process.nice(self.config.nice)

    def prepare(self) -> None:
        """准备源码、构建和安装目录"""
        env = self.env
        self._lower_priority()
        print("[toolchains] Starting build of toolchain...")
        print(f"\tArchive download directory = {env.source_dir}")
        print(f"\tPackage build directory = {env.build_dir}")
        print(f"\tToolchain installation directory = {env.prefix}")
        common.mkdir(env.source_dir, False)
        common.mkdir(env.build_dir)
        env.run(f"mkdir -p {env.lib_dir}", elevate=True)
        lib64_dir = os.path.join(env.prefix, "lib64")
        if not os.path.lexists(lib64_dir):
            env.run(f"ln -s lib {lib64_dir}", elevate=True)
        if self.snapshot:
            self.snapshot.init()

    def build_package(self, source: package_source) -> bool:
        """获取、解压、构建并记录单个包

        Args:
            source (package_source): 包来源

        Returns:
            bool: 是否构建了该包
        """
        env = self.env
        print(f"( {time.strftime('%T')} ) {'=' * 65}")
        try:
            archive = resolve(env, source)
        except common.fatal_error:
            raise
        except RuntimeError as e:
            # 无法获取源码只影响当前包
            print(f"[toolchains] {source.basename} skipped: {e}")
            self.unavailable_list.append(source.basename)
            return False
        if self.ledger.has(archive.name):
            print(f"[toolchains] Skipping build of {archive.name}")
            self.skipped_list.append(get_ledger_key(archive.name))
            return False

        name = unpack(archive.path, env.build_dir)
        pkg = dispatch(env, source, name, os.path.join(env.build_dir, name))
        if pkg is None:
            return False

        key = get_ledger_key(pkg.name)
        files_changed = self.snapshot.commit(key) if self.snapshot else 0
        self.ledger.record(key, files_changed)
        self.built_list.append(key)
        return True

    def run(self) -> None:
        """构建所有包"""
        with self.env.sudo:
            self.prepare()
            for source in self.packages:
                self.build_package(source)
        print(f"[toolchains] Built {len(self.built_list)} packages, skipped {len(self.skipped_list)} packages.")
        if self.unavailable_list:
            print(f"[toolchains] Cannot fetch {', '.join(self.unavailable_list)}.")


def build(config: configure, packages: list[package_source] | None = None) -> int:
    """构建工具链并在结束时显示失败的测试

    Args:
        config (configure): 构建配置
        packages (list[package_source] | None, optional): 包列表. 默认为内置的包列表.

    Returns:
        int: 进程返回值
    """
    builder = toolchain_builder(config, packages)
    try:
        builder.run()
    except RuntimeError as e:
        print(f"[toolchains] {e}")
        return 1
    finally:
        dump_failures(scan_failures(config.build_dir))
    return 0


def dump_packages(config: configure) -> None:
    """打印包列表和已完成的包"""
    print("Packages:")
    for source in package_list:
        print(f"- {source.url} ({source.kind})")
    print("\nCompleted:")
    for name in create_ledger(config.get_environment(), ledger_type(config.ledger)).entries():
        print(f"- {name}")


if __name__ == "__main__":
    default_config = configure()

    parser = argparse.ArgumentParser(
        description="Build a toolchain into a shared install prefix.", formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    configure.add_argument(parser)
    parser.add_argument("--source-dir", type=str, help="The directory to store downloaded archives.", default=default_config.source_dir)
    parser.add_argument("--build-dir", type=str, help="The scratch directory to unpack and build packages.", default=default_config.build_dir)
    parser.add_argument("--prefix", type=str, help="The directory to install the toolchain.", default=default_config.prefix)
    parser.add_argument("--toolchain-name", type=str, help="The name of the toolchain.", default=default_config.toolchain_name)
    parser.add_argument("--arch", type=str, help="The value passed to -march.", default=default_config.arch)
    parser.add_argument(
        "--jobs", type=int, help="Number of concurrent jobs at build time. Use the number of cpu cores by default.", default=default_config.jobs
    )
    parser.add_argument(
        "--verbose", action=argparse.BooleanOptionalAction, help="Show the output of build steps.", default=default_config.verbose
    )
    parser.add_argument(
        "--tests", action=argparse.BooleanOptionalAction, help="Run the test suite of each package.", default=default_config.tests
    )
    parser.add_argument(
        "--update", action=argparse.BooleanOptionalAction, help="Update cached git repositories.", default=default_config.update
    )
    parser.add_argument(
        "--strict",
        action=argparse.BooleanOptionalAction,
        help="Stop when a configure, build or install step fails.",
        default=default_config.strict,
    )
    parser.add_argument(
        "--ledger", type=str, help="How to record completed packages.", default=default_config.ledger, choices=ledger_type
    )
    parser.add_argument(
        "--snapshot",
        action=argparse.BooleanOptionalAction,
        help="Commit the install directory into git after each package.",
        default=default_config.snapshot,
    )
    parser.add_argument(
        "--compress-docs",
        action=argparse.BooleanOptionalAction,
        help="Compress large documents after each package.",
        default=default_config.compress_docs,
    )
    parser.add_argument("--nice", type=int, help="The nice value of the build process.", default=default_config.nice)
    parser.add_argument(
        "--retry", type=int, help="The number of retries when a network operation failed.", default=default_config.retry
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--system", action="store_true", help="Print needy system packages and exit.")
    group.add_argument("--dump", action="store_true", help="Print the package list and completed packages, then exit.")
    args = parser.parse_args()
    if args.import_file is None and os.path.exists(local_config_file):
        args.import_file = local_config_file

    current_config = configure.parse_args(args)
    current_config.load_config(args.import_file)
    current_config.check()

    status = 0
    if args.system:
        print(f"Please install following system packages: {' '.join(system_package_list)}")
    elif args.dump:
        dump_packages(current_config)
    else:
        status = build(current_config)

    current_config.save_config(args.export_file)
    sys.exit(status)
