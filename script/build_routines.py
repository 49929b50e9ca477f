import os
import shlex
import shutil
from collections.abc import Callable
import packaging.version as version
import common
from environment import build_environment, package_build, phase, get_cmake_option
from package_source import package_kind, package_source, llvm_component_list

# 构建流程列表
routine_list: dict[package_kind, Callable[[package_build], None]] = {}


def register(kind: package_kind) -> Callable[[Callable[[package_build], None]], Callable[[package_build], None]]:
    """注册构建流程到列表

    Args:
        kind (package_kind): 该流程负责构建的包类别
    """

    def decorator(fn: Callable[[package_build], None]) -> Callable[[package_build], None]:
        assert kind not in routine_list, f"Routine of {kind} has been registered."
        routine_list[kind] = fn
        return fn

    return decorator


def _build_autotools(pkg: package_build, *option: str, parallel_check: bool = True, cflags: bool = True) -> None:
    """在源码树中完成配置、编译、测试和安装"""
    env = pkg.env
    variables = {"CFLAGS": env.cflags} if cflags else {}
    pkg.configure(f"--prefix={env.prefix}", *option, **variables)
    pkg.make()
    pkg.check(parallel=parallel_check)
    pkg.install()


@register(package_kind.zlib)
def build_zlib(pkg: package_build) -> None:
    _build_autotools(pkg)


@register(package_kind.xz)
def build_xz(pkg: package_build) -> None:
    _build_autotools(pkg, "--disable-static")


@register(package_kind.gmp)
def build_gmp(pkg: package_build) -> None:
    _build_autotools(pkg, "--enable-cxx", "--disable-static")


@register(package_kind.mpfr)
def build_mpfr(pkg: package_build) -> None:
    _build_autotools(pkg, f"--with-gmp={pkg.env.prefix}", "--disable-static")


@register(package_kind.mpc)
def build_mpc(pkg: package_build) -> None:
    prefix = pkg.env.prefix
    _build_autotools(pkg, f"--with-gmp={prefix}", f"--with-mpfr={prefix}", "--disable-static")


@register(package_kind.isl)
def build_isl(pkg: package_build) -> None:
    prefix = pkg.env.prefix
    _build_autotools(pkg, f"--with-gcc-arch={pkg.env.arch}", f"--with-gmp-prefix={prefix}", "--disable-static")


@register(package_kind.guile)
def build_guile(pkg: package_build) -> None:
    prefix = pkg.env.prefix
    _build_autotools(
        pkg, "--disable-static", f"--with-sysroot={prefix}", f"--with-libgmp-prefix={prefix}", parallel_check=False
    )


@register(package_kind.autogen)
def build_autogen(pkg: package_build) -> None:
    _build_autotools(pkg, parallel_check=False, cflags=False)


def _enter_build_dir(pkg: package_build) -> str:
    """创建独立于源码树的构建目录

    Returns:
        str: 构建目录
    """
    build_dir = os.path.join(pkg.env.build_dir, f"{pkg.package}-build")
    common.mkdir(build_dir)
    return build_dir


@register(package_kind.binutils)
def build_binutils(pkg: package_build) -> None:
    env = pkg.env
    prefix = env.prefix
    build_dir = _enter_build_dir(pkg)
    pkg.configure(
        f"--prefix={prefix}",
        f"--with-build-time-tools={prefix}",
        f"--with-stage1-ldflags='-Wl,-rpath,{env.lib_dir}'",
        f"--with-boot-ldflags='-Wl,-rpath,{env.lib_dir}'",
        "--with-system-zlib",
        "--enable-gold",
        f"--with-gmp={prefix}",
        f"--with-mpfr={prefix}",
        f"--with-mpc={prefix}",
        f"--with-isl={prefix}",
        "--enable-lto",
        script=os.path.join(pkg.source_dir, "configure"),
        cwd=build_dir,
        CFLAGS=f"-I{env.include_dir} -L{env.lib_dir}",
    )
    pkg.make(cwd=build_dir)
    pkg.check(cwd=build_dir, parallel=False)
    pkg.install(cwd=build_dir)


def patch_specs(specs: str, lib_dir: str) -> str:
    """在gcc的链接规则中加入安装目录的rpath，使新编译器生成的程序无需设置LD_LIBRARY_PATH即可找到新安装的动态库

    Args:
        specs (str): gcc -dumpspecs的输出
        lib_dir (str): 安装目录中的库目录

    Returns:
        str: 修改后的specs
    """
    rpath = f"%{{!shared: %{{!static: -rpath {lib_dir}}}}}"
    line_list = specs.splitlines(keepends=True)
    for i in range(len(line_list) - 1):
        if line_list[i].rstrip("\n") == "*link:":
            line_list[i + 1] = line_list[i + 1].replace("--eh-frame-hdr} ", f"--eh-frame-hdr}}  {rpath}\t", 1)
    return "".join(line_list)


def patch_gcc_specs(pkg: package_build) -> None:
    """为新安装的gcc写入带rpath的specs文件"""
    env = pkg.env
    gcc = os.path.join(env.bin_dir, "gcc")
    if not os.path.exists(gcc):
        print(f"[toolchains] Cannot find {gcc}, skip patching specs.")
        return
    libgcc = env.run(f"{gcc} -print-libgcc-file-name", capture=True)
    dump = env.run(f"{gcc} -dumpspecs", capture=True)
    if libgcc is None or dump is None:
        return
    specs_path = os.path.join(os.path.dirname(libgcc.stdout.strip()), "specs")
    temp_path = os.path.join(env.build_dir, "gcc-specs")
    with open(temp_path, "w") as file:
        file.write(patch_specs(dump.stdout, env.lib_dir))
    env.run(f"cp {shlex.quote(temp_path)} {shlex.quote(specs_path)}", elevate=True)
    common.remove(temp_path)
    print(f"[toolchains] Patched gcc specs {specs_path}.")


@register(package_kind.gcc)
def build_gcc(pkg: package_build) -> None:
    env = pkg.env
    prefix = env.prefix
    build_dir = _enter_build_dir(pkg)
    boot_ldflags = env.rpath_ldflags
    pkg.configure(
        f"--prefix={prefix}",
        "--with-gnu-as",
        "--with-gnu-ld",
        f"--with-as={os.path.join(env.bin_dir, 'as')}",
        f"--with-ld={os.path.join(env.bin_dir, 'ld')}",
        "--with-system-zlib",
        f"--with-gmp={prefix}",
        f"--with-mpfr={prefix}",
        f"--with-mpc={prefix}",
        f"--with-isl={prefix}",
        "--enable-languages=c,c++",
        "--enable-__cxa_atexit",
        "--enable-lto",
        "--disable-multilib",
        script=os.path.join(pkg.source_dir, "configure"),
        cwd=build_dir,
        BOOT_LDFLAGS=boot_ldflags,
        CFLAGS=env.cflags,
    )
    pkg.make(cwd=build_dir, BOOT_LDFLAGS=boot_ldflags)
    pkg.check(cwd=build_dir, keep_going=True, BOOT_LDFLAGS=boot_ldflags)
    pkg.install("install-strip", cwd=build_dir, BOOT_LDFLAGS=boot_ldflags)
    patch_gcc_specs(pkg)


def relocate_llvm_components(source_dir: str) -> str:
    """将与llvm一同解压的子项目移动到llvm源码树中，并去除llvm目录名末尾的.src

    Args:
        source_dir (str): llvm源代码目录，如BUILD/llvm-9.0.1.src

    Raises:
        common.fatal_error: 缺少子项目时抛出

    Returns:
        str: 移动后的llvm源代码目录
    """
    parent_dir, name = os.path.split(source_dir.rstrip("/"))
    stem = name[: -len(".src")] if name.endswith(".src") else name
    llvm_version = stem.split("-", 1)[1]
    component_dir_list = {component: os.path.join(parent_dir, f"{component}-{llvm_version}.src") for component in llvm_component_list}
    missing_list = [component for component, dir in component_dir_list.items() if not os.path.isdir(dir)]
    if missing_list and not common.command_dry_run.get():
        raise common.fatal_error(f"Cannot find llvm components {', '.join(missing_list)} beside {source_dir}.")

    target_dir = os.path.join(parent_dir, stem)
    if target_dir != source_dir:
        common.rename(source_dir, target_dir)
    for component, sub_dir in llvm_component_list.items():
        common.rename(component_dir_list[component], os.path.join(target_dir, sub_dir))
    return target_dir


@register(package_kind.llvm)
def build_llvm(pkg: package_build) -> None:
    env = pkg.env
    build_dir = _enter_build_dir(pkg)
    option_list = get_cmake_option(
        CMAKE_INSTALL_PREFIX=env.prefix,
        GCC_INSTALL_PREFIX=env.prefix,
        CMAKE_C_COMPILER=os.path.join(env.bin_dir, "gcc"),
        CMAKE_CXX_COMPILER=os.path.join(env.bin_dir, "g++"),
        CMAKE_CXX_LINK_FLAGS=f'"{env.rpath_ldflags}"',
        LLVM_TARGETS_TO_BUILD="X86",
        CMAKE_BUILD_TYPE="Release",
        PYTHON_EXECUTABLE=shutil.which("python3") or "/usr/bin/python3",
        LLVM_ENABLE_ASSERTIONS="ON",
        CMAKE_INSTALL_DO_STRIP="1",
    )
    pkg.run(phase.config, f"cmake -GNinja {' '.join(option_list)} {shlex.quote(pkg.source_dir)}", cwd=build_dir)
    pkg.run(phase.build, f"ninja -j {env.jobs}", cwd=build_dir)
    pkg.check("check-clang", tool="ninja", cwd=build_dir, keep_going=True)
    pkg.check("check-libcxx", tool="ninja", cwd=build_dir, keep_going=True, append=True)
    pkg.install(tool="ninja", cwd=build_dir)


def get_vim_runtime_name(name: str) -> str:
    """根据vim版本获取运行时目录名，如vim-8.2.0716对应vim82

    Args:
        name (str): 带版本号的包名

    Returns:
        str: 运行时目录名
    """
    # git describe的输出可能带有-提交数-g哈希的后缀
    version_string = name.split("-", 2)[1] if "-" in name else ""
    try:
        vim_version = version.Version(version_string)
        return f"vim{vim_version.major}{vim_version.minor}"
    except version.InvalidVersion:
        field_list = version_string.split(".")[:2]
        return "vim" + "".join(field_list)


@register(package_kind.vim)
def build_vim(pkg: package_build) -> None:
    env = pkg.env
    pkg.configure(
        "--with-features=huge",
        "--enable-multibyte",
        "--enable-rubyinterp=yes",
        "--enable-python3interp=yes",
        "--with-python3-config-dir=$(python3-config --configdir)",
        "--enable-perlinterp=yes",
        "--enable-luainterp=yes",
        "--enable-gui=gtk2",
        "--enable-cscope",
        f"--prefix={env.prefix}",
    )
    pkg.make(VIMRUNTIMEDIR=os.path.join(env.prefix, "share", "vim", get_vim_runtime_name(pkg.name)))
    # vim没有可用的测试
    pkg.install()


def dispatch(env: build_environment, source: package_source, name: str, source_dir: str) -> package_build | None:
    """调用包对应的构建流程

    Args:
        env (build_environment): 构建环境
        source (package_source): 包来源
        name (str): 带版本号的包名
        source_dir (str): 解压后的源代码目录

    Returns:
        package_build | None: 构建结果，没有对应构建流程的包返回None
    """
    routine = routine_list.get(source.kind)
    if routine is None:
        return None
    if source.kind == package_kind.llvm:
        source_dir = relocate_llvm_components(source_dir)
        name = os.path.basename(source_dir)
    pkg = env.package_build(name, source_dir)
    routine(pkg)
    pkg.complete()
    return pkg


__all__ = [
    "routine_list",
    "register",
    "patch_specs",
    "relocate_llvm_components",
    "get_vim_runtime_name",
    "dispatch",
]
