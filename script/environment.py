import enum
import os
import shlex
import time
import psutil
import common
from privilege import privilege


class phase(enum.StrEnum):
    """构建阶段，值同时作为日志文件名的后缀"""

    config = "config"
    build = "build"
    check = "check"
    install = "install"


class phase_status(enum.StrEnum):
    success = "success"
    soft_failure = "soft_failure"  # 失败但继续构建
    fatal = "fatal"  # 失败并中止构建


class build_state(enum.IntEnum):
    """单个包的构建状态，只能向前转移"""

    configuring = 0
    building = 1
    checking = 2
    installing = 3
    completed = 4


phase_state: dict[phase, build_state] = {
    phase.config: build_state.configuring,
    phase.build: build_state.building,
    phase.check: build_state.checking,
    phase.install: build_state.installing,
}

phase_label: dict[phase, str] = {
    phase.config: "Configuring",
    phase.build: "Building",
    phase.check: "Checking",
    phase.install: "Installing",
}


def _format_duration(seconds: float) -> str:
    minutes, seconds = divmod(seconds, 60)
    return f"{int(minutes)}m{seconds:.3f}s"


class phase_times:
    real: float  # 墙上时间
    user: float  # 子进程用户态时间
    sys: float  # 子进程内核态时间

    def __init__(self, real: float = 0.0, user: float = 0.0, sys: float = 0.0) -> None:
        self.real = real
        self.user = user
        self.sys = sys

    def __str__(self) -> str:
        percent = (self.user + self.sys) / self.real * 100 if self.real > 0 else 0.0
        return (
            f"    ({percent:.2f}%) real: {_format_duration(self.real)}, "
            f"user: {_format_duration(self.user)}, sys: {_format_duration(self.sys)}"
        )


class phase_timer:
    """记录一段代码执行期间的墙上时间和子进程的CPU时间"""

    times: phase_times

    def __init__(self) -> None:
        self.times = phase_times()

    def __enter__(self) -> "phase_timer":
        cpu = psutil.Process().cpu_times()
        self._start = time.perf_counter()
        self._user = cpu.children_user
        self._sys = cpu.children_system
        return self

    def __exit__(self, *_) -> None:
        cpu = psutil.Process().cpu_times()
        self.times = phase_times(time.perf_counter() - self._start, cpu.children_user - self._user, cpu.children_system - self._sys)


class phase_result:
    package: str  # 包名，不带版本号
    phase: phase
    status: phase_status
    returncode: int
    log_path: str
    times: phase_times

    def __init__(self, package: str, phase: phase, status: phase_status, returncode: int, log_path: str, times: phase_times) -> None:
        self.package = package
        self.phase = phase
        self.status = status
        self.returncode = returncode
        self.log_path = log_path
        self.times = times

    @property
    def ok(self) -> bool:
        return self.status == phase_status.success

    def __repr__(self) -> str:
        return f"phase_result({self.package}, {self.phase}, {self.status}, returncode={self.returncode})"


class phase_error(common.fatal_error):
    """严格模式下构建阶段失败时抛出"""

    result: phase_result

    def __init__(self, result: phase_result) -> None:
        super().__init__(
            f"{phase_label[result.phase]} {result.package} failed with errno={result.returncode}, see {result.log_path}."
        )
        self.result = result


def get_cmake_option(**kwargs) -> list[str]:
    """将字典转化为cmake选项列表

    Returns:
        list[str]: cmake选项列表
    """
    option_list: list[str] = []
    for key, value in kwargs.items():
        option_list.append(f"-D{key}={value}")
    return option_list


def _get_assignments(variables: dict[str, str]) -> list[str]:
    return [f"{key}={shlex.quote(value)}" for key, value in variables.items()]


class build_environment:
    """所有构建流程共用的只读环境，构造后不应再修改"""

    source_dir: str  # 压缩包缓存目录
    build_dir: str  # 解压和构建目录
    prefix: str  # 工具链安装目录
    toolchain_name: str  # 工具链名称
    arch: str  # -march的取值
    jobs: int  # 编译所用线程数
    verbose: bool  # 是否在终端显示构建输出
    tests: bool  # 是否运行测试
    update_repos: bool  # 是否更新git仓库
    strict: bool  # 构建阶段失败时是否中止
    retry: int  # 网络操作的重试次数
    bin_dir: str  # 安装后可执行文件所在目录
    lib_dir: str  # 安装后库所在目录
    include_dir: str  # 安装后头文件所在目录
    pkgconfig_dir: str  # 安装后pkg-config文件所在目录
    cflags: str  # 通用的C编译选项
    command_env: dict[str, str]  # 运行外部命令时使用的环境变量
    sudo: privilege

    def __init__(
        self,
        source_dir: str,
        build_dir: str,
        prefix: str,
        toolchain_name: str = "toolchain",
        arch: str = "native",
        jobs: int = 1,
        verbose: bool = False,
        tests: bool = True,
        update_repos: bool = True,
        strict: bool = False,
        retry: int = 5,
        sudo: privilege | None = None,
    ) -> None:
        self.source_dir = os.path.abspath(source_dir)
        self.build_dir = os.path.abspath(build_dir)
        self.prefix = os.path.abspath(prefix)
        self.toolchain_name = toolchain_name
        self.arch = arch
        self.jobs = jobs
        self.verbose = verbose
        self.tests = tests
        self.update_repos = update_repos
        self.strict = strict
        self.retry = retry
        self.bin_dir = os.path.join(self.prefix, "bin")
        self.lib_dir = os.path.join(self.prefix, "lib")
        self.include_dir = os.path.join(self.prefix, "include")
        self.pkgconfig_dir = os.path.join(self.lib_dir, "pkgconfig")
        self.cflags = f"-O3 -march={self.arch}"
        self.sudo = sudo or privilege(self.prefix)

        # 将安装目录注册到子进程的环境变量中，使后续的包可以找到先前安装的包
        command_env = dict(os.environ)
        command_env["PATH"] = f"{self.bin_dir}:{command_env['PATH']}" if command_env.get("PATH") else self.bin_dir
        pkg_config_path = command_env.get("PKG_CONFIG_PATH")
        command_env["PKG_CONFIG_PATH"] = f"{self.pkgconfig_dir}:{pkg_config_path}" if pkg_config_path else self.pkgconfig_dir
        self.command_env = command_env

    @property
    def rpath_ldflags(self) -> str:
        """链接安装目录中的库并写入rpath的链接选项"""
        return f"-L{self.lib_dir} -Wl,-rpath,{self.lib_dir}"

    def get_log_path(self, package: str, phase: phase) -> str:
        """获取构建阶段的日志路径

        Args:
            package (str): 不带版本号的包名
            phase (phase): 构建阶段

        Returns:
            str: 日志路径
        """
        return os.path.join(self.build_dir, f"{package}-{phase}.log")

    def elevate(self, command: str) -> str:
        """为修改安装目录的命令按需添加sudo"""
        return self.sudo.wrap(command)

    def run(self, command: str, capture: bool = False, cwd: str | None = None, elevate: bool = False):
        """在构建环境中运行辅助命令，失败时抛出异常

        Args:
            command (str): 要运行的命令
            capture (bool, optional): 是否捕获输出. 默认不捕获.
            cwd (str | None, optional): 工作目录. 默认为当前目录.
            elevate (bool, optional): 是否按需添加sudo. 默认不添加.
        """
        if elevate:
            command = self.elevate(command)
        return common.run_command(command, capture=capture, cwd=cwd, env=self.command_env)

    def package_build(self, name: str, source_dir: str) -> "package_build":
        return package_build(self, name, source_dir)


class package_build:
    """单个包的构建过程，按照配置、编译、测试、安装的顺序推进"""

    env: build_environment
    name: str  # 带版本号的包名
    package: str  # 不带版本号的包名，用于日志文件名
    source_dir: str  # 解压后的源代码目录
    state: build_state
    results: list[phase_result]

    def __init__(self, env: build_environment, name: str, source_dir: str) -> None:
        self.env = env
        self.name = name
        self.package = name.split("-", 1)[0]
        self.source_dir = source_dir
        self.state = build_state.configuring
        self.results = []

    def _enter(self, state: build_state) -> None:
        assert state >= self.state, f"Cannot go back from {self.state.name} to {state.name} when building {self.name}."
        self.state = state

    def run(self, step: phase, command: str, cwd: str | None = None, append: bool = False, elevate: bool = False) -> phase_result:
        """运行一个构建阶段的命令，输出写入该阶段的日志

        Args:
            step (phase): 构建阶段
            command (str): 要运行的命令
            cwd (str | None, optional): 工作目录. 默认为源代码目录.
            append (bool, optional): 是否追加到该阶段已有的日志. 默认覆盖.
            elevate (bool, optional): 是否按需添加sudo. 默认不添加.

        Raises:
            phase_error: 严格模式下配置、编译或安装失败时抛出

        Returns:
            phase_result: 该阶段的结果
        """
        self._enter(phase_state[step])
        print(f"[toolchains] {phase_label[step]} {self.package}...")
        log_path = self.env.get_log_path(self.package, step)
        if elevate:
            command = self.env.elevate(command)
        with phase_timer() as timer:
            returncode = common.log_command(
                command,
                log_path,
                cwd=cwd or self.source_dir,
                env=self.env.command_env,
                append=append,
                echo_output=self.env.verbose,
            )
        returncode = returncode or 0
        print(timer.times)

        if returncode == 0:
            status = phase_status.success
        elif self.env.strict and step != phase.check:
            status = phase_status.fatal
        else:
            status = phase_status.soft_failure
        result = phase_result(self.package, step, status, returncode, log_path, timer.times)
        self.results.append(result)
        match status:
            case phase_status.fatal:
                raise phase_error(result)
            case phase_status.soft_failure:
                print(f"[toolchains] {phase_label[step]} {self.package} failed with errno={returncode}, continuing.")
        return result

    def configure(self, *option: str, script: str = "./configure", cwd: str | None = None, **variables: str) -> phase_result:
        """运行configure脚本

        Args:
            option (tuple[str, ...]): 配置选项
            script (str, optional): configure脚本路径. 默认为源代码目录中的configure.
            cwd (str | None, optional): 构建目录. 默认为源代码目录.
            variables (dict[str, str]): 传递给configure的环境变量，如CFLAGS
        """
        command = " ".join((*_get_assignments(variables), script, *option))
        return self.run(phase.config, command, cwd)

    def make(self, *target: str, cwd: str | None = None, parallel: bool = True, **variables: str) -> phase_result:
        """编译

        Args:
            target (tuple[str, ...]): 要编译的目标
            cwd (str | None, optional): 构建目录. 默认为源代码目录.
            parallel (bool, optional): 是否并行编译. 默认并行.
            variables (dict[str, str]): 传递给make的变量
        """
        jobs = (f"-j {self.env.jobs}",) if parallel else ()
        command = " ".join(("make", *jobs, *target, *_get_assignments(variables)))
        return self.run(phase.build, command, cwd)

    def check(
        self,
        *target: str,
        tool: str = "make",
        cwd: str | None = None,
        parallel: bool = True,
        keep_going: bool = False,
        append: bool = False,
        **variables: str,
    ) -> phase_result | None:
        """运行测试，测试未启用时直接返回None，测试失败不会中止构建

        Args:
            target (tuple[str, ...]): 测试目标. 默认为check.
            tool (str, optional): 构建工具，make或ninja. 默认为make.
            cwd (str | None, optional): 构建目录. 默认为源代码目录.
            parallel (bool, optional): 是否并行测试. 默认并行.
            keep_going (bool, optional): 出错后是否继续运行其余测试. 默认不继续.
            append (bool, optional): 是否追加到已有的测试日志. 默认覆盖.
            variables (dict[str, str]): 传递给make的变量
        """
        if not self.env.tests:
            return None
        options: list[str] = []
        if keep_going:
            options.append("-k 0" if tool == "ninja" else "-k")
        if parallel:
            options.append(f"-j {self.env.jobs}")
        command = " ".join((tool, *options, *(target or ("check",)), *_get_assignments(variables)))
        return self.run(phase.check, command, cwd, append)

    def install(self, *target: str, tool: str = "make", cwd: str | None = None, **variables: str) -> phase_result:
        """安装到prefix中，安装目录不可写时使用sudo

        Args:
            target (tuple[str, ...]): 安装目标. 默认为install.
            tool (str, optional): 构建工具，make或ninja. 默认为make.
            cwd (str | None, optional): 构建目录. 默认为源代码目录.
            variables (dict[str, str]): 传递给make的变量
        """
        command = " ".join((tool, *(target or ("install",)), *_get_assignments(variables)))
        return self.run(phase.install, command, cwd, elevate=True)

    def complete(self) -> None:
        """结束构建"""
        self._enter(build_state.completed)
        print(f"[toolchains] Completed {self.name}.")

    @property
    def failed_results(self) -> list[phase_result]:
        return [result for result in self.results if not result.ok]


__all__ = [
    "phase",
    "phase_status",
    "build_state",
    "phase_times",
    "phase_timer",
    "phase_result",
    "phase_error",
    "get_cmake_option",
    "build_environment",
    "package_build",
]
