"""Test the per-package phase state machine and the build environment."""
import pytest

from environment import (
    build_environment,
    build_state,
    get_cmake_option,
    phase,
    phase_error,
    phase_status,
    phase_times,
)
from privilege import privilege


@pytest.fixture
def log_command(mocker):
    return mocker.patch("common.log_command", return_value=0)


def test_command_env_contains_prefix(monkeypatch, tmp_path):
    monkeypatch.setenv("PATH", "/usr/bin")
    monkeypatch.setenv("PKG_CONFIG_PATH", "/usr/lib/pkgconfig")
    env = build_environment(str(tmp_path / "SOURCE"), str(tmp_path / "BUILD"), str(tmp_path / "opt"), sudo=privilege(str(tmp_path), enabled=False))
    assert env.command_env["PATH"] == f"{tmp_path}/opt/bin:/usr/bin"
    assert env.command_env["PKG_CONFIG_PATH"] == f"{tmp_path}/opt/lib/pkgconfig:/usr/lib/pkgconfig"


def test_command_env_without_pkg_config_path(monkeypatch, env):
    monkeypatch.delenv("PKG_CONFIG_PATH", raising=False)
    rebuilt = build_environment(env.source_dir, env.build_dir, env.prefix, sudo=env.sudo)
    assert rebuilt.command_env["PKG_CONFIG_PATH"] == env.pkgconfig_dir


def test_phases_run_in_order(log_command, env):
    pkg = env.package_build("zlib-1.2.11", "/src/zlib-1.2.11")
    assert pkg.package == "zlib"
    pkg.configure(f"--prefix={env.prefix}", CFLAGS=env.cflags)
    pkg.make()
    pkg.check()
    pkg.install()
    pkg.complete()

    assert pkg.state == build_state.completed
    assert [result.phase for result in pkg.results] == [phase.config, phase.build, phase.check, phase.install]
    assert all(result.ok for result in pkg.results)

    commands = [call.args[0] for call in log_command.call_args_list]
    assert commands == [
        f"CFLAGS='-O3 -march=x86-64' ./configure --prefix={env.prefix}",
        "make -j 2",
        "make -j 2 check",
        "make install",
    ]
    first = log_command.call_args_list[0]
    assert first.args[1] == env.get_log_path("zlib", phase.config)
    assert first.kwargs["cwd"] == "/src/zlib-1.2.11"
    assert first.kwargs["env"] is env.command_env


def test_check_is_skipped_when_tests_disabled(log_command, env):
    env.tests = False
    pkg = env.package_build("zlib-1.2.11", "/src/zlib-1.2.11")
    pkg.configure()
    pkg.make()
    assert pkg.check() is None
    pkg.install()
    assert [result.phase for result in pkg.results] == [phase.config, phase.build, phase.install]


def test_backward_transition_is_rejected(log_command, env):
    pkg = env.package_build("gmp-6.1.0", "/src/gmp-6.1.0")
    pkg.configure()
    pkg.make()
    with pytest.raises(AssertionError):
        pkg.configure()


def test_repeated_check_appends(log_command, env):
    pkg = env.package_build("llvm-9.0.1", "/src/llvm-9.0.1")
    pkg.check("check-clang", tool="ninja", keep_going=True)
    pkg.check("check-libcxx", tool="ninja", keep_going=True, append=True)
    assert log_command.call_args_list[0].args[0] == "ninja -k 0 -j 2 check-clang"
    assert log_command.call_args_list[1].kwargs["append"] is True


def test_failed_phase_is_soft_by_default(mocker, env):
    mocker.patch("common.log_command", side_effect=[0, 2, 0])
    pkg = env.package_build("mpfr-3.1.4", "/src/mpfr-3.1.4")
    pkg.configure()
    result = pkg.make()
    pkg.install()
    assert result.status == phase_status.soft_failure
    assert result.returncode == 2
    assert pkg.failed_results == [result]
    assert pkg.state == build_state.installing


def test_failed_phase_is_fatal_in_strict_mode(mocker, env):
    env.strict = True
    mocker.patch("common.log_command", side_effect=[0, 2])
    pkg = env.package_build("mpfr-3.1.4", "/src/mpfr-3.1.4")
    pkg.configure()
    with pytest.raises(phase_error) as info:
        pkg.make()
    assert info.value.result.phase == phase.build
    assert info.value.result.status == phase_status.fatal


def test_failed_check_is_soft_in_strict_mode(mocker, env):
    env.strict = True
    mocker.patch("common.log_command", return_value=1)
    pkg = env.package_build("isl-0.18", "/src/isl-0.18")
    assert pkg.check().status == phase_status.soft_failure


def test_dry_run_counts_as_success(mocker, env):
    mocker.patch("common.log_command", return_value=None)
    pkg = env.package_build("xz-5.2.5", "/src/xz-5.2.5")
    assert pkg.configure().ok


def test_install_uses_sudo_when_needed(log_command, env):
    env.sudo = privilege(env.prefix, enabled=True)
    pkg = env.package_build("gcc-9.3.0", "/src/gcc-9.3.0")
    pkg.install("install-strip")
    assert log_command.call_args.args[0] == 'sudo env "PATH=$PATH" make install-strip'


def test_get_cmake_option():
    assert get_cmake_option(CMAKE_BUILD_TYPE="Release", LLVM_TARGETS_TO_BUILD="X86") == [
        "-DCMAKE_BUILD_TYPE=Release",
        "-DLLVM_TARGETS_TO_BUILD=X86",
    ]


def test_phase_times_format():
    assert str(phase_times(90.5, 160.0, 20.0)) == "    (198.90%) real: 1m30.500s, user: 2m40.000s, sys: 0m20.000s"
    assert str(phase_times()) == "    (0.00%) real: 0m0.000s, user: 0m0.000s, sys: 0m0.000s"
