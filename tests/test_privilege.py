"""Test sudo handling for install directories the user cannot write."""
import os
import threading

import common
from privilege import find_existing_parent, need_elevation, privilege


def test_find_existing_parent(tmp_path):
    assert find_existing_parent(str(tmp_path / "opt" / "toolchain")) == str(tmp_path)
    assert find_existing_parent(str(tmp_path)) == str(tmp_path)


def test_need_elevation(tmp_path):
    assert not need_elevation(str(tmp_path / "opt"))
    read_only = tmp_path / "read_only"
    read_only.mkdir()
    read_only.chmod(0o555)
    try:
        # root可以写入任何目录
        assert need_elevation(str(read_only / "opt")) == (os.geteuid() != 0)
    finally:
        read_only.chmod(0o755)


def test_wrap():
    assert privilege("/", enabled=False).wrap("make install") == "make install"
    assert privilege("/", enabled=True).wrap("make install") == 'sudo env "PATH=$PATH" make install'


def test_disabled_privilege_does_nothing(mocker):
    run_command = mocker.patch("common.run_command")
    with privilege("/", enabled=False):
        pass
    assert not run_command.called


def test_refresh_credentials(mocker):
    refreshed = threading.Event()

    def fake_run(command, **kwargs):
        if command == "sudo -n -v":
            refreshed.set()

    run_command = mocker.patch("common.run_command", side_effect=fake_run)
    sudo = privilege("/", enabled=True, refresh_interval=0.01)
    with sudo:
        assert refreshed.wait(5)
    assert sudo._thread is None
    assert run_command.call_args_list[0].args[0] == "sudo -v"


def test_dry_run_does_not_start_thread(mocker):
    mocker.patch("common.run_command")
    common.command_dry_run.set(True)
    sudo = privilege("/", enabled=True)
    sudo.start()
    assert sudo._thread is None
    sudo.stop()
