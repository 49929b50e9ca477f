import io
import os
import tarfile
import pytest

import common
from build_toolchain import configure
from environment import build_environment
from privilege import privilege


@pytest.fixture(autouse=True)
def no_dry_run():
    common.command_dry_run.set(False)
    yield
    common.command_dry_run.set(False)


@pytest.fixture
def git_identity(monkeypatch):
    """Commits made by tests need an identity even on hosts without a git config."""
    for key, value in (
        ("GIT_AUTHOR_NAME", "toolchains"),
        ("GIT_AUTHOR_EMAIL", "toolchains@example.com"),
        ("GIT_COMMITTER_NAME", "toolchains"),
        ("GIT_COMMITTER_EMAIL", "toolchains@example.com"),
    ):
        monkeypatch.setenv(key, value)


@pytest.fixture
def config(tmp_path):
    return configure(
        source_dir=str(tmp_path / "SOURCE"),
        build_dir=str(tmp_path / "BUILD"),
        prefix=str(tmp_path / "opt" / "toolchain"),
        toolchain_name="toolchain-test",
        arch="x86-64",
        jobs=2,
        verbose=False,
        tests=True,
        update=False,
        snapshot=False,
        nice=0,
        retry=0,
    )


@pytest.fixture
def env(tmp_path, git_identity):
    for name in ("SOURCE", "BUILD"):
        (tmp_path / name).mkdir(exist_ok=True)
    return build_environment(
        str(tmp_path / "SOURCE"),
        str(tmp_path / "BUILD"),
        str(tmp_path / "opt" / "toolchain"),
        arch="x86-64",
        jobs=2,
        tests=True,
        update_repos=False,
        retry=0,
        sudo=privilege(str(tmp_path), enabled=False),
    )


def make_archive(path, top_level, files=None, mode="w:gz"):
    """Write a small source tarball whose entries all live under top_level."""
    files = files or {"configure": "#!/bin/sh\n", "README": "readme\n"}
    os.makedirs(os.path.dirname(str(path)), exist_ok=True)
    with tarfile.open(str(path), mode) as archive:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{top_level}/{name}")
            info.size = len(data)
            info.mode = 0o755
            archive.addfile(info, io.BytesIO(data))
    return str(path)
