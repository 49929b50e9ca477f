"""Test archive resolution for direct downloads and git remotes."""
import os
import shutil
import subprocess
import pytest

import common
import download
from conftest import make_archive
from package_source import package_kind, package_source, strip_archive_suffix, strip_version_prefix


@pytest.mark.parametrize("tag, version", [("v8.2.0716", "8.2.0716"), ("V1.0", "1.0"), ("2.34\n", "2.34"), ("vim-8", "vim-8")])
def test_strip_version_prefix(tag, version):
    assert strip_version_prefix(tag) == version


def test_strip_archive_suffix():
    assert strip_archive_suffix("/src/llvm-9.0.1.src.tar.xz") == "llvm-9.0.1.src"
    assert strip_archive_suffix("mpc-1.0.3.tgz") == "mpc-1.0.3"


def test_package_source_kind():
    source = package_source("https://github.com/vim/vim.git", package_kind.vim)
    assert source.is_git
    assert source.project_name == "vim"
    source = package_source("https://www.zlib.net/zlib-1.2.11.tar.gz", package_kind.zlib)
    assert not source.is_git
    assert source.basename == "zlib-1.2.11.tar.gz"


def test_cached_archive_is_not_downloaded(mocker, env):
    make_archive(os.path.join(env.source_dir, "zlib-1.2.11.tar.gz"), "zlib-1.2.11")
    run = mocker.spy(env, "run")
    archive = download.resolve(env, package_source("https://www.zlib.net/zlib-1.2.11.tar.gz", package_kind.zlib))
    assert archive.path == os.path.join(env.source_dir, "zlib-1.2.11.tar.gz")
    assert archive.name == "zlib-1.2.11"
    assert not run.called


def test_missing_archive_is_downloaded(mocker, env):
    archive_path = os.path.join(env.source_dir, "mpc-1.0.3.tar.gz")

    def fake_wget(command, **kwargs):
        assert command.startswith("wget")
        make_archive(f"{archive_path}.part", "mpc-1.0.3")

    run = mocker.patch.object(env, "run", side_effect=fake_wget)
    archive = download.resolve(env, package_source("ftp://gcc.gnu.org/pub/gcc/infrastructure/mpc-1.0.3.tar.gz", package_kind.mpc))
    assert run.call_count == 1
    assert archive.name == "mpc-1.0.3"
    assert os.path.exists(archive_path)
    assert not os.path.exists(f"{archive_path}.part")


def test_download_failure_is_raised(mocker, env):
    mocker.patch.object(env, "run", side_effect=RuntimeError("wget failed"))
    with pytest.raises(RuntimeError):
        download.resolve(env, package_source("https://www.zlib.net/zlib-1.2.11.tar.gz", package_kind.zlib))
    assert not os.path.exists(os.path.join(env.source_dir, "zlib-1.2.11.tar.gz"))


def test_unknown_format_is_fatal_before_download(mocker, env):
    run = mocker.patch.object(env, "run")
    with pytest.raises(common.fatal_error):
        download.resolve(env, package_source("https://www.python.org/ftp/python/3.8.2/python-3.8.2.zip", package_kind.download_only))
    assert not run.called


@pytest.mark.skipif(shutil.which("git") is None or shutil.which("xz") is None, reason="git and xz are required")
def test_git_remote_resolves_to_latest_tag(tmp_path, git_identity, config):
    remote = tmp_path / "remote" / "demo.git"
    remote.mkdir(parents=True)
    git = ["git", "-C", str(remote)]
    subprocess.run(["git", "init", "-q", str(remote)], check=True)
    (remote / "README").write_text("demo\n")
    subprocess.run([*git, "add", "README"], check=True)
    subprocess.run([*git, "commit", "-q", "-m", "init"], check=True)
    subprocess.run([*git, "tag", "v1.2.3"], check=True)

    env = config.get_environment()
    os.makedirs(env.source_dir)
    source = package_source(str(remote), package_kind.vim)
    archive = download.resolve(env, source)
    assert archive.name == "demo-1.2.3"
    assert archive.path == os.path.join(env.source_dir, "demo-1.2.3.tar.xz")
    assert os.path.isdir(os.path.join(env.source_dir, "gitrepo-demo"))
    assert os.path.exists(archive.path)

    # 仓库未变化时再次解析得到相同的包名
    assert download.resolve(env, source).name == "demo-1.2.3"
