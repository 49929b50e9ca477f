"""Test archive format selection and extraction."""
import shutil
import pytest

import common
import unpack
from conftest import make_archive


@pytest.mark.parametrize(
    "archive, uncat",
    [
        ("zlib-1.2.11.tar.gz", "zcat"),
        ("mpc-1.0.3.tgz", "zcat"),
        ("gcc-9.3.0.tar.xz", "xzcat"),
        ("gmp-6.1.0.tar.bz2", "bzcat"),
    ],
)
def test_get_uncat(archive, uncat):
    assert unpack.get_uncat(archive) == uncat


@pytest.mark.parametrize("archive", ["vim.zip", "binutils-2.34.tar.zst", "README"])
def test_unknown_format_is_fatal(archive):
    with pytest.raises(common.fatal_error):
        unpack.get_uncat(archive)


def test_unknown_format_stops_before_extraction(mocker, tmp_path):
    run_command = mocker.patch("common.run_command")
    with pytest.raises(common.fatal_error):
        unpack.unpack(str(tmp_path / "python-3.8.2.zip"), str(tmp_path))
    assert not run_command.called


def test_get_top_level_list():
    path_list = ["zlib-1.2.11/", "zlib-1.2.11/configure", "./zlib-1.2.11/README", "other/x", ""]
    assert unpack.get_top_level_list(path_list) == ["zlib-1.2.11", "other"]


def test_unpack_gzip(tmp_path):
    archive = make_archive(tmp_path / "SOURCE" / "zlib-1.2.11.tar.gz", "zlib-1.2.11")
    dest = tmp_path / "BUILD"
    dest.mkdir()
    assert unpack.get_name(archive) == "zlib-1.2.11"
    assert unpack.unpack(archive, str(dest)) == "zlib-1.2.11"
    assert (dest / "zlib-1.2.11" / "configure").read_text() == "#!/bin/sh\n"


@pytest.mark.skipif(shutil.which("bzcat") is None, reason="bzip2 is not installed")
def test_unpack_bzip2(tmp_path):
    archive = make_archive(tmp_path / "gmp-6.1.0.tar.bz2", "gmp-6.1.0", mode="w:bz2")
    assert unpack.unpack(archive, str(tmp_path)) == "gmp-6.1.0"
    assert (tmp_path / "gmp-6.1.0" / "README").exists()


@pytest.mark.skipif(shutil.which("xzcat") is None, reason="xz is not installed")
def test_unpack_xz(tmp_path):
    archive = make_archive(tmp_path / "llvm-9.0.1.src.tar.xz", "llvm-9.0.1.src", mode="w:xz")
    assert unpack.get_name(archive) == "llvm-9.0.1.src"
    assert unpack.unpack(archive, str(tmp_path)) == "llvm-9.0.1.src"


def test_dry_run_uses_archive_name(tmp_path):
    common.command_dry_run.set(True)
    assert unpack.unpack(str(tmp_path / "isl-0.18.tar.bz2"), str(tmp_path)) == "isl-0.18"
    assert unpack.get_name(str(tmp_path / "isl-0.18.tar.bz2")) == "isl-0.18"
