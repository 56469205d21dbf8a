#!/usr/bin/env python3
"""
Unit tests for the sysfs reader.
"""

import pytest

from iscsiadmin.exceptions import UpstreamError
from iscsiadmin.sysfs import ISCSISysfs


@pytest.fixture
def sysfs(tmp_path):
    return ISCSISysfs(str(tmp_path))


def test_class_paths(tmp_path, sysfs):
    assert sysfs.session_class == str(tmp_path / "class" / "iscsi_session")
    assert sysfs.connection_class == str(tmp_path / "class" / "iscsi_connection")
    assert sysfs.ibft_root == str(tmp_path / "firmware" / "ibft")


def test_read_strips_and_maps_null(tmp_path, sysfs):
    (tmp_path / "name").write_text("  value\n")
    (tmp_path / "unset").write_text("(null)\n")

    assert sysfs.read_sysfs(str(tmp_path / "name")) == "value"
    assert sysfs.read_sysfs(str(tmp_path / "unset")) == ""


def test_missing_attribute(tmp_path, sysfs):
    with pytest.raises(UpstreamError, match="Cannot read from"):
        sysfs.read_sysfs(str(tmp_path / "missing"))
    assert sysfs.read_optional(str(tmp_path / "missing"), "fallback") == "fallback"


def test_read_int(tmp_path, sysfs):
    (tmp_path / "tpgt").write_text("3\n")
    (tmp_path / "bogus").write_text("n/a\n")

    assert sysfs.read_int(str(tmp_path / "tpgt")) == 3
    assert sysfs.read_int(str(tmp_path / "bogus")) == -1
    assert sysfs.read_int(str(tmp_path / "missing"), 3260) == 3260


def test_list_directory(tmp_path, sysfs):
    for name in ("session1", "session2", ".hidden", "power"):
        (tmp_path / name).mkdir()

    assert sorted(sysfs.list_directory(str(tmp_path), "session")) == ["session1", "session2"]
    assert ".hidden" not in sysfs.list_directory(str(tmp_path))
    assert sysfs.list_directory(str(tmp_path / "missing")) == []
