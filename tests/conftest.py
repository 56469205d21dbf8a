"""
Pytest configuration and shared fixtures for iSCSI administration tests.
"""

import os
import pytest
import sys
from pathlib import Path
from unittest.mock import Mock

# Add the package to Python path for testing
test_dir = Path(__file__).parent
package_root = test_dir.parent
sys.path.insert(0, str(package_root))

from iscsiadmin.admin import ISCSIAdmin  # noqa: E402
from iscsiadmin.agent import IscsidAgent  # noqa: E402
from iscsiadmin.config import IfaceRecord, NodeIdentity  # noqa: E402
from iscsiadmin.idbm import NodeDatabase  # noqa: E402

TARGET = "iqn.2024-01.com.example:storage.disk1"


@pytest.fixture(scope="session")
def project_root():
    """Path to the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def db_root(tmp_path):
    """Empty record database root."""
    root = tmp_path / "etc-iscsi"
    root.mkdir()
    return root


@pytest.fixture
def sysfs_root(tmp_path):
    """Empty sysfs tree with the iSCSI transport classes present."""
    root = tmp_path / "sys"
    (root / "class" / "iscsi_session").mkdir(parents=True)
    (root / "class" / "iscsi_connection").mkdir(parents=True)
    return root


def _write_attrs(directory: Path, attrs: dict) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for name, value in attrs.items():
        (directory / name).write_text(f"{value}\n")


@pytest.fixture
def add_session(sysfs_root):
    """Create a session and its first connection in the fake sysfs tree."""

    def _add(sid, targetname=TARGET, tpgt=1, address="10.0.0.1", port=3260,
             iface="default", **extra):
        session_attrs = {
            "targetname": targetname,
            "tpgt": tpgt,
            "ifacename": iface,
            "recovery_tmo": 120,
            "abort_tmo": 15,
            "lu_reset_tmo": 30,
            "tgt_reset_tmo": 30,
            "username": "(null)",
            "password": "(null)",
            "username_in": "(null)",
            "password_in": "(null)",
        }
        session_attrs.update(extra)
        _write_attrs(sysfs_root / "class" / "iscsi_session" / f"session{sid}", session_attrs)
        _write_attrs(sysfs_root / "class" / "iscsi_connection" / f"connection{sid}:0", {
            "address": address,
            "port": port,
            "persistent_address": address,
            "persistent_port": port,
        })

    return _add


@pytest.fixture
def add_ibft(sysfs_root):
    """Create an iBFT table with one target per call."""

    def _add(index=0, targetname=TARGET, ip="10.0.0.5", port=3260, mac="00:11:22:33:44:55",
             chap_name="", chap_secret="", initiator="iqn.2024-01.com.example:host1"):
        ibft = sysfs_root / "firmware" / "ibft"
        _write_attrs(ibft / "initiator", {"initiator-name": initiator})
        _write_attrs(ibft / f"ethernet{index}", {
            "mac": mac,
            "ip-addr": f"192.168.1.{10 + index}",
            "subnet-mask": "255.255.255.0",
            "gateway": "192.168.1.1",
            "primary-dns": "192.168.1.2",
            "secondary-dns": "",
            "dhcp": "",
        })
        (ibft / f"ethernet{index}" / "device" / "net" / f"eth{index}").mkdir(parents=True)
        target_attrs = {
            "target-name": targetname,
            "ip-addr": ip,
            "port": port,
            "nic-assoc": index,
        }
        if chap_name:
            target_attrs["chap-name"] = chap_name
            target_attrs["chap-secret"] = chap_secret
        _write_attrs(ibft / f"target{index}", target_attrs)

    return _add


@pytest.fixture
def discovered():
    """Targets returned by the fake SendTargets transport."""
    return [
        NodeIdentity(name=TARGET, tpgt=1, address="10.0.0.1", port=3260),
        NodeIdentity(name="iqn.2024-01.com.example:storage.disk2", tpgt=1,
                     address="10.0.0.1", port=3260),
    ]


@pytest.fixture
def agent(discovered):
    """Agent double; send_targets reports the ``discovered`` targets."""
    mock_agent = Mock(spec=IscsidAgent)
    mock_agent.send_targets.return_value = discovered
    return mock_agent


@pytest.fixture
def db(db_root, agent):
    return NodeDatabase(str(db_root), sendtargets=agent.send_targets)


@pytest.fixture
def admin(db_root, sysfs_root, agent):
    iscsi = ISCSIAdmin(db_root=str(db_root), sysfs_root=str(sysfs_root), agent=agent)
    yield iscsi
    iscsi.cleanup()


@pytest.fixture
def node():
    return NodeIdentity(name=TARGET, tpgt=1, address="10.0.0.1", port=3260)


@pytest.fixture
def bind_node(db):
    """Persist a record for ``identity`` on each named interface."""

    def _bind(identity, *iface_names):
        for iface_name in iface_names or ("default",):
            rec = db.node_setup_defaults(identity.name, identity.tpgt, identity.address,
                                         identity.port, IfaceRecord(name=iface_name))
            db.add_node(rec, overwrite=True)

    return _bind


@pytest.fixture
def record_path(db_root):
    def _path(identity, iface="default"):
        return os.path.join(str(db_root), "nodes", identity.name,
                            f"{identity.address},{identity.port},{identity.tpgt}", iface)

    return _path
