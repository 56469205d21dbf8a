#!/usr/bin/env python3
"""
Unit tests for the node record database.

Test Strategy:
- Use a real database tree under tmp_path; no filesystem mocking
- Check the on-disk record format, iscsid.conf defaults, overwrite policy
  and the bound-interface enumeration the fan-out dispatcher relies on
"""

import os

import pytest

from iscsiadmin.config import DiscoveryDescriptor, DiscoveryType, IfaceRecord, NodeIdentity, NodeRecord
from iscsiadmin.exceptions import InvalidArgumentError, UpstreamError
from iscsiadmin.idbm import (
    MAX_KEYS, NODE_RECORD_KEYS, NodeDatabase, UserParam, format_record_text,
    parse_portal_dir, parse_record_text
)

from conftest import TARGET


class TestRecordFormat:
    def test_empty_values_use_marker(self):
        text = format_record_text({"node.name": TARGET, "node.session.auth.username": ""})
        assert "node.session.auth.username = <empty>" in text
        assert text.startswith("# BEGIN RECORD")
        assert text.rstrip().endswith("# END RECORD")

    def test_parse_skips_comments_and_restores_empty(self):
        params = parse_record_text(
            "# BEGIN RECORD 2.1\n"
            "node.name = iqn.x:y\n"
            "\n"
            "# comment = ignored\n"
            "node.session.auth.username = <empty>\n"
            "# END RECORD\n")
        assert params == {"node.name": "iqn.x:y", "node.session.auth.username": ""}

    @pytest.mark.parametrize("entry,expected", [
        ("10.0.0.1,3260,1", ("10.0.0.1", 3260, 1)),
        ("fe80::1,3260,-1", ("fe80::1", 3260, -1)),
        ("10.0.0.1,3260", None),
        ("10.0.0.1,port,1", None),
    ])
    def test_parse_portal_dir(self, entry, expected):
        assert parse_portal_dir(entry) == expected

    @pytest.mark.parametrize("value", ["a\nnode.tpgt = 7", " lead", "trail\t", "<empty>"])
    def test_format_rejects_values_that_do_not_read_back(self, value):
        with pytest.raises(InvalidArgumentError):
            format_record_text({"node.startup": value})

    def test_descriptor_table_is_bounded(self):
        assert MAX_KEYS == len(NODE_RECORD_KEYS)
        assert len({key.name for key in NODE_RECORD_KEYS}) == MAX_KEYS


class TestNodeRecords:
    def test_write_then_read_node(self, db, node, record_path):
        rec = db.node_setup_defaults(node.name, node.tpgt, node.address, node.port)
        rec.settings["node.session.auth.username"] = "alice"
        db.add_node(rec)

        loaded = db.read_node(record_path(node))
        assert loaded.identity() == NodeIdentity(node.name, 1, "10.0.0.1", 3260, "default")
        assert loaded.settings["node.session.auth.username"] == "alice"
        assert loaded.settings["node.startup"] == "manual"

    def test_add_node_without_overwrite_refuses_existing(self, db, node):
        rec = db.node_setup_defaults(node.name, node.tpgt, node.address, node.port)
        db.add_node(rec)
        with pytest.raises(UpstreamError, match="already exists"):
            db.add_node(rec)

    def test_overwrite_replaces_instead_of_merging(self, db, node, record_path):
        rec = db.node_setup_defaults(node.name, node.tpgt, node.address, node.port)
        rec.settings["node.session.auth.username"] = "alice"
        db.add_node(rec)

        fresh = db.node_setup_defaults(node.name, node.tpgt, node.address, node.port)
        db.add_node(fresh, overwrite=True)

        assert db.read_node(record_path(node)).settings["node.session.auth.username"] == ""
        assert os.listdir(os.path.dirname(record_path(node))) == ["default"]

    def test_iscsid_conf_overrides_defaults(self, db_root, node):
        (db_root / "iscsid.conf").write_text(
            "# Startup settings\n"
            "node.startup = automatic\n"
            "node.session.timeo.replacement_timeout = 15\n"
            "node.name = ignored-read-only\n"
            "discovery.sendtargets.timeo.login_timeout = 30\n"
            "discovery.sendtargets.use_discoveryd = Yes\n")
        db = NodeDatabase(str(db_root))

        rec = db.node_setup_defaults(node.name, node.tpgt, node.address, node.port)
        assert rec.settings["node.startup"] == "automatic"
        assert rec.settings["node.session.timeo.replacement_timeout"] == "15"
        assert "node.name" not in rec.settings

        st = db.sendtargets_defaults()
        assert st.login_timeout == 30
        assert st.use_discoveryd is True
        assert st.auth_timeout == 45

    def test_recinfo_follows_table_order(self, db, node):
        rec = db.node_setup_defaults(node.name, node.tpgt, node.address, node.port)
        info = db.recinfo(rec)
        assert [entry.name for entry in info] == [key.name for key in NODE_RECORD_KEYS]
        values = {entry.name: entry.value for entry in info}
        assert values["node.name"] == TARGET
        assert values["node.conn[0].port"] == "3260"
        assert values["iface.iscsi_ifacename"] == "default"


class TestIfaces:
    def test_default_iface_when_none_configured(self, db):
        ifaces = db.load_ifaces()
        assert [iface.name for iface in ifaces] == ["default"]
        assert ifaces[0].transport_name == "tcp"

    def test_configured_ifaces_sorted(self, db_root):
        ifaces_dir = db_root / "ifaces"
        ifaces_dir.mkdir()
        (ifaces_dir / "eth1").write_text(format_record_text({
            "iface.iscsi_ifacename": "eth1", "iface.net_ifacename": "eth1"}))
        (ifaces_dir / "eth0").write_text(format_record_text({"iface.net_ifacename": "eth0"}))

        ifaces = NodeDatabase(str(db_root)).load_ifaces()
        assert [iface.name for iface in ifaces] == ["eth0", "eth1"]
        assert ifaces[0].net_ifacename == "eth0"


class TestDiscoveryRecords:
    def test_add_sendtargets_discovery_writes_st_config(self, db, db_root):
        drec = DiscoveryDescriptor(type=DiscoveryType.SENDTARGETS, address="10.0.0.1", port=3260)
        db.add_discovery(drec)

        path = db_root / "send_targets" / "10.0.0.1,3260" / "st_config"
        params = parse_record_text(path.read_text())
        assert params["discovery.sendtargets.address"] == "10.0.0.1"
        assert params["discovery.sendtargets.port"] == "3260"
        assert params["discovery.sendtargets.auth.authmethod"] == "None"

    def test_firmware_discovery_is_not_persisted(self, db, db_root):
        db.add_discovery(DiscoveryDescriptor(type=DiscoveryType.FIRMWARE))
        assert not (db_root / "send_targets").exists()

    def test_bind_sendtargets_uses_transport_per_iface(self, db, agent, discovered):
        drec = DiscoveryDescriptor(type=DiscoveryType.SENDTARGETS, address="10.0.0.1", port=3260)
        records = db.bind_interfaces_to_nodes(
            DiscoveryType.SENDTARGETS, drec, [IfaceRecord("eth0"), IfaceRecord("eth1")])

        assert agent.send_targets.call_count == 2
        assert len(records) == 2 * len(discovered)
        assert [rec.iface.name for rec in records] == ["eth0", "eth0", "eth1", "eth1"]
        assert records[0].settings["node.discovery_address"] == "10.0.0.1"
        assert records[0].settings["node.discovery_type"] == "send_targets"

    def test_bind_sendtargets_without_transport(self, db_root):
        db = NodeDatabase(str(db_root))
        drec = DiscoveryDescriptor(type=DiscoveryType.SENDTARGETS, address="10.0.0.1", port=3260)
        with pytest.raises(UpstreamError, match="No send-targets transport"):
            db.bind_interfaces_to_nodes(DiscoveryType.SENDTARGETS, drec)


class TestBoundInterfaces:
    def test_enumeration_matches_identity_and_sorts_ifaces(self, db, node, bind_node):
        bind_node(node, "eth1", "default", "eth0")
        bind_node(NodeIdentity(node.name, 2, node.address, node.port), "default")
        bind_node(NodeIdentity(node.name, 1, "10.0.0.2", node.port), "default")

        seen = []
        found, error = db.for_each_bound_interface(node, lambda rec: seen.append(rec.iface.name) or True)

        assert error is None
        assert found == 3
        assert seen == ["default", "eth0", "eth1"]

    def test_skipped_records_are_not_counted(self, db, node, bind_node):
        bind_node(node, "eth0", "eth1")
        found, error = db.for_each_bound_interface(node, lambda rec: rec.iface.name == "eth1")
        assert (found, error) == (1, None)

    def test_error_stops_enumeration(self, db, node, bind_node):
        bind_node(node, "eth0", "eth1", "eth2")
        calls = []

        def failing(rec):
            calls.append(rec.iface.name)
            if rec.iface.name == "eth1":
                raise UpstreamError("login failed")
            return True

        found, error = db.for_each_bound_interface(node, failing)
        assert calls == ["eth0", "eth1"]
        assert found == 1
        assert str(error) == "login failed"

    def test_unknown_target(self, db, node):
        assert db.for_each_bound_interface(node, lambda rec: True) == (0, None)


class TestParams:
    def test_alloc_parameter_list(self, db):
        assert db.alloc_parameter_list("node.startup", "automatic") == [
            UserParam("node.startup", "automatic")]

    def test_alloc_rejects_overlong_value(self, db):
        with pytest.raises(InvalidArgumentError, match="too long"):
            db.alloc_parameter_list("node.session.auth.username", "u" * 256)

    @pytest.mark.parametrize("name,value,message", [
        ("node.bogus", "1", "Invalid param name"),
        ("node.name", "iqn.other", "read-only"),
        ("node.conn[0].port", "3261", "read-only"),
        ("node.session.cmds_max", "lots", "Invalid value"),
        ("node.startup", "manual\nnode.tpgt = 7", "line breaks"),
        ("node.session.auth.username", " alice", "whitespace"),
        ("node.session.auth.username", "<empty>", "cannot be <empty>"),
        ("node.session.auth.password_length", "4", "read-only"),
    ])
    def test_verify_param_rejects(self, db, name, value, message):
        with pytest.raises(InvalidArgumentError, match=message):
            db.verify_param(UserParam(name, value))

    def test_node_set_params_writes_record(self, db, node, bind_node, record_path):
        bind_node(node)
        rec = db.read_node(record_path(node))
        assert db.node_set_params([UserParam("node.startup", "automatic")], rec) is True
        assert db.read_node(record_path(node)).settings["node.startup"] == "automatic"

    @pytest.mark.parametrize("value", ["a\nb", " x", "x\r"])
    def test_alloc_rejects_unstorable_value(self, db, value):
        with pytest.raises(InvalidArgumentError):
            db.alloc_parameter_list("node.session.auth.username", value)

    def test_secret_lengths_are_hidden(self, db, node):
        rec = db.node_setup_defaults(node.name, node.tpgt, node.address, node.port)
        rec.settings["node.session.auth.password"] = "secret"
        hidden = {entry.name: entry.value for entry in db.recinfo(rec) if not entry.visible}
        assert hidden == {
            "node.session.auth.password_length": "6",
            "node.session.auth.password_in_length": "0",
        }


class TestRecordPaths:
    @pytest.mark.parametrize("name,address,iface", [
        ("../../escape", "10.0.0.1", "default"),
        ("..", "10.0.0.1", "default"),
        (TARGET, "../x", "default"),
        (TARGET, "10.0.0.1", ".."),
        (TARGET, "10.0.0.1", "eth0/../../x"),
    ])
    def test_node_path_stays_in_database(self, db, db_root, name, address, iface):
        rec = NodeRecord(name=name, tpgt=1, address=address, port=3260,
                         iface=IfaceRecord(name=iface))

        with pytest.raises(InvalidArgumentError):
            db.add_node(rec, overwrite=True)

        assert not os.path.exists(os.path.join(str(db_root.parent), "escape"))
        assert not os.path.exists(os.path.join(str(db_root), "nodes"))

    def test_discovery_address_stays_in_database(self, db, db_root):
        drec = DiscoveryDescriptor(type=DiscoveryType.SENDTARGETS, address="../../x", port=3260)
        with pytest.raises(InvalidArgumentError):
            db.add_discovery(drec)
        assert not os.path.exists(os.path.join(str(db_root), "send_targets"))
