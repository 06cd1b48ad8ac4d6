"""
Unit tests for the port forward rule file and method selector.
"""

from pathlib import Path

import pytest

from gre_tunnels.exceptions import NotConfigured
from gre_tunnels.models import PortForwardRule
from gre_tunnels.portfwd.method import get_method, require_method, set_method
from gre_tunnels.portfwd.rules import (
    add_rule, delete_rule, edit_rule, load_rules, parse_rule, parse_rules,
)


RULES_TEXT = """\
# forwards
0.0.0.0 8443 10.10.1.2 443

10.0.0.1 2222 10.10.3.2 22
0.0.0.0 99999 10.10.1.2 80
"""


class TestParseRule:
    """Tests for single rule lines."""

    def test_valid(self):
        assert parse_rule("0.0.0.0 8443 10.10.1.2 443") == PortForwardRule("0.0.0.0", 8443, "10.10.1.2", 443)

    @pytest.mark.parametrize("line, error", [
        ("0.0.0.0 8443 10.10.1.2", "expected"),
        ("0.0.0.0 http 10.10.1.2 80", "invalid port"),
        ("0.0.0.0 0 10.10.1.2 80", "invalid port"),
        ("0.0.0.0 80 10.10.1 80", "invalid IPv4"),
    ])
    def test_invalid(self, line, error):
        with pytest.raises(ValueError, match=error):
            parse_rule(line)


class TestRuleFile:
    """Tests for rule file parsing and editing."""

    def test_parse_numbers_entries_and_skips_invalid(self):
        rules, skipped = parse_rules(RULES_TEXT)

        assert [r.listen_port for r in rules] == [8443, 2222]
        assert len(skipped) == 1
        assert skipped[0].reference == "#3 '0.0.0.0 99999 10.10.1.2 80'"

    def test_missing_file(self, tmp_path):
        assert load_rules(tmp_path / "none.conf") == ([], [])

    def test_add(self, tmp_path):
        path = tmp_path / "pf.conf"
        path.write_text("# header")

        add_rule(path, PortForwardRule("0.0.0.0", 80, "10.10.1.2", 8080))

        assert path.read_text() == "# header\n0.0.0.0 80 10.10.1.2 8080\n"

    def test_delete_by_entry_number(self, tmp_path):
        path = tmp_path / "pf.conf"
        path.write_text(RULES_TEXT)

        removed = delete_rule(path, 2)

        assert removed == "10.0.0.1 2222 10.10.3.2 22"
        assert "2222" not in path.read_text()
        assert path.read_text().startswith("# forwards\n")

    def test_delete_missing_entry(self, tmp_path):
        path = tmp_path / "pf.conf"
        path.write_text(RULES_TEXT)

        with pytest.raises(ValueError, match="Entry 9 not found"):
            delete_rule(path, 9)

    def test_edit_keeps_unset_fields(self, tmp_path):
        path = tmp_path / "pf.conf"
        path.write_text(RULES_TEXT)

        rule = edit_rule(path, 1, dest_port=8443)

        assert rule == PortForwardRule("0.0.0.0", 8443, "10.10.1.2", 8443)
        assert path.read_text().splitlines()[1] == "0.0.0.0 8443 10.10.1.2 8443"

    def test_edit_rejects_invalid_result(self, tmp_path):
        path = tmp_path / "pf.conf"
        path.write_text(RULES_TEXT)

        with pytest.raises(ValueError):
            edit_rule(path, 1, dest_address="not-an-ip")
        assert path.read_text() == RULES_TEXT


class TestMethod:
    """Tests for the persisted backend selector."""

    def test_unset(self, tmp_path):
        path = tmp_path / "port-forward-method"

        assert get_method(path) is None
        with pytest.raises(NotConfigured):
            require_method(path)

    def test_roundtrip_and_unknown(self, tmp_path):
        path = tmp_path / "port-forward-method"

        set_method(path, "rinetd")
        assert require_method(path) == "rinetd"

        path.write_text("socat\n")
        assert get_method(path) is None

    def test_reject_unknown(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown port forward method"):
            set_method(Path(tmp_path / "m"), "nftables")
