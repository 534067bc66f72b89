from pathlib import Path
import textwrap

import pytest

from stagehand_automation.errors import PlaybookError
from stagehand_automation.inventory import InventoryLoader, select_hosts


def test_default_is_localhost() -> None:
    hosts = InventoryLoader().load(None)

    assert set(hosts) == {"localhost"}
    assert hosts["localhost"].connection == "local"
    assert hosts["localhost"].groups == {"all", "local", "localhost"}


def test_loads_toml_inventory(tmp_path: Path) -> None:
    path = tmp_path / "hosts.toml"
    path.write_text(
        textwrap.dedent(
            """
            [hosts.web1]
            address = "10.44.1.10"
            connection = "ssh"
            groups = ["web"]
            user = "deploy"
            port = 2222

            [hosts.web1.variables]
            php_version = "8.3"

            [hosts.elk1]
            address = "10.44.1.20"
            connection = "ssh"
            groups = "elk"
            """
        ).strip()
    )

    hosts = InventoryLoader().load(path)

    assert list(hosts) == ["web1", "elk1"]
    web = hosts["web1"]
    assert web.address == "10.44.1.10"
    assert web.groups == {"all", "web"}
    assert web.port == 2222
    assert web.user == "deploy"
    assert web.variables == {"php_version": "8.3"}
    assert hosts["elk1"].groups == {"all", "elk"}
    assert hosts["elk1"].port == 22


def test_loads_yaml_inventory(tmp_path: Path) -> None:
    path = tmp_path / "hosts.yml"
    path.write_text(
        textwrap.dedent(
            """
            hosts:
              db1:
                connection: ssh
                groups: [db]
                key_file: ~/.ssh/id_ed25519
            """
        ).strip()
    )

    hosts = InventoryLoader().load(path)

    assert hosts["db1"].key_file == "~/.ssh/id_ed25519"
    assert hosts["db1"].groups == {"all", "db"}


def test_invalid_toml_reports_location(tmp_path: Path) -> None:
    path = tmp_path / "bad.toml"
    path.write_text("[hosts.web1\n")
    with pytest.raises(PlaybookError, match=r"bad\.toml: .*line 1"):
        InventoryLoader().load(path)


def test_unknown_connection_rejected(tmp_path: Path) -> None:
    path = tmp_path / "hosts.toml"
    path.write_text('[hosts.web1]\nconnection = "winrm"\n')
    with pytest.raises(PlaybookError, match="winrm"):
        InventoryLoader().load(path)


def test_select_hosts_by_group_and_name_in_inventory_order() -> None:
    hosts = InventoryLoader.parse_hosts(
        {
            "web1": {"groups": ["web"]},
            "elk1": {"groups": ["elk"]},
            "web2": {"groups": ["web"]},
        }
    )

    assert [h.name for h in select_hosts(["web"], hosts)] == ["web1", "web2"]
    assert [h.name for h in select_hosts(["elk", "web1"], hosts)] == ["web1", "elk1"]
    assert [h.name for h in select_hosts(["all"], hosts)] == ["web1", "elk1", "web2"]
    assert select_hosts(["db"], hosts) == []
