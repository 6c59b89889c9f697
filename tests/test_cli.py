"""
Tests for the eqledger command line.
"""

import json
import os
import pathlib
import subprocess
import sys

import pytest
import yaml

from eqledger.cli import LedgerCLI, OutputFormat, format_output
from eqledger.host import account
from eqledger.identity import derive_id

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]


def run(capsys, *argv):
    code = LedgerCLI().run(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def run_json(capsys, *argv):
    code, out, err = run(capsys, *argv)
    assert code == 0, err
    return json.loads(out)


class TestDerivationCommands:
    """slot, role and derive-id."""

    def test_slot(self, capsys):
        data = run_json(capsys, "slot", "example.main")
        assert data["scheme"] == "erc7201"
        assert data["slot"] == "0x183a6125c38840424c4a85fa12bab2ab606c4b6d0e7cc73c0c06ba5300eab500"

    def test_slot_erc1967(self, capsys):
        data = run_json(capsys, "slot", "--erc1967", "eip1967.proxy.implementation")
        assert data["slot"] == "0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc"

    def test_role(self, capsys):
        data = run_json(capsys, "role", "MINTER_ROLE")
        assert data["role"] == "0x9f2df0fed2c77648de5860a4cc508cd0818c85b8b8a1ab4ceeef8d981c8956a6"

    def test_default_admin_role(self, capsys):
        data = run_json(capsys, "role", "DEFAULT_ADMIN_ROLE")
        assert data["role"] == "0x" + "00" * 32

    def test_derive_id(self, capsys):
        originator = account("manager")
        data = run_json(
            capsys, "derive-id", "--percents", "10", "20", "--share-ids", "1", "2", "--originator", originator
        )
        expected = derive_id([10, 20], [1, 2], originator)
        assert data["id"] == hex(expected)
        assert data["id_decimal"] == str(expected)

    def test_derive_id_bad_originator(self, capsys):
        code, out, err = run(capsys, "derive-id", "--originator", "nobody")
        assert code == 1
        assert out == ""
        assert "Error:" in err

    def test_quiet_suppresses_error_text(self, capsys):
        code, out, err = run(capsys, "--quiet", "derive-id", "--originator", "nobody")
        assert code == 1
        assert "Error:" not in err


class TestLayoutCommand:
    """layout."""

    def test_v1(self, capsys):
        rows = run_json(capsys, "layout")
        namespaces = {r["namespace"] for r in rows}
        assert namespaces == {
            "luna.storage.Initializable",
            "luna.storage.AccessControl",
            "luna.storage.ERC1155",
            "luna.storage.EqToken",
        }
        assert "name" not in {r["name"] for r in rows}

    def test_v2_appends_name(self, capsys):
        rows = run_json(capsys, "layout", "--module", "v2")
        eq_rows = [r for r in rows if r["namespace"] == "luna.storage.EqToken"]
        assert [r["name"] for r in eq_rows] == ["id_exists", "total_supply", "version", "name"]

    def test_table_format(self, capsys):
        code, out, _ = run(capsys, "--format", "table", "layout")
        assert code == 0
        assert out.splitlines()[0].startswith("namespace")


class TestSimulateCommand:
    """simulate."""

    def test_scenario(self, capsys):
        steps = run_json(capsys, "simulate")
        methods = [s["method"] for s in steps]
        assert methods[0] == "initialize"
        assert "upgrade_to" in methods

        rejected = [s for s in steps if str(s["result"]).startswith("reverted")]
        assert rejected[0]["result"] == "reverted: this token is not existent"

        versions = [s["result"] for s in steps if s["method"] == "get_version"]
        assert versions == [1, 2]
        assert steps[-1]["method"] == "balance_of"
        assert steps[-1]["result"] == 1000

    def test_custom_uri(self, capsys):
        steps = run_json(capsys, "simulate", "--uri", "ipfs://custom/{id}")
        assert steps[0]["events"][-1] == {"event": "Initialized", "args": [1]}


class TestConfigCommands:
    """config get/set/show/validate/schema."""

    def test_get(self, capsys):
        data = run_json(capsys, "config", "get", "ledger.max_batch_size")
        assert data == {"path": "ledger.max_batch_size", "value": 256}

    def test_set(self, capsys):
        data = run_json(capsys, "config", "set", "ledger.max_batch_size", "64")
        assert data["value"] == 64
        assert data["status"] == "updated"

    def test_set_invalid(self, capsys):
        code, _, err = run(capsys, "config", "set", "observability.log_format", "xml")
        assert code == 1
        assert "Error:" in err

    def test_unknown_path(self, capsys):
        code, _, _ = run(capsys, "config", "get", "ledger.nope")
        assert code == 1

    def test_show_yaml(self, capsys):
        code, out, _ = run(capsys, "--format", "yaml", "config", "show")
        assert code == 0
        assert yaml.safe_load(out)["host"]["enforce_layout_checks"] is True

    def test_validate(self, capsys):
        assert run_json(capsys, "config", "validate") == {"valid": True, "errors": []}

    def test_schema(self, capsys):
        schema = run_json(capsys, "config", "schema")
        assert "ledger" in schema["properties"]

    def test_config_file_option(self, capsys, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("ledger:\n  max_batch_size: 9\n")
        data = run_json(capsys, "--config", str(path), "config", "get", "ledger.max_batch_size")
        assert data["value"] == 9

    def test_missing_config_file(self, capsys, tmp_path):
        code, _, err = run(capsys, "--config", str(tmp_path / "absent.yaml"), "config", "show")
        assert code == 1
        assert "not found" in err

    def test_no_subcommand(self, capsys):
        code, _, _ = run(capsys, "config")
        assert code == 1


class TestFormatting:
    """Output formatting."""

    def test_no_command_prints_help(self, capsys):
        code, out, _ = run(capsys)
        assert code == 0
        assert "usage" in out.lower()

    def test_text(self):
        assert format_output({"a": 1}, OutputFormat.TEXT) == "{'a': 1}"

    def test_table_of_dict(self):
        assert format_output({"a": 1, "b": 2}, OutputFormat.TABLE) == "a: 1\nb: 2"

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            LedgerCLI().run(["--version"])
        assert exc_info.value.code == 0
        assert "eqledger" in capsys.readouterr().out


class TestLogging:
    """Log records on stderr follow configuration."""

    def test_simulate_logs_json_by_default(self, capsys):
        code, _, err = run(capsys, "simulate")
        assert code == 0
        records = [json.loads(line) for line in err.splitlines()]
        assert any(r.get("operation") == "simulate" for r in records)

    def test_quiet_silences_logs(self, capsys):
        code, out, err = run(capsys, "--quiet", "simulate")
        assert code == 0
        assert json.loads(out)[0]["method"] == "initialize"
        assert err == ""

    def test_text_format_from_config_file(self, capsys, tmp_path):
        path = tmp_path / "text.yaml"
        path.write_text("observability:\n  log_format: text\n")
        code, _, err = run(capsys, "--config", str(path), "simulate")
        assert code == 0
        lines = err.splitlines()
        assert lines
        assert not any(line.startswith("{") for line in lines)
        assert any(" INFO eqledger.cli.cli Operation simulate completed" in line for line in lines)

    def test_invalid_log_level_env(self, tmp_path):
        env = dict(os.environ)
        env["EQLEDGER_LOG_LEVEL"] = "loud"
        env["HOME"] = str(tmp_path)
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH")]))
        result = subprocess.run(
            [sys.executable, "-m", "eqledger", "config", "validate"],
            cwd=tmp_path,
            env=env,
            capture_output=True,
            text=True,
            timeout=60,
        )
        assert result.returncode == 0, result.stderr
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert data["errors"][0].startswith("observability.log_level")
