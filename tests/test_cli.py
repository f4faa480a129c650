"""
CLI tests.
"""

import json

import pytest
import yaml

from ccbridge.cli import BridgeCLI, CLIError, OutputFormat, format_output
from ccbridge.lifecycle import TransferTracker

ROUTE = ["--token-id", "1", "--from", "avalanche-fuji", "--to", "arbitrum-sepolia"]


def run_cli(capsys, *args):
    code = BridgeCLI().run(["--log-level", "error", *args])
    out, err = capsys.readouterr()
    return code, out, err


class TestFormatting:

    def test_json(self):
        assert json.loads(format_output({"a": 1})) == {"a": 1}

    def test_yaml(self):
        assert yaml.safe_load(format_output({"a": [1, 2]}, OutputFormat.YAML)) == {"a": [1, 2]}

    def test_text(self):
        text = format_output({"transfer": {"state": "stuck"}, "ids": [1, 2]}, OutputFormat.TEXT)
        assert "transfer:" in text
        assert "  state: stuck" in text
        assert "  - 1" in text

    def test_cli_error_exit_code(self):
        assert CLIError("x", exit_code=3).exit_code == 3


class TestCommands:

    def test_no_command_prints_help(self, capsys):
        assert BridgeCLI().run([]) == 0
        assert "usage: ccbridge" in capsys.readouterr().out

    def test_ledgers(self, capsys):
        code, out, _ = run_cli(capsys, "ledgers")
        assert code == 0
        names = {entry["name"]: entry for entry in json.loads(out)}
        assert names["avalanche-fuji"]["chain_id"] == 43113
        assert names["arbitrum-sepolia"]["selector"] == "3478487238524512106"

    def test_estimate(self, capsys):
        code, out, _ = run_cli(capsys, "estimate", *ROUTE)
        assert code == 0
        result = json.loads(out)
        assert float(result["fee"]) > 0
        assert result["fee_token"] == "LINK"

    def test_transfer_round_trip(self, capsys):
        code, out, _ = run_cli(capsys, "transfer", *ROUTE, "--metadata-uri", "uri-A")
        assert code == 0
        result = json.loads(out)
        assert result["transfer"]["state"] == "present_destination"
        assert result["transfer"]["metadata_uri"] == "uri-A"
        assert result["asset_present_on"] == ["arbitrum-sepolia"]
        assert [d["outcome"] for d in result["deliveries"]] == ["delivered"]

    def test_transfer_duplicate(self, capsys):
        code, out, _ = run_cli(capsys, "transfer", *ROUTE, "--duplicate")
        result = json.loads(out)
        assert code == 0
        assert result["transfer"]["duplicate_deliveries"] == 1
        assert [d["error_code"] for d in result["deliveries"]] == ["", "duplicate_asset"]
        assert result["asset_present_on"] == ["arbitrum-sepolia"]

    def test_transfer_drop_reports_stuck(self, capsys):
        code, out, _ = run_cli(capsys, "transfer", *ROUTE, "--drop")
        result = json.loads(out)
        assert code == 0
        assert result["transfer"]["state"] == "stuck"
        assert result["asset_present_on"] == []
        assert result["deliveries"] == []

    def test_transfer_to_explicit_receiver(self, capsys):
        receiver = "0x" + "cd" * 20
        code, out, _ = run_cli(capsys, "transfer", *ROUTE, "--receiver", receiver)
        assert code == 0
        assert json.loads(out)["transfer"]["receiver"] == receiver

    def test_transfer_journal(self, capsys, tmp_path):
        journal = tmp_path / "nft_transfers.json"
        code, out, _ = run_cli(capsys, "transfer", *ROUTE, "--journal", str(journal))
        assert code == 0

        message_id = json.loads(out)["transfer"]["message_id"]
        assert TransferTracker.load(journal).get(message_id) is not None

    def test_journal_accumulates_across_runs(self, capsys, tmp_path):
        journal = tmp_path / "nft_transfers.json"
        message_ids = []
        for token_id in ("1", "2"):
            code, out, _ = run_cli(
                capsys, "transfer", "--token-id", token_id, "--from", "avalanche-fuji",
                "--to", "arbitrum-sepolia", "--journal", str(journal),
            )
            assert code == 0
            message_ids.append(json.loads(out)["transfer"]["message_id"])

        data = json.loads(journal.read_text())
        assert [t["message_id"] for t in data["transfers"]] == message_ids
        assert [t["asset_id"] for t in data["transfers"]] == ["1", "2"]

    def test_unreadable_journal(self, capsys, tmp_path):
        journal = tmp_path / "journal.json"
        journal.write_text('{"version": 99, "transfers": []}')

        code, _, err = run_cli(capsys, "transfer", *ROUTE, "--journal", str(journal))
        assert code == 1
        assert "Unsupported journal version" in err

    def test_invalid_prepaid_amount(self, capsys):
        code, out, err = run_cli(capsys, "transfer", *ROUTE, "--prepaid", "abc")
        assert code == 1
        assert out == ""
        assert "prepaid" in err

    def test_transfer_without_prepaid_fee(self, capsys):
        code, out, err = run_cli(capsys, "transfer", *ROUTE, "--prepaid", "0")
        assert code == 1
        assert out == ""
        assert "insufficient_prepaid_fee" in err

    def test_same_ledger_rejected(self, capsys):
        code, _, err = run_cli(
            capsys, "transfer", "--token-id", "1", "--from", "avalanche-fuji", "--to", "avalanche-fuji",
        )
        assert code == 1
        assert "must name different ledgers" in err

    def test_invalid_receiver(self, capsys):
        code, _, err = run_cli(capsys, "estimate", *ROUTE, "--receiver", "bob")
        assert code == 1
        assert "receiver" in err

    def test_quiet_suppresses_errors(self, capsys):
        code = BridgeCLI().run(["--quiet", "--log-level", "error", "transfer", *ROUTE, "--prepaid", "0"])
        assert code == 1
        assert capsys.readouterr().err == ""

    def test_unknown_ledger_rejected_by_parser(self, capsys):
        with pytest.raises(SystemExit):
            BridgeCLI().run(["estimate", "--token-id", "1", "--from", "mainnet", "--to", "avalanche-fuji"])


class TestConfigCommands:

    def test_show_yaml(self, capsys):
        code, out, _ = run_cli(capsys, "--format", "yaml", "config", "show")
        assert code == 0
        assert yaml.safe_load(out)["transport"]["base_fee"] == "0.05"

    def test_get(self, capsys):
        code, out, _ = run_cli(capsys, "config", "get", "lifecycle.stuck_after_seconds")
        assert json.loads(out) == {"path": "lifecycle.stuck_after_seconds", "value": 3600}

    def test_validate(self, capsys):
        code, out, _ = run_cli(capsys, "config", "validate")
        assert json.loads(out) == {"valid": True, "errors": []}

    def test_schema(self, capsys):
        code, out, _ = run_cli(capsys, "config", "schema")
        assert "stuck_after_seconds" in json.loads(out)["properties"]["lifecycle"]

    def test_config_file_option(self, capsys, tmp_path):
        path = tmp_path / "ccbridge.yaml"
        path.write_text("transport:\n  base_fee: '0.5'\n")

        code, out, _ = run_cli(capsys, "--config", str(path), "config", "get", "transport.base_fee")
        assert code == 0
        assert json.loads(out)["value"] == "0.5"

    def test_missing_config_file(self, capsys, tmp_path):
        code, _, err = run_cli(capsys, "--config", str(tmp_path / "absent.yaml"), "ledgers")
        assert code == 1
        assert "not found" in err
