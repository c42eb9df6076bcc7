"""Tests for the boc-relay command line."""
from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from boc_relay import cli as cli_module
from boc_relay.cli import EXIT_CALLER_ERROR, EXIT_FAILED, EXIT_OK, cli
from boc_relay.errors import ErrorKind
from boc_relay.settlement import Failed, Included

from conftest import CALLER, TARGET, TX_HASH, USER_OP_HASH

CLAIM_SELECTOR = "379607f5"  # claim(uint256)


@pytest.fixture
def runner(monkeypatch) -> CliRunner:
    for name in ("BOC_RELAY_SPONSOR_URL", "BOC_RELAY_BUNDLER_URL", "BOC_RELAY_CHAIN"):
        monkeypatch.delenv(name, raising=False)
    return CliRunner()


class FakeCoordinator:
    """Stands in for RelayCoordinator.from_config in CLI runs."""

    outcome = Included(TX_HASH, USER_OP_HASH, True)
    configs: list = []
    calls: list = []

    def __init__(self, config):
        self.config = config

    @classmethod
    def from_config(cls, config=None, **kwargs):
        cls.configs.append(config)
        return cls(config)

    async def relay(self, intent, caller, signature=None, deadline_seconds=None):
        type(self).calls.append(("relay", intent, caller, signature, deadline_seconds))
        return type(self).outcome

    async def track(self, user_op_hash):
        type(self).calls.append(("track", user_op_hash))
        return type(self).outcome

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None


@pytest.fixture
def fake_coordinator(monkeypatch):
    FakeCoordinator.outcome = Included(TX_HASH, USER_OP_HASH, True)
    FakeCoordinator.configs = []
    FakeCoordinator.calls = []
    monkeypatch.setattr(cli_module, "RelayCoordinator", FakeCoordinator)
    return FakeCoordinator


class TestEncode:
    """Tests for the encode command."""

    def test_extra_signature(self, runner, tmp_path):
        signatures = tmp_path / "signatures.txt"
        signatures.write_text("# extra functions\nclaim(uint256)\n")

        result = runner.invoke(
            cli, ["encode", TARGET, "claim(uint256)", "--args", "[42]", "--signature-file", str(signatures)]
        )

        assert result.exit_code == EXIT_OK
        calldata = result.output.strip()
        assert calldata.startswith("0x" + CLAIM_SELECTOR)
        assert int(calldata[10:], 16) == 42

    def test_known_function(self, runner):
        result = runner.invoke(cli, ["encode", TARGET, "claim", "--args", '[1, 2, "0xdeadbeef"]'])

        assert result.exit_code == EXIT_OK
        assert result.output.strip().startswith("0x")

    def test_unknown_function(self, runner):
        result = runner.invoke(cli, ["encode", TARGET, "withdraw", "--args", "[]"])

        assert result.exit_code == EXIT_CALLER_ERROR
        assert "Unknown function" in result.output

    def test_args_must_be_a_list(self, runner):
        result = runner.invoke(cli, ["encode", TARGET, "claim", "--args", '{"fid": 1}'])

        assert result.exit_code == 2
        assert "JSON array" in result.output


class TestConfig:
    """Tests for the config command."""

    def test_json_masks_keys(self, runner):
        result = runner.invoke(
            cli,
            ["--sponsor-url", "https://api.pimlico.io/v2/42220/rpc?apikey=secret", "config", "--json"],
        )

        assert result.exit_code == EXIT_OK
        summary = json.loads(result.output)
        assert summary["chain_id"] == 42220
        assert summary["sponsor_rpc"] == "https://api.pimlico.io/v2/42220/rpc?<params_masked>"
        assert summary["bundler_rpc"] == summary["sponsor_rpc"]
        assert "secret" not in result.output

    def test_chain_option(self, runner):
        result = runner.invoke(
            cli, ["--chain", "celo_alfajores", "--sponsor-url", "https://sponsor.example", "config", "--json"]
        )

        summary = json.loads(result.output)
        assert summary["chain_id"] == 44787
        assert summary["execution_rpc"] == "https://alfajores-forno.celo-testnet.org"

    def test_separate_bundler(self, runner):
        result = runner.invoke(
            cli,
            [
                "--sponsor-url", "https://sponsor.example",
                "--bundler-url", "https://bundler.example",
                "config", "--json",
            ],
        )

        summary = json.loads(result.output)
        assert summary["sponsor_rpc"] == "https://sponsor.example"
        assert summary["bundler_rpc"] == "https://bundler.example"

    def test_table(self, runner):
        result = runner.invoke(cli, ["config"])

        assert result.exit_code == EXIT_OK
        assert "entry_point" in result.output


class TestRelay:
    """Tests for the relay command."""

    def test_requires_sponsor_url(self, runner, fake_coordinator):
        result = runner.invoke(cli, ["relay", TARGET, "claim", "--args", '[1, 2, "0x01"]', "--caller", CALLER])

        assert result.exit_code == EXIT_CALLER_ERROR
        assert "no sponsor URL" in result.output
        assert fake_coordinator.calls == []

    def test_included(self, runner, fake_coordinator):
        result = runner.invoke(
            cli,
            [
                "--sponsor-url", "https://sponsor.example",
                "relay", TARGET, "claim",
                "--args", '[1, 2, "0x01"]',
                "--caller", CALLER,
                "--deadline", "45",
                "--json",
            ],
        )

        assert result.exit_code == EXIT_OK
        assert json.loads(result.output) == {"transactionHash": TX_HASH}
        (name, intent, caller, signature, deadline), = fake_coordinator.calls
        assert name == "relay"
        assert intent.arguments == (1, 2, "0x01")
        assert caller == CALLER
        assert signature is None
        assert deadline == 45.0
        assert fake_coordinator.configs[0].sponsor.url == "https://sponsor.example"

    @pytest.mark.parametrize(
        ("failure", "exit_code"),
        [
            (Failed(ErrorKind.SIMULATION_REVERTED, "Call reverted: already claimed"), EXIT_CALLER_ERROR),
            (Failed(ErrorKind.SPONSORSHIP_DENIED, "rate limited"), EXIT_FAILED),
            (Failed(ErrorKind.TIMED_OUT, "No receipt", USER_OP_HASH), EXIT_FAILED),
        ],
    )
    def test_failed(self, runner, fake_coordinator, failure, exit_code):
        fake_coordinator.outcome = failure

        result = runner.invoke(
            cli,
            [
                "--sponsor-url", "https://sponsor.example",
                "relay", TARGET, "claim", "--args", '[1, 2, "0x01"]', "--caller", CALLER, "--json",
            ],
        )

        assert result.exit_code == exit_code
        assert json.loads(result.output) == {"kind": failure.kind.value, "message": failure.message}

    def test_invalid_args_json(self, runner, fake_coordinator):
        result = runner.invoke(
            cli,
            ["--sponsor-url", "https://sponsor.example", "relay", TARGET, "claim", "--args", "[1,", "--caller", CALLER],
        )

        assert result.exit_code == 2
        assert fake_coordinator.calls == []


class TestReceipt:
    """Tests for the receipt command."""

    def test_track(self, runner, fake_coordinator):
        result = runner.invoke(
            cli,
            [
                "--sponsor-url", "https://sponsor.example",
                "receipt", USER_OP_HASH, "--attempts", "5", "--interval", "0.5", "--json",
            ],
        )

        assert result.exit_code == EXIT_OK
        assert fake_coordinator.calls == [("track", USER_OP_HASH)]
        polling = fake_coordinator.configs[0].polling
        assert polling.max_attempts == 5
        assert polling.interval_seconds == 0.5

    def test_requires_bundler_url(self, runner, fake_coordinator):
        result = runner.invoke(cli, ["receipt", USER_OP_HASH])

        assert result.exit_code == EXIT_CALLER_ERROR
        assert fake_coordinator.calls == []

    def test_zero_interval_is_kept(self, runner, fake_coordinator):
        result = runner.invoke(
            cli,
            ["--sponsor-url", "https://sponsor.example", "receipt", USER_OP_HASH, "--interval", "0", "--json"],
        )

        assert result.exit_code == EXIT_OK
        assert fake_coordinator.configs[0].polling.interval_seconds == 0.0

    def test_zero_attempts_is_rejected(self, runner, fake_coordinator):
        result = runner.invoke(
            cli,
            ["--sponsor-url", "https://sponsor.example", "receipt", USER_OP_HASH, "--attempts", "0"],
        )

        assert result.exit_code == 2
        assert "--attempts" in result.output
        assert fake_coordinator.calls == []
