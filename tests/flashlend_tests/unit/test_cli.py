"""
Tests for the flashlend CLI.
"""

import json
import logging

import pytest
import yaml
from click.testing import CliRunner

from flashlend.cli.main import cli


@pytest.fixture(autouse=True)
def reset_cli_logging():
    """The CLI binds the flashlend logger to the runner's stderr."""
    yield
    logger = logging.getLogger("flashlend")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path):
    default = {
        "protocol": {"owner": "admin", "fee_beneficiary": "vault"},
        "assets": {
            "TKN": {
                "max_amount": 10_000,
                "min_amount": 100,
                "base_premium_rate_bps": 10,
                "dynamic_premium_rate_bps": 5,
            }
        },
    }
    (tmp_path / "default.yaml").write_text(yaml.safe_dump(default))
    return tmp_path


def test_assets_table(runner, config_dir):
    result = runner.invoke(cli, ["--config-dir", str(config_dir), "assets"], obj={})

    assert result.exit_code == 0
    assert "TKN" in result.output


def test_packaged_assets(runner):
    result = runner.invoke(cli, ["--json-output", "assets"], obj={})

    assert result.exit_code == 0
    assert set(json.loads(result.output)) == {"USDC", "WETH"}


def test_assets_json(runner, config_dir):
    result = runner.invoke(
        cli, ["--config-dir", str(config_dir), "--json-output", "assets"], obj={}
    )

    assert result.exit_code == 0
    assert json.loads(result.output)["TKN"]["min_amount"] == 100


def test_quote_json(runner):
    result = runner.invoke(cli, ["--json-output", "quote", "USDC", "10000000"], obj={})

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload == {
        "asset": "USDC",
        "amount": 10_000_000,
        "premium": 9_000,
        "repayment": 10_009_000,
    }


def test_quote_unknown_asset(runner):
    result = runner.invoke(cli, ["quote", "DAI", "1000"], obj={})

    assert result.exit_code == 1
    assert "DAI" in result.output


def test_quote_rejects_negative_amount(runner):
    result = runner.invoke(cli, ["quote", "USDC", "-5"], obj={})

    assert result.exit_code == 2


def test_simulate_commits(runner, config_dir):
    result = runner.invoke(
        cli,
        ["--config-dir", str(config_dir), "--json-output", "simulate", "TKN", "1000"],
        obj={},
    )

    assert result.exit_code == 0
    outcome = json.loads(result.output)
    assert outcome["status"] == "committed"
    assert outcome["premium"] == 1
    assert outcome["loan_count"] == 1
    assert outcome["fees_collected"] == 1
    assert outcome["available_liquidity"] == 10_000


def test_simulate_underpay_reverts(runner, config_dir):
    result = runner.invoke(
        cli,
        ["--config-dir", str(config_dir), "simulate", "TKN", "2000", "--underpay"],
        obj={},
    )

    assert result.exit_code == 1
    assert "reverted" in result.output
    assert "LoanNotRepaidError" in result.output


def test_simulate_insufficient_liquidity(runner, config_dir):
    result = runner.invoke(
        cli,
        [
            "--config-dir", str(config_dir),
            "simulate", "TKN", "5000",
            "--seed-liquidity", "1000",
        ],
        obj={},
    )

    assert result.exit_code == 1
    assert "InsufficientLiquidityError" in result.output


def test_simulate_unknown_asset(runner, config_dir):
    result = runner.invoke(
        cli, ["--config-dir", str(config_dir), "simulate", "DAI", "1000"], obj={}
    )

    assert result.exit_code == 1
    assert "DAI" in result.output


def test_invalid_config_reported(runner, tmp_path):
    (tmp_path / "default.yaml").write_text(yaml.safe_dump({"assets": {"TKN": {"max_amount": 0}}}))

    result = runner.invoke(cli, ["--config-dir", str(tmp_path), "assets"], obj={})

    assert result.exit_code == 1
    assert "TKN" in result.output
