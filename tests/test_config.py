import pytest

from launchsniper.config import build_config, load_config, with_dry_run
from launchsniper.exceptions import ConfigError


class TestBuildConfig:
    def test_defaults(self):
        cfg = build_config({}, environ={})
        assert cfg.sniper.max_slippage == 0.05
        assert cfg.sniper.stop_loss_percentage == 10.0
        assert cfg.sniper.take_profit_percentage == 20.0
        assert cfg.system.dry_run is True
        assert cfg.collaborator_timeout == 10.0

    def test_environment_overrides_yaml(self):
        raw = {"sniper": {"min_liquidity": 5000, "max_slippage": 0.02}}
        env = {"MIN_LIQUIDITY": "25000", "FAIR_LAUNCH_DELAY": "3", "LOG_LEVEL": "DEBUG"}
        cfg = build_config(raw, environ=env)

        assert cfg.sniper.min_liquidity == 25000.0
        assert cfg.sniper.max_slippage == 0.02
        assert cfg.sniper.fair_launch_delay == 3.0
        assert cfg.system.log_level == "DEBUG"

    def test_secrets_from_environment(self):
        env = {"RPC_URL": "http://node", "PRIVATE_KEY": "0x" + "11" * 32, "PLATFORM_API_KEY": "k"}
        cfg = build_config({"system": {"dry_run": False}}, environ=env)

        assert cfg.chain.rpc_url == "http://node"
        assert cfg.platform.api_key == "k"
        assert "11" * 32 not in repr(cfg.chain)

    def test_side_sections_fold_into_system(self):
        raw = {
            "performance": {"collaborator_timeout_seconds": 4},
            "audit": {"trade_log": "out/audit.csv"},
            "paper": {"starting_balance": 3.5},
        }
        cfg = build_config(raw, environ={})
        assert cfg.collaborator_timeout == 4.0
        assert cfg.system.trade_log == "out/audit.csv"
        assert cfg.system.paper_balance == 3.5

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigError):
            build_config({"sniper": {"max_slipage": 0.1}}, environ={})

    def test_bad_value_rejected(self):
        with pytest.raises(ConfigError) as exc:
            build_config({}, environ={"MAX_SLIPPAGE": "lots"})
        assert "max_slippage" in str(exc.value)

    @pytest.mark.parametrize("raw", [
        {"sniper": {"max_slippage": 1.5}},
        {"sniper": {"min_liquidity": -1}},
        {"intervals": {"token_poll_seconds": 0}},
        {"sniper": {"max_exit_attempts": 0}},
    ])
    def test_out_of_range_rejected(self, raw):
        with pytest.raises(ConfigError):
            build_config(raw, environ={})

    def test_live_mode_needs_wallet(self):
        with pytest.raises(ConfigError):
            build_config({"system": {"dry_run": False}}, environ={})
        with pytest.raises(ConfigError):
            with_dry_run(build_config({}, environ={}), False)


class TestLoadConfig:
    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("intervals:\n  token_poll_seconds: 7\nsniper:\n  take_profit_percentage: 35\n")
        cfg = load_config(str(path), env_file=str(tmp_path / "missing.env"))

        assert cfg.intervals.token_poll_seconds == 7.0
        assert cfg.intervals.exit_check_seconds == 2.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "nope.yaml"), env_file=str(tmp_path / "missing.env"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sniper: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(str(path), env_file=str(tmp_path / "missing.env"))
