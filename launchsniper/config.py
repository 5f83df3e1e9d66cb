# launchsniper/config.py
"""
Configuration loading.

config.yaml holds the tunables, secrets come from the environment (optionally
a .env file). The result is a frozen AppConfig built once at startup and
handed to every engine by the bot controller.
"""
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigError

# Upper-case option name -> SniperConfig field
SNIPER_ENV_OPTIONS = {
    "MAX_SLIPPAGE": "max_slippage",
    "MAX_GAS_PRICE": "max_gas_price",
    "MIN_LIQUIDITY": "min_liquidity",
    "MAX_POSITION_SIZE": "max_position_size",
    "PROFIT_THRESHOLD": "profit_threshold",
    "STOP_LOSS_PERCENTAGE": "stop_loss_percentage",
    "TAKE_PROFIT_PERCENTAGE": "take_profit_percentage",
    "BONDING_CURVE_THRESHOLD": "bonding_curve_threshold",
    "FAIR_LAUNCH_DELAY": "fair_launch_delay",
}


@dataclass(frozen=True)
class SniperConfig:
    max_slippage: float = 0.05
    max_gas_price: float = 20.0  # gwei
    min_liquidity: float = 10000.0
    max_position_size: float = 0.1
    profit_threshold: float = 0.01
    stop_loss_percentage: float = 10.0
    take_profit_percentage: float = 20.0
    bonding_curve_threshold: float = 0.8
    fair_launch_delay: float = 1.0  # seconds after launch before the first snipe
    # Formerly hardcoded estimate parameters
    target_multiplier: float = 2.0
    reference_trade_size: float = 1.0
    base_price: float = 0.001
    gas_limit: int = 150000
    # Sell transactions per trade before the position is written off
    max_exit_attempts: int = 3


@dataclass(frozen=True)
class IntervalConfig:
    token_poll_seconds: float = 5.0
    bonding_curve_poll_seconds: float = 2.0
    exit_check_seconds: float = 2.0
    gas_sample_seconds: float = 3.0


@dataclass(frozen=True)
class PlatformConfig:
    api_url: str = "https://api.four.meme"
    api_key: str = ""
    request_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class ChainConfig:
    rpc_url: str = ""
    private_rpc_url: str = ""
    chain_id: int = 56
    private_key: str = field(default="", repr=False)
    min_gas_price_gwei: float = 1.0
    confirmation_timeout_seconds: float = 60.0
    deadline_seconds: int = 30


@dataclass(frozen=True)
class SystemConfig:
    environment: str = "mainnet"
    dry_run: bool = True
    log_level: str = "INFO"
    log_file: str = ""
    collaborator_timeout_seconds: float = 10.0
    trade_log: str = "logs/trades.csv"
    paper_balance: float = 1.0


@dataclass(frozen=True)
class AppConfig:
    sniper: SniperConfig = field(default_factory=SniperConfig)
    intervals: IntervalConfig = field(default_factory=IntervalConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def collaborator_timeout(self) -> float:
        return self.system.collaborator_timeout_seconds


def _coerce(section: str, name: str, default: Any, value: Any) -> Any:
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(default, int):
            return int(float(value))
        if isinstance(default, float):
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {section}.{name}: {value!r}", error=str(e)) from e


def _build(cls, section: str, raw: Optional[Mapping[str, Any]]):
    raw = raw or {}
    defaults = cls()
    kwargs = {}
    for f in fields(cls):
        if f.name in raw and raw[f.name] is not None:
            kwargs[f.name] = _coerce(section, f.name, getattr(defaults, f.name), raw[f.name])
    unknown = set(raw) - {f.name for f in fields(cls)}
    if unknown:
        raise ConfigError(f"Unknown keys in '{section}' section", keys=sorted(unknown))
    return cls(**kwargs)


def validate(cfg: AppConfig):
    s = cfg.sniper
    if not 0 <= s.max_slippage <= 1:
        raise ConfigError("max_slippage must be within 0..1", value=s.max_slippage)
    if not 0 <= s.bonding_curve_threshold <= 1:
        raise ConfigError("bonding_curve_threshold must be within 0..1", value=s.bonding_curve_threshold)
    if not 0 <= s.stop_loss_percentage < 100:
        raise ConfigError("stop_loss_percentage must be within 0..100", value=s.stop_loss_percentage)
    for name in ("max_gas_price", "min_liquidity", "max_position_size", "take_profit_percentage",
                 "fair_launch_delay", "reference_trade_size", "base_price"):
        if getattr(s, name) < 0:
            raise ConfigError(f"{name} must not be negative", value=getattr(s, name))
    if s.target_multiplier <= 0 or s.gas_limit <= 0 or s.max_exit_attempts <= 0:
        raise ConfigError("target_multiplier, gas_limit and max_exit_attempts must be positive")
    for f in fields(IntervalConfig):
        if getattr(cfg.intervals, f.name) <= 0:
            raise ConfigError(f"intervals.{f.name} must be positive")
    if cfg.system.collaborator_timeout_seconds <= 0:
        raise ConfigError("collaborator_timeout_seconds must be positive")
    if not cfg.system.dry_run and not (cfg.chain.rpc_url and cfg.chain.private_key):
        raise ConfigError("Live trading requires RPC_URL and PRIVATE_KEY")


def build_config(raw: Optional[Mapping[str, Any]], environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Builds an AppConfig from the parsed YAML mapping, applying the recognised
    upper-case environment overrides on top.
    """
    raw = dict(raw or {})
    env = os.environ if environ is None else environ

    sniper_raw = dict(raw.get("sniper") or {})
    for env_name, attr in SNIPER_ENV_OPTIONS.items():
        if env.get(env_name):
            sniper_raw[attr] = env[env_name]

    system_raw: Dict[str, Any] = dict(raw.get("system") or {})
    system_raw.update(raw.get("performance") or {})
    if raw.get("audit"):
        system_raw["trade_log"] = raw["audit"].get("trade_log", SystemConfig.trade_log)
    if raw.get("paper"):
        system_raw["paper_balance"] = raw["paper"].get("starting_balance", SystemConfig.paper_balance)
    if env.get("LOG_LEVEL"):
        system_raw["log_level"] = env["LOG_LEVEL"]

    platform_raw = dict(raw.get("platform") or {})
    if env.get("PLATFORM_API_URL"):
        platform_raw["api_url"] = env["PLATFORM_API_URL"]
    if env.get("PLATFORM_API_KEY"):
        platform_raw["api_key"] = env["PLATFORM_API_KEY"]

    chain_raw = dict(raw.get("chain") or {})
    for env_name, attr in (("RPC_URL", "rpc_url"), ("PRIVATE_RPC_URL", "private_rpc_url"),
                           ("PRIVATE_KEY", "private_key")):
        if env.get(env_name):
            chain_raw[attr] = env[env_name]

    cfg = AppConfig(
        sniper=_build(SniperConfig, "sniper", sniper_raw),
        intervals=_build(IntervalConfig, "intervals", raw.get("intervals")),
        platform=_build(PlatformConfig, "platform", platform_raw),
        chain=_build(ChainConfig, "chain", chain_raw),
        system=_build(SystemConfig, "system", system_raw),
    )
    validate(cfg)
    return cfg


def load_config(path: str = "config.yaml", env_file: Optional[str] = None) -> AppConfig:
    load_dotenv(dotenv_path=env_file)
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file is not valid YAML: {path}", error=str(e)) from e
    return build_config(raw)


def with_dry_run(cfg: AppConfig, dry_run: bool) -> AppConfig:
    """Returns a copy with the execution mode chosen at startup."""
    cfg = replace(cfg, system=replace(cfg.system, dry_run=dry_run))
    validate(cfg)
    return cfg
