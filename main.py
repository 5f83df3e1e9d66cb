# main.py
import asyncio
import sys
import time
import questionary
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.console import Console
from rich.panel import Panel

# Import Engines
from launchsniper.config import AppConfig, load_config, with_dry_run
from launchsniper.logger import setup_console_logger, AsyncAuditLogger
from launchsniper.market_engine import PlatformClient
from launchsniper.chain import (
    MevProtector, StaticBalanceProvider, TransactionSubmitter, Web3BalanceProvider, Web3Submitter,
    connect_chain,
)
from launchsniper.gas import GasOptimizer, gwei_to_wei
from launchsniper.analyzer import OpportunityAnalyzer
from launchsniper.risk_engine import RiskEngine
from launchsniper.dedup import DecisionGuard
from launchsniper.events import EventBus
from launchsniper.execution import ExecutionService
from launchsniper.lifecycle import TradeManager
from launchsniper.scheduler import Scheduler
from launchsniper.strategy import SniperStrategy
from launchsniper.exceptions import SniperError

# --- UI HELPER FUNCTIONS ---

def startup_selection(config: AppConfig) -> bool:
    """Interactive CLI to pick the execution mode. Returns True for dry run."""
    print("\n🎯 FAIR LAUNCH SNIPER \n")
    default = "Dry run (simulated fills)" if config.system.dry_run else "Live trading"
    mode = questionary.select(
        "Execution mode:",
        choices=["Dry run (simulated fills)", "Live trading"],
        default=default,
    ).ask()
    if mode is None:
        print("No mode selected. Exiting.")
        sys.exit()
    if mode == "Live trading":
        ok = questionary.confirm(
            f"Trade real funds? Max position {config.sniper.max_position_size} per snipe.",
            default=False,
        ).ask()
        if not ok:
            print("Live trading not confirmed. Exiting.")
            sys.exit()
        return False
    return True


def generate_dashboard(strategy: SniperStrategy, trades: TradeManager, gas: GasOptimizer, dry_run: bool):
    """
    Creates the Rich Console Dashboard layout.
    Shows monitored launches, snipes and realized profit.
    """

    # 1. Launch Table
    token_table = Table(title="📡 Monitored Launches")
    token_table.add_column("Token", style="cyan")
    token_table.add_column("Address", style="dim")
    token_table.add_column("Launched", justify="right")

    now = time.time()
    for token in strategy.monitored_tokens[-10:]:
        age = token.launched_for(now)
        token_table.add_row(token.symbol, token.address[:10] + "…", f"{age:,.0f}s" if age >= 0 else "soon")

    # 2. Snipe Table
    trade_table = Table(title="🎯 Snipes")
    trade_table.add_column("Token", style="magenta")
    trade_table.add_column("Status")
    trade_table.add_column("Amount", justify="right")
    trade_table.add_column("Entry", justify="right")
    trade_table.add_column("SL / TP", justify="right")
    trade_table.add_column("PnL", justify="right")

    colors = {"PENDING": "yellow", "ACTIVE": "green", "COMPLETED": "cyan", "STOPPED": "red"}
    for trade in trades.trades[-12:]:
        status = trade.status.value
        trade_table.add_row(
            trade.token.symbol,
            f"[{colors[status]}]{status}[/{colors[status]}]",
            f"{trade.amount:.4f}",
            f"{trade.entry_price:.8f}",
            f"{trade.stop_loss:.8f} / {trade.take_profit:.8f}",
            f"{trade.realized_pnl:+.4f}",
        )

    # Layout Construction
    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="bottom")
    )

    layout["top"].split_row(
        Layout(Panel(token_table)),
        Layout(Panel(trade_table))
    )

    mode = "DRY RUN" if dry_run else "LIVE"
    footer = Panel(
        f"[bold gold1]TOTAL PROFIT: {trades.total_profit:+.6f}[/bold gold1] | {mode} | "
        f"Gas: {gas.last_gwei:.2f} gwei ({gas.gas_price_trend()}) | {strategy.last_status}",
        style="white on blue",
    )
    layout["bottom"].update(footer)
    layout["bottom"].size = 3

    return layout

# --- MAIN CONTROLLER ---

class SniperBot:
    def __init__(self, config: AppConfig):
        self.config = config
        self.logger = setup_console_logger("LaunchSniper", config.system.log_level, config.system.log_file or None)
        self.audit_log = AsyncAuditLogger(config.system.trade_log)

        self.bus = EventBus()
        self.guard = DecisionGuard()
        self.scheduler = Scheduler(self.logger)
        self.market = PlatformClient(config.platform, self.logger)
        self.analyzer = OpportunityAnalyzer(config.sniper, self.logger)
        self.risk = RiskEngine(config.sniper, self.logger)

        self.chain = None
        self.gas = None
        self.trades = None
        self.strategy = None
        self._audit_task = None

    async def initialize(self):
        """
        Connects every required collaborator. Any failure propagates: the
        bot does not start half-wired.
        """
        cfg = self.config
        timeout = cfg.collaborator_timeout
        await self.market.initialize()
        paper_gas = gwei_to_wei(cfg.chain.min_gas_price_gwei)

        if cfg.chain.rpc_url or not cfg.system.dry_run:
            self.chain = await connect_chain(cfg.chain, timeout, self.logger)
            w3 = self.chain.w3

            async def fetch_gas_price() -> int:
                return await w3.eth.gas_price
        else:
            self.logger.warning(f"⚠️ No RPC configured; dry run prices gas at {cfg.chain.min_gas_price_gwei} gwei")

            async def fetch_gas_price() -> int:
                return paper_gas

        self.gas = GasOptimizer(fetch_gas_price, paper_gas, self.logger)
        await self.gas.refresh_history()

        if cfg.system.dry_run:
            balance = StaticBalanceProvider(cfg.system.paper_balance)
            submitter = TransactionSubmitter()
        else:
            balance = Web3BalanceProvider(self.chain.w3, self.chain.wallet)
            submitter = Web3Submitter(
                self.chain.w3, self.chain.account, cfg.chain.chain_id, cfg.chain.confirmation_timeout_seconds,
                self.logger, relay_w3=self.chain.relay_w3,
            )
        self.logger.info(f"💰 Available balance: {await balance.available_balance():.6f}")

        execution = ExecutionService(
            cfg.sniper, self.gas, MevProtector(cfg.sniper.max_slippage, cfg.chain.deadline_seconds),
            submitter, self.bus, self.logger, timeout,
            confirmation_timeout=cfg.chain.confirmation_timeout_seconds + timeout,
            dry_run=cfg.system.dry_run,
        )
        self.trades = TradeManager(cfg.sniper, execution, self.guard, self.bus, self.logger)
        self.strategy = SniperStrategy(
            cfg, self.market, self.analyzer, self.risk, balance, self.gas,
            self.guard, self.trades, execution, self.logger,
        )

    def start_tasks(self):
        iv = self.config.intervals
        self.scheduler.every("token-poll", iv.token_poll_seconds, self.strategy.poll_new_tokens)
        self.scheduler.every("bonding-curve-poll", iv.bonding_curve_poll_seconds, self.strategy.poll_bonding_curves)
        self.scheduler.every("exit-monitor", iv.exit_check_seconds, self.strategy.monitor_exits)
        self.scheduler.every("gas-sampler", iv.gas_sample_seconds, self.gas.refresh_history)

    async def run(self):
        try:
            print("Initializing Diagnostic Checks...")
            await self.audit_log.start()
            self._audit_task = asyncio.create_task(self.audit_log.consume(self.bus.subscribe()))
            try:
                await self.initialize()
            except SniperError as e:
                print(f"❌ Diagnostic Failed: {e}")
                raise

            self.start_tasks()
            console = Console()
            with Live(console=console, refresh_per_second=4) as live:
                while not self.trades.halted:
                    live.update(generate_dashboard(
                        self.strategy, self.trades, self.gas, self.config.system.dry_run
                    ))
                    await asyncio.sleep(0.25)
        finally:
            print("Shutting down resources...")
            await self.shutdown()

    async def shutdown(self):
        if self.trades is not None:
            self.trades.stop_all()
        await self.scheduler.cancel_all()
        await self.market.shutdown()
        if self._audit_task:
            self._audit_task.cancel()
        await self.audit_log.stop()


if __name__ == "__main__":
    try:
        app_config = load_config("config.yaml")
        dry_run = startup_selection(app_config)
        bot = SniperBot(with_dry_run(app_config, dry_run))
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(bot.run())
    except SniperError as e:
        print(f"❌ Startup failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n🛑 Bot Stopped by User.")
        sys.exit()
