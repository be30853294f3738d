import asyncio

from dotenv import load_dotenv

from tradeflow.backend.core.config import Settings
from tradeflow.backend.core.log_config import configure_logging
from tradeflow.backend.core.system import TradingSystem
from tradeflow.backend.engine.models import TradingOptions, TradingRequest

# Load environment variables (for GEMINI_API_KEY, MONGODB_URL)
load_dotenv()


async def run_integration_test():
    """
    Walks a set of commands through the full pipeline against the paper broker.

    Ensure:
    1. GEMINI_API_KEY is set in the environment or .env file (complex commands
       fail with a resolution error without it; simple ones still work).
    2. Optionally JOURNAL_ENABLED=true with a local MongoDB to journal results.
    """

    # 1. Build the system from settings, forcing the paper broker
    settings = Settings(BROKER_PROVIDER="paper", CACHE_SWEEP_INTERVAL_SECONDS=0)
    configure_logging(settings.LOG_LEVEL)
    system = TradingSystem(settings)
    await system.start()

    print("\n--- Health ---")
    print(await system.orchestrator.health_check())

    # 2. Commands from cheapest to most expensive path
    commands = [
        ("Buy $100 of AAPL", False),                             # deterministic
        ("purchase 2 shares of nvda", False),                   # deterministic after normalization
        ("buy one hundred dollars worth of apple", True),       # number words and company name
        ("sell all TSLA", True),                                # rejected: no position
        ("hedge my LULU position with a collar", True),         # model
        ("should I buy META for the long term?", True),         # model, recommendation plugin
        ("what's the weather like", True),                      # best-effort fallback
    ]

    print("\n--- Starting Pipeline Walkthrough ---\n")

    for i, (text, dry_run) in enumerate(commands, 1):
        request = TradingRequest(input=text, options=TradingOptions(dry_run=dry_run))
        result = await system.orchestrator.process_trading_request(request)

        print(f"Step {i} | Input: '{text}' | dry_run={dry_run}")
        if result.intent:
            intent = result.intent
            print(f"Intent: {intent.intent.type} {intent.intent.symbol} via {intent.method} "
                  f"(plugin={intent.plugin_type}, model={intent.model}, confidence={intent.confidence:.2f})")
        if result.execution:
            print(f"Execution: {result.execution.status} {result.execution.executed_shares} @ {result.execution.executed_price}")
        print(f"Success: {result.success} | Error: {result.error} | Steps: {result.metadata.steps}")
        print("-" * 30)

    print("\n--- Account ---")
    account = await system.broker.get_account()
    print(f"Cash: {account.cash:.2f} | Positions: {[(p.symbol, round(p.quantity, 4)) for p in account.positions]}")

    print("\n--- Cost Report ---")
    report = system.selector.cost_report()
    print(f"Model requests: {report['total_requests']} | Avg cost: ${report['average_cost']:.6f} | Savings: ${report['cost_savings']:.6f}")

    await system.stop()


if __name__ == "__main__":
    asyncio.run(run_integration_test())
