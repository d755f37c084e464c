"""Entry point for the WhatsApp event relay bot."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from scripts import bot_runtime
from event_relay.adapters.llm_client import LLMClient
from event_relay.adapters.whatsapp_bridge import WhatsAppBridgeClient
from event_relay.config.logging_config import get_logger
from event_relay.config.settings import get_settings
from event_relay.use_cases.intake_gate import build_intake_gate

logger = get_logger(__name__)

# OpenAI SDK reads OPENAI_* variables from os.environ.
load_dotenv()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the WhatsApp event relay")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Keep third-party library logs at the configured level",
    )
    return parser.parse_args(argv)


async def run(verbose: bool = False) -> None:
    settings = get_settings()
    bot_runtime.initialize_logging(settings, verbose=verbose)
    bot_runtime.initialize_metrics(settings)

    bridge = WhatsAppBridgeClient(settings.bridge_url)
    analyzer = LLMClient(
        api_key=settings.openai_api_key.get_secret_value(),
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout_seconds,
        prompt_file=settings.llm_prompt_file,
        focused_instructions=settings.llm_focused_instructions,
        tz_name=settings.tz_default,
    )
    gate = build_intake_gate(settings, bridge, analyzer)

    controller = bot_runtime.ShutdownController()
    bot_runtime.install_signal_handlers(controller)

    logger.info(
        "bot_starting",
        bridge_url=settings.bridge_url,
        session_dir=settings.session_dir,
        target_group_name=settings.target_group_name,
    )
    try:
        await bot_runtime.run_until_shutdown(gate, bridge, controller)
    finally:
        await bridge.aclose()
    logger.info("bot_stopped")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    asyncio.run(run(verbose=args.verbose))
    return 0


if __name__ == "__main__":
    sys.exit(main())
