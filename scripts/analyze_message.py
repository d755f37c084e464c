"""Analyze a message for events without sending anything.

Example:
    python scripts/analyze_message.py "מחר בשעה 10:00 פגישה בקפה" --chat-name "Family"
    python scripts/analyze_message.py --image flyer.jpg
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import mimetypes
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from scripts import bot_runtime
from event_relay.adapters.llm_client import LLMClient
from event_relay.adapters.whatsapp_bridge import WhatsAppBridgeClient
from event_relay.config.settings import get_settings
from event_relay.domain.models import DryRunResult
from event_relay.use_cases.intake_gate import DRY_RUN_CHAT_NAME, build_intake_gate

# OpenAI SDK reads OPENAI_* variables from os.environ.
load_dotenv()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dry-run event detection")
    parser.add_argument("text", nargs="?", default="", help="Message text or caption")
    parser.add_argument(
        "--chat-name", default=DRY_RUN_CHAT_NAME, help="Chat name given as context"
    )
    parser.add_argument("--image", type=Path, help="Image file to analyze")
    args = parser.parse_args(argv)
    if not args.text.strip() and args.image is None:
        parser.error("provide message text, an image, or both")
    return args


async def analyze(args: argparse.Namespace) -> DryRunResult:
    settings = get_settings()
    bot_runtime.initialize_logging(settings)

    image_base64: str | None = None
    image_mime_type: str | None = None
    if args.image is not None:
        image_base64 = base64.b64encode(args.image.read_bytes()).decode("ascii")
        image_mime_type = mimetypes.guess_type(args.image.name)[0] or "image/jpeg"

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
    # The bridge is never called during a dry run.
    bridge = WhatsAppBridgeClient(settings.bridge_url)
    try:
        gate = build_intake_gate(settings, bridge, analyzer)
        return await gate.dry_run_message(
            args.text,
            chat_name=args.chat_name,
            image_base64=image_base64,
            image_mime_type=image_mime_type,
        )
    finally:
        await bridge.aclose()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    result = asyncio.run(analyze(args))

    print(
        json.dumps(
            result.model_dump(mode="json", by_alias=True, exclude={"formatted_messages"}),
            ensure_ascii=False,
            indent=2,
        )
    )
    for formatted in result.formatted_messages:
        print("\n" + formatted)
    return 0 if result.has_events else 1


if __name__ == "__main__":
    sys.exit(main())
