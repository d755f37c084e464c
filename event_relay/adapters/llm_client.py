"""LLM client adapter for event detection.

Implements EventAnalyzerProtocol with the OpenAI async client.
"""

import hashlib
import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Final

import pytz
import yaml
from openai import APIError, AsyncOpenAI
from openai import RateLimitError as OpenAIRateLimitError
from pydantic import ValidationError as PydanticValidationError

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import LLMAPIError
from event_relay.domain.models import AnalysisResult
from event_relay.observability.metrics import LLM_ANALYSIS_DURATION_SECONDS

DEFAULT_PROMPT_PATH: Final[Path] = Path("config/prompts/whatsapp.yaml")
DEFAULT_IMAGE_MIME_TYPE: Final[str] = "image/jpeg"

logger = get_logger(__name__)


@dataclass(frozen=True)
class PromptFileData:
    """Loaded prompt payload with metadata."""

    content: str
    version: str | None
    checksum: str
    path: Path


@dataclass
class _PromptCacheEntry:
    mtime: float
    data: PromptFileData


_PROMPT_CACHE: dict[Path, _PromptCacheEntry] = {}


def load_prompt_from_file(file_path: str | Path) -> PromptFileData:
    """Load a system prompt from a file with mtime-based caching.

    YAML files must be a mapping with ``version`` and ``system`` strings;
    any other file is used verbatim.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If YAML prompt file has invalid structure
    """
    raw_path = Path(file_path).expanduser()
    path = raw_path if raw_path.is_absolute() else (Path.cwd() / raw_path).resolve()

    if not path.exists():
        repo_root = Path(__file__).resolve().parents[2]
        alt_path = (repo_root / raw_path).resolve()
        if alt_path.exists():
            path = alt_path
        else:
            raise FileNotFoundError(f"Prompt file not found: {file_path}")

    stat_result = path.stat()
    cache_entry = _PROMPT_CACHE.get(path)
    if cache_entry and cache_entry.mtime == stat_result.st_mtime:
        return cache_entry.data

    if path.suffix.lower() in {".yaml", ".yml"}:
        parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(parsed, dict):
            raise ValueError(f"Prompt YAML must be a mapping: {path}")

        version = parsed.get("version")
        if not isinstance(version, str):
            raise ValueError(f"Prompt YAML missing 'version' string: {path}")

        system_prompt = parsed.get("system")
        if not isinstance(system_prompt, str):
            raise ValueError(f"Prompt YAML missing 'system' string: {path}")
    else:
        system_prompt = path.read_text(encoding="utf-8")
        version = None

    prompt_data = PromptFileData(
        content=system_prompt,
        version=version,
        checksum=hashlib.sha256(system_prompt.encode("utf-8")).hexdigest(),
        path=path,
    )
    _PROMPT_CACHE[path] = _PromptCacheEntry(
        mtime=stat_result.st_mtime, data=prompt_data
    )
    return prompt_data


def parse_analysis_content(content: str | None) -> AnalysisResult:
    """Validate a raw JSON response into an AnalysisResult.

    Accepts the ``{"hasEvents", "events"}`` shape and the single-event
    ``{"isEvent", ...}`` shape. Anything malformed yields the empty result.
    """
    if not content:
        logger.warning("llm_response_empty")
        return AnalysisResult.empty()

    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.warning(
            "llm_response_invalid_json",
            error=str(exc),
            preview=content,
        )
        return AnalysisResult.empty()

    if not isinstance(data, dict):
        logger.warning("llm_response_not_object", type=type(data).__name__)
        return AnalysisResult.empty()

    if "events" not in data and "isEvent" in data:
        data = {"hasEvents": data.get("isEvent") is True, "events": [data]}

    try:
        return AnalysisResult.model_validate(data)
    except PydanticValidationError as exc:
        logger.warning(
            "llm_response_validation_failed",
            error=str(exc),
            preview=content,
        )
        return AnalysisResult.empty()


class LLMClient:
    """OpenAI client that detects events in WhatsApp messages."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        temperature: float = 0.3,
        max_tokens: int = 1500,
        timeout: int = 60,
        prompt_file: str | Path | None = None,
        prompt_template: str | None = None,
        focused_instructions: str = "",
        tz_name: str = "Asia/Jerusalem",
        now: Callable[[], datetime] | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize LLM client.

        Args:
            api_key: OpenAI API key
            model: Model name
            temperature: Sampling temperature
            max_tokens: Response token limit
            timeout: Request timeout in seconds
            prompt_file: Path to prompt file (takes precedence over prompt_template)
            prompt_template: Inline system prompt (optional)
            focused_instructions: Extra instructions appended to every request
            tz_name: Timezone the model should assume for dates
            now: Current-time provider (defaults to the wall clock)
            client: Preconfigured AsyncOpenAI client (optional)
        """
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.focused_instructions = focused_instructions.strip()
        self.tz_name = tz_name
        self._tz = pytz.timezone(tz_name)
        self._now = now or (lambda: datetime.now(self._tz))
        self.prompt_version: str | None = None

        if prompt_file is not None or prompt_template is None:
            prompt_data = load_prompt_from_file(prompt_file or DEFAULT_PROMPT_PATH)
            self.system_prompt = prompt_data.content
            self.prompt_version = prompt_data.version
            prompt_path = str(prompt_data.path)
        else:
            self.system_prompt = prompt_template
            prompt_path = "<inline>"

        logger.info(
            "llm_system_prompt_ready",
            prompt_hash=hashlib.sha256(self.system_prompt.encode("utf-8")).hexdigest(),
            prompt_version=self.prompt_version,
            prompt_path=prompt_path,
            model=self.model,
        )

    async def analyze_message(
        self,
        text: str,
        *,
        chat_name: str,
        sender: str,
        history: list[str],
        image_base64: str | None = None,
        image_mime_type: str | None = None,
    ) -> AnalysisResult:
        """Detect events in a message.

        Returns:
            Analysis result (empty on malformed responses)

        Raises:
            LLMAPIError: On API communication errors
        """
        prompt = self._build_prompt(text, chat_name, sender, history)
        user_content: str | list[dict[str, Any]] = prompt
        if image_base64:
            mime_type = image_mime_type or DEFAULT_IMAGE_MIME_TYPE
            user_content = [
                {"type": "text", "text": prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime_type};base64,{image_base64}"},
                },
            ]

        logger.debug(
            "llm_request",
            model=self.model,
            chat_name=chat_name,
            prompt_length=len(prompt),
            with_image=bool(image_base64),
        )

        try:
            with LLM_ANALYSIS_DURATION_SECONDS.time():
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": self.system_prompt},
                        {"role": "user", "content": user_content},
                    ],
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    response_format={"type": "json_object"},
                )
        except OpenAIRateLimitError as e:
            raise LLMAPIError(f"Rate limit exceeded: {e}") from e
        except APIError as e:
            raise LLMAPIError(f"OpenAI API error: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        result = parse_analysis_content(content)

        usage = response.usage
        logger.info(
            "llm_analysis_complete",
            chat_name=chat_name,
            has_events=result.has_events,
            events=len(result.events),
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
        )
        return result

    def _build_prompt(
        self, text: str, chat_name: str, sender: str, history: list[str]
    ) -> str:
        """Build user prompt for LLM."""
        now = self._now()
        prompt_parts = [
            f"Current date: {now:%A, %Y-%m-%d %H:%M}",
            f"Timezone: {self.tz_name}",
            f"Chat: {chat_name}" if chat_name else "",
            f"Sender: {sender or 'Unknown'}",
        ]

        if history:
            prompt_parts.append(
                "\nPrevious messages for context:\n"
                + "\n".join(f"[{i}] {msg}" for i, msg in enumerate(history, 1))
            )

        if self.focused_instructions:
            prompt_parts.append(f"\nAdditional instructions:\n{self.focused_instructions}")

        prompt_parts.append(f"\nCurrent message:\n{text or '(image without caption)'}")

        return "\n".join(part for part in prompt_parts if part)
