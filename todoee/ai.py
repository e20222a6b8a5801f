"""Natural-language task parsing through a local Ollama model."""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import ollama

from .config import AiConfig
from .errors import AiParsingError, AiServiceError
from .models import Priority, from_iso, utcnow

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a task parsing assistant. Parse the user's input into a structured task.
Today's date is {today}.

Respond ONLY with a JSON object in this exact format:
{{
    "title": "Brief task title",
    "description": "Optional longer description or null",
    "due_date": "ISO 8601 datetime or null",
    "category": "Category name or null",
    "priority": "Integer 1-4 (1=highest) or null",
    "reminder_at": "ISO 8601 datetime or null"
}}

Rules:
- title is required and should be concise
- Use null for optional fields that aren't specified
- Convert relative dates (tomorrow, next week) to absolute ISO 8601 format
- Infer category from context (Work, Personal, Shopping, Health, etc.)
- Priority: 1=urgent, 2=high, 3=normal, 4=low
- Set reminder_at to 15 minutes before due_date if a due time is specified

Respond with ONLY the JSON object, no additional text."""


@dataclass
class ParsedTask:
    """A task extracted from free text."""

    title: str
    description: str | None = None
    due_date: datetime | None = None
    category: str | None = None
    priority: int | None = None  # 1 (urgent) to 4 (low)
    reminder_at: datetime | None = None

    @classmethod
    def from_json(cls, text: str) -> "ParsedTask":
        """Parse a model reply, tolerating text around the JSON object.

        Raises:
            AiParsingError: No usable JSON object with a title was found.
        """
        raw = extract_json(text) or text
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AiParsingError(f"Failed to parse AI response as JSON: {e}") from e
        if not isinstance(data, dict):
            raise AiParsingError("AI response is not a JSON object")

        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            raise AiParsingError("AI response has no title")

        try:
            return cls(
                title=title.strip(),
                description=data.get("description") or None,
                due_date=_parse_datetime(data.get("due_date")),
                category=data.get("category") or None,
                priority=int(data["priority"]) if data.get("priority") is not None else None,
                reminder_at=_parse_datetime(data.get("reminder_at")),
            )
        except (TypeError, ValueError) as e:
            raise AiParsingError(f"AI response has invalid fields: {e}") from e

    @property
    def todo_priority(self) -> Priority:
        """Map the 1-4 urgency scale onto todo priorities."""
        if self.priority is None:
            return Priority.MEDIUM
        if self.priority <= 2:
            return Priority.HIGH
        if self.priority == 3:
            return Priority.MEDIUM
        return Priority.LOW


def extract_json(text: str) -> str | None:
    """Return the first balanced ``{...}`` object in ``text``.

    Braces inside JSON strings are ignored. Returns None when there is no
    complete object.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escape_next = False
    for i, c in enumerate(text[start:], start):
        if escape_next:
            escape_next = False
            continue
        if c == "\\" and in_string:
            escape_next = True
        elif c == '"':
            in_string = not in_string
        elif c == "{" and not in_string:
            depth += 1
        elif c == "}" and not in_string:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _parse_datetime(value: Any) -> datetime | None:
    if value in (None, "", "null"):
        return None
    return from_iso(str(value).replace("Z", "+00:00"))


class TaskParser:
    """Turns free text into a ParsedTask using Ollama."""

    def __init__(self, config: AiConfig):
        self.config = config
        self._client = ollama.Client(host=config.base_url)

    async def parse_task(self, text: str) -> ParsedTask:
        """Ask the model to structure ``text``.

        Raises:
            AiServiceError: The model could not be reached.
            AiParsingError: The reply is not a valid task.
        """
        messages = [
            {
                "role": "system",
                "content": SYSTEM_PROMPT.format(today=utcnow().strftime("%Y-%m-%d")),
            },
            {"role": "user", "content": text},
        ]

        # Run synchronous ollama call in thread pool
        loop = asyncio.get_event_loop()
        try:
            response = await loop.run_in_executor(
                None,
                lambda: self._client.chat(
                    model=self.config.model,
                    messages=messages,
                    options={"temperature": 0.1},
                ),
            )
        except (ollama.ResponseError, ConnectionError, OSError) as e:
            raise AiServiceError(f"Ollama request failed: {e}") from e

        content = None
        if "message" in response and "content" in response["message"]:
            content = response["message"]["content"]
        if not content:
            raise AiParsingError("Empty response from model")

        logger.debug(f"Model reply: {content}")
        return ParsedTask.from_json(content)
