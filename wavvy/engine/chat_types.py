"""Core chat message and response types.

These types are internal to the library and are intentionally decoupled from
any transport or CLI surface.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal


FinishReason = Literal["stop", "length", "cancelled", "error"]


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Message:
    """A single role-tagged chat message."""

    role: Role
    content: str

    def __str__(self) -> str:
        return f"{self.role}: {self.content}"


@dataclass(frozen=True)
class Timing:
    prefill_s: float | None = None
    decode_s: float | None = None
    total_s: float | None = None
    tok_per_s: float | None = None


@dataclass(frozen=True)
class ChatResponse:
    """A streamed increment or the aggregated blocking result.

    Notes:
    - `content` may be empty for a step that advanced the generation without
      producing flushable text.
    - `finish_reason` and `timing` are only set on the item that ends the
      generation (and on the blocking result).
    """

    content: str
    prompt_tokens: int
    completion_tokens: int
    finish_reason: FinishReason | None = None
    timing: Timing | None = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens
