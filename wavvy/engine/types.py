"""Model variant and generation phase types.

A model variant fixes the chat markup and the end-of-sequence token the
engine uses. It is resolved once when an engine or template is built.
"""

from __future__ import annotations

from enum import Enum

from .chat_types import Role


class ModelVariant(str, Enum):
    """Closed set of supported prompt/EOS conventions."""

    PRIMARY = "primary"  # ChatML (<|im_start|> ... <|im_end|>)
    ALTERNATE = "alternate"  # <｜Role｜> markers, DeepSeek-R1 style

    @property
    def eos_token(self) -> str:
        if self is ModelVariant.PRIMARY:
            return "<|im_end|>"
        return "<｜end▁of▁sentence｜>"

    def encode_message(self, role: Role, content: str) -> str:
        """Render one message without the trailing newline."""
        name = role.value
        if self is ModelVariant.PRIMARY:
            return f"<|im_start|>{name}\n{content}<|im_end|>"
        return f"<｜{name[:1].upper()}{name[1:]}｜>{content}"

    @property
    def generation_prompt(self) -> str:
        """Open assistant turn appended after the last message."""
        if self is ModelVariant.PRIMARY:
            return "<|im_start|>assistant\n"
        return "<｜Assistant｜>"


class GenerationPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    PROMPT_INGESTING = "prompt_ingesting"
    STEPPING = "stepping"
    TERMINATED = "terminated"
