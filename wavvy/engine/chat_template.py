"""Chat prompt assembly for the supported model variants."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import jinja2
from jinja2.sandbox import SandboxedEnvironment

from .chat_types import Message
from .errors import TemplateError
from .types import ModelVariant

# Placeholders are evaluated as sandboxed lookups against the caller's data
# only; no filters, globals or statements are reachable from message text.
_ENV = SandboxedEnvironment(autoescape=False)
_ENV.globals.clear()

_TAG = re.compile(r"\{\{\{(.*?)\}\}\}|\{\{(.*?)\}\}", re.DOTALL)
_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*")


def _lookup(name: str, data: Mapping[str, Any]) -> str:
    try:
        value = _ENV.compile_expression(name)(dict(data))
    except jinja2.TemplateError as exc:
        raise TemplateError(f"Failed to render placeholder {name!r}: {exc}") from exc
    return "" if value is None else str(value)


def render_placeholders(text: str, data: Mapping[str, Any]) -> str:
    """Substitute `{{ name }}` (also `{{{ name }}}`, `{{& name }}`) from `data`.

    Dotted names walk nested mappings. Undefined names render as empty text,
    `{{! ... }}` comments are dropped, and every other tag is left verbatim.
    An unclosed `{{` is an error.
    """
    out: list[str] = []
    pos = 0
    for match in _TAG.finditer(text):
        literal = text[pos : match.start()]
        if "{{" in literal:
            break
        out.append(literal)
        pos = match.end()

        inner = (match.group(1) if match.group(1) is not None else match.group(2)).strip()
        if inner.startswith("!"):
            continue
        if inner.startswith("&"):
            inner = inner[1:].strip()
        out.append(_lookup(inner, data) if _NAME.fullmatch(inner) else match.group(0))

    tail = text[pos:]
    if "{{" in tail:
        raise TemplateError("Failed to render chat template: unclosed '{{' tag.")
    out.append(tail)
    return "".join(out)


@dataclass(frozen=True)
class ChatTemplate:
    """Formats an ordered conversation into the text a model variant expects.

    Example:
        >>> ChatTemplate([Message(Role.USER, "Hi")]).format()
        '<|im_start|>user\\nHi<|im_end|>\\n<|im_start|>assistant\\n'
    """

    messages: Sequence[Message] = field(default_factory=tuple)
    variant: ModelVariant = ModelVariant.PRIMARY

    def format(self) -> str:
        parts: list[str] = []
        for message in self.messages:
            parts.append(self.variant.encode_message(message.role, message.content))
            parts.append("\n")
        parts.append(self.variant.generation_prompt)
        return "".join(parts)

    def format_with_params(self, data: Mapping[str, Any]) -> str:
        """Format, then substitute `{{ name }}` placeholders from `data`.

        Undefined names render as empty text. Any rendering failure is fatal
        for the request.
        """
        return render_placeholders(self.format(), data)
