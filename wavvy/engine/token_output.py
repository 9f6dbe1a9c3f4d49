"""Incremental detokenization.

Byte-level and sub-word tokenizers can split one character across several
tokens. Decoding such a partial span yields the U+FFFD replacement character,
so text is only surfaced once the decoded span ends on a complete character.
"""

from __future__ import annotations

from typing import Any

from .errors import TokenizerError

REPLACEMENT_CHAR = "\ufffd"


class TokenOutputStream:
    """Turns a stream of token ids into emitted text increments.

    Two cursors track the history: text for `tokens[prev_index:current_index]`
    has already been emitted and is kept as left context for the next decode,
    so that tokenizers which treat a leading space specially still produce
    the right suffix.
    """

    def __init__(self, tokenizer: Any, *, skip_special_tokens: bool = True) -> None:
        self._tokenizer = tokenizer
        self._skip_special_tokens = skip_special_tokens
        self._tokens: list[int] = []
        self._prev_index = 0
        self._current_index = 0

    @property
    def tokenizer(self) -> Any:
        return self._tokenizer

    @property
    def tokens(self) -> list[int]:
        return list(self._tokens)

    def _decode(self, token_ids: list[int]) -> str:
        try:
            return self._tokenizer.decode(token_ids, skip_special_tokens=self._skip_special_tokens)
        except Exception as exc:
            raise TokenizerError(f"Failed to decode tokens: {exc}") from exc

    def _emitted_context(self) -> str:
        if not self._tokens:
            return ""
        return self._decode(self._tokens[self._prev_index : self._current_index])

    def next_token(self, token_id: int) -> str | None:
        """Push one token; return the newly completed text, if any."""
        prev_text = self._emitted_context()
        self._tokens.append(int(token_id))
        text = self._decode(self._tokens[self._prev_index :])
        if len(text) > len(prev_text) and not text.endswith(REPLACEMENT_CHAR):
            self._prev_index = self._current_index
            self._current_index = len(self._tokens)
            return text[len(prev_text) :]
        return None

    def decode_rest(self) -> str | None:
        """Flush withheld text at end of stream.

        Undecodable trailing bytes come out as U+FFFD.
        """
        prev_text = self._emitted_context()
        text = self._decode(self._tokens[self._prev_index :])
        if len(text) > len(prev_text):
            self._prev_index = self._current_index
            self._current_index = len(self._tokens)
            return text[len(prev_text) :]
        return None

    def decode_all(self) -> str:
        """Decode the full token history in one pass."""
        return self._decode(self._tokens)

    def total_tokens(self) -> int:
        """Number of tokens that have contributed to emitted text."""
        return self._current_index

    def clear(self) -> None:
        self._tokens.clear()
        self._prev_index = 0
        self._current_index = 0
