import pytest

from wavvy.engine.errors import TokenizerError
from wavvy.engine.token_output import TokenOutputStream

from tests.fakes import IM_END_ID, ByteTokenizer


def _push_all(stream: TokenOutputStream, ids: list[int]) -> list[str | None]:
    return [stream.next_token(t) for t in ids]


def test_ascii_emits_every_token():
    stream = TokenOutputStream(ByteTokenizer())
    assert _push_all(stream, list(b"abc")) == ["a", "b", "c"]
    assert stream.total_tokens() == 3


def test_multibyte_character_is_withheld_until_complete():
    stream = TokenOutputStream(ByteTokenizer())
    euro = list("€".encode("utf-8"))  # 3 bytes
    assert len(euro) == 3
    assert _push_all(stream, euro) == [None, None, "€"]
    assert stream.total_tokens() == 3


def test_withheld_tokens_not_counted_until_emitted():
    stream = TokenOutputStream(ByteTokenizer())
    emoji = list("🙂".encode("utf-8"))
    stream.next_token(ord("x"))
    stream.next_token(emoji[0])
    stream.next_token(emoji[1])
    assert stream.total_tokens() == 1


def test_decode_rest_flushes_incomplete_tail_with_replacement():
    stream = TokenOutputStream(ByteTokenizer())
    stream.next_token(ord("a"))
    stream.next_token("é".encode("utf-8")[0])
    rest = stream.decode_rest()
    assert rest == "\ufffd"
    assert stream.total_tokens() == 2


def test_decode_rest_nothing_pending():
    stream = TokenOutputStream(ByteTokenizer())
    stream.next_token(ord("a"))
    assert stream.decode_rest() is None


def test_special_tokens_produce_no_text():
    stream = TokenOutputStream(ByteTokenizer())
    stream.next_token(ord("a"))
    assert stream.next_token(IM_END_ID) is None
    assert stream.decode_rest() is None
    assert stream.total_tokens() == 1


def test_concatenated_increments_equal_decode_all():
    text = "héllo, 世界 🙂 ok"
    stream = TokenOutputStream(ByteTokenizer())
    parts = [p for p in _push_all(stream, list(text.encode("utf-8"))) if p]
    rest = stream.decode_rest()
    if rest:
        parts.append(rest)
    assert "".join(parts) == text
    assert stream.decode_all() == text


def test_clear_resets_history():
    stream = TokenOutputStream(ByteTokenizer())
    _push_all(stream, list(b"hi"))
    stream.clear()
    assert stream.tokens == []
    assert stream.total_tokens() == 0
    assert stream.decode_all() == ""


def test_decode_failure_is_tokenizer_error():
    class _Broken:
        def decode(self, ids, *, skip_special_tokens=True):
            raise RuntimeError("boom")

    stream = TokenOutputStream(_Broken())
    with pytest.raises(TokenizerError):
        stream.next_token(1)
