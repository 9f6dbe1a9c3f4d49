"""Single-flight chat generation engine.

This module provides the core, reusable engine:
- prompt ingestion (tokenize + first-token prefill)
- a one-token step primitive with repeat penalty and seeded sampling
- incremental detokenization into UTF-8 safe text chunks
- a blocking `invoke()` and a pull-based `stream_invoke()` over the same step

It deliberately contains no CLI or model-loading code.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Mapping, Sequence

import torch

from .chat_template import ChatTemplate
from .chat_types import ChatResponse, FinishReason, Message, Timing
from .errors import ConfigError, PromptError, TokenizerError, WavvyError
from .registry import get_variant
from .repetition import apply_repeat_penalty, repeat_window
from .sampling import Sampler, SamplingConfig
from .token_output import TokenOutputStream
from .types import GenerationPhase, ModelVariant

logger = logging.getLogger(__name__)

ForwardFn = Callable[[torch.Tensor, int], torch.Tensor]


def resolve_eos_token_id(tokenizer: Any, variant: ModelVariant) -> int:
    """Look up the variant's end-of-sequence token in the full vocabulary."""
    get_vocab = getattr(tokenizer, "get_vocab", None)
    if not callable(get_vocab):
        raise TokenizerError("Tokenizer does not support get_vocab().")
    try:
        vocab = get_vocab()
    except Exception as exc:
        raise TokenizerError(f"Failed to read tokenizer vocabulary: {exc}") from exc

    token_id = vocab.get(variant.eos_token)
    if token_id is None:
        raise ConfigError(
            f"End-of-sequence token {variant.eos_token!r} for variant "
            f"{variant.value!r} is missing from the tokenizer vocabulary."
        )
    return int(token_id)


def encode_prompt(tokenizer: Any, prompt: str) -> list[int]:
    """Encode prompt text (with special tokens) into token ids."""
    try:
        encoded = tokenizer.encode(prompt, add_special_tokens=True)
    except Exception as exc:
        raise TokenizerError(f"Failed to encode prompt: {exc}") from exc
    # `tokenizers.Tokenizer.encode` returns an Encoding rather than a list.
    ids = getattr(encoded, "ids", encoded)
    try:
        return [int(t) for t in ids]
    except (TypeError, ValueError) as exc:
        raise TokenizerError(f"Tokenizer returned non-integer ids: {exc}") from exc


def _last_position_logits(logits: torch.Tensor) -> torch.Tensor:
    if logits.ndim == 3:
        return logits[0, -1]
    if logits.ndim == 2:
        return logits[-1]
    if logits.ndim == 1:
        return logits
    raise PromptError(f"Unexpected logits shape from forward pass: {tuple(logits.shape)}")


class GenerationState:
    """Per-prompt generation lifecycle.

    Phases: UNINITIALIZED -> PROMPT_INGESTING -> STEPPING -> TERMINATED.

    `ingest()` resolves the EOS id, tokenizes the prompt and samples the first
    token. Each `step()` then produces exactly one token and returns its
    `ChatResponse` increment, or `None` once terminated. A state serves one
    prompt only; failures are terminal.
    """

    def __init__(
        self,
        forward: ForwardFn,
        tokenizer: Any,
        *,
        variant: ModelVariant = ModelVariant.PRIMARY,
        config: SamplingConfig | None = None,
    ) -> None:
        self._forward = forward
        self._tokenizer = tokenizer
        self._variant = variant
        self._config = config or SamplingConfig()
        self._sampler = Sampler(self._config)
        self._decoder = TokenOutputStream(tokenizer)

        self.phase = GenerationPhase.UNINITIALIZED
        self.finish_reason: FinishReason | None = None
        self.eos_token_id: int | None = None
        self.prompt_tokens: list[int] = []
        self.tokens: list[int] = []
        self.index = 0

        self._pending_token: int | None = None
        self._started: float | None = None
        self._first_token_at: float | None = None
        self._ended: float | None = None

    @property
    def config(self) -> SamplingConfig:
        return self._config

    @property
    def variant(self) -> ModelVariant:
        return self._variant

    @property
    def terminated(self) -> bool:
        return self.phase is GenerationPhase.TERMINATED

    def decode_all(self) -> str:
        """Decode every generated token in one pass."""
        return self._decoder.decode_all()

    # -------------------------------------------------------------------------
    # Prompt ingestion
    # -------------------------------------------------------------------------

    def ingest(self, prompt: str) -> None:
        if self.phase is not GenerationPhase.UNINITIALIZED:
            raise PromptError("A generation state cannot be reused for another prompt.")

        self.phase = GenerationPhase.PROMPT_INGESTING
        self._started = time.monotonic()
        try:
            self.eos_token_id = resolve_eos_token_id(self._tokenizer, self._variant)
            self.prompt_tokens = encode_prompt(self._tokenizer, prompt)
            if not self.prompt_tokens:
                raise PromptError("Prompt encoded to zero tokens.")
            self._pending_token = self._prompt_next_token()
        except WavvyError:
            self._fail()
            raise
        except Exception as exc:
            self._fail()
            raise PromptError(f"Prompt ingestion failed: {exc}") from exc

        self._first_token_at = time.monotonic()
        self.phase = GenerationPhase.STEPPING
        logger.debug(
            "Prompt ingested: prompt_tokens=%d split_prompt=%s eos_token_id=%d prefill_s=%.3f",
            len(self.prompt_tokens),
            self._config.split_prompt,
            self.eos_token_id,
            self._first_token_at - self._started,
        )

    def _prompt_next_token(self) -> int:
        """Prefill the prompt and sample the token that follows it.

        Only the final position is sampled in either strategy, so the
        random state is consumed identically whether or not the prompt is
        split.
        """
        if not self._config.split_prompt:
            logits = self._run_forward(self.prompt_tokens, 0)
        else:
            logits = None
            for pos, token in enumerate(self.prompt_tokens):
                logits = self._run_forward([token], pos)
        # Intermediate positions are never sampled, so the RNG advances once per
        # prompt rather than once per prompt token.
        return self._sampler.sample(logits)

    def _run_forward(self, token_ids: Sequence[int], position: int) -> torch.Tensor:
        input_ids = torch.tensor([list(token_ids)], dtype=torch.long)
        try:
            logits = self._forward(input_ids, position)
        except Exception as exc:
            raise PromptError(f"Forward pass failed at position {position}: {exc}") from exc
        return _last_position_logits(logits)

    # -------------------------------------------------------------------------
    # Stepping
    # -------------------------------------------------------------------------

    def step(self) -> ChatResponse | None:
        """Produce one token; return its increment, or None when done."""
        if self.phase is GenerationPhase.TERMINATED:
            return None
        if self.phase is not GenerationPhase.STEPPING:
            raise PromptError("Generation has not been started; call ingest() first.")

        try:
            if not self.tokens:
                token = self._pending_token
                self._pending_token = None
            else:
                token = self._next_token()
            return self._record(int(token))
        except WavvyError:
            self._fail()
            raise
        except Exception as exc:
            self._fail()
            raise PromptError(f"Generation step failed: {exc}") from exc

    def _next_token(self) -> int:
        position = len(self.prompt_tokens) + self.index
        logits = self._run_forward([self.tokens[-1]], position)
        logits = apply_repeat_penalty(logits, self._config.repeat_penalty, self._penalty_context())
        token = self._sampler.sample(logits)
        self.index += 1
        return token

    def _penalty_context(self) -> list[int]:
        """Trailing `repeat_last_n` ids of the prompt followed by generated tokens."""
        last_n = self._config.repeat_last_n
        tail = repeat_window(self.tokens, last_n)
        missing = last_n - len(tail)
        if missing > 0:
            tail = repeat_window(self.prompt_tokens, missing) + tail
        return tail

    def _record(self, token: int) -> ChatResponse:
        self.tokens.append(token)
        text = self._decoder.next_token(token) or ""

        if token == self.eos_token_id:
            self.finish_reason = "stop"
        elif len(self.tokens) >= self._config.sample_len:
            self.finish_reason = "length"

        timing = None
        if self.finish_reason is not None:
            rest = self._decoder.decode_rest()
            if rest:
                text += rest
            self._terminate()
            timing = self.timing()
            logger.debug(
                "Generation finished: reason=%s tokens=%d completion_tokens=%d tok_per_s=%s",
                self.finish_reason,
                len(self.tokens),
                self._decoder.total_tokens(),
                timing.tok_per_s,
            )

        return ChatResponse(
            content=text,
            prompt_tokens=len(self.prompt_tokens),
            completion_tokens=self._decoder.total_tokens(),
            finish_reason=self.finish_reason,
            timing=timing,
        )

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Abandon the generation; later steps return None."""
        if self.phase is GenerationPhase.TERMINATED:
            return
        self.finish_reason = "cancelled"
        self._terminate()

    def _fail(self) -> None:
        self.finish_reason = "error"
        self._terminate()

    def _terminate(self) -> None:
        self.phase = GenerationPhase.TERMINATED
        self._pending_token = None
        self._ended = time.monotonic()

    def timing(self) -> Timing:
        prefill_s = None
        if self._started is not None and self._first_token_at is not None:
            prefill_s = max(self._first_token_at - self._started, 0.0)

        decode_s = None
        if self._first_token_at is not None and self._ended is not None:
            decode_s = max(self._ended - self._first_token_at, 0.0)

        total_s = None
        if self._started is not None and self._ended is not None:
            total_s = max(self._ended - self._started, 0.0)

        tok_per_s = None
        if decode_s and decode_s > 0 and self.tokens:
            tok_per_s = len(self.tokens) / decode_s

        return Timing(prefill_s=prefill_s, decode_s=decode_s, total_s=total_s, tok_per_s=tok_per_s)


class ChatStream:
    """Pull-based stream over a `GenerationState`.

    Each `next()` (or `await anext()`) performs exactly one generation step.
    An error raised by a pull ends the stream.
    """

    def __init__(self, state: GenerationState) -> None:
        self._state = state

    @property
    def state(self) -> GenerationState:
        return self._state

    def __iter__(self) -> "ChatStream":
        return self

    def __next__(self) -> ChatResponse:
        item = self._state.step()
        if item is None:
            raise StopIteration
        return item

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> ChatResponse:
        # The step is compute-bound; keep the event loop responsive.
        item = await asyncio.to_thread(self._state.step)
        if item is None:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        self._state.close()


class ChatEngine:
    """Core chat generation engine.

    Wraps one model backend (a `BaseAdapter` or any `forward(input_ids,
    position)` callable) and its tokenizer. Only one generation is active at a
    time: starting a new one closes the previous state and resets the backend
    cache.
    """

    def __init__(
        self,
        model: Any,
        tokenizer: Any | None = None,
        *,
        variant: ModelVariant | str = ModelVariant.PRIMARY,
        config: SamplingConfig | None = None,
    ) -> None:
        forward = getattr(model, "forward", None)
        if not callable(forward):
            forward = model
        if not callable(forward):
            raise ConfigError("Model must be an adapter with forward() or a forward callable.")

        tokenizer = tokenizer if tokenizer is not None else getattr(model, "tokenizer", None)
        if tokenizer is None:
            raise ConfigError("No tokenizer supplied and the model has no tokenizer loaded.")

        self._model = model
        self._forward: ForwardFn = forward
        self._tokenizer = tokenizer
        self._variant = get_variant(variant)
        self._config = config or SamplingConfig()
        self._config.validate()
        self._active: GenerationState | None = None

    @property
    def variant(self) -> ModelVariant:
        return self._variant

    @property
    def config(self) -> SamplingConfig:
        return self._config

    @property
    def tokenizer(self) -> Any:
        return self._tokenizer

    @property
    def model_info(self) -> dict[str, Any]:
        return getattr(self._model, "model_info", {})

    def shutdown(self) -> None:
        if self._active is not None:
            self._active.close()
        unload = getattr(self._model, "unload", None)
        if callable(unload):
            unload()

    def _start(self, prompt: str, sampling: Any | None) -> GenerationState:
        config = self._config.merged(sampling)

        if self._active is not None and not self._active.terminated:
            logger.warning("Starting a new generation; closing the unfinished one.")
            self._active.close()

        reset = getattr(self._model, "reset", None)
        if callable(reset):
            reset()

        state = GenerationState(self._forward, self._tokenizer, variant=self._variant, config=config)
        self._active = state
        state.ingest(prompt)
        return state

    def invoke(self, prompt: str, sampling: Any | None = None) -> ChatResponse:
        """Generate to completion and return the aggregated response.

        Args:
            prompt: Fully formatted prompt text.
            sampling: Optional per-request override (dict of `SamplingConfig`
                fields, or a `SamplingConfig`).
        """
        state = self._start(prompt, sampling)
        parts: list[str] = []
        last: ChatResponse | None = None
        while True:
            item = state.step()
            if item is None:
                break
            parts.append(item.content)
            last = item

        if last is None:  # pragma: no cover
            raise PromptError("Generation produced no tokens.")
        return ChatResponse(
            content="".join(parts),
            prompt_tokens=last.prompt_tokens,
            completion_tokens=last.completion_tokens,
            finish_reason=last.finish_reason,
            timing=last.timing,
        )

    def stream_invoke(self, prompt: str, sampling: Any | None = None) -> ChatStream:
        """Ingest the prompt and return a stream yielding one increment per pull."""
        return ChatStream(self._start(prompt, sampling))

    def _format(self, messages: Sequence[Message], params: Mapping[str, Any] | None) -> str:
        template = ChatTemplate(list(messages), self._variant)
        if params is None:
            return template.format()
        return template.format_with_params(params)

    def chat(
        self,
        messages: Sequence[Message],
        params: Mapping[str, Any] | None = None,
        sampling: Any | None = None,
    ) -> ChatResponse:
        """Format `messages` for this engine's variant, then `invoke()`."""
        return self.invoke(self._format(messages, params), sampling)

    def stream_chat(
        self,
        messages: Sequence[Message],
        params: Mapping[str, Any] | None = None,
        sampling: Any | None = None,
    ) -> ChatStream:
        """Format `messages` for this engine's variant, then `stream_invoke()`."""
        return self.stream_invoke(self._format(messages, params), sampling)
