"""Sampling configuration and the seeded next-token sampler."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import TYPE_CHECKING, Any

from .errors import ConfigError

if TYPE_CHECKING:
    import torch

_MAX_SEED = 1 << 64


@dataclass(frozen=True)
class SamplingConfig:
    """Decoding parameters for one generation.

    Notes:
    - `sample_len` counts every produced token, including the first one
      derived from the prompt.
    - `temperature <= 0` selects greedy arg-max decoding and ignores
      `top_k` / `top_p`.
    - `repeat_penalty == 1.0` disables the repeat penalty.
    """

    sample_len: int = 1000
    temperature: float = 0.8
    top_p: float | None = None
    top_k: int | None = None
    seed: int = 299792458
    split_prompt: bool = True
    repeat_penalty: float = 1.1
    repeat_last_n: int = 65

    def validate(self) -> None:
        if isinstance(self.sample_len, bool) or self.sample_len < 1:
            raise ConfigError("'sample_len' must be >= 1.")
        if self.temperature is None or self.temperature < 0:
            raise ConfigError("'temperature' must be >= 0.")
        if self.top_p is not None and not (0.0 < self.top_p <= 1.0):
            raise ConfigError("'top_p' must be in (0, 1].")
        if self.top_k is not None and self.top_k < 1:
            raise ConfigError("'top_k' must be >= 1.")
        if not (0 <= self.seed < _MAX_SEED):
            raise ConfigError("'seed' must be an unsigned 64-bit integer.")
        if self.repeat_penalty < 1.0:
            raise ConfigError("'repeat_penalty' must be >= 1.0.")
        if self.repeat_last_n < 0:
            raise ConfigError("'repeat_last_n' must be >= 0.")

    def merged(self, override: Any | None) -> "SamplingConfig":
        """Merge a request-level override (a dict of field values or a config)."""
        if override is None:
            return self
        if isinstance(override, SamplingConfig):
            override.validate()
            return override
        if not isinstance(override, dict):
            raise ConfigError("'sampling' override must be an object.")

        known = {f.name for f in fields(self)}
        unknown = sorted(set(override) - known)
        if unknown:
            raise ConfigError(f"Unknown sampling option(s): {', '.join(unknown)}.")

        data: dict[str, Any] = {}
        for name, value in override.items():
            data[name] = _coerce(name, value)

        merged = replace(self, **data)
        merged.validate()
        return merged


def _coerce(name: str, value: Any) -> Any:
    if name == "split_prompt":
        if not isinstance(value, bool):
            raise ConfigError("'split_prompt' must be a boolean.")
        return value
    if value is None and name in ("top_p", "top_k"):
        return None
    if isinstance(value, bool):
        raise ConfigError(f"'{name}' must be a number.")
    try:
        if name in ("sample_len", "top_k", "seed", "repeat_last_n"):
            return int(value)
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{name}' must be a number.") from exc


class Sampler:
    """Selects the next token id from a logit vector.

    The random generator is seeded once and reused for every call, so a fixed
    seed and a fixed sequence of logit vectors always reproduce the same
    token sequence.
    """

    def __init__(self, config: SamplingConfig) -> None:
        config.validate()
        self._config = config
        self._generator: torch.Generator | None = None

    @property
    def config(self) -> SamplingConfig:
        return self._config

    def _generator_for(self, device: torch.device) -> torch.Generator:
        import torch

        if self._generator is None:
            self._generator = torch.Generator(device=device)
            self._generator.manual_seed(self._config.seed)
        return self._generator

    def sample(self, logits: torch.Tensor) -> int:
        """Sample one token id from a 1-D logit vector."""
        import torch

        logits = logits.reshape(-1)
        cfg = self._config
        if cfg.temperature <= 0:
            # torch.argmax returns the first maximal index.
            return int(torch.argmax(logits).item())

        # Numerical stability: softmax in fp32 to avoid fp16 overflow at low temperature.
        probs = torch.softmax(logits.float() / float(cfg.temperature), dim=-1)

        if cfg.top_k is None and cfg.top_p is None:
            return self._multinomial(probs)

        sorted_probs, sorted_ids = torch.sort(probs, descending=True, stable=True)
        if cfg.top_k is not None:
            k = min(int(cfg.top_k), sorted_probs.numel())
            sorted_probs = sorted_probs[:k]
            sorted_ids = sorted_ids[:k]
            sorted_probs = sorted_probs / sorted_probs.sum()
        if cfg.top_p is not None and cfg.top_p < 1.0:
            keep = _nucleus_size(sorted_probs, float(cfg.top_p))
            sorted_probs = sorted_probs[:keep]
            sorted_ids = sorted_ids[:keep]
            sorted_probs = sorted_probs / sorted_probs.sum()

        choice = self._multinomial(sorted_probs)
        return int(sorted_ids[choice].item())

    def _multinomial(self, probs: torch.Tensor) -> int:
        import torch

        generator = self._generator_for(probs.device)
        return int(torch.multinomial(probs, 1, generator=generator).item())


def _nucleus_size(sorted_probs: torch.Tensor, top_p: float) -> int:
    """Length of the smallest descending prefix whose mass reaches `top_p`."""
    import torch

    cumulative = torch.cumsum(sorted_probs, dim=-1)
    # Index of the first position where the running mass reaches top_p.
    target = torch.tensor([top_p], dtype=cumulative.dtype, device=cumulative.device)
    reached = int(torch.searchsorted(cumulative, target).item())
    return max(1, min(reached + 1, sorted_probs.numel()))
