"""Adapter for Hugging Face `transformers` causal language models."""

from __future__ import annotations

import logging
from typing import Any

import torch

from .base import BaseAdapter

logger = logging.getLogger(__name__)

_DTYPES = {
    "float16": torch.float16,
    "fp16": torch.float16,
    "bfloat16": torch.bfloat16,
    "bf16": torch.bfloat16,
    "float32": torch.float32,
    "fp32": torch.float32,
}


def resolve_dtype(dtype: Any) -> torch.dtype | None:
    """Map a dtype name (or dtype) to a torch dtype; None means model default."""
    if dtype is None or isinstance(dtype, torch.dtype):
        return dtype
    key = str(dtype).strip().lower()
    if key == "auto":
        return None
    if key not in _DTYPES:
        raise ValueError(f"Unknown dtype: {dtype!r}. Expected one of: {', '.join(_DTYPES)}")
    return _DTYPES[key]


class HFCausalLMAdapter(BaseAdapter):
    """
    Adapter for `transformers` causal LMs (including GGUF checkpoints).

    The KV cache lives inside the adapter. A forward call at position 0
    starts a new cache; every other call must continue exactly where the
    previous one stopped.

    Thread Safety:
        This adapter is NOT thread-safe. Do not run two generations against
        the same adapter instance at the same time.

    Example:
        >>> adapter = HFCausalLMAdapter()
        >>> adapter.load("Qwen/Qwen2.5-3B-Instruct-GGUF", gguf_file="qwen2.5-3b-instruct-q4_0.gguf")
        >>> engine = ChatEngine(adapter)
    """

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def __init__(self, model: Any = None, tokenizer: Any = None) -> None:
        self._model = model
        self._tokenizer = tokenizer
        self._model_path: str | None = None
        self._device: str = "cpu"
        self._dtype: torch.dtype | None = None
        self._past_key_values: Any = None
        self._cache_len: int = 0

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def model(self):
        """Access the underlying model (for advanced use cases)."""
        return self._model

    @property
    def tokenizer(self):
        return self._tokenizer

    @property
    def cache_len(self) -> int:
        """Number of positions currently held in the KV cache."""
        return self._cache_len

    @property
    def model_info(self) -> dict[str, Any]:
        return {
            "model_path": self._model_path,
            "device": self._device,
            "dtype": str(self._dtype),
            "loaded": self._model is not None,
            "cache_len": self._cache_len,
        }

    # -------------------------------------------------------------------------
    # Loading / Unloading
    # -------------------------------------------------------------------------

    def load(self, model_path: str, **kwargs) -> None:
        """Load a causal LM and its tokenizer.

        Args:
            model_path: Path to the model (local directory or HF hub id).
            gguf_file: GGUF weights file inside `model_path` (optional).
            tokenizer_path: Tokenizer location if it differs from the model;
                a path ending in `.json` is read as a `tokenizers` file.
            device: Device to load the model on (default: cuda if available).
            dtype: Torch dtype or name (default: model default).
            **kwargs: Additional kwargs passed to from_pretrained().
        """
        from transformers import AutoModelForCausalLM, AutoTokenizer, PreTrainedTokenizerFast

        self._model_path = model_path
        self._device = kwargs.pop("device", None) or ("cuda" if torch.cuda.is_available() else "cpu")
        self._dtype = resolve_dtype(kwargs.pop("dtype", None))
        gguf_file = kwargs.pop("gguf_file", None)
        tokenizer_path = kwargs.pop("tokenizer_path", None)

        if tokenizer_path and str(tokenizer_path).endswith(".json"):
            self._tokenizer = PreTrainedTokenizerFast(tokenizer_file=str(tokenizer_path))
        elif tokenizer_path:
            self._tokenizer = AutoTokenizer.from_pretrained(tokenizer_path)
        else:
            tok_kwargs = {"gguf_file": gguf_file} if gguf_file else {}
            self._tokenizer = AutoTokenizer.from_pretrained(model_path, **tok_kwargs)

        model_kwargs: dict[str, Any] = dict(kwargs)
        if gguf_file:
            model_kwargs["gguf_file"] = gguf_file
        if self._dtype is not None:
            model_kwargs["torch_dtype"] = self._dtype

        logger.info("Loading model %s (gguf_file=%s) on %s", model_path, gguf_file, self._device)
        self._model = AutoModelForCausalLM.from_pretrained(model_path, **model_kwargs)
        self._model.to(self._device)
        self._model.eval()
        self.reset()

    def unload(self) -> None:
        """Unload the model and free accelerator memory."""
        import gc

        self.reset()
        del self._model
        del self._tokenizer
        self._model = None
        self._tokenizer = None

        gc.collect()
        if torch.cuda.is_available():
            torch.cuda.empty_cache()

    # -------------------------------------------------------------------------
    # Forward pass
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        self._past_key_values = None
        self._cache_len = 0

    def forward(self, input_ids: torch.Tensor, position: int) -> torch.Tensor:
        """Run the model and return logits, shape (1, seq_len, vocab_size)."""
        self._ensure_loaded()
        if input_ids.ndim != 2 or input_ids.shape[0] != 1:
            raise ValueError(f"input_ids must have shape (1, seq_len), got {tuple(input_ids.shape)}")
        if position < 0:
            raise ValueError(f"position must be >= 0, got {position}")

        if position == 0:
            self.reset()
        elif position != self._cache_len:
            raise ValueError(
                f"Non-contiguous forward: position={position} but cache holds {self._cache_len} tokens."
            )

        device = getattr(self._model, "device", self._device)
        input_ids = input_ids.to(device)
        seq_len = int(input_ids.shape[1])
        cache_position = torch.arange(position, position + seq_len, device=device)

        with torch.no_grad():
            outputs = self._model(
                input_ids,
                past_key_values=self._past_key_values,
                cache_position=cache_position,
                use_cache=True,
            )
        self._past_key_values = outputs.past_key_values
        self._cache_len = position + seq_len
        return outputs.logits

    # -------------------------------------------------------------------------
    # Internal: Validation
    # -------------------------------------------------------------------------

    def _ensure_loaded(self) -> None:
        """Raise if model/tokenizer not loaded."""
        if self._model is None or self._tokenizer is None:
            raise RuntimeError("Model not loaded. Call load() first.")
