"""Forward-pass contract shared by model backends."""

from abc import ABC, abstractmethod
from typing import Any

import torch


class BaseAdapter(ABC):
    """
    Abstract base class for model backends.

    An adapter owns a loaded causal LM and its tokenizer, and exposes the
    forward pass as `forward(input_ids, position) -> logits`. The adapter
    keeps a position-keyed cache internally; positions are expected to
    advance monotonically within one generation.
    """

    @abstractmethod
    def load(self, model_path: str, **kwargs) -> None:
        """
        Bring the weights and tokenizer into memory.

        Args:
            model_path: Checkpoint directory or hub repository id.
            **kwargs: Backend options such as `device`, `dtype` or `gguf_file`.
        """

    @abstractmethod
    def forward(self, input_ids: torch.Tensor, position: int) -> torch.Tensor:
        """
        Run the model on `input_ids` starting at sequence position `position`.

        Args:
            input_ids: Token IDs, shape (1, seq_len).
            position: Absolute position of the first token in `input_ids`.

        Returns:
            Logits, shape (1, seq_len, vocab_size) or (1, vocab_size) for the
            last position only.
        """

    @property
    @abstractmethod
    def tokenizer(self) -> Any:
        """The tokenizer paired with the model."""

    @property
    @abstractmethod
    def model_info(self) -> dict[str, Any]:
        """Describe the checkpoint: 'model_path', 'device', 'dtype', 'loaded'."""

    def reset(self) -> None:
        """Drop cached positions so the next forward call starts at 0. No-op by default."""

    def unload(self) -> None:
        """Release the weights. No-op by default."""
