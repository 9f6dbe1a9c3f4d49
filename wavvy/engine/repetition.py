"""Repeat-penalty logit adjustment.

Discourages the sampler from re-selecting token ids that appear in the recent
tail of the token history.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    import torch


def repeat_window(tokens: Sequence[int], last_n: int) -> list[int]:
    """Return the trailing `last_n` token ids (all of them if fewer)."""
    if last_n <= 0:
        return []
    start = max(len(tokens) - last_n, 0)
    return list(tokens[start:])


def apply_repeat_penalty(
    logits: torch.Tensor,
    penalty: float,
    context: Sequence[int],
) -> torch.Tensor:
    """Penalize every distinct token id of `context` in a 1-D logit vector.

    Positive logits are divided by `penalty`, negative ones multiplied by it,
    so a penalized token always becomes less likely. Ids outside the
    vocabulary are ignored. With `penalty == 1.0` the input is returned as is.
    """
    import torch

    if penalty == 1.0:
        return logits
    if penalty < 1.0:
        raise ValueError(f"'penalty' must be >= 1.0, got {penalty}")

    out = logits.clone()
    vocab_size = out.shape[-1]
    ids = sorted({int(t) for t in context if 0 <= int(t) < vocab_size})
    if not ids:
        return out

    index = torch.tensor(ids, dtype=torch.long, device=out.device)
    values = out[..., index]
    out[..., index] = torch.where(values >= 0, values / penalty, values * penalty)
    return out
