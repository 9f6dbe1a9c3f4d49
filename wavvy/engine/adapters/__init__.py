# Model backends
#
# Each adapter implements a common interface for:
#   - Loading model + tokenizer
#   - Running the forward pass at a given sequence position
#   - Resetting its position-keyed cache between generations
#
# The engine uses adapters to stay backend-agnostic.

from .base import BaseAdapter
from .hf import HFCausalLMAdapter

__all__ = ["BaseAdapter", "HFCausalLMAdapter"]
