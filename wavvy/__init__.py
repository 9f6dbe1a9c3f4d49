"""
Wavvy - autoregressive chat generation on top of a pre-loaded causal LM.

Quick Start:
    from wavvy import ChatEngine, HFCausalLMAdapter, Message, Role

    adapter = HFCausalLMAdapter()
    adapter.load("Qwen/Qwen2.5-3B-Instruct")
    engine = ChatEngine(adapter, variant="qwen2")

    response = engine.chat([Message(Role.USER, "What is 1+1")])
    print(response.content)

    for chunk in engine.stream_chat([Message(Role.USER, "What is 1+1")]):
        print(chunk.content, end="", flush=True)

Submodules:
    - wavvy.engine.chat_engine: Generation state machine and engine facade
    - wavvy.engine.chat_template: Prompt formatting per model variant
    - wavvy.engine.sampling: Sampling configuration and sampler
    - wavvy.engine.adapters: Model backends
"""

from wavvy._version import __version__

from wavvy.engine.adapters import BaseAdapter, HFCausalLMAdapter
from wavvy.engine.chat_engine import ChatEngine, ChatStream, GenerationState
from wavvy.engine.chat_template import ChatTemplate
from wavvy.engine.chat_types import ChatResponse, Message, Role, Timing
from wavvy.engine.errors import (
    ConfigError,
    PromptError,
    TemplateError,
    TokenizerError,
    WavvyError,
)
from wavvy.engine.registry import get_variant, list_model_families, register_variant
from wavvy.engine.repetition import apply_repeat_penalty
from wavvy.engine.sampling import Sampler, SamplingConfig
from wavvy.engine.token_output import TokenOutputStream
from wavvy.engine.types import GenerationPhase, ModelVariant

__all__ = [
    # Version
    "__version__",
    # Engine
    "ChatEngine",
    "ChatStream",
    "GenerationState",
    "GenerationPhase",
    # Prompt
    "ChatTemplate",
    "Message",
    "Role",
    "ModelVariant",
    "get_variant",
    "register_variant",
    "list_model_families",
    # Decoding
    "SamplingConfig",
    "Sampler",
    "apply_repeat_penalty",
    "TokenOutputStream",
    # Responses
    "ChatResponse",
    "Timing",
    # Backends
    "BaseAdapter",
    "HFCausalLMAdapter",
    # Errors
    "WavvyError",
    "ConfigError",
    "TokenizerError",
    "PromptError",
    "TemplateError",
]
