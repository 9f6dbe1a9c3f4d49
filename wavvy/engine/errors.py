"""Engine error taxonomy.

Every failure surfaced by the engine is one of these kinds. The first one
raised during a generation aborts it; nothing is retried.
"""

from __future__ import annotations


class WavvyError(RuntimeError):
    """Base class for engine failures."""


class ConfigError(WavvyError):
    """Invalid sampling configuration or unusable model/tokenizer setup."""


class TokenizerError(WavvyError):
    """Encode, decode or vocabulary lookup failed."""


class PromptError(WavvyError):
    """Forward pass or sampling failed while generating."""


class TemplateError(WavvyError):
    """Chat template parameter rendering failed."""
