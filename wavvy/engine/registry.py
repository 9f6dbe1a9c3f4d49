"""Model variant registry.

Maps model family names (as passed on the command line or in configs) to the
prompt/EOS convention the engine should use for them.
"""

from .errors import ConfigError
from .types import ModelVariant

# Registry mapping model family names to variants
_VARIANT_REGISTRY: dict[str, ModelVariant] = {
    "primary": ModelVariant.PRIMARY,
    "w": ModelVariant.PRIMARY,
    "qwen2": ModelVariant.PRIMARY,
    "chatml": ModelVariant.PRIMARY,
    "alternate": ModelVariant.ALTERNATE,
    "r1": ModelVariant.ALTERNATE,
    "deepseek-r1": ModelVariant.ALTERNATE,
}


def get_variant(model_family: str | ModelVariant) -> ModelVariant:
    """
    Resolve the variant for the given model family.

    Args:
        model_family: Name of the model family (e.g., "qwen2", "r1"), or a
            variant, which is returned unchanged.

    Returns:
        The registered `ModelVariant`.

    Raises:
        ConfigError: If the model family is not registered.
    """
    if isinstance(model_family, ModelVariant):
        return model_family
    key = model_family.strip().lower()
    if key not in _VARIANT_REGISTRY:
        available = ", ".join(_VARIANT_REGISTRY.keys())
        raise ConfigError(
            f"Unknown model family: {model_family!r}. Available: {available}"
        )
    return _VARIANT_REGISTRY[key]


def register_variant(model_family: str, variant: ModelVariant) -> None:
    """
    Register a model family name for an existing variant.

    Args:
        model_family: Name of the model family.
        variant: Prompt/EOS convention used by that family.
    """
    _VARIANT_REGISTRY[model_family.strip().lower()] = variant


def list_model_families() -> list[str]:
    """Return list of registered model family names."""
    return list(_VARIANT_REGISTRY.keys())
