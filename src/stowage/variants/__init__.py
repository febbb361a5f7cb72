"""Derived image variants: digests, transformers and the variant cache."""

from stowage.variants.cache import VariantCache
from stowage.variants.digest import Transformation, derived_key, normalize, variation_digest
from stowage.variants.transforms import PRESETS, OperationTransformer, Transformer, preset

__all__ = [
    "OperationTransformer",
    "PRESETS",
    "Transformation",
    "Transformer",
    "VariantCache",
    "derived_key",
    "normalize",
    "preset",
    "variation_digest",
]
