"""Category normalization and three-layer resolution."""

from .aliases import default_description, normalize_name, slugify
from .resolver import CategoryResolver, cosine_similarity, resolve_many

__all__ = [
    "CategoryResolver",
    "cosine_similarity",
    "default_description",
    "normalize_name",
    "resolve_many",
    "slugify",
]
