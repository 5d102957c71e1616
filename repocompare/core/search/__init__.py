"""Text normalization, trigram similarity, synonyms, and relevance scoring."""

from .normalizer import normalize
from .scorer import EXACT, FUZZY, RelevanceScorer, ScoringWeights
from .synonyms import expand, expand_all, has_synonyms
from .trigram import similarity, word_similarity

__all__ = [
    "normalize",
    "EXACT",
    "FUZZY",
    "RelevanceScorer",
    "ScoringWeights",
    "expand",
    "expand_all",
    "has_synonyms",
    "similarity",
    "word_similarity",
]
