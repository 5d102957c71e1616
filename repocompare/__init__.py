"""repocompare: natural-language repository search with AI-ranked comparisons."""

__version__ = "0.1.0"
