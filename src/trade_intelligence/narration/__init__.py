"""Recommendation text generated from numeric analytics.

Narrative generators consume finished reports only; the statistics never
depend on the wording rules.
"""

from .generator import DefaultNarrativeGenerator, NarrativeGenerator

__all__ = ["DefaultNarrativeGenerator", "NarrativeGenerator"]
