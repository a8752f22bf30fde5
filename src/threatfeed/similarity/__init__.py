"""
Similarity primitives and the multi-dimension threat similarity scorer.
"""

__all__ = ["primitives", "scorer"]
