"""
Correlation graph between threat records.
"""

from .builder import CorrelationGraphBuilder

__all__ = ["CorrelationGraphBuilder"]
