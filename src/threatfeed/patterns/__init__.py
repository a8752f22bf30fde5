"""
Pattern rule engine: weighted detection rules, their evaluation and the
actions applied when they fire.
"""

__all__ = ["actions", "defaults", "engine", "evaluator", "models"]
