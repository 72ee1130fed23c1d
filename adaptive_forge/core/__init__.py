"""
Core modules for Adaptive Forge.

This package contains complexity analysis, model routing, pricing,
the generation client and feedback loop, guardrails and search augmentation.
"""
