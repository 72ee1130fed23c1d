"""
SDK for Adaptive Forge.

Provides the OpenAI-backed completion service and the Perplexity-backed
search provider used by the pipeline.
"""

from .openai_client import OpenAICompletionService, classify_openai_error
from .perplexity_client import PerplexitySearchProvider

__all__ = ["OpenAICompletionService", "PerplexitySearchProvider", "classify_openai_error"]
