"""Event enrichment: categories, tags and sentiment."""

from lifestory.enrichment.categorization import CategorizationService
from lifestory.enrichment.sentiment import SentimentService, period_key

__all__ = ["CategorizationService", "SentimentService", "period_key"]
