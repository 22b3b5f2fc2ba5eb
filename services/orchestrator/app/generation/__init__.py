from .budget import SAFETY_PAGES, target_word_count
from .client import ContentGenerationClient, parse_structured

__all__ = ["SAFETY_PAGES", "target_word_count", "ContentGenerationClient", "parse_structured"]
