"""Utils package."""
from studio.utils.text import best_prompt_match, normalize_prompt, prompt_similarity

__all__ = [
    "best_prompt_match",
    "normalize_prompt",
    "prompt_similarity",
]
