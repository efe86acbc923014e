# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Token budgeting for prompt context.

The retrieval augmenter packs knowledge-base chunks into a node's
maxContextTokens budget; this module measures and cuts text with tiktoken.
Non-OpenAI model names (claude-*, deepseek-*, ...) fall back to cl100k_base,
which is close enough for budgeting.
"""

from functools import lru_cache
from typing import Optional

import tiktoken

DEFAULT_MODEL = "gpt-4"
FALLBACK_ENCODING = "cl100k_base"
TRUNCATION_SUFFIX = "\n... [truncated to fit token limit]"


@lru_cache(maxsize=32)
def encoding_for(model: str, fallback: str = FALLBACK_ENCODING) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding(fallback)


class TokenCounter:
    """Counts and truncates text against a model's tokenizer."""

    def __init__(self, encoding_name: str = FALLBACK_ENCODING, suffix: str = TRUNCATION_SUFFIX):
        self.encoding_name = encoding_name
        self.suffix = suffix

    def count_tokens(self, text: str, model: str = DEFAULT_MODEL) -> int:
        if not text:
            return 0
        return len(encoding_for(model, self.encoding_name).encode(text))

    def truncate_to_token_limit(self, text: str, max_tokens: int, model: str = DEFAULT_MODEL) -> str:
        """
        Cut text down to at most max_tokens tokens, suffix included.

        Text already within the limit comes back unchanged. When the limit
        cannot even hold the suffix the result is empty.
        """
        if not text:
            return text

        encoding = encoding_for(model, self.encoding_name)
        tokens = encoding.encode(text)
        if len(tokens) <= max_tokens:
            return text

        keep = max_tokens - len(encoding.encode(self.suffix))
        if keep <= 0:
            return ""
        return encoding.decode(tokens[:keep]) + self.suffix


_shared: Optional[TokenCounter] = None


def get_token_counter() -> TokenCounter:
    global _shared
    if _shared is None:
        _shared = TokenCounter()
    return _shared
