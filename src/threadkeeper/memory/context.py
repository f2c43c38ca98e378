"""
Token counting for threadkeeper.

Message token estimates feed the activity score of the tiering
classifier.
"""

from collections.abc import Iterable

import tiktoken

from threadkeeper.memory.session import ConversationTurn

DEFAULT_ENCODING = "cl100k_base"


class TokenCounter:
    """Counts tokens for text using tiktoken.

    The encoding is loaded on first use.
    """

    def __init__(self, encoding_name: str = DEFAULT_ENCODING):
        """Initialize the token counter.

        Args:
            encoding_name: Tiktoken encoding name.
        """
        self.encoding_name = encoding_name
        self._encoding: tiktoken.Encoding | None = None

    def _get_encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            try:
                self._encoding = tiktoken.get_encoding(self.encoding_name)
            except ValueError:
                # Unknown encoding name
                self._encoding = tiktoken.get_encoding(DEFAULT_ENCODING)
        return self._encoding

    def count(self, text: str) -> int:
        """Count tokens in text.

        Args:
            text: Text to count.

        Returns:
            Token count.
        """
        if not text:
            return 0
        return len(self._get_encoding().encode(text))

    def count_turns(self, turns: Iterable[ConversationTurn]) -> int:
        """Count tokens in conversation turns, with per-message overhead."""
        total = 0
        for turn in turns:
            total += 4
            total += self.count(turn.content)
        return total

    def __call__(self, text: str) -> int:
        return self.count(text)
