"""Errors raised while loading notifier configuration."""

from typing import List, Optional


class ConfigurationError(Exception):
    """
    Invalid or missing configuration.

    Carries every problem found in one pass, plus hints for fixing them, so an
    operator sees the whole picture on the first failed start.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        self.message = message
        self.errors = list(errors or [])
        self.suggestions = list(suggestions or [])
        super().__init__(self.render())

    def render(self) -> str:
        """Message followed by numbered errors and bulleted suggestions."""
        lines = [self.message]

        if self.errors:
            lines.append("\nValidation Errors:")
            lines.extend(f"  {number}. {error}" for number, error in enumerate(self.errors, 1))

        if self.suggestions:
            lines.append("\nSuggestions:")
            lines.extend(f"  - {suggestion}" for suggestion in self.suggestions)

        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()
