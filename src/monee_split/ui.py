"""Interactive UI components for entering expense splits and categories."""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import Category, Member, SplitMode

logger = logging.getLogger(__name__)


def fuzzy_match(query: str, text: str) -> bool:
    """
    Fuzzy match: all characters in query must appear in order in text.

    Example:
        query="fdr" matches "Food & Drinks"
        query="trn" matches "Transport"
    """
    query_idx = 0
    for char in text:
        if query_idx < len(query) and char == query[query_idx]:
            query_idx += 1
    return query_idx == len(query)


class CategoryCompleter(Completer):
    """Fuzzy search completer for a user's categories."""

    def __init__(self, categories: list[Category]):
        """Initialize the completer with available categories."""
        self.categories = categories
        self.name_to_id = {cat.name: cat.id for cat in categories}

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for cat in self.categories:
            if not query or fuzzy_match(query, cat.name.lower()):
                yield Completion(
                    text=cat.name,
                    start_position=-len(document.text),
                    display=cat.name,
                )


def select_category_interactive(categories: list[Category]) -> int | None:
    """
    Interactive category selection with fuzzy search.

    Returns:
        Selected category ID, or None to leave the expense uncategorized
    """
    print("   Type to search, press Enter to confirm, empty for uncategorized\n")

    completer = CategoryCompleter(categories)
    session: PromptSession[str] = PromptSession(completer=completer)

    try:
        while True:
            result = session.prompt("Category: ", complete_while_typing=True)
            if not result:
                return None

            category_id = completer.name_to_id.get(result)
            if category_id is not None:
                logger.info(f"User selected category: {result}")
                return category_id

            print("❌ Unknown category. Press Tab to complete, or leave empty.")

    except (KeyboardInterrupt, EOFError):
        return None


def parse_split_value(text: str) -> Decimal | None:
    """Parse a per-member weight or amount. Empty input means 0."""
    text = text.strip().rstrip("%").strip()
    if not text:
        return Decimal("0")
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    return value if value.is_finite() and value >= 0 else None


def prompt_split_values(
    members: list[Member], mode: SplitMode, currency: str
) -> dict[int, Decimal]:
    """
    Ask for a percentage (PERCENT) or an amount (MANUAL) for every member.

    Returns:
        Mapping of member id to the entered value
    """
    unit = "%" if mode == SplitMode.PERCENT else currency
    print(f"\n✂️  {mode.value.title()} split, values in {unit} (empty = 0)")

    session: PromptSession[str] = PromptSession()
    values: dict[int, Decimal] = {}
    for member in members:
        while True:
            value = parse_split_value(session.prompt(f"  {member.display_name}: "))
            if value is not None:
                values[member.id] = value
                break
            print("  ❌ Enter a non-negative number.")
    return values
