# Server card catalog loading and lookup
import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from mcph.config import HelperContext
from mcph.models import RecordStatus, ServerCard
from mcph.utils.files import write_json_file
from mcph.utils.validation import validate_card_data

logger = logging.getLogger(__name__)

# ABOUTME: File suffixes recognised as card files
CARD_SUFFIXES = (".json", ".yaml", ".yml")


def read_card_file(path: Path) -> Any:
    """Parse one card file.

    ABOUTME: YAML files go through yaml.safe_load, everything else through json
    ABOUTME: Raises ValueError for syntax errors so callers can skip the file
    """
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Could not parse {path}: {e}") from e


def iter_card_files(directory: Path) -> Iterator[Path]:
    """Yield card files in directory and one level of subdirectories.

    ABOUTME: Top-level files first (sorted by name), then each subdirectory's files
    ABOUTME: Deeper nesting is ignored
    """
    entries = sorted(directory.iterdir(), key=lambda path: path.name)

    for entry in entries:
        if entry.is_file() and entry.suffix in CARD_SUFFIXES:
            yield entry

    for entry in entries:
        if entry.is_dir():
            for sub_entry in sorted(entry.iterdir(), key=lambda path: path.name):
                if sub_entry.is_file() and sub_entry.suffix in CARD_SUFFIXES:
                    yield sub_entry


def scan_cards(directory: Path, custom: bool = False) -> dict[str, ServerCard]:
    """Load every valid card in directory.

    ABOUTME: Missing directory -> empty result
    ABOUTME: Unreadable or invalid files are skipped with a logged reason
    ABOUTME: A duplicate id inside one directory keeps the first card seen

    Args:
        directory: Directory to scan
        custom: Mark loaded cards as user-supplied

    Returns:
        Mapping of card id -> ServerCard, in load order
    """
    cards: dict[str, ServerCard] = {}

    if not directory.is_dir():
        logger.debug(f"Card directory not found: {directory}")
        return cards

    for path in iter_card_files(directory):
        try:
            data = read_card_file(path)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Skipping card {path}: {e}")
            continue

        errors = validate_card_data(data, source=path.name)
        if errors:
            reasons = "; ".join(error.message for error in errors)
            logger.warning(f"Skipping invalid card {path}: {reasons}")
            continue

        try:
            card = ServerCard.from_dict(data, custom=custom)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed card {path}: {e}")
            continue

        if card.id in cards:
            logger.warning(f"Skipping card {path}: duplicate id '{card.id}'")
            continue

        cards[card.id] = card

    return cards


class RecordStore:
    """In-memory index of server cards.

    ABOUTME: Built-in catalog first, user overrides shadow matching ids whole
    ABOUTME: Iteration order is load order
    """

    def __init__(self, user_dir: Path | None = None) -> None:
        """Initialize an empty store.

        ABOUTME: user_dir is where save() persists replaced or new cards
        """
        self._cards: dict[str, ServerCard] = {}
        self._user_dir = user_dir

    @classmethod
    def from_context(cls, context: HelperContext) -> "RecordStore":
        """Create a store and load the catalog and user cards named by context."""
        store = cls(user_dir=context.user_cards_dir)
        store.load_all(context.catalog_dir)
        store.load_user_overrides(context.user_cards_dir)
        return store

    def __len__(self) -> int:
        return len(self._cards)

    def __contains__(self, card_id: object) -> bool:
        return card_id in self._cards

    def load_all(self, directory: Path) -> dict[str, ServerCard]:
        """Load the built-in catalog, replacing the store's contents.

        Returns:
            Mapping of id -> ServerCard
        """
        self._cards = scan_cards(directory)
        return dict(self._cards)

    def load_user_overrides(self, directory: Path) -> dict[str, ServerCard]:
        """Layer user-supplied cards over the loaded catalog.

        ABOUTME: Matching ids are replaced whole, never merged field by field
        ABOUTME: Each shadowed built-in card is logged

        Returns:
            Mapping of id -> ServerCard after overrides
        """
        for card_id, card in scan_cards(directory, custom=True).items():
            if card_id in self._cards:
                logger.info(f"User card '{card_id}' overrides the built-in card")
            self._cards[card_id] = card
        return dict(self._cards)

    def get(self, card_id: str) -> ServerCard | None:
        """Card by id, or None if absent."""
        return self._cards.get(card_id)

    def all(self) -> list[ServerCard]:
        return list(self._cards.values())

    def active(self) -> list[ServerCard]:
        return [card for card in self._cards.values() if card.status is RecordStatus.ACTIVE]

    def search(self, keyword: str) -> list[ServerCard]:
        """Case-insensitive substring search over name, id and description.

        Examples:
            >>> [card.id for card in store.search("GIT")]
            ['github-official', 'gitlab']
        """
        needle = keyword.lower()
        return [
            card for card in self._cards.values()
            if needle in card.name.lower()
            or needle in card.id.lower()
            or needle in card.description.lower()
        ]

    def by_min_rating(self, min_a: int | None = None, min_b: int | None = None) -> list[ServerCard]:
        """Cards meeting the given minimum ratings; unrated cards never match."""
        result: list[ServerCard] = []
        for card in self._cards.values():
            if min_a is not None and (card.rating_a is None or card.rating_a < min_a):
                continue
            if min_b is not None and (card.rating_b is None or card.rating_b < min_b):
                continue
            result.append(card)
        return result

    def save(self, card: ServerCard) -> Path:
        """Persist a card to its own file and replace it in the store.

        ABOUTME: Writes {user_dir}/{id}.json; the whole card is replaced
        ABOUTME: The card is validated through its serialized form first

        Returns:
            Path of the written card file

        Raises:
            ValueError: If the card fails schema validation or no user_dir is set
            OSError: If the file cannot be written
        """
        if self._user_dir is None:
            raise ValueError("RecordStore has no user card directory to save into")

        data = card.to_dict()
        errors = validate_card_data(data, source=card.id)
        if errors:
            raise ValueError(
                f"Invalid server card '{card.id}': " + "; ".join(error.message for error in errors)
            )

        path = self._user_dir / f"{card.id}.json"
        write_json_file(path, data)
        self._cards[card.id] = card
        return path
