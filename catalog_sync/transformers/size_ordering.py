"""
Size label ordering for catalog variants.

Variant titles arrive as "5/6 / Black", "Fuchsia / 4" or just "12-18M".
SizeRanker extracts the size part, normalizes it and ranks it against the
canonical size order. Labels that are not canonical are looked up in a
size alias table (raw -> canonical) that is loaded once and injected;
to pick up alias edits build a new ranker.
"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from models.size_alias import SizeAlias
import logging
import re

logger = logging.getLogger(__name__)

# Smallest to largest: baby months, toddler, kids, teen, letters, junior, one-size
SIZE_ORDER: List[str] = [
    "0/6M", "6/12M", "12/18M", "18/24M",
    "2T", "3T", "2/3T", "2/3", "2", "3",
    "4", "4/5", "5", "5/6", "6", "6/6X", "6/7", "7", "7/8", "8",
    "10", "10/12", "12", "14", "14/16", "16",
    "18", "18/20", "20",
    "XXS", "XS", "S", "M", "M/L", "L", "XL", "XXL",
    "JR-XS", "JR-S", "JR-M", "JR-L", "JR-XL",
    "O/S",
]

UNKNOWN_SIZE_RANK = 9999

_MONTH_RANGE = re.compile(r"^(\d+)-(\d+M)$")
_TITLE_SEPARATOR = " / "


def normalize_size(raw: Optional[str]) -> str:
    """Trim, upper-case and turn "12-18M" into "12/18M" """
    if not raw:
        return ""
    s = raw.strip().upper()
    return _MONTH_RANGE.sub(r"\1/\2", s)


_DEFAULT_KNOWN = frozenset(normalize_size(s) for s in SIZE_ORDER)


def extract_size(variant_title: Optional[str], known: Optional[Iterable[str]] = None) -> str:
    """
    Pick the size out of a variant title.

    "5/6 / Black" -> "5/6", "Fuchsia / 4" -> "4", "12-18M" -> "12/18M".
    When neither side of the separator is a known size the first part is
    returned normalized.
    """
    if not variant_title:
        return ""

    if _TITLE_SEPARATOR not in variant_title:
        return normalize_size(variant_title)

    known_sizes = _DEFAULT_KNOWN if known is None else known
    parts = [p.strip() for p in variant_title.split(_TITLE_SEPARATOR)]

    for part in parts[:2]:
        if part and normalize_size(part) in known_sizes:
            return normalize_size(part)

    return normalize_size(parts[0]) or variant_title.strip()


def _size_of(item: Any) -> Optional[str]:
    if isinstance(item, Mapping):
        return item.get("size")
    return getattr(item, "size", None)


class SizeRanker:
    """
    Rank size labels by the canonical order.

    Lookup is case-insensitive. Unknown labels, and aliases whose
    canonical size is not in the order, get unknown_rank which is greater
    than every canonical rank.
    """

    def __init__(
        self,
        order: Sequence[str] = SIZE_ORDER,
        aliases: Optional[Mapping[str, str]] = None
    ):
        self._index: Dict[str, int] = {}
        for position, size in enumerate(order):
            self._index.setdefault(normalize_size(size), position)

        self._aliases: Dict[str, str] = {
            normalize_size(raw): normalize_size(canonical)
            for raw, canonical in (aliases or {}).items()
            if raw and canonical
        }
        self.unknown_rank = max(UNKNOWN_SIZE_RANK, len(order))

    @classmethod
    async def load(cls, session: AsyncSession, order: Sequence[str] = SIZE_ORDER) -> "SizeRanker":
        """Build a ranker from the current size_aliases table"""
        result = await session.execute(select(SizeAlias.raw_size, SizeAlias.canonical_size))
        aliases = {raw: canonical for raw, canonical in result.all()}
        logger.debug(f"Loaded {len(aliases)} size aliases")
        return cls(order=order, aliases=aliases)

    @property
    def alias_count(self) -> int:
        return len(self._aliases)

    def rank(self, label: Optional[str]) -> int:
        size = extract_size(label, known=self._index)
        if not size:
            return self.unknown_rank

        if size in self._index:
            return self._index[size]

        canonical = self._aliases.get(size) or self._aliases.get(normalize_size(label))
        if canonical is not None:
            canonical = extract_size(canonical, known=self._index)
            if canonical in self._index:
                return self._index[canonical]

        return self.unknown_rank

    def sort(self, items: Iterable[Any], key: Callable[[Any], Optional[str]] = _size_of) -> List[Any]:
        """New list ordered by size rank; ties keep their input order"""
        return sorted(items, key=lambda item: self.rank(key(item)))


_default_ranker = SizeRanker()


def sort_by_size(
    items: Iterable[Any],
    key: Callable[[Any], Optional[str]] = _size_of,
    ranker: Optional[SizeRanker] = None
) -> List[Any]:
    """Sort items (dicts or objects with a ``size``) smallest first"""
    return (ranker or _default_ranker).sort(items, key=key)
