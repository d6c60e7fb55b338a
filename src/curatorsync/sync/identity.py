"""Identity resolution between remote records and local rows.

:func:`resolve` decides, for one remote restaurant, what the engine should do
with the local catalog. It never mutates anything; the engine applies the
returned :class:`Resolution`.

Order of checks:

1. exact ``server_id`` match: overwrite if the row is still server-sourced,
   skip if it was edited locally;
2. normalized-name match: link a local row that has no ``server_id`` yet;
   skip when the only matches are different server records;
3. no match: create.
"""

from __future__ import annotations

import string
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from curatorsync.contracts.models import Curator, Restaurant, Source, curator_identity_key
from curatorsync.contracts.remote import RemoteCurator, RemoteRestaurant

_PUNCTUATION = str.maketrans("", "", string.punctuation + "\u2018\u2019\u201c\u201d\u00b4\u2013\u2014")


def normalize_name(text: str | None) -> str:
    """Lowercase, strip diacritics, drop punctuation and whitespace.

    ``"Café  Luna!"`` and ``"cafe luna"`` both normalize to ``"cafeluna"``.
    """
    decomposed = unicodedata.normalize("NFD", (text or "").lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return "".join(stripped.translate(_PUNCTUATION).split())


class ResolutionAction(str, Enum):
    NONE = "none"
    LINK_EXISTING = "link_existing"
    OVERWRITE_EXISTING = "overwrite_existing"
    SKIP_DIVERGED = "skip_diverged"
    SKIP_DUPLICATE = "skip_duplicate"


@dataclass(frozen=True)
class Resolution:
    action: ResolutionAction
    target: Restaurant | None = None
    reason: str = ""


@dataclass
class RestaurantIndex:
    """Lookup tables over local restaurants, keyed by server id and normalized name."""

    by_server_id: dict[str, Restaurant] = field(default_factory=dict)
    by_name: dict[str, list[Restaurant]] = field(default_factory=dict)

    @classmethod
    def build(cls, rows: Iterable[Restaurant]) -> RestaurantIndex:
        index = cls()
        for row in rows:
            index.add(row)
        return index

    def add(self, row: Restaurant) -> None:
        if row.server_id:
            self.by_server_id.setdefault(str(row.server_id), row)
        key = normalize_name(row.name)
        if key:
            bucket = self.by_name.setdefault(key, [])
            bucket[:] = [existing for existing in bucket if existing.id != row.id]
            bucket.append(row)

    def replace(self, row: Restaurant) -> None:
        """Re-index *row* after its linkage changed."""
        for bucket in self.by_name.values():
            bucket[:] = [existing for existing in bucket if existing.id != row.id]
        for server_id, existing in list(self.by_server_id.items()):
            if existing.id == row.id:
                del self.by_server_id[server_id]
        self.add(row)

    def find_by_server_id(self, server_id: str | None) -> Restaurant | None:
        if not server_id:
            return None
        return self.by_server_id.get(str(server_id))

    def find_by_name(self, name: str | None) -> list[Restaurant]:
        return list(self.by_name.get(normalize_name(name), ()))


def resolve(remote: RemoteRestaurant, index: RestaurantIndex) -> Resolution:
    server_id = remote.server_id

    exact = index.find_by_server_id(server_id)
    if exact is not None:
        if exact.source == Source.REMOTE:
            return Resolution(ResolutionAction.OVERWRITE_EXISTING, exact, "server id match, unchanged locally")
        return Resolution(ResolutionAction.SKIP_DIVERGED, exact, "server id match, edited locally")

    matches = index.find_by_name(remote.name)
    if not matches:
        return Resolution(ResolutionAction.NONE, None, "no local match")

    for candidate in matches:
        if candidate.source == Source.LOCAL and not candidate.server_id:
            return Resolution(ResolutionAction.LINK_EXISTING, candidate, "name match with unlinked local row")

    # Every match already belongs to a different server record.
    return Resolution(ResolutionAction.SKIP_DUPLICATE, matches[0], "name match with a different server id")


def resolve_curator(
    remote: RemoteCurator,
    by_server_id: dict[str, Curator],
    by_name: dict[str, Curator],
) -> Curator | None:
    """Find the local curator for *remote*: server id first, then case-insensitive name."""
    if remote.server_id and remote.server_id in by_server_id:
        return by_server_id[remote.server_id]
    return by_name.get(curator_identity_key(remote.name))
