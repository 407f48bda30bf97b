"""
content_models.py
=================
Normalised data model shared by the fetch client, providers, aggregator
and installer.

Every catalog maps its own wire format into these types so the rest of
the pipeline never sees a provider-specific field.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 24
DEFAULT_PAGE_SIZE = 12

# Loader names the installer records as the instance's mod loader
RECOGNIZED_LOADERS = ("fabric", "forge", "quilt", "neoforge")


# ──────────────────────────────────────────────
#  Enumerations
# ──────────────────────────────────────────────

class Source(str, Enum):
    """Catalogs known to the launcher. The set is closed."""

    MODRINTH = "modrinth"
    CURSEFORGE = "curseforge"
    ATLAUNCHER = "atlauncher"
    PRIVATE = "private"


ALL_PLATFORMS = "all"


class Category(str, Enum):
    """Content categories a search can target."""

    MODPACK = "modpack"
    MOD = "mod"
    SHADER = "shader"
    RESOURCEPACK = "resourcepack"
    DATAPACK = "datapack"
    WORLD = "world"
    ADDON = "addon"

    @classmethod
    def parse(cls, value: "str | Category") -> "Category":
        """Accept enum values and display labels ("Mods", "Resource Packs")."""
        if isinstance(value, Category):
            return value
        key = value.strip().lower().replace(" ", "").replace("_", "").replace("-", "")
        if key.endswith("s"):
            key = key[:-1]
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unknown category: {value!r}")


class SortMode(str, Enum):
    POPULAR = "popular"
    UPDATED = "updated"
    RELEVANCE = "relevance"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


# Natural direction of each sort mode when the caller does not override it
NATURAL_DIRECTION: Dict[SortMode, SortDirection] = {
    SortMode.POPULAR: SortDirection.DESC,
    SortMode.UPDATED: SortDirection.DESC,
    SortMode.RELEVANCE: SortDirection.ASC,
}


# ──────────────────────────────────────────────
#  Helpers
# ──────────────────────────────────────────────

def format_downloads(count: int) -> str:
    """Compact human-readable download count, e.g. ``1.2M downloads``."""
    if count <= 0:
        return "No downloads"
    for threshold, suffix in ((1_000_000_000, "B"), (1_000_000, "M"), (1_000, "K")):
        if count >= threshold:
            value = f"{count / threshold:.1f}".rstrip("0").rstrip(".")
            return f"{value}{suffix} downloads"
    return f"{count} downloads"


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; ``None`` for anything unparseable."""
    if not value:
        return None
    text = str(value).replace("Z", "+00:00")
    # fromisoformat on 3.10 only takes 3 or 6 fractional digits
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def composite_id(source: "Source | str", native_id: str) -> str:
    return f"{Source(source).value}-{native_id}"


# ──────────────────────────────────────────────
#  Search request / response
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class CatalogFilters:
    """One search request. Immutable; use ``replace``/``next_page`` to derive."""

    query: str = ""
    category: Category = Category.MOD
    game_version: Optional[str] = None
    loader: Optional[str] = None
    platform: str = ALL_PLATFORMS
    sort: SortMode = SortMode.POPULAR
    direction: Optional[SortDirection] = None
    page: int = 0
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", Category.parse(self.category))
        object.__setattr__(self, "sort", SortMode(self.sort))
        if self.direction is not None:
            object.__setattr__(self, "direction", SortDirection(self.direction))
        platform = (self.platform or ALL_PLATFORMS).lower()
        if platform != ALL_PLATFORMS:
            platform = Source(platform).value
        object.__setattr__(self, "platform", platform)
        object.__setattr__(self, "page", max(0, int(self.page)))
        object.__setattr__(
            self, "page_size",
            max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, int(self.page_size))),
        )
        object.__setattr__(self, "game_version", self.game_version or None)
        object.__setattr__(self, "loader", (self.loader or "").lower() or None)

    @property
    def effective_direction(self) -> SortDirection:
        return self.direction or NATURAL_DIRECTION[self.sort]

    @property
    def offset(self) -> int:
        return self.page * self.page_size

    def next_page(self) -> "CatalogFilters":
        return replace(self, page=self.page + 1)

    def has_more(self, total: int) -> bool:
        """Pagination rule shared by every provider."""
        return (self.page + 1) * self.page_size < total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "category": self.category.value,
            "game_version": self.game_version,
            "loader": self.loader,
            "platform": self.platform,
            "sort": self.sort.value,
            "direction": self.direction.value if self.direction else None,
            "page_size": self.page_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogFilters":
        return cls(
            query=data.get("query", "") or "",
            category=data.get("category", Category.MOD.value),
            game_version=data.get("game_version"),
            loader=data.get("loader"),
            platform=data.get("platform", ALL_PLATFORMS),
            sort=data.get("sort", SortMode.POPULAR.value),
            direction=data.get("direction"),
            page=0,
            page_size=data.get("page_size", DEFAULT_PAGE_SIZE),
        )


@dataclass
class CatalogItem:
    """A normalised search hit. ``(source, native_id)`` is its identity."""

    source: Source
    native_id: str
    name: str
    author: str = ""
    raw_downloads: int = 0
    description: str = ""
    category: str = ""
    game_versions: List[str] = field(default_factory=list)
    loaders: List[str] = field(default_factory=list)
    thumbnail: Optional[str] = None
    url: Optional[str] = None
    updated_at: Optional[str] = None
    slug: Optional[str] = None

    def __post_init__(self) -> None:
        self.source = Source(self.source)
        self.native_id = str(self.native_id)

    @property
    def id(self) -> str:
        return composite_id(self.source, self.native_id)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source.value, self.native_id)

    @property
    def downloads(self) -> str:
        return format_downloads(self.raw_downloads)

    @property
    def updated(self) -> Optional[datetime]:
        return parse_timestamp(self.updated_at)


@dataclass
class CatalogPage:
    """Merged search result."""

    items: List[CatalogItem] = field(default_factory=list)
    total: int = 0
    has_more: bool = False
    page: int = 0
    failed_sources: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed_sources)


# ──────────────────────────────────────────────
#  Details
# ──────────────────────────────────────────────

@dataclass
class FileVersion:
    """One published version of an item."""

    id: str
    name: str
    channel: str = "release"             # release | beta | alpha
    game_versions: List[str] = field(default_factory=list)
    loaders: List[str] = field(default_factory=list)
    published_at: Optional[str] = None
    download_url: Optional[str] = None
    file_name: Optional[str] = None
    file_hash: Optional[str] = None
    hash_algorithm: str = "sha256"
    dependencies: List[str] = field(default_factory=list)
    loader_version: Optional[str] = None

    def supports(self, game_version: Optional[str]) -> bool:
        return bool(game_version) and game_version in self.game_versions

    def recognized_loader(self, preferred: Optional[str] = None) -> Optional[str]:
        """Return a recognised mod loader among this version's loader tags."""
        tags = [loader.lower() for loader in self.loaders]
        if preferred and preferred.lower() in tags and preferred.lower() in RECOGNIZED_LOADERS:
            return preferred.lower()
        return next((tag for tag in tags if tag in RECOGNIZED_LOADERS), None)


@dataclass
class ItemDetails:
    """Rich projection of a single item, fetched on demand."""

    source: Source
    native_id: str
    title: str
    author: str = ""
    description: str = ""
    body: Optional[str] = None
    gallery: List[str] = field(default_factory=list)
    game_versions: List[str] = field(default_factory=list)
    loaders: List[str] = field(default_factory=list)
    versions: List[FileVersion] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    raw_downloads: int = 0
    updated_at: Optional[str] = None
    url: Optional[str] = None
    category: str = ""

    @property
    def id(self) -> str:
        return composite_id(self.source, self.native_id)

    @classmethod
    def from_item(cls, item: CatalogItem) -> "ItemDetails":
        """Summary-only details, used when the full record is unavailable."""
        return cls(
            source=item.source,
            native_id=item.native_id,
            title=item.name,
            author=item.author,
            description=item.description,
            gallery=[item.thumbnail] if item.thumbnail else [],
            game_versions=list(item.game_versions),
            loaders=list(item.loaders),
            raw_downloads=item.raw_downloads,
            updated_at=item.updated_at,
            url=item.url,
            category=item.category,
        )


@dataclass(frozen=True)
class DependencyCandidate:
    id: str
    source: Source
    required: bool = True


@dataclass
class DownloadedArtifact:
    file_name: str
    url: str
    hash: Optional[str] = None
    hash_algorithm: str = "sha256"


# ──────────────────────────────────────────────
#  Installation results
# ──────────────────────────────────────────────

@dataclass
class InstalledMod:
    """Record of one item placed into an instance."""

    name: str
    source: str
    source_id: str
    version_id: str
    version_name: str
    file_name: str
    installed_at: str
    game_versions: List[str] = field(default_factory=list)
    loaders: List[str] = field(default_factory=list)
    required_by: Optional[str] = None     # composite id of the parent, None for selections

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source, self.source_id)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "source": self.source,
            "source_id": self.source_id,
            "version_id": self.version_id,
            "version_name": self.version_name,
            "file_name": self.file_name,
            "installed_at": self.installed_at,
            "game_versions": self.game_versions,
            "loaders": self.loaders,
            "required_by": self.required_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InstalledMod":
        return cls(
            name=data.get("name", ""),
            source=data.get("source", ""),
            source_id=str(data.get("source_id", "")),
            version_id=str(data.get("version_id", "")),
            version_name=data.get("version_name", ""),
            file_name=data.get("file_name", ""),
            installed_at=data.get("installed_at", ""),
            game_versions=data.get("game_versions", []),
            loaders=data.get("loaders", []),
            required_by=data.get("required_by"),
        )


@dataclass
class InstalledDelta:
    """What an install batch changed; merged into instance state by the caller."""

    instance_id: str
    installed: List[InstalledMod] = field(default_factory=list)
    detected_loader: Optional[str] = None
    loader_version: Optional[str] = None
    loader_changed: bool = False
    offline: bool = False


@dataclass
class ActiveUser:
    username: str
    uuid: str = ""
    access_token: Optional[str] = None

    @property
    def is_online(self) -> bool:
        return bool(self.access_token)
