"""
content_providers.py
====================
Adapters for the content catalogs the launcher can search and install from.

Supported sources:
  - **Modrinth**    – https://api.modrinth.com/v2 (token-free, offset paginated)
  - **CurseForge**  – https://api.curseforge.com/v1 (requires an API key)
  - **ATLauncher**  – https://api.atlauncher.com (GraphQL, REST fallback; packs only)
  - **Private**     – operator-curated in-memory catalog, optionally loaded from YAML

Each provider exposes:
  - search(filters) → CatalogPage with its own total / has_more
  - fetch_details(native_id, item) → ItemDetails, or None when the item does not exist
  - download(native_id, version_id) → DownloadedArtifact, or None when no file is published
  - resolve_dependencies(native_id, version_id) → list of DependencyCandidate

Every request goes through the shared FetchClient. Wire formats belong to
the third parties, so every field is read defensively.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from content_errors import ContentError, PermanentRequestError, ProviderUnavailable
from content_models import (
    CatalogFilters,
    CatalogItem,
    CatalogPage,
    Category,
    DependencyCandidate,
    DownloadedArtifact,
    FileVersion,
    ItemDetails,
    SortMode,
    Source,
)
from fetch_client import FetchClient

logger = logging.getLogger(__name__)

SEARCH_TTL = 45.0
DETAILS_TTL = 60.0
VERSIONS_TTL = 120.0
DIRECTORY_TTL = 300.0


# ──────────────────────────────────────────────
#  Defensive field access
# ──────────────────────────────────────────────

def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _str_list(value: Any) -> List[str]:
    return [str(v) for v in _as_list(value) if v not in (None, "")]


def _unique(values: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


def _default_query(filters: CatalogFilters) -> str:
    query = filters.query.strip()
    if query:
        return query
    return "modpack" if filters.category is Category.MODPACK else "minecraft"


def _not_found(exc: PermanentRequestError) -> bool:
    return exc.status in (404, 410)


# ──────────────────────────────────────────────
#  Provider Base
# ──────────────────────────────────────────────

class ContentProvider:
    """Uniform capability set every catalog adapter implements."""

    source: Source
    supports_dependencies: bool = False

    def __init__(self, client: Optional[FetchClient]) -> None:
        self.client = client

    async def search(self, filters: CatalogFilters) -> CatalogPage:
        raise NotImplementedError

    async def fetch_details(
        self, native_id: str, item: Optional[CatalogItem] = None,
    ) -> Optional[ItemDetails]:
        raise NotImplementedError

    async def download(
        self, native_id: str, version_id: Optional[str] = None,
    ) -> Optional[DownloadedArtifact]:
        raise NotImplementedError

    async def resolve_dependencies(
        self, native_id: str, version_id: Optional[str] = None,
    ) -> List[DependencyCandidate]:
        return []

    def _page(self, filters: CatalogFilters, items: List[CatalogItem], total: int) -> CatalogPage:
        return CatalogPage(
            items=items,
            total=total,
            has_more=filters.has_more(total),
            page=filters.page,
        )


# ──────────────────────────────────────────────
#  Modrinth
# ──────────────────────────────────────────────

class ModrinthProvider(ContentProvider):
    """Modrinth API v2: token-free, offset/limit pagination, facet filters."""

    source = Source.MODRINTH
    supports_dependencies = True

    BASE = "https://api.modrinth.com/v2"
    SITE = "https://modrinth.com"

    PROJECT_TYPES: Dict[Category, str] = {
        Category.MODPACK: "modpack",
        Category.MOD: "mod",
        Category.SHADER: "shader",
        Category.RESOURCEPACK: "resourcepack",
        Category.DATAPACK: "datapack",
        Category.WORLD: "mod",
        Category.ADDON: "plugin",
    }
    SORT_INDEX: Dict[SortMode, str] = {
        SortMode.POPULAR: "downloads",
        SortMode.UPDATED: "updated",
        SortMode.RELEVANCE: "relevance",
    }
    # Relations that never become install candidates
    SKIPPED_RELATIONS = ("incompatible", "embedded")

    async def search(self, filters: CatalogFilters) -> CatalogPage:
        facets: List[List[str]] = [[f"project_type:{self.PROJECT_TYPES[filters.category]}"]]
        if filters.loader:
            facets.append([f"categories:{filters.loader}"])
        if filters.game_version:
            facets.append([f"versions:{filters.game_version}"])

        params = {
            "query": _default_query(filters),
            "facets": json.dumps(facets),
            "limit": filters.page_size,
            "offset": filters.offset,
            "index": self.SORT_INDEX[filters.sort],
        }
        data = _as_dict(await self.client.fetch(
            f"{self.BASE}/search", params=params, ttl=SEARCH_TTL,
        ))

        items = [
            self._map_hit(hit)
            for hit in _as_list(data.get("hits"))
            if isinstance(hit, dict) and hit.get("project_id")
        ]
        total = _as_int(data.get("total_hits"), len(items))
        logger.debug("Modrinth search '%s': %d/%d", filters.query, len(items), total)
        return self._page(filters, items, total)

    def _map_hit(self, hit: Dict[str, Any]) -> CatalogItem:
        project_type = hit.get("project_type") or "mod"
        slug = hit.get("slug") or hit.get("project_id")
        return CatalogItem(
            source=self.source,
            native_id=str(hit["project_id"]),
            name=hit.get("title") or slug or "",
            author=hit.get("author") or "Unknown author",
            raw_downloads=_as_int(hit.get("downloads")),
            description=hit.get("description") or "No description.",
            category=project_type,
            game_versions=_str_list(hit.get("versions")),
            loaders=_str_list(hit.get("categories")),
            thumbnail=hit.get("icon_url") or None,
            url=f"{self.SITE}/{project_type}/{slug}",
            updated_at=hit.get("date_modified"),
            slug=hit.get("slug"),
        )

    async def fetch_details(
        self, native_id: str, item: Optional[CatalogItem] = None,
    ) -> Optional[ItemDetails]:
        try:
            project = _as_dict(await self.client.fetch(
                f"{self.BASE}/project/{native_id}", ttl=DETAILS_TTL,
            ))
        except PermanentRequestError as exc:
            if _not_found(exc):
                return None
            raise

        versions = [
            self._map_version(v)
            for v in await self._versions(native_id)
        ]
        gallery = [project["icon_url"]] if project.get("icon_url") else []
        gallery += [
            g["url"] for g in _as_list(project.get("gallery"))
            if isinstance(g, dict) and g.get("url")
        ]
        dependencies = await self.resolve_dependencies(native_id, versions[0].id) if versions else []
        project_type = project.get("project_type") or (item.category if item else "mod")
        slug = project.get("slug") or native_id

        return ItemDetails(
            source=self.source,
            native_id=str(project.get("id") or native_id),
            title=project.get("title") or (item.name if item else ""),
            author=item.author if item else "",
            description=project.get("description") or "",
            body=project.get("body"),
            gallery=gallery,
            game_versions=_str_list(project.get("game_versions")) or (item.game_versions if item else []),
            loaders=_str_list(project.get("loaders")) or (item.loaders if item else []),
            versions=versions,
            dependencies=[d.id for d in dependencies if d.required],
            raw_downloads=_as_int(project.get("downloads"), item.raw_downloads if item else 0),
            updated_at=project.get("updated") or (item.updated_at if item else None),
            url=f"{self.SITE}/{project_type}/{slug}",
            category=project_type,
        )

    async def _versions(self, native_id: str) -> List[Dict[str, Any]]:
        data = await self.client.fetch(
            f"{self.BASE}/project/{native_id}/version", ttl=VERSIONS_TTL,
        )
        return [v for v in _as_list(data) if isinstance(v, dict) and v.get("id")]

    async def _version_payload(
        self, native_id: str, version_id: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        """The requested version, or the newest one when none is given."""
        if version_id:
            return _as_dict(await self.client.fetch(
                f"{self.BASE}/version/{version_id}", ttl=VERSIONS_TTL,
            ))
        versions = await self._versions(native_id)
        return versions[0] if versions else None

    @staticmethod
    def _primary_file(version: Dict[str, Any]) -> Dict[str, Any]:
        files = [f for f in _as_list(version.get("files")) if isinstance(f, dict)]
        return next((f for f in files if f.get("primary")), files[0] if files else {})

    @staticmethod
    def _file_hash(file: Dict[str, Any]) -> Tuple[Optional[str], str]:
        hashes = _as_dict(file.get("hashes"))
        for algorithm in ("sha512", "sha1"):
            if hashes.get(algorithm):
                return hashes[algorithm], algorithm
        return None, "sha256"

    def _map_version(self, version: Dict[str, Any]) -> FileVersion:
        primary = self._primary_file(version)
        file_hash, algorithm = self._file_hash(primary)
        return FileVersion(
            id=str(version["id"]),
            name=version.get("name") or version.get("version_number") or str(version["id"]),
            channel=version.get("version_type") or "release",
            game_versions=_str_list(version.get("game_versions")),
            loaders=_str_list(version.get("loaders")),
            published_at=version.get("date_published"),
            download_url=primary.get("url"),
            file_name=primary.get("filename"),
            file_hash=file_hash,
            hash_algorithm=algorithm,
            dependencies=[
                str(d["project_id"])
                for d in _as_list(version.get("dependencies"))
                if isinstance(d, dict) and d.get("project_id")
                and d.get("dependency_type") not in self.SKIPPED_RELATIONS
            ],
        )

    async def download(
        self, native_id: str, version_id: Optional[str] = None,
    ) -> Optional[DownloadedArtifact]:
        version = await self._version_payload(native_id, version_id)
        if not version:
            return None
        primary = self._primary_file(version)
        if not primary.get("url"):
            return None
        file_hash, algorithm = self._file_hash(primary)
        return DownloadedArtifact(
            file_name=primary.get("filename") or f"{native_id}.jar",
            url=primary["url"],
            hash=file_hash,
            hash_algorithm=algorithm,
        )

    async def resolve_dependencies(
        self, native_id: str, version_id: Optional[str] = None,
    ) -> List[DependencyCandidate]:
        version = await self._version_payload(native_id, version_id)
        if not version:
            return []
        return [
            DependencyCandidate(
                id=str(dep["project_id"]),
                source=self.source,
                required=dep.get("dependency_type") != "optional",
            )
            for dep in _as_list(version.get("dependencies"))
            if isinstance(dep, dict) and dep.get("project_id")
            and dep.get("dependency_type") not in self.SKIPPED_RELATIONS
        ]


# ──────────────────────────────────────────────
#  CurseForge
# ──────────────────────────────────────────────

class CurseForgeProvider(ContentProvider):
    """
    CurseForge API v1.

    Requires an API key (config or CURSEFORGE_API_KEY environment variable).
    Without one, search returns an empty page and details degrade to the
    summary already known from search. Dependency graphs are not expanded
    for this source.
    """

    source = Source.CURSEFORGE

    BASE = "https://api.curseforge.com/v1"
    GAME_ID_MINECRAFT = 432

    CLASS_IDS: Dict[Category, int] = {
        Category.MOD: 6,
        Category.MODPACK: 4471,
        Category.RESOURCEPACK: 12,
        Category.SHADER: 6552,
        Category.WORLD: 17,
        Category.DATAPACK: 6945,
    }
    LOADER_IDS: Dict[str, int] = {"forge": 1, "fabric": 4, "quilt": 5, "neoforge": 6}
    SORT_FIELDS: Dict[SortMode, int] = {
        SortMode.RELEVANCE: 1,
        SortMode.POPULAR: 2,
        SortMode.UPDATED: 3,
    }
    RELEASE_TYPES = {1: "release", 2: "beta", 3: "alpha"}
    HASH_ALGORITHMS = {1: "sha1", 2: "md5"}
    REQUIRED_RELATION = 3

    def __init__(self, client: Optional[FetchClient], api_key: Optional[str] = None) -> None:
        super().__init__(client)
        self.api_key = api_key or os.environ.get("CURSEFORGE_API_KEY", "")

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key}

    async def search(self, filters: CatalogFilters) -> CatalogPage:
        if not self.api_key:
            logger.debug("CurseForge API key not set, skipping search")
            return CatalogPage(page=filters.page)

        class_id = self.CLASS_IDS.get(filters.category)
        if class_id is None:
            return CatalogPage(page=filters.page)

        params: Dict[str, Any] = {
            "gameId": self.GAME_ID_MINECRAFT,
            "searchFilter": _default_query(filters),
            "gameVersion": filters.game_version,
            "classId": class_id,
            "modLoaderType": self.LOADER_IDS.get(filters.loader or ""),
            "sortField": self.SORT_FIELDS[filters.sort],
            "sortOrder": "desc",
            "pageSize": filters.page_size,
            "index": filters.offset,
        }
        data = _as_dict(await self.client.fetch(
            f"{self.BASE}/mods/search", params=params,
            headers=self._headers(), ttl=SEARCH_TTL,
        ))

        items = [
            self._map_mod(mod, filters.category)
            for mod in _as_list(data.get("data"))
            if isinstance(mod, dict) and mod.get("id") is not None
        ]
        pagination = _as_dict(data.get("pagination"))
        total = _as_int(pagination.get("totalCount"), len(items))
        logger.debug("CurseForge search '%s': %d/%d", filters.query, len(items), total)
        return self._page(filters, items, total)

    def _map_mod(self, mod: Dict[str, Any], category: Category) -> CatalogItem:
        authors = [a.get("name", "") for a in _as_list(mod.get("authors")) if isinstance(a, dict)]
        logo = _as_dict(mod.get("logo"))
        indexes = [i for i in _as_list(mod.get("latestFilesIndexes")) if isinstance(i, dict)]
        loader_names = {v: k for k, v in self.LOADER_IDS.items()}
        return CatalogItem(
            source=self.source,
            native_id=str(mod["id"]),
            name=mod.get("name") or "",
            author=next((a for a in authors if a), "CurseForge"),
            raw_downloads=_as_int(mod.get("downloadCount")),
            description=mod.get("summary") or "No description.",
            category=category.value,
            game_versions=_unique(str(i.get("gameVersion") or "") for i in indexes),
            loaders=_unique(loader_names.get(i.get("modLoader"), "") for i in indexes),
            thumbnail=logo.get("thumbnailUrl") or logo.get("url"),
            url=_as_dict(mod.get("links")).get("websiteUrl"),
            updated_at=mod.get("dateModified") or mod.get("dateReleased"),
            slug=mod.get("slug"),
        )

    async def fetch_details(
        self, native_id: str, item: Optional[CatalogItem] = None,
    ) -> Optional[ItemDetails]:
        if not self.api_key:
            if item is None:
                raise ProviderUnavailable(self.source.value, "API key not configured")
            return ItemDetails.from_item(item)

        try:
            mod = _as_dict(_as_dict(await self.client.fetch(
                f"{self.BASE}/mods/{native_id}", headers=self._headers(), ttl=DETAILS_TTL,
            )).get("data"))
        except PermanentRequestError as exc:
            if _not_found(exc):
                return None
            raise

        files = await self._files(native_id)
        versions = [self._map_file(f) for f in files]
        latest_files = [f for f in _as_list(mod.get("latestFiles")) if isinstance(f, dict)]
        logo = _as_dict(mod.get("logo"))
        gallery = [logo["url"]] if logo.get("url") else []
        gallery += [
            s.get("url") or s.get("thumbnailUrl")
            for s in _as_list(mod.get("screenshots"))
            if isinstance(s, dict) and (s.get("url") or s.get("thumbnailUrl"))
        ]
        authors = [a.get("name", "") for a in _as_list(mod.get("authors")) if isinstance(a, dict)]

        return ItemDetails(
            source=self.source,
            native_id=str(mod.get("id") or native_id),
            title=mod.get("name") or (item.name if item else ""),
            author=next((a for a in authors if a), item.author if item else ""),
            description=mod.get("summary") or (item.description if item else ""),
            gallery=gallery,
            game_versions=_unique(
                gv for f in latest_files for gv in self._split_game_versions(f)[0]
            ),
            loaders=item.loaders if item else _unique(l for v in versions for l in v.loaders),
            versions=versions,
            dependencies=_unique(
                str(d.get("modId"))
                for f in latest_files
                for d in _as_list(f.get("dependencies"))
                if isinstance(d, dict) and d.get("modId")
            ),
            raw_downloads=_as_int(mod.get("downloadCount"), item.raw_downloads if item else 0),
            updated_at=mod.get("dateModified") or mod.get("dateReleased") or (item.updated_at if item else None),
            url=_as_dict(mod.get("links")).get("websiteUrl") or (item.url if item else None),
            category=item.category if item else "",
        )

    async def _files(self, native_id: str) -> List[Dict[str, Any]]:
        data = _as_dict(await self.client.fetch(
            f"{self.BASE}/mods/{native_id}/files", params={"pageSize": 50},
            headers=self._headers(), ttl=VERSIONS_TTL,
        ))
        return [f for f in _as_list(data.get("data")) if isinstance(f, dict) and f.get("id") is not None]

    def _split_game_versions(self, file: Dict[str, Any]) -> Tuple[List[str], List[str]]:
        """CurseForge mixes loader names into gameVersions; split them apart."""
        game_versions: List[str] = []
        loaders: List[str] = []
        for value in _str_list(file.get("gameVersions")):
            if value.lower() in self.LOADER_IDS:
                loaders.append(value.lower())
            elif value[:1].isdigit():
                game_versions.append(value)
        return game_versions, loaders

    def _file_hash(self, file: Dict[str, Any]) -> Tuple[Optional[str], str]:
        for entry in _as_list(file.get("hashes")):
            if isinstance(entry, dict) and entry.get("algo") == 1 and entry.get("value"):
                return entry["value"], "sha1"
        return None, "sha256"

    def _map_file(self, file: Dict[str, Any]) -> FileVersion:
        game_versions, loaders = self._split_game_versions(file)
        file_hash, algorithm = self._file_hash(file)
        return FileVersion(
            id=str(file["id"]),
            name=file.get("displayName") or file.get("fileName") or str(file["id"]),
            channel=self.RELEASE_TYPES.get(file.get("releaseType"), "release"),
            game_versions=game_versions,
            loaders=loaders,
            published_at=file.get("fileDate"),
            download_url=file.get("downloadUrl") or None,
            file_name=file.get("fileName"),
            file_hash=file_hash,
            hash_algorithm=algorithm,
            dependencies=[
                str(d.get("modId"))
                for d in _as_list(file.get("dependencies"))
                if isinstance(d, dict) and d.get("modId")
                and d.get("relationType") == self.REQUIRED_RELATION
            ],
        )

    async def download(
        self, native_id: str, version_id: Optional[str] = None,
    ) -> Optional[DownloadedArtifact]:
        if not self.api_key:
            return None

        files = await self._files(native_id)
        if version_id:
            picked = next((f for f in files if str(f["id"]) == str(version_id)), None)
        else:
            picked = files[0] if files else None
        if picked is None:
            return None

        url = picked.get("downloadUrl") or await self._download_url(native_id, str(picked["id"]))
        if not url:
            return None
        file_hash, algorithm = self._file_hash(picked)
        return DownloadedArtifact(
            file_name=picked.get("fileName") or f"{native_id}.jar",
            url=url,
            hash=file_hash,
            hash_algorithm=algorithm,
        )

    async def _download_url(self, native_id: str, file_id: str) -> Optional[str]:
        """Ask CurseForge for a file URL it did not include in the listing."""
        try:
            data = _as_dict(await self.client.fetch(
                f"{self.BASE}/mods/{native_id}/files/{file_id}/download-url",
                headers=self._headers(), ttl=VERSIONS_TTL,
            ))
        except PermanentRequestError as exc:
            logger.warning(
                "CurseForge refused download URL for %s/%s: %s", native_id, file_id, exc,
            )
            return None
        url = data.get("data")
        return url if isinstance(url, str) and url else None


# ──────────────────────────────────────────────
#  ATLauncher
# ──────────────────────────────────────────────

class ATLauncherProvider(ContentProvider):
    """
    ATLauncher modpack directory.

    Search tries the GraphQL API first and silently falls back to the
    legacy REST listing when GraphQL fails, reports errors or returns no
    payload. Only modpacks are listed.
    """

    source = Source.ATLAUNCHER

    GRAPHQL = "https://api.atlauncher.com/v2/graphql"
    REST = "https://api.atlauncher.com/v1"
    SITE = "https://atlauncher.com/pack"

    SEARCH_QUERY = (
        "query SearchModpacks($query: String, $first: Int, $skip: Int) {"
        " searchModpacks(query: $query, first: $first, skip: $skip, platform: ATLAUNCHER) {"
        " totalCount"
        " modpacks { id name safeName description websiteUrl logoUrl downloads updatedAt }"
        " } }"
    )

    async def search(self, filters: CatalogFilters) -> CatalogPage:
        if filters.category is not Category.MODPACK:
            return CatalogPage(page=filters.page)

        try:
            return await self._search_graphql(filters)
        except ContentError as exc:
            logger.warning("ATLauncher GraphQL search failed, using REST: %s", exc)
        return await self._search_rest(filters)

    async def _search_graphql(self, filters: CatalogFilters) -> CatalogPage:
        body = {
            "query": self.SEARCH_QUERY,
            "variables": {
                "query": filters.query.strip() or None,
                "first": filters.page_size,
                "skip": filters.offset,
            },
        }
        response = _as_dict(await self.client.fetch(
            self.GRAPHQL, method="POST", json_body=body, ttl=SEARCH_TTL,
        ))

        errors = _as_list(response.get("errors"))
        if errors:
            messages = "; ".join(str(_as_dict(e).get("message", e)) for e in errors)
            raise ProviderUnavailable(self.source.value, f"GraphQL errors: {messages}")

        payload = _as_dict(response.get("data")).get("searchModpacks")
        if not isinstance(payload, dict) or not isinstance(payload.get("modpacks"), list):
            raise ProviderUnavailable(self.source.value, "GraphQL response had no payload")

        items = [
            self._map_pack(pack)
            for pack in payload["modpacks"]
            if isinstance(pack, dict) and pack.get("id") is not None
        ]
        total = _as_int(payload.get("totalCount"), len(items))
        return self._page(filters, items, total)

    async def _packs(self) -> List[Dict[str, Any]]:
        data = await self.client.fetch(f"{self.REST}/packs/simple", ttl=DIRECTORY_TTL)
        if isinstance(data, dict):
            data = data.get("data", data.get("packs"))
        return [p for p in _as_list(data) if isinstance(p, dict) and p.get("id") is not None]

    async def _search_rest(self, filters: CatalogFilters) -> CatalogPage:
        needle = filters.query.strip().lower()
        matches = [
            pack for pack in await self._packs()
            if needle in str(pack.get("name", "")).lower()
        ]
        window = matches[filters.offset:filters.offset + filters.page_size]
        return self._page(filters, [self._map_pack(p) for p in window], len(matches))

    def _map_pack(self, pack: Dict[str, Any]) -> CatalogItem:
        safe_name = pack.get("safeName") or pack.get("safe_name")
        return CatalogItem(
            source=self.source,
            native_id=str(pack["id"]),
            name=str(pack.get("name") or ""),
            author="ATLauncher",
            raw_downloads=_as_int(pack.get("downloads")),
            description=pack.get("description") or "No description.",
            category=Category.MODPACK.value,
            thumbnail=pack.get("logoUrl"),
            url=pack.get("websiteUrl") or (f"{self.SITE}/{safe_name}" if safe_name else None),
            updated_at=pack.get("updatedAt"),
            slug=safe_name,
        )

    async def fetch_details(
        self, native_id: str, item: Optional[CatalogItem] = None,
    ) -> Optional[ItemDetails]:
        safe_name = item.slug if item and item.slug else None
        if safe_name is None:
            pack = next((p for p in await self._packs() if str(p["id"]) == str(native_id)), None)
            if pack is None:
                return None
            safe_name = pack.get("safeName") or pack.get("safe_name")
        if not safe_name:
            return None

        try:
            response = _as_dict(await self.client.fetch(
                f"{self.REST}/pack/{safe_name}", ttl=DIRECTORY_TTL,
            ))
        except PermanentRequestError as exc:
            if _not_found(exc):
                return None
            raise

        data = _as_dict(response.get("data")) or response
        versions = [
            FileVersion(
                id=str(v.get("version")),
                name=str(v.get("version")),
                game_versions=[str(v["minecraft"])] if v.get("minecraft") else [],
                published_at=self._epoch_to_iso(v.get("published")),
            )
            for v in _as_list(data.get("versions"))
            if isinstance(v, dict) and v.get("version")
        ]
        return ItemDetails(
            source=self.source,
            native_id=str(data.get("id") or native_id),
            title=str(data.get("name") or (item.name if item else safe_name)),
            author="ATLauncher",
            description=data.get("description") or (item.description if item else ""),
            gallery=[item.thumbnail] if item and item.thumbnail else [],
            game_versions=_unique(gv for v in versions for gv in v.game_versions),
            versions=versions,
            raw_downloads=item.raw_downloads if item else 0,
            updated_at=versions[0].published_at if versions else None,
            url=data.get("websiteURL") or f"{self.SITE}/{safe_name}",
            category=Category.MODPACK.value,
        )

    @staticmethod
    def _epoch_to_iso(value: Any) -> Optional[str]:
        seconds = _as_int(value, -1)
        if seconds < 0:
            return None
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()

    async def download(
        self, native_id: str, version_id: Optional[str] = None,
    ) -> Optional[DownloadedArtifact]:
        # Packs are assembled by ATLauncher from their configs; no single file exists
        return None


# ──────────────────────────────────────────────
#  Private Catalog
# ──────────────────────────────────────────────

@dataclass
class PrivateCatalogEntry:
    """Operator-curated entry."""

    id: str
    name: str
    download_url: str
    summary: str = ""
    author: str = ""
    version: str = "1.0.0"
    sha256: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)
    game_versions: List[str] = field(default_factory=list)
    loaders: List[str] = field(default_factory=list)
    loader_version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrivateCatalogEntry":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            download_url=str(data.get("download_url") or data.get("downloadUrl") or ""),
            summary=data.get("summary", "") or "",
            author=data.get("author", "") or "",
            version=str(data.get("version", "1.0.0")),
            sha256=data.get("sha256"),
            dependencies=_str_list(data.get("dependencies")),
            game_versions=_str_list(data.get("game_versions") or data.get("gameVersions")),
            loaders=[l.lower() for l in _str_list(data.get("loaders"))],
            loader_version=str(data.get("loader_version") or data.get("loaderVersion") or "") or None,
        )


def load_private_catalog(path: str | Path) -> List[PrivateCatalogEntry]:
    """Load entries from a YAML (or JSON) file: a list, or ``{entries: [...]}``."""
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or []
    if isinstance(data, dict):
        data = data.get("entries", [])
    entries = [
        PrivateCatalogEntry.from_dict(raw)
        for raw in _as_list(data)
        if isinstance(raw, dict) and raw.get("id")
    ]
    logger.info("Loaded %d private catalog entries from %s", len(entries), path)
    return entries


class PrivateProvider(ContentProvider):
    """In-memory catalog for operator-curated or offline content."""

    source = Source.PRIVATE
    supports_dependencies = True

    def __init__(
        self,
        catalog: Optional[Iterable[PrivateCatalogEntry | Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(None)
        self.catalog: List[PrivateCatalogEntry] = [
            e if isinstance(e, PrivateCatalogEntry) else PrivateCatalogEntry.from_dict(e)
            for e in (catalog or [])
        ]

    def _entry(self, native_id: str) -> Optional[PrivateCatalogEntry]:
        return next((e for e in self.catalog if e.id == native_id), None)

    def _item(self, entry: PrivateCatalogEntry, category: str = "") -> CatalogItem:
        return CatalogItem(
            source=self.source,
            native_id=entry.id,
            name=entry.name,
            author=entry.author or "Private catalog",
            description=entry.summary,
            category=category,
            game_versions=list(entry.game_versions),
            loaders=list(entry.loaders),
            url=entry.download_url or None,
        )

    async def search(self, filters: CatalogFilters) -> CatalogPage:
        needle = filters.query.strip().lower()
        matches = [e for e in self.catalog if needle in e.name.lower()]
        window = matches[filters.offset:filters.offset + filters.page_size]
        return self._page(
            filters, [self._item(e, filters.category.value) for e in window], len(matches),
        )

    async def fetch_details(
        self, native_id: str, item: Optional[CatalogItem] = None,
    ) -> Optional[ItemDetails]:
        entry = self._entry(native_id)
        if entry is None:
            return None
        version = FileVersion(
            id=entry.version,
            name=f"{entry.name} {entry.version}",
            game_versions=list(entry.game_versions),
            loaders=list(entry.loaders),
            download_url=entry.download_url or None,
            file_name=f"{entry.id}.jar",
            file_hash=entry.sha256,
            dependencies=list(entry.dependencies),
            loader_version=entry.loader_version,
        )
        return ItemDetails(
            source=self.source,
            native_id=entry.id,
            title=entry.name,
            author=entry.author,
            description=entry.summary,
            game_versions=list(entry.game_versions),
            loaders=list(entry.loaders),
            versions=[version],
            dependencies=list(entry.dependencies),
            url=entry.download_url or None,
            category=item.category if item else "",
        )

    async def download(
        self, native_id: str, version_id: Optional[str] = None,
    ) -> Optional[DownloadedArtifact]:
        entry = self._entry(native_id)
        if entry is None or not entry.download_url:
            return None
        return DownloadedArtifact(
            file_name=f"{entry.id}.jar",
            url=entry.download_url,
            hash=entry.sha256,
        )

    async def resolve_dependencies(
        self, native_id: str, version_id: Optional[str] = None,
    ) -> List[DependencyCandidate]:
        entry = self._entry(native_id)
        if entry is None:
            return []
        return [
            DependencyCandidate(id=dep, source=self.source, required=True)
            for dep in entry.dependencies
        ]


# ──────────────────────────────────────────────
#  Provider Table
# ──────────────────────────────────────────────

def build_providers(
    client: FetchClient,
    *,
    curseforge_api_key: Optional[str] = None,
    private_catalog: Optional[Iterable[PrivateCatalogEntry | Dict[str, Any]]] = None,
) -> Dict[Source, ContentProvider]:
    """Build the closed source → provider lookup table."""
    return {
        Source.MODRINTH: ModrinthProvider(client),
        Source.CURSEFORGE: CurseForgeProvider(client, curseforge_api_key),
        Source.ATLAUNCHER: ATLauncherProvider(client),
        Source.PRIVATE: PrivateProvider(private_catalog),
    }
