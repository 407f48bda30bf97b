"""
mod_installer.py
================
Dependency-resolving installer.

Orchestrates:
  - Breadth-first expansion of the selection's dependency graph over a
    growing work queue, each (source, id) processed at most once
  - Version selection by target game version and loader
  - Verified downloads into the instance's mods directory
  - Loader detection and the resulting InstalledDelta
  - Persisting deltas in <instance>/installed_mods.json

A failure on any item aborts the batch. Files already placed by earlier
items stay on disk; reconciling them is left to the caller.
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, Union
from urllib.parse import urlsplit
from urllib.request import url2pathname

from catalog_aggregator import CatalogAggregator
from content_errors import (
    ChecksumMismatch,
    ContentError,
    DependencyUnresolved,
    DownloadUnavailable,
    InstallError,
    NoCompatibleVersion,
)
from content_models import (
    ActiveUser,
    CatalogItem,
    DependencyCandidate,
    DownloadedArtifact,
    FileVersion,
    InstalledDelta,
    InstalledMod,
    ItemDetails,
    Source,
    composite_id,
)
from content_providers import ContentProvider
from fetch_client import FetchClient

logger = logging.getLogger(__name__)

Selection = Union[CatalogItem, DependencyCandidate]


def _safe_filename(name: str) -> str:
    safe = "".join(c if c.isalnum() or c in "-_." else "-" for c in name)
    return safe or "artifact.jar"


def _local_path(url: str) -> Optional[Path]:
    """Filesystem path for ``file://`` URLs and plain paths, else None."""
    parts = urlsplit(url)
    if parts.scheme == "file":
        return Path(url2pathname(parts.path))
    if parts.scheme == "" or len(parts.scheme) == 1:
        return Path(url)
    return None


def select_version(
    details: ItemDetails,
    game_version: Optional[str],
    loader: Optional[str] = None,
) -> FileVersion:
    """
    Pick the file version to install.

    Preference: game version and loader both match, then game version
    only, then the first listed version (logged as a compatibility gap).

    Raises:
        NoCompatibleVersion: the item publishes no versions at all
    """
    label = details.title or details.id
    if not details.versions:
        raise NoCompatibleVersion(label, "no published versions")

    matching = [v for v in details.versions if v.supports(game_version)]
    wanted = (loader or "").lower()
    if wanted:
        for version in matching:
            if wanted in (tag.lower() for tag in version.loaders):
                return version
    if matching:
        return matching[0]

    fallback = details.versions[0]
    if game_version:
        logger.warning(
            "No version of %s supports %s, falling back to %s (%s)",
            label, game_version, fallback.name, ", ".join(fallback.game_versions) or "unknown",
        )
    return fallback


# ──────────────────────────────────────────────
#  Work queue entry
# ──────────────────────────────────────────────

@dataclass
class QueueEntry:
    source: Source
    native_id: str
    item: Optional[CatalogItem] = None
    required_by: Optional[str] = None
    required: bool = True

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source.value, self.native_id)

    @property
    def label(self) -> str:
        return self.item.name if self.item and self.item.name else composite_id(self.source, self.native_id)

    @classmethod
    def from_selection(cls, selected: Selection) -> "QueueEntry":
        if isinstance(selected, CatalogItem):
            return cls(selected.source, selected.native_id, item=selected)
        return cls(Source(selected.source), str(selected.id), required=selected.required)


# ──────────────────────────────────────────────
#  Installer
# ──────────────────────────────────────────────

class ModInstaller:
    """
    Installs a selection and its dependency closure into one instance.

    Args:
        aggregator:       provider lookup (one provider per queue entry's source)
        placement:        object with ``place_artifact(instance_id, url, file_name, ...)``
        user_provider:    callable returning the active ActiveUser, or None
        include_optional: also install optional dependencies
    """

    def __init__(
        self,
        aggregator: CatalogAggregator,
        placement: "DirectoryPlacement",
        user_provider: Optional[Callable[[], Optional[ActiveUser]]] = None,
        include_optional: bool = False,
    ) -> None:
        self.aggregator = aggregator
        self.placement = placement
        self.user_provider = user_provider
        self.include_optional = include_optional

    async def install(
        self,
        selection: Sequence[Selection],
        target_game_version: Optional[str],
        target_loader: Optional[str],
        instance_id: str,
    ) -> InstalledDelta:
        """
        Install ``selection`` plus dependencies and return what changed.

        Raises:
            InstallError: naming the offending item; the batch is aborted
        """
        user = self.user_provider() if self.user_provider else None
        offline = user is not None and not user.is_online
        if offline:
            logger.warning("No access token for %s, installing in offline context", user.username)

        queue: List[QueueEntry] = [QueueEntry.from_selection(s) for s in selection]
        seen: Set[Tuple[str, str]] = {entry.key for entry in queue}
        delta = InstalledDelta(instance_id=instance_id, offline=offline)

        logger.info(
            "Installing %d selection(s) into %s (mc=%s loader=%s)",
            len(queue), instance_id, target_game_version, target_loader,
        )

        # The queue grows while it is walked
        index = 0
        while index < len(queue):
            entry = queue[index]
            index += 1
            record = await self._process(
                entry, queue, seen, delta, target_game_version, target_loader,
            )
            if record is not None:
                delta.installed.append(record)

        target = (target_loader or "").lower() or None
        delta.loader_changed = delta.detected_loader is not None and delta.detected_loader != target
        logger.info(
            "Installed %d item(s) into %s%s", len(delta.installed), instance_id,
            f", detected loader {delta.detected_loader}" if delta.detected_loader else "",
        )
        return delta

    async def _process(
        self,
        entry: QueueEntry,
        queue: List[QueueEntry],
        seen: Set[Tuple[str, str]],
        delta: InstalledDelta,
        game_version: Optional[str],
        loader: Optional[str],
    ) -> Optional[InstalledMod]:
        label = entry.label
        try:
            provider = self.aggregator.provider(entry.source)
            details = await provider.fetch_details(entry.native_id, entry.item)
        except ContentError as exc:
            raise InstallError(label, f"could not fetch details: {exc}") from exc

        if details is None:
            if entry.required_by is None:
                raise InstallError(label, f"not found on {entry.source.value}")
            if not entry.required:
                logger.warning("Optional dependency %s of %s not found, skipping", label, entry.required_by)
                return None
            raise DependencyUnresolved(
                label, f"required by {entry.required_by} but not found on {entry.source.value}",
            )

        label = details.title or label
        version = select_version(details, game_version, loader)
        artifact = await self._artifact(provider, details, version, label)

        detected = version.recognized_loader(loader)
        if detected:
            delta.detected_loader = detected
            delta.loader_version = version.loader_version

        try:
            await self.placement.place_artifact(
                delta.instance_id, artifact.url, artifact.file_name,
                expected_hash=artifact.hash,
                hash_algorithm=artifact.hash_algorithm,
                label=label,
            )
        except InstallError:
            raise
        except (ContentError, OSError) as exc:
            raise InstallError(label, f"download failed: {exc}") from exc

        if provider.supports_dependencies:
            await self._enqueue_dependencies(provider, details, version, queue, seen, label)

        logger.info("Installed %s %s (%s)", label, version.name, artifact.file_name)
        return InstalledMod(
            name=label,
            source=details.source.value,
            source_id=details.native_id,
            version_id=version.id,
            version_name=version.name,
            file_name=artifact.file_name,
            installed_at=datetime.now(tz=timezone.utc).isoformat(),
            game_versions=list(version.game_versions),
            loaders=list(version.loaders),
            required_by=entry.required_by,
        )

    async def _artifact(
        self,
        provider: ContentProvider,
        details: ItemDetails,
        version: FileVersion,
        label: str,
    ) -> DownloadedArtifact:
        if version.download_url:
            return DownloadedArtifact(
                file_name=_safe_filename(version.file_name or f"{label}.jar"),
                url=version.download_url,
                hash=version.file_hash,
                hash_algorithm=version.hash_algorithm,
            )
        try:
            artifact = await provider.download(details.native_id, version.id)
        except ContentError as exc:
            raise InstallError(label, f"could not resolve download: {exc}") from exc
        if artifact is None:
            raise DownloadUnavailable(label, f"version {version.name} has no download URL")
        artifact.file_name = _safe_filename(artifact.file_name)
        return artifact

    async def _enqueue_dependencies(
        self,
        provider: ContentProvider,
        details: ItemDetails,
        version: FileVersion,
        queue: List[QueueEntry],
        seen: Set[Tuple[str, str]],
        label: str,
    ) -> None:
        try:
            candidates = await provider.resolve_dependencies(details.native_id, version.id)
        except ContentError as exc:
            raise InstallError(label, f"could not resolve dependencies: {exc}") from exc

        for dep in candidates:
            key = (Source(dep.source).value, dep.id)
            if key in seen:
                continue
            if not dep.required and not self.include_optional:
                logger.info("Skipping optional dependency %s of %s", dep.id, label)
                continue
            # Marked on enqueue so cycles and diamonds add each node once
            seen.add(key)
            queue.append(QueueEntry(
                Source(dep.source), dep.id, required_by=details.id, required=dep.required,
            ))
            logger.debug("Queued dependency %s of %s", composite_id(dep.source, dep.id), label)


# ──────────────────────────────────────────────
#  Artifact placement
# ──────────────────────────────────────────────

class DirectoryPlacement:
    """Writes artifacts to ``<instances_dir>/<instance_id>/mods/<file_name>``."""

    def __init__(self, instances_dir: str | Path, client: FetchClient) -> None:
        self.instances_dir = Path(instances_dir)
        self.client = client

    def mods_dir(self, instance_id: str) -> Path:
        return self.instances_dir / _safe_filename(instance_id) / "mods"

    async def place_artifact(
        self,
        instance_id: str,
        source_url: str,
        file_name: str,
        *,
        expected_hash: Optional[str] = None,
        hash_algorithm: str = "sha256",
        label: Optional[str] = None,
    ) -> Path:
        dest = self.mods_dir(instance_id) / _safe_filename(file_name)
        local = _local_path(source_url)
        if local is not None:
            return self._copy_local(local, dest, expected_hash, hash_algorithm, label)
        return await self.client.download_file(
            source_url, dest,
            expected_hash=expected_hash,
            hash_algorithm=hash_algorithm,
            label=label,
        )

    @staticmethod
    def _copy_local(
        source: Path,
        dest: Path,
        expected_hash: Optional[str],
        hash_algorithm: str,
        label: Optional[str],
    ) -> Path:
        if not source.is_file():
            raise FileNotFoundError(f"Local artifact not found: {source}")
        if expected_hash:
            hasher = hashlib.new(hash_algorithm)
            with open(source, "rb") as fh:
                for chunk in iter(lambda: fh.read(8192), b""):
                    hasher.update(chunk)
            digest = hasher.hexdigest()
            if digest.lower() != expected_hash.lower():
                raise ChecksumMismatch(label or source.name, expected_hash, digest, hash_algorithm)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(str(source), str(dest))
        logger.info("Copied local artifact %s → %s", source, dest)
        return dest


# ──────────────────────────────────────────────
#  Instance registry
# ──────────────────────────────────────────────

class JsonInstanceRegistry:
    """Per-instance ``installed_mods.json`` that install deltas are merged into."""

    FILE_NAME = "installed_mods.json"

    def __init__(self, instances_dir: str | Path) -> None:
        self.instances_dir = Path(instances_dir)

    def path(self, instance_id: str) -> Path:
        return self.instances_dir / _safe_filename(instance_id) / self.FILE_NAME

    def load(self, instance_id: str) -> Dict[str, object]:
        path = self.path(instance_id)
        state: Dict[str, object] = {"mods": [], "loader": None, "loader_version": None}
        if not path.exists():
            return state
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            state["mods"] = [InstalledMod.from_dict(m) for m in data.get("mods", [])]
            state["loader"] = data.get("loader")
            state["loader_version"] = data.get("loader_version")
            logger.debug("Loaded %d mods for %s", len(state["mods"]), instance_id)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not load registry for %s: %s", instance_id, exc)
        return state

    def installed(self, instance_id: str) -> List[InstalledMod]:
        return list(self.load(instance_id)["mods"])

    def apply(self, delta: InstalledDelta) -> List[InstalledMod]:
        """Merge ``delta``; records with the same source and id are replaced."""
        state = self.load(delta.instance_id)
        incoming = {m.key for m in delta.installed}
        mods = [m for m in state["mods"] if m.key not in incoming] + list(delta.installed)
        if delta.detected_loader:
            state["loader"] = delta.detected_loader
            state["loader_version"] = delta.loader_version or state["loader_version"]

        data = {
            "mods": [m.to_dict() for m in mods],
            "loader": state["loader"],
            "loader_version": state["loader_version"],
            "mod_count": len(mods),
            "last_updated": datetime.now(tz=timezone.utc).isoformat(),
        }
        path = self.path(delta.instance_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
        except OSError as exc:
            logger.error("Could not save registry for %s: %s", delta.instance_id, exc)
        return mods
