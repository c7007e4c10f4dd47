"""GeoIP database lifecycle: validate, download, replace and refresh.

This service handles:
- Checking that every configured edition exists locally and opens
- Downloading missing or corrupt editions (isolated per edition)
- Weekly freshness checks against the remote Last-Modified header
- Publishing the refreshed city database to the LocationResolver
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tarfile
from collections.abc import Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles
import aiofiles.os
import aiohttp

from .exceptions import GeoIPConfigurationError, GeoIPDownloadError
from .resolver import create_reader

if TYPE_CHECKING:
    from trafficlens.config.settings import GeoIPSettings
    from .resolver import CityReader, LocationResolver


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class EditionState(str, Enum):
    """Lifecycle state of one database edition."""

    MISSING = "missing"
    DOWNLOADING = "downloading"
    VALIDATING = "validating"
    ACTIVE = "active"
    FAILED = "failed"


class GeoIPDatabaseManager:
    """Keeps the configured GeoIP editions present, valid and current.

    Downloads run without holding any lock; only the final publish to the
    resolver is exclusive.

    Example:
        manager = GeoIPDatabaseManager(settings.geoip, resolver)
        await manager.ensure()       # at startup
        await manager.refresh()      # from the weekly scheduled job
    """

    def __init__(
        self,
        settings: "GeoIPSettings",
        resolver: "LocationResolver",
        *,
        session_factory: Callable[[], aiohttp.ClientSession] | None = None,
        reader_factory: Callable[..., "CityReader"] = create_reader,
    ) -> None:
        """Initialize the database manager.

        Args:
            settings: GeoIP configuration section.
            resolver: Resolver that receives the city database on every update.
            session_factory: Builds the HTTP session used for downloads.
            reader_factory: Opens a database file, raising if it is unreadable.
        """
        self.settings = settings
        self.resolver = resolver
        self.session_factory = session_factory or self._default_session
        self.reader_factory = reader_factory
        self.states: dict[str, EditionState] = {
            edition_id: EditionState.MISSING for edition_id in settings.edition_ids
        }

        # Statistics
        self.total_downloads: int = 0
        self.failed_downloads: int = 0
        self.last_refresh: datetime | None = None

    def _default_session(self) -> aiohttp.ClientSession:
        auth = None
        if self.settings.account_id and self.settings.license_key:
            auth = aiohttp.BasicAuth(self.settings.account_id, self.settings.license_key)
        return aiohttp.ClientSession(
            auth=auth,
            timeout=aiohttp.ClientTimeout(total=self.settings.download_timeout),
        )

    def validate_config(self) -> None:
        """Raise GeoIPConfigurationError if credentials or editions are missing."""
        if missing := self.settings.missing_fields():
            raise GeoIPConfigurationError(
                "Missing GeoIP configuration, check environment variables: "
                + ", ".join(missing)
            )
        if self.settings.city_edition not in self.settings.edition_ids:
            logger.warning(
                "City edition %s is not in GEOIP_EDITION_IDS, locations will not resolve",
                self.settings.city_edition,
            )

    def build_download_url(self, edition_id: str) -> str:
        return self.settings.download_url.format(
            edition_id=edition_id,
            license_key=self.settings.license_key or "",
        )

    def edition_path(self, edition_id: str) -> Path:
        return self.settings.edition_path(edition_id)

    def _can_open(self, path: Path) -> bool:
        try:
            reader = self.reader_factory(path, self.settings.locales)
        except Exception as e:
            logger.error("GeoIP database %s failed to open: %s", path, e)
            return False
        reader.close()
        return True

    async def _check_edition(self, edition_id: str) -> bool:
        """Return True if the edition's file exists and opens.

        A file that exists but does not open is deleted.
        """
        path = self.edition_path(edition_id)
        if not await aiofiles.os.path.exists(path):
            logger.warning("%s database file does not exist, download required", edition_id)
            self.states[edition_id] = EditionState.MISSING
            return False

        self.states[edition_id] = EditionState.VALIDATING
        if await asyncio.to_thread(self._can_open, path):
            logger.info("%s database file validated", edition_id)
            self.states[edition_id] = EditionState.ACTIVE
            return True

        logger.error("%s database file is corrupt, download required", edition_id)
        try:
            await aiofiles.os.remove(path)
            logger.info("Removed corrupt database file: %s", path)
        except OSError as e:
            logger.error("Failed to remove corrupt database file %s: %s", path, e)
        self.states[edition_id] = EditionState.MISSING
        return False

    async def ensure(self) -> list[str]:
        """Validate every edition and download the missing ones.

        Returns:
            Edition ids that were downloaded successfully.
        """
        self.validate_config()
        await aiofiles.os.makedirs(self.settings.db_dir, exist_ok=True)

        checks = await asyncio.gather(
            *(self._check_edition(edition_id) for edition_id in self.settings.edition_ids)
        )
        missing = [
            edition_id
            for edition_id, present in zip(self.settings.edition_ids, checks)
            if not present
        ]
        if not missing:
            logger.info("All GeoIP database files passed validation")
            self.publish()
            return []

        logger.info("Missing or corrupt GeoIP editions detected, downloading: %s", missing)
        downloaded = await self.fetch_editions(missing)
        self.publish()
        return downloaded

    async def fetch_editions(self, edition_ids: list[str]) -> list[str]:
        """Download several editions concurrently; failures do not affect the others."""
        async with self.session_factory() as session:
            results = await asyncio.gather(
                *(self.fetch_edition(session, edition_id) for edition_id in edition_ids)
            )
        return [edition_id for edition_id, ok in zip(edition_ids, results) if ok]

    async def fetch_edition(self, session: aiohttp.ClientSession, edition_id: str) -> bool:
        """Download, extract, validate and move one edition into place.

        Returns:
            True on success, False once all attempts have failed.
        """
        for attempt in range(1, self.settings.download_attempts + 1):
            try:
                await self._download_and_install(session, edition_id)
                self.total_downloads += 1
                self.states[edition_id] = EditionState.ACTIVE
                logger.info("%s database download complete", edition_id)
                return True
            except Exception as e:
                logger.warning(
                    "Download of %s failed (attempt %d/%d): %s",
                    edition_id,
                    attempt,
                    self.settings.download_attempts,
                    e,
                )
        self.failed_downloads += 1
        self.states[edition_id] = EditionState.FAILED
        logger.error("Giving up on %s after %d attempts", edition_id, self.settings.download_attempts)
        return False

    async def _download_and_install(self, session: aiohttp.ClientSession, edition_id: str) -> None:
        db_dir = self.settings.db_dir
        archive_path = db_dir / f".{edition_id}.tar.gz.part"
        staged_path = db_dir / f".{edition_id}.mmdb.part"
        target_path = self.edition_path(edition_id)

        self.states[edition_id] = EditionState.DOWNLOADING
        logger.info("Downloading %s database", edition_id)
        try:
            await self._download(session, self.build_download_url(edition_id), archive_path)
            await asyncio.to_thread(self._extract_mmdb, archive_path, staged_path)

            self.states[edition_id] = EditionState.VALIDATING
            if not await asyncio.to_thread(self._can_open, staged_path):
                raise GeoIPDownloadError(f"Downloaded {edition_id} database does not open")

            os.replace(staged_path, target_path)
        finally:
            for leftover in (archive_path, staged_path):
                if await aiofiles.os.path.exists(leftover):
                    await aiofiles.os.remove(leftover)

    async def _download(self, session: aiohttp.ClientSession, url: str, destination: Path) -> None:
        async with session.get(url, allow_redirects=True) as response:
            if response.status != 200:
                raise GeoIPDownloadError(f"HTTP {response.status}")
            expected = response.content_length
            received = 0
            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                    received += len(chunk)
                    await f.write(chunk)

        if received == 0:
            raise GeoIPDownloadError("Downloaded file is empty")
        if expected is not None and received < expected:
            raise GeoIPDownloadError(f"Incomplete download: {received} of {expected} bytes")

    @staticmethod
    def _extract_mmdb(archive_path: Path, destination: Path) -> None:
        """Copy the first .mmdb member of a tar.gz archive to destination."""
        with tarfile.open(archive_path, "r:gz") as tar:
            for member in tar.getmembers():
                if member.isfile() and member.name.endswith(".mmdb"):
                    source = tar.extractfile(member)
                    if source is None:
                        break
                    with source, open(destination, "wb") as out:
                        shutil.copyfileobj(source, out)
                    return
        raise GeoIPDownloadError(f"No .mmdb file found in {archive_path.name}")

    async def _needs_update(self, session: aiohttp.ClientSession, edition_id: str) -> bool:
        """Compare the remote Last-Modified header with the local file's mtime."""
        path = self.edition_path(edition_id)
        try:
            async with session.head(self.build_download_url(edition_id), allow_redirects=True) as response:
                if response.status != 200:
                    logger.error("Update check for %s failed: HTTP %d", edition_id, response.status)
                    return False
                last_modified: str | None = response.headers.get("Last-Modified")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Update check for %s failed: %s", edition_id, e)
            return False

        if not last_modified:
            logger.warning("No Last-Modified header for %s, keeping local copy", edition_id)
            return False

        try:
            remote_mtime = parsedate_to_datetime(last_modified)
        except (TypeError, ValueError):
            logger.warning("Unparseable Last-Modified header for %s: %r", edition_id, last_modified)
            return False
        if remote_mtime.tzinfo is None:
            remote_mtime = remote_mtime.replace(tzinfo=timezone.utc)

        try:
            stat_result: Any = await aiofiles.os.stat(path)
        except OSError as e:
            logger.error("Could not stat local file for %s: %s", edition_id, e)
            return True

        local_mtime = datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc)
        if remote_mtime > local_mtime:
            logger.info("New version of %s available, updating", edition_id)
            return True
        logger.info("%s is up to date", edition_id)
        return False

    async def refresh(self) -> list[str]:
        """Check every edition for a newer remote copy and download it.

        Failures are logged; the active database stays in use until a
        download succeeds.

        Returns:
            Edition ids that were updated.
        """
        self.validate_config()
        await aiofiles.os.makedirs(self.settings.db_dir, exist_ok=True)
        logger.info("Checking GeoIP databases for updates")

        async with self.session_factory() as session:
            checks = await asyncio.gather(
                *(self._needs_update(session, edition_id) for edition_id in self.settings.edition_ids)
            )
            stale = [
                edition_id
                for edition_id, needs_update in zip(self.settings.edition_ids, checks)
                if needs_update
            ]
            if not stale:
                logger.info("All GeoIP databases are up to date")
                self.last_refresh = datetime.now(timezone.utc)
                return []

            logger.info("GeoIP databases needing update: %s", stale)
            results = await asyncio.gather(
                *(self.fetch_edition(session, edition_id) for edition_id in stale)
            )

        updated = [edition_id for edition_id, ok in zip(stale, results) if ok]
        if updated:
            self.publish()
            logger.info("GeoIP database update complete: %s", updated)
        self.last_refresh = datetime.now(timezone.utc)
        return updated

    def publish(self) -> bool:
        """Open the city edition and swap it into the resolver.

        The resolver keeps its current reader if the new file does not open.
        """
        path = self.edition_path(self.settings.city_edition)
        try:
            reader = self.reader_factory(path, self.settings.locales)
        except Exception as e:
            logger.error("Failed to open GeoIP city database %s: %s", path, e)
            return False
        self.resolver.swap(reader)
        return True
