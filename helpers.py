# Remote directory helpers: manifest fetch/validation and the protected addon set
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urlparse

import httpx

from errors import FetchError, ValidationError


logger = logging.getLogger(__name__)

REQUIRED_MANIFEST_FIELDS = ("id", "name", "version")

LOCAL_ADDON = {
	"manifest": {
		"id": "org.stremio.local",
		"version": "1.10.0",
		"name": "Local Files (without catalog support)",
		"description": "Local add-on to find playable files: .torrent, .mp4, .mkv and .avi",
		"types": ["movie", "series", "other"],
		"resources": [
			{
				"name": "meta",
				"types": ["other"],
				"idPrefixes": ["local:", "bt:"],
			},
			{
				"name": "stream",
				"types": ["movie", "series"],
				"idPrefixes": ["tt"],
			},
		],
	},
	"transportUrl": "http://127.0.0.1:11470/local-addon/manifest.json",
	"flags": {
		"official": True,
		"protected": True,
	},
}


def validate_manifest_url(url: str) -> bool:
	try:
		parsed = urlparse(url)
		if parsed.scheme not in ("http", "https"):
			return False
		return bool(parsed.netloc)
	except Exception:
		return False


def is_cinemeta_url(url: str) -> bool:
	try:
		return "cinemeta" in (urlparse(url).hostname or "")
	except ValueError:
		return False


def validate_manifest(manifest) -> dict:
	"""
	Checks that a manifest is a JSON object carrying a non-empty id, name and version.
	Returns the manifest unchanged so it can be chained.
	"""
	if not isinstance(manifest, dict):
		raise ValidationError("Manifest must be a JSON object")
	for name in REQUIRED_MANIFEST_FIELDS:
		if not manifest.get(name):
			raise ValidationError(f"Missing required field: {name}")
		if not isinstance(manifest[name], str):
			raise ValidationError(f"Field {name} must be a string")
	return manifest


async def fetch_manifest(url: str, client: httpx.AsyncClient, timeout: float = 10.0) -> dict:
	"""
	Fetches and validates the manifest at url.
	Raises FetchError on transport failure, non-2xx status or a non-JSON body,
	and ValidationError when the manifest lacks required fields.
	"""
	if not validate_manifest_url(url):
		raise ValidationError(f"Invalid manifest URL: {url}")

	logger.debug(f"Fetching manifest from {url}")
	try:
		response = await client.get(
			url,
			headers={"Accept": "application/json"},
			timeout=timeout,
		)
	except httpx.HTTPError as e:
		raise FetchError(f"Failed to fetch manifest: {e}") from e

	if not response.is_success:
		raise FetchError(f"Failed to fetch manifest: HTTP error! status: {response.status_code}")

	try:
		manifest = response.json()
	except ValueError as e:
		raise FetchError(f"Failed to fetch manifest: invalid JSON from {url}") from e

	validate_manifest(manifest)
	logger.info(f"Fetched and validated manifest {manifest['id']} from {url}")
	return manifest


@dataclass(frozen=True)
class ProtectedAddonSet:
	"""Addons always pushed ahead of the local ones. Replaced wholesale on refresh."""

	entries: tuple = (LOCAL_ADDON,)
	refreshed_at: datetime | None = None

	def as_list(self) -> list[dict]:
		return [dict(entry) for entry in self.entries]

	def __len__(self) -> int:
		return len(self.entries)


async def refresh_protected_set(
	client: httpx.AsyncClient,
	urls,
	timeout: float = 10.0,
) -> ProtectedAddonSet:
	entries = [LOCAL_ADDON]
	for url in urls:
		try:
			manifest = await fetch_manifest(url, client, timeout=timeout)
		except (FetchError, ValidationError) as e:
			logger.error(f"Skipping protected addon {url}: {e}")
			continue
		entries.append({
			"manifest": manifest,
			"transportUrl": url,
			"flags": {
				"official": True,
				"protected": is_cinemeta_url(url),
			},
		})
	logger.debug(f"Protected addon set refreshed: {len(entries)} of {len(urls) + 1}")
	return ProtectedAddonSet(
		entries=tuple(entries),
		refreshed_at=datetime.now(timezone.utc),
	)
