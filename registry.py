from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import aiosqlite

from errors import (
	DuplicateError,
	FetchError,
	InvalidCredentialsError,
	NotFoundError,
	RemoteAPIError,
	ValidationError,
)
from helpers import validate_manifest_url


logger = logging.getLogger(__name__)


async def init_db(db_path: Path) -> None:
	Path(db_path).parent.mkdir(parents=True, exist_ok=True)
	async with aiosqlite.connect(db_path) as db:
		await db.execute("""
		CREATE TABLE IF NOT EXISTS addon (
			position INTEGER PRIMARY KEY AUTOINCREMENT,
			manifest_id TEXT NOT NULL UNIQUE,
			transport_url TEXT NOT NULL UNIQUE,
			transport_name TEXT,
			manifest TEXT NOT NULL
		)
		""")

		await db.execute("""
		CREATE TABLE IF NOT EXISTS managed_user (
			email TEXT PRIMARY KEY,
			password TEXT NOT NULL,
			last_sync TEXT
		)
		""")

		await db.commit()


def row_to_addon(row) -> dict:
	entry = {
		"manifest": json.loads(row["manifest"]),
		"transportUrl": row["transport_url"],
	}
	if row["transport_name"]:
		entry["transportName"] = row["transport_name"]
	return entry


@dataclass
class ImportResult:
	success: int = 0
	failed: int = 0
	duplicates: int = 0

	def as_dict(self) -> dict:
		return {"success": self.success, "failed": self.failed, "duplicates": self.duplicates}


class AddonRegistry:
	"""
	Locally curated addons. Uniqueness holds on both manifest id and transport URL.
	fetch_manifest is an async callable url -> validated manifest dict.
	"""

	def __init__(self, db_path: Path, fetch_manifest):
		self.db_path = db_path
		self.fetch_manifest = fetch_manifest
		self.lock = asyncio.Lock()

	async def list(self) -> list[dict]:
		async with aiosqlite.connect(self.db_path) as db:
			db.row_factory = aiosqlite.Row
			cur = await db.execute(
				"SELECT manifest, transport_url, transport_name FROM addon ORDER BY position"
			)
			return [row_to_addon(r) for r in await cur.fetchall()]

	async def export(self) -> list[dict]:
		return await self.list()

	async def _exists(self, db, manifest_id: str | None, url: str) -> bool:
		cur = await db.execute(
			"SELECT 1 FROM addon WHERE manifest_id = ? OR transport_url = ?",
			(manifest_id, url),
		)
		return await cur.fetchone() is not None

	async def add(self, url: str) -> dict:
		if not url:
			raise ValidationError("Manifest URL is required")
		if not validate_manifest_url(url):
			raise ValidationError(f"Invalid manifest URL: {url}")

		# Known URL: refuse before going to the network
		async with aiosqlite.connect(self.db_path) as db:
			if await self._exists(db, None, url):
				raise DuplicateError("Addon already exists")

		manifest = await self.fetch_manifest(url)
		entry = {
			"transportUrl": url,
			"transportName": "http",
			"manifest": manifest,
		}

		async with self.lock:
			async with aiosqlite.connect(self.db_path) as db:
				if await self._exists(db, manifest["id"], url):
					raise DuplicateError("Addon already exists")
				try:
					await db.execute(
						"INSERT INTO addon (manifest_id, transport_url, transport_name, manifest) VALUES (?, ?, ?, ?)",
						(manifest["id"], url, entry["transportName"], json.dumps(manifest)),
					)
					await db.commit()
				except aiosqlite.IntegrityError:
					raise DuplicateError("Addon already exists")

		logger.info(f"Addon added: {manifest['id']} from {url}")
		return entry

	async def remove(self, manifest_id: str) -> bool:
		async with self.lock:
			async with aiosqlite.connect(self.db_path) as db:
				cur = await db.execute("DELETE FROM addon WHERE manifest_id = ?", (manifest_id,))
				await db.commit()
				if cur.rowcount == 0:
					raise NotFoundError("Addon not found")
		logger.info(f"Addon deleted: {manifest_id}")
		return True

	async def import_entries(self, items) -> ImportResult:
		"""
		Adds every item in turn. Items are manifest URLs or exported entries
		carrying a transportUrl. A failing item is counted, never fatal.
		"""
		if not isinstance(items, list):
			raise ValidationError("Import data must be a list of addons")

		result = ImportResult()
		for item in items:
			url = item.get("transportUrl") if isinstance(item, dict) else item
			if not isinstance(url, str) or not url:
				result.failed += 1
				continue
			try:
				await self.add(url)
				result.success += 1
			except DuplicateError:
				result.duplicates += 1
			except (FetchError, ValidationError) as e:
				logger.warning(f"Import of {url} failed: {e}")
				result.failed += 1
		logger.info(f"Import finished: {result.as_dict()}")
		return result


class UserRegistry:
	"""
	Managed Stremio accounts. Credentials are checked against Stremio before they are stored.
	"""

	def __init__(self, db_path: Path, stremio):
		self.db_path = db_path
		self.stremio = stremio
		self.lock = asyncio.Lock()

	async def list(self) -> list[dict]:
		async with aiosqlite.connect(self.db_path) as db:
			db.row_factory = aiosqlite.Row
			cur = await db.execute("SELECT email, last_sync FROM managed_user ORDER BY rowid")
			return [
				{"email": r["email"], "lastSync": r["last_sync"]}
				for r in await cur.fetchall()
			]

	async def get(self, email: str) -> dict:
		async with aiosqlite.connect(self.db_path) as db:
			db.row_factory = aiosqlite.Row
			cur = await db.execute(
				"SELECT email, password, last_sync FROM managed_user WHERE email = ?", (email,)
			)
			row = await cur.fetchone()
		if not row:
			raise NotFoundError("User not found")
		return {"email": row["email"], "password": row["password"], "lastSync": row["last_sync"]}

	async def add(self, email: str, password: str) -> None:
		if not email or not password:
			raise ValidationError("Email and password are required")

		try:
			auth_key = await self.stremio.login(email, password)
		except InvalidCredentialsError:
			raise InvalidCredentialsError("Invalid Stremio credentials")

		try:
			await self.stremio.logout(auth_key)
		except RemoteAPIError as e:
			logger.warning(f"Logout after credential check failed for {email}: {e}")

		async with self.lock:
			async with aiosqlite.connect(self.db_path) as db:
				try:
					await db.execute(
						"INSERT INTO managed_user (email, password, last_sync) VALUES (?, ?, NULL)",
						(email, password),
					)
					await db.commit()
				except aiosqlite.IntegrityError:
					raise DuplicateError("User already exists")
		logger.info(f"User added: {email}")

	async def remove(self, email: str) -> bool:
		async with self.lock:
			async with aiosqlite.connect(self.db_path) as db:
				cur = await db.execute("DELETE FROM managed_user WHERE email = ?", (email,))
				await db.commit()
				if cur.rowcount == 0:
					raise NotFoundError("User not found")
		logger.info(f"User deleted: {email}")
		return True

	async def mark_synced(self, email: str, when: datetime) -> str:
		stamp = when.isoformat()
		async with self.lock:
			async with aiosqlite.connect(self.db_path) as db:
				cur = await db.execute(
					"UPDATE managed_user SET last_sync = ? WHERE email = ?", (stamp, email)
				)
				await db.commit()
				if cur.rowcount == 0:
					raise NotFoundError("User not found")
		return stamp
