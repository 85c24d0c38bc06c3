import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from errors import InvalidCredentialsError, RemoteAPIError
from helpers import ProtectedAddonSet


logger = logging.getLogger(__name__)


class SyncState(str, Enum):
	REFRESHING = "refreshing"
	LOOKUP = "lookup"
	AUTHENTICATING = "authenticating"
	MERGING = "merging"
	PUSHING = "pushing"
	LOGGING_OUT = "logging_out"
	STAMPING = "stamping"
	DONE = "done"


# What to undo when a run aborts in a given state. Only an open Stremio
# session needs cleaning up; a delivered collection is never rolled back.
COMPENSATIONS = {
	SyncState.REFRESHING: (),
	SyncState.LOOKUP: (),
	SyncState.AUTHENTICATING: (),
	SyncState.MERGING: ("logout",),
	SyncState.PUSHING: ("logout",),
	SyncState.LOGGING_OUT: (),
	SyncState.STAMPING: (),
}


@dataclass
class SyncResult:
	email: str
	status: str = "success"
	last_sync: str | None = None
	addon_count: int = 0
	overwritten: list[str] | None = None
	warnings: list[str] = field(default_factory=list)

	@property
	def partial(self) -> bool:
		return self.status == "partial"

	def as_dict(self) -> dict:
		return {
			"email": self.email,
			"status": self.status,
			"lastSync": self.last_sync,
			"addonCount": self.addon_count,
			"overwritten": self.overwritten,
			"warnings": self.warnings,
		}


def tag_local(addons: list[dict]) -> list[dict]:
	return [
		{
			"manifest": addon["manifest"],
			"transportUrl": addon["transportUrl"],
			"flags": {"official": False, "protected": False},
		}
		for addon in addons
	]


def merge_collection(protected: list[dict], local: list[dict]) -> list[dict]:
	"""Protected addons first, then local ones. A local addon colliding with a protected one is dropped."""
	seen_ids = {a["manifest"].get("id") for a in protected}
	seen_urls = {a["transportUrl"] for a in protected}
	merged = list(protected)
	for addon in local:
		if addon["manifest"].get("id") in seen_ids or addon["transportUrl"] in seen_urls:
			logger.warning(f"Local addon {addon['transportUrl']} shadows a protected addon, skipped")
			continue
		merged.append(addon)
	return merged


class SyncOrchestrator:
	"""
	Pushes protected + local addons to one managed account.

	The protected set is owned here: every run replaces it with a fresh
	refresh and callers read it back through `protected`.
	"""

	def __init__(self, users, addons, stremio, refresh_protected, protected: ProtectedAddonSet | None = None, clock=None):
		self.users = users
		self.addons = addons
		self.stremio = stremio
		self.refresh_protected = refresh_protected
		self.protected = protected or ProtectedAddonSet()
		self.clock = clock or (lambda: datetime.now(timezone.utc))

	async def _compensate(self, state: SyncState, auth_key: str | None, email: str) -> None:
		for action in COMPENSATIONS.get(state, ()):
			if action == "logout" and auth_key:
				try:
					await self.stremio.logout(auth_key)
				except RemoteAPIError as e:
					logger.warning(f"Compensating logout for {email} failed: {e}")

	async def _remote_extras(self, auth_key: str, merged: list[dict]) -> list[str] | None:
		try:
			remote = await self.stremio.get_collection(auth_key)
		except RemoteAPIError as e:
			logger.warning(f"Could not read current collection before overwrite: {e}")
			return None
		pushed = {a["transportUrl"] for a in merged}
		extras = []
		for addon in remote:
			if not isinstance(addon, dict):
				logger.warning(f"Ignoring malformed remote addon: {addon!r}")
				continue
			if addon.get("transportUrl") not in pushed:
				extras.append(addon.get("transportUrl"))
		return extras

	async def sync_user(self, email: str) -> SyncResult:
		started = self.clock()
		result = SyncResult(email=email)
		state = SyncState.REFRESHING
		auth_key = None
		logger.debug(f"Starting sync for {email}")

		try:
			self.protected = await self.refresh_protected()

			state = SyncState.LOOKUP
			user = await self.users.get(email)

			state = SyncState.AUTHENTICATING
			try:
				auth_key = await self.stremio.login(user["email"], user["password"])
			except InvalidCredentialsError:
				raise InvalidCredentialsError("Failed to authenticate with Stremio")

			state = SyncState.MERGING
			local = tag_local(await self.addons.list())
			merged = merge_collection(self.protected.as_list(), local)
			result.addon_count = len(merged)
			result.overwritten = await self._remote_extras(auth_key, merged)
			if result.overwritten:
				logger.warning(f"Sync for {email} overwrites remote addons: {result.overwritten}")

			state = SyncState.PUSHING
			await self.stremio.set_collection(auth_key, merged)

			state = SyncState.LOGGING_OUT
			try:
				await self.stremio.logout(auth_key)
			except RemoteAPIError as e:
				logger.error(f"Logout after sync failed for {email}: {e}")
				result.status = "partial"
				result.warnings.append(f"Logout failed: {e.message}")

			state = SyncState.STAMPING
			now = self.clock()
			result.last_sync = await self.users.mark_synced(email, max(now, started))
			state = SyncState.DONE
		except Exception as e:
			logger.error(f"Sync for {email} aborted while {state.value}: {e}")
			await self._compensate(state, auth_key, email)
			raise

		logger.info(f"Sync for {email} finished: {result.status}, {result.addon_count} addons")
		return result
