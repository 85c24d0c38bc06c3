from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial

import httpx

from config import Settings
from helpers import fetch_manifest, refresh_protected_set
from registry import AddonRegistry, UserRegistry, init_db
from stremio import StremioClient
from sync import SyncOrchestrator


@dataclass(frozen=True)
class Services:
	"""Everything a request handler or worker task needs, built once per process."""

	settings: Settings
	http: httpx.AsyncClient
	stremio: StremioClient
	addons: AddonRegistry
	users: UserRegistry
	orchestrator: SyncOrchestrator


@asynccontextmanager
async def open_services(settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
	"""
	Creates the schema, the shared HTTP client and the components on top of it.
	transport replaces the network (tests pass an httpx.MockTransport).
	"""
	await init_db(settings.db_path)

	async with httpx.AsyncClient(transport=transport, follow_redirects=True) as http:
		stremio = StremioClient(http, settings.stremio_api_url)
		fetch = partial(fetch_manifest, client=http, timeout=settings.manifest_timeout)
		addons = AddonRegistry(settings.db_path, fetch)
		users = UserRegistry(settings.db_path, stremio)
		orchestrator = SyncOrchestrator(
			users=users,
			addons=addons,
			stremio=stremio,
			refresh_protected=partial(
				refresh_protected_set,
				http,
				settings.protected_urls,
				timeout=settings.manifest_timeout,
			),
		)
		yield Services(
			settings=settings,
			http=http,
			stremio=stremio,
			addons=addons,
			users=users,
			orchestrator=orchestrator,
		)
