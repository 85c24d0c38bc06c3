"""Pytest configuration and fixtures."""

import json
import sys
from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from config import Settings
from main import create_app


ROOT = Path(__file__).parent.parent

CINEMETA_URL = "https://v3-cinemeta.strem.io/manifest.json"
SUBTITLES_URL = "https://opensubtitles-v3.strem.io/manifest.json"
STREMIO_API = "https://api.strem.io/api"


def make_manifest(addon_id: str, name: str | None = None) -> dict:
	return {
		"id": addon_id,
		"name": name or addon_id,
		"version": "1.0.0",
		"resources": ["stream"],
		"types": ["movie"],
	}


class FakeRemote:
	"""
	Stands in for both the addon manifest hosts and the Stremio account API.
	"""

	def __init__(self):
		self.manifests = {
			CINEMETA_URL: make_manifest("com.linvo.cinemeta", "Cinemeta"),
			SUBTITLES_URL: make_manifest("org.stremio.opensubtitlesv3", "OpenSubtitles v3"),
		}
		self.broken = {}
		self.accounts = {}
		self.collections = {}
		self.sessions = {}
		self.fail_logout = False
		self.fail_set_collection = False
		self.calls = []

	def add_manifest(self, url: str, manifest: dict) -> str:
		self.manifests[url] = manifest
		return url

	def handler(self, request: httpx.Request) -> httpx.Response:
		url = str(request.url)
		if url.startswith(STREMIO_API):
			endpoint = request.url.path.rsplit("/", 1)[-1]
			body = json.loads(request.content)
			self.calls.append((endpoint, body))
			return self.stremio(endpoint, body)

		self.calls.append(("manifest", url))
		if url in self.broken:
			status = self.broken[url]
			if status is None:
				raise httpx.ConnectError("connection refused", request=request)
			return httpx.Response(status, json={"error": "nope"})
		if url in self.manifests:
			return httpx.Response(200, json=self.manifests[url])
		return httpx.Response(404, json={"error": "not found"})

	def stremio(self, endpoint: str, body: dict) -> httpx.Response:
		if endpoint == "login":
			if self.accounts.get(body["email"]) != body["password"]:
				return httpx.Response(200, json={"error": {"message": "Wrong password"}})
			key = f"key-{body['email']}-{len(self.sessions)}"
			self.sessions[key] = body["email"]
			return httpx.Response(200, json={"result": {"authKey": key}})

		if endpoint == "register":
			if body["email"] in self.accounts:
				return httpx.Response(200, json={"error": "User already exists"})
			self.accounts[body["email"]] = body["password"]
			return httpx.Response(200, json={"result": {"success": True}})

		if endpoint == "addonCollectionGet":
			email = self.sessions.get(body["authKey"])
			return httpx.Response(200, json={"result": {"addons": self.collections.get(email, [])}})

		if endpoint == "addonCollectionSet":
			if self.fail_set_collection:
				return httpx.Response(500, text="boom")
			email = self.sessions.get(body["authKey"])
			self.collections[email] = body["addons"]
			return httpx.Response(200, json={"result": {"success": True}})

		if endpoint == "logout":
			if self.fail_logout:
				return httpx.Response(503, text="unavailable")
			self.sessions.pop(body["authKey"], None)
			return httpx.Response(200, json={"result": {"success": True}})

		return httpx.Response(404)


@pytest.fixture
def remote() -> FakeRemote:
	"""Create a fresh FakeRemote."""
	return FakeRemote()


@pytest.fixture
def transport(remote: FakeRemote) -> httpx.MockTransport:
	return httpx.MockTransport(remote.handler)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
	return Settings(
		admin_username="admin",
		admin_password="secret",
		session_secret="test-secret",
		db_path=tmp_path / "database.db",
		logger_config=ROOT / "logger_config.yaml",
		stremio_api_url=STREMIO_API,
		protected_urls=(CINEMETA_URL, SUBTITLES_URL),
		sync_all_delay=0,
		env="test",
	)


@pytest.fixture
async def app(settings: Settings, transport: httpx.MockTransport, monkeypatch):
	"""Application with its lifespan running."""
	monkeypatch.setattr(sys, "excepthook", sys.excepthook)
	app = create_app(settings, transport=transport)
	async with app.router.lifespan_context(app):
		yield app


@pytest.fixture
async def client(app) -> AsyncClient:
	"""Unauthenticated client."""
	async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
		yield client


@pytest.fixture
async def admin(client: AsyncClient) -> AsyncClient:
	"""Client holding an admin session."""
	response = await client.post("/api/login", json={"username": "admin", "password": "secret"})
	assert response.status_code == 200
	return client


@pytest.fixture
def services(app):
	return app.state.services
