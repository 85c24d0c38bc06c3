"""Tests for the sync-all background task."""

from types import SimpleNamespace

import httpx

from errors import InvalidCredentialsError
from services import open_services
from tasks import run_sync_all


class FakeUsers:
	def __init__(self, emails):
		self.emails = emails

	async def list(self):
		return [{"email": email, "lastSync": None} for email in self.emails]


class FakeOrchestrator:
	def __init__(self, failing=(), partial=()):
		self.failing = set(failing)
		self.partial = set(partial)
		self.synced = []

	async def sync_user(self, email):
		self.synced.append(email)
		if email in self.failing:
			raise InvalidCredentialsError("Failed to authenticate with Stremio")
		return SimpleNamespace(partial=email in self.partial)


async def test_continues_past_failed_user():
	orchestrator = FakeOrchestrator(failing={"b@x.com"}, partial={"c@x.com"})
	sleeps = []

	async def sleep(seconds):
		sleeps.append(seconds)

	summary = await run_sync_all(
		orchestrator,
		FakeUsers(["a@x.com", "b@x.com", "c@x.com"]),
		delay=2.0,
		sleep=sleep,
	)

	assert orchestrator.synced == ["a@x.com", "b@x.com", "c@x.com"]
	assert summary == {
		"total": 3,
		"completed": 2,
		"partial": 1,
		"failed": [{"email": "b@x.com", "error": "Failed to authenticate with Stremio"}],
	}
	assert sleeps == [2.0]


async def test_no_users():
	summary = await run_sync_all(FakeOrchestrator(), FakeUsers([]), delay=0)
	assert summary == {"total": 0, "completed": 0, "partial": 0, "failed": []}


async def test_end_to_end_with_real_services(settings, remote):
	remote.accounts["a@b.com"] = "pw"
	async with open_services(settings, transport=httpx.MockTransport(remote.handler)) as services:
		await services.users.add("a@b.com", "pw")
		summary = await run_sync_all(services.orchestrator, services.users, delay=0)

	assert summary["completed"] == 1
	assert "a@b.com" in remote.collections
