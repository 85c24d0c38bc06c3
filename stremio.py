import json
import logging

import httpx

from errors import InvalidCredentialsError, RegistrationError, RemoteAPIError


logger = logging.getLogger(__name__)

LOGIN = "/login"
REGISTER = "/register"
ADDON_COLLECTION_GET = "/addonCollectionGet"
ADDON_COLLECTION_SET = "/addonCollectionSet"
LOGOUT = "/logout"


class StremioClient:
	"""
	Calls the Stremio account API on behalf of a managed account.
	Requests are JSON bodies sent as text/plain, the way the Stremio web app sends them.
	"""

	def __init__(self, client: httpx.AsyncClient, base_url: str = "https://api.strem.io/api"):
		self.client = client
		self.base_url = base_url.rstrip("/")

	async def request(self, endpoint: str, body: dict) -> dict:
		url = f"{self.base_url}{endpoint}"
		logger.debug(f"Stremio API request to {endpoint}")
		try:
			response = await self.client.post(
				url,
				content=json.dumps(body),
				headers={
					"Content-Type": "text/plain;charset=UTF-8",
					"Accept": "*/*",
				},
			)
		except httpx.HTTPError as e:
			logger.error(f"Stremio API request to {endpoint} failed: {e}")
			raise RemoteAPIError(f"Stremio API request failed: {e}") from e

		if not response.is_success:
			logger.error(f"Stremio API error on {endpoint}: {response.status_code} {response.reason_phrase}")
			raise RemoteAPIError(f"Stremio API error: {response.status_code}")

		try:
			data = response.json()
		except ValueError as e:
			raise RemoteAPIError(f"Stremio API returned invalid JSON from {endpoint}") from e
		if not isinstance(data, dict):
			raise RemoteAPIError(f"Stremio API returned unexpected payload from {endpoint}")
		return data

	async def login(self, email: str, password: str) -> str:
		data = await self.request(LOGIN, {
			"type": "Login",
			"email": email,
			"password": password,
			"facebook": False,
		})
		auth_key = (data.get("result") or {}).get("authKey")
		if not auth_key:
			logger.warning(f"Stremio rejected credentials for {email}")
			raise InvalidCredentialsError("Invalid credentials")
		return auth_key

	async def register(self, email: str, password: str) -> None:
		data = await self.request(REGISTER, {
			"type": "Register",
			"email": email,
			"password": password,
			"gdpr": True,
			"facebook": False,
		})
		error = data.get("error")
		if error:
			if isinstance(error, dict):
				error = error.get("message") or json.dumps(error)
			raise RegistrationError(str(error))
		logger.info(f"Registered {email} with Stremio")

	async def get_collection(self, auth_key: str) -> list[dict]:
		data = await self.request(ADDON_COLLECTION_GET, {
			"type": "AddonCollectionGet",
			"authKey": auth_key,
			"update": True,
		})
		return list((data.get("result") or {}).get("addons") or [])

	async def set_collection(self, auth_key: str, addons: list[dict]) -> None:
		# Replaces the whole remote collection; nothing is merged server side.
		data = await self.request(ADDON_COLLECTION_SET, {
			"type": "AddonCollectionSet",
			"authKey": auth_key,
			"addons": addons,
		})
		if data.get("error"):
			raise RemoteAPIError(f"Stremio rejected addon collection: {data['error']}")

	async def logout(self, auth_key: str) -> None:
		await self.request(LOGOUT, {
			"type": "Logout",
			"authKey": auth_key,
		})
