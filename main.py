from fastapi import FastAPI, APIRouter, HTTPException, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from pydantic import BaseModel
import asyncio
import logging
import logging.config
import secrets
import sys
import yaml

from celery.result import AsyncResult

from config import Settings, load_settings
from errors import AddonManagerError
from services import open_services
from celery_app import celery
from tasks import sync_all_users


def init_logger(config_path: Path = Path("logger_config.yaml")) -> logging.Logger:
	try:
		with open(config_path, "r") as f:
			config = yaml.safe_load(f)
		logging.config.dictConfig(config)
		logger = logging.getLogger("dev")
		logger.debug("Logger configured")
		return logger
	except Exception as e:
		logging.basicConfig(level=logging.INFO)
		logger = logging.getLogger(__name__)
		logger.error(f"Logger initialization failed: {e}")
		return logger


def install_safety_nets(logger: logging.Logger) -> None:
	"""Last-resort handlers: sync escapes end the process, async ones are only logged."""

	def on_uncaught(exc_type, exc, tb):
		logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))
		sys.exit(1)

	def on_async_error(loop, context):
		logger.error(f"Unhandled async error: {context.get('message')}", exc_info=context.get("exception"))

	sys.excepthook = on_uncaught
	asyncio.get_running_loop().set_exception_handler(on_async_error)


class LoginRequest(BaseModel):
	username: str | None = None
	password: str | None = None


class CredentialsRequest(BaseModel):
	email: str | None = None
	password: str | None = None


class AddonRequest(BaseModel):
	url: str | None = None


ADDON_INDEX_MANIFEST = {
	"id": "community.stremio.addons-index",
	"version": "1.0.0",
	"name": "Stremio Addons Index",
	"description": "Index of Stremio addons with user synchronization",
	"types": ["movie", "series", "channel", "tv", "addon"],
	"catalogs": [{
		"type": "addon",
		"id": "community",
		"name": "Community Addons",
	}],
	"resources": ["catalog"],
	"idPrefixes": ["addon"],
}


router = APIRouter()


def require_auth(request: Request) -> None:
	logger = request.app.state.logger
	if request.session.get("is_authenticated"):
		logger.debug(f"Auth check passed: {request.method} {request.url.path}")
		return
	client = request.client.host if request.client else None
	logger.warning(f"Unauthorized access attempt: {request.method} {request.url.path} from {client}")
	raise HTTPException(status_code=401, detail="Unauthorized")


def domain_error(e: AddonManagerError) -> HTTPException:
	return HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/api/auth/status")
async def auth_status(request: Request):
	return {
		"isAuthenticated": bool(request.session.get("is_authenticated")),
		"stremioConnected": bool(request.session.get("stremio_auth_key")),
		"stremioUser": request.session.get("stremio_user"),
	}


@router.post("/api/login")
async def login(body: LoginRequest, request: Request):
	logger = request.app.state.logger
	settings: Settings = request.app.state.settings
	username = body.username or ""
	password = body.password or ""

	user_ok = secrets.compare_digest(username.encode(), settings.admin_username.encode())
	password_ok = secrets.compare_digest(password.encode(), settings.admin_password.encode())
	if user_ok and password_ok:
		request.session["is_authenticated"] = True
		logger.info(f"Successful admin login: {username}")
		return {"success": True}

	logger.warning(f"Failed login attempt: {username}")
	raise HTTPException(status_code=401, detail="Invalid credentials")


@router.post("/api/logout")
async def logout(request: Request):
	request.session.clear()
	request.app.state.logger.info("Admin logged out")
	return {"success": True}


@router.post("/api/stremio/register", dependencies=[Depends(require_auth)])
async def stremio_register(body: CredentialsRequest, request: Request):
	logger = request.app.state.logger
	try:
		if not body.email or not body.password:
			raise HTTPException(status_code=400, detail="Email and password are required")
		await request.app.state.services.stremio.register(body.email, body.password)
		return {"success": True}
	except HTTPException:
		raise
	except AddonManagerError as e:
		raise domain_error(e)
	except Exception:
		logger.exception("Stremio registration error")
		raise HTTPException(status_code=500, detail="Failed to register with Stremio")


@router.post("/api/stremio/login", dependencies=[Depends(require_auth)])
async def stremio_login(body: CredentialsRequest, request: Request):
	logger = request.app.state.logger
	try:
		if not body.email or not body.password:
			raise HTTPException(status_code=400, detail="Email and password are required")
		auth_key = await request.app.state.services.stremio.login(body.email, body.password)
		request.session["stremio_auth_key"] = auth_key
		request.session["stremio_user"] = {"email": body.email}
		logger.info(f"Logged in to Stremio as {body.email}")
		return {"success": True}
	except HTTPException:
		raise
	except AddonManagerError as e:
		raise domain_error(e)
	except Exception:
		logger.exception("Stremio login error")
		raise HTTPException(status_code=500, detail="Failed to log in to Stremio")


@router.get("/api/users", dependencies=[Depends(require_auth)])
async def list_users(request: Request):
	logger = request.app.state.logger
	try:
		return await request.app.state.services.users.list()
	except Exception:
		logger.exception("Error fetching users")
		raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/api/users", dependencies=[Depends(require_auth)])
async def add_user(body: CredentialsRequest, request: Request):
	logger = request.app.state.logger
	try:
		await request.app.state.services.users.add(body.email, body.password)
		return {"success": True}
	except AddonManagerError as e:
		raise domain_error(e)
	except Exception:
		logger.exception("Error adding user")
		raise HTTPException(status_code=500, detail="Failed to add user")


@router.delete("/api/users/{email}", dependencies=[Depends(require_auth)])
async def delete_user(email: str, request: Request):
	logger = request.app.state.logger
	try:
		await request.app.state.services.users.remove(email)
		return {"success": True}
	except AddonManagerError as e:
		raise domain_error(e)
	except Exception:
		logger.exception("Error deleting user")
		raise HTTPException(status_code=500, detail="Failed to delete user")


@router.post("/api/users/sync", status_code=202, dependencies=[Depends(require_auth)])
async def sync_all(request: Request):
	logger = request.app.state.logger
	try:
		task = sync_all_users.delay()
		logger.info(f"Queued sync of all users: {task.id}")
		return {"task_id": task.id}
	except Exception:
		logger.exception("Error queueing sync of all users")
		raise HTTPException(status_code=500, detail="Failed to queue sync")


@router.get("/api/tasks/{task_id}", dependencies=[Depends(require_auth)])
def task_status(task_id: str):
	result = AsyncResult(task_id, app=celery)
	body = {"id": task_id, "state": result.state}
	if result.successful():
		body["result"] = result.result
	elif result.failed():
		body["error"] = str(result.result)
	return body


@router.post("/api/users/{email}/sync", dependencies=[Depends(require_auth)])
async def sync_user(email: str, request: Request):
	logger = request.app.state.logger
	services = request.app.state.services
	try:
		result = await services.orchestrator.sync_user(email)
		request.app.state.protected = services.orchestrator.protected
		return {"success": True, **result.as_dict()}
	except AddonManagerError as e:
		raise domain_error(e)
	except Exception:
		logger.exception(f"Error during sync of {email}")
		raise HTTPException(status_code=500, detail="Sync failed")


@router.get("/manifest.json")
async def manifest():
	return ADDON_INDEX_MANIFEST


@router.get("/catalog.json")
async def catalog(request: Request):
	logger = request.app.state.logger
	try:
		return await request.app.state.services.addons.list()
	except Exception:
		logger.exception("Error serving catalog")
		raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/catalog/{type}/{id}.json")
async def catalog_by_type(type: str, id: str, request: Request):
	if type != "addon" or id != "community":
		raise HTTPException(status_code=404, detail="Catalog not found")
	return await catalog(request)


@router.get("/api/addons", dependencies=[Depends(require_auth)])
async def list_addons(request: Request):
	logger = request.app.state.logger
	try:
		return await request.app.state.services.addons.list()
	except Exception:
		logger.exception("Error reading addons")
		raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/api/addons", dependencies=[Depends(require_auth)])
async def add_addon(body: AddonRequest, request: Request):
	logger = request.app.state.logger
	try:
		entry = await request.app.state.services.addons.add(body.url)
		return {"success": True, "message": "Addon added successfully", "addon": entry}
	except AddonManagerError as e:
		raise domain_error(e)
	except Exception:
		logger.exception("Error adding addon")
		raise HTTPException(status_code=500, detail="Failed to add addon")


@router.delete("/api/addons/{id}", dependencies=[Depends(require_auth)])
async def delete_addon(id: str, request: Request):
	logger = request.app.state.logger
	try:
		await request.app.state.services.addons.remove(id)
		return {"success": True, "message": "Addon deleted successfully"}
	except AddonManagerError as e:
		raise domain_error(e)
	except Exception:
		logger.exception("Error deleting addon")
		raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/api/export", dependencies=[Depends(require_auth)])
async def export_addons(request: Request):
	logger = request.app.state.logger
	try:
		return await request.app.state.services.addons.export()
	except Exception:
		logger.exception("Error exporting addons")
		raise HTTPException(status_code=500, detail="Failed to export addons")


@router.post("/api/import", dependencies=[Depends(require_auth)])
async def import_addons(request: Request):
	logger = request.app.state.logger
	try:
		try:
			items = await request.json()
		except ValueError:
			raise HTTPException(status_code=400, detail="Import data must be valid JSON")
		result = await request.app.state.services.addons.import_entries(items)
		return {"success": True, "results": result.as_dict()}
	except HTTPException:
		raise
	except AddonManagerError as e:
		raise domain_error(e)
	except Exception:
		logger.exception("Error importing addons")
		raise HTTPException(status_code=500, detail="Failed to import addons")


@router.get("/health")
async def health(request: Request):
	status = {
		"status": "OK",
		"timestamp": datetime.now(timezone.utc).isoformat(),
		"version": request.app.state.settings.version,
	}
	request.app.state.logger.debug(f"Health check: {status}")
	return status


def create_app(settings: Settings | None = None, transport=None) -> FastAPI:
	"""
	Builds the application. transport replaces the outbound network for
	manifest and Stremio calls (tests pass an httpx.MockTransport).
	"""
	settings = settings or load_settings()

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		app.state.logger = init_logger(settings.logger_config)
		logger = app.state.logger
		install_safety_nets(logger)

		async with open_services(settings, transport=transport) as services:
			app.state.services = services
			app.state.protected = services.orchestrator.protected
			logger.info("Database ready")

			users = await services.users.list()
			addons = await services.addons.list()
			logger.info(f"Managed users: {len(users)}, addons: {len(addons)}")

			yield
		logger.info("Application shutdown")

	app = FastAPI(
		title="Stremio Addon Manager",
		version=settings.version,
		description="Addon collection manager for Stremio accounts",
		lifespan=lifespan,
	)
	app.state.settings = settings

	app.add_middleware(
		SessionMiddleware,
		secret_key=settings.session_secret,
		max_age=settings.session_max_age,
	)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["*"],
		allow_credentials=True,
		allow_methods=["GET", "POST", "DELETE", "PUT", "PATCH"],
		allow_headers=["Content-Type", "Authorization"],
		max_age=86400,
	)

	@app.exception_handler(StarletteHTTPException)
	async def http_error(request: Request, exc: StarletteHTTPException):
		return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

	@app.exception_handler(RequestValidationError)
	async def validation_error(request: Request, exc: RequestValidationError):
		return JSONResponse(status_code=400, content={"error": "Invalid request body"})

	@app.exception_handler(Exception)
	async def unhandled_error(request: Request, exc: Exception):
		logging.getLogger("dev").error(
			f"Unhandled error on {request.method} {request.url.path}", exc_info=exc
		)
		content = {"error": "Internal server error"}
		if settings.env == "development":
			content["message"] = str(exc)
		return JSONResponse(status_code=500, content=content)

	app.include_router(router)
	return app


app = create_app()


if __name__ == "__main__":
	import uvicorn

	uvicorn.run(app, host="0.0.0.0", port=3000)
