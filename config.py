import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

import yaml


cwd = Path(__file__).parent

DEFAULT_PROTECTED_URLS = (
	"https://v3-cinemeta.strem.io/manifest.json",
	"https://opensubtitles-v3.strem.io/manifest.json",
)


@dataclass(frozen=True)
class Settings:
	"""Runtime settings. Loaded from config.yaml, then ADDONS_* env vars."""

	admin_username: str = "admin"
	admin_password: str = "password123"
	session_secret: str = "change-me"
	session_max_age: int = 24 * 60 * 60
	db_path: Path = cwd / ".database" / "database.db"
	logger_config: Path = cwd / "logger_config.yaml"
	stremio_api_url: str = "https://api.strem.io/api"
	manifest_timeout: float = 10.0
	protected_urls: tuple[str, ...] = field(default=DEFAULT_PROTECTED_URLS)
	sync_all_delay: float = 2.0
	broker_url: str = "redis://localhost:6379/0"
	result_backend: str = "redis://localhost:6379/1"
	env: str = "development"
	version: str = "1.0.0"


def _coerce(value, default):
	if isinstance(default, bool):
		if isinstance(value, str):
			return value.lower() in ("1", "true", "yes")
		return bool(value)
	if isinstance(default, Path):
		return Path(value)
	if isinstance(default, int):
		return int(value)
	if isinstance(default, float):
		return float(value)
	if isinstance(default, tuple):
		if isinstance(value, str):
			return tuple(v.strip() for v in value.split(",") if v.strip())
		return tuple(value)
	return str(value)


def load_settings(path: str | Path | None = None, environ=None) -> Settings:
	if environ is None:
		environ = os.environ
	if path is None:
		path = environ.get("ADDONS_CONFIG", cwd / "config.yaml")
	path = Path(path)

	values = {}
	if path.exists():
		with open(path, "r") as f:
			data = yaml.safe_load(f) or {}
		if not isinstance(data, dict):
			raise ValueError(f"{path} must contain a mapping, got {type(data).__name__}")
		values.update(data)

	defaults = Settings()
	overrides = {}
	for f in fields(Settings):
		default = getattr(defaults, f.name)
		env_key = f"ADDONS_{f.name.upper()}"
		if env_key in environ:
			overrides[f.name] = _coerce(environ[env_key], default)
		elif f.name in values and values[f.name] is not None:
			overrides[f.name] = _coerce(values[f.name], default)

	settings = replace(defaults, **overrides)
	# relative paths in config.yaml are relative to the project root
	if not settings.db_path.is_absolute():
		settings = replace(settings, db_path=cwd / settings.db_path)
	if not settings.logger_config.is_absolute():
		settings = replace(settings, logger_config=cwd / settings.logger_config)
	return settings
