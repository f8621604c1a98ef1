"""Settings for the chaifinder social backend."""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
	if env_names:
		alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
		return Field(default=default, validation_alias=alias)
	return Field(default=default)


class Settings(BaseSettings):
	redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
	secret_key: str = _env_field("dev-secret-change-me", "SECRET_KEY")

	environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
	obs_enabled: bool = _env_field(True, "OBS_ENABLED")
	obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
	obs_log_sampling_rate_info: float = _env_field(0.1, "LOG_SAMPLING_RATE_INFO")
	service_name: str = _env_field("chaifinder-social", "SERVICE_NAME")
	git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")
	obs_metrics_public: bool = _env_field(False, "OBS_METRICS_PUBLIC")
	obs_admin_token: Optional[str] = _env_field(None, "OBS_ADMIN_TOKEN")

	# Feed sourcing
	feed_page_size: int = _env_field(20, "FEED_PAGE_SIZE")
	# Upper bound on ids per "in" query against the ratings collection
	feed_friends_chunk_size: int = _env_field(10, "FEED_FRIENDS_CHUNK_SIZE")
	feed_global_timeout_seconds: float = _env_field(8.0, "FEED_GLOBAL_TIMEOUT_SECONDS")
	feed_lookup_retry_delay_seconds: float = _env_field(1.0, "FEED_LOOKUP_RETRY_DELAY_SECONDS")
	# Least recently used viewer sessions are dropped past this many
	feed_max_sessions: int = _env_field(1000, "FEED_MAX_SESSIONS")

	# Notification admission
	notification_pending_delay_seconds: float = _env_field(300.0, "NOTIFICATION_PENDING_DELAY_SECONDS")
	notification_pending_capacity: int = _env_field(50, "NOTIFICATION_PENDING_CAPACITY")
	notification_prune_every: int = _env_field(10, "NOTIFICATION_PRUNE_EVERY")
	notification_local_tz: Optional[str] = _env_field(None, "NOTIFICATION_LOCAL_TZ")
	notification_max_controllers: int = _env_field(1000, "NOTIFICATION_MAX_CONTROLLERS")

	def is_prod(self) -> bool:
		return self.environment.lower() in ("prod", "production", "live")

	def is_dev(self) -> bool:
		return self.environment.lower() in ("dev", "development")

	model_config = SettingsConfigDict(
		env_prefix="",
		env_file=".env",
		case_sensitive=False,
		env_nested_delimiter="__",
		populate_by_name=True,
	)

	@field_validator("obs_log_level", mode="before")
	def _normalise_level(cls, value):  # type: ignore[override]
		if value in (None, ""):
			return "INFO"
		return str(value).upper()


settings = Settings()
