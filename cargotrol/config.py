from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping

SUPABASE_URL_ENV_VARS = ("SUPABASE_URL", "VITE_SUPABASE_URL")
SUPABASE_KEY_ENV_VARS = ("SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY")
OPENAI_API_KEY_ENV_VAR = "OPENAI_API_KEY"
OPENAI_MODEL_ENV_VAR = "OPENAI_MODEL"
API_BASE_URL_ENV_VARS = ("CARGOTROL_API_BASE_URL", "VITE_API_URL")
BLOB_TOKEN_ENV_VAR = "BLOB_READ_WRITE_TOKEN"
READ_ONLY_ENV_VARS = ("CARGOTROL_READ_ONLY", "VITE_READ_ONLY")

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
TRUTHY_FLAG_VALUES = {"1", "true", "yes", "on"}

READ_ONLY_NOTICE = "Read-only mode is enabled. Changes are disabled for this deployment."


@dataclass(frozen=True)
class WriteAccess:
    """Capability consulted by every mutating operation."""

    read_only: bool = False
    notice: str = READ_ONLY_NOTICE

    @property
    def allowed(self) -> bool:
        return not self.read_only


@dataclass(frozen=True)
class AppConfig:
    supabase_url: str = ""
    supabase_key: str = ""
    openai_api_key: str = ""
    openai_model: str = DEFAULT_OPENAI_MODEL
    api_base_url: str = ""
    blob_token: str = ""
    write_access: WriteAccess = WriteAccess()

    @property
    def store_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def email_extraction_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def blob_storage_enabled(self) -> bool:
        return bool(self.blob_token)


def first_env_value(environ: Mapping[str, str], names: tuple[str, ...] | str) -> str:
    candidates = (names,) if isinstance(names, str) else names
    for name in candidates:
        value = str(environ.get(name, "")).strip()
        if value:
            return value
    return ""


def parse_flag(value: str) -> bool:
    return str(value).strip().casefold() in TRUTHY_FLAG_VALUES


def load_app_config(environ: Mapping[str, str] | None = None) -> AppConfig:
    env = os.environ if environ is None else environ
    return AppConfig(
        supabase_url=first_env_value(env, SUPABASE_URL_ENV_VARS),
        supabase_key=first_env_value(env, SUPABASE_KEY_ENV_VARS),
        openai_api_key=first_env_value(env, OPENAI_API_KEY_ENV_VAR),
        openai_model=first_env_value(env, OPENAI_MODEL_ENV_VAR) or DEFAULT_OPENAI_MODEL,
        api_base_url=first_env_value(env, API_BASE_URL_ENV_VARS),
        blob_token=first_env_value(env, BLOB_TOKEN_ENV_VAR),
        write_access=WriteAccess(read_only=parse_flag(first_env_value(env, READ_ONLY_ENV_VARS))),
    )
