"""Runtime settings for petisi.

Everything is read from ``PETISI_*`` environment variables. Only the
store credentials are required, and only once a store is actually
built; the geo lookup and the form controllers work without them.
"""

import os
from typing import Optional

from pydantic import BaseModel


DEFAULT_GEO_BASE_URL = "https://ibnux.github.io/data-indonesia"
DEFAULT_SIGNATURE_TARGET = 1_000_000


class Settings(BaseModel):
    """Configuration for the store, the geo API and the suggestion model.

    Attributes:
        supabase_url: Project URL of the hosted store.
        supabase_key: Anonymous (public) API key of the project.
        signatures_table: Table holding one row per signature.
        count_rpc: Database function returning the total signature count.
        geo_base_url: Base URL of the administrative-region dataset.
        geo_timeout_seconds: HTTP timeout for region lookups.
        gemini_api_key: Key for the optional statement suggestion model.
        gemini_model: Model used for statement suggestions.
        signature_target: Goal shown on the progress bar.
        max_signature_bytes: Largest accepted decoded signature image.
        session_ttl_seconds: Idle time after which a form session is dropped.
        max_sessions: Open form sessions kept before the least recently
            used one is dropped.
    """

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    signatures_table: str = "signatures"
    count_rpc: str = "get_petition_count"
    geo_base_url: str = DEFAULT_GEO_BASE_URL
    geo_timeout_seconds: float = 15.0
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    signature_target: int = DEFAULT_SIGNATURE_TARGET
    max_signature_bytes: int = 50 * 1024
    session_ttl_seconds: float = 3600.0
    max_sessions: int = 10_000

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "Settings":
        """Load settings from the environment.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            Settings with every unset variable at its default.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for field, var in _ENV_VARS.items():
            raw = env.get(var)
            if raw is not None and raw != "":
                values[field] = raw
        return cls.model_validate(values)

    def require_store(self) -> tuple[str, str]:
        """Return the store URL and key.

        Raises:
            ValueError: Listing every missing variable.
        """
        missing = []
        if not self.supabase_url:
            missing.append("PETISI_SUPABASE_URL")
        if not self.supabase_key:
            missing.append("PETISI_SUPABASE_KEY")
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        return self.supabase_url, self.supabase_key


_ENV_VARS = {
    "supabase_url": "PETISI_SUPABASE_URL",
    "supabase_key": "PETISI_SUPABASE_KEY",
    "signatures_table": "PETISI_SIGNATURES_TABLE",
    "count_rpc": "PETISI_COUNT_RPC",
    "geo_base_url": "PETISI_GEO_BASE_URL",
    "geo_timeout_seconds": "PETISI_GEO_TIMEOUT",
    "gemini_api_key": "PETISI_GEMINI_API_KEY",
    "gemini_model": "PETISI_GEMINI_MODEL",
    "signature_target": "PETISI_TARGET",
    "max_signature_bytes": "PETISI_MAX_SIGNATURE_BYTES",
    "session_ttl_seconds": "PETISI_SESSION_TTL",
    "max_sessions": "PETISI_MAX_SESSIONS",
}
