from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    # Secrets must not be hardcoded in repo files; provide via `.env` (not committed).
    # e.g. postgresql+asyncpg://wgsync:...@db/wgsync or sqlite+aiosqlite:///./wgsync.db
    database_url: str = ""
    # Apply Alembic migrations in the API lifespan before serving traffic.
    migrate_on_startup: bool = True

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    wg_executable: str = "wg"
    wg_interface: str = "wg0"
    # Upper bound for every `wg` invocation (keygen and interface control).
    command_timeout_seconds: float = 10.0

    # Peers get `<pool>.N/32` with N in [pool_start_offset, 254].
    pool_cidr: str = "10.0.0.0/24"
    pool_start_offset: int = 6

    default_keepalive_seconds: int = 25
    default_allowed_routes: list[str] = Field(default_factory=lambda: ["0.0.0.0/0"])
    default_dns_hint: str | None = None

    stats_enabled: bool = True
    stats_interval_seconds: int = 30
    # A handshake younger than this marks the peer as connected (WireGuard rekeys every 120s).
    connected_window_seconds: int = 180
    # Remove live keys that have no directory record at all. Off by default: the
    # interface may carry peers managed outside of wgsync (e.g. from wg0.conf).
    prune_unknown_peers: bool = False
    # Push every enabled peer (and drop every disabled one) when the API starts.
    resync_on_startup: bool = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
