"""Service configuration loaded from the environment (.env supported)."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List

from dotenv import load_dotenv

from .schedule.filters import DEFAULT_SCOPE_MARKERS
from .schedule.types import ConflictPolicy

load_dotenv(override=True)


def _split(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass
class Settings:
    """Service settings."""

    # Server
    host: str = "0.0.0.0"
    port: int = 8790
    debug: bool = False
    # Bearer token that grants administrator rights on the HTTP API
    admin_token: Optional[str] = None

    # Storage
    data_dir: Path = field(default_factory=lambda: Path.home() / ".cronograma" / "data")
    db_path: Optional[Path] = None
    seed_path: Optional[Path] = None

    # Persistence gateway
    max_save_attempts: int = 3
    retry_delay_ms: int = 1000
    poll_interval_ms: int = 2000

    # Schedule rules
    conflict_policy: ConflictPolicy = ConflictPolicy.OVERLAP
    scope_markers: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPE_MARKERS))
    strict_mutations: bool = False

    def __post_init__(self):
        if self.db_path is None:
            self.db_path = self.data_dir / "schedule.db"
        if self.seed_path is None:
            self.seed_path = self.data_dir / "seed.yaml"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        data_dir = Path(os.getenv(
            "CRONOGRAMA_DATA_DIR", str(Path.home() / ".cronograma" / "data")
        ))
        db_path = os.getenv("CRONOGRAMA_DB_PATH")
        seed_path = os.getenv("CRONOGRAMA_SEED_PATH")
        markers = os.getenv("CRONOGRAMA_SCOPE_MARKERS", "")

        return cls(
            # Server
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8790")),
            debug=os.getenv("DEBUG", "").lower() in ("1", "true"),
            admin_token=os.getenv("CRONOGRAMA_ADMIN_TOKEN"),

            # Storage
            data_dir=data_dir,
            db_path=Path(db_path) if db_path else None,
            seed_path=Path(seed_path) if seed_path else None,

            # Persistence gateway
            max_save_attempts=int(os.getenv("CRONOGRAMA_MAX_SAVE_ATTEMPTS", "3")),
            retry_delay_ms=int(os.getenv("CRONOGRAMA_RETRY_DELAY_MS", "1000")),
            poll_interval_ms=int(os.getenv("CRONOGRAMA_POLL_INTERVAL_MS", "2000")),

            # Schedule rules
            conflict_policy=ConflictPolicy(os.getenv("CRONOGRAMA_CONFLICT_POLICY", "overlap")),
            scope_markers=_split(markers) if markers else list(DEFAULT_SCOPE_MARKERS),
            strict_mutations=os.getenv("CRONOGRAMA_STRICT", "").lower() in ("1", "true"),
        )


# Global settings instance
settings = Settings.from_env()
