"""Settings management - loads from .env and site.yaml."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
import os

DEFAULT_PLACEHOLDER = (
    "https://images.unsplash.com/photo-1500530855697-b586d89ba3ee"
    "?q=80&w=1600&auto=format&fit=crop"
)


@dataclass
class SiteConfig:
    """Presentation and storage options for the site."""

    name: str = "CaravanHub"
    placeholder_image: str = DEFAULT_PLACEHOLDER
    admin_contact: str = ""
    fallback_location: str = "Whitby, North Yorkshire"
    image_bucket: str = "listing-images"
    max_images: int = 10
    cache_control: str = "3600"

    @classmethod
    def from_dict(cls, data: dict) -> "SiteConfig":
        defaults = cls()
        return cls(
            name=data.get("name", defaults.name),
            placeholder_image=data.get("placeholder_image", defaults.placeholder_image),
            admin_contact=data.get("admin_contact", defaults.admin_contact),
            fallback_location=data.get("fallback_location", defaults.fallback_location),
            image_bucket=data.get("image_bucket", defaults.image_bucket),
            max_images=int(data.get("max_images", defaults.max_images)),
            cache_control=str(data.get("cache_control", defaults.cache_control)),
        )


@dataclass
class Settings:
    """Application settings loaded from environment and config files."""

    # Backend selection
    backend: Literal["supabase", "local"]

    # Supabase
    supabase_url: str
    supabase_anon_key: str
    featured_rpc: str

    # Local backend
    db_path: str
    storage_dir: str
    public_url: str

    # Sessions
    session_secret: str

    # Change feed polling interval in seconds (0 disables)
    realtime_poll_seconds: float

    # Server
    host: str
    port: int

    site: SiteConfig = field(default_factory=SiteConfig)

    @classmethod
    def load(cls, env_path: str | None = None, site_path: str | None = None) -> "Settings":
        """Load settings from .env file and site.yaml."""
        if env_path:
            load_dotenv(env_path)
        else:
            load_dotenv()

        site = SiteConfig()
        site_file = Path(site_path) if site_path else Path(os.getenv("SITE_CONFIG", "config/site.yaml"))
        if site_file.exists():
            with open(site_file) as f:
                site_data = yaml.safe_load(f)
                if site_data and "site" in site_data:
                    site = SiteConfig.from_dict(site_data["site"])

        supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
        backend = os.getenv("BACKEND", "supabase" if supabase_url else "local").lower()

        return cls(
            backend=backend,
            supabase_url=supabase_url,
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            featured_rpc=os.getenv("SUPABASE_FEATURED_RPC", "set_featured_listing"),
            db_path=os.getenv("DB_PATH", "caravanhub.db"),
            storage_dir=os.getenv("STORAGE_DIR", "storage"),
            public_url=os.getenv("PUBLIC_URL", "http://localhost:8000").rstrip("/"),
            session_secret=os.getenv("SESSION_SECRET", "dev-secret-change-in-production"),
            realtime_poll_seconds=float(os.getenv("REALTIME_POLL_SECONDS", "15")),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            site=site,
        )

    def validate(self) -> list[str]:
        """Validate settings and return list of errors."""
        errors = []
        if self.backend not in ("supabase", "local"):
            errors.append(f"Unknown BACKEND '{self.backend}' (expected 'supabase' or 'local')")
        if self.backend == "supabase":
            if not self.supabase_url:
                errors.append("SUPABASE_URL is required")
            if not self.supabase_anon_key:
                errors.append("SUPABASE_ANON_KEY is required")
        if self.session_secret == "dev-secret-change-in-production":
            errors.append("SESSION_SECRET is using the development default")
        if self.site.max_images < 1:
            errors.append("max_images must be at least 1")
        return errors
