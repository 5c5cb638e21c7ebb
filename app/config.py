from enum import Enum
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.upload import UploadPolicy


ASSETS_DIR = Path(__file__).parent.parent / "assets"


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Config(BaseSettings):
    # Upload policy fields are read from e.g. UPLOAD__STORAGE_BUDGET.
    model_config = SettingsConfigDict(env_nested_delimiter="__")

    env: Env = Env.local
    log_level: str = "INFO"
    html_dir: Path = ASSETS_DIR / "html"
    # Empty to run without a database.
    db_url: str = "sqlite+aiosqlite:///recipes.db"
    seed_demo_data: bool = True

    upload: UploadPolicy = UploadPolicy()
