from pathlib import Path
from typing import AsyncIterator

from databases import Database
import pytest
import pytest_asyncio

from app.config import Config
from domain.upload import UploadPolicy
from domain.models import Identity
from domain.repository import MealPlanRepository, RecipeRepository, create_tables


def sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        db_url=sqlite_url(tmp_path / "recipes.db"),
        upload=UploadPolicy(upload_delay=0),
    )


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(sqlite_url(tmp_path / "test.db"))
    await database.connect()
    await create_tables(database)
    yield database
    await database.disconnect()


@pytest.fixture
def recipes(db: Database) -> RecipeRepository:
    return RecipeRepository(db)


@pytest.fixture
def meal_plans(db: Database) -> MealPlanRepository:
    return MealPlanRepository(db)


@pytest.fixture
def someone_else() -> Identity:
    return Identity(id="2", name="Someone Else")
