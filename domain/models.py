import datetime as dt
from enum import Enum
from typing import Sequence

import markdown2  # pyright: ignore[reportMissingTypeStubs]
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


type Bytes = int


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Record(BaseModel):
    """Frozen record that serializes with camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_dict(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


# Uploads


class LogicalFile(Record):
    path: str
    content: str
    size: Bytes


class Chunk(Record):
    files: tuple[LogicalFile, ...]
    size: Bytes

    @classmethod
    def from_files(cls, files: Sequence[LogicalFile]) -> "Chunk":
        return cls(files=tuple(files), size=sum(f.size for f in files))


class UploadMetadata(Record):
    total_files: int
    total_chunks: int
    upload_time: dt.datetime = Field(default_factory=utcnow)


class StorageUsage(Record):
    used: Bytes
    available: Bytes
    percentage: float

    @classmethod
    def empty(cls, budget: Bytes) -> "StorageUsage":
        return cls(used=0, available=budget, percentage=0)


class UploadProgress(Record):
    current: int
    total: int
    percentage: float


class ErrorKind(Enum):
    validation = "validation"
    quota_preflight = "quota_preflight"
    quota_commit = "quota_commit"
    unknown = "unknown"


class ValidationResult(Record):
    valid: bool
    errors: list[str]


class PrepareResult(Record):
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None
    chunks: tuple[Chunk, ...] | None = None


class UploadResult(Record):
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None
    uploaded_files: int | None = None

    @property
    def is_quota_error(self) -> bool:
        """Whether clearing storage might let a retry succeed."""
        return self.error_kind in (ErrorKind.quota_preflight, ErrorKind.quota_commit)


class UploadStatus(Record):
    has_data: bool
    metadata: UploadMetadata | None
    storage_usage: StorageUsage


# Recipes and meal plans


class Difficulty(Enum):
    easy = "Easy"
    medium = "Medium"
    hard = "Hard"


class MealType(Enum):
    breakfast = "Breakfast"
    lunch = "Lunch"
    dinner = "Dinner"
    snack = "Snack"


class Identity(Record):
    id: str
    name: str | None = None
    email: str | None = None
    image: str | None = None


class Author(Record):
    id: str
    name: str | None = None
    image: str | None = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "Author":
        return cls(id=identity.id, name=identity.name, image=identity.image)


class Ingredient(Record):
    name: str
    amount: str = ""
    unit: str = ""


class RecipeDraft(Record):
    """What a signed in user sends to create a recipe."""

    title: str
    description: str
    ingredients: list[Ingredient] = []
    instructions: list[str] = []
    cooking_time: int
    servings: int
    image: str = ""
    difficulty: Difficulty
    tags: list[str] = []


class Recipe(RecipeDraft):
    id: str
    author: Author
    created_at: dt.datetime = Field(default_factory=utcnow)

    @property
    def html(self) -> str:
        steps = "\n".join(f"1. {step}" for step in self.instructions)
        return markdown2.markdown(  # pyright: ignore[reportUnknownVariableType, reportUnknownMemberType]
            f"{self.description}\n\n{steps}", safe_mode="escape"
        )


class RecipeSummary(Record):
    id: str
    title: str
    image: str
    cooking_time: int

    @classmethod
    def from_recipe(cls, recipe: Recipe) -> "RecipeSummary":
        return cls(
            id=recipe.id,
            title=recipe.title,
            image=recipe.image,
            cooking_time=recipe.cooking_time,
        )


class Meal(Record):
    date: dt.date
    type: MealType
    recipe: str


class PopulatedMeal(Record):
    date: dt.date
    type: MealType
    recipe: RecipeSummary | None


class MealPlanDraft(Record):
    """A new plan starts with a single meal."""

    name: str
    start_date: dt.date
    end_date: dt.date
    date: dt.date
    type: MealType
    recipe: str

    @property
    def first_meal(self) -> Meal:
        return Meal(date=self.date, type=self.type, recipe=self.recipe)


class MealPlan(Record):
    id: str
    user: str
    name: str
    start_date: dt.date
    end_date: dt.date
    meals: list[Meal] = []


class PopulatedMealPlan(Record):
    id: str
    user: str
    name: str
    start_date: dt.date
    end_date: dt.date
    meals: list[PopulatedMeal]
