import datetime as dt

from databases import Database

from domain.auth import DEMO_IDENTITY
from domain.models import (
    Author,
    Difficulty,
    Ingredient,
    MealPlan,
    Recipe,
)


CREATE_RECIPES_TABLE = """
CREATE TABLE IF NOT EXISTS Recipes (
    id VARCHAR(64) PRIMARY KEY,
    author_id VARCHAR(64),
    title VARCHAR(256),
    difficulty VARCHAR(16),
    created_at VARCHAR(64),
    document TEXT
)
"""


CREATE_MEAL_PLANS_TABLE = """
CREATE TABLE IF NOT EXISTS MealPlans (
    id VARCHAR(64) PRIMARY KEY,
    user_id VARCHAR(64),
    name VARCHAR(256),
    start_date VARCHAR(16),
    end_date VARCHAR(16),
    document TEXT
)
"""


CREATE_RECIPE = """
INSERT INTO Recipes(id, author_id, title, difficulty, created_at, document)
VALUES (:id, :author_id, :title, :difficulty, :created_at, :document)
"""


UPDATE_RECIPE = """
UPDATE Recipes SET title = :title, difficulty = :difficulty, document = :document
WHERE id = :id
"""


GET_RECIPE = "SELECT * FROM Recipes WHERE id = :id"


LIST_RECIPES = "SELECT * FROM Recipes"


COUNT_RECIPES = "SELECT COUNT(*) AS n FROM Recipes"


DELETE_RECIPE = "DELETE FROM Recipes WHERE id = :id"


CREATE_MEAL_PLAN = """
INSERT INTO MealPlans(id, user_id, name, start_date, end_date, document)
VALUES (:id, :user_id, :name, :start_date, :end_date, :document)
"""


UPDATE_MEAL_PLAN = "UPDATE MealPlans SET document = :document WHERE id = :id"


GET_MEAL_PLAN = "SELECT * FROM MealPlans WHERE id = :id"


FIND_MEAL_PLAN = "SELECT * FROM MealPlans WHERE user_id = :user_id"


DEMO_AUTHOR = Author.from_identity(DEMO_IDENTITY)


DEMO_RECIPES = (
    Recipe(
        id="1",
        title="Classic Spaghetti Carbonara",
        description="A creamy Italian pasta dish with pancetta and egg sauce",
        ingredients=[
            Ingredient(name="Spaghetti", amount="400", unit="g"),
            Ingredient(name="Pancetta", amount="150", unit="g"),
            Ingredient(name="Eggs", amount="4", unit="large"),
            Ingredient(name="Parmesan", amount="100", unit="g"),
        ],
        instructions=[
            "Boil the spaghetti in salted water",
            "Fry the pancetta until crispy",
            "Mix eggs and cheese",
            "Combine all ingredients",
        ],
        cooking_time=30,
        servings=4,
        image="https://images.pexels.com/photos/4518843/pexels-photo-4518843.jpeg",
        author=DEMO_AUTHOR,
        difficulty=Difficulty.medium,
    ),
    Recipe(
        id="2",
        title="Grilled Salmon with Asparagus",
        description="Healthy and delicious salmon with grilled vegetables",
        ingredients=[
            Ingredient(name="Salmon fillet", amount="500", unit="g"),
            Ingredient(name="Asparagus", amount="400", unit="g"),
            Ingredient(name="Lemon", amount="1", unit="whole"),
            Ingredient(name="Olive oil", amount="2", unit="tbsp"),
        ],
        instructions=[
            "Preheat the grill",
            "Season the salmon",
            "Grill for 4-5 minutes each side",
            "Serve with grilled asparagus",
        ],
        cooking_time=25,
        servings=4,
        image="https://images.pexels.com/photos/3763847/pexels-photo-3763847.jpeg",
        author=DEMO_AUTHOR,
        difficulty=Difficulty.easy,
    ),
)


class RecipeNotFound(Exception):
    pass


class MealPlanNotFound(Exception):
    pass


async def create_tables(db: Database) -> None:
    await db.execute(query=CREATE_RECIPES_TABLE)  # pyright: ignore[reportUnknownMemberType]
    await db.execute(query=CREATE_MEAL_PLANS_TABLE)  # pyright: ignore[reportUnknownMemberType]


class RecipeRepository:
    """Recipes, stored as JSON documents next to the columns they are queried by."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, recipe: Recipe) -> Recipe:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            CREATE_RECIPE,
            values={
                "id": recipe.id,
                "author_id": recipe.author.id,
                "title": recipe.title,
                "difficulty": recipe.difficulty.value,
                "created_at": recipe.created_at.isoformat(),
                "document": recipe.model_dump_json(by_alias=True),
            },
        )
        return recipe

    async def save(self, recipe: Recipe) -> Recipe:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPDATE_RECIPE,
            values={
                "id": recipe.id,
                "title": recipe.title,
                "difficulty": recipe.difficulty.value,
                "document": recipe.model_dump_json(by_alias=True),
            },
        )
        return recipe

    async def get(self, id: str) -> Recipe:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_RECIPE, values={"id": id}
        )
        if result is None:
            raise RecipeNotFound(f"{id}")
        return Recipe.model_validate_json(result["document"])

    async def delete(self, id: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            DELETE_RECIPE, values={"id": id}
        )

    async def list(
        self,
        *,
        search: str | None = None,
        difficulty: Difficulty | None = None,
    ) -> tuple[Recipe, ...]:
        query = LIST_RECIPES
        clauses: list[str] = []
        values: dict[str, str] = {}
        if search:
            clauses.append("lower(title) LIKE :search")
            values["search"] = f"%{search.lower()}%"
        if difficulty is not None:
            clauses.append("difficulty = :difficulty")
            values["difficulty"] = difficulty.value
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, id"

        result = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            query, values=values
        )
        return tuple(Recipe.model_validate_json(r["document"]) for r in result)

    async def count(self) -> int:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            COUNT_RECIPES
        )
        return 0 if result is None else int(result["n"])


class MealPlanRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, plan: MealPlan) -> MealPlan:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            CREATE_MEAL_PLAN,
            values={
                "id": plan.id,
                "user_id": plan.user,
                "name": plan.name,
                "start_date": plan.start_date.isoformat(),
                "end_date": plan.end_date.isoformat(),
                "document": plan.model_dump_json(by_alias=True),
            },
        )
        return plan

    async def save(self, plan: MealPlan) -> MealPlan:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPDATE_MEAL_PLAN,
            values={"id": plan.id, "document": plan.model_dump_json(by_alias=True)},
        )
        return plan

    async def get(self, id: str) -> MealPlan:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_MEAL_PLAN, values={"id": id}
        )
        if result is None:
            raise MealPlanNotFound(f"{id}")
        return MealPlan.model_validate_json(result["document"])

    async def find(
        self,
        user: str,
        *,
        start: dt.date | None = None,
        end: dt.date | None = None,
    ) -> MealPlan | None:
        """First plan of `user`, limited to plans overlapping `start`-`end` if both given."""
        query = FIND_MEAL_PLAN
        values = {"user_id": user}
        if start is not None and end is not None:
            query += " AND start_date <= :end AND end_date >= :start"
            values["start"] = start.isoformat()
            values["end"] = end.isoformat()
        query += " ORDER BY start_date, id"

        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            query, values=values
        )
        if result is None:
            return None
        return MealPlan.model_validate_json(result["document"])


async def seed_demo_recipes(repository: RecipeRepository) -> int:
    """Add the demo recipes to an empty repository. Returns how many were added."""
    if await repository.count():
        return 0
    for recipe in DEMO_RECIPES:
        await repository.add(recipe)
    return len(DEMO_RECIPES)
