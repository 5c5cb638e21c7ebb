import datetime as dt
from typing import Any
import uuid

from domain.models import (
    Author,
    Difficulty,
    Identity,
    Meal,
    MealPlan,
    MealPlanDraft,
    PopulatedMeal,
    PopulatedMealPlan,
    Recipe,
    RecipeDraft,
    RecipeSummary,
)
from domain.repository import MealPlanRepository, RecipeNotFound, RecipeRepository


class NotAuthorized(Exception):
    pass


async def list_recipes(
    *,
    repository: RecipeRepository,
    search: str | None = None,
    difficulty: Difficulty | None = None,
) -> tuple[Recipe, ...]:
    return await repository.list(search=search, difficulty=difficulty)


async def get_recipe(id: str, *, repository: RecipeRepository) -> Recipe:
    return await repository.get(id)


async def create_recipe(
    draft: RecipeDraft,
    *,
    identity: Identity,
    repository: RecipeRepository,
) -> Recipe:
    recipe = Recipe(
        **draft.model_dump(),
        id=uuid.uuid4().hex,
        author=Author.from_identity(identity),
    )
    return await repository.add(recipe)


async def _owned_recipe(
    id: str,
    *,
    identity: Identity,
    repository: RecipeRepository,
    action: str,
) -> Recipe:
    recipe = await repository.get(id)
    if recipe.author.id != identity.id:
        raise NotAuthorized(f"Not authorized to {action} this recipe")
    return recipe


async def update_recipe(
    id: str,
    changes: dict[str, Any],
    *,
    identity: Identity,
    repository: RecipeRepository,
) -> Recipe:
    """Apply `changes` (camelCase keys) on top of the stored recipe.

    The id, author and creation time always stay as they were.
    """
    recipe = await _owned_recipe(
        id, identity=identity, repository=repository, action="update"
    )
    data = recipe.model_dump(mode="json", by_alias=True)
    data.update(changes)
    data.update(
        id=recipe.id,
        author=recipe.author.to_dict(),
        createdAt=recipe.created_at.isoformat(),
    )
    return await repository.save(Recipe.model_validate(data))


async def delete_recipe(
    id: str,
    *,
    identity: Identity,
    repository: RecipeRepository,
) -> None:
    await _owned_recipe(id, identity=identity, repository=repository, action="delete")
    await repository.delete(id)


async def populate_meals(
    plan: MealPlan,
    *,
    recipes: RecipeRepository,
) -> PopulatedMealPlan:
    """Swap each meal's recipe id for a short summary of the recipe."""
    meals: list[PopulatedMeal] = []
    for meal in plan.meals:
        try:
            summary = RecipeSummary.from_recipe(await recipes.get(meal.recipe))
        except RecipeNotFound:
            summary = None
        meals.append(PopulatedMeal(date=meal.date, type=meal.type, recipe=summary))
    return PopulatedMealPlan(
        id=plan.id,
        user=plan.user,
        name=plan.name,
        start_date=plan.start_date,
        end_date=plan.end_date,
        meals=meals,
    )


async def get_meal_plan(
    *,
    identity: Identity,
    repository: MealPlanRepository,
    recipes: RecipeRepository,
    start: dt.date | None = None,
    end: dt.date | None = None,
) -> PopulatedMealPlan | None:
    plan = await repository.find(identity.id, start=start, end=end)
    if plan is None:
        return None
    return await populate_meals(plan, recipes=recipes)


async def create_meal_plan(
    draft: MealPlanDraft,
    *,
    identity: Identity,
    repository: MealPlanRepository,
    recipes: RecipeRepository,
) -> PopulatedMealPlan:
    plan = MealPlan(
        id=uuid.uuid4().hex,
        user=identity.id,
        name=draft.name,
        start_date=draft.start_date,
        end_date=draft.end_date,
        meals=[draft.first_meal],
    )
    await repository.add(plan)
    return await populate_meals(plan, recipes=recipes)


async def add_meal(
    plan_id: str,
    meal: Meal,
    *,
    identity: Identity,
    repository: MealPlanRepository,
    recipes: RecipeRepository,
) -> PopulatedMealPlan:
    plan = await repository.get(plan_id)
    if plan.user != identity.id:
        raise NotAuthorized("Not authorized to update this meal plan")
    plan = plan.model_copy(update={"meals": [*plan.meals, meal]})
    await repository.save(plan)
    return await populate_meals(plan, recipes=recipes)
