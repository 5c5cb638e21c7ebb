import contextlib
import datetime as dt
import functools
import logging
from typing import Any, Awaitable, Callable

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup
from pydantic import BaseModel
from rich.logging import RichHandler
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Route

from app import config
from app.db import StoreHandle
from domain import services
from domain.auth import (
    AuthFailure,
    DemoAuthStrategy,
    SessionStore,
    bearer_token,
    sign_in,
)
from domain.models import (
    Difficulty,
    ErrorKind,
    Identity,
    LogicalFile,
    Meal,
    MealPlanDraft,
    RecipeDraft,
    UploadProgress,
)
from domain.repository import (
    MealPlanNotFound,
    MealPlanRepository,
    RecipeNotFound,
    RecipeRepository,
    create_tables,
    seed_demo_recipes,
)
from domain.storage import MemoryKeyValueStore
from domain.upload import UploadQuotaManager


logger = logging.getLogger(__name__)


class SignInRequired(Exception):
    pass


class StoreUnavailable(Exception):
    pass


def jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True)
    if isinstance(payload, (list, tuple)):
        return [jsonable(p) for p in payload]  # pyright: ignore[reportUnknownVariableType]
    if isinstance(payload, dict):
        return {k: jsonable(v) for k, v in payload.items()}  # pyright: ignore[reportUnknownVariableType]
    return payload


def aJSONResponse(route: Callable[..., Awaitable[Any]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> JSONResponse:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            payload, code = resp, 200
        else:
            payload, code = resp  # pyright: ignore[reportUnknownVariableType]
        return JSONResponse(jsonable(payload), status_code=code)

    return wrapper


def aHTMLResponse(route: Callable[..., Awaitable[str | tuple[str, int]]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> HTMLResponse:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            html, code = resp, 200
        else:
            html, code = resp
        return HTMLResponse(html, status_code=code)

    return wrapper


def current_identity(request: Request) -> Identity | None:
    token = bearer_token(request.headers.get("authorization"))
    if token is None:
        return None
    return request.app.state.sessions.resolve(token)


def require_identity(request: Request, action: str) -> Identity:
    identity = current_identity(request)
    if identity is None:
        raise SignInRequired(f"You must be signed in to {action}")
    return identity


async def repositories(request: Request) -> tuple[RecipeRepository, MealPlanRepository]:
    store: StoreHandle = request.app.state.store
    db = await store.connect_or_reuse()
    if db is None:
        raise StoreUnavailable("No database available")
    return RecipeRepository(db), MealPlanRepository(db)


def render(request: Request, template: str, **context: Any) -> str:
    templates: Environment = request.app.state.templates
    return templates.get_template(template).render(**context)


# Pages


@aHTMLResponse
async def homepage(request: Request) -> str:
    repo, _ = await repositories(request)
    return render(request, "index.html", recipes=await services.list_recipes(repository=repo))


@aHTMLResponse
async def recipe_detail(request: Request) -> str:
    repo, _ = await repositories(request)
    recipe = await services.get_recipe(request.path_params["id"], repository=repo)
    return render(request, "recipe-detail.html", recipe=recipe, content=Markup(recipe.html))


@aHTMLResponse
async def upload_demo(request: Request) -> str:
    uploads: UploadQuotaManager = request.app.state.uploads
    return render(request, "upload-status.html", status=uploads.get_upload_status())


# Auth


@aJSONResponse
async def signin(request: Request) -> Any:
    body = await request.body()
    credentials = await request.json() if body else {}
    result = sign_in(
        credentials,
        strategy=request.app.state.auth,
        sessions=request.app.state.sessions,
    )
    if isinstance(result, AuthFailure):
        return {"error": result.reason}, 401
    token, identity = result
    return {"token": token, "user": identity}


@aJSONResponse
async def signout(request: Request) -> Any:
    token = bearer_token(request.headers.get("authorization"))
    revoked = token is not None and request.app.state.sessions.revoke(token)
    return {"signedOut": revoked}


@aJSONResponse
async def session(request: Request) -> Any:
    return {"user": current_identity(request)}


# Recipes


@aJSONResponse
async def recipes(request: Request) -> Any:
    repo, _ = await repositories(request)
    match request.method.lower():
        case "get":
            difficulty = request.query_params.get("difficulty")
            return await services.list_recipes(
                repository=repo,
                search=request.query_params.get("search"),
                difficulty=Difficulty(difficulty) if difficulty else None,
            )
        case "post":
            identity = require_identity(request, "create a recipe")
            draft = RecipeDraft.model_validate(await request.json())
            recipe = await services.create_recipe(draft, identity=identity, repository=repo)
            return recipe, 201
        case _:
            raise ValueError("Unsupported method.")


@aJSONResponse
async def recipe(request: Request) -> Any:
    id = request.path_params["id"]
    repo, _ = await repositories(request)
    match request.method.lower():
        case "get":
            return await services.get_recipe(id, repository=repo)
        case "put":
            identity = require_identity(request, "update a recipe")
            changes = await request.json()
            return await services.update_recipe(
                id, changes, identity=identity, repository=repo
            )
        case "delete":
            identity = require_identity(request, "delete a recipe")
            await services.delete_recipe(id, identity=identity, repository=repo)
            return {"message": "Recipe deleted successfully"}
        case _:
            raise ValueError("Unsupported method.")


# Meal plans


@aJSONResponse
async def meal_plans(request: Request) -> Any:
    recipe_repo, plan_repo = await repositories(request)
    match request.method.lower():
        case "get":
            identity = require_identity(request, "view meal plans")
            start = request.query_params.get("startDate")
            end = request.query_params.get("endDate")
            plan = await services.get_meal_plan(
                identity=identity,
                repository=plan_repo,
                recipes=recipe_repo,
                start=dt.date.fromisoformat(start) if start else None,
                end=dt.date.fromisoformat(end) if end else None,
            )
            return {"meals": []} if plan is None else plan
        case "post":
            identity = require_identity(request, "create a meal plan")
            draft = MealPlanDraft.model_validate(await request.json())
            plan = await services.create_meal_plan(
                draft, identity=identity, repository=plan_repo, recipes=recipe_repo
            )
            return plan, 201
        case "put":
            identity = require_identity(request, "update a meal plan")
            data = await request.json()
            return await services.add_meal(
                str(data.get("id", "")),
                Meal.model_validate(data),
                identity=identity,
                repository=plan_repo,
                recipes=recipe_repo,
            )
        case _:
            raise ValueError("Unsupported method.")


# Uploads


@aJSONResponse
async def uploads(request: Request) -> Any:
    manager: UploadQuotaManager = request.app.state.uploads
    match request.method.lower():
        case "get":
            return manager.get_upload_status()
        case "post":
            data = await request.json()
            files = [LogicalFile.model_validate(f) for f in data.get("files", [])]

            validation = manager.validate_files(files)
            if not validation.valid:
                return {
                    "error": "; ".join(validation.errors),
                    "errorKind": ErrorKind.validation.value,
                    "errors": validation.errors,
                }, 400

            progress: list[UploadProgress] = []
            result = await manager.upload_files(files, on_progress=progress.append)
            if result.success:
                code = 200
            elif result.is_quota_error:
                code = 507
            else:
                code = 500
            return {"result": result, "progress": progress}, code
        case "delete":
            manager.clear_upload_data()
            return manager.get_upload_status()
        case _:
            raise ValueError("Unsupported method.")


# Errors


def error_handler(code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if code >= 500:
            logger.error("%s %s failed: %r", request.method, request.url.path, exc)
        return JSONResponse({"error": str(exc)}, status_code=code)

    return handler


async def not_found(request: Request, exc: Exception) -> JSONResponse:
    what = "Meal plan" if isinstance(exc, MealPlanNotFound) else "Recipe"
    return JSONResponse({"error": f"{what} not found"}, status_code=404)


def create_app(cfg: config.Config | None = None) -> Starlette:
    cfg = config.Config() if cfg is None else cfg

    logging.basicConfig(
        level=cfg.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler()],
    )

    store = StoreHandle(cfg.db_url)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        db = await store.connect_or_reuse()
        if db is not None:
            await create_tables(db)
            if cfg.seed_demo_data:
                added = await seed_demo_recipes(RecipeRepository(db))
                logger.info("Seeded %s demo recipe(s).", added)
        yield
        await store.disconnect()

    app = Starlette(
        debug=True if cfg.env == config.Env.local else False,
        routes=[
            Route("/", homepage),
            Route("/recipes/{id}", recipe_detail),
            Route("/upload-demo", upload_demo),
            Route("/api/auth/signin", signin, methods=["POST"]),
            Route("/api/auth/signout", signout, methods=["POST"]),
            Route("/api/auth/session", session),
            Route("/api/recipes", recipes, methods=["GET", "POST"]),
            Route("/api/recipes/{id}", recipe, methods=["GET", "PUT", "DELETE"]),
            Route("/api/meal-plans", meal_plans, methods=["GET", "POST", "PUT"]),
            Route("/api/uploads", uploads, methods=["GET", "POST", "DELETE"]),
        ],
        exception_handlers={
            RecipeNotFound: not_found,
            MealPlanNotFound: not_found,
            SignInRequired: error_handler(401),
            services.NotAuthorized: error_handler(403),
            ValueError: error_handler(400),
            StoreUnavailable: error_handler(503),
        },
        lifespan=lifespan,
    )

    app.state.config = cfg
    app.state.store = store
    app.state.templates = Environment(
        loader=FileSystemLoader(cfg.html_dir),
        autoescape=select_autoescape(),
    )
    app.state.auth = DemoAuthStrategy()
    app.state.sessions = SessionStore()
    app.state.uploads = UploadQuotaManager(
        MemoryKeyValueStore(quota=cfg.upload.storage_budget),
        cfg.upload,
    )
    return app


app = create_app()
