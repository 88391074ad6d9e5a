# storykeeper/main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI

from storykeeper.config import get_settings
from storykeeper.database import init_db
from storykeeper.dependencies import reset_dependencies
from storykeeper.logging_config import configure_logging
from storykeeper.routers import stories_router

settings = get_settings()
configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    # Let in-flight background moves reach a stable state before exit
    reset_dependencies()


app = FastAPI(title="Storykeeper", lifespan=lifespan)

app.include_router(stories_router)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": "storykeeper", "environment": settings.ENVIRONMENT}
