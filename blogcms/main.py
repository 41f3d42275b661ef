import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from blogcms.config import settings
from blogcms.database import engine
from blogcms.exceptions import register_exception_handlers
from blogcms.middleware import RequestLogMiddleware
from blogcms.routers import categories, posts, users

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging()
    logger.info("Blog CMS starting (env=%s)", settings.APP_ENV)
    yield
    # Shutdown
    await engine.dispose()

app = FastAPI(
    title="Blog CMS API",
    description="Posts, categories and comments with ownership-based authorization",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Routers
app.include_router(posts.router)
app.include_router(categories.router)
app.include_router(users.router)

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
