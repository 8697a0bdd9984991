import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.promotions.router import router as promotions_router
from app.core.config import settings
from app.db.session import dispose_engine


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Promotion jobs still running are abandoned here; their batches are picked up
    # by the stuck-batch cleanup.
    await dispose_engine()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Management Backend", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(promotions_router)

    return app


app = create_app()
