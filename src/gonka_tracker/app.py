import logging
from contextlib import asynccontextmanager
from typing import Optional
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from gonka_tracker.router import router
from gonka_tracker.client import GonkaClient
from gonka_tracker.config import Settings
from gonka_tracker.database import open_cache_db
from gonka_tracker.service import InferenceService

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Initializing with URLs: {settings.inference_urls}")
        logger.info(f"Database path: {settings.db_path}")

        cache_db = await open_cache_db(settings.db_path)
        client = GonkaClient(base_urls=settings.inference_urls, timeout=settings.http_timeout)
        app.state.inference_service = InferenceService(client=client, cache_db=cache_db)

        yield

        app.state.inference_service = None

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


def main():
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
