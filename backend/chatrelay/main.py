import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay.core.config import settings
from chatrelay.core.database import init_db
from chatrelay.core.errors import register_error_handlers
from chatrelay.api import chat, history, image_proxy


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    init_db()

    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Chat-Id"],
)

register_error_handlers(app)

app.include_router(chat.router, tags=["chat"])
app.include_router(history.router, tags=["history"])
app.include_router(image_proxy.router, tags=["images"])


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}


def run() -> None:
    import uvicorn

    uvicorn.run("chatrelay.main:app", host=settings.host, port=settings.port)
