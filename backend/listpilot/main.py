import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from listpilot.api import chat, conversations, live
from listpilot.core import database
from listpilot.core.config import settings
from listpilot.services.container import build_services
from listpilot.services.llm import get_llm_provider
from listpilot.services.maintenance import maintenance_loop
from listpilot.services.security import get_moderation_classifier
from listpilot.services.worker import WorkerPool


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    database.init_db()

    services = build_services(database.engine, get_llm_provider(), get_moderation_classifier())
    app.state.services = services

    # Turn workers and background maintenance
    workers = WorkerPool(services.queue, services.orchestrator.process_turn, services.orchestrator.fail_turn)
    workers.start()
    maintenance_task = asyncio.create_task(maintenance_loop(services.state))

    yield

    # Cancel background tasks on shutdown
    await workers.stop()
    maintenance_task.cancel()
    try:
        await maintenance_task
    except asyncio.CancelledError:
        pass


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])
app.include_router(live.router, prefix="/api/live", tags=["live"])


@app.get("/api/health")
async def health():
    services = getattr(app.state, "services", None)
    return {
        "status": "ok",
        "app": settings.app_name,
        "queue_depth": services.queue.depth() if services else 0,
    }
