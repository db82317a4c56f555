import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from planai.api.analysis import router as analysis_router
from planai.api.code_issues import router as code_issues_router
from planai.api.learning import router as learning_router
from planai.api.projects import router as projects_router
from planai.api.settings import router as settings_router
from planai.api.tasks import router as tasks_router
from planai.api.voice_notes import router as voice_notes_router
from planai.api.ws import router as ws_router
from planai.config import settings
from planai.database import engine, init_db
from planai.store.entity_store import EntityStore
from planai.store.persistence import SlotPersistence

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    app.state.store = EntityStore(SlotPersistence(engine))
    logger.info(f"Loaded store slot {settings.store_slot!r} v{settings.store_version}")
    yield


app = FastAPI(title="Plan.AI", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(projects_router, prefix="/api")
app.include_router(learning_router, prefix="/api")
app.include_router(code_issues_router, prefix="/api")
app.include_router(tasks_router, prefix="/api")
app.include_router(voice_notes_router, prefix="/api")
app.include_router(settings_router, prefix="/api")
app.include_router(analysis_router, prefix="/api")
app.include_router(ws_router)


@app.get("/health")
async def health():
    return {"status": "ok"}

