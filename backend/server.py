from fastapi import FastAPI, APIRouter
from starlette.middleware.cors import CORSMiddleware
import logging

from config import CORS_ORIGINS, CRM_COLLECTION
from routes.pipeline import router as pipeline_router
from services.event_bus import EventBus, bus
from services.notifier import Notifier
from services.pipeline_store import PipelineStore
from services.stage_client import StageApiClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def init_pipeline(app: FastAPI, api, event_bus: EventBus = bus) -> PipelineStore:
    """Un store par process, abonné au bus partagé"""
    previous = getattr(app.state, "pipeline_store", None)
    if previous is not None:
        previous.detach()
    store = PipelineStore(api=api, notifier=Notifier())
    store.attach(event_bus)
    app.state.pipeline_store = store
    app.state.event_bus = event_bus
    logger.info(f"[SERVER] Pipeline store ready (collection={CRM_COLLECTION})")
    return store


# Create the main app without a prefix
app = FastAPI(title="Signature8 CRM - Pipeline")

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")
api_router.include_router(pipeline_router)


@api_router.get("/")
async def root():
    return {"message": "Signature8 pipeline"}


# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_pipeline(app, StageApiClient())


@app.on_event("shutdown")
async def shutdown_api_client():
    store = app.state.pipeline_store
    store.detach()
    if isinstance(store.api, StageApiClient):
        await store.api.aclose()
