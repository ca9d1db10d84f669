from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from app.api.v1 import api_router
from app.core.errors import register_exception_handlers
from app.core.limiter import limiter
from app.core.logging import configure_logging
from app.core.response_envelope import register_response_envelope
from app.core.settings import settings
from app.db.session import AsyncSessionLocal
from app.events import register_event_handlers
from app.middlewares.request_context import RequestContextMiddleware
from app.services.application_documents import InMemoryDocumentRegistry, SqlDocumentRegistry
from app.services.application_store import InMemoryApplicationStore, SqlApplicationStore
from app.services.audit import record_status_change
from app.services.authority_matrix import get_authority_matrix
from app.services.workflow_engine import WorkflowEngine


def build_workflow_engine() -> WorkflowEngine:
    matrix = get_authority_matrix()
    if settings.application_store_backend == "memory":
        store = InMemoryApplicationStore()
        documents = InMemoryDocumentRegistry()
    else:
        store = SqlApplicationStore(AsyncSessionLocal)
        documents = SqlDocumentRegistry(AsyncSessionLocal)
    engine = WorkflowEngine(store, documents, matrix)
    engine.subscribe(record_status_change)
    return engine


def create_app(workflow_engine: WorkflowEngine | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title="Admissions Workflow Backend", version="0.1.0")
    # Matrix errors surface here, before the first request is served.
    app.state.workflow_engine = workflow_engine or build_workflow_engine()
    register_exception_handlers(app)
    register_response_envelope(app)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
