from app.models.application import Application
from app.models.application_document import ApplicationDocument
from app.models.application_stage_history import ApplicationStageHistory

__all__ = [
    "Application",
    "ApplicationDocument",
    "ApplicationStageHistory",
]
