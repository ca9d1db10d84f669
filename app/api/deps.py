from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.context import set_actor_id
from app.core.security import decode_token
from app.schemas.workflow import ActorRole
from app.services.actors import Actor
from app.services.application_documents import DocumentRegistry
from app.services.authority_matrix import AuthorityMatrix
from app.services.workflow_engine import WorkflowEngine

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_token(credentials.credentials, expected_type="access")
        actor = Actor.from_claims(payload)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    set_actor_id(actor.id)
    return actor


def require_role(*roles: ActorRole):
    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.can_override or any(actor.has_role(role) for role in roles):
            return actor
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "actor_mismatch",
                "message": f"Requires one of: {', '.join(role.value for role in roles)}",
            },
        )

    return dependency


def get_workflow_engine(request: Request) -> WorkflowEngine:
    return request.app.state.workflow_engine


def get_matrix(engine: WorkflowEngine = Depends(get_workflow_engine)) -> AuthorityMatrix:
    return engine.matrix


def get_document_registry(engine: WorkflowEngine = Depends(get_workflow_engine)) -> DocumentRegistry:
    return engine.documents
