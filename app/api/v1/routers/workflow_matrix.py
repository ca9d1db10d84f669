from fastapi import APIRouter, Depends

from app.api import deps
from app.services.actors import Actor
from app.services.authority_matrix import AuthorityMatrix

router = APIRouter(prefix="/workflow", tags=["workflow"])


@router.get("/matrix", summary="Loaded workflow authority matrix")
async def get_workflow_matrix(
    actor: Actor = Depends(deps.get_current_actor),
    matrix: AuthorityMatrix = Depends(deps.get_matrix),
) -> dict:
    return matrix.config.model_dump(mode="json")
