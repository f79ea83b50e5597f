"""Post-chat satisfaction surveys."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.auth import current_agent
from src.db import crud
from src.db.database import get_db
from src.db.models import Agent
from src.errors import NotFoundError, ValidationError
from src.serializers import survey_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/surveys", tags=["surveys"])


class SurveySubmit(BaseModel):
    session_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    problem_solved: Optional[bool] = None
    feedback: Optional[str] = None
    rating: Optional[int] = None


@router.post("/submit", status_code=201)
async def submit_survey(body: SurveySubmit):
    if not body.session_id or body.problem_solved is None:
        raise ValidationError("Session ID and problem_solved are required")
    db = await get_db()
    s = await crud.survey_create(
        db, body.session_id, body.problem_solved,
        customer_name=body.customer_name,
        customer_email=body.customer_email,
        feedback=body.feedback,
        rating=body.rating,
    )
    return {"success": True, "message": "Survey submitted successfully", "survey": survey_to_dict(s)}


@router.get("/list")
async def list_surveys(
    page: int = 1,
    limit: int = 50,
    problem_solved: Optional[bool] = None,
    agent_id: Optional[int] = None,
    agent: Agent = Depends(current_agent),
):
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    db = await get_db()
    surveys, total = await crud.survey_list(db, page=page, limit=limit,
                                            problem_solved=problem_solved, agent_id=agent_id)
    return {
        "success": True,
        "surveys": [survey_to_dict(s) for s in surveys],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@router.get("/stats")
async def survey_stats(
    agent_id: Optional[int] = None,
    website_id: Optional[int] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    agent: Agent = Depends(current_agent),
):
    db = await get_db()
    stats = await crud.survey_stats(db, agent_id=agent_id, website_id=website_id,
                                    date_from=date_from, date_to=date_to)
    return {"success": True, "stats": stats}


@router.delete("/clear")
async def clear_surveys(agent: Agent = Depends(current_agent)):
    db = await get_db()
    deleted = await crud.survey_clear(db)
    logger.info(f"Agent {agent.id} cleared all surveys")
    return {"success": True, "deleted": deleted}


@router.get("/{survey_id}")
async def get_survey(survey_id: int, agent: Agent = Depends(current_agent)):
    db = await get_db()
    s = await crud.survey_get(db, survey_id)
    if s is None:
        raise NotFoundError("Survey not found")
    return {"success": True, "survey": survey_to_dict(s)}
