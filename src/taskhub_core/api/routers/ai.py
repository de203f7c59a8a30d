"""AI assistant endpoints.

Handlers are async so provider calls do not hold a worker thread; database
work is pushed to the thread pool.
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ... import ai, crud, models, schemas
from ...access_control import Operation
from ...database import get_db
from ..dependencies import get_completion_service, get_current_user

logger = logging.getLogger("taskhub-core.ai_api")

router = APIRouter(tags=["ai"])


@router.post("/generate-tasks", response_model=schemas.Envelope[list[schemas.GeneratedTask]])
async def generate_tasks(
    payload: schemas.GenerateTasksRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    service: ai.CompletionService = Depends(get_completion_service),
):
    """Draft tasks from a project description (Project Managers only). Nothing is saved."""
    await run_in_threadpool(crud.get_project, db, current_user, payload.project_id, Operation.TASK_CREATE)
    tasks = await ai.generate_tasks(service, payload.description)
    logger.info(f"Generated {len(tasks)} task drafts for project {payload.project_id}")
    return schemas.envelope(tasks, message="Tasks generated successfully")


@router.post("/suggest-priority", response_model=schemas.Envelope[schemas.PrioritySuggestion])
async def suggest_priority(
    payload: schemas.SuggestPriorityRequest,
    current_user: models.User = Depends(get_current_user),
    service: ai.CompletionService = Depends(get_completion_service),
):
    suggestion = await ai.suggest_priority(service, payload.title, payload.description, payload.due_date)
    return schemas.envelope(suggestion)


@router.post("/generate-sprint-plan", response_model=schemas.Envelope[schemas.SprintPlan])
async def generate_sprint_plan(
    payload: schemas.SprintPlanRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    service: ai.CompletionService = Depends(get_completion_service),
):
    """Propose a sprint from up to 20 tasks without a sprint (Project Managers only)."""
    project = await run_in_threadpool(
        crud.get_project, db, current_user, payload.project_id, Operation.SPRINT_CREATE
    )
    tasks = await run_in_threadpool(ai.unassigned_tasks, db, project)
    team_size = payload.team_size or len(project.members)
    plan = await ai.generate_sprint_plan(service, tasks, team_size, payload.sprint_duration_days)
    return schemas.envelope(plan)


@router.get("/project-summary/{project_id}", response_model=schemas.Envelope[dict])
async def project_summary(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    service: ai.CompletionService = Depends(get_completion_service),
):
    project = await run_in_threadpool(crud.get_project, db, current_user, project_id)
    statistics = await run_in_threadpool(ai.project_statistics, db, project, models.utcnow())
    summary = await ai.project_summary(service, project.name, statistics)
    return schemas.envelope(summary)


@router.get("/detect-issues/{project_id}", response_model=schemas.Envelope[dict])
async def detect_issues(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    service: ai.CompletionService = Depends(get_completion_service),
):
    """Delayed tasks and stalled reviews, with recommendations."""
    project = await run_in_threadpool(crud.get_project, db, current_user, project_id)
    issues = await run_in_threadpool(ai.find_project_issues, db, project, models.utcnow())
    return schemas.envelope(await ai.detect_issues(service, issues))


@router.post("/chat", response_model=schemas.Envelope[schemas.ChatResponse])
async def chat(
    payload: schemas.ChatRequest,
    current_user: models.User = Depends(get_current_user),
    service: ai.CompletionService = Depends(get_completion_service),
):
    reply = await ai.chat(service, payload.message, payload.context)
    return schemas.envelope({"reply": reply})
