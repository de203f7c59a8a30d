"""AI-assisted planning backed by an external text-completion service.

The completion service is opaque: it receives a prompt and a system message
and returns text. JSON answers are extracted leniently from that text.
Priority suggestion and issue detection degrade to fixed answers when the
provider fails; every other helper raises ExternalServiceError.
"""
import json
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from . import models, schemas
from .analytics import completion_rate, is_delayed
from .config import Settings
from .errors import ExternalServiceError, ValidationError

logger = logging.getLogger("taskhub-core.ai")

DEFAULT_SYSTEM_MESSAGE = "You are a helpful project management assistant."

TASK_GENERATOR_SYSTEM_MESSAGE = (
    "You are an expert project manager who creates detailed, actionable tasks. "
    "Always respond with valid JSON only."
)

CHAT_SYSTEM_MESSAGE = """You are an expert Project Management Assistant with deep knowledge of:
- Agile and Scrum methodologies
- Task breakdown and estimation
- Sprint planning and execution
- Team collaboration and communication
- Project analytics and metrics
- Risk management and mitigation
- Resource allocation and workload balancing

Provide clear, actionable advice that helps users plan and organize their work,
make data-driven decisions and improve team productivity.

Keep responses concise but comprehensive. Use bullet points for clarity when appropriate."""

FALLBACK_PRIORITY = {"priority": models.TaskPriority.MEDIUM.value, "reasoning": "Default priority assigned"}
FALLBACK_RECOMMENDATIONS = (
    "Review delayed tasks and reassign if necessary. Follow up on stalled reviews."
)

SPRINT_PLAN_TASK_LIMIT = 20
STALLED_REVIEW_DAYS = 3


class CompletionService(Protocol):
    async def complete(self, prompt: str, system_message: str = DEFAULT_SYSTEM_MESSAGE) -> str:
        ...


class HTTPCompletionService:
    """
    Completion service over the Gemini or OpenAI HTTP APIs.

    Args:
        settings: Provider selection, keys, models and timeout
        client: Optional AsyncClient (tests inject one with a MockTransport)
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client

    async def complete(self, prompt: str, system_message: str = DEFAULT_SYSTEM_MESSAGE) -> str:
        provider = self.settings.ai_provider.lower()
        if provider == "gemini":
            request = self._gemini_request(prompt, system_message)
            parse = self._parse_gemini
        elif provider == "openai":
            request = self._openai_request(prompt, system_message)
            parse = self._parse_openai
        else:
            raise ExternalServiceError(f"Unknown AI provider '{self.settings.ai_provider}'")

        try:
            if self._client is not None:
                response = await self._client.post(**request)
            else:
                async with httpx.AsyncClient(timeout=self.settings.ai_timeout_seconds) as client:
                    response = await client.post(**request)
            response.raise_for_status()
            text = parse(response.json())
        except httpx.HTTPError as e:
            logger.error(f"AI provider {provider} request failed: {e}")
            raise ExternalServiceError("AI service request failed") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"AI provider {provider} returned an unexpected payload: {e}")
            raise ExternalServiceError("AI service returned an unexpected response") from e

        logger.debug(f"AI completion received ({len(text)} chars)")
        return text

    def _gemini_request(self, prompt: str, system_message: str) -> dict[str, Any]:
        if not self.settings.gemini_api_key:
            raise ExternalServiceError("AI service is not configured")
        return {
            "url": f"{self.settings.gemini_api_url}/models/{self.settings.gemini_model}:generateContent",
            "params": {"key": self.settings.gemini_api_key},
            "json": {
                "contents": [
                    {"role": "user", "parts": [{"text": f"{system_message}\n\n{prompt}"}]},
                ],
            },
        }

    @staticmethod
    def _parse_gemini(payload: dict) -> str:
        parts = payload["candidates"][0]["content"]["parts"]
        return "".join(part.get("text", "") for part in parts)

    def _openai_request(self, prompt: str, system_message: str) -> dict[str, Any]:
        if not self.settings.openai_api_key:
            raise ExternalServiceError("AI service is not configured")
        return {
            "url": self.settings.openai_api_url,
            "headers": {"Authorization": f"Bearer {self.settings.openai_api_key}"},
            "json": {
                "model": self.settings.openai_model,
                "messages": [
                    {"role": "system", "content": system_message},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.7,
                "max_tokens": 1500,
            },
        }

    @staticmethod
    def _parse_openai(payload: dict) -> str:
        return payload["choices"][0]["message"]["content"]


_JSON_PATTERNS = {
    list: re.compile(r"\[[\s\S]*\]"),
    dict: re.compile(r"\{[\s\S]*\}"),
}


def extract_json(text: str, expected: type) -> Any:
    """
    Parse JSON from model output, tolerating prose or code fences around it.

    Args:
        text: Raw completion text
        expected: list or dict

    Raises:
        ExternalServiceError: If no JSON value of the expected type is found
    """
    candidates = [text.strip()]
    match = _JSON_PATTERNS[expected].search(text)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, expected):
            return value

    raise ExternalServiceError("Invalid JSON response from AI")


async def generate_tasks(service: CompletionService, description: str) -> list[dict[str, Any]]:
    """Ask for 5-10 tasks (title, description, priority) for a project description."""
    prompt = f"""Based on the following project description, generate a list of 5-10 actionable tasks with titles, descriptions, and suggested priorities (Low/Medium/High).

Project Description: {description}

Format the response as a JSON array with the following structure:
[
  {{
    "title": "Task title",
    "description": "Detailed task description",
    "priority": "Medium"
  }}
]

Only return the JSON array, no additional text."""

    items = extract_json(await service.complete(prompt, TASK_GENERATOR_SYSTEM_MESSAGE), list)
    try:
        return [schemas.GeneratedTask.model_validate(item).model_dump() for item in items]
    except PydanticValidationError as e:
        raise ExternalServiceError("AI returned malformed tasks") from e


async def suggest_priority(
    service: CompletionService,
    title: str,
    description: str = "",
    due_date: Optional[datetime] = None,
) -> dict[str, str]:
    """Suggest a priority; falls back to Medium when the provider fails."""
    prompt = f"""Analyze the following task and suggest an appropriate priority level (Low, Medium, or High) with a brief explanation.

Task Title: {title}
Description: {description or "None"}
Due Date: {due_date.date().isoformat() if due_date else "Not set"}

Respond in JSON format:
{{
  "priority": "Medium",
  "reasoning": "Brief explanation of why this priority was chosen"
}}"""

    try:
        answer = extract_json(await service.complete(prompt), dict)
        return schemas.PrioritySuggestion.model_validate(answer).model_dump()
    except (ExternalServiceError, PydanticValidationError) as e:
        logger.warning(f"Priority suggestion failed, using default: {e}")
        return dict(FALLBACK_PRIORITY)


def unassigned_tasks(db: Session, project: models.Project, limit: int = SPRINT_PLAN_TASK_LIMIT) -> list[models.Task]:
    """Active tasks of a project that belong to no sprint."""
    return (
        db.query(models.Task)
        .filter(
            models.Task.project_id == project.id,
            models.Task.is_active.is_(True),
            models.Task.sprint_id.is_(None),
        )
        .order_by(models.Task.position, models.Task.created_at)
        .limit(limit)
        .all()
    )


async def generate_sprint_plan(
    service: CompletionService,
    tasks: list[models.Task],
    team_size: int,
    sprint_duration_days: int,
) -> dict[str, Any]:
    """
    Propose a sprint goal and task selection from the unassigned backlog.

    Raises:
        ValidationError: No unassigned tasks to plan
        ExternalServiceError: Provider failure or unusable answer
    """
    if not tasks:
        raise ValidationError("No unassigned tasks found for this project")

    task_list = "\n".join(
        f"{i}. {task.title} (Priority: {models.TaskPriority(task.priority).value})"
        for i, task in enumerate(tasks, start=1)
    )
    prompt = f"""Create a sprint plan for a team of {team_size} people with a {sprint_duration_days}-day sprint.

Available Tasks:
{task_list}

Provide:
1. A sprint goal
2. Recommended tasks for the sprint (select based on priority and capacity)
3. Suggested task distribution

Respond in JSON format:
{{
  "sprintGoal": "Clear, achievable sprint goal",
  "recommendedTasks": ["Task 1", "Task 3", "Task 5"],
  "taskDistribution": "Brief suggestion on how to distribute tasks"
}}"""

    answer = extract_json(await service.complete(prompt), dict)
    try:
        plan = schemas.SprintPlan(
            sprint_goal=answer["sprintGoal"],
            recommended_tasks=answer.get("recommendedTasks", []),
            task_distribution=answer.get("taskDistribution", ""),
        )
    except (KeyError, PydanticValidationError) as e:
        raise ExternalServiceError("Failed to generate sprint plan") from e
    return plan.model_dump()


def project_statistics(db: Session, project: models.Project, now: datetime) -> dict[str, int]:
    tasks = (
        db.query(models.Task)
        .filter(models.Task.project_id == project.id, models.Task.is_active.is_(True))
        .all()
    )
    completed = sum(1 for t in tasks if t.status == models.TaskStatus.DONE)
    return {
        "total_tasks": len(tasks),
        "completed_tasks": completed,
        "delayed_tasks": sum(1 for t in tasks if is_delayed(t, now)),
        "completion_rate": completion_rate(completed, len(tasks)),
        "team_size": len(project.members),
    }


async def project_summary(
    service: CompletionService,
    project_name: str,
    statistics: dict[str, int],
) -> dict[str, Any]:
    prompt = f"""Provide a concise project summary and recommendations based on the following data:

Project: {project_name}
Total Tasks: {statistics["total_tasks"]}
Completed Tasks: {statistics["completed_tasks"]}
Delayed Tasks: {statistics["delayed_tasks"]}
Team Size: {statistics["team_size"]}

Provide:
1. Overall project health (Good/Fair/At Risk)
2. Key insights
3. Recommendations for improvement

Keep it concise (3-4 sentences)."""

    summary = await service.complete(prompt)
    return {"summary": summary, "statistics": statistics}


def find_project_issues(db: Session, project: models.Project, now: datetime) -> dict[str, list[dict[str, Any]]]:
    """Delayed tasks and reviews untouched for more than three days."""
    tasks = (
        db.query(models.Task)
        .filter(models.Task.project_id == project.id, models.Task.is_active.is_(True))
        .order_by(models.Task.due_date)
        .all()
    )
    stalled_before = now - timedelta(days=STALLED_REVIEW_DAYS)

    def assignee_name(task: models.Task) -> str:
        return task.assignee.name if task.assignee else "Unassigned"

    delayed = [
        {
            "id": str(task.id),
            "title": task.title,
            "due_date": task.due_date.isoformat(),
            "priority": models.TaskPriority(task.priority).value,
            "assigned_to": assignee_name(task),
        }
        for task in tasks
        if is_delayed(task, now)
    ]
    stalled = [
        {
            "id": str(task.id),
            "title": task.title,
            "days_since_update": (now - task.updated_at).days,
            "assigned_to": assignee_name(task),
        }
        for task in tasks
        if task.status == models.TaskStatus.REVIEW and task.updated_at < stalled_before
    ]
    return {"delayed_tasks": delayed, "stalled_reviews": stalled}


async def detect_issues(
    service: CompletionService,
    issues: dict[str, list[dict[str, Any]]],
) -> dict[str, Any]:
    """Ask for recommendations on the detected issues; canned advice on provider failure."""
    delayed = issues["delayed_tasks"]
    stalled = issues["stalled_reviews"]
    delayed_lines = "\n".join(
        f"- {t['title']} (Due: {t['due_date'][:10]}, Priority: {t['priority']})" for t in delayed[:5]
    )
    stalled_lines = "\n".join(f"- {t['title']}" for t in stalled[:5])
    prompt = f"""Analyze the following project issues and provide actionable recommendations:

Delayed Tasks ({len(delayed)}):
{delayed_lines}

Stalled Reviews ({len(stalled)}):
{stalled_lines}

Provide 3-4 specific, actionable recommendations to address these issues."""

    try:
        recommendations = await service.complete(prompt)
    except ExternalServiceError as e:
        logger.warning(f"Issue recommendations unavailable, using default: {e}")
        recommendations = FALLBACK_RECOMMENDATIONS
    return {"issues": issues, "recommendations": recommendations}


async def chat(service: CompletionService, message: str, context: Optional[str] = None) -> str:
    """Free-form project-management advice. A supplied context replaces the message as the prompt."""
    return await service.complete(context or message, CHAT_SYSTEM_MESSAGE)
