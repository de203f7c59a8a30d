"""Tests for the AI helpers and the HTTP completion service."""
import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from taskhub_core import ai, crud, models
from taskhub_core.config import Settings
from taskhub_core.errors import ExternalServiceError, ValidationError

from conftest import FakeCompletionService


def _mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestExtractJson:
    """Test lenient JSON extraction from model output."""

    def test_plain_json(self):
        assert ai.extract_json('{"priority": "High"}', dict) == {"priority": "High"}

    def test_json_wrapped_in_prose_and_fences(self):
        """Test that surrounding text and code fences are ignored."""
        text = 'Here you go:\n```json\n[{"title": "A"}, {"title": "B"}]\n```\nGood luck!'
        assert ai.extract_json(text, list) == [{"title": "A"}, {"title": "B"}]

    def test_wrong_shape_rejected(self):
        """Test that an object is not accepted where a list is expected."""
        with pytest.raises(ExternalServiceError):
            ai.extract_json('{"title": "A"}', list)

    def test_no_json(self):
        with pytest.raises(ExternalServiceError):
            ai.extract_json("I cannot help with that.", dict)


class TestHTTPCompletionService:
    """Test provider requests against a mock transport."""

    def test_gemini_request_and_parse(self):
        """Test the Gemini URL, key parameter and combined prompt."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "there"}]}}],
            })

        settings = Settings(ai_provider="gemini", gemini_api_key="g-key", gemini_model="gemini-test")
        service = ai.HTTPCompletionService(settings, client=_mock_client(handler))

        assert asyncio.run(service.complete("Plan it", "Be brief")) == "Hello there"
        assert "/models/gemini-test:generateContent" in seen["url"]
        assert "key=g-key" in seen["url"]
        assert seen["body"]["contents"][0]["parts"][0]["text"] == "Be brief\n\nPlan it"

    def test_openai_request_and_parse(self):
        """Test the OpenAI bearer header and chat payload."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "Sure"}}]})

        settings = Settings(ai_provider="openai", openai_api_key="o-key")
        service = ai.HTTPCompletionService(settings, client=_mock_client(handler))

        assert asyncio.run(service.complete("Hi")) == "Sure"
        assert seen["auth"] == "Bearer o-key"
        assert seen["body"]["messages"][0] == {"role": "system", "content": ai.DEFAULT_SYSTEM_MESSAGE}
        assert seen["body"]["max_tokens"] == 1500

    def test_http_error_becomes_external_service_error(self):
        """Test that provider failures surface as ExternalServiceError."""
        service = ai.HTTPCompletionService(
            Settings(ai_provider="gemini", gemini_api_key="k"),
            client=_mock_client(lambda request: httpx.Response(503, json={"error": "busy"})),
        )
        with pytest.raises(ExternalServiceError):
            asyncio.run(service.complete("Hi"))

    def test_unexpected_payload(self):
        service = ai.HTTPCompletionService(
            Settings(ai_provider="gemini", gemini_api_key="k"),
            client=_mock_client(lambda request: httpx.Response(200, json={"candidates": []})),
        )
        with pytest.raises(ExternalServiceError):
            asyncio.run(service.complete("Hi"))

    def test_missing_key(self):
        """Test that an unconfigured provider fails without a request."""
        service = ai.HTTPCompletionService(Settings(ai_provider="openai", openai_api_key=None))
        with pytest.raises(ExternalServiceError) as exc_info:
            asyncio.run(service.complete("Hi"))
        assert exc_info.value.message == "AI service is not configured"


class TestGenerateTasks:
    """Test task drafting."""

    def test_drafts_parsed(self):
        """Test that drafts are validated and default their optional fields."""
        service = FakeCompletionService([
            '[{"title": "Design schema", "priority": "High"}, {"title": "Write API", "description": "REST"}]'
        ])
        drafts = asyncio.run(ai.generate_tasks(service, "A todo app"))

        assert drafts == [
            {"title": "Design schema", "description": "", "priority": "High"},
            {"title": "Write API", "description": "REST", "priority": "Medium"},
        ]
        assert service.calls[0][1] == ai.TASK_GENERATOR_SYSTEM_MESSAGE
        assert "A todo app" in service.calls[0][0]

    def test_invalid_priority_rejected(self):
        service = FakeCompletionService(['[{"title": "X", "priority": "Urgent"}]'])
        with pytest.raises(ExternalServiceError):
            asyncio.run(ai.generate_tasks(service, "A todo app"))


class TestSuggestPriority:
    """Test priority suggestions and their fallback."""

    def test_suggestion(self):
        service = FakeCompletionService(['{"priority": "High", "reasoning": "Due tomorrow"}'])
        assert asyncio.run(ai.suggest_priority(service, "Fix login")) == {
            "priority": "High",
            "reasoning": "Due tomorrow",
        }

    @pytest.mark.parametrize("service", [
        FakeCompletionService(fail=True),
        FakeCompletionService(["no json here"]),
        FakeCompletionService(['{"priority": "Critical", "reasoning": "?"}']),
    ])
    def test_fallback(self, service):
        """Test that any failure yields the default Medium suggestion."""
        assert asyncio.run(ai.suggest_priority(service, "Fix login")) == ai.FALLBACK_PRIORITY


class TestSprintPlan:
    """Test sprint planning."""

    def test_requires_unassigned_tasks(self):
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(ai.generate_sprint_plan(FakeCompletionService(), [], 3, 14))
        assert exc_info.value.message == "No unassigned tasks found for this project"

    def test_plan_mapping(self, db, project, manager, make_task):
        """Test that only sprint-less tasks are offered and the answer is mapped."""
        sprint = crud.create_sprint(db, manager, project.id, {
            "name": "S1", "start_date": models.utcnow(), "end_date": models.utcnow() + timedelta(days=14),
        })
        make_task(project, "Backlog item", priority=models.TaskPriority.HIGH)
        make_task(project, "Already planned", sprint_id=sprint.id)

        tasks = ai.unassigned_tasks(db, project)
        assert [t.title for t in tasks] == ["Backlog item"]

        service = FakeCompletionService([json.dumps({
            "sprintGoal": "Ship the backlog",
            "recommendedTasks": ["Backlog item"],
            "taskDistribution": "One each",
        })])
        plan = asyncio.run(ai.generate_sprint_plan(service, tasks, 2, 10))

        assert plan == {
            "sprint_goal": "Ship the backlog",
            "recommended_tasks": ["Backlog item"],
            "task_distribution": "One each",
        }
        assert "1. Backlog item (Priority: High)" in service.calls[0][0]
        assert "team of 2 people with a 10-day sprint" in service.calls[0][0]

    def test_missing_goal(self):
        service = FakeCompletionService(['{"recommendedTasks": []}'])
        with pytest.raises(ExternalServiceError):
            asyncio.run(ai.generate_sprint_plan(service, [models.Task(title="t", priority="Low")], 1, 7))


class TestIssues:
    """Test issue detection and recommendations."""

    def test_find_delayed_and_stalled(self, db, project, member, make_task):
        """Test that overdue open tasks and old reviews are reported."""
        late = make_task(project, "Late", assigned_to=member.id, due_date=models.utcnow() - timedelta(days=2))
        make_task(project, "Late but done", due_date=models.utcnow() - timedelta(days=2),
                  status=models.TaskStatus.DONE)
        review = make_task(project, "Stuck in review", status=models.TaskStatus.REVIEW)

        issues = ai.find_project_issues(db, project, models.utcnow() + timedelta(days=4))

        assert [t["id"] for t in issues["delayed_tasks"]] == [str(late.id)]
        assert issues["delayed_tasks"][0]["assigned_to"] == "Member"
        assert [t["id"] for t in issues["stalled_reviews"]] == [str(review.id)]
        assert issues["stalled_reviews"][0]["days_since_update"] == 4

    def test_recommendations_fallback(self):
        """Test canned recommendations when the provider is down."""
        issues = {"delayed_tasks": [], "stalled_reviews": []}
        result = asyncio.run(ai.detect_issues(FakeCompletionService(fail=True), issues))
        assert result == {"issues": issues, "recommendations": ai.FALLBACK_RECOMMENDATIONS}

    def test_project_summary(self, db, project, make_task):
        make_task(project, "Done", status=models.TaskStatus.DONE)
        make_task(project, "Open")
        stats = ai.project_statistics(db, project, models.utcnow())
        assert stats == {
            "total_tasks": 2,
            "completed_tasks": 1,
            "delayed_tasks": 0,
            "completion_rate": 50,
            "team_size": 2,
        }

        result = asyncio.run(ai.project_summary(FakeCompletionService(["Healthy."]), project.name, stats))
        assert result == {"summary": "Healthy.", "statistics": stats}


class TestChat:
    def test_context_replaces_message(self):
        """Test prompt selection and the chat system message."""
        service = FakeCompletionService(["A", "B"])
        assert asyncio.run(ai.chat(service, "How do I plan?")) == "A"
        assert asyncio.run(ai.chat(service, "ignored", context="Full context")) == "B"
        assert service.calls == [
            ("How do I plan?", ai.CHAT_SYSTEM_MESSAGE),
            ("Full context", ai.CHAT_SYSTEM_MESSAGE),
        ]
