from __future__ import annotations

import pytest
from _fakes import FakeAgent

from paw.core.agents.claude import ClaudeError
from paw.core.config import ClassifierConfig
from paw.core.models.enums import TaskStatus
from paw.core.services.classifier import AIClassifier, ClassificationError, StatusClassifier

ATTEMPTS = ClassifierConfig().attempts


async def test_escalates_past_timeout_and_garbage_then_stops() -> None:
    agent = FakeAgent(
        [
            ClaudeError("claude haiku failed", timed_out=True),
            "blah",
            "WORKING",
            "DONE",
        ]
    )

    decision = await AIClassifier(agent, ATTEMPTS).classify("fix-login", "⏺ thinking...")

    assert decision.status is TaskStatus.WORKING
    assert decision.attempt == 3
    assert decision.model == "opus"
    assert [call["model"] for call in agent.calls] == ["haiku", "sonnet", "opus"]
    assert len(agent.responses) == 1


async def test_attempts_carry_model_thinking_and_timeout() -> None:
    agent = FakeAgent([ClaudeError("x"), ClaudeError("x"), ClaudeError("x"), "DONE"])

    decision = await AIClassifier(agent, ATTEMPTS).classify("t", "out")

    assert decision.attempt == 4
    assert decision.model == "opus (thinking)"
    assert [(c["model"], c["thinking"], c["timeout"]) for c in agent.calls] == [
        ("haiku", False, 60.0),
        ("sonnet", False, 120.0),
        ("opus", False, 180.0),
        ("opus", True, 240.0),
    ]


async def test_prompt_includes_task_name_and_transcript() -> None:
    agent = FakeAgent(["DONE"])

    await AIClassifier(agent, ATTEMPTS).classify("add-cache", "❯ idle prompt here")

    prompt = agent.calls[0]["prompt"]
    assert isinstance(prompt, str)
    assert "add-cache" in prompt
    assert "❯ idle prompt here" in prompt


async def test_all_attempts_failing_raises() -> None:
    agent = FakeAgent(["?", "??", ClaudeError("boom"), "maybe"])

    with pytest.raises(ClassificationError):
        await AIClassifier(agent, ATTEMPTS).classify("t", "out")


async def test_status_classifier_falls_back_to_working_when_ai_fails() -> None:
    agent = FakeAgent(["?", "?", "?", "?"])
    classifier = StatusClassifier(ai=AIClassifier(agent, ATTEMPTS))

    result = await classifier.classify("t", "⏺ compiling module 7")

    assert result.status is TaskStatus.WORKING
    assert result.source == "default"
    assert len(agent.calls) == 4


async def test_rule_match_never_calls_the_agent() -> None:
    agent = FakeAgent(["WORKING"])
    classifier = StatusClassifier(ai=AIClassifier(agent, ATTEMPTS))

    result = await classifier.classify("t", "⏺ all done\nPAW_DONE")

    assert result.status is TaskStatus.DONE
    assert result.source == "done_marker_rule"
    assert agent.calls == []


async def test_ai_result_reports_attempt() -> None:
    agent = FakeAgent(["nonsense", "DONE"])
    classifier = StatusClassifier(ai=AIClassifier(agent, ATTEMPTS))

    result = await classifier.classify("t", "⏺ some output")

    assert result.status is TaskStatus.DONE
    assert result.source == "ai"
    assert result.attempt == 2
