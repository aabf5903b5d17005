"""Shared test doubles for Buildwright tests."""

from __future__ import annotations

import itertools
from collections import defaultdict
from collections.abc import Sequence
from typing import Any

from buildwright.agents import LanguageModel, LLMResponse, Message, TextBlock, ToolSchema, ToolUseBlock
from buildwright.core.types import TokenUsage

_ids = itertools.count(1)

# A tool only one agent carries identifies that agent
_SIGNATURE_TOOLS = {
    "submit_requirements": "intake",
    "web_search": "research",
    "submit_plan": "architect",
    "write_file": "builder",
    "submit_verification": "verifier",
    "deploy": "deployer",
}


def tool_call(name: str, **arguments: Any) -> LLMResponse:
    """A model turn invoking one tool."""
    return LLMResponse(
        content=[ToolUseBlock(id=f"call_{next(_ids)}", name=name, input=arguments)],
        stop_reason="tool_use",
        usage=TokenUsage(input_tokens=100, output_tokens=20),
    )


def reply(text: str = "Done.") -> LLMResponse:
    """A final model turn with no tool calls."""
    return LLMResponse(
        content=[TextBlock(text=text)],
        stop_reason="end_turn",
        usage=TokenUsage(input_tokens=50, output_tokens=10),
    )


class ScriptedModel(LanguageModel):
    """Language model replaying canned turns per agent.

    Each script entry is an ``LLMResponse`` to return or an exception to
    raise. An exhausted script answers with a plain final reply.
    """

    def __init__(self, scripts: dict[str, list[Any]] | None = None) -> None:
        self.scripts: dict[str, list[Any]] = defaultdict(list, scripts or {})
        self.calls: dict[str, int] = defaultdict(int)
        self.transcripts: dict[str, list[list[Message]]] = defaultdict(list)

    @property
    def provider(self) -> str:
        return "scripted"

    def add(self, agent: str, *entries: Any) -> None:
        self.scripts[agent].extend(entries)

    @staticmethod
    def agent_for(tools: Sequence[ToolSchema]) -> str:
        for tool in tools:
            if tool.name in _SIGNATURE_TOOLS:
                return _SIGNATURE_TOOLS[tool.name]
        return "unknown"

    async def complete(
        self,
        system_prompt: str,
        tools: Sequence[ToolSchema],
        transcript: Sequence[Message],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        agent = self.agent_for(tools)
        self.calls[agent] += 1
        self.transcripts[agent].append(list(transcript))
        script = self.scripts[agent]
        entry = script.pop(0) if script else reply()
        if isinstance(entry, BaseException):
            raise entry
        return entry


REQUIREMENT_TITLES = [
    "Add a todo",
    "List todos",
    "Complete a todo",
    "Delete a todo",
    "Persist todos locally",
]


def todo_requirements(count: int = 5) -> list[dict[str, Any]]:
    return [
        {
            "id": f"REQ-{i:03d}",
            "title": title,
            "priority": "must",
            "acceptance_criteria": [f"{title} works from the main screen"],
        }
        for i, title in enumerate(REQUIREMENT_TITLES[:count], start=1)
    ]


def todo_tasks(requirement_ids: Sequence[str]) -> list[dict[str, Any]]:
    return [
        {"id": f"T{i}", "title": f"Implement {rid}", "requirement_ids": [rid], "files": ["src/app.js"]}
        for i, rid in enumerate(requirement_ids, start=1)
    ]


TODO_FILES = {
    "index.html": "<!doctype html><div id='app'></div><script src='src/app.js'></script>",
    "src/app.js": "const todos = JSON.parse(localStorage.getItem('todos') || '[]');",
    "src/styles.css": "body { font-family: sans-serif; }",
}


def todo_app_model(*, deploy: bool = True) -> ScriptedModel:
    """A model that walks a todo app through every phase successfully."""
    ids = [r["id"] for r in todo_requirements()]
    model = ScriptedModel()
    model.add(
        "intake",
        tool_call(
            "report_confidence",
            prompt_clarity=0.9,
            domain_familiarity=0.9,
            technical_certainty=0.9,
            scope_definition=0.9,
            edge_case_coverage=0.8,
        ),
        tool_call("submit_requirements", summary="A simple todo app", requirements=todo_requirements()),
        reply("Captured 5 requirements."),
    )
    model.add(
        "research",
        tool_call(
            "write_knowledge",
            path="/research/findings",
            content={"summary": "Use localStorage for persistence", "sources": []},
        ),
        reply("Research written."),
    )
    model.add(
        "architect",
        tool_call("submit_plan", summary="Single page app", tech_stack=["html", "js"], tasks=todo_tasks(ids)),
        reply("Plan submitted."),
    )
    model.add(
        "builder",
        *[tool_call("write_file", path=path, content=content) for path, content in TODO_FILES.items()],
        reply("Files written."),
    )
    model.add(
        "verifier",
        tool_call("submit_verification", passed=True, summary="All requirements met"),
        reply("Verified."),
    )
    if deploy:
        model.add("deployer", tool_call("deploy"), reply("Deployed."))
    return model
