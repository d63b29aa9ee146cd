"""Prompt templates for each model role."""

from __future__ import annotations

import json
from typing import Any

from autodev.core.session import Plan, PlanMilestone
from autodev.utils import truncate_with_marker

MAX_DIFF_CHARS = 10_000

ANALYST_TEMPLATE = """You are a senior software architect analyzing a development task.

IDEA:
{idea}

Analyze the idea. If something essential is ambiguous, ask about it.

OUTPUT FORMAT (JSON only):
{{
  "understanding": "Clear explanation",
  "complexity": "low|medium|high",
  "estimated_milestones": 3,
  "requires_planning": true,
  "confidence": 0.9,
  "risks": ["Risk 1"],
  "questions": [],
  "approach": "High-level approach"
}}"""

PLANNER_TEMPLATE = """Create a detailed implementation plan.

IDEA:
{idea}

ANALYSIS:
{analysis}
{answer}
OUTPUT FORMAT (JSON only):
{{
  "milestones": [
    {{
      "name": "Milestone 1",
      "description": "...",
      "files": {{ "create": [], "modify": [], "delete": [] }},
      "dependencies": [],
      "tests": [],
      "rollback": "How to rollback"
    }}
  ],
  "risks": [],
  "success_criteria": [],
  "estimated_time_minutes": 20,
  "confidence": 0.85
}}"""

CODER_TEMPLATE = """Implement code for milestone: {name}

DESCRIPTION:
{description}

YOUR FILES:
{files}

Write complete file contents. Only touch the files listed above.

OUTPUT FORMAT (JSON only):
{{
  "files": [
    {{
      "path": "path/to/file",
      "content": "full file content",
      "explanation": "What this does"
    }}
  ]
}}"""

REVIEWER_TEMPLATE = """Review code changes.

PLAN:
{plan}

CHANGES:
{diff}

OUTPUT FORMAT (JSON only):
{{
  "approved": true,
  "quality_score": 85,
  "issues": [{{"severity": "low|medium|high", "description": "..."}}],
  "summary": "..."
}}"""


def analyst_prompt(idea_content: str) -> str:
    return ANALYST_TEMPLATE.format(idea=idea_content)


def planner_prompt(idea_content: str, analysis: dict[str, Any] | None, answer: str | None = None) -> str:
    answer_block = f"\nHUMAN ANSWER TO PREVIOUS QUESTION:\n{answer}\n" if answer else ""
    return PLANNER_TEMPLATE.format(
        idea=idea_content,
        analysis=json.dumps(analysis or {}, indent=2),
        answer=answer_block,
    )


def coder_prompt(milestone: PlanMilestone, files: list[str]) -> str:
    listing = "\n".join(f"- {f}" for f in files) or "- (choose the files this milestone needs)"
    return CODER_TEMPLATE.format(
        name=milestone.name,
        description=milestone.description or milestone.name,
        files=listing,
    )


def reviewer_prompt(plan: Plan | None, diff: str) -> str:
    plan_json = plan.model_dump_json(indent=2) if plan else "{}"
    return REVIEWER_TEMPLATE.format(plan=plan_json, diff=truncate_with_marker(diff, MAX_DIFF_CHARS))
