"""
Prompt text for the coding agent, and parsing of what it hands back.

The agent is asked to finish with a PR body fenced by two sentinel lines;
`extract_change_description` pulls it back out of the final result.
"""

from __future__ import annotations

import json
import re
from typing import Any

from vampire.models import FollowUpContext, Job

PR_BODY_START = "---PR_BODY_START---"
PR_BODY_END = "---PR_BODY_END---"

_PR_BODY_RE = re.compile(
    rf"{re.escape(PR_BODY_START)}[ \t]*\n(.*?)\n[ \t]*{re.escape(PR_BODY_END)}",
    re.DOTALL,
)

PREVIOUS_DIFF_LIMIT = 3000
AUTOGEN_FOOTER = "_Auto-generated by Vampire_"


def task_reference(job: Job, title: str) -> str:
    if job.is_direct:
        return f"Task: {title}"
    return f"GitHub Issue #{job.issue_no}: {title}"


def _noun(job: Job) -> str:
    return "task" if job.is_direct else "issue"


def _project_rules(extra: str | None) -> str:
    return f"\n\n── Project rules ──\n{extra}" if extra else ""


def build_prompt(
    job: Job,
    title: str,
    body: str,
    follow_up: FollowUpContext | None = None,
    extra_rules: str | None = None,
    pr_template: str | None = None,
) -> str:
    """First-attempt prompt for a new task or a follow-up on its branch."""
    ref = task_reference(job, title)

    if follow_up:
        previous = ""
        if follow_up.previous_diff:
            previous = f"\nPrevious changes (diff):\n{follow_up.previous_diff[:PREVIOUS_DIFF_LIMIT]}\n"
        prompt = f"""{ref}

── Previous work ──
Code was previously modified for this {_noun(job)} and pushed to branch {follow_up.branch}.
{previous}
── Feedback / Change request ──
{follow_up.message}

── Instructions ──
Apply the feedback above by modifying the code.
You must build on top of the existing changes on this branch.
Do not just analyze — you must actually edit files."""
    else:
        goal = "complete the task" if job.is_direct else "resolve the issue"
        prompt = f"""{ref}

{body}

── Instructions ──
You must write code and modify files to {goal} above.
Do not just analyze or explain — actually create or edit files.
If the {_noun(job)} is ambiguous, use your best judgment to implement a solution."""

    prompt += _project_rules(extra_rules)
    prompt += change_description_instructions(job, pr_template)
    return prompt


def build_retry_prompt(
    job: Job,
    title: str,
    body: str,
    previous_output: str,
    extra_rules: str | None = None,
    pr_template: str | None = None,
) -> str:
    """Prompt for the next attempt after a run that changed nothing."""
    goal = "complete the task" if job.is_direct else "resolve the issue"
    prompt = f"""{task_reference(job, title)}

{body}

── Previous attempt result ──
The previous attempt did not produce any file changes.

Previous agent response:
{previous_output}

── Retry instructions ──
Analyze why the previous attempt failed, then try a different approach to {goal}.
You MUST modify files. Do not just analyze — actually change the code.
If the problem is complex, take a step-by-step approach."""
    prompt += _project_rules(extra_rules)
    prompt += change_description_instructions(job, pr_template)
    return prompt


def change_description_instructions(job: Job, pr_template: str | None = None) -> str:
    if pr_template:
        return f"""

After all code changes are complete, output the PR body in this format:

Between `{PR_BODY_START}` and `{PR_BODY_END}`, fill in the PR template below.
Keep the template structure and replace placeholders with details about this work.

{PR_BODY_START}
{pr_template}
{PR_BODY_END}"""

    issue_line = "" if job.is_direct else f"The issue number is #{job.issue_no}. "
    resolves = "" if job.is_direct else f"Resolves #{job.issue_no}\n\n"
    return f"""

After all code changes are complete, output the PR body in this format:

Between `{PR_BODY_START}` and `{PR_BODY_END}`, write the PR body.
{issue_line}Include what changed and how to verify.

{PR_BODY_START}
{resolves}## Changes
(describe changes)

## How to verify
(verification steps)
{PR_BODY_END}"""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def extract_change_description(output: str) -> str | None:
    match = _PR_BODY_RE.search(output or "")
    if not match:
        return None
    return match.group(1).strip() or None


def default_change_description(job: Job) -> str:
    if job.is_direct:
        return AUTOGEN_FOOTER
    return f"Resolves #{job.issue_no}\n\n{AUTOGEN_FOOTER}"


def pr_title(job: Job, title: str) -> str:
    if job.is_direct:
        return f"{job.type}: {title}"
    return f"{job.type}: {title} (#{job.issue_no})"


def commit_message(job: Job, title: str, co_author: str) -> str:
    return f"{pr_title(job, title)}\n\nCo-Authored-By: {co_author}"


def no_changes_comment(max_retry: int) -> str:
    return (
        f"Vampire: Attempted {max_retry} times but could not produce changes. "
        "Please make the issue description more specific."
    )


# ---------------------------------------------------------------------------
# Log formatting
# ---------------------------------------------------------------------------

def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def summarize_tool_use(name: str, tool_input: dict[str, Any]) -> str:
    """One log line per tool call, e.g. `▸ Editing: src/app.py`."""
    path = tool_input.get("file_path", "")
    if name == "Read":
        return f"▸ Reading: {path}"
    if name == "Edit":
        return f"▸ Editing: {path}"
    if name == "Write":
        return f"▸ Writing: {path}"
    if name == "Bash":
        return f"▸ Running: {_clip(tool_input.get('command', ''), 120)}"
    if name == "Grep":
        return f"▸ Searching: \"{tool_input.get('pattern', '')}\" in {tool_input.get('path') or '.'}"
    if name == "Glob":
        return f"▸ Finding files: {tool_input.get('pattern', '')}"
    return f"▸ {name}: {json.dumps(tool_input, ensure_ascii=False)[:100]}"
