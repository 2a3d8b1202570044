"""Unit tests for prompt construction and result parsing."""

from vampire.models import FollowUpContext, Job
from vampire.prompts import (
    AUTOGEN_FOOTER,
    PR_BODY_END,
    PR_BODY_START,
    PREVIOUS_DIFF_LIMIT,
    build_prompt,
    build_retry_prompt,
    commit_message,
    default_change_description,
    extract_change_description,
    no_changes_comment,
    pr_title,
    summarize_tool_use,
)

ISSUE_JOB = Job(id=3, issue_no=42, type="fix")
DIRECT_JOB = Job(id=9, issue_title="Add dark mode")


class TestExtractChangeDescription:

    def test_round_trip(self):
        body = "## Changes\n- fixed the button\n\n## How to verify\nclick it"
        output = f"I fixed it.\n{PR_BODY_START}\n{body}\n{PR_BODY_END}\nBye."
        assert extract_change_description(output) == body

    def test_missing_or_broken_markers(self):
        assert extract_change_description("") is None
        assert extract_change_description("no markers here") is None
        assert extract_change_description(f"{PR_BODY_START}\nunterminated") is None

    def test_markers_must_be_on_their_own_lines(self):
        inline = f"Write it between `{PR_BODY_START}` and `{PR_BODY_END}`."
        assert extract_change_description(inline) is None

    def test_first_block_wins(self):
        output = (
            f"{PR_BODY_START}\nfirst\n{PR_BODY_END}\n"
            f"{PR_BODY_START}\nsecond\n{PR_BODY_END}\n"
        )
        assert extract_change_description(output) == "first"

    def test_blank_block(self):
        assert extract_change_description(f"{PR_BODY_START}\n   \n{PR_BODY_END}") is None

    def test_defaults(self):
        assert default_change_description(ISSUE_JOB) == f"Resolves #42\n\n{AUTOGEN_FOOTER}"
        assert default_change_description(DIRECT_JOB) == AUTOGEN_FOOTER


class TestTitles:

    def test_pr_title(self):
        assert pr_title(ISSUE_JOB, "Login is broken") == "fix: Login is broken (#42)"
        assert pr_title(DIRECT_JOB, "Add dark mode") == "feat: Add dark mode"

    def test_commit_message_has_co_author_trailer(self):
        msg = commit_message(ISSUE_JOB, "Login is broken", "Claude <noreply@anthropic.com>")
        assert msg == "fix: Login is broken (#42)\n\nCo-Authored-By: Claude <noreply@anthropic.com>"

    def test_no_changes_comment_mentions_attempts(self):
        assert "Attempted 2 times" in no_changes_comment(2)


class TestBuildPrompt:

    def test_issue_prompt(self):
        prompt = build_prompt(ISSUE_JOB, "Login is broken", "Clicking does nothing")
        assert prompt.startswith("GitHub Issue #42: Login is broken")
        assert "Clicking does nothing" in prompt
        assert "resolve the issue" in prompt
        assert "Resolves #42" in prompt
        assert PR_BODY_START in prompt and PR_BODY_END in prompt

    def test_direct_prompt(self):
        prompt = build_prompt(DIRECT_JOB, "Add dark mode", "Use CSS variables")
        assert prompt.startswith("Task: Add dark mode")
        assert "complete the task" in prompt
        assert "Resolves #" not in prompt

    def test_project_rules_and_template(self):
        prompt = build_prompt(
            DIRECT_JOB, "Add dark mode", "",
            extra_rules="Use tabs.",
            pr_template="## Summary\n<!-- what -->",
        )
        assert "── Project rules ──\nUse tabs." in prompt
        assert "## Summary\n<!-- what -->" in prompt
        assert "fill in the PR template" in prompt

    def test_follow_up_prompt(self):
        follow_up = FollowUpContext(
            branch="fix/42",
            message="Also cover the footer",
            previous_diff="x" * (PREVIOUS_DIFF_LIMIT + 500),
        )
        prompt = build_prompt(ISSUE_JOB, "Login is broken", "ignored body", follow_up=follow_up)
        assert "pushed to branch fix/42" in prompt
        assert "Also cover the footer" in prompt
        assert "ignored body" not in prompt
        assert "x" * PREVIOUS_DIFF_LIMIT in prompt
        assert "x" * (PREVIOUS_DIFF_LIMIT + 1) not in prompt

    def test_retry_prompt_carries_previous_answer(self):
        prompt = build_retry_prompt(ISSUE_JOB, "Login is broken", "body", "The code looks fine to me.")
        assert "Previous agent response:\nThe code looks fine to me." in prompt
        assert "You MUST modify files." in prompt
        assert PR_BODY_START in prompt


class TestSummarizeToolUse:

    def test_known_tools(self):
        assert summarize_tool_use("Read", {"file_path": "a.py"}) == "▸ Reading: a.py"
        assert summarize_tool_use("Edit", {"file_path": "a.py"}) == "▸ Editing: a.py"
        assert summarize_tool_use("Write", {"file_path": "a.ts"}) == "▸ Writing: a.ts"
        assert summarize_tool_use("Grep", {"pattern": "TODO"}) == '▸ Searching: "TODO" in .'
        assert summarize_tool_use("Grep", {"pattern": "x", "path": "src"}) == '▸ Searching: "x" in src'
        assert summarize_tool_use("Glob", {"pattern": "**/*.ts"}) == "▸ Finding files: **/*.ts"

    def test_long_command_is_clipped(self):
        line = summarize_tool_use("Bash", {"command": "y" * 300})
        assert line == "▸ Running: " + "y" * 120 + "..."

    def test_unknown_tool(self):
        line = summarize_tool_use("TodoWrite", {"todos": ["a" * 200]})
        assert line.startswith('▸ TodoWrite: {"todos": ["aaa')
        assert len(line) == len("▸ TodoWrite: ") + 100
