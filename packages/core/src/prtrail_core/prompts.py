"""Prompts sent to the review agent.

The system prompt is injected once per agent session; every other prompt is a
single turn inside that session. Developer text is passed through
sanitize_delimiters before it is interpolated, so it cannot close the quoted
block it sits in.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from prtrail_core.safety import sanitize_delimiters

logger = logging.getLogger(__name__)

SCORING_RUBRIC = """## Issue Severity Scoring Rubric (1-10)

Assign a score from 1 to 10 to every issue:

- **1-2 (Nit-picks):** zero impact on execution, security or reliability. Subjective preferences, minor naming.
- **3-4 (Quality & Maintenance):** redundant code, confusing naming, missing documentation on complex public APIs.
- **5-6 (Best Practices & Efficiency):** brittle patterns, unnecessarily heavy code (e.g. a nested loop that could be a dict lookup).
- **7-8 (Logic, Edge Cases & Consistency):** missing edge cases that can fail at runtime, direct violations of AGENTS.md or architectural standards.
- **9-10 (Critical Failures):** SQL injection, missing auth checks, races in payment flows, hardcoded production secrets, mass data loss.

### Scoring Guidelines
- Only report issues at or above the configured `problem_threshold`; stay silent below it.
- Do not bundle low-severity issues together; each issue must meet the threshold on its own.
- Keep suggested refactors proportional to the severity and to the size of the change.
- Promote security findings by +2 points if the repository handles PII or financial data."""

TOOL_USAGE_GUIDELINES = """## Tool Usage Guidelines

**`github_post_review_comment(file, line, body, assessment)`**
- Posts a new review comment. `assessment` must include `finding`, `assessment` and `score` (1-10).
- Comments below `problem_threshold` and duplicates of open threads are filtered automatically.

**`github_reply_to_thread(thread_id, body, is_concession)`**
- Replies on an existing thread. Set `is_concession: true` when accepting the developer's explanation.

**`github_resolve_thread(thread_id, reason)`**
- Closes a thread once the issue is verified as fixed.

**`github_get_run_state()`**
- Returns the current review state: threads with status PENDING, RESOLVED, DISPUTED or ESCALATED.

**`submit_pass_results(pass_number, has_blocking_issues)`**
- Required at the end of every pass. Returns the next pass number.

### Comment Content Rules (CRITICAL)

Comments are posted to GitHub without editing and must be publication-ready:
- no internal reasoning ("let me think...", "wait...", "actually...")
- no self-corrections ("Correction:", "On second thought...")
- no incomplete sentences or trailing thoughts
- always name the file, be self-contained, and describe exactly what to change

If you realise mid-thought that a finding is wrong, do not post it. Re-analyse silently and
only post once the finding is complete and correct. Never create GitHub "suggestion" blocks."""

SYSTEM = f"""# PR Review Agent

You are a Senior Developer conducting a thorough multi-pass code review.

{SCORING_RUBRIC}

{TOOL_USAGE_GUIDELINES}

## Review Philosophy

- Start with the diff, then expand to system impact.
- If code is good, say nothing. Silence is preferred over noise.
- Remember previous suggestions and developer counter-arguments.
- When developers dispute a finding with valid reasoning, concede gracefully.

## Dispute Resolution Protocol

- **Acknowledgment:** developer commits to fixing it. Resolve the thread.
- **Dispute:** re-examine with their context, then concede or maintain your position.
- **Question:** explain in detail and keep the thread open.
- **Out-of-scope:** evaluate the risk of deferring. Scores 9-10 must be rejected unless there is
  zero production risk; scores 7-8 need strong justification; lower scores can usually be deferred.

Always verify developer claims with the exploration tools (read, grep, glob) before deciding.

## Multi-Pass Review Process

You will conduct 3 passes in this single session, with full context preserved between them:

**Pass 1:** Atomic diff review, line-level issues
**Pass 2:** Structural review, broader codebase context
**Pass 3:** Security and compliance audit

Call `submit_pass_results()` at the end of every pass."""

QUESTION_ANSWERING_SYSTEM = """# Code Assistant

You answer developer questions about this repository. You can read any file with `read`,
search with `grep`, and find files with `glob`.

## Response Guidelines

1. Verify every answer against the actual code. Do not guess.
2. Start with a direct answer, then support it with file paths and line numbers
   (e.g. `src/utils/helper.py:42`) and short code snippets.
3. Explain why, not just what.
4. If the answer is not in the code, or the question is ambiguous, say so.

Your response is posted verbatim as a GitHub comment, so use markdown.
Do NOT use tools to post the response; reply with the answer text only."""


def pass_1(files: list[str]) -> str:
    file_list = "\n".join(f"- {f}" for f in files) or "- (no reviewable files)"
    return f"""## Pass 1 of 3: Atomic Diff Review

**Goal:** Review each changed line in isolation: syntax errors, obvious logic errors,
style violations and local performance issues. Do NOT suggest architectural changes in this pass.

If AGENTS.md exists, check its naming, documentation and formatting rules.

**Files changed in this PR ({len(files)} files):**
{file_list}

1. Use `read` to examine each changed file, most critical first.
2. Focus on the actual additions and modifications.
3. Post each issue with `github_post_review_comment`.

When you have completed this pass, call `submit_pass_results(1, has_blocking_issues)`."""


def pass_2() -> str:
    return """## Pass 2 of 3: Structural/Layered Review

**Goal:** Understand how the changes fit the broader codebase. Trace call chains, verify
interface contracts, look for unused imports or exports, and compare with similar patterns.

If AGENTS.md exists, check its module boundaries and file structure rules.

Post structural issues with `github_post_review_comment`.

When you have completed this pass, call `submit_pass_results(2, has_blocking_issues)`."""


def pass_3(security_sensitivity: str) -> str:
    elevated = ""
    if "PII" in security_sensitivity or "Financial" in security_sensitivity:
        elevated = "\n**Note:** Security findings are elevated by +2 points due to sensitive data handling.\n"
    return f"""## Pass 3 of 3: Security & Compliance Audit

**Goal:** Access control issues, data integrity risks, AGENTS.md violations and
architectural standards compliance.

**Security Sensitivity:** {security_sensitivity}
{elevated}
Post security or compliance issues with `github_post_review_comment`.

When you have completed this pass, call `submit_pass_results(3, has_blocking_issues)` to finalize the review."""


def fix_verification(previous_issues: str, new_commits: str) -> str:
    return f"""## Fix Verification for Existing Issues

**Previous Review State:**
{previous_issues}

**Current Revision:**
{new_commits}

1. Verify whether each previous issue is fixed, including fixes made in other files.
2. For each fixed issue call `github_resolve_thread(thread_id, reason)` explaining how it was fixed.
3. Leave unaddressed issues as they are.

This step is ONLY for verifying existing issues. Do NOT post new review comments."""


def dispute_evaluation(thread, developer_response: str, classification: str, escalation_enabled: bool = False) -> str:
    escalation = (
        "\n**Human Escalation:** when both positions have merit, the issue scores 5 or more and "
        "discussion has not settled it, call "
        "`github_escalate_dispute(thread_id, agent_position, developer_position)`.\n"
        if escalation_enabled
        else "\nIf no human reviewers are configured, the developer's opinion takes precedence in a stalemate.\n"
    )
    return f'''## Evaluate Developer Response to Review Comment

**Original Finding:**
- Thread ID: {thread.id}
- Location: {thread.file}:{thread.line}
- Finding: {sanitize_delimiters(thread.assessment.finding)}
- Assessment: {sanitize_delimiters(thread.assessment.explanation)}
- Score: {thread.score}/10

**Developer's Response (classified as: {classification}):**
"""
{sanitize_delimiters(developer_response)}
"""

Re-examine the code with the developer's reasoning in mind.

- **Out of scope (fix later):** weigh the risk of deferring. Scores 1-4 are generally fine,
  5-6 are fine with low business risk, 7-8 need strong justification.
  If deferral is acceptable, reply with `github_reply_to_thread("{thread.id}", "...", false)` asking for it
  to be tracked, then resolve. Otherwise reply explaining the specific risk and do not resolve.
- **Dispute:** verify the developer's claims with read, grep and glob.
  - To CONCEDE: `github_reply_to_thread("{thread.id}", "You're correct. ...", true)`, then
    `github_resolve_thread("{thread.id}", "Agent conceded - developer explanation is valid")`.
  - To MAINTAIN: `github_reply_to_thread("{thread.id}", "I've reviewed your explanation, but ...", false)`.
    Do NOT resolve the thread.
{escalation}
Be intellectually honest: concede when the developer is right, and focus on actual risk, not preference.'''


def clarify_finding(thread, developer_question: str) -> str:
    return f'''## Clarify Review Finding

The developer is asking for clarification about a finding you raised.

**Your Original Finding:**
- Location: {thread.file}:{thread.line}
- Finding: {sanitize_delimiters(thread.assessment.finding)}
- Assessment: {sanitize_delimiters(thread.assessment.explanation)}

**Developer's Question:**
"""
{sanitize_delimiters(developer_question)}
"""

Explain, don't defend. Find the relevant code, reference files and line numbers, show the
problematic and the correct approach, and explain the implications.

Reply with `github_reply_to_thread("{thread.id}", "<explanation>", false)` and do NOT resolve the thread.'''


def answer_question(
    question: str,
    author: str,
    file_context: dict | None = None,
    changed_files: list[str] | None = None,
    conversation_history: list[dict] | None = None,
) -> str:
    prompt = f'''## Answer Developer Question

**Question from {author}:**
"""
{sanitize_delimiters(question)}
"""
'''
    if file_context:
        location = f"`{file_context['path']}`"
        if file_context.get("line"):
            location += f" at line {file_context['line']}"
        prompt += f"\n**Context:** This question was asked in a comment on {location}.\n"

    if changed_files:
        files = "\n".join(f"- {f}" for f in changed_files)
        prompt += f"\n**PR Context:** This pull request modifies:\n{files}\n"

    if conversation_history:
        turns = "\n".join(
            f"- **{turn['author']}**: {sanitize_delimiters(turn['body'])[:500]}" for turn in conversation_history
        )
        prompt += f"\n**Earlier conversation:**\n{turns}\n"

    prompt += """
1. Work out what the developer is asking.
2. Explore the codebase with read, grep, glob and list.
3. Answer clearly, based on the actual code, citing files and line numbers.

Start exploring the codebase now and provide your answer."""
    return prompt


def format_previous_issues(threads) -> str:
    if not threads:
        return "No open issues."
    return "\n".join(
        f"- [{t.id}] {t.file}:{t.line} (score {t.score}, {t.status}): {sanitize_delimiters(t.assessment.finding)}"
        for t in threads
    )


MAX_DIFF_CHARS = 5000


def new_commits_summary(revision: str, files: list[str] | None = None, diff: str | None = None) -> str:
    """Describe what changed since the last review; without files or diff only the revision is given."""
    if files is None or diff is None:
        return f"New commits since last review:\n- Last reviewed commit: {revision[:7]}\n- Unable to fetch detailed diff"

    if len(diff) > MAX_DIFF_CHARS:
        diff = diff[:MAX_DIFF_CHARS] + "\n... (truncated)"
    return f"""New commits since last review:
- Last reviewed commit: {revision[:7]}
- Files changed: {len(files)}
- Changed files: {", ".join(files)}

**Important:** Use the read, grep and glob tools to verify whether previous issues are addressed.
Cross-file fixes are possible (an issue in file_a.py fixed by a change in file_b.py).

**Diff of new changes:**
```diff
{diff}
```"""


# ---------------------------------------------------------------------- #
# Security sensitivity                                                    #
# ---------------------------------------------------------------------- #

_MANIFESTS = ("package.json", "pyproject.toml", "requirements.txt", "setup.cfg", "Pipfile", "go.mod", "Gemfile")


def _read(path: Path) -> str | None:
    try:
        return path.read_text(errors="replace")
    except OSError:
        return None


def _dependency_text(root: Path) -> str:
    chunks = []
    for name in _MANIFESTS:
        content = _read(root / name)
        if content is None:
            continue
        if name == "package.json":
            try:
                data = json.loads(content)
                deps = {**(data.get("dependencies") or {}), **(data.get("devDependencies") or {})}
                content = json.dumps(deps)
            except (json.JSONDecodeError, AttributeError):
                logger.debug("Could not parse package.json; scanning raw text")
        chunks.append(content)
    return "\n".join(chunks).lower()


def detect_security_sensitivity(workspace_root: str = ".") -> str:
    """Describe how sensitive the repository's data is, from its manifests and README."""
    root = Path(workspace_root)
    indicators = []

    deps = _dependency_text(root)
    if deps:
        if "stripe" in deps or "payment" in deps:
            indicators.append("Financial data (payment processing)")
        if "passport" in deps or "auth" in deps or "jwt" in deps:
            indicators.append("Authentication/Authorization")
        if "encrypt" in deps or "crypto" in deps:
            indicators.append("Encryption/Cryptography")

    readme = _read(root / "README.md") or _read(root / "README.rst") or ""
    readme = readme.lower()
    if readme:
        if "personal" in readme or "pii" in readme or "gdpr" in readme:
            indicators.append("PII (Personally Identifiable Information)")
        if "hipaa" in readme or "health" in readme or "medical" in readme:
            indicators.append("Healthcare data (HIPAA)")
        if "financial" in readme or "banking" in readme or "payment" in readme:
            indicators.append("Financial data")

    if not indicators:
        return "Standard - no special sensitivity detected"
    return f"High sensitivity detected: {', '.join(indicators)}"
