"""
Review 阶段的 prompt 模板。

约定：
- 模型输出里的 tag（`<finding>`、`<score>`、`<verdict>`）是和 `review/parsing.py` 之间的协议，
  改这里的输出格式时要同步改解析
- prompt 本身用英文，模型对 tag 格式的遵循度更稳定
"""

from __future__ import annotations

from reviewctx.review.models import ExplorationConfig
from reviewctx.review.models import Finding

FINDING_FORMAT = """<finding>
  <severity>critical|major|minor</severity>
  <file>path/to/file.py</file>
  <line>42</line>
  <issue>Brief description of the problem</issue>
  <evidence>Why this is a problem, what could go wrong</evidence>
  <fix>Concrete suggestion to fix</fix>
</finding>"""

FOCUS_INSTRUCTIONS: dict[str, str] = {
    "correctness": """## Focus: Correctness & Spec Compliance

Your ONLY job is to find correctness issues:
- Does the code match the stated intent/spec?
- Logic errors: off-by-one, wrong operators, inverted conditions
- Edge cases: None handling, empty collections, boundary conditions
- Async issues: missing awaits, race conditions
- Error handling: are errors actually handled?

Ignore style, naming, and minor issues. Focus ONLY on correctness.""",
    "security": """## Focus: Security

Your ONLY job is to find security issues:
- Injection vectors: SQL, XSS, command injection
- Auth/AuthZ: missing permission checks, privilege escalation
- Data exposure: logging sensitive data, over-exposing APIs
- Secrets: hardcoded credentials, API keys in code
- Dependencies: known vulnerabilities

Ignore style and correctness. Focus ONLY on security.""",
    "simplicity": """## Focus: Simplicity & Test Coverage

Your ONLY job is to evaluate simplicity and test coverage:
- Over-engineering: unnecessary abstractions, premature optimization
- Complexity: could this be simpler?
- Code duplication: patterns that should be extracted
- Test coverage: are new code paths tested?
- Test quality: do tests actually assert behavior?

Ignore security and minor issues. Focus ONLY on simplicity.""",
}

EXPLORATION_FOCUS_INSTRUCTIONS: dict[str, str] = {
    "security": """## Focus: Security Audit

You are performing a security audit. Look for:
- Injection vulnerabilities (SQL, XSS, command injection)
- Authentication and authorization issues
- Sensitive data exposure
- Hardcoded secrets or credentials
- Missing input validation""",
    "performance": """## Focus: Performance Audit

You are performing a performance audit. Look for:
- N+1 query patterns
- Unbounded data fetching and missing pagination
- Inefficient algorithms (quadratic loops)
- Blocking operations on hot paths
- Missing caching opportunities""",
    "general": """## Focus: General Code Audit

You are performing a general code audit. Look for:
- Correctness issues and bugs
- Security vulnerabilities
- Performance problems
- Code complexity and maintainability
- Test coverage gaps""",
}

SINGLE_PASS_SKILL_PROMPT = """You are a pragmatic code auditor. Your job is to find real risks in the change - fast.

## What to check
- Secrets, debug leftovers, dead code
- Correctness: intent vs. implementation, off-by-one, inverted conditions, unawaited async calls
- Security: injection, missing permission checks, data exposure
- Simplicity: duplication, unnecessary abstractions
- Tests: are new code paths and error paths covered?

## Output
- Group issues as Critical (MUST fix), Should Fix, Consider
- Reference every issue as **file:line** with a concrete fix
- Critical = could cause outage, data loss, security breach
- If no issues are found, say so clearly

Always end with exactly one line:
<verdict>SHIP|NEEDS_WORK|MAJOR_RETHINK</verdict>"""


def build_focused_prompt(focus: str, context_xml: str) -> str:
    """单个 focus agent 的 prompt：只关注一个视角，按 `<finding>` 格式输出。"""
    instructions = FOCUS_INSTRUCTIONS.get(focus) or f"## Focus: {focus}\n\nReview the code for issues related to {focus}."
    return f"""You are a code review specialist focused on {focus}.

{instructions}

## Output Format

For each issue found, output in this exact format:
{FINDING_FORMAT}

If you find no issues in your focus area, output:
<no-issues focus="{focus}" />

## Context

{context_xml}"""


def _finding_xml(index: int, finding: Finding) -> str:
    line = finding.line if finding.line is not None else "unknown"
    return (
        f'<finding id="{index}">\n'
        f"  <severity>{finding.severity}</severity>\n"
        f"  <file>{finding.file}</file>\n"
        f"  <line>{line}</line>\n"
        f"  <issue>{finding.issue}</issue>\n"
        f"  <evidence>{finding.evidence or ''}</evidence>\n"
        f"  <fix>{finding.fix or ''}</fix>\n"
        f"  <focus>{finding.focus}</focus>\n"
        "</finding>"
    )


def build_scoring_prompt(findings: list[Finding]) -> str:
    """打分 prompt：所有 finding 一次发出，id 是它们在列表里的下标。"""
    findings_xml = "\n\n".join(_finding_xml(i, f) for i, f in enumerate(findings))
    return f"""You are a code review quality assurance specialist.

Your job is to score the confidence of each finding on a scale of 0-100:
- 90-100: Definite issue, clear evidence, high impact
- 70-89: Likely issue, good reasoning, moderate impact
- 50-69: Possible issue, some evidence, lower impact
- Below 50: Uncertain, speculative, or false positive

## Scoring Criteria

1. Is there concrete evidence for this issue?
2. Is this a real problem or a style preference?
3. Could this actually cause bugs/security issues?
4. Is the fix actionable and correct?

## Output Format

For each finding, output:
<score id="N" confidence="X" />

Where N is the finding ID and X is the confidence score (0-100).

## Findings to Score

{findings_xml}"""


def build_exploration_prompt(config: ExplorationConfig) -> str:
    """exploration 的任务说明（工具调用协议在 agent/prompt.py 的 system prompt 里）。"""
    instructions = EXPLORATION_FOCUS_INSTRUCTIONS[config.focus]
    guidelines = f"\n## Project Guidelines\n\n{config.guidelines}\n" if config.guidelines else ""
    base = f"\nCompare against the base branch `{config.base_branch}` where relevant.\n" if config.base_branch else ""
    return f"""You are a code auditor exploring a codebase to find issues.

{instructions}
{guidelines}{base}
## Exploration Strategy

1. Understand structure: use glob_files and list_dir to find entry points and config files
2. Find relevant code: use grep to search for risky patterns
3. Deep dive: use read_file to examine suspicious files
4. Document findings with file:line references

## Final Answer Format

Your final answer must list every finding in this format:
{FINDING_FORMAT}

Then a summary and the verdict:
<summary>
  <files_examined>N</files_examined>
  <findings_count>M</findings_count>
  <risk_level>low|medium|high</risk_level>
</summary>

<verdict>SHIP|NEEDS_WORK|MAJOR_RETHINK</verdict>

## Important

- Focus on real issues, not style preferences
- Stop when you've covered the important areas
- Maximum {config.max_iterations} tool calls allowed

## Root Path

The codebase is at: {config.root_path}

Begin your exploration."""


def build_single_pass_prompt(skill_prompt: str, user_prompt: str, context_xml: str) -> str:
    """user_prompt 为空时省略 User Request 一节（请求已经在 context 的 <prompt> 里）。"""
    request = f"## User Request\n\n{user_prompt}\n\n" if user_prompt.strip() else ""
    return f"""{skill_prompt}

{request}## Context

{context_xml}"""
