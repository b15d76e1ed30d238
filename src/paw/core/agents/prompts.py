"""Prompt builders for one-shot agent invocations."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Status classification
# ---------------------------------------------------------------------------

CLASSIFY_PROMPT = """\
Classify the state of the coding agent session shown in the terminal output below.

Answer with a single word: WORKING or DONE.

- WORKING: the agent is still busy. It is calling tools, running commands or
  tests, editing files, or is partway through streaming a reply.
- DONE: the agent has finished its reply and sits idle at an empty input
  prompt, waiting for the user.

Signs of DONE:
- the last lines show an empty input prompt (❯ or >)
- a status bar mentioning "bypass permissions" or the permission mode
- a "Brewed for Ns" or "Cogitated for Ns" banner followed by the prompt
- a horizontal rule (─────) directly above the empty prompt

Signs of WORKING:
- tool call lines in progress (⏺ Read, ⏺ Edit, ⏺ Bash and similar)
- build or test output still scrolling
- a reply that stops mid-sentence
- an error the agent is still reacting to

Never answer anything other than WORKING or DONE. An idle prompt means DONE.

Task: {task_name}
Recent terminal output:
{transcript}
"""


def build_classification_prompt(task_name: str, transcript: str) -> str:
    return CLASSIFY_PROMPT.format(task_name=task_name, transcript=transcript)


# ---------------------------------------------------------------------------
# Merge conflict resolution
# ---------------------------------------------------------------------------


def build_conflict_resolution_prompt(
    task_name: str,
    task_content: str,
    conflict_files: list[str],
) -> str:
    """Build instructions for resolving squash-merge conflicts in place."""
    file_list = "\n".join(f"  - {f}" for f in conflict_files) if conflict_files else "  (unknown)"

    return f"""ultrathink Merge conflicts need to be resolved in this git repository.

## Conflicted files
{file_list}

## Task
Name: {task_name}
Description:
{task_content or "(no description)"}

## Steps
1. Open every file listed above.
2. Find the conflict markers (`<<<<<<<`, `=======`, `>>>>>>>`).
3. Keep the code that serves the task, combining both sides where they fit together.
4. Save each file once no markers remain.
5. When every file is resolved, stage everything with `git add -A`.

### Rules
- Resolve every file; do not skip or abort.
- Do not stage anything until all conflicts are gone.
- The result must build and run.
"""


def build_auto_resolve_prompt(
    *,
    project_dir: Path,
    task_name: str,
    task_content: str,
    branch: str,
    main_branch: str,
    git_status: str,
) -> str:
    """Build instructions for recovering a merge that failed without reported conflicts."""
    return f"""ultrathink A git squash merge failed and the repository must be made clean again.

## Situation
- Project directory: {project_dir}
- Task branch: {branch}
- Target branch: {main_branch}

## Task
Name: {task_name}
Description:
{task_content or "(no description)"}

## git status
{git_status or "(empty)"}

## Steps
1. Work out from the status above why the merge failed.
2. Look for conflict markers (`<<<<<<<`, `=======`, `>>>>>>>`) in the working tree.
3. Inspect the recent history of both branches.
4. Fix what you find: resolve conflicts, finish or abort a half-done merge, and
   stage files with `git add -A` when needed.
5. If a merge has to be completed, commit it with a suitable message.
6. Finish with a clean repository.

### Rules
- The result must build and run.
- Never leave the repository mid-merge.
- Prefer completing the merge over aborting it.
- If the problem cannot be fixed, say why.
"""


# ---------------------------------------------------------------------------
# Task instruction
# ---------------------------------------------------------------------------


def build_task_instruction(user_prompt_path: Path, *, ultrathink: bool = False) -> str:
    """Build the one-line instruction typed into a freshly started agent."""
    instruction = f"Read and execute the task from '{user_prompt_path}'"
    if ultrathink:
        return f"ultrathink {instruction}"
    return instruction
