"""Shared constants for the paw on-disk layout, markers, and limits."""

from __future__ import annotations

PAW_DIR_NAME = ".paw"
AGENTS_DIR_NAME = "agents"
HISTORY_DIR_NAME = "history"
STATUS_HISTORY_DIR_NAME = "status"
CONFIG_FILE_NAME = "config.toml"
LOG_FILE_NAME = "log"
MERGE_LOCK_FILE_NAME = "merge.lock"

# Per-task files under <agentDir>
STATUS_FILE_NAME = "status"
STATUS_LOCK_FILE_NAME = ".status.lock"
STATUS_SIGNAL_FILE_NAME = ".status-signal"
WINDOW_ID_FILE_NAME = "window_id"
TAB_LOCK_DIR_NAME = ".tab-lock"
SESSION_MARKER_FILE_NAME = ".session-marker"
USER_PROMPT_FILE_NAME = "user-prompt"
SYSTEM_PROMPT_FILE_NAME = "system-prompt"
TASK_FILE_NAME = "task"
OPTIONS_FILE_NAME = ".options.json"
WORKTREE_DIR_NAME = "worktree"

# Window glyphs
EMOJI_WORKING = "\U0001f916"
EMOJI_WAITING = "\U0001f4ac"
EMOJI_DONE = "✅"
EMOJI_WARNING = "⚠️"
EMOJI_NEW = "⭐️"
TASK_EMOJIS = (EMOJI_WORKING, EMOJI_WAITING, EMOJI_DONE, EMOJI_WARNING, EMOJI_NEW)
MAX_WINDOW_NAME_LEN = 20

# Transcript markers
SEGMENT_MARKER = "⏺"
DONE_MARKER = "PAW_DONE"
WAITING_MARKER = "PAW_WAITING"
ASK_USER_QUESTION = "AskUserQuestion"
DONE_MARKER_MAX_DISTANCE = 20
WAITING_MARKER_MAX_DISTANCE = 100
IDLE_PATTERN_LINES = 10

PANE_CAPTURE_LINES = 10000
SUMMARY_MAX_LEN = 8000

TMUX_SOCKET_PREFIX = "paw-"
TMUX_COMMAND_TIMEOUT = 10.0
DISPLAY_MESSAGE_MS = 3000

DEFAULT_MAIN_BRANCH = "main"
MERGE_LOCK_MAX_RETRIES = 30
MERGE_LOCK_RETRY_INTERVAL = 1.0
MERGE_STASH_PREFIX = "paw-merge-"
MERGE_COMMIT_LOG_LIMIT = 20
MERGE_COMMIT_SUBJECT_MAX = 72
CONFLICT_RESOLUTION_TIMEOUT = 600.0
AUTO_COMMIT_ON_TASK_END = "chore: auto-commit on task end\n\n{diffstat}"
AUTO_COMMIT_BEFORE_MERGE = "chore: auto-commit before merge\n\n{diffstat}"
HOOK_TIMEOUT = 300.0

DEPENDENCY_POLL_INTERVAL = 5.0
SEND_INPUT_MAX_ATTEMPTS = 5

# Environment contract for hook invocations
ENV_SESSION_NAME = "SESSION_NAME"
ENV_WINDOW_ID = "WINDOW_ID"
ENV_TASK_NAME = "TASK_NAME"
ENV_PAW_DIR = "PAW_DIR"
ENV_PAW_DEBUG = "PAW_DEBUG"
ENV_STOP_HOOK_GUARD = "PAW_STOP_HOOK"
