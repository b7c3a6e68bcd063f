STATE_DIR_NAME = ".gba"
TREES_DIR_NAME = ".trees"
CONFIG_FILE = "config.yaml"
FEATURES_DIR = "features"
LOGS_DIR = "logs"
RUNS_DIR = "runs"
RECORD_FILE = "phases.yaml"
EVENTS_FILE = "events.jsonl"
DESIGN_SPEC_FILE = "design.md"
SPECS_DIR = "specs"
LOCK_SUFFIX = ".lock"
WINDOWS_LOCK_BYTES = 4096

DEFAULT_AGENT_COMMAND = "claude -p --output-format json --permission-mode {permission_mode} --allowedTools {allowed_tools}"
DEFAULT_AGENT_TIMEOUT_SECONDS = 3600
DEFAULT_HOOK_TIMEOUT_SECONDS = 600
DEFAULT_MAX_ITERATIONS = 3
DEFAULT_MAX_RETRIES = 5  # Hook-fix cycles per phase
DEFAULT_BRANCH_PATTERN = "feat/{id}-{slug}"
DEFAULT_BASE_BRANCH = "main"
DEFAULT_REMOTE = "origin"

LOG_RETENTION_DAYS = 3
MAX_HOOK_OUTPUT_CHARS = 20_000
MAX_DIFF_CHARS = 120_000

PROMPT_CODE_TASK = "code/task"
PROMPT_CODE_RESUME = "code/resume"
PROMPT_HOOK_FIX = "code/hook_fix"
PROMPT_REVIEW_TASK = "review/task"
PROMPT_REVIEW_FIX = "review/fix"
PROMPT_VERIFY_TASK = "verify/task"
PROMPT_VERIFY_FIX = "verify/fix"

ERROR_TYPE_RECORD_MISSING = "record_missing"
ERROR_TYPE_INVALID_RECORD = "invalid_record"
ERROR_TYPE_CONFIG = "config_error"
ERROR_TYPE_AGENT = "agent_error"
ERROR_TYPE_GIT = "git_error"
ERROR_TYPE_HOOK_EXHAUSTED = "hook_exhausted"
ERROR_TYPE_REVIEW_UNRESOLVED = "review_unresolved"
ERROR_TYPE_VERIFICATION_FAILED = "verification_failed"
ERROR_TYPE_CANCELLED = "cancelled"
ERROR_TYPE_UNEXPECTED = "unexpected"

# Resolution steps shown when a run halts
BLOCKING_RESOLUTION_STEPS = {
    ERROR_TYPE_RECORD_MISSING: [
        "Plan the feature first so .gba/features/<slug>/phases.yaml exists.",
    ],
    ERROR_TYPE_INVALID_RECORD: [
        "Fix or regenerate phases.yaml; the runner refuses to overwrite an unreadable record.",
    ],
    ERROR_TYPE_AGENT: [
        "Verify the agent CLI is installed, authenticated, and reachable.",
        "Inspect stderr.log of the latest run under .gba/features/<slug>/runs/.",
    ],
    ERROR_TYPE_GIT: [
        "Check the worktree under .trees/<slug> for conflicts or a detached HEAD.",
        "Check git remote/authentication and the gh CLI login for PR creation.",
    ],
    ERROR_TYPE_HOOK_EXHAUSTED: [
        "Run the failing hook manually inside the worktree and fix the errors.",
        "Re-run the feature; completed phases are skipped.",
    ],
    ERROR_TYPE_REVIEW_UNRESOLVED: [
        "Address the unresolved review issues in the worktree.",
        "Re-run the feature, or set review.proceedOnUnresolved to true.",
    ],
    ERROR_TYPE_VERIFICATION_FAILED: [
        "Run the verification test commands manually and fix the failures.",
        "Re-run the feature once the acceptance criteria hold.",
    ],
    ERROR_TYPE_UNEXPECTED: [
        "Inspect the run log under .gba/logs/<slug>/ for the traceback.",
        "Re-run the feature; persisted progress is kept.",
    ],
}

# Tool permission profile per agent role
AGENT_ALLOWED_TOOLS = {
    "code": ["Read", "Write", "Edit", "Glob", "Grep", "Bash"],
    "review": ["Read", "Glob", "Grep"],
    "verify": ["Read", "Glob", "Grep", "Bash"],
}
