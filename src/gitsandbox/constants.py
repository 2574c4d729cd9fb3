"""Project-wide constants for the Git sandbox."""

DEFAULT_BRANCH = "main"
REMOTE_NAME = "origin"

BRANCH_COLORS = (
    "#7C3AED",
    "#2563EB",
    "#059669",
    "#D97706",
    "#DC2626",
    "#DB2777",
    "#0891B2",
    "#7C3AED",
)
ACCENT_COLOR = "#7C3AED"

SEED_COMMIT_MESSAGES = (
    "Initial commit",
    "Add README.md",
    "Setup project structure",
)

LANE_WIDTH = 56
ROW_HEIGHT = 76
CANVAS_MARGIN = 16

SHORT_HASH_LENGTH = 7
MIN_ID_PREFIX_LENGTH = 4

STASH_PREFIX = "WIP on "
STASH_FALLBACK_MESSAGE = "Stashed work"
CHERRY_PICK_SUFFIX = " (cherry-picked)"

PROGRESS_KEY = "completedChallengeIds_v1"
DEFAULT_PROGRESS_FILE = "~/.gitsandbox/progress.yaml"
