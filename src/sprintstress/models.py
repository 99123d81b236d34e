"""Centralized defaults for runs, roles and timing."""

# Target deployment
DEFAULT_BASE_URL = "https://stock-sprint-frontend.vercel.app"
DEFAULT_API_URL = "https://stock-sprint-backend.onrender.com"

# Persona roles, in the order accounts are assigned to them
ROLES = ("spot", "contract", "loan", "quiz", "minority")

ROLE_LABELS = {
    "spot": "User A",
    "contract": "User B",
    "loan": "User C",
    "quiz": "User D",
    "minority": "User E",
}

# Wall-clock budget per role (seconds). Event-driven roles block on
# operator-triggered mini-games, so they get a longer default.
DEFAULT_ROLE_DURATIONS = {
    "spot": 60,
    "contract": 60,
    "loan": 60,
    "quiz": 600,
    "minority": 600,
}

DEFAULT_TOTAL_USERS = 5
DEFAULT_TEST_END_DAY = 10

# Mobile viewport; the game UI is built for phones
DEFAULT_VIEWPORT = (375, 667)

# Timeouts (milliseconds)
DEFAULT_ACTION_TIMEOUT_MS = 15_000
DEFAULT_NAVIGATION_TIMEOUT_MS = 30_000

# Fixed delay after each persona iteration (seconds)
DEFAULT_SETTLE_SECONDS = 1.0

# Persona policy knobs
DEFAULT_LOAN_INCREMENT = 300
DEFAULT_MINORITY_BET = 100

# Soft tolerance for totalAssets == cash + stockValue - debt
ASSET_TOLERANCE = 0.01
