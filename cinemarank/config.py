"""Runtime configuration for CinemaRank.

All values come from environment variables with development defaults.
"""
import os

ENVIRONMENT = os.getenv("CINEMARANK_ENV", "development").lower()

DB_URL = os.getenv("CINEMARANK_DB_URL", "sqlite:///./cinemarank.db")

# Optimistic transaction retry
TX_MAX_ATTEMPTS = int(os.getenv("CINEMARANK_TX_MAX_ATTEMPTS", "5"))
TX_RETRY_DELAY = float(os.getenv("CINEMARANK_TX_RETRY_DELAY", "0.02"))  # seconds, doubled per attempt

# Sub-score bounds
SCORE_MIN = 0.0
SCORE_MAX = 5.0
SCORE_STEP = 0.5

# Page sizes
REVIEW_PAGE_SIZE = 4
FAVORITES_PAGE_SIZE = 5
CINEMA_PAGE_SIZE = 3
NEARBY_PAGE_SIZE = 8

NEARBY_RADIUS_M = int(os.getenv("CINEMARANK_NEARBY_RADIUS_M", "10000"))
RANKING_LIMIT = 10
