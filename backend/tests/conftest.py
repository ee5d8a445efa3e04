"""Root conftest — shared test configuration."""

import os

# Ensure tests never reach a real database or identity map
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///test.db",
)
os.environ.setdefault("API_TOKENS", "{}")
os.environ.setdefault("LOG_FORMAT", "text")
