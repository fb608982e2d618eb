"""Global pytest configuration."""

import os

# Force the scripted gateway and in-memory sessions before any imports
os.environ.setdefault("LLM_PROVIDER", "stub")
os.environ.setdefault("SESSION_BACKEND", "memory")
