# Ensure the `backend` directory is importable so `medscribe.*` resolves
from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

# Add the backend directory to PYTHONPATH so imports like `from medscribe.*` work
ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

# Use an in-memory SQLite DB and throw-away directories during tests unless overridden
_TMP_ROOT = Path(tempfile.mkdtemp(prefix="medscribe-tests-"))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DB_ECHO", "0")
os.environ.setdefault("DATA_ROOT", str(_TMP_ROOT / "data"))
os.environ.setdefault("LOG_DIR", str(_TMP_ROOT / "logs"))
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "0")
