"""Backend location and .env loading; imported first so later modules see the env."""
import os
from pathlib import Path

from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[2]
ENV_FILE = Path(os.getenv("SCANNER_ENV_FILE", str(BACKEND_DIR / ".env")))

load_dotenv(dotenv_path=ENV_FILE)
