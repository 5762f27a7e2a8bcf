import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parents[1] / ".env")

# Real-time gateway; empty means the in-process loopback transport
GATEWAY_URL = os.getenv("GATEWAY_URL", "").rstrip("/")
# REST backend used for media upload and history
API_URL = os.getenv("API_URL", "http://localhost:3001").rstrip("/")
AUTH_TOKEN = os.getenv("AUTH_TOKEN", "")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30.0"))

OPERATOR_NAME = os.getenv("OPERATOR_NAME", "Agent")
OPERATOR_SECTOR = os.getenv("OPERATOR_SECTOR", "general")
OPERATOR_ID = os.getenv("OPERATOR_ID", "unknown")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
