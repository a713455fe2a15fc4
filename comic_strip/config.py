"""
Comic Strip - Runtime configuration.

Values are read from the process environment. Entry points call
load_dotenv() before importing this module so a local .env file applies.
"""

import os

# Provider credentials. API_KEY is accepted for older deployments.
GOOGLE_API_KEY = os.environ.get("GOOGLE_API_KEY") or os.environ.get("API_KEY", "")

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

# Multi-modal text model used for panel prompt synthesis
TEXT_MODEL = os.environ.get("COMIC_TEXT_MODEL", "gemini-2.5-flash")

# Image model used for panel rendering
IMAGE_MODEL = os.environ.get("COMIC_IMAGE_MODEL", "imagen-4.0-generate-001")

# "fail_fast" (one failed panel aborts the strip) or "best_effort"
FAILURE_POLICY = os.environ.get("COMIC_FAILURE_POLICY", "fail_fast")

# Seconds before a single provider call is abandoned
REQUEST_TIMEOUT = float(os.environ.get("COMIC_REQUEST_TIMEOUT", "180"))

# Web server bind address
HOST = os.environ.get("COMIC_HOST", "0.0.0.0")
PORT = int(os.environ.get("COMIC_PORT", "5000"))
