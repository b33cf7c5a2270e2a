"""App-wide configuration and environment settings."""

import os
try:
    import streamlit as st
except ImportError:
    st = None
from dotenv import load_dotenv

load_dotenv()  # Load from .env file

def get_secret(key, default=None):
    """Try st.secrets first, then os.getenv."""
    if st is not None:
        try:
            # Accessing st.secrets raises FileNotFoundError if no secrets.toml on local
            if key in st.secrets:
                return st.secrets[key]
        except (FileNotFoundError, AttributeError, KeyError):
            pass
    return os.getenv(key, default)

# LLM (Google Gemini)
GOOGLE_API_KEY = get_secret("GOOGLE_API_KEY", "")
LLM_MODEL = get_secret("LLM_MODEL", "gemini-2.5-flash")
LLM_TEMPERATURE = float(get_secret("LLM_TEMPERATURE", "0.4"))
MODEL_TIMEOUT_SECONDS = float(get_secret("MODEL_TIMEOUT_SECONDS", "90"))

# Form sessions
INACTIVITY_SECONDS = float(os.getenv("INACTIVITY_SECONDS", "30"))
DATABASE_PATH = os.getenv("DATABASE_PATH", "loan_forms.sqlite")
PREVIEW_DIR = os.getenv("PREVIEW_DIR", "generated")

# LangSmith
LANGSMITH_TRACING = os.getenv("LANGSMITH_TRACING", "false").lower() in ("true", "1")
LANGSMITH_PROJECT = os.getenv("LANGSMITH_PROJECT", "loan-forms")

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
