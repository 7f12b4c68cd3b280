# api/index.py
"""
ASGI entry point.

Serverless hosts (and uvicorn: ``uvicorn api.index:app --port $PORT``) look for
a variable named ``app``. Settings come from the environment, with a ``.env``
file in the project root filling in anything unset.
"""
import os

from ingest.app import create_app
from ingest.config import load_settings

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

settings = load_settings(os.path.join(ROOT, ".env"))
app = create_app(settings)
