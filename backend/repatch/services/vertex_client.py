"""google-genai clients for the Vertex AI summarizer, one per location.

Credentials come from Application Default Credentials. A .env at the
repository root may set GOOGLE_APPLICATION_CREDENTIALS.
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from google import genai

from repatch.config import settings

load_dotenv(Path(__file__).resolve().parents[3] / ".env")

_clients: dict[str, genai.Client] = {}


def location_for_model(model_id: str) -> str:
    """Preview models are only served from the global endpoint."""
    cfg = settings.google_cloud
    return "global" if model_id in cfg.global_models else cfg.location


def get_vertex_client(location: Optional[str] = None) -> genai.Client:
    """Cached client for ``location`` (defaults to settings.google_cloud.location)."""
    cfg = settings.google_cloud
    location = location or cfg.location
    client = _clients.get(location)
    if client is None:
        client = genai.Client(vertexai=True, project=cfg.project_id or None, location=location)
        _clients[location] = client
    return client
