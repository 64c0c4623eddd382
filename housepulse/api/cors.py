from __future__ import annotations

from typing import Dict

CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"
CORS_ALLOW_METHODS = "POST, OPTIONS"


def cors_headers(origin: str = "*") -> Dict[str, str]:
    """Fixed header set sent on preflight answers and on every response."""
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
    }
