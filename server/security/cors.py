"""CORS configuration for the CrawlSearch API."""

import logging
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = ["*"]


def get_cors_config(allowed_origins: Optional[List[str]] = None) -> dict:
    """CORS middleware options; permissive unless specific origins are given."""
    origins = list(allowed_origins or DEFAULT_ORIGINS)
    allow_all = "*" in origins

    return {
        "allow_origins": ["*"] if allow_all else origins,
        # Browsers refuse credentials together with a wildcard origin
        "allow_credentials": not allow_all,
        "allow_methods": ["GET", "POST", "DELETE", "OPTIONS"],
        "allow_headers": ["*"],
        "max_age": 600
    }


def setup_cors(app: FastAPI, allowed_origins: Optional[List[str]] = None) -> None:
    """Setup CORS middleware for FastAPI application."""
    config = get_cors_config(allowed_origins)
    app.add_middleware(CORSMiddleware, **config)
    logger.info(f"CORS configured with origins: {config['allow_origins']}")
