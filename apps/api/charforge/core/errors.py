"""
Error taxonomy shared by every module.

Each error carries the envelope fields used by main.py:
  error (code), message, details; status_code picks the HTTP status.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class CharForgeError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}


class ConfigError(CharForgeError):
    """Raised at startup only; never reaches a request."""
    code = "config_error"


class ValidationError(CharForgeError):
    code = "validation_error"
    status_code = 400


class NotFoundError(CharForgeError):
    code = "not_found"
    status_code = 404


class UnsupportedSystemError(CharForgeError):
    # data-integrity bug: the GameSystem enum is closed
    code = "unsupported_system"
    status_code = 500


class GenerationServiceError(CharForgeError):
    code = "generation_service_error"
    status_code = 502


class MalformedResponseError(CharForgeError):
    code = "malformed_response"
    status_code = 502


class StoreUnavailableError(CharForgeError):
    code = "store_unavailable"
    status_code = 503
