"""
Error taxonomy for the RAG core.

  ValidationError     bad caller input, recoverable by the caller
  ProviderError       embedding / generation backend failure (network, auth, rate limit)
  Timeout             a provider call did not finish within the configured bound
  GenerationFailed    a query could not be answered; carries the failing stage
  IngestionError      one document could not be loaded; the batch continues
  ConfigurationError  fatal at startup (missing credentials, unusable index)
"""
from __future__ import annotations

from typing import Optional


class RAGError(Exception):
    """Base class for every error raised by askresearch."""


class ValidationError(RAGError):
    pass


class ProviderError(RAGError):
    pass


class Timeout(ProviderError):
    pass


class GenerationFailed(RAGError):
    def __init__(self, message: str, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


class IngestionError(RAGError):
    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class ConfigurationError(RAGError):
    pass
