"""
Settings loader.

Non-secret settings live in config/config.yaml; the provider credential is
read from the environment (optionally via .env) once at process start.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from askresearch.errors import ConfigurationError

DEFAULT_CONFIG_PATH = "config/config.yaml"


class EmbeddingSettings(BaseModel):
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 512


class GenerationSettings(BaseModel):
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 1024
    follow_up_count: int = 3
    follow_up_answer_chars: int = 500


class RetrievalSettings(BaseModel):
    top_k: int = 3
    source_preview_chars: int = 200


class ProviderSettings(BaseModel):
    request_timeout: float = 30.0


class ChunkingSettings(BaseModel):
    window: int = 1000
    overlap: int = 200
    sample_window: int = 500
    sample_overlap: int = 100


class CorpusSettings(BaseModel):
    mode: Literal["sample", "index"] = "sample"
    index_dir: str = "data/index"


class IngestionSettings(BaseModel):
    documents: list[str] = Field(default_factory=list)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: str = "logs/askresearch.log"


class Settings(BaseModel):
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    corpus: CorpusSettings = Field(default_factory=CorpusSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    openai_api_key: Optional[str] = Field(default=None, repr=False)

    def require_api_key(self) -> str:
        """Return the provider credential or fail fast at startup."""
        if not self.openai_api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is not set. Add it to the environment or a .env file."
            )
        return self.openai_api_key


def load_settings(path: str | Path = DEFAULT_CONFIG_PATH) -> Settings:
    """
    Build Settings from the YAML file plus environment.

    A missing file yields defaults; an unparsable or invalid one raises
    ConfigurationError.
    """
    load_dotenv()

    raw: dict = {}
    config_path = Path(path)
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Cannot parse {config_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    else:
        logger.warning(f"[Config] {config_path} not found, using defaults")

    raw.pop("project", None)

    # Environment overrides
    if os.getenv("ASKRESEARCH_INDEX_DIR"):
        raw.setdefault("corpus", {})["index_dir"] = os.environ["ASKRESEARCH_INDEX_DIR"]
    if os.getenv("ASKRESEARCH_CORPUS_MODE"):
        raw.setdefault("corpus", {})["mode"] = os.environ["ASKRESEARCH_CORPUS_MODE"]
    if os.getenv("ASKRESEARCH_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = os.environ["ASKRESEARCH_LOG_LEVEL"]

    try:
        settings = Settings(**raw, openai_api_key=os.getenv("OPENAI_API_KEY"))
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {exc}") from exc

    logger.debug(
        f"[Config] Loaded {config_path} | corpus={settings.corpus.mode} "
        f"| embedding={settings.embedding.model} | chat={settings.generation.model}"
    )
    return settings
