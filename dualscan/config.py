"""Configuration management for the dual-model extraction service."""
import logging
import os
from typing import Optional, Tuple
from pathlib import Path
from dotenv import load_dotenv

from dualscan.constants import (
    ENV_GEMINI_KEY,
    ENV_OPENAI_KEY,
    ENV_GEMINI_MODEL_ID,
    ENV_OPENAI_MODEL_ID,
    ENV_BACKEND_TIMEOUT,
    ENV_BACKEND_MAX_TOKENS,
    ENV_DETECTION_ARBITER,
    ENV_UPLOAD_DIR,
    ENV_LOG_DIR,
    ENV_LOG_LEVEL,
    BACKEND_GEMINI,
    BACKEND_OPENAI,
    BACKENDS,
    DEFAULT_GEMINI_MODEL_ID,
    DEFAULT_OPENAI_MODEL_ID,
    DEFAULT_BACKEND_TIMEOUT,
    DEFAULT_BACKEND_MAX_TOKENS,
    DEFAULT_DETECTION_ARBITER,
    DEFAULT_UPLOAD_DIR,
    DEFAULT_LOG_DIR,
    DEFAULT_LOG_LEVEL,
    DEFAULT_HOST,
    DEFAULT_PORT
)


class Config:
    """Application configuration."""
    
    def __init__(self) -> None:
        """Initialize configuration by loading environment variables."""
        # Load .env file if it exists
        env_path = Path(__file__).parent.parent / ".env"
        if env_path.exists():
            load_dotenv(env_path)
        else:
            load_dotenv()
    
    @property
    def gemini_api_key(self) -> Optional[str]:
        """Get Gemini API key."""
        return os.getenv(ENV_GEMINI_KEY)
    
    @property
    def openai_api_key(self) -> Optional[str]:
        """Get OpenAI API key."""
        return os.getenv(ENV_OPENAI_KEY)
    
    @property
    def gemini_model_id(self) -> str:
        """Get Gemini model ID."""
        return os.getenv(ENV_GEMINI_MODEL_ID, DEFAULT_GEMINI_MODEL_ID)
    
    @property
    def openai_model_id(self) -> str:
        """Get OpenAI model ID."""
        return os.getenv(ENV_OPENAI_MODEL_ID, DEFAULT_OPENAI_MODEL_ID)
    
    @property
    def backend_timeout(self) -> float:
        """Get the per-call timeout for backend requests, in seconds."""
        return float(os.getenv(ENV_BACKEND_TIMEOUT, DEFAULT_BACKEND_TIMEOUT))
    
    @property
    def backend_max_tokens(self) -> int:
        """Get the output token limit for backend requests."""
        return int(os.getenv(ENV_BACKEND_MAX_TOKENS, DEFAULT_BACKEND_MAX_TOKENS))
    
    @property
    def detection_arbiter(self) -> str:
        """Get the backend that merges field detection candidates."""
        arbiter = os.getenv(ENV_DETECTION_ARBITER, DEFAULT_DETECTION_ARBITER).strip().lower()
        return arbiter if arbiter in BACKENDS else DEFAULT_DETECTION_ARBITER
    
    @property
    def upload_dir(self) -> Path:
        """Get the directory where uploaded originals are stored."""
        return Path(os.getenv(ENV_UPLOAD_DIR, DEFAULT_UPLOAD_DIR))
    
    @property
    def log_dir(self) -> Path:
        """Get the directory for the rotating log files."""
        return Path(os.getenv(ENV_LOG_DIR, DEFAULT_LOG_DIR))
    
    @property
    def log_level(self) -> int:
        """Get the console log level; unknown names fall back to INFO."""
        level = logging.getLevelName(os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).strip().upper())
        return level if isinstance(level, int) else logging.INFO
    
    @property
    def host(self) -> str:
        """Get server host."""
        return os.getenv("HOST", DEFAULT_HOST)
    
    @property
    def port(self) -> int:
        """Get server port."""
        return int(os.getenv("PORT", DEFAULT_PORT))
    
    def api_key_for(self, backend: str) -> Optional[str]:
        """Get the API key configured for a backend."""
        if backend == BACKEND_GEMINI:
            return self.gemini_api_key
        if backend == BACKEND_OPENAI:
            return self.openai_api_key
        return None
    
    def validate_backend_credentials(self, backend: str) -> Tuple[bool, Optional[str]]:
        """
        Validate that credentials for a backend are configured.
        
        Args:
            backend: Backend identifier ("gemini" or "openai")
        
        Returns:
            Tuple of (is_valid, error_message)
        """
        if backend not in BACKENDS:
            return False, f"Unknown backend: {backend}"
        
        if not self.api_key_for(backend):
            env_name = ENV_GEMINI_KEY if backend == BACKEND_GEMINI else ENV_OPENAI_KEY
            return False, (
                f"{env_name} environment variable is not set. "
                f"Please configure your {backend} API key."
            )
        
        return True, None


# Global configuration instance
config = Config()
