"""
Configuration for FlowBatch Core
"""
import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Configuration class for FlowBatch Core"""

    # Mode: "solo" (local JSON storage) or "prod" (Supabase)
    MODE: str = os.getenv("FLOWBATCH_MODE", "solo")

    # Storage configuration
    STORAGE_PATH: Optional[str] = os.getenv("FLOWBATCH_STORAGE_PATH")
    if STORAGE_PATH is None:
        STORAGE_PATH = str(Path.home() / ".flowbatch-core" / "data")

    # Supabase configuration (for prod mode)
    SUPABASE_URL: Optional[str] = os.getenv("SUPABASE_URL")
    SUPABASE_KEY: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    # Chat-completion backend
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_API_BASE: str = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")

    # API server configuration
    API_HOST: str = os.getenv("FLOWBATCH_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("FLOWBATCH_PORT", "7790"))
    # Comma-separated list; "*" allows every origin
    CORS_ORIGINS: List[str] = [o.strip() for o in os.getenv("FLOWBATCH_CORS_ORIGINS", "*").split(",") if o.strip()]

    # Debug mode (set FLOWBATCH_DEBUG=true to enable)
    DEBUG: bool = os.getenv("FLOWBATCH_DEBUG", "").lower() in ("true", "1", "yes")

    # Execution defaults
    DEFAULT_BATCH_SIZE: int = int(os.getenv("FLOWBATCH_BATCH_SIZE", "3"))
    # Seconds between run termination and node statuses returning to idle
    STATUS_RESET_DELAY: float = float(os.getenv("FLOWBATCH_STATUS_RESET_DELAY", "3.0"))

    # History
    HISTORY_LIMIT: int = int(os.getenv("FLOWBATCH_HISTORY_LIMIT", "50"))
    STALE_RUN_MINUTES: int = int(os.getenv("FLOWBATCH_STALE_RUN_MINUTES", "10"))

    @classmethod
    def validate(cls) -> bool:
        """Validate configuration"""
        if cls.MODE not in ("solo", "prod"):
            print(f"[CONFIG] Error: unknown mode '{cls.MODE}' (expected solo or prod)")
            return False
        if cls.MODE == "prod":
            if not cls.SUPABASE_URL or not cls.SUPABASE_KEY:
                print("[CONFIG] Error: SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required for prod mode")
                return False
        if cls.DEFAULT_BATCH_SIZE < 1:
            print("[CONFIG] Error: FLOWBATCH_BATCH_SIZE must be at least 1")
            return False
        return True

    @classmethod
    def get_storage(cls, mode: Optional[str] = None):
        """Storage backend for a mode (default: Config.MODE)"""
        from src.storage import LocalJSONStorage, SupabaseStorage

        if (mode or cls.MODE) == "prod":
            if not cls.SUPABASE_URL or not cls.SUPABASE_KEY:
                raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required for prod mode")
            return SupabaseStorage(cls.SUPABASE_URL, cls.SUPABASE_KEY)
        else:
            return LocalJSONStorage(cls.STORAGE_PATH)
