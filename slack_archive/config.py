"""Configuration management for Slack Archive.

Manages all application settings including:
- Slack credentials used by the CLI
- Database connection (SQLite by default, PostgreSQL in production)
- Rate limiting, retry and concurrency settings for ingestion
- File paths and logging configuration
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file in project root
project_root = Path(__file__).parent.parent
load_dotenv(dotenv_path=project_root / '.env')


class Config:
    """Application configuration loaded from environment variables and defaults."""
    
    # Slack API Tokens
    SLACK_BOT_TOKEN = os.getenv("SLACK_BOT_TOKEN", "")
    
    # Data directories
    BASE_DIR = project_root
    DATA_DIR = BASE_DIR / os.getenv("DATA_DIR", "data")
    FILES_DIR = BASE_DIR / os.getenv("FILES_DIR", "data/files")
    LOGS_DIR = BASE_DIR / "logs"
    
    # Database
    # SQLite for dev, PostgreSQL for production
    DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'slack_archive.db'}")
    
    # Rate limiting (requests per minute)
    TIER_2_RATE_LIMIT = 20
    TIER_3_RATE_LIMIT = 50
    TIER_4_RATE_LIMIT = int(os.getenv("TIER_4_RATE_LIMIT", "100"))
    DEFAULT_RATE_LIMIT = int(os.getenv("DEFAULT_RATE_LIMIT", "50"))
    # conversations.history / replies: 1 req/min for non-Marketplace apps
    HISTORY_RATE_LIMIT = int(os.getenv("HISTORY_RATE_LIMIT", "50"))
    
    # Pagination
    DEFAULT_PAGE_SIZE = 200  # Maximum for most methods
    
    # Retries and timeouts
    MAX_RETRIES = int(os.getenv("MAX_RETRIES", "5"))
    RETRY_MIN_WAIT = float(os.getenv("RETRY_MIN_WAIT", "1"))
    RETRY_MAX_WAIT = float(os.getenv("RETRY_MAX_WAIT", "60"))
    SLACK_API_TIMEOUT = int(os.getenv("SLACK_API_TIMEOUT", "30"))
    CIRCUIT_BREAKER_THRESHOLD = int(os.getenv("CIRCUIT_BREAKER_THRESHOLD", "5"))
    
    # Ingestion
    THREAD_REPLY_CONCURRENCY = int(os.getenv("THREAD_REPLY_CONCURRENCY", "4"))
    FETCH_MISSING_USERS = os.getenv("FETCH_MISSING_USERS", "false").lower() == "true"
    
    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE", "logs/slack_archive.log")
    FAILURES_LOG_FILE = os.getenv("FAILURES_LOG_FILE", "logs/failures.log")
    
    @classmethod
    def create_directories(cls):
        """Create necessary directories if they don't exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.FILES_DIR.mkdir(parents=True, exist_ok=True)
        cls.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    
    @classmethod
    def validate(cls):
        """Validate required configuration."""
        errors = []
        
        if not cls.SLACK_BOT_TOKEN:
            errors.append("SLACK_BOT_TOKEN is required")
        
        if cls.THREAD_REPLY_CONCURRENCY < 1:
            errors.append("THREAD_REPLY_CONCURRENCY must be at least 1")
        
        if cls.CIRCUIT_BREAKER_THRESHOLD < 1:
            errors.append("CIRCUIT_BREAKER_THRESHOLD must be at least 1")
        
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")
        
        return True


# Rate limit tiers for the API methods used by ingestion
RATE_LIMIT_TIERS = {
    # Tier 4
    "team.info": Config.TIER_4_RATE_LIMIT,
    "users.info": Config.TIER_4_RATE_LIMIT,
    
    # Tier 3
    "conversations.join": Config.TIER_3_RATE_LIMIT,
    
    # Tier 2
    "conversations.list": Config.TIER_2_RATE_LIMIT,
    "users.list": Config.TIER_2_RATE_LIMIT,
    
    # Special - conversations.history has special limits
    "conversations.history": Config.HISTORY_RATE_LIMIT,
    "conversations.replies": Config.HISTORY_RATE_LIMIT,
    
    # Default for unknown methods
    "default": Config.DEFAULT_RATE_LIMIT,
}

def get_rate_limit_for_method(method_name: str) -> int:
    """Get the per-minute budget for a Slack API method."""
    return RATE_LIMIT_TIERS.get(method_name, RATE_LIMIT_TIERS["default"])
