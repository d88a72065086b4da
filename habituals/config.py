import os


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- RevenueCat ---
    REVENUECAT_WEBHOOK_SECRET = os.environ.get("REVENUECAT_WEBHOOK_SECRET")

    # --- Claim endpoint ---
    CLAIM_RATE_LIMIT = os.environ.get("CLAIM_RATE_LIMIT", "30 per minute")

    # --- Supabase (PostgREST, used by the offline queue repository) ---
    SUPABASE_URL = os.environ.get("SUPABASE_URL")            # e.g. https://xyz.supabase.co
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY")
    SUPABASE_ACCESS_TOKEN = os.environ.get("SUPABASE_ACCESS_TOKEN")  # user JWT for RLS
    SUPABASE_TIMEOUT = float(os.environ.get("SUPABASE_TIMEOUT", 15))
    CLAIM_URL = os.environ.get("CLAIM_URL")  # defaults to SUPABASE_URL/functions/v1/claim

    # --- Offline queue ---
    QUEUE_MAX_ATTEMPTS = int(os.environ.get("QUEUE_MAX_ATTEMPTS", 4))
    QUEUE_BACKOFF_BASE_MS = int(os.environ.get("QUEUE_BACKOFF_BASE_MS", 500))
    QUEUE_BACKOFF_MAX_MS = int(os.environ.get("QUEUE_BACKOFF_MAX_MS", 10_000))
    QUEUE_STORAGE_PATH = os.environ.get(
        "QUEUE_STORAGE_PATH", os.path.expanduser("~/.habituals/queue.json")
    )
    QUEUE_STORAGE_KEY = os.environ.get("QUEUE_STORAGE_KEY", "habituals.queue")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "REVENUECAT_WEBHOOK_SECRET",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, rate limiting off."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    REVENUECAT_WEBHOOK_SECRET = "rc_whsec_test_fake"
    SUPABASE_URL = "http://supabase.test"
    SUPABASE_ANON_KEY = "anon_test_fake"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
