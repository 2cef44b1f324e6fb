import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./disclosures.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "disclosures")
MINIO_SECURE = _flag("MINIO_SECURE")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
WORKER_QUEUE = os.getenv("WORKER_QUEUE", "disclosures")
CELERY_TASK_ALWAYS_EAGER = _flag("CELERY_TASK_ALWAYS_EAGER")
CELERY_TASK_EAGER_PROPAGATES = _flag("CELERY_TASK_EAGER_PROPAGATES")

WEB_BASE_URL = os.getenv("WEB_BASE_URL", "http://localhost:3000")
FILES_BASE_URL = os.getenv("FILES_BASE_URL", "http://localhost:9000/disclosures")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Lifecycle gates
SIGNING_COMPLETION_THRESHOLD = int(os.getenv("SIGNING_COMPLETION_THRESHOLD", "80"))
SHARE_EXPIRY_DAYS = int(os.getenv("SHARE_EXPIRY_DAYS", "30"))
SIGN_REQUIRES_ACKNOWLEDGMENT = _flag("SIGN_REQUIRES_ACKNOWLEDGMENT")
