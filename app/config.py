import os


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# Transfer policy
TRANSFER_TTL_HOURS = int(os.getenv("TRANSFER_TTL_HOURS", "24"))
DEFAULT_MAX_DOWNLOADS = int(os.getenv("DEFAULT_MAX_DOWNLOADS", "1"))
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", str(2 * 1024 * 1024 * 1024)))
DEFAULT_ALLOWED_MIME_TYPES = [
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/gif",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/zip",
    "application/x-rar-compressed",
    "application/x-7z-compressed",
]
# "*" accepts any non-empty content type
_allowed_mime_env = os.getenv("ALLOWED_MIME_TYPES")
if _allowed_mime_env is None:
    ALLOWED_MIME_TYPES = DEFAULT_ALLOWED_MIME_TYPES
elif _allowed_mime_env.strip() == "*":
    ALLOWED_MIME_TYPES = []
else:
    ALLOWED_MIME_TYPES = _csv(_allowed_mime_env)

# Object storage: "local" or "s3"
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local").lower()
STORAGE_DIR = os.getenv("STORAGE_DIR", "/tmp/keydrop")
AWS_REGION = os.getenv("AWS_REGION")
AWS_S3_BUCKET = os.getenv("AWS_S3_BUCKET")
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")

# Background cleanup
CLEANUP_BATCH_SIZE = int(os.getenv("CLEANUP_BATCH_SIZE", "500"))
CLEANUP_INTERVAL_SECONDS = float(os.getenv("CLEANUP_INTERVAL_SECONDS", "600"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = _csv(os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:8080"))
