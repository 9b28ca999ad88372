"""Constants for the upload queue."""

import os

API_URL = os.getenv("VT_API_URL", "http://localhost:4321/api")

BYTES_PER_MIB = 1024 * 1024

# Resumable transfer defaults
DEFAULT_CHUNK_SIZE = 50 * BYTES_PER_MIB
DEFAULT_RETRY_DELAYS = (0.0, 1.0, 3.0, 5.0, 10.0)
DEFAULT_MAX_CONCURRENT = 3
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_CHUNK_TIMEOUT_SECONDS = 300.0

TUS_VERSION = "1.0.0"
TUS_CONTENT_TYPE = "application/offset+octet-stream"
FINGERPRINT_PREFIX = "tus-py"
FINGERPRINT_MAX_AGE_SECONDS = 7 * 24 * 60 * 60

# Throughput sampling
SPEED_SAMPLE_INTERVAL_SECONDS = 0.5
SPEED_NOISE_FLOOR_MBPS = 0.05

DEFAULT_MIME_TYPE = "application/octet-stream"

# Server record API
DEFAULT_RECORDS_PATH = "/projects/{owner_id}/files"
DEFAULT_RECORD_ID_FIELD = "recordId"
RECORD_ID_METADATA_KEY = "recordId"
AUTH_REFRESH_PATH = "/auth/refresh"

MAX_AUTH_REFRESH_ATTEMPTS = 1

ALLOWED_ASSET_EXTENSIONS = {
    "thumbnail": (".jpg", ".jpeg", ".png"),
    "image": (".jpg", ".jpeg", ".png", ".tif", ".tiff", ".psd", ".ai", ".eps"),
    "audio": (".wav", ".mp3", ".aac", ".flac", ".m4a"),
    "project": (".prproj", ".drp", ".fcpbundle", ".fcpxml"),
    "document": (".pdf", ".txt", ".md", ".doc", ".docx"),
    "archive": (".zip",),
    "video": (".mp4", ".mov", ".avi", ".webm", ".mkv"),
}

THUMBNAIL_CATEGORY = "thumbnail"

ALL_ALLOWED_EXTENSIONS: tuple[str, ...] = tuple(
    dict.fromkeys(ext for group in ALLOWED_ASSET_EXTENSIONS.values() for ext in group)
)
