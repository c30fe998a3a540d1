"""Runtime settings read from the environment."""

import os

# Accepted spellings for boolean environment flags
_TRUTHY = {"1", "true", "yes", "on"}


def env_bool(name: str, default: bool = False) -> bool:
    """Read a boolean flag from the environment.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or empty.

    Returns:
        True if the variable holds one of 1/true/yes/on (case-insensitive).
    """
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in _TRUTHY


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Resolution of preview rasters (72 dpi = one pixel per PDF point)
PREVIEW_DPI = int(os.getenv("PREVIEW_DPI", "72"))

# 0 keeps every rendered page for the lifetime of the session
RENDER_CACHE_MAX_PAGES = int(os.getenv("RENDER_CACHE_MAX_PAGES", "0"))

# Fail the export instead of dropping pages whose source file was removed
EXPORT_STRICT_MISSING_FILES = env_bool("EXPORT_STRICT_MISSING_FILES")

# Maximum file size for uploads (50MB)
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(50 * 1024 * 1024)))

# Maximum number of files in a single batch upload
MAX_BATCH_SIZE = int(os.getenv("MAX_BATCH_SIZE", "100"))

ARCHIVE_COMPRESSLEVEL = int(os.getenv("ARCHIVE_COMPRESSLEVEL", "6"))
