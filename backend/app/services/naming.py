"""Storage name generation for uploaded blobs."""
import os
import random
import re
import time

_RANDOM_CEILING = 10**9

# Extensions outside this shape (overlong, control characters, unicode) are dropped
_SAFE_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,16}$")

_rng = random.SystemRandom()


def generate_storage_name(original_name: str) -> str:
    """Return ``<epoch-millis>-<random>`` plus the original file's extension.

    Only the extension of the client-supplied name survives, so separators or
    traversal segments in it never reach the content directory. An extension
    that is not 1-16 ASCII letters or digits is left off entirely.
    """
    basename = os.path.basename((original_name or "").replace("\\", "/"))
    ext = os.path.splitext(basename)[1]
    if not _SAFE_EXTENSION.match(ext):
        ext = ""
    millis = time.time_ns() // 1_000_000
    return f"{millis}-{_rng.randint(0, _RANDOM_CEILING)}{ext}"
