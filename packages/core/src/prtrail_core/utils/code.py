import fnmatch
import logging

logger = logging.getLogger(__name__)

# Binary assets and lockfiles the agent has nothing to say about.
SKIPPED_EXTENSIONS = (
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".mp4",
    ".zip",
    ".tar",
    ".gz",
    ".lock",
)


def is_code_file(path: str) -> bool:
    return not path.lower().endswith(SKIPPED_EXTENSIONS)


def is_excluded(path: str, patterns: list[str]) -> bool:
    """Return True if path matches any exclude pattern.

    A pattern matches as a glob on the full path, as a glob on the basename
    ("*.min.js"), or as a directory anywhere in the path ("migrations/").
    """
    basename = path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(basename, pattern):
            return True
        prefix = pattern.rstrip("/") + "/"
        if path.startswith(prefix) or ("/" + prefix) in path:
            return True
    return False


def reviewable_files(paths: list[str], exclude: list[str]) -> list[str]:
    """Changed files worth listing in the first review pass, order kept."""
    kept = []
    for path in paths:
        if is_excluded(path, exclude) or not is_code_file(path):
            logger.debug("Skipping %s", path)
            continue
        kept.append(path)
    return kept
