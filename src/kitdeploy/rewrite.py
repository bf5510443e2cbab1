"""Placeholder rewriting for text assets.

Bundled text assets reference sibling assets through a placeholder token.
On copy every occurrence is replaced with the installation root's symbolic
prefix. Replacement always goes through a function so that characters in
the prefix (``\\``, ``\\g<0>``) are inserted literally.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from kitdeploy.fsutil import atomic_copy, atomic_write_bytes
from kitdeploy.layout import PLACEHOLDER_TOKEN, is_text_asset

logger = logging.getLogger(__name__)


def _token_pattern(token: str) -> re.Pattern[str]:
    return re.compile(re.escape(token))


def count_placeholders(text: str, token: str = PLACEHOLDER_TOKEN) -> int:
    return len(_token_pattern(token).findall(text))


def rewrite_placeholders(text: str, replacement: str, token: str = PLACEHOLDER_TOKEN) -> str:
    """Replace every *token* in *text* with *replacement*, taken literally."""
    return _token_pattern(token).sub(lambda _match: replacement, text)


def _decode(content: bytes) -> str | None:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return None


def copy_asset(source: Path, target: Path, replacement: str, *, atomic: bool = False) -> bool:
    """Copy *source* to *target*, rewriting placeholder tokens in text assets.

    Non-text files, undecodable files and text files with no tokens take
    the fast path (``shutil.copy2``) and arrive byte-for-byte unchanged.
    Line endings are preserved either way.

    Args:
        source: Bundle file.
        target: Destination path; parent directories are created.
        replacement: Text substituted for each token (prefix plus ``/``).
        atomic: Write through a temp file + rename so an interrupted copy
            never leaves a half-written *target*.

    Returns:
        True when the content was rewritten.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    text = _decode(source.read_bytes()) if is_text_asset(source) else None
    if text is None or count_placeholders(text) == 0:
        if atomic:
            atomic_copy(source, target)
        else:
            shutil.copy2(source, target)
        return False

    rewritten = rewrite_placeholders(text, replacement).encode("utf-8")
    if atomic:
        atomic_write_bytes(target, rewritten)
    else:
        target.write_bytes(rewritten)
    shutil.copystat(source, target)
    logger.debug("Rewrote placeholders in %s", target)
    return True


def rewrite_in_place(path: Path, replacement: str) -> int:
    """Substitute tokens in an installed file's existing content.

    Returns:
        Number of tokens replaced (0 leaves the file untouched).
    """
    text = _decode(path.read_bytes())
    if text is None:
        return 0
    occurrences = count_placeholders(text)
    if occurrences:
        atomic_write_bytes(path, rewrite_placeholders(text, replacement).encode("utf-8"))
    return occurrences
