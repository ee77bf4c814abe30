"""
Helper Utilities Module.

Small, generic helpers shared across the reconciler.

Functions:
    - ensure_directory: Create directory if it doesn't exist
    - generate_timestamp: Generate formatted timestamps
    - safe_filename: Sanitize filenames for filesystem
    - to_decimal: Parse loosely formatted money/quantity values
    - round_money: Round to cents, half-up
    - utcnow: Timezone-aware current time
    - significant_words: Word sets for fuzzy name comparison
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from pathlib import Path
from typing import Any, Optional, Union

CENTS = Decimal("0.01")


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists.

    Returns:
        Path object pointing to the directory.

    Example:
        >>> ensure_directory("outputs/reports")
        PosixPath('outputs/reports')
    """
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def generate_timestamp(format_str: str = "%Y%m%d_%H%M%S") -> str:
    """
    Generate a formatted timestamp string.

    Example:
        >>> generate_timestamp("%Y-%m-%d")
        "2026-01-21"
    """
    return datetime.now().strftime(format_str)


def safe_filename(filename: str, replacement: str = "_") -> str:
    """
    Sanitize a filename by replacing characters invalid on common filesystems.

    Example:
        >>> safe_filename("Trumps Pty/Ltd: 1042.xlsx")
        "Trumps Pty_Ltd_ 1042.xlsx"
    """
    invalid_chars = r'[<>:"/\\|?*\x00-\x1f]'
    sanitized = re.sub(invalid_chars, replacement, filename)
    sanitized = sanitized.strip('. ')

    if not sanitized:
        sanitized = "unnamed"

    return sanitized


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert a recognizer value to Decimal.

    Accepts numbers and strings such as ``"$1,234.50"`` or ``"18.15/ea"``.
    Returns None when nothing numeric can be read.

    Example:
        >>> to_decimal("$1,234.50")
        Decimal('1234.50')
        >>> to_decimal("n/a") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    match = re.search(r'-?\d[\d,]*(?:\.\d+)?|-?\.\d+', str(value))
    if not match:
        return None

    try:
        return Decimal(match.group(0).replace(',', ''))
    except InvalidOperation:
        return None


def round_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """Round a monetary value to cents using half-up rounding."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


def catalog_name_key(name: str) -> str:
    """Case and whitespace insensitive form of a product name."""
    return ' '.join((name or '').split()).lower()


def significant_words(text: str, stopwords=()) -> set:
    """
    Lowercase word set used for fuzzy name comparison.

    Digit-only tokens, single characters and stopwords are ignored.

    Example:
        >>> sorted(significant_words("Byron Chai Spiced Tea 500g (12)"))
        ['500g', 'byron', 'chai', 'spiced', 'tea']
    """
    ignored = {w.lower() for w in stopwords}
    return {
        token for token in re.findall(r'[a-z0-9]+', (text or '').lower())
        if len(token) > 1 and not token.isdigit() and token not in ignored
    }
