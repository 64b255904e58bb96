import re
from typing import Iterable, List, Optional

class OMRUtils:
    """
    Static helpers shared by the analysis and grading layers (no I/O).
    """

    # Characters that cannot appear in a folder name on Windows
    _INVALID_FOLDER_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

    @staticmethod
    def append_message(existing: Optional[str], message: str, separator: str = "; ") -> str:
        """
        Append a message to an additive, display-ready error text.

        Args:
            existing: Current text (None or empty means "no message yet").
            message: Message to add.
            separator: Joiner between messages ("; " for sheets, ", " for grades).
        """
        if not existing:
            return message
        return f"{existing}{separator}{message}"

    @staticmethod
    def is_blank(value: Optional[str]) -> bool:
        """True for None, empty or whitespace-only strings."""
        return value is None or not value.strip()

    @staticmethod
    def truncate_id_list(ids: List[str], limit: int = 20) -> str:
        """
        Join the first `limit` ids for display and report how many were left out.

        Example:
            ['1', '2', '3'] with limit 2 -> "1, 2 (+1 more)"
        """
        text = ", ".join(ids[:limit])
        if len(ids) > limit:
            text += f" (+{len(ids) - limit} more)"
        return text

    @staticmethod
    def distinct(values: Iterable[str]) -> List[str]:
        """Remove duplicates while keeping first-seen order."""
        return list(dict.fromkeys(values))

    @staticmethod
    def sanitize_folder_name(name: Optional[str], fallback: str = "Round") -> str:
        """
        Turn a round name into a safe folder name.
        Invalid characters become '_', trailing dots/spaces are dropped.
        """
        if OMRUtils.is_blank(name):
            return fallback

        sanitized = OMRUtils._INVALID_FOLDER_CHARS.sub('_', name)
        sanitized = sanitized.strip().rstrip('.')

        return sanitized if sanitized.strip() else fallback
