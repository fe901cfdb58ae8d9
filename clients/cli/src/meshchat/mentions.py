from __future__ import annotations


def is_mention(text: str, alias: str) -> bool:
    """True when ``text`` contains ``@alias`` anywhere.

    This is a plain substring test: ``@bobby`` also mentions ``bob``.
    """

    if not alias or not text:
        return False
    return f"@{alias}" in text
