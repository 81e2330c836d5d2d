"""Text sanitization utilities to prevent XSS and LIKE injection."""

import html


def sanitize_text(value: str | None) -> str | None:
    """Sanitize user-supplied text to prevent stored XSS.

    HTML-escapes dangerous characters (&, <, >, ", ') so that menu names,
    order notes and customer details are safe to render on the dashboard
    and on printed tickets.
    """
    if value is None:
        return None
    return html.escape(value.strip(), quote=True)


def escape_like(value: str) -> str:
    """Escape %, _ and the escape character itself for use in a LIKE pattern."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def like_pattern(value: str) -> str:
    """Build a contains-pattern for ``ilike(..., escape="\\\\")``."""
    return f"%{escape_like(value.strip())}%"
