"""HTML page rendering."""

from caravanhub.views.pages import escape_html, format_when

__all__ = ["escape_html", "format_when"]
