"""Form submission handlers."""

from caravanhub.handlers.forms import FormHandler, FormResult

__all__ = ["FormHandler", "FormResult"]
