"""Image carousel and lightbox."""

from caravanhub.gallery.carousel import Carousel
from caravanhub.gallery.lightbox import KeyboardEvents, Lightbox

__all__ = ["Carousel", "KeyboardEvents", "Lightbox"]
