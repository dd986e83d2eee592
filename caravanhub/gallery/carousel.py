"""Paged image carousel state."""

from typing import Callable

from caravanhub.config.settings import DEFAULT_PLACEHOLDER


def clamp(n: int, low: int, high: int) -> int:
    return max(low, min(n, high))


class Carousel:
    """Current position in a horizontally paged strip of images.

    Movement is clamped to the ends (no wraparound). An empty image list is
    shown as a single placeholder.
    """

    def __init__(
        self,
        images: list[str] | None = None,
        placeholder: str = DEFAULT_PLACEHOLDER,
        on_open: Callable[[int], None] | None = None,
        viewport_width: float = 1.0,
    ):
        self.placeholder = placeholder
        self.on_open = on_open
        self.viewport_width = viewport_width
        self.scroll_left = 0.0
        self.index = 0
        self._images: list[str] = []
        self.set_images(images or [])

    @property
    def images(self) -> list[str]:
        return self._images if self._images else [self.placeholder]

    @property
    def last_index(self) -> int:
        return max(0, len(self.images) - 1)

    @property
    def current(self) -> str:
        return self.images[self.index]

    @property
    def has_controls(self) -> bool:
        """Prev/next buttons and dots are only shown for more than one image."""
        return len(self.images) > 1

    def set_images(self, images: list[str]):
        """Swap the image list, pulling the index back into range if it shrank."""
        self._images = list(images)
        self.index = clamp(self.index, 0, self.last_index)

    def scroll_to(self, index: int) -> int:
        self.index = clamp(index, 0, self.last_index)
        self.scroll_left = self.index * self.viewport_width
        return self.index

    def prev(self) -> int:
        return self.scroll_to(self.index - 1)

    def next(self) -> int:
        return self.scroll_to(self.index + 1)

    def on_scroll(self, scroll_left: float, viewport_width: float | None = None) -> int:
        """Track the index from a user-driven scroll position."""
        if viewport_width:
            self.viewport_width = viewport_width
        self.scroll_left = scroll_left
        if self.viewport_width <= 0:
            return self.index
        self.index = clamp(round(scroll_left / self.viewport_width), 0, self.last_index)
        return self.index

    def click(self, index: int):
        """An image was clicked; ask the owner to open the lightbox there."""
        if self.on_open is not None:
            self.on_open(clamp(index, 0, self.last_index))
