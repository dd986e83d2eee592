"""Full-screen image viewer with wraparound and keyboard navigation."""

from typing import Callable

from caravanhub.config.settings import DEFAULT_PLACEHOLDER

KeyListener = Callable[[str], None]


class KeyboardEvents:
    """Registry of global key listeners (the page-level keydown target)."""

    def __init__(self):
        self._listeners: list[KeyListener] = []

    def add_listener(self, listener: KeyListener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: KeyListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, key: str):
        for listener in list(self._listeners):
            listener(key)


class Lightbox:
    """Modal viewer: closed, or open at an index into its images.

    next/prev wrap around. Arrow keys are only handled while open: the key
    listener is attached on open and removed on close.
    """

    def __init__(self, keyboard: KeyboardEvents | None = None, placeholder: str = DEFAULT_PLACEHOLDER):
        self.keyboard = keyboard or KeyboardEvents()
        self.placeholder = placeholder
        self.images: list[str] = []
        self.start_index = 0
        self.index = 0
        self.is_open = False

    @property
    def current(self) -> str:
        if not self.images:
            return self.placeholder
        return self.images[self.index]

    def open(self, images: list[str], start_index: int = 0):
        """Open (or reopen) at start_index."""
        self.images = list(images) if images else [self.placeholder]
        self.start_index = start_index
        self.index = start_index if 0 <= start_index < len(self.images) else 0
        if not self.is_open:
            self.is_open = True
            self.keyboard.add_listener(self.handle_key)

    def set_start_index(self, start_index: int):
        self.start_index = start_index
        self.index = start_index if 0 <= start_index < len(self.images) else 0

    def set_images(self, images: list[str]):
        self.images = list(images)
        if self.images and self.index >= len(self.images):
            self.index = 0

    def close(self):
        if self.is_open:
            self.is_open = False
            self.keyboard.remove_listener(self.handle_key)

    def next(self) -> int:
        self.index = (self.index + 1) % len(self.images) if self.images else 0
        return self.index

    def prev(self) -> int:
        n = len(self.images)
        self.index = (self.index - 1 + n) % n if n else 0
        return self.index

    def click(self) -> int:
        return self.next()

    def handle_key(self, key: str):
        if not self.is_open:
            return
        if key == "ArrowRight":
            self.next()
        elif key == "ArrowLeft":
            self.prev()

    def neighbours(self) -> tuple[int, int]:
        """Indexes reached by prev and next from the current position."""
        n = len(self.images)
        if not n:
            return 0, 0
        return (self.index - 1 + n) % n, (self.index + 1) % n
