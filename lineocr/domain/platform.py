from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class Platform:
    """Drawing and decoding capabilities of the current execution context.

    Injected into the surface and normalizer layers instead of probing
    globals, so a worker-like context can be described explicitly.
    """

    offscreen_surfaces: bool = True
    display_surfaces: bool = True
    element_api: bool = True
    bitmap_decoding: bool = True
    context_factory: Optional[Callable[[Any], Any]] = None

    @property
    def can_draw(self) -> bool:
        return self.offscreen_surfaces or self.display_surfaces

    @staticmethod
    def main_thread() -> "Platform":
        return Platform()

    @staticmethod
    def worker() -> "Platform":
        return Platform(offscreen_surfaces=True, display_surfaces=False, element_api=False)

    @staticmethod
    def headless() -> "Platform":
        return Platform(
            offscreen_surfaces=False,
            display_surfaces=False,
            element_api=False,
            bitmap_decoding=False,
        )
