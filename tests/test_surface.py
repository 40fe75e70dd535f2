import numpy as np
import pytest

from lineocr.domain.errors import EnvironmentCapabilityMissing
from lineocr.domain.image import PixelBuffer
from lineocr.domain.platform import Platform
from lineocr.infrastructure.surface import Surface, create_surface, draw_source, get_context, read_pixels


def test_context_is_cached_per_surface():
    surface = Surface(4, 4)

    assert surface.get_context() is surface.get_context()


def test_worker_gets_offscreen_surfaces():
    surface = create_surface(3, 2, Platform.worker())

    assert surface.offscreen is True
    assert (surface.width, surface.height) == (3, 2)


def test_display_only_platform_gets_display_surface():
    platform = Platform(offscreen_surfaces=False)

    assert create_surface(2, 2, platform).offscreen is False


def test_no_surface_without_capabilities():
    assert Platform.headless().can_draw is False
    with pytest.raises(EnvironmentCapabilityMissing):
        create_surface(2, 2, Platform.headless())


def test_draw_source_scales_to_the_surface():
    platform = Platform.main_thread()
    surface = create_surface(1, 1, platform)
    pixels = np.full((2, 2, 4), 77, dtype=np.uint8)

    draw_source(surface, pixels, 4, 6, platform)
    buffer = read_pixels(surface, platform)

    assert (buffer.width, buffer.height) == (4, 6)
    assert buffer.data.min() == 77 and buffer.data.max() == 77


def test_read_pixels_returns_a_copy():
    platform = Platform.main_thread()
    surface = create_surface(2, 2, platform)

    buffer = read_pixels(surface, platform)
    get_context(surface, platform).put_image_data(PixelBuffer(np.full((2, 2, 4), 5, dtype=np.uint8)))

    assert buffer.data.max() == 0
    assert surface.pixels.max() == 5
