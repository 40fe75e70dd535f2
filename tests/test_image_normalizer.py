import base64
import io

import httpx
import numpy as np
import pytest
from PIL import Image

from stubs import FakeBitmap, FakeCapture
from lineocr.domain.errors import (
    ContextCreationFailure,
    DecodeFailed,
    EnvironmentCapabilityMissing,
    InvalidBitmapDimensions,
    ResourceFetchFailed,
    SourceNotReady,
    UnsupportedInputType,
)
from lineocr.domain.image import (
    BitmapImage,
    CanvasImage,
    ElementImage,
    EncodedImage,
    LineImage,
    PixelBuffer,
    RawImage,
    VideoFrameImage,
)
from lineocr.domain.platform import Platform
from lineocr.infrastructure import image_normalizer
from lineocr.infrastructure.image_normalizer import ImageNormalizer, decode_bitmap, to_image_input
from lineocr.infrastructure.surface import Surface


def _png_bytes(width=3, height=2, color=(255, 0, 0)):
    out = io.BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


def test_raw_bytes_are_copied():
    data = bytearray([1, 2, 3, 4] * 6)
    buffer = ImageNormalizer().normalize(RawImage(data=data, width=3, height=2))

    data[0] = 99

    assert (buffer.width, buffer.height) == (3, 2)
    assert buffer.data[0, 0, 0] == 1


def test_raw_uint8_array_is_reused_without_copy():
    data = np.arange(2 * 2 * 4, dtype=np.uint8)
    buffer = ImageNormalizer().normalize(RawImage(data=data, width=2, height=2))

    assert np.shares_memory(buffer.data, data)
    assert buffer.tobytes() == data.tobytes()


def test_normalize_is_idempotent_on_canonical_input():
    normalizer = ImageNormalizer()
    raw = RawImage(data=bytes(range(16)), width=2, height=2)

    once = normalizer.normalize(raw)
    twice = normalizer.normalize(once)
    again = normalizer.normalize(RawImage(data=once.data, width=once.width, height=once.height))

    assert twice.tobytes() == once.tobytes()
    assert again.tobytes() == once.tobytes()


def test_raw_with_wrong_length_is_rejected():
    with pytest.raises(UnsupportedInputType):
        ImageNormalizer().normalize(RawImage(data=b"\x00" * 7, width=1, height=2))


def test_raw_with_non_positive_dimensions_is_rejected():
    with pytest.raises(UnsupportedInputType):
        ImageNormalizer().normalize(RawImage(data=b"", width=0, height=2))


def test_unknown_value_is_rejected():
    with pytest.raises(UnsupportedInputType):
        ImageNormalizer().normalize(42)


def test_bitmap_is_released_once_on_success():
    bitmap = FakeBitmap(width=2, height=3, color=(1, 2, 3, 255))

    buffer = ImageNormalizer().normalize(BitmapImage(bitmap))

    assert (buffer.width, buffer.height) == (2, 3)
    assert buffer.data[0, 0].tolist() == [1, 2, 3, 255]
    assert bitmap.close_calls == 1


def test_zero_sized_bitmap_fails_and_is_released():
    bitmap = FakeBitmap(width=0, height=0)

    with pytest.raises(InvalidBitmapDimensions):
        ImageNormalizer().normalize(BitmapImage(bitmap))
    assert bitmap.close_calls == 1


def test_bitmap_is_released_when_context_creation_fails():
    def broken_factory(surface):
        raise RuntimeError("no 2d context")

    bitmap = FakeBitmap()
    normalizer = ImageNormalizer(platform=Platform(context_factory=broken_factory))

    with pytest.raises(ContextCreationFailure):
        normalizer.normalize(BitmapImage(bitmap))
    assert bitmap.close_calls == 1


def test_context_factory_returning_nothing_is_a_failure():
    normalizer = ImageNormalizer(platform=Platform(context_factory=lambda surface: None))

    with pytest.raises(ContextCreationFailure):
        normalizer.normalize(BitmapImage(FakeBitmap()))


def test_bitmap_without_any_surface_fails_and_is_released():
    bitmap = FakeBitmap()

    with pytest.raises(EnvironmentCapabilityMissing):
        ImageNormalizer(platform=Platform.headless()).normalize(BitmapImage(bitmap))
    assert bitmap.close_calls == 1


def test_pil_bitmap_becomes_rgba():
    image = Image.new("RGB", (3, 2), (0, 128, 255))

    buffer = ImageNormalizer().normalize(BitmapImage(image))

    assert (buffer.width, buffer.height) == (3, 2)
    assert buffer.data[1, 2].tolist() == [0, 128, 255, 255]


def test_encoded_file_path(tmp_path):
    path = tmp_path / "red.png"
    path.write_bytes(_png_bytes())

    buffer = ImageNormalizer().normalize(to_image_input(str(path)))

    assert (buffer.width, buffer.height) == (3, 2)
    assert buffer.data[0, 0].tolist() == [255, 0, 0, 255]


def test_encoded_data_url():
    url = "data:image/png;base64," + base64.b64encode(_png_bytes(color=(0, 255, 0))).decode()

    buffer = ImageNormalizer().normalize(EncodedImage(url))

    assert buffer.data[1, 1].tolist() == [0, 255, 0, 255]


def test_missing_file_is_a_fetch_failure():
    with pytest.raises(ResourceFetchFailed):
        ImageNormalizer().normalize(EncodedImage("not-a-real-url"))


def test_http_error_is_a_fetch_failure(monkeypatch):
    def failing_get(*args, **kwargs):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(httpx, "get", failing_get)

    with pytest.raises(ResourceFetchFailed):
        ImageNormalizer().normalize(EncodedImage("http://example.invalid/a.png"))


def test_http_fetch_decodes_body(monkeypatch):
    body = _png_bytes(width=4, height=4)

    def fake_get(url, **kwargs):
        return httpx.Response(200, content=body, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx, "get", fake_get)

    buffer = ImageNormalizer().normalize(EncodedImage("https://example.test/img.png"))

    assert (buffer.width, buffer.height) == (4, 4)


def test_undecodable_bytes_fail_to_decode(tmp_path):
    path = tmp_path / "garbage.png"
    path.write_bytes(b"definitely not an image")

    with pytest.raises(DecodeFailed):
        ImageNormalizer().normalize(EncodedImage(path))


def test_encoded_without_decoding_capabilities(tmp_path):
    path = tmp_path / "red.png"
    path.write_bytes(_png_bytes())

    with pytest.raises(EnvironmentCapabilityMissing):
        ImageNormalizer(platform=Platform.headless()).normalize(EncodedImage(path))


def test_encoded_falls_back_to_element_path(tmp_path):
    path = tmp_path / "red.png"
    path.write_bytes(_png_bytes())
    platform = Platform(bitmap_decoding=False)

    buffer = ImageNormalizer(platform=platform).normalize(EncodedImage(path))

    assert buffer.data[0, 0].tolist() == [255, 0, 0, 255]


def test_element_on_main_thread(tmp_path):
    path = tmp_path / "red.png"
    path.write_bytes(_png_bytes())
    element = Image.open(path)

    buffer = ImageNormalizer().normalize(ElementImage(element))

    assert (buffer.width, buffer.height) == (3, 2)


def test_element_is_unavailable_in_worker():
    element = Image.new("RGB", (2, 2))

    with pytest.raises(EnvironmentCapabilityMissing):
        ImageNormalizer(platform=Platform.worker()).normalize(ElementImage(element))


def test_video_frame_is_unavailable_in_worker():
    with pytest.raises(EnvironmentCapabilityMissing):
        ImageNormalizer(platform=Platform.worker()).normalize(VideoFrameImage(FakeCapture()))


def test_video_not_opened_is_not_ready():
    with pytest.raises(SourceNotReady):
        ImageNormalizer().normalize(VideoFrameImage(FakeCapture(opened=False)))


def test_video_without_frame_is_not_ready():
    with pytest.raises(SourceNotReady):
        ImageNormalizer().normalize(VideoFrameImage(FakeCapture(frame=None)))


def test_video_frame_is_converted_from_bgr():
    frame = np.zeros((2, 3, 3), dtype=np.uint8)
    frame[:, :, 2] = 255

    buffer = ImageNormalizer().normalize(VideoFrameImage(FakeCapture(frame=frame)))

    assert (buffer.width, buffer.height) == (3, 2)
    assert buffer.data[0, 0].tolist() == [255, 0, 0, 255]


def test_offscreen_canvas_works_in_worker():
    canvas = Surface(2, 2)
    canvas.pixels[:] = (9, 8, 7, 255)

    buffer = ImageNormalizer(platform=Platform.worker()).normalize(CanvasImage(canvas))

    assert buffer.data[0, 0].tolist() == [9, 8, 7, 255]


def test_display_canvas_is_unavailable_in_worker():
    with pytest.raises(EnvironmentCapabilityMissing):
        ImageNormalizer(platform=Platform.worker()).normalize(CanvasImage(Surface(2, 2, offscreen=False)))


def test_to_image_input_coerces_mappings():
    image = to_image_input({"data": b"\x00" * 4, "width": 1, "height": 1})

    assert isinstance(image, RawImage)
    assert (image.width, image.height) == (1, 1)


def test_to_image_input_rejects_unknown_values():
    with pytest.raises(UnsupportedInputType):
        to_image_input(42)
    with pytest.raises(UnsupportedInputType):
        to_image_input({"data": b"\x00" * 4, "width": "1", "height": 1})


def test_resize_keeps_aspect_ratio():
    normalizer = ImageNormalizer()
    buffer = PixelBuffer(np.zeros((50, 100, 4), dtype=np.uint8))

    by_width = normalizer.resize(buffer, width=40)
    by_height = normalizer.resize(buffer, height=48)

    assert (by_width.width, by_width.height) == (40, 20)
    assert (by_height.width, by_height.height) == (96, 48)


def test_resize_requires_a_dimension():
    buffer = PixelBuffer(np.zeros((2, 2, 4), dtype=np.uint8))

    with pytest.raises(ValueError):
        ImageNormalizer().resize(buffer)


def test_draw_boxes_returns_new_buffer():
    buffer = PixelBuffer(np.zeros((10, 10, 4), dtype=np.uint8))
    line = LineImage(buffer=buffer, box=[[1, 1], [8, 1], [8, 8], [1, 8]])

    drawn = ImageNormalizer().draw_boxes(buffer, [line])

    assert drawn.data[1, 1].tolist() == [255, 0, 0, 255]
    assert buffer.data.max() == 0


def test_oversized_image_is_a_decode_failure(tmp_path, monkeypatch):
    path = tmp_path / "huge.png"
    path.write_bytes(_png_bytes(width=10, height=10))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)

    with pytest.raises(DecodeFailed):
        ImageNormalizer().normalize(EncodedImage(path))


def test_decode_failure_after_open_closes_the_image(monkeypatch):
    class OpenedImage:
        close_calls = 0

        def close(self):
            self.close_calls += 1

    opened = OpenedImage()

    def broken_transpose(image, in_place=False):
        raise OSError("corrupt exif block")

    monkeypatch.setattr(image_normalizer, "_open_lazy", lambda payload: opened)
    monkeypatch.setattr(image_normalizer.ImageOps, "exif_transpose", broken_transpose)

    with pytest.raises(DecodeFailed):
        decode_bitmap(b"payload")
    assert opened.close_calls == 1


def test_int_sequence_raw_data_is_accepted():
    image = to_image_input({"width": 2, "height": 1, "data": [255, 0, 0, 255, 0, 255, 0, 255]})

    buffer = ImageNormalizer().normalize(image)

    assert (buffer.width, buffer.height) == (2, 1)
    assert buffer.data[0, 1].tolist() == [0, 255, 0, 255]


@pytest.mark.parametrize("data", [[256, 0, 0, 0], [-1, 0, 0, 0], [[1, 2], [3, 4]], [0.5, 0, 0, 0]])
def test_bad_int_sequences_are_rejected(data):
    with pytest.raises(UnsupportedInputType):
        ImageNormalizer().normalize(RawImage(data=data, width=1, height=1))
