"""Tests for image acquisition and base64 encoding."""

import base64

import httpx
import pytest

from vision_compare.errors import (
    ConfigurationError,
    ImageDownloadError,
    ImageNotFoundError,
    ImageTooLargeError,
)
from vision_compare.image_processor import (
    ImageRef,
    ImageRefKind,
    decode_base64,
    detect_content_type,
    encode_base64,
    parse_content_type,
)


def test_chunked_encoding_matches_single_pass():
    data = bytes(range(256)) * 300
    assert encode_base64(data, chunk_size=3 * 7) == base64.b64encode(data).decode("ascii")
    assert decode_base64(encode_base64(data)) == data


def test_encode_empty_input():
    assert encode_base64(b"") == ""


def test_chunk_size_must_be_multiple_of_three():
    with pytest.raises(ValueError):
        encode_base64(b"abc", chunk_size=4)


def test_parse_content_type_strips_parameters():
    assert parse_content_type("image/png; charset=binary") == "image/png"
    assert parse_content_type(None) == "image/jpeg"
    assert parse_content_type("") == "image/jpeg"


def test_image_ref_parse():
    assert ImageRef.parse("https://example.com/a.png").kind is ImageRefKind.URL
    assert ImageRef.parse("scans/a.png").kind is ImageRefKind.PATH
    assert str(ImageRef.from_file_id("abc")) == "abc"


def test_detect_content_type_sniffs_without_extension(png_bytes):
    assert detect_content_type(png_bytes, ".jpg") == "image/jpeg"
    assert detect_content_type(png_bytes, "") == "image/png"
    assert detect_content_type(b"not an image", "") == "image/jpeg"


@pytest.mark.asyncio
async def test_fetch_image_reads_body_and_content_type(mock_http, acquirer_factory, png_bytes):
    client, handler = mock_http(
        lambda request: httpx.Response(200, content=png_bytes, headers={"content-type": "image/png"})
    )
    acquirer = acquirer_factory(client)

    image = await acquirer.fetch_image("https://cdn.example.com/a.png")

    assert image.data == png_bytes
    assert image.content_type == "image/png"
    assert handler.last.method == "GET"


@pytest.mark.asyncio
async def test_fetch_image_defaults_to_jpeg(mock_http, acquirer_factory):
    client, _ = mock_http(lambda request: httpx.Response(200, content=b"\xff\xd8\xff"))
    image = await acquirer_factory(client).fetch_image("https://cdn.example.com/a")
    assert image.content_type == "image/jpeg"


@pytest.mark.asyncio
async def test_fetch_image_non_success_status(mock_http, acquirer_factory):
    client, _ = mock_http(lambda request: httpx.Response(404))
    with pytest.raises(ImageDownloadError, match="HTTP 404"):
        await acquirer_factory(client).fetch_image("https://cdn.example.com/missing.png")


@pytest.mark.asyncio
async def test_fetch_image_too_large_by_header(mock_http, acquirer_factory):
    client, _ = mock_http(
        lambda request: httpx.Response(200, content=b"x" * 10, headers={"content-length": "5000"})
    )
    with pytest.raises(ImageTooLargeError) as excinfo:
        await acquirer_factory(client, max_bytes=100).fetch_image("https://cdn.example.com/a.png")
    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_fetch_image_too_large_while_streaming(mock_http, acquirer_factory):
    client, _ = mock_http(lambda request: httpx.Response(200, content=b"x" * 500))
    with pytest.raises(ImageTooLargeError):
        await acquirer_factory(client, max_bytes=100).fetch_image("https://cdn.example.com/a.png")


@pytest.mark.asyncio
async def test_fetch_image_transport_failure_is_download_error(mock_http, acquirer_factory):
    def fail(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = mock_http(fail)
    with pytest.raises(ImageDownloadError) as excinfo:
        await acquirer_factory(client).fetch_image("https://cdn.example.com/a.png")
    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_load_local_path(mock_http, acquirer_factory, image_file, png_bytes):
    client, handler = mock_http(lambda request: httpx.Response(500))
    image = await acquirer_factory(client).load(ImageRef.from_path(image_file))

    assert image.data == png_bytes
    assert image.content_type == "image/png"
    assert handler.requests == []


@pytest.mark.asyncio
async def test_load_missing_path(mock_http, acquirer_factory, tmp_path):
    client, _ = mock_http(lambda request: httpx.Response(500))
    with pytest.raises(ImageNotFoundError):
        await acquirer_factory(client).load(ImageRef.from_path(tmp_path / "nope.png"))


@pytest.mark.asyncio
async def test_file_id_resolution_skips_thumbnails(mock_http, acquirer_factory, tmp_path, png_bytes):
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "thumb_abc-1.jpg").write_bytes(b"thumb")
    (uploads / "abc-1.png").write_bytes(png_bytes)

    client, _ = mock_http(lambda request: httpx.Response(500))
    image = await acquirer_factory(client).load(ImageRef.from_file_id("abc"))

    assert image.data == png_bytes


def test_file_id_rejects_path_traversal(mock_http, acquirer_factory):
    client, _ = mock_http(lambda request: httpx.Response(500))
    with pytest.raises(ImageNotFoundError):
        acquirer_factory(client).resolve_file_id("../secret")


def test_store_upload_round_trips_through_file_id(mock_http, acquirer_factory, image_file, png_bytes):
    client, _ = mock_http(lambda request: httpx.Response(500))
    acquirer = acquirer_factory(client)

    file_id = acquirer.store_upload(image_file)

    stored = acquirer.resolve_file_id(file_id)
    assert stored.suffix == ".png"
    assert stored.read_bytes() == png_bytes


def test_store_upload_rejects_unknown_extension(mock_http, acquirer_factory, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    client, _ = mock_http(lambda request: httpx.Response(500))

    with pytest.raises(ConfigurationError):
        acquirer_factory(client).store_upload(path)
