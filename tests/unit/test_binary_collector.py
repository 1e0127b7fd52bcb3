import base64

import pytest

from core.workflow_data import WorkflowDataProxy
from services.binary_collector import (
    binary_property_name,
    collect_binary_from_nodes,
    extract_images_from_binary,
    parse_name_list,
)
from services.binary_data_service import BinaryDataStore


def _inline(content: bytes, mime_type: str = "image/png", file_name: str | None = None):
    binary = {"mime_type": mime_type, "data": base64.b64encode(content).decode("ascii")}
    if file_name:
        binary["file_name"] = file_name
    return binary


def _proxy(results: dict, titles: dict[int, str], current: int = 99) -> WorkflowDataProxy:
    nodes = [{"id": node_id, "type": "Any", "title": title} for node_id, title in titles.items()]
    return WorkflowDataProxy({"nodes": nodes, "results": results, "current_node_id": current})


@pytest.fixture
def store():
    return BinaryDataStore()


def test_parse_name_list():
    assert parse_name_list(" data, data0 ,,file ") == ["data", "data0", "file"]
    assert parse_name_list("") == []
    assert parse_name_list(None) == []


def test_binary_property_name():
    assert [binary_property_name(i) for i in range(4)] == ["data", "data0", "data1", "data2"]


@pytest.mark.asyncio
async def test_current_mode_returns_item_binary(store):
    items = [{"json": {}, "binary": {"data": _inline(b"a")}}, {"json": {}}]
    collected = await collect_binary_from_nodes(items, 0, "current", [], _proxy({}, {}), store)
    assert collected.binary == {"data": _inline(b"a")}
    assert collected.buffers == {}

    collected = await collect_binary_from_nodes(items, 1, "current", [], _proxy({}, {}), store)
    assert collected.binary == {}


@pytest.mark.asyncio
async def test_specified_mode_merges_in_node_order(store):
    results = {
        1: {"items": [{"json": {}, "binary": {"file": _inline(b"one"), "other": _inline(b"two")}}]},
        2: {"items": [{"json": {}, "binary": {"data": _inline(b"three")}}]},
    }
    proxy = _proxy(results, {1: "Node A", 2: "Node B"})
    collected = await collect_binary_from_nodes(
        [{"json": {}}], 0, "specified", ["Node A", "Node B"], proxy, store
    )
    assert list(collected.binary) == ["data", "data0", "data1"]
    assert collected.buffers == {"data": b"one", "data0": b"two", "data1": b"three"}


@pytest.mark.asyncio
async def test_specified_mode_pairs_by_index_with_fallback(store):
    results = {
        1: {
            "items": [
                {"json": {}, "binary": {"data": _inline(b"first")}},
                {"json": {}, "binary": {"data": _inline(b"second")}},
            ]
        },
    }
    proxy = _proxy(results, {1: "Source"})
    items = [{"json": {}}, {"json": {}}, {"json": {}}]

    second = await collect_binary_from_nodes(items, 1, "specified", ["Source"], proxy, store)
    assert second.buffers["data"] == b"second"

    third = await collect_binary_from_nodes(items, 2, "specified", ["Source"], proxy, store)
    assert third.buffers["data"] == b"first"


@pytest.mark.asyncio
async def test_specified_mode_skips_missing_nodes(store):
    results = {2: {"items": [{"json": {}, "binary": {"img": _inline(b"ok")}}]}}
    proxy = _proxy(results, {2: "Exists"})
    collected = await collect_binary_from_nodes(
        [{"json": {}}], 0, "specified", ["Missing", "Exists"], proxy, store
    )
    assert collected.buffers == {"data": b"ok"}


@pytest.mark.asyncio
async def test_specified_mode_falls_back_to_current_item(store):
    items = [{"json": {}, "binary": {"data": _inline(b"own")}}]
    proxy = _proxy({1: {"items": [{"json": {}}]}}, {1: "No Binary"})
    collected = await collect_binary_from_nodes(items, 0, "specified", ["No Binary"], proxy, store)
    assert collected.binary == {"data": _inline(b"own")}
    assert collected.buffers == {}


@pytest.mark.asyncio
async def test_specified_mode_reads_filesystem_binaries(tmp_path):
    store = BinaryDataStore("filesystem", tmp_path)
    stored = await store.prepare_binary_data(b"on disk", "a.png", "image/png")
    proxy = _proxy({1: {"items": [{"json": {}, "binary": {"data": stored}}]}}, {1: "Disk"})
    collected = await collect_binary_from_nodes([{"json": {}}], 0, "specified", ["Disk"], proxy, store)
    assert collected.buffers == {"data": b"on disk"}


@pytest.mark.asyncio
async def test_specified_mode_falls_back_to_inline_when_stored_bytes_are_gone(tmp_path):
    store = BinaryDataStore("filesystem", tmp_path)
    binary = {**_inline(b"inline"), "id": "filesystem:gone"}
    proxy = _proxy({1: {"items": [{"json": {}, "binary": {"data": binary}}]}}, {1: "Disk"})
    collected = await collect_binary_from_nodes([{"json": {}}], 0, "specified", ["Disk"], proxy, store)
    assert collected.binary == {"data": binary}
    assert collected.buffers == {"data": b"inline"}


@pytest.mark.asyncio
async def test_extract_images_respects_order_mime_and_limit(store):
    binary = {
        "data": _inline(b"doc", mime_type="application/pdf"),
        "data0": _inline(b"img0", file_name="a.png"),
        "file": _inline(b"img1", mime_type="image/jpeg"),
        "attachment": _inline(b"img2"),
    }
    images = await extract_images_from_binary(
        binary, ["data", "data0", "data1", "file", "attachment"], 2, None, store
    )
    assert [image.content for image in images] == [b"img0", b"img1"]
    assert images[0].file_name == "a.png"
    assert images[0].base64 == base64.b64encode(b"img0").decode("ascii")
    assert images[1].data_url == f"data:image/jpeg;base64,{base64.b64encode(b'img1').decode('ascii')}"


@pytest.mark.asyncio
async def test_extract_images_prefers_buffers(store):
    binary = {"data": {"mime_type": "image/png", "id": "filesystem:gone"}}
    images = await extract_images_from_binary(binary, ["data"], 1, {"data": b"buffered"}, store)
    assert images[0].content == b"buffered"


@pytest.mark.asyncio
async def test_extract_images_skips_unreadable(store):
    binary = {
        "data": {"mime_type": "image/png", "id": "filesystem:gone"},
        "data0": {"mime_type": "image/png", "data": "abc"},
        "data1": _inline(b"good"),
    }
    images = await extract_images_from_binary(binary, ["data", "data0", "data1"], 3, {}, store)
    assert [image.content for image in images] == [b"good"]
