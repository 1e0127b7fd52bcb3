"""Collects image attachments to forward as reference images.

Attachments come either from the item being processed or from the output
items of other named nodes. Collection is best-effort: a node that cannot be
found, or an attachment that cannot be read, is skipped.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Literal

from core.types_registry import BinaryData, BinaryMap, WorkflowItem
from core.workflow_data import WorkflowDataProxy
from services.binary_data_service import BinaryDataNotFoundError, BinaryDataStore, decode_inline

logger = logging.getLogger(__name__)

BinarySourceMode = Literal["current", "specified"]

DEFAULT_BINARY_PROPERTY_NAMES = "data, data0, data1, data2, file, attachment"


@dataclass
class CollectedBinary:
    binary: BinaryMap = field(default_factory=dict)
    # property name -> bytes read ahead of time for attachments from other nodes
    buffers: dict[str, bytes] = field(default_factory=dict)


@dataclass
class ImageData:
    base64: str
    mime_type: str
    file_name: str | None
    content: bytes

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


def parse_name_list(raw: str | None) -> list[str]:
    """Split a comma separated list, trimming whitespace and dropping empties."""
    if not raw:
        return []
    return [part.strip() for part in str(raw).split(",") if part.strip()]


def binary_property_name(index: int) -> str:
    """0 -> data, 1 -> data0, 2 -> data1, ..."""
    if index == 0:
        return "data"
    return f"data{index - 1}"


def _current_item_binary(items: list[WorkflowItem], item_index: int) -> BinaryMap:
    if 0 <= item_index < len(items):
        return dict(items[item_index].get("binary") or {})
    return {}


async def _preread(binary: BinaryData, store: BinaryDataStore) -> bytes | None:
    """Bytes of an attachment from another node: storage first, then inline data."""
    binary_id = binary.get("id")
    if binary_id:
        try:
            return await store.read(binary_id)
        except Exception as e:
            logger.debug(f"BinaryCollector: failed to read {binary_id}, trying inline data: {e}")
    if not binary.get("data"):
        return None
    try:
        return decode_inline(binary)
    except BinaryDataNotFoundError as e:
        logger.debug(f"BinaryCollector: undecodable inline data: {e}")
        return None


async def collect_binary_from_nodes(
    items: list[WorkflowItem],
    item_index: int,
    source_mode: BinarySourceMode,
    specified_nodes: list[str],
    workflow: WorkflowDataProxy,
    store: BinaryDataStore,
) -> CollectedBinary:
    if source_mode == "current":
        return CollectedBinary(binary=_current_item_binary(items, item_index))

    merged: BinaryMap = {}
    buffers: dict[str, bytes] = {}
    binary_index = 0

    for node_name in specified_nodes:
        try:
            node_items = workflow.all(node_name)
            if not node_items:
                continue

            # Pair by item index, falling back to the first item
            target_index = item_index if item_index < len(node_items) else 0
            node_binary = node_items[target_index].get("binary")
            if not node_binary:
                continue

            for binary in node_binary.values():
                prop_name = binary_property_name(binary_index)
                while prop_name in merged:
                    binary_index += 1
                    prop_name = binary_property_name(binary_index)

                merged[prop_name] = binary
                content = await _preread(binary, store)
                if content is not None:
                    buffers[prop_name] = content

                binary_index += 1
        except Exception as e:
            logger.debug(f"BinaryCollector: skipping node '{node_name}': {e}")
            continue

    if not merged:
        return CollectedBinary(binary=_current_item_binary(items, item_index), buffers=buffers)

    logger.debug(f"BinaryCollector: collected {sorted(merged)} from {specified_nodes}")
    return CollectedBinary(binary=merged, buffers=buffers)


async def extract_images_from_binary(
    binary: BinaryMap,
    prop_names: list[str],
    max_images: int,
    buffers: dict[str, bytes] | None,
    store: BinaryDataStore,
) -> list[ImageData]:
    images: list[ImageData] = []
    buffers = buffers or {}

    for prop_name in prop_names:
        if len(images) >= max_images:
            break

        entry = binary.get(prop_name)
        if not entry:
            continue
        mime_type = entry.get("mime_type") or ""
        if not mime_type.startswith("image/"):
            continue

        try:
            if prop_name in buffers:
                content = buffers[prop_name]
            elif entry.get("id"):
                content = await store.read(entry["id"])
            elif entry.get("data"):
                content = decode_inline(entry)
            else:
                continue
        except Exception as e:
            logger.debug(f"BinaryCollector: cannot read image '{prop_name}': {e}")
            continue

        images.append(
            ImageData(
                base64=base64.b64encode(content).decode("ascii"),
                mime_type=mime_type,
                file_name=entry.get("file_name"),
                content=content,
            )
        )

    return images
