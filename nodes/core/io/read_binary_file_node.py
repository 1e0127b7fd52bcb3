import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any

from core.types_registry import BinaryMap, NodeCategory, WorkflowItem, get_type
from nodes.base.base_node import Base
from services.binary_collector import binary_property_name, parse_name_list
from services.binary_data_service import BinaryDataStore, get_binary_data_store

logger = logging.getLogger(__name__)


class ReadBinaryFile(Base):
    """
    Reads files from disk and attaches them as binary properties to workflow items.

    Inputs:
    - items: List[WorkflowItem] (optional; files are attached to every item, or to one new item)

    Outputs:
    - items: List[WorkflowItem]

    Parameters:
    - file_paths: str - Comma separated list of files to read
    - property_name: str - Property for the first file; later files use data0, data1, ...
    - mime_type: str - Optional override; guessed from the file name when empty
    """

    inputs = {"items": get_type("WorkflowItemList") | None}
    outputs = {"items": get_type("WorkflowItemList")}

    default_params = {
        "file_paths": "",
        "property_name": "data",
        "mime_type": "",
    }

    params_meta = [
        {"name": "file_paths", "type": "text", "default": "", "placeholder": "images/cat.png, images/dog.jpg"},
        {"name": "property_name", "type": "text", "default": "data"},
        {"name": "mime_type", "type": "text", "default": ""},
    ]

    CATEGORY = NodeCategory.IO

    def __init__(self, id: int, params: dict[str, Any], graph_context: dict[str, Any] | None = None):
        super().__init__(id, params, graph_context)
        self.binary_store: BinaryDataStore = get_binary_data_store()

    def _mime_type_for(self, path: Path) -> str:
        override = str(self.params.get("mime_type") or "").strip()
        if override:
            return override
        guessed, _ = mimetypes.guess_type(path.name)
        return guessed or "application/octet-stream"

    async def _read_files(self) -> BinaryMap:
        paths = [Path(p).expanduser() for p in parse_name_list(self.params.get("file_paths"))]
        if not paths:
            raise ValueError("file_paths is empty")

        first_name = str(self.params.get("property_name") or "data").strip() or "data"
        binary: BinaryMap = {}
        binary_index = 1
        for index, path in enumerate(paths):
            if not path.is_file():
                raise FileNotFoundError(f"File not found: {path}")
            content = await asyncio.to_thread(path.read_bytes)
            if index == 0:
                prop_name = first_name
            else:
                prop_name = binary_property_name(binary_index)
                while prop_name in binary:
                    binary_index += 1
                    prop_name = binary_property_name(binary_index)
                binary_index += 1
            binary[prop_name] = await self.binary_store.prepare_binary_data(
                content, path.name, self._mime_type_for(path)
            )
            logger.debug(f"ReadBinaryFile: {path} -> {prop_name} ({len(content)} bytes)")
        return binary

    async def _execute_impl(self, inputs: dict[str, Any]) -> dict[str, Any]:
        binary = await self._read_files()
        upstream: list[WorkflowItem] = list(inputs.get("items") or [])
        if not upstream:
            return {"items": [{"json": {}, "binary": binary}]}

        items: list[WorkflowItem] = []
        for item in upstream:
            merged = {**(item.get("binary") or {}), **binary}
            items.append({"json": dict(item.get("json") or {}), "binary": merged})
        return {"items": items}
