import asyncio
import logging
import os
from pathlib import Path
from typing import Any

from core.types_registry import BinaryData, NodeCategory, WorkflowItem, get_type
from nodes.base.base_node import Base
from services.binary_data_service import BinaryDataStore, get_binary_data_store

logger = logging.getLogger(__name__)


class SaveBinary(Base):
    """
    Node to save the binary attachments of workflow items to disk.

    Input:
    - items: List[WorkflowItem] - Items whose binary properties are written out

    Output:
    - filepaths: List[str] - Paths of the written files, in item/property order

    Parameters:
    - output_dir: str - Target directory (created if missing)
    - overwrite: bool - Whether to overwrite existing files instead of adding a numeric suffix
    """

    inputs = {"items": get_type("WorkflowItemList")}
    outputs = {"filepaths": list[str]}

    default_params = {
        "output_dir": "output",
        "overwrite": False,
    }

    params_meta = [
        {"name": "output_dir", "type": "text", "default": "output"},
        {"name": "overwrite", "type": "boolean", "default": False},
    ]

    CATEGORY = NodeCategory.IO

    def __init__(self, id: int, params: dict[str, Any], graph_context: dict[str, Any] | None = None):
        super().__init__(id, params, graph_context)
        self.binary_store: BinaryDataStore = get_binary_data_store()

    @staticmethod
    def _file_name(prop_name: str, binary: BinaryData) -> str:
        file_name = os.path.basename(binary.get("file_name") or "")
        if file_name:
            return file_name
        extension = binary.get("file_extension")
        return f"{prop_name}.{extension}" if extension else prop_name

    def _target_path(self, output_dir: Path, file_name: str, reserved: set[Path]) -> Path:
        path = output_dir / file_name
        if self.params.get("overwrite") and path not in reserved:
            return path
        stem, suffix = os.path.splitext(file_name)
        counter = 1
        while path.exists() or path in reserved:
            path = output_dir / f"{stem}_{counter}{suffix}"
            counter += 1
        return path

    async def _execute_impl(self, inputs: dict[str, Any]) -> dict[str, Any]:
        items: list[WorkflowItem] = list(inputs.get("items") or [])
        output_dir = Path(str(self.params.get("output_dir") or "output")).expanduser()
        await asyncio.to_thread(output_dir.mkdir, parents=True, exist_ok=True)

        written: list[Path] = []
        for item in items:
            for prop_name, binary in (item.get("binary") or {}).items():
                content = await self.binary_store.get_binary_bytes(binary)
                path = self._target_path(output_dir, self._file_name(prop_name, binary), set(written))
                await asyncio.to_thread(path.write_bytes, content)
                logger.info(f"SaveBinary: wrote {len(content)} bytes to {path}")
                written.append(path)

        return {"filepaths": [str(p) for p in written]}
