from typing import Any

from core.types_registry import NodeCategory, get_type
from nodes.base.base_node import Base


class TextInput(Base):
    """Emits one workflow item carrying a static text value as json.text."""

    inputs = {}
    outputs = {"items": get_type("WorkflowItemList")}
    default_params = {"value": ""}
    params_meta = [{"name": "value", "type": "textarea", "default": ""}]

    CATEGORY = NodeCategory.IO

    async def _execute_impl(self, inputs: dict[str, Any]) -> dict[str, Any]:
        value = self.params.get("value")
        return {"items": [{"json": {"text": "" if value is None else str(value)}}]}
