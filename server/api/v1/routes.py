"""API v1 HTTP routes."""

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from core.api_key_vault import APIKeyVault
from core.graph_executor import GraphExecutor
from core.node_registry import NODE_REGISTRY
from core.types_registry import NodeCategory, ParamMeta
from core.types_utils import parse_type

from ..schemas import (
    APIError,
    APIKeysResponse,
    DeleteAPIKeyRequest,
    DeleteAPIKeyResponse,
    ExecuteGraphRequest,
    ExecuteGraphResponse,
    NodesResponse,
    SetAPIKeyRequest,
    SetAPIKeyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/nodes", response_model=NodesResponse, summary="List Node Metadata")
def list_nodes() -> NodesResponse:
    """Get metadata for all registered nodes.

    Returns information about node inputs, outputs, parameters (including their
    display conditions), categories, required API keys, and descriptions.
    """
    nodes_meta: dict[str, dict[str, Any]] = {}

    for name, cls in NODE_REGISTRY.items():
        inputs_meta = {k: parse_type(v) for k, v in cls.inputs.items()}
        outputs_meta = {k: parse_type(v) for k, v in cls.outputs.items()}
        params: list[ParamMeta] = getattr(cls, "params_meta", [])

        category = getattr(cls, "CATEGORY", NodeCategory.BASE)

        nodes_meta[name] = {
            "inputs": inputs_meta,
            "outputs": outputs_meta,
            "params": params,
            "category": str(getattr(category, "value", category)),
            "required_keys": getattr(cls, "required_keys", []),
            "description": (
                (cls.__doc__ or "").strip().splitlines()[0] if getattr(cls, "__doc__", None) else ""
            ),
        }

    return NodesResponse(nodes=nodes_meta)


@router.get("/api_keys", response_model=APIKeysResponse, summary="Get API Keys")
def get_api_keys() -> APIKeysResponse:
    """Get all stored API keys.

    Returns a map of API key names to their values.
    """
    vault = APIKeyVault()
    return APIKeysResponse(keys=vault.get_all())


@router.post("/api_keys", response_model=SetAPIKeyResponse, summary="Set API Key")
async def set_api_key(request: SetAPIKeyRequest) -> SetAPIKeyResponse:
    """Store an API key in the vault. Keys are persisted to the .env file."""
    vault = APIKeyVault()
    vault.set(request.key_name, request.value)
    return SetAPIKeyResponse()


@router.delete("/api_keys", response_model=DeleteAPIKeyResponse, summary="Delete API Key")
async def delete_api_key(request: DeleteAPIKeyRequest) -> DeleteAPIKeyResponse:
    """Remove an API key from the vault and the .env file."""
    vault = APIKeyVault()
    vault.unset(request.key_name)
    return DeleteAPIKeyResponse()


@router.post(
    "/execute",
    response_model=ExecuteGraphResponse,
    responses={400: {"model": APIError}},
    summary="Execute Graph",
)
async def execute_graph(request: ExecuteGraphRequest):
    """Run a serialised graph to completion and return every node's outputs.

    Fails with 400 before running anything when a node's required API keys
    are missing or the graph cannot be built.
    """
    graph: Any = request.graph
    vault = APIKeyVault()
    missing_keys = vault.get_missing_for_graph(graph, NODE_REGISTRY)
    if missing_keys:
        error = APIError(
            error=f"Missing API keys: {', '.join(missing_keys)}",
            code="MISSING_API_KEYS",
            missing_keys=missing_keys,
        )
        return JSONResponse(status_code=400, content=error.model_dump(exclude_none=True))

    try:
        executor = GraphExecutor(graph, NODE_REGISTRY)
    except (ValueError, KeyError) as e:
        error = APIError(error=f"Invalid graph: {e}", code="INVALID_GRAPH")
        return JSONResponse(status_code=400, content=error.model_dump(exclude_none=True))

    results = await executor.execute()
    logger.info(f"Executed graph {graph.get('id', '')} with {len(results)} node results")
    return ExecuteGraphResponse(results={str(node_id): output for node_id, output in results.items()})
