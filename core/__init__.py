"""Core package for graph execution, type registries, and utilities.

Modules:
- graph_executor: DAG execution engine for node graphs
- node_registry: Registry for available node classes
- types_registry: Domain types (workflow items, binary data, form fields) and errors
- types_utils: Helpers to describe Python typing information
- workflow_data: Read access to other nodes' output items by node name
- api_key_vault: Credential storage backed by .env
"""

# No explicit imports to avoid circular dependencies
# Import these modules directly (e.g., from core.graph_executor import GraphExecutor)
# instead of from core import graph_executor

__all__ = []
