import os
from typing import Dict, List, Optional, Set
from dotenv import load_dotenv, find_dotenv, set_key, unset_key
from core.types_registry import NodeRegistry, SerialisableGraph

# Keys cached regardless of their name
KNOWN_KEYS = ['DEERAPI_API_KEY', 'DEERAPI_BASE_URL']
KEY_MARKERS = ['API', 'KEY', 'TOKEN', 'SECRET']


def _is_credential_name(key: str) -> bool:
    return any(marker in key.upper() for marker in KEY_MARKERS) or key in KNOWN_KEYS


class APIKeyVault:
    """Singleton class for managing API keys stored in environment variables."""

    _instance = None
    _keys: Dict[str, str] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            # Load environment variables from resolved .env, allowing file to override existing env vars
            load_dotenv(cls._resolve_dotenv_path(), override=True)
            for key, value in os.environ.items():
                if _is_credential_name(key):
                    cls._keys[key] = value
        return cls._instance

    def get(self, key: str) -> Optional[str]:
        """Get an API key by name."""
        return self._keys.get(key) or os.getenv(key)

    def set(self, key: str, value: str) -> None:
        """Set an API key and persist it to the .env file."""
        self._keys[key] = value
        dotenv_path = self._resolve_dotenv_path()
        if not dotenv_path:
            # Create .env file relative to cwd only when no test override provided
            dotenv_path = '.env'
        set_key(dotenv_path, key, value)
        os.environ[key] = value

    def get_all(self) -> Dict[str, str]:
        """Get all API keys."""
        result = self._keys.copy()
        for key, value in os.environ.items():
            if _is_credential_name(key):
                result[key] = value
        return result

    def get_required_for_graph(self, graph: SerialisableGraph, node_registry: NodeRegistry) -> List[str]:
        """Get all required API keys for a given graph.

        Node classes are resolved from the provided registry; a node type the
        registry does not know contributes no keys.
        """
        required_keys: Set[str] = set()

        for node_data in graph.get('nodes', []):
            node_type = node_data.get('type', '')
            cls = node_registry.get(node_type)
            if not cls:
                continue
            keys = getattr(cls, 'required_keys', []) or []
            for key in keys:
                if isinstance(key, str) and key:
                    required_keys.add(key)
        return sorted(required_keys)

    def get_missing_for_graph(self, graph: SerialisableGraph, node_registry: NodeRegistry) -> List[str]:
        """Required keys for the graph that have no non-empty value."""
        return [
            key for key in self.get_required_for_graph(graph, node_registry)
            if not (self.get(key) or '').strip()
        ]

    def unset(self, key: str) -> None:
        """Remove an API key from cache, environment, and .env file."""
        if key in self._keys:
            del self._keys[key]
        if key in os.environ:
            del os.environ[key]
        dotenv_path = self._resolve_dotenv_path()
        if dotenv_path:
            unset_key(dotenv_path, key)
        # No error if key didn't exist or .env missing - idempotent

    @staticmethod
    def _resolve_dotenv_path() -> str:
        """Find the .env file using standard dotenv resolution."""
        return find_dotenv()
