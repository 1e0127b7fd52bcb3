# core/node_registry.py
# This module handles discovery of node classes from the node directories.

from typing import List
import os
import importlib
import inspect
import logging
from core.types_registry import NodeRegistry
from nodes.base.base_node import Base

logger = logging.getLogger(__name__)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def _module_name(path: str) -> str:
    rel_path = os.path.relpath(path, start=PROJECT_ROOT)
    return rel_path.replace(os.sep, '.').rsplit('.py', 1)[0]


def load_nodes(directories: List[str]) -> NodeRegistry:
    """
    Loads all concrete subclasses of Base from the given directories.

    Args:
        directories: Paths relative to the project root (e.g. 'nodes/core').

    Returns:
        Dictionary mapping node class names to their types.

    Modules are imported by their dotted package path so a node class is the
    same object whether it comes from the registry or a direct import.
    Abstract classes and __init__.py files are skipped.
    """
    registry: NodeRegistry = {}
    for dir_path in directories:
        base_dir = dir_path if os.path.isabs(dir_path) else os.path.join(PROJECT_ROOT, dir_path)
        if not os.path.isdir(base_dir):
            logger.warning(f"Node directory not found: {base_dir}")
            continue
        for root, subdirs, files in os.walk(base_dir):
            subdirs[:] = sorted(d for d in subdirs if not d.startswith(('.', '__')))
            for filename in sorted(files):
                if not filename.endswith('.py') or filename == '__init__.py':
                    continue
                module_name = _module_name(os.path.join(root, filename))
                module = importlib.import_module(module_name)
                for name, obj in vars(module).items():
                    if (
                        isinstance(obj, type)
                        and issubclass(obj, Base)
                        and obj is not Base
                        and not inspect.isabstract(obj)
                        and obj.__module__ == module.__name__
                    ):
                        registry[name] = obj
    logger.debug(f"Loaded {len(registry)} node types: {sorted(registry)}")
    return registry


NODE_REGISTRY: NodeRegistry = load_nodes(['nodes/core', 'nodes/custom'])
