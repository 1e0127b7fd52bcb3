# nodes/__init__.py
# This package contains the base class and implementations for graph nodes.
# Submodules:
# - base/: Abstract base class Base (inputs, outputs, conditional form fields, progress).
# - core/io/: Workflow item sources and sinks (TextInput, ReadBinaryFile, SaveBinary).
# - custom/: Provider-specific nodes (deerapi).
#
# To create custom nodes, create under nodes/custom/<your_namespace>/ and they will be auto-discovered.
