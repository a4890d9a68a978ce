"""GUI adapter layer.

This package provides thin Qt-shaped adapters over engine services.

Notes
-----
Adapters exist to:
- keep GUI code free of persistence and file-format details,
- keep calls off the UI thread,
- translate engine domain errors into user-visible messages.
"""
