"""
Media Transfer Layer.

This package is responsible for fetching page images from the image host.
"""

from .transport import AssetResult, AssetTransport

__all__ = ["AssetResult", "AssetTransport"]
