"""
comick-offline: download comic series for offline reading and keep them up to date.
"""

__version__ = "1.0.0"
