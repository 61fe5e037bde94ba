"""
wgbridge Access Verification
"""

from wgbridge.access.control import AccessCache

__all__ = ["AccessCache"]
