"""
Outbound rate limiting for calls to the hosted datasheet API.
"""

from .call_governor import CallGovernor

__all__ = ["CallGovernor"]
