"""
Failure values returned by the translation, fetch and decode steps.

They are plain values rather than exceptions so the route can map every kind
to a status/body pair in one place (see ``failure_response`` in route.py).
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ProxyFailure:
    message: str
    status_code: int = 500

    @property
    def kind(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class ResolutionFailure(ProxyFailure):
    """The inbound path has no prefix, or the prefix is not configured."""

    status_code: int = 404


@dataclass(frozen=True)
class DecodeFailure(ProxyFailure):
    """The origin's HTML could not be decoded with the site's encoding."""


@dataclass(frozen=True)
class OriginTransportFailure(ProxyFailure):
    """DNS, connect, timeout or protocol error while talking to the origin."""


@dataclass(frozen=True)
class ForbiddenOriginFailure(ProxyFailure):
    """An outbound URL points at a host outside the site registry."""
