"""Receiver-side processing of verified webhook envelopes."""

from xtwebhook.services.inbound.replay_cache import BoundedLRUCache
from xtwebhook.services.inbound.router import EventRouter, RoutingResult

__all__ = ["BoundedLRUCache", "EventRouter", "RoutingResult"]
