from .activity import ActivityEvent, ActivityEventStore, ActivityEventType, ActivitySink
from .dispatcher import (
    CapabilityClient,
    CapabilityDispatcher,
    CapabilityRequest,
    ClientRegistryDispatcher,
    LanguageModelOptions,
)

__all__ = [
    "ActivityEvent",
    "ActivityEventStore",
    "ActivityEventType",
    "ActivitySink",
    "CapabilityClient",
    "CapabilityDispatcher",
    "CapabilityRequest",
    "ClientRegistryDispatcher",
    "LanguageModelOptions",
]
