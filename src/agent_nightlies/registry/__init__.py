"""Container registry transport."""

from agent_nightlies.registry.base import (
    RegistryError,
    RegistryTransportError,
    TagPage,
    TagRegistry,
)
from agent_nightlies.registry.docker_hub import DockerHubRegistry

__all__ = [
    "DockerHubRegistry",
    "RegistryError",
    "RegistryTransportError",
    "TagPage",
    "TagRegistry",
]
