"""IaaS providers for creating and destroying instances."""

from .base import InstanceProvider
from .digitalocean import DigitalOceanProvider
from .local import LocalProcessProvider

__all__ = ["InstanceProvider", "DigitalOceanProvider", "LocalProcessProvider"]
