"""DigitalOcean droplet provider."""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import aiohttp

from .base import InstanceProvider
from ..core.types import Instance, InstanceDescriptor
from ..core.exceptions import ProviderError, ProviderTimeoutError


logger = logging.getLogger(__name__)


class DigitalOceanProvider(InstanceProvider):
    """Creates and destroys application droplets through the DigitalOcean API."""

    name = "digitalocean"
    BASE_URL = "https://api.digitalocean.com/v2"
    TAG = "imgcloud"

    def __init__(
        self,
        api_token: Optional[str] = None,
        region: str = "nyc3",
        size: str = "s-1vcpu-1gb",
        image: str = "",
        ssh_keys: Optional[List[str]] = None,
        app_port: int = 80,
        activation_timeout: float = 300.0,
        activation_poll_interval: float = 5.0,
        request_timeout: float = 30.0
    ):
        """Initialize DigitalOcean provider.

        Args:
            api_token: API token (or from DIGITALOCEAN_API_TOKEN env var)
            region: Droplet region slug
            size: Droplet size slug
            image: Image slug or snapshot id with the application installed
            ssh_keys: SSH key ids or fingerprints added to new droplets
            app_port: Port the application listens on inside the droplet
            activation_timeout: Seconds to wait for a droplet to become active
            activation_poll_interval: Seconds between droplet status checks
            request_timeout: Timeout for each API call in seconds
        """
        if not api_token:
            api_token = os.getenv("DIGITALOCEAN_API_TOKEN")

        if not api_token:
            raise ValueError(
                "DigitalOcean API token required. Set DIGITALOCEAN_API_TOKEN "
                "environment variable or pass api_token parameter."
            )

        super().__init__(request_timeout)
        self.api_token = api_token
        self.region = region
        self.size = size
        self.image = image
        self.ssh_keys = ssh_keys or []
        self.app_port = app_port
        self.activation_timeout = activation_timeout
        self.activation_poll_interval = activation_poll_interval
        self.headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json"
        }

    @classmethod
    def instance_tag(cls, instance_id: int) -> str:
        return f"{cls.TAG}-instance-{instance_id}"

    async def allocate(self, instance_id: int, port: Optional[int] = None) -> InstanceDescriptor:
        """Create a droplet and wait until it has a public address.

        Args:
            instance_id: Id reserved for the new instance
            port: Ignored; droplets serve on ``app_port``

        Returns:
            Public address of the new droplet
        """
        body = {
            "name": f"{self.TAG}-{instance_id}",
            "region": self.region,
            "size": self.size,
            "image": self.image,
            "ssh_keys": self.ssh_keys,
            "tags": [self.TAG, self.instance_tag(instance_id)]
        }

        data = await self._request("POST", "/droplets", expected=(202,), json=body)
        droplet_id = data["droplet"]["id"]
        logger.info(f"Created droplet {droplet_id} for instance {instance_id}")

        host = await self._wait_for_public_ip(droplet_id)
        return InstanceDescriptor(id=instance_id, host=host, port=self.app_port)

    async def deallocate(self, instance: Instance) -> None:
        """Delete every droplet tagged with the instance's id."""
        await self._request(
            "DELETE",
            "/droplets",
            expected=(204,),
            params={"tag_name": self.instance_tag(instance.id)}
        )
        logger.info(f"Deleted droplets for instance {instance.id}")

    async def _wait_for_public_ip(self, droplet_id: int) -> str:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.activation_timeout

        while True:
            data = await self._request("GET", f"/droplets/{droplet_id}", expected=(200,))
            droplet = data["droplet"]

            if droplet.get("status") == "active":
                address = self._public_ipv4(droplet)
                if address:
                    return address

            if loop.time() + self.activation_poll_interval > deadline:
                raise ProviderTimeoutError(self.name, f"activate droplet {droplet_id}", self.activation_timeout)

            await asyncio.sleep(self.activation_poll_interval)

    @staticmethod
    def _public_ipv4(droplet: Dict[str, Any]) -> Optional[str]:
        for network in droplet.get("networks", {}).get("v4", []):
            if network.get("type") == "public":
                return network.get("ip_address")
        return None

    async def _request(
        self,
        method: str,
        path: str,
        expected: tuple = (200,),
        **kwargs
    ) -> Dict[str, Any]:
        if not self._session:
            raise RuntimeError("Provider must be used as async context manager")

        url = f"{self.BASE_URL}{path}"
        try:
            async with self._session.request(method, url, headers=self.headers, **kwargs) as response:
                if response.status not in expected:
                    message = await response.text()
                    raise ProviderError(
                        f"{method} {path} returned {response.status}: {message}",
                        provider=self.name,
                        status_code=response.status
                    )
                if response.status == 204:
                    return {}
                return await response.json()
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(self.name, f"{method} {path}", self.request_timeout) from e
        except aiohttp.ClientError as e:
            raise ProviderError(f"{method} {path} failed: {e}", provider=self.name) from e
