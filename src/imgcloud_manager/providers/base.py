"""Base class for IaaS instance providers."""

from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from ..core.types import Instance, InstanceDescriptor


class InstanceProvider(ABC):
    """Abstract base class for services that create and destroy instances."""
    
    name = "provider"
    
    def __init__(self, request_timeout: float = 30.0):
        """Initialize the provider.
        
        Args:
            request_timeout: Timeout in seconds for provider API calls
        """
        self.request_timeout = request_timeout
        self._session: Optional[aiohttp.ClientSession] = None
    
    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
    
    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
    
    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None
    
    @abstractmethod
    async def allocate(self, instance_id: int, port: Optional[int] = None) -> InstanceDescriptor:
        """Create a new instance.
        
        Args:
            instance_id: Id reserved for the new instance
            port: Suggested port (providers with fixed ports ignore it)
            
        Returns:
            Address of the running instance
            
        Raises:
            ProviderError: If the provider rejects the request
        """
        pass
    
    @abstractmethod
    async def deallocate(self, instance: Instance) -> None:
        """Destroy an instance.
        
        Args:
            instance: Instance to destroy
            
        Raises:
            ProviderError: If the provider rejects the request
        """
        pass
