"""Provider that runs application instances as local processes."""

import asyncio
import logging
import os
from typing import Dict, List, Optional

from .base import InstanceProvider
from ..core.types import Instance, InstanceDescriptor
from ..core.exceptions import ProviderError


logger = logging.getLogger(__name__)


class LocalProcessProvider(InstanceProvider):
    """Starts one local process per instance, each on its own port.

    ``{port}`` and ``{id}`` in the command are substituted, and the
    ``PORT``/``INSTANCE_ID`` environment variables are set as well.
    """

    name = "local"

    def __init__(
        self,
        command: List[str],
        host: str = "localhost",
        working_directory: Optional[str] = None,
        shutdown_timeout: float = 10.0
    ):
        if not command:
            raise ValueError("Local provider requires a command to start instances")

        super().__init__()
        self.command = command
        self.host = host
        self.working_directory = working_directory or None
        self.shutdown_timeout = shutdown_timeout
        self.processes: Dict[int, asyncio.subprocess.Process] = {}

    async def allocate(self, instance_id: int, port: Optional[int] = None) -> InstanceDescriptor:
        if port is None:
            raise ProviderError("Local instances need an explicit port", provider=self.name)

        args = [part.format(port=port, id=instance_id) for part in self.command]
        env = os.environ.copy()
        env["PORT"] = str(port)
        env["INSTANCE_ID"] = str(instance_id)

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=self.working_directory,
                env=env,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise ProviderError(f"Failed to start instance {instance_id}: {e}", provider=self.name) from e

        self.processes[instance_id] = process
        logger.info(f"Started instance {instance_id} with PID {process.pid} on port {port}")
        return InstanceDescriptor(id=instance_id, host=self.host, port=port)

    async def deallocate(self, instance: Instance) -> None:
        process = self.processes.pop(instance.id, None)
        if process is None:
            raise ProviderError(f"No local process for instance {instance.id}", provider=self.name)

        if process.returncode is not None:
            logger.info(f"Instance {instance.id} already exited ({process.returncode})")
            return

        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            # Force kill if graceful shutdown failed
            process.kill()
            await process.wait()

        logger.info(f"Stopped instance {instance.id}")

    async def close(self) -> None:
        for process in self.processes.values():
            if process.returncode is None:
                process.kill()
                await process.wait()
        self.processes.clear()
        await super().close()
