"""Command-line interface for the resource manager."""

import asyncio
import json
import logging
from typing import List, Optional, Tuple

import click

from .core.config import ManagerConfig, load_config
from .core.exceptions import ConfigurationError, ProbeError
from .core.logging_config import setup_logging
from .core.manager import ResourceManager
from .core.monitor import LoadMonitor
from .core.registry import InstanceRegistry
from .core.types import Instance, InstanceDescriptor
from .providers.base import InstanceProvider
from .providers.digitalocean import DigitalOceanProvider
from .providers.local import LocalProcessProvider
from .stats.base import StatsSink
from .stats.memory import InMemoryStatsSink
from .stats.redis_sink import RedisStatsSink


logger = logging.getLogger(__name__)


def parse_instance_address(value: str) -> InstanceDescriptor:
    """Parse ``ID:HOST:PORT`` into a descriptor."""
    parts = value.split(":")
    if len(parts) != 3:
        raise click.BadParameter(f"expected ID:HOST:PORT, got {value!r}")

    try:
        return InstanceDescriptor(id=int(parts[0]), host=parts[1], port=int(parts[2]))
    except ValueError:
        raise click.BadParameter(f"ID and PORT must be integers in {value!r}")


def build_provider(config: ManagerConfig) -> InstanceProvider:
    settings = config.provider
    if settings.type == "digitalocean":
        return DigitalOceanProvider(
            api_token=settings.api_token or None,
            region=settings.region,
            size=settings.size,
            image=settings.image,
            ssh_keys=settings.ssh_keys,
            app_port=settings.app_port,
            activation_timeout=settings.activation_timeout_seconds,
            activation_poll_interval=settings.activation_poll_interval_seconds,
            request_timeout=settings.request_timeout_seconds
        )
    return LocalProcessProvider(
        command=settings.command,
        working_directory=settings.working_directory,
        shutdown_timeout=settings.shutdown_timeout_seconds
    )


def build_stats_sink(config: ManagerConfig) -> StatsSink:
    if config.stats.type == "redis":
        return RedisStatsSink(config.stats.redis_url, key_prefix=config.stats.key_prefix)
    return InMemoryStatsSink(key_prefix=config.stats.key_prefix)


def _load(config_path: Optional[str]) -> ManagerConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        raise click.ClickException(str(e))


@click.group()
@click.version_option(version="0.1.0")
def cli():
    """imgcloud-manager: keeps the image service's instance pool healthy and sized to load."""
    pass


@cli.command()
@click.option('--config', '-c', 'config_path', type=click.Path(dir_okay=False), help='JSON or YAML configuration file')
@click.option('--instance', '-i', 'instances', multiple=True, help='Bootstrap instance as ID:HOST:PORT')
@click.option('--provider', '-p', type=click.Choice(['local', 'digitalocean']), help='Override provider type')
@click.option('--no-poll', is_flag=True, help='Do not start the poll and provision timers')
@click.option('--log-level', '-l', default=None, help='Logging level')
def run(config_path: Optional[str], instances: Tuple[str, ...], provider: Optional[str],
        no_poll: bool, log_level: Optional[str]):
    """Bootstrap the pool and run the control loop until interrupted."""
    config = _load(config_path)
    if provider:
        config.provider.type = provider
    if no_poll:
        config.polling_enabled = False

    setup_logging(
        log_level=log_level or config.log.level,
        log_file=config.log.file or None,
        structured=config.log.structured
    )

    descriptors: List[InstanceDescriptor] = [parse_instance_address(value) for value in instances]

    try:
        instance_provider = build_provider(config)
    except ValueError as e:
        raise click.ClickException(str(e))

    async def run_manager():
        async with instance_provider:
            async with ResourceManager(instance_provider, config, build_stats_sink(config)) as manager:
                manager.bootstrap(descriptors)
                click.echo(f"Managing {len(manager.registry)} instances with {instance_provider.name} provider")
                click.echo("Press Ctrl+C to stop")
                await manager.run_forever()

    try:
        asyncio.run(run_manager())
    except KeyboardInterrupt:
        click.echo("\nStopping resource manager...")


@cli.command()
@click.argument('host')
@click.argument('port', type=int)
@click.option('--config', '-c', 'config_path', type=click.Path(dir_okay=False), help='JSON or YAML configuration file')
@click.option('--timeout', '-t', type=int, default=None, help='Probe timeout in milliseconds')
def probe(host: str, port: int, config_path: Optional[str], timeout: Optional[int]):
    """Send one health probe to HOST:PORT and print the reported load."""
    config = _load(config_path)
    if timeout is not None:
        config.probe_timeout_ms = timeout

    async def run_probe() -> float:
        monitor = LoadMonitor(InstanceRegistry(), config, on_probe_failure=lambda instance: None)
        await monitor.start()
        try:
            return await monitor.probe(Instance(id=0, host=host, port=port))
        finally:
            await monitor.close()

    try:
        load = asyncio.run(run_probe())
    except ProbeError as e:
        raise click.ClickException(e.reason)

    click.echo(f"{host}:{port} load={load}")


@cli.command('show-config')
@click.option('--config', '-c', 'config_path', type=click.Path(dir_okay=False), help='JSON or YAML configuration file')
def show_config(config_path: Optional[str]):
    """Print the effective configuration as JSON."""
    config = _load(config_path)
    data = config.to_dict()
    if data['provider'].get('api_token'):
        data['provider']['api_token'] = '[REDACTED]'
    data['history_window'] = config.history_window
    click.echo(json.dumps(data, indent=2))


def main():
    """Main CLI entry point."""
    cli()


if __name__ == '__main__':
    main()
