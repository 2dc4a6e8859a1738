"""
Command Line Interface for SwarmPilot.
"""
import asyncio

import click

from ..CLIENT.cluster_client import ClusterClient
from ..errors import OrchestrationError
from ..MANAGERS.service_orchestrator import ServiceOrchestrator
from ..MANAGERS.stack_orchestrator import StackOrchestrator
from ..MODELS.service_spec import NetworkOptions
from ..PARSERS.stack_parser import StackParser
from ..UTILS.logging import configure_logging
from ..UTILS.settings import Settings


def _run(ctx, coro):
    """
    Runs one orchestration call, turning typed errors into an exit status of 1.
    """
    try:
        return asyncio.run(coro)
    except OrchestrationError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)


def _client(ctx) -> ClusterClient:
    client = ctx.obj.get('client')
    if client is None:
        settings = ctx.obj['settings']
        client = ClusterClient(
            base_url=ctx.obj.get('host') or settings.docker_host,
            timeout=settings.engine_timeout,
        )
        _run(ctx, client.connect(settings.connect_attempts, settings.connect_backoff))
        ctx.obj['client'] = client
    return client


def _services(ctx) -> ServiceOrchestrator:
    if 'services' not in ctx.obj:
        ctx.obj['services'] = ServiceOrchestrator(_client(ctx))
    return ctx.obj['services']


def _replica_count(service) -> str:
    mode = (service.get('Spec') or {}).get('Mode') or {}
    if 'Replicated' in mode:
        return str(mode['Replicated'].get('Replicas', 0))
    return 'global'


@click.group()
@click.option('--host', '-H', default=None, help='Engine address, e.g. unix:///var/run/docker.sock')
@click.option('--log-level', default=None, help='Log level (default from SWARMPILOT_LOG_LEVEL)')
@click.pass_context
def cli(ctx, host, log_level):
    """
    SwarmPilot - stack and service management for Docker Swarm.

    Every service runs with the platform resource allocation, whatever the
    input asks for.
    """
    ctx.ensure_object(dict)
    settings = ctx.obj.get('settings') or Settings.from_env()
    ctx.obj['settings'] = settings
    ctx.obj['host'] = host
    configure_logging(log_level or settings.log_level)


@cli.command()
@click.argument('file', type=click.Path(dir_okay=False))
@click.option('--name', '-n', default=None, help='Stack name (default: name key or directory name)')
@click.pass_context
def deploy(ctx, file, name):
    """Deploy a stack from a stack file."""
    try:
        config = StackParser().parse(file, name=name)
    except OrchestrationError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    stacks = StackOrchestrator(_services(ctx))
    stack = _run(ctx, stacks.create_stack(config))
    click.echo(f"Stack {stack.name} deployed ({len(stack.services)} services)")
    for key, member in stack.services.items():
        click.echo(f"  {stack.qualified_name(key):30} {member.image:30} {member.replicas}")


@cli.command()
@click.pass_context
def ps(ctx):
    """List services"""
    services = _run(ctx, _services(ctx).list_services())
    click.echo(f"{'ID':12} {'NAME':30} {'IMAGE':30} {'REPLICAS':8}")
    click.echo("-" * 83)
    for service in services:
        spec = service.get('Spec') or {}
        image = ((spec.get('TaskTemplate') or {}).get('ContainerSpec') or {}).get('Image', '')
        click.echo(f"{service.get('ID', '')[:12]:12} {spec.get('Name', ''):30} {image:30} {_replica_count(service):8}")


@cli.command()
@click.argument('name')
@click.argument('image')
@click.option('--replicas', '-r', type=int, default=1, show_default=True)
@click.option('--env', '-e', multiple=True, help='KEY=VALUE, repeatable')
@click.option('--port', '-p', multiple=True, help='PUBLISHED:TARGET[/PROTOCOL], repeatable')
@click.option('--network', multiple=True, help='Network name, created if absent; repeatable')
@click.pass_context
def create(ctx, name, image, replicas, env, port, network):
    """Create a service."""
    spec = {
        'name': name,
        'image': image,
        'replicas': replicas,
        'environment': list(env),
        'ports': list(port),
        'networks': list(network),
    }
    created = _run(ctx, _services(ctx).create(spec))
    click.echo(created.get('ID', ''))


@cli.command()
@click.argument('service')
@click.argument('replicas', type=int)
@click.pass_context
def scale(ctx, service, replicas):
    """Set the replica count of a service."""
    _run(ctx, _services(ctx).scale(service, replicas))
    click.echo(f"{service} scaled to {replicas}")


@cli.command()
@click.argument('service')
@click.pass_context
def rm(ctx, service):
    """Remove a service."""
    _run(ctx, _services(ctx).remove(service))
    click.echo(service)


@cli.command()
@click.argument('service')
@click.pass_context
def replicas(ctx, service):
    """List the running replicas of a service."""
    replica_set = _run(ctx, _services(ctx).get_replicas(service))
    click.echo(f"{replica_set.service_name}: {replica_set.running_count}/{replica_set.total_desired} running")
    click.echo(f"{'INDEX':6} {'TASK':26} {'NODE':26} {'STATE':10}")
    for replica in replica_set.replicas:
        click.echo(f"{replica.index:<6} {replica.task_id:26} {replica.node_id or '':26} {replica.state or '':10}")


@cli.command()
@click.argument('service')
@click.option('--tail', type=int, default=None, help='Number of lines (max 1000)')
@click.option('--since', default=None, help='Unix time, timestamp or duration such as 10m')
@click.option('--timestamps', '-t', is_flag=True)
@click.option('--replica', type=int, default=None, help='Replica index')
@click.option('--task', default=None, help='Task id (wins over --replica)')
@click.pass_context
def logs(ctx, service, tail, since, timestamps, replica, task):
    """Show service or replica logs."""
    options = {
        'tail': tail,
        'since': since,
        'timestamps': timestamps,
        'replica_index': replica,
        'task_id': task,
    }
    result = _run(ctx, _services(ctx).get_logs(service, options))
    if result.note:
        click.echo(f"Note: {result.note}", err=True)
    click.echo(result.logs, nl=False)


@cli.command('bulk-logs')
@click.argument('service')
@click.option('--replica', 'replica_indexes', type=int, multiple=True, help='Replica index, repeatable')
@click.option('--tail', type=int, default=None, help='Lines per replica (default 100)')
@click.option('--max-concurrent', type=int, default=None, help='Parallel fetches (1-10, default 5)')
@click.pass_context
def bulk_logs(ctx, service, replica_indexes, tail, max_concurrent):
    """Show logs of several replicas."""
    options = {
        'replica_indexes': list(replica_indexes) or None,
        'tail': tail,
        'max_concurrent': max_concurrent,
    }
    result = _run(ctx, _services(ctx).get_bulk_logs(service, options))
    for entry in result.results:
        click.echo(f"=== replica {entry.replica_index} {entry.task_id or ''} ===")
        if entry.status == 'success':
            click.echo(entry.logs, nl=False)
        else:
            click.echo(f"error: {entry.error}")
    if result.metadata.note:
        click.echo(f"Note: {result.metadata.note}", err=True)


@cli.command()
@click.pass_context
def networks(ctx):
    """List networks"""
    registrar = _services(ctx).registrar
    click.echo(f"{'ID':12} {'NAME':30} {'DRIVER':10} {'SCOPE':8}")
    click.echo("-" * 63)
    for network in _run(ctx, registrar.list_networks()):
        click.echo(
            f"{network.get('Id', '')[:12]:12} {network.get('Name', ''):30} "
            f"{network.get('Driver', ''):10} {network.get('Scope', ''):8}"
        )


@cli.command('network-create')
@click.argument('name')
@click.option('--driver', '-d', default='overlay', show_default=True)
@click.option('--internal', is_flag=True)
@click.pass_context
def network_create(ctx, name, driver, internal):
    """Create a network if it does not exist."""
    registrar = _services(ctx).registrar
    network = _run(ctx, registrar.ensure_network(name, NetworkOptions(driver=driver, internal=internal)))
    click.echo(network.get('Id') or network.get('ID') or name)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
