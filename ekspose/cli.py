import dataclasses
import functools
from typing import Any, Callable, Optional

import click

from ekspose.engines import loggers
from ekspose.reactor import running
from ekspose.structs import configuration, credentials, primitives


@dataclasses.dataclass()
class CLIControls:
    """ Runner controls, which are impossible to pass via CLI. """
    ready_flag: Optional[primitives.Flag] = None
    stop_flag: Optional[primitives.Flag] = None
    settings: Optional[configuration.OperatorSettings] = None
    connection: Optional[credentials.ConnectionInfo] = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: Optional[bool] = False,
                log_refkey: Optional[str] = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


@click.version_option(prog_name='ekspose')
@click.group(name='ekspose', context_settings=dict(
    auto_envvar_prefix='EKSPOSE',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('-A', '--all-namespaces', 'clusterwide', is_flag=True)
@click.option('-n', '--namespace', type=str)
@click.option('-w', '--workers', type=click.IntRange(min=1))
@click.option('--max-retries', type=click.IntRange(min=0))
@click.option('--ingress-class', type=str)
@click.option('--kubeconfig', type=click.Path(dir_okay=False))
@click.option('-L', '--liveness', 'liveness_endpoint', type=str)
@click.make_pass_decorator(CLIControls, ensure=True)
def run(
        __controls: CLIControls,
        namespace: Optional[str],
        clusterwide: bool,
        workers: Optional[int],
        max_retries: Optional[int],
        ingress_class: Optional[str],
        kubeconfig: Optional[str],
        liveness_endpoint: Optional[str],
) -> None:
    """ Start the controller: expose every deployment via a service and an ingress. """
    if namespace and clusterwide:
        raise click.UsageError("Either --namespace or --all-namespaces can be used, not both.")

    # Map the CLI options into the settings object.
    settings = __controls.settings if __controls.settings is not None else configuration.OperatorSettings()
    if workers is not None:
        settings.queueing.worker_count = workers
    if max_retries is not None:
        settings.queueing.max_retries = max_retries
    if ingress_class is not None:
        settings.exposure.ingress_class = ingress_class

    return running.run(
        settings=settings,
        namespace=namespace,
        kubeconfig=kubeconfig,
        connection=__controls.connection,
        liveness_endpoint=liveness_endpoint,
        stop_flag=__controls.stop_flag,
        ready_flag=__controls.ready_flag,
    )
