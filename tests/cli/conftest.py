import functools
import logging

import click.testing
import pytest

from ekspose.cli import main


@pytest.fixture(autouse=True)
def _restore_logging():
    # The commands configure the root logger; do not leak it to other tests.
    root = logging.getLogger()
    libs = [logging.getLogger(name) for name in ['asyncio', 'aiohttp']]
    handlers, level = root.handlers[:], root.level
    lib_states = [(lib.propagate, lib.handlers[:]) for lib in libs]
    yield
    root.handlers[:], root.level = handlers, level
    for lib, (propagate, lib_handlers) in zip(libs, lib_states):
        lib.propagate, lib.handlers[:] = propagate, lib_handlers


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner):
    return functools.partial(runner.invoke, main)


@pytest.fixture()
def real_run(mocker):
    return mocker.patch('ekspose.reactor.running.run')
