"""Shared fixtures for the sync control server tests."""

import time

import pytest

from syncserver import ControlServer, SyncParameters


def wait_until(predicate, timeout=5.0, interval=0.01):
    """Poll ``predicate`` until it returns True or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def sync_params():
    return SyncParameters(clock="0.0.0.0:5637", latency=0)


@pytest.fixture
def server(sync_params):
    srv = ControlServer("127.0.0.1", 0, sync_params, poll_interval=0.05)
    yield srv
    srv.stop(close_connections=True)


@pytest.fixture(name="wait_until")
def wait_until_fixture():
    return wait_until
