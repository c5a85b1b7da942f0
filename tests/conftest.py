"""Pytest fixtures for kube-converge tests."""

import logging

import pytest

from kube_converge import Applier, ClientOptions, SchemaRegistry
from tests.fixtures.fake_api import FakeResourceAPI


@pytest.fixture
def api() -> FakeResourceAPI:
    """Fresh in-memory cluster."""
    return FakeResourceAPI()


@pytest.fixture
def registry() -> SchemaRegistry:
    return SchemaRegistry.default()


@pytest.fixture
def options() -> ClientOptions:
    """Options with a short poll interval so waits finish quickly."""
    return ClientOptions(poll_interval=0.05)


@pytest.fixture
def applier(options, registry) -> Applier:
    return Applier(options, registry)


@pytest.fixture(autouse=True)
def debug_logging(caplog):
    """Capture library debug logs so failures show the full call trail."""
    caplog.set_level(logging.DEBUG, logger="kube_converge")
