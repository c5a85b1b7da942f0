"""Tests for client options."""

import pytest

from kube_converge.config import (
    DEFAULT_CREATE_RETRY_ATTEMPTS,
    DEFAULT_NAMESPACE,
    ClientOptions,
)
from kube_converge.exceptions import ConfigurationError


class TestClientOptions:
    """Tests for ClientOptions validation."""

    def test_defaults(self):
        options = ClientOptions()
        assert options.namespace == DEFAULT_NAMESPACE
        assert options.three_way_merge is True
        assert options.create_retry_attempts == DEFAULT_CREATE_RETRY_ATTEMPTS == 5
        assert options.propagation_policy == "Background"
        assert options.validate is False

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"namespace": ""}, "namespace"),
            ({"create_retry_attempts": 0}, "create_retry_attempts"),
            ({"max_concurrency": 0}, "max_concurrency"),
            ({"poll_interval": 0}, "poll_interval"),
            ({"propagation_policy": "Later"}, "propagation_policy"),
        ],
    )
    def test_invalid_values(self, kwargs, field):
        with pytest.raises(ConfigurationError) as exc_info:
            ClientOptions(**kwargs)
        assert exc_info.value.field == field
        assert isinstance(exc_info.value, ValueError)


class TestFromEnv:
    """Tests for ClientOptions.from_env."""

    def test_reads_prefixed_variables(self):
        options = ClientOptions.from_env(
            {
                "KUBE_CONVERGE_NAMESPACE": "shop",
                "KUBE_CONVERGE_THREE_WAY_MERGE": "false",
                "KUBE_CONVERGE_CREATE_RETRY_ATTEMPTS": "3",
                "KUBE_CONVERGE_POLL_INTERVAL": "0.5",
                "UNRELATED": "x",
            }
        )
        assert options.namespace == "shop"
        assert options.three_way_merge is False
        assert options.create_retry_attempts == 3
        assert options.poll_interval == 0.5

    def test_overrides_win(self):
        options = ClientOptions.from_env({"KUBE_CONVERGE_NAMESPACE": "shop"}, namespace="other")
        assert options.namespace == "other"

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("KUBE_CONVERGE_VALIDATE", "yes")
        assert ClientOptions.from_env().validate is True

    @pytest.mark.parametrize(
        "name,value",
        [("KUBE_CONVERGE_VALIDATE", "maybe"), ("KUBE_CONVERGE_MAX_CONCURRENCY", "many")],
    )
    def test_unparseable(self, name, value):
        with pytest.raises(ConfigurationError):
            ClientOptions.from_env({name: value})
