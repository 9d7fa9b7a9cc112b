"""
Tests for node gateway labelling.
"""
import pytest
from unittest.mock import MagicMock, patch

from kubernetes import client
from kubernetes.client.rest import ApiException

from cloudprep.cloud.types import GATEWAY_LABEL
from cloudprep.kubernetes.nodes import NodeClient, is_master_node, load_core_api
from cloudprep.utils.retry import RetryPolicy, fixed_backoff


@pytest.fixture
def core_api():
    return MagicMock()


@pytest.fixture
def node_client(core_api):
    policy = RetryPolicy(
        max_attempts=3,
        backoff=fixed_backoff(0.0),
        retryable=lambda exc: isinstance(exc, ApiException) and exc.status == 409,
        sleep=MagicMock(),
    )
    return NodeClient(core_api, retry_policy=policy)


def test_is_master_node(node_factory):
    """Test control-plane nodes are recognised by taint or role label."""
    assert is_master_node(node_factory("m0", taints=[("node-role.kubernetes.io/master", "NoSchedule")]))
    assert is_master_node(node_factory("m1", labels={"node-role.kubernetes.io/control-plane": ""}))
    assert not is_master_node(node_factory("w0", labels={"node-role.kubernetes.io/worker": ""}))
    assert not is_master_node(
        client.V1Node(metadata=client.V1ObjectMeta(name="w1"), spec=None)
    )


def test_list_untagged_workers_excludes_masters(core_api, node_client, node_factory):
    """Test the label selector and master filtering."""
    core_api.list_node.return_value = client.V1NodeList(
        items=[
            node_factory("w0", labels={"node-role.kubernetes.io/worker": ""}),
            node_factory("m0", labels={"node-role.kubernetes.io/master": ""}),
        ]
    )

    nodes = node_client.list_untagged_workers("node-role.kubernetes.io/worker")

    assert [n.metadata.name for n in nodes] == ["w0"]
    core_api.list_node.assert_called_once_with(
        label_selector=f"!{GATEWAY_LABEL},node-role.kubernetes.io/worker"
    )


def test_add_gateway_label(core_api, node_client, node_factory):
    """Test the label is written with a read-modify-write."""
    core_api.read_node.return_value = node_factory("w0", labels={"a": "b"})

    node_client.add_gateway_label("w0")

    name, body = core_api.replace_node.call_args[0]
    assert name == "w0"
    assert body.metadata.labels == {"a": "b", GATEWAY_LABEL: "true"}


def test_add_gateway_label_retries_conflicts(core_api, node_client, node_factory):
    """Test a resourceVersion conflict re-reads and retries."""
    core_api.read_node.side_effect = lambda name: node_factory(name)
    core_api.replace_node.side_effect = [ApiException(status=409), MagicMock()]

    node_client.add_gateway_label("w0")

    assert core_api.read_node.call_count == 2
    assert core_api.replace_node.call_count == 2


def test_add_gateway_label_already_present(core_api, node_client, node_factory):
    core_api.read_node.return_value = node_factory("w0", labels={GATEWAY_LABEL: "true"})

    node_client.add_gateway_label("w0")

    core_api.replace_node.assert_not_called()


def test_remove_gateway_label(core_api, node_client, node_factory):
    """Test removal reports whether anything changed."""
    core_api.read_node.return_value = node_factory("w0", labels={GATEWAY_LABEL: "true", "a": "b"})

    assert node_client.remove_gateway_label("w0") is True
    assert core_api.replace_node.call_args[0][1].metadata.labels == {"a": "b"}

    core_api.read_node.return_value = node_factory("w0", labels={"a": "b"})
    assert node_client.remove_gateway_label("w0") is False


def test_remove_gateway_label_missing_node(core_api, node_client):
    core_api.read_node.side_effect = ApiException(status=404)

    assert node_client.remove_gateway_label("gone") is False


def test_remove_gateway_label_other_errors_propagate(core_api, node_client):
    core_api.read_node.side_effect = ApiException(status=403)

    with pytest.raises(ApiException):
        node_client.remove_gateway_label("w0")


def test_remove_gateway_label_from_workers(core_api, node_client, node_factory):
    """Test every labeled node is cleared."""
    labeled = [node_factory(n, labels={GATEWAY_LABEL: "true"}) for n in ("w0", "w1")]
    core_api.list_node.return_value = client.V1NodeList(items=labeled)
    core_api.read_node.side_effect = lambda name: node_factory(name, labels={GATEWAY_LABEL: "true"})

    assert node_client.remove_gateway_label_from_workers() == 2
    core_api.list_node.assert_called_once_with(label_selector=f"{GATEWAY_LABEL}=true")


@patch("cloudprep.kubernetes.nodes.client")
@patch("cloudprep.kubernetes.nodes.config")
def test_load_core_api_falls_back_to_in_cluster(mock_config, mock_client):
    """Test the in-cluster config is used when no kubeconfig can be loaded."""
    mock_config.ConfigException = Exception
    mock_config.load_kube_config.side_effect = Exception("no kubeconfig")

    api = load_core_api()

    mock_config.load_incluster_config.assert_called_once_with()
    assert api is mock_client.CoreV1Api.return_value
