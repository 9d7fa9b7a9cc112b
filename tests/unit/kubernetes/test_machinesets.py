"""
Tests for machine set deployment.
"""
import pytest
from unittest.mock import MagicMock

from kubernetes.client.rest import ApiException

from cloudprep.kubernetes.machinesets import MachineSetDeployer


@pytest.fixture
def custom_api():
    return MagicMock()


@pytest.fixture
def deployer(custom_api):
    return MachineSetDeployer(custom_api)


def manifest(name="test-infra-submariner-gw-us-east-1a"):
    return {"metadata": {"name": name}, "spec": {"replicas": 1}}


def test_deploy_creates(custom_api, deployer):
    deployer.deploy(manifest())

    kwargs = custom_api.create_namespaced_custom_object.call_args.kwargs
    assert kwargs["group"] == "machine.openshift.io"
    assert kwargs["namespace"] == "openshift-machine-api"
    custom_api.replace_namespaced_custom_object.assert_not_called()


def test_deploy_updates_existing(custom_api, deployer):
    """Test an existing machine set is replaced with its resourceVersion."""
    custom_api.create_namespaced_custom_object.side_effect = ApiException(status=409)
    custom_api.get_namespaced_custom_object.return_value = {"metadata": {"resourceVersion": "42"}}
    body = manifest()

    deployer.deploy(body)

    sent = custom_api.replace_namespaced_custom_object.call_args.kwargs["body"]
    assert sent["metadata"]["resourceVersion"] == "42"
    assert "resourceVersion" not in body["metadata"]


def test_deploy_propagates_other_errors(custom_api, deployer):
    custom_api.create_namespaced_custom_object.side_effect = ApiException(status=403)

    with pytest.raises(ApiException):
        deployer.deploy(manifest())


def test_delete(custom_api, deployer):
    """Test deleting an absent machine set is not an error."""
    assert deployer.delete("ms") is True

    custom_api.delete_namespaced_custom_object.side_effect = ApiException(status=404)
    assert deployer.delete("ms") is False


def test_get_missing(custom_api, deployer):
    custom_api.get_namespaced_custom_object.side_effect = ApiException(status=404)

    assert deployer.get("ms") is None


def test_get_worker_node_image(custom_api, deployer):
    """Test both GCP disk images and AWS AMIs are understood."""
    custom_api.list_namespaced_custom_object.return_value = {
        "items": [
            {"metadata": {"name": "other-worker-a"}},
            {
                "metadata": {"name": "test-infra-worker-b"},
                "spec": {"template": {"spec": {"providerSpec": {"value": {"ami": {"id": "ami-123"}}}}}},
            },
        ]
    }

    assert deployer.get_worker_node_image("test-infra-worker") == "ami-123"
    assert deployer.get_worker_node_image("nothing") is None
