"""
Tests for the command line entry point.
"""
import pytest
import yaml
from unittest.mock import patch

from botocore.exceptions import ClientError
from kubernetes.config.config_exception import ConfigException

from cloudprep.cloud.types import ReconcileResult
from cloudprep.errors import PermissionDeniedError
from cloudprep.main import main


@pytest.fixture
def config_file(tmp_path):
    config_file = tmp_path / 'cloudprep.yaml'
    with open(config_file, 'w') as f:
        yaml.dump({'cloud': {'type': 'aws', 'infra_id': 'test-infra', 'region': 'us-east-1'}}, f)
    return str(config_file)


def test_missing_config(tmp_path):
    assert main(['--config', str(tmp_path / 'missing.yaml'), '--action', 'deploy']) == 1


@patch("cloudprep.main.CloudProviderFactory")
def test_open_ports(mock_factory, config_file):
    """Test open-ports uses the cloud provider with the default internal ports."""
    provider = mock_factory.return_value.create_provider.return_value

    assert main(['--config', config_file, '--action', 'open-ports']) == 0

    mock_factory.return_value.create_provider.assert_called_once_with('aws')
    ports = provider.open_ports.call_args[0][0]
    assert [(p.port, p.protocol) for p in ports] == [(4800, 'udp'), (8080, 'tcp')]


@patch("cloudprep.main.CloudProviderFactory")
def test_close_ports_generic_is_noop(mock_factory, config_file):
    mock_factory.return_value.create_provider.return_value = None

    assert main(['--config', config_file, '--cloud', 'generic', '--action', 'close-ports']) == 0


@patch("cloudprep.main.GatewayLifecycleManager")
@patch("cloudprep.main.CloudProviderFactory")
def test_deploy_with_overrides(mock_factory, mock_manager, config_file):
    """Test command line flags reach the deploy request."""
    mock_manager.return_value.deploy.return_value = ReconcileResult.APPLIED

    assert main(['--config', config_file, '--action', 'deploy', '--gateways', '2', '--label-nodes']) == 0

    request = mock_manager.return_value.deploy.call_args[0][0]
    assert request.desired_gateway_count == 2
    assert request.use_dedicated_nodes is False


@patch("cloudprep.main.GatewayLifecycleManager")
@patch("cloudprep.main.CloudProviderFactory")
def test_cleanup_failure_exit_code(mock_factory, mock_manager, config_file):
    mock_manager.return_value.cleanup.side_effect = PermissionDeniedError("delete security group")

    assert main(['--config', config_file, '--action', 'cleanup']) == 1


def test_unsupported_cloud(tmp_path):
    config_file = tmp_path / 'cloudprep.yaml'
    with open(config_file, 'w') as f:
        yaml.dump({'cloud': {'infra_id': 'test-infra'}}, f)

    assert main(['--config', str(config_file), '--action', 'deploy']) == 1


@patch("cloudprep.cloud.aws_provider.boto3")
def test_open_ports_cloud_api_failure_exit_code(mock_boto3, config_file):
    """Test an EC2 failure is reported through the exit code, not a traceback."""
    ec2 = mock_boto3.session.Session.return_value.client.return_value
    ec2.describe_vpcs.side_effect = ClientError({"Error": {"Code": "AuthFailure", "Message": "denied"}}, "DescribeVpcs")

    assert main(['--config', config_file, '--action', 'open-ports']) == 1


@patch("cloudprep.main.CloudProviderFactory")
def test_initialization_failure_exit_code(mock_factory, config_file):
    mock_factory.return_value.create_gateway_backend.side_effect = ConfigException("no kubeconfig")

    assert main(['--config', config_file, '--action', 'deploy']) == 1
