"""
Command line entry point for preparing a cloud for cross-cluster gateways.
"""
import argparse
import logging
import sys
from pathlib import Path

from cloudprep.cloud.factory import SUPPORTED_CLOUDS, CloudProviderFactory
from cloudprep.config.config import Config
from cloudprep.errors import CloudPrepError
from cloudprep.gateway.lifecycle import GatewayLifecycleManager
from cloudprep.utils.logging_utils import level_from_name, setup_logging
from cloudprep.utils.reporter import LoggingReporter

ACTIONS = ["open-ports", "close-ports", "deploy", "cleanup"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Prepare a cloud for cross-cluster gateway connectivity")
    parser.add_argument("--config", type=str, default="config/cloudprep.yaml", help="Path to configuration file")
    parser.add_argument("--cloud", type=str, choices=SUPPORTED_CLOUDS, help="Cloud to prepare (overrides config)")
    parser.add_argument("--action", type=str, choices=ACTIONS, required=True, help="Action to perform")
    parser.add_argument("--gateways", type=int, help="Desired number of gateways (deploy only)")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dedicated", dest="dedicated", action="store_true", default=None, help="Deploy dedicated gateway instances")
    mode.add_argument("--label-nodes", dest="dedicated", action="store_false", help="Label existing worker nodes")
    parser.add_argument("--air-gapped", action="store_true", default=None, help="Do not assign public IPs to gateways")
    parser.add_argument("--kubeconfig", type=str, help="Path to kubeconfig")
    parser.add_argument("--log-level", type=str, help="Logging level (overrides config)")
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config_path = Path(args.config)
    if not config_path.exists():
        setup_logging()
        logging.getLogger(__name__).error(f"Configuration file {config_path} not found")
        return 1

    config = Config.from_yaml(str(config_path))
    log_config = config.get("logging", {}) or {}
    setup_logging(
        log_dir=log_config.get("dir"),
        level=level_from_name(args.log_level or log_config.get("level")),
        log_to_file=log_config.get("to_file", False),
    )
    logger = logging.getLogger(__name__)

    cloud_type = args.cloud or (config.get("cloud", {}) or {}).get("type")
    if cloud_type not in SUPPORTED_CLOUDS:
        logger.error(f"Unsupported or missing cloud type: {cloud_type}")
        return 1

    try:
        info = config.cloud_info()
        reporter = LoggingReporter(logging.getLogger("cloudprep"))
        factory = CloudProviderFactory(info, reporter=reporter, kubeconfig=args.kubeconfig)
        provider = factory.create_provider(cloud_type)
        manager = None
        if args.action in ("deploy", "cleanup"):
            manager = GatewayLifecycleManager(
                factory.create_gateway_backend(cloud_type), reporter=reporter, cloud=provider
            )
    except Exception as e:
        logger.error(f"Error initializing {cloud_type} provider: {e}")
        return 1

    try:
        if args.action == "deploy":
            request = config.deploy_request(
                gateways=args.gateways, use_dedicated_nodes=args.dedicated, air_gapped=args.air_gapped
            )
            manager.deploy(request)
        elif args.action == "cleanup":
            manager.cleanup()
        elif provider is None:
            logger.info(f"Cloud {cloud_type} has no intra-cluster ports to manage")
        elif args.action == "open-ports":
            provider.open_ports(config.internal_ports())
        else:
            provider.close_ports()
    except (CloudPrepError, ValueError) as e:
        logger.error(f"{args.action} failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
