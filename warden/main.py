"""Main CLI entry point for warden."""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Any, Dict

from .cluster.client import ClusterClient, load_kube_config
from .config.settings import Config
from .controllers.enforcement import build_enforcer
from .controllers.manager import Manager
from .controllers.namespace import NamespacePolicyStore, NamespaceReconciler
from .controllers.pod import PodReconciler
from .errors import WardenError
from .models.verdict import Verdict
from .utils.logger import setup_logging
from .validate.image import ImageValidator
from .validate.pod import PodValidator
from .validate.trust_client import StaticTrustClientFactory, TrustClientFactory


logger = logging.getLogger(__name__)


def print_json_output(data: Dict[str, Any]):
    """Print formatted JSON output."""
    print(json.dumps(data, indent=2))


def load_config(args) -> Config:
    config = Config(args.config_path)
    if not args.log_level:
        setup_logging(config.log_level, args.log_file, config.log_json)
    return config


def build_pod_validator(config: Config, client_factory=None) -> PodValidator:
    factory = client_factory or TrustClientFactory(config.trust_service_config())
    image_validator = ImageValidator(config.allow_list(), factory)
    return PodValidator(image_validator, max_workers=config.max_concurrent_images)


def handle_run(args):
    """Handle run command."""
    try:
        config = load_config(args)
        load_kube_config()
        cluster = ClusterClient()

        policies = NamespacePolicyStore()
        pod_reconciler = PodReconciler(
            cluster,
            build_pod_validator(config),
            policies,
            build_enforcer(config.enforcement, cluster),
        )
        namespace_reconciler = NamespaceReconciler(cluster, policies)
        manager = Manager(
            cluster, pod_reconciler, namespace_reconciler,
            workers=config.workers,
            backoff_base=config.backoff_base,
            backoff_max=config.backoff_max,
            resync_period=config.resync_period,
        )
    except WardenError as e:
        logger.error(f"Unable to start: {e}")
        sys.exit(1)

    def shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        threading.Thread(target=manager.stop, name="shutdown").start()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    logger.info(f"Starting warden: trust service {config.notary_url}, "
                f"enforced registries {list(config.allow_list().patterns)}, enforcement {config.enforcement}")
    manager.run()


def handle_validate_image(args):
    """Handle validate-image command."""
    try:
        config = load_config(args)
        factory = StaticTrustClientFactory.from_file(args.trust_data) if args.trust_data else None
        validator = build_pod_validator(config, factory).image_validator
    except WardenError as e:
        logger.error(f"Validate failed: {e}")
        print_json_output({"Operation": "ValidateImage", "Status": "Failed", "Error": str(e)})
        sys.exit(1)

    result = validator.validate_image(args.image, digest=args.digest)
    print_json_output({
        "Operation": "ValidateImage",
        "Image": result.image,
        "Verdict": result.verdict.value,
        "Reason": result.reason,
    })
    if result.verdict in (Verdict.UNTRUSTED, Verdict.UNVERIFIABLE):
        sys.exit(1)


def handle_validate_pod(args):
    """Handle validate-pod command."""
    try:
        config = load_config(args)
        load_kube_config()
        pod = ClusterClient().get_pod(args.namespace, args.name)
        if pod is None:
            raise WardenError(f"Pod '{args.namespace}/{args.name}' not found")
        verdict = build_pod_validator(config).validate_pod(pod)
    except WardenError as e:
        logger.error(f"Validate failed: {e}")
        print_json_output({"Operation": "ValidatePod", "Status": "Failed", "Error": str(e)})
        sys.exit(1)

    output = {"Operation": "ValidatePod"}
    output.update(verdict.to_dict())
    print_json_output(output)
    if verdict.verdict in (Verdict.UNTRUSTED, Verdict.UNVERIFIABLE):
        sys.exit(1)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='warden',
        description='Enforces signed image provenance for pods in opted-in namespaces.'
    )

    parser.add_argument(
        '--config-path',
        default=None,
        help='The path to the configuration file (default: $WARDEN_CONFIG or ./hack/config.yaml)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Set logging level (default: from configuration, INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Log to file in addition to console'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser(
        'run',
        help='Run the pod and namespace controllers',
        description='Watches pods and namespaces and enforces image trust in opted-in namespaces.'
    )
    run_parser.set_defaults(func=handle_run)

    image_parser = subparsers.add_parser(
        'validate-image',
        help='Validate a single image',
        description='Checks one image reference against the registry allow-list and the trust service.'
    )
    image_parser.add_argument('image', help='Image reference, e.g. registry.example.com/prod/app:1.0')
    image_parser.add_argument(
        '--digest',
        help='Resolved manifest digest to check when the reference has none'
    )
    image_parser.add_argument(
        '--trust-data',
        help='YAML file mapping repositories to signed digests, used instead of the trust service'
    )
    image_parser.set_defaults(func=handle_validate_image)

    pod_parser = subparsers.add_parser(
        'validate-pod',
        help='Validate a running pod',
        description='Validates every container image of a pod without recording or enforcing the verdict.'
    )
    pod_parser.add_argument('namespace', help='Namespace of the pod')
    pod_parser.add_argument('name', help='Name of the pod')
    pod_parser.set_defaults(func=handle_validate_pod)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level or 'INFO', args.log_file)

    args.func(args)


if __name__ == '__main__':
    main()
