"""Console entry point for the GCE test-host provisioner CLI."""

from __future__ import annotations

import argparse
import logging
from typing import List

from config import ProvisionerConfig
from errors import ProvisionerError
from log_utils import setup_logging
from provisioner import Provisioner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Provision and tear down GCE test hosts"
    )
    parser.add_argument(
        "--project", help="GCP project ID (default: GCE_PROJECT environment variable)"
    )
    parser.add_argument("--zone", help="Compute Engine zone (e.g. us-central1-a)")
    parser.add_argument("--network", help="VPC network name (default: default)")
    parser.add_argument("--machine-type", help="Machine type (e.g. n1-standard-2)")
    parser.add_argument("--disk-size-gb", type=int, default=25)
    parser.add_argument("--keyfile", help="Service account JSON key file")
    parser.add_argument("--ssh-public-key", help="SSH public key installed on hosts")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--teardown",
        action="store_true",
        help="Delete the hosts' instance, disk and firewall rule instead of creating them",
    )
    mode.add_argument(
        "--resolve-image",
        metavar="PLATFORM",
        help="Only print the latest image for a platform (e.g. centos-7-x86_64)",
    )

    parser.add_argument(
        "--host",
        dest="hosts",
        action="append",
        default=[],
        metavar="NAME[:PLATFORM]",
        help="Host to provision (NAME:PLATFORM) or tear down (NAME); repeatable",
    )
    parser.add_argument("--dry-run", action="store_true", help="Simulate / only check")
    parser.add_argument("--max-parallel", type=int, default=5)
    parser.add_argument("--poll-interval", type=float)
    parser.add_argument("--max-attempts", type=int)
    parser.add_argument(
        "--deadline", type=float, help="Overall limit per lifecycle call (seconds)"
    )
    parser.add_argument("--department")
    parser.add_argument("--project-label")
    parser.add_argument("--jenkins-build-url")
    parser.add_argument("--report", help="Write a JSON report to this file")
    parser.add_argument("--verbose", action="store_true")
    return parser


def parse_hosts(entries: List[str], teardown: bool) -> List[tuple]:
    """Split NAME:PLATFORM host arguments."""
    hosts = []
    for entry in entries:
        name, _, platform = entry.partition(":")
        if not name or (not teardown and not platform):
            raise ValueError(f"Invalid host '{entry}', expected NAME:PLATFORM")
        hosts.append((name, platform))
    return hosts


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    log_file = "gce-teardown.log" if args.teardown else "gce-provision.log"
    setup_logging(verbose=args.verbose, log_file=log_file)

    try:
        config = ProvisionerConfig.from_args(args)
        hosts = parse_hosts(args.hosts, args.teardown)
    except (ProvisionerError, ValueError) as e:
        parser.error(str(e))

    if not args.resolve_image and not hosts:
        parser.error("at least one --host is required")

    try:
        runner = Provisioner(config)
        if args.resolve_image:
            image = runner.get_latest_image(args.resolve_image)
            print(image.self_link)
            return 0
        if args.teardown:
            stats = runner.teardown_hosts([name for name, _ in hosts])
        else:
            stats = runner.provision_hosts(hosts)
    except ProvisionerError as e:
        logger.error(str(e))
        return 1

    if args.report:
        runner.export_results_json(args.report)
    return 1 if stats.get("failed", 0) > 0 else 0
