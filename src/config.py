"""
Configuration management for the GCE test-host provisioner.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from builders import DEFAULT_FIREWALL_PORTS
from errors import ConfigError

DEFAULT_SSH_KEY = os.path.join("~", ".ssh", "google_compute_engine.pub")


@dataclass
class ProvisionerConfig:
    """Configuration for provisioning operations."""

    project_id: str
    zone: str = "us-central1-a"
    network: str = "default"
    machine_type: str = "n1-standard-2"
    disk_size_gb: int = 25
    keyfile: Optional[str] = None
    ssh_public_key: Optional[str] = None
    ssh_user: str = "google_compute"
    poll_interval: float = 5.0
    poll_backoff: float = 1.0
    max_poll_interval: float = 30.0
    max_attempts: int = 60
    deadline: Optional[float] = None
    request_timeout: int = 60
    max_retries: int = 3
    max_parallel: int = 5
    firewall_ports: List[str] = field(
        default_factory=lambda: list(DEFAULT_FIREWALL_PORTS)
    )
    department: Optional[str] = None
    project_label: Optional[str] = None
    jenkins_build_url: Optional[str] = None
    dry_run: bool = False
    verbose: bool = False

    @classmethod
    def from_args(cls, args) -> "ProvisionerConfig":
        """
        Create configuration from command-line arguments.

        Options not given on the command line fall back to GCE_* environment
        variables and then to the defaults above.

        Args:
            args: Parsed argparse arguments

        Returns:
            ProvisionerConfig instance
        """
        env = cls.from_env(project_id=args.project)
        return cls(
            project_id=env.project_id,
            zone=args.zone or env.zone,
            network=args.network or env.network,
            machine_type=args.machine_type or env.machine_type,
            disk_size_gb=args.disk_size_gb,
            keyfile=args.keyfile or env.keyfile,
            ssh_public_key=args.ssh_public_key or env.ssh_public_key,
            poll_interval=(
                args.poll_interval
                if args.poll_interval is not None
                else env.poll_interval
            ),
            max_attempts=(
                args.max_attempts if args.max_attempts is not None else env.max_attempts
            ),
            deadline=args.deadline,
            max_parallel=args.max_parallel,
            department=args.department,
            project_label=args.project_label,
            jenkins_build_url=args.jenkins_build_url,
            dry_run=args.dry_run,
            verbose=args.verbose,
        )

    @classmethod
    def from_env(cls, project_id: Optional[str] = None) -> "ProvisionerConfig":
        """
        Create configuration from GCE_* environment variables.

        Raises:
            ConfigError: If no project is given and GCE_PROJECT is unset, or a
                numeric variable cannot be parsed
        """
        project = project_id or os.environ.get("GCE_PROJECT")
        if not project:
            raise ConfigError("A GCP project is required (--project or GCE_PROJECT)")

        defaults = cls(project_id=project)
        try:
            poll_interval = float(
                os.environ.get("GCE_POLL_INTERVAL", defaults.poll_interval)
            )
            max_attempts = int(os.environ.get("GCE_MAX_ATTEMPTS", defaults.max_attempts))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric GCE_* setting: {e}") from e

        return cls(
            project_id=project,
            zone=os.environ.get("GCE_ZONE", defaults.zone),
            network=os.environ.get("GCE_NETWORK", defaults.network),
            machine_type=os.environ.get("GCE_MACHINE_TYPE", defaults.machine_type),
            keyfile=os.environ.get("GCE_KEYFILE"),
            ssh_public_key=os.environ.get("GCE_SSH_PUBLIC_KEY"),
            poll_interval=poll_interval,
            max_attempts=max_attempts,
        )


def find_ssh_public_key(config: ProvisionerConfig) -> str:
    """
    Locate the SSH public key installed on test hosts.

    Lookup order: config option, GCE_SSH_PUBLIC_KEY, then
    ~/.ssh/google_compute_engine.pub.

    Returns:
        Absolute path to the key file

    Raises:
        ConfigError: If the selected path does not exist
    """
    path = (
        config.ssh_public_key
        or os.environ.get("GCE_SSH_PUBLIC_KEY")
        or DEFAULT_SSH_KEY
    )
    path = os.path.expanduser(path)
    if not os.path.isfile(path):
        raise ConfigError(f"Could not find GCE Public SSH Key at '{path}'")
    return path


def read_ssh_public_key(config: ProvisionerConfig) -> str:
    """Contents of the SSH public key selected by find_ssh_public_key."""
    with open(find_ssh_public_key(config)) as fh:
        return fh.read().strip()
