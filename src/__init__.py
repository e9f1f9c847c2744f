"""
GCE test-host provisioner.
"""

from clients import ComputeRestClient, load_credentials
from config import ProvisionerConfig
from drivers import DiskDriver, FirewallDriver, InstanceDriver
from images import DEFAULT_POLICY, PlatformImagePolicy, resolve_latest_image
from log_utils import setup_logging
from models import ImageCandidate, OperationStatus, PollOutcome, ResourceKind, ResourceRef
from poller import OperationPoller, Verdict, poll
from provisioner import Provisioner

__all__ = [
    "ComputeRestClient",
    "load_credentials",
    "ProvisionerConfig",
    "DiskDriver",
    "FirewallDriver",
    "InstanceDriver",
    "DEFAULT_POLICY",
    "PlatformImagePolicy",
    "resolve_latest_image",
    "setup_logging",
    "ImageCandidate",
    "OperationStatus",
    "PollOutcome",
    "ResourceKind",
    "ResourceRef",
    "OperationPoller",
    "Verdict",
    "poll",
    "Provisioner",
]
