"""
Test-host provisioning on Google Compute Engine.

The Provisioner wires the REST client, the lifecycle drivers and the image
resolver together, and runs whole-host flows (boot disk, instance, firewall
rule) for a list of hosts with a summary report at the end.
"""

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import builders
from clients import ComputeRestClient, load_credentials
from config import ProvisionerConfig, read_ssh_public_key
from drivers import DiskDriver, FirewallDriver, InstanceDriver
from errors import ProvisionerError
from images import DEFAULT_POLICY, PlatformImagePolicy, resolve_latest_image
from models import HostResult, ImageCandidate, PollOutcome, ResourceKind, ResourceRef
from poller import OperationPoller

logger = logging.getLogger(__name__)


class Provisioner:
    """Creates and deletes the Compute Engine resources behind test hosts."""

    def __init__(
        self,
        config: ProvisionerConfig,
        api: Optional[ComputeRestClient] = None,
        policy: PlatformImagePolicy = DEFAULT_POLICY,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the provisioner.

        Args:
            config: Provisioner configuration
            api: REST client; built from config credentials if omitted
            policy: Platform to image project table
            cancel_event: Event that aborts any poll in progress when set
        """
        self.config = config
        self.policy = policy
        self.cancel_event = cancel_event or threading.Event()

        if api is None:
            api = ComputeRestClient(
                credentials=load_credentials(config.keyfile),
                timeout_s=config.request_timeout,
                max_retries=config.max_retries,
                cancel_event=self.cancel_event,
            )
        self.api = api

        self.poller = OperationPoller(
            interval=config.poll_interval,
            backoff=config.poll_backoff,
            max_interval=config.max_poll_interval,
            deadline=config.deadline,
            cancel_event=self.cancel_event,
        )
        self.disks = DiskDriver(self.api, self.poller, config.max_attempts)
        self.instances = InstanceDriver(self.api, self.poller, config.max_attempts)
        self.firewalls = FirewallDriver(self.api, self.poller, config.max_attempts)

        self._lock = threading.Lock()
        self.stats = {
            "total": 0,
            "provisioned": 0,
            "torn_down": 0,
            "failed": 0,
            "dry_run": 0,
        }
        self.run_start_time: Optional[float] = None
        self.run_end_time: Optional[float] = None
        self.results: List[HostResult] = []

    def cancel(self) -> None:
        """Abort polling in every running lifecycle call."""
        logger.warning("Cancellation requested; in-flight polls will stop")
        self.cancel_event.set()

    def _ref(self, kind: ResourceKind, name: str) -> ResourceRef:
        return ResourceRef(
            kind=kind, name=name, project=self.config.project_id, zone=self.config.zone
        )

    # Defaults

    @property
    def default_zone(self) -> str:
        return builders.default_zone_url(self.config.project_id, self.config.zone)

    @property
    def default_network(self) -> str:
        return builders.default_network_url(self.config.project_id, self.config.network)

    # Lookups

    def get_machine_type(self, name: Optional[str] = None) -> Optional[Dict]:
        return self.api.get_machine_type(
            self.config.project_id, self.config.zone, name or self.config.machine_type
        )

    def get_network(self, name: Optional[str] = None) -> Optional[Dict]:
        return self.api.get_network(self.config.project_id, name or self.config.network)

    def list_disks(self) -> List[Dict]:
        return self.api.list(ResourceKind.DISK, self.config.project_id, self.config.zone)

    def list_instances(self) -> List[Dict]:
        return self.api.list(
            ResourceKind.INSTANCE, self.config.project_id, self.config.zone
        )

    def list_firewalls(self) -> List[Dict]:
        return self.api.list(
            ResourceKind.FIREWALL, self.config.project_id, self.config.zone
        )

    # Images

    def resolve_latest_image(self, platform: str, candidates) -> ImageCandidate:
        return resolve_latest_image(platform, candidates, self.policy)

    def get_latest_image(self, platform: str) -> ImageCandidate:
        """
        Fetch the image listing for a platform's owner project and pick one.

        The owner project is resolved before any request, so unsupported
        platforms fail without touching the network.
        """
        owner = self.policy.owner_for(platform)
        images = self.api.list_images(owner)
        image = self.resolve_latest_image(platform, images)
        logger.info(f"Latest image for {platform}: {image.name} ({owner})")
        return image

    # Lifecycle operations

    def create_disk(
        self,
        name: str,
        source_image: str,
        attempts: Optional[int] = None,
        start: Optional[float] = None,
    ) -> Dict:
        body = builders.disk_body(name, source_image, size_gb=self.config.disk_size_gb)
        return self.disks.create(self._ref(ResourceKind.DISK, name), body, attempts, start)

    def delete_disk(
        self, name: str, attempts: Optional[int] = None, start: Optional[float] = None
    ) -> PollOutcome:
        return self.disks.delete(self._ref(ResourceKind.DISK, name), attempts, start)

    def create_instance(
        self,
        name: str,
        boot_disk: str,
        metadata: Optional[List[Dict]] = None,
        tags: Optional[Sequence[str]] = None,
        attempts: Optional[int] = None,
        start: Optional[float] = None,
    ) -> Dict:
        body = builders.instance_body(
            name,
            machine_type=builders.machine_type_url(
                self.config.project_id, self.config.zone, self.config.machine_type
            ),
            boot_disk=boot_disk,
            network=self.default_network,
            metadata=metadata,
            tags=tags,
        )
        return self.instances.create(
            self._ref(ResourceKind.INSTANCE, name), body, attempts, start
        )

    def delete_instance(
        self, name: str, attempts: Optional[int] = None, start: Optional[float] = None
    ) -> PollOutcome:
        return self.instances.delete(
            self._ref(ResourceKind.INSTANCE, name), attempts, start
        )

    def create_firewall(
        self,
        name: str,
        target_tags: Optional[Sequence[str]] = None,
        attempts: Optional[int] = None,
        start: Optional[float] = None,
    ) -> Dict:
        body = builders.firewall_body(
            name,
            network=self.default_network,
            ports=self.config.firewall_ports,
            target_tags=target_tags,
        )
        return self.firewalls.create(
            self._ref(ResourceKind.FIREWALL, name), body, attempts, start
        )

    def delete_firewall(
        self, name: str, attempts: Optional[int] = None, start: Optional[float] = None
    ) -> PollOutcome:
        return self.firewalls.delete(
            self._ref(ResourceKind.FIREWALL, name), attempts, start
        )

    def format_metadata(self) -> List[Dict]:
        """Metadata items for test hosts, including the SSH key."""
        return builders.metadata_items(
            ssh_user=self.config.ssh_user,
            ssh_public_key=read_ssh_public_key(self.config),
            department=self.config.department,
            project=self.config.project_label,
            jenkins_build_url=self.config.jenkins_build_url,
        )

    def set_instance_metadata(
        self,
        name: str,
        items: List[Dict],
        fingerprint: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> PollOutcome:
        """
        Replace an instance's metadata.

        The current fingerprint is fetched from the instance when not given.
        """
        ref = self._ref(ResourceKind.INSTANCE, name)
        if fingerprint is None:
            doc = self.api.get(ref.kind, ref.project, ref.zone, ref.name) or {}
            fingerprint = doc.get("metadata", {}).get("fingerprint", "")
        return self.instances.set_metadata(ref, fingerprint, items, attempts)

    # Host flows

    def _record(self, result: HostResult, stat: str) -> None:
        with self._lock:
            self.results.append(result)
            self.stats[stat] += 1

    def provision_host(self, name: str, platform: str) -> HostResult:
        """
        Provision one test host: boot disk, instance and firewall rule.

        Every resource is named after the host. Errors are logged and
        recorded in the returned result rather than raised.
        """
        start = time.time()
        with self._lock:
            self.stats["total"] += 1

        if self.config.dry_run:
            try:
                owner = self.policy.owner_for(platform)
            except ProvisionerError as e:
                result = HostResult(name, "provision", "failed", error_message=str(e))
                self._record(result, "failed")
                return result
            logger.info(f"DRY RUN: Would provision {name} ({platform} from {owner})")
            result = HostResult(name, "provision", "dry_run")
            self._record(result, "dry_run")
            return result

        image_name = None
        try:
            image = self.get_latest_image(platform)
            image_name = image.name
            metadata = self.format_metadata()
            disk = self.create_disk(name, image.self_link)
            instance = self.create_instance(
                name, disk["selfLink"], metadata=metadata, tags=[name]
            )
            self.create_firewall(name, target_tags=[name])
        except ProvisionerError as e:
            end = time.time()
            logger.error(f"Provisioning FAILED for {name}: {e}")
            result = HostResult(
                name,
                "provision",
                "failed",
                start_time=start,
                end_time=end,
                duration_seconds=end - start,
                image=image_name,
                error_message=str(e),
            )
            self._record(result, "failed")
            return result

        end = time.time()
        ip = self._external_ip(instance)
        logger.info(f"✓ Provisioned {name} ({image_name}, ip={ip}) in {end - start:.1f}s")
        result = HostResult(
            name,
            "provision",
            "success",
            start_time=start,
            end_time=end,
            duration_seconds=end - start,
            image=image_name,
            external_ip=ip,
        )
        self._record(result, "provisioned")
        return result

    @staticmethod
    def _external_ip(instance: Dict) -> Optional[str]:
        for nic in instance.get("networkInterfaces", []):
            for access in nic.get("accessConfigs", []):
                if access.get("natIP"):
                    return access["natIP"]
        return None

    def teardown_host(self, name: str) -> HostResult:
        """
        Delete a test host's instance, boot disk and firewall rule.

        The instance goes first since its disk cannot be deleted while
        attached. Later steps still run when an earlier one fails.
        """
        start = time.time()
        with self._lock:
            self.stats["total"] += 1

        if self.config.dry_run:
            logger.info(f"DRY RUN: Would delete instance, disk and firewall {name}")
            result = HostResult(name, "teardown", "dry_run")
            self._record(result, "dry_run")
            return result

        errors: List[str] = []
        for delete in (self.delete_instance, self.delete_disk, self.delete_firewall):
            try:
                delete(name)
            except ProvisionerError as e:
                logger.error(f"Teardown step failed for {name}: {e}")
                errors.append(str(e))

        end = time.time()
        status = "failed" if errors else "success"
        result = HostResult(
            name,
            "teardown",
            status,
            start_time=start,
            end_time=end,
            duration_seconds=end - start,
            error_message="; ".join(errors) or None,
        )
        self._record(result, "failed" if errors else "torn_down")
        return result

    def provision_hosts(self, hosts: Sequence[Tuple[str, str]]) -> Dict:
        """
        Provision several hosts, up to max_parallel at a time.

        Args:
            hosts: (name, platform) pairs

        Returns:
            Statistics dictionary
        """
        return self._run(
            "PROVISION", lambda pool: [pool.submit(self.provision_host, n, p) for n, p in hosts]
        )

    def teardown_hosts(self, names: Sequence[str]) -> Dict:
        """Tear down several hosts, up to max_parallel at a time."""
        return self._run(
            "TEARDOWN", lambda pool: [pool.submit(self.teardown_host, n) for n in names]
        )

    def _run(self, action: str, submit) -> Dict:
        self.run_start_time = time.time()
        logger.info("=" * 70)
        logger.info(f"GCE test host {action.lower()}")
        logger.info("=" * 70)
        logger.info(f"Project: {self.config.project_id}")
        logger.info(f"Zone: {self.config.zone}")
        logger.info(f"Dry run: {self.config.dry_run}")
        logger.info(f"Max parallel: {self.config.max_parallel}")
        logger.info(f"Poll interval: {self.config.poll_interval}s")
        logger.info(f"Max attempts: {self.config.max_attempts}")
        logger.info("=" * 70)

        with ThreadPoolExecutor(max_workers=max(1, self.config.max_parallel)) as pool:
            for future in submit(pool):
                future.result()

        self.run_end_time = time.time()
        self._print_report(action)
        return self.stats

    @staticmethod
    def _format_duration(seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes, secs = divmod(int(seconds), 60)
        return f"{minutes}m {secs}s"

    def _print_report(self, action: str):
        """Print a status report for the run."""
        total_duration = self.run_end_time - self.run_start_time

        logger.info("")
        logger.info("=" * 70)
        logger.info(f"{action} REPORT")
        logger.info("=" * 70)
        logger.info(f"Total duration:  {self._format_duration(total_duration)}")

        logger.info("")
        logger.info("STATISTICS")
        logger.info("-" * 40)
        for k, v in self.stats.items():
            logger.info(f"{k:20s}: {v}")

        failed = [r for r in self.results if r.status == "failed"]
        if failed:
            logger.info("")
            logger.info("FAILED HOSTS")
            logger.info("-" * 40)
            for r in failed:
                error = (
                    (r.error_message[:60] + "...")
                    if r.error_message and len(r.error_message) > 60
                    else (r.error_message or "Unknown")
                )
                logger.info(f"{r.name:<25} {r.action:<10} {error}")

        logger.info("=" * 70)

    def export_results_json(self, filename: Optional[str] = None) -> str:
        """Write the run results to a JSON file and return its name."""
        report = {
            "project_id": self.config.project_id,
            "zone": self.config.zone,
            "dry_run": self.config.dry_run,
            "statistics": self.stats,
            "results": [
                {
                    "name": r.name,
                    "action": r.action,
                    "status": r.status,
                    "start_time": (
                        datetime.fromtimestamp(r.start_time).isoformat()
                        if r.start_time
                        else None
                    ),
                    "duration_seconds": r.duration_seconds,
                    "image": r.image,
                    "external_ip": r.external_ip,
                    "error_message": r.error_message,
                }
                for r in self.results
            ],
        }

        filename = (
            filename
            or f"gce-hosts-report-{datetime.now().strftime('%Y%m%d-%H%M%S')}.json"
        )
        with open(filename, "w") as f:
            json.dump(report, f, indent=2)
        logger.info(f"Detailed report exported to: {filename}")
        return filename
