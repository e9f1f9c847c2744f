"""
Request bodies for Compute Engine insert and update calls.
"""

from typing import Dict, Iterable, List, Optional

from clients import API_BASE

DEFAULT_FIREWALL_PORTS = ["22", "443", "8140", "61613", "8080", "8081"]


def default_zone_url(project: str, zone: str) -> str:
    return f"{API_BASE}/projects/{project}/global/zones/{zone}"


def default_network_url(project: str, network: str = "default") -> str:
    return f"{API_BASE}/projects/{project}/global/networks/{network}"


def machine_type_url(project: str, zone: str, machine_type: str) -> str:
    return f"{API_BASE}/projects/{project}/zones/{zone}/machineTypes/{machine_type}"


def disk_type_url(project: str, zone: str, disk_type: str) -> str:
    return f"{API_BASE}/projects/{project}/zones/{zone}/diskTypes/{disk_type}"


def disk_body(
    name: str,
    source_image: str,
    size_gb: int = 25,
    disk_type: Optional[str] = None,
    labels: Optional[Dict[str, str]] = None,
) -> Dict:
    """
    Body for disks.insert.

    Args:
        name: Disk name
        source_image: selfLink of the boot image
        size_gb: Disk size in GB
        disk_type: Optional full diskType URL
        labels: Optional resource labels
    """
    body = {"name": name, "sizeGb": str(size_gb), "sourceImage": source_image}
    if disk_type:
        body["type"] = disk_type
    if labels:
        body["labels"] = dict(labels)
    return body


def instance_body(
    name: str,
    machine_type: str,
    boot_disk: str,
    network: str,
    metadata: Optional[List[Dict]] = None,
    tags: Optional[Iterable[str]] = None,
    labels: Optional[Dict[str, str]] = None,
) -> Dict:
    """
    Body for instances.insert.

    The boot disk must already exist; it is attached by selfLink and kept
    when the instance is deleted so teardown can remove it explicitly.
    """
    body = {
        "name": name,
        "machineType": machine_type,
        "disks": [
            {
                "boot": True,
                "autoDelete": False,
                "type": "PERSISTENT",
                "source": boot_disk,
            }
        ],
        "networkInterfaces": [
            {
                "network": network,
                "accessConfigs": [{"name": "External NAT", "type": "ONE_TO_ONE_NAT"}],
            }
        ],
    }
    if metadata:
        body["metadata"] = {"items": list(metadata)}
    if tags:
        body["tags"] = {"items": sorted(set(tags))}
    if labels:
        body["labels"] = dict(labels)
    return body


def firewall_body(
    name: str,
    network: str,
    ports: Optional[Iterable[str]] = None,
    source_ranges: Optional[Iterable[str]] = None,
    target_tags: Optional[Iterable[str]] = None,
) -> Dict:
    """Body for firewalls.insert: one INGRESS rule allowing TCP ports plus ICMP."""
    body = {
        "name": name,
        "network": network,
        "direction": "INGRESS",
        "allowed": [
            {
                "IPProtocol": "tcp",
                "ports": list(ports if ports is not None else DEFAULT_FIREWALL_PORTS),
            },
            {"IPProtocol": "icmp"},
        ],
        "sourceRanges": list(source_ranges or ["0.0.0.0/0"]),
    }
    if target_tags:
        body["targetTags"] = list(target_tags)
    return body


def metadata_items(
    ssh_user: str,
    ssh_public_key: str,
    department: Optional[str] = None,
    project: Optional[str] = None,
    jenkins_build_url: Optional[str] = None,
) -> List[Dict]:
    """
    Instance metadata entries for a test host.

    Optional labels are included only when set; the sshKeys entry is always
    last.
    """
    items = []
    for key, value in (
        ("department", department),
        ("project", project),
        ("jenkins_build_url", jenkins_build_url),
    ):
        if value:
            items.append({"key": key, "value": value})
    items.append({"key": "sshKeys", "value": f"{ssh_user}:{ssh_public_key.strip()}"})
    return items
