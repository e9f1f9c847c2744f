"""
Unit tests for the Provisioner facade and host flows.
"""

import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from config import ProvisionerConfig
from errors import NoMatchingImage, UnsupportedPlatform
from models import ResourceKind
from provisioner import Provisioner

CENTOS_IMAGES = [
    {
        "name": "centos-7-v20200401",
        "family": "centos-7",
        "creationTimestamp": "2020-04-01T00:00:00.000-07:00",
        "selfLink": "https://www.googleapis.com/compute/v1/projects/centos-cloud/global/images/centos-7-v20200401",
    },
    {
        "name": "centos-7-v20200603",
        "family": "centos-7",
        "creationTimestamp": "2020-06-03T00:00:00.000-07:00",
        "selfLink": "https://www.googleapis.com/compute/v1/projects/centos-cloud/global/images/centos-7-v20200603",
    },
]

DONE = {"name": "op", "status": "DONE", "selfLink": "op-link"}


def resource_doc(kind, project, zone, name):
    """Materialised documents returned by a successful get."""
    link = f"https://compute.googleapis.com/compute/v1/projects/{project}/zones/{zone}/{kind.collection}/{name}"
    doc = {"name": name, "selfLink": link}
    if kind is ResourceKind.INSTANCE:
        doc["networkInterfaces"] = [{"accessConfigs": [{"natIP": "203.0.113.7"}]}]
        doc["metadata"] = {"fingerprint": "fp-1"}
    return doc


class ProvisionerTestCase(unittest.TestCase):
    """Shared fixtures."""

    def setUp(self):
        self.api = MagicMock()
        self.config = ProvisionerConfig(
            project_id="beaker-compute", poll_interval=0, max_attempts=2
        )
        self.provisioner = Provisioner(self.config, api=self.api)


class TestLookups(ProvisionerTestCase):
    """Test defaults, lookups and image selection."""

    def test_defaults(self):
        """Test default zone and network come from the config."""
        self.assertTrue(
            self.provisioner.default_zone.endswith("projects/beaker-compute/global/zones/us-central1-a")
        )
        self.assertTrue(
            self.provisioner.default_network.endswith("projects/beaker-compute/global/networks/default")
        )

    def test_list_and_get(self):
        """Test list and get helpers use the configured project and zone."""
        self.provisioner.list_disks()
        self.api.list.assert_called_with(ResourceKind.DISK, "beaker-compute", "us-central1-a")
        self.provisioner.list_firewalls()
        self.api.list.assert_called_with(ResourceKind.FIREWALL, "beaker-compute", "us-central1-a")
        self.provisioner.list_instances()
        self.api.list.assert_called_with(ResourceKind.INSTANCE, "beaker-compute", "us-central1-a")
        self.provisioner.get_machine_type()
        self.api.get_machine_type.assert_called_once_with(
            "beaker-compute", "us-central1-a", "n1-standard-2"
        )
        self.provisioner.get_network()
        self.api.get_network.assert_called_once_with("beaker-compute", "default")

    def test_get_latest_image(self):
        """Test the newest image from the owner project is selected."""
        self.api.list_images.return_value = CENTOS_IMAGES

        image = self.provisioner.get_latest_image("centos-7-x86_64")

        self.assertEqual(image.name, "centos-7-v20200603")
        self.api.list_images.assert_called_once_with("centos-cloud")

    def test_get_latest_image_unsupported_makes_no_request(self):
        """Test unsupported platforms fail before any network call."""
        with self.assertRaises(UnsupportedPlatform):
            self.provisioner.get_latest_image("my-custom-image")
        self.api.list_images.assert_not_called()

    def test_get_latest_image_none(self):
        """Test an empty listing raises NoMatchingImage."""
        self.api.list_images.return_value = []
        with self.assertRaises(NoMatchingImage):
            self.provisioner.get_latest_image("centos-7-x86_64")

    def test_cancel(self):
        """Test cancel() signals the shared poller."""
        self.provisioner.cancel()
        self.assertTrue(self.provisioner.poller.cancel_event.is_set())

    @patch("provisioner.load_credentials")
    def test_client_shares_cancel_event(self, mock_creds):
        """Test the built client waits on the same cancel event as the poller."""
        provisioner = Provisioner(self.config)

        mock_creds.assert_called_once_with(None)
        self.assertIs(provisioner.api.cancel_event, provisioner.cancel_event)
        self.assertIs(provisioner.poller.cancel_event, provisioner.cancel_event)

    def test_set_instance_metadata_fetches_fingerprint(self):
        """Test the current fingerprint is looked up when not given."""
        self.api.get.side_effect = resource_doc
        self.api.set_metadata.return_value = DONE
        self.api.get_operation.return_value = DONE

        outcome = self.provisioner.set_instance_metadata("vm1", [{"key": "a", "value": "b"}])

        self.assertTrue(outcome.succeeded)
        self.api.set_metadata.assert_called_once_with(
            "beaker-compute", "us-central1-a", "vm1", "fp-1", [{"key": "a", "value": "b"}]
        )


@patch("provisioner.read_ssh_public_key", return_value="ssh-rsa ABC123")
class TestHostFlows(ProvisionerTestCase):
    """Test provision and teardown of whole hosts."""

    def test_provision_host(self, mock_key):
        """Test disk, instance and firewall are created in order."""
        self.api.list_images.return_value = CENTOS_IMAGES
        self.api.insert.return_value = DONE
        self.api.get_operation.return_value = DONE
        self.api.get.side_effect = resource_doc

        result = self.provisioner.provision_host("web1", "centos-7-x86_64")

        self.assertEqual(result.status, "success", result.error_message)
        self.assertEqual(result.image, "centos-7-v20200603")
        self.assertEqual(result.external_ip, "203.0.113.7")
        kinds = [c[0][0] for c in self.api.insert.call_args_list]
        self.assertEqual(kinds, [ResourceKind.DISK, ResourceKind.INSTANCE, ResourceKind.FIREWALL])

        disk_body = self.api.insert.call_args_list[0][0][3]
        self.assertEqual(disk_body["sourceImage"], CENTOS_IMAGES[1]["selfLink"])
        instance_body = self.api.insert.call_args_list[1][0][3]
        self.assertTrue(instance_body["disks"][0]["source"].endswith("/disks/web1"))
        self.assertIn(
            {"key": "sshKeys", "value": "google_compute:ssh-rsa ABC123"},
            instance_body["metadata"]["items"],
        )
        self.assertEqual(self.provisioner.stats["provisioned"], 1)

    def test_provision_host_failure_recorded(self, mock_key):
        """Test a failed create is recorded, not raised."""
        self.api.list_images.return_value = CENTOS_IMAGES
        self.api.insert.return_value = {"name": "op", "status": "RUNNING", "selfLink": "op"}
        self.api.get_operation.return_value = {"status": "RUNNING"}

        result = self.provisioner.provision_host("web1", "centos-7-x86_64")

        self.assertEqual(result.status, "failed")
        self.assertIn("Create failed for disk 'web1'", result.error_message)
        self.assertEqual(self.api.insert.call_count, 1)
        self.assertEqual(self.provisioner.stats["failed"], 1)

    def test_teardown_host(self, mock_key):
        """Test instance, disk and firewall are deleted in that order."""
        self.api.delete.return_value = DONE
        self.api.get.return_value = None

        result = self.provisioner.teardown_host("web1")

        self.assertEqual(result.status, "success")
        kinds = [c[0][0] for c in self.api.delete.call_args_list]
        self.assertEqual(kinds, [ResourceKind.INSTANCE, ResourceKind.DISK, ResourceKind.FIREWALL])

    def test_teardown_continues_after_failure(self, mock_key):
        """Test a stuck delete does not stop the remaining steps."""
        self.api.delete.return_value = DONE
        # The disk is still attached and never disappears; everything else is gone
        self.api.get.side_effect = (
            lambda kind, project, zone, name: {"name": name}
            if kind is ResourceKind.DISK
            else None
        )

        result = self.provisioner.teardown_host("web1")

        self.assertEqual(result.status, "failed")
        self.assertIn("Delete failed for disk 'web1'", result.error_message)
        self.assertEqual(self.api.delete.call_count, 3)
        self.assertEqual(self.provisioner.stats["failed"], 1)

    def test_dry_run(self, mock_key):
        """Test dry runs make no API calls."""
        self.config.dry_run = True

        stats = self.provisioner.provision_hosts(
            [("web1", "centos-7-x86_64"), ("web2", "my-custom-image")]
        )
        self.provisioner.teardown_host("web1")

        self.assertEqual(stats["dry_run"], 2)
        self.assertEqual(stats["failed"], 1)
        self.assertEqual(stats["total"], 3)
        self.assertEqual(self.api.method_calls, [])

    def test_export_results_json(self, mock_key):
        """Test the JSON report contains every result."""
        self.config.dry_run = True
        self.provisioner.teardown_hosts(["web1", "web2"])

        with tempfile.TemporaryDirectory() as tmp:
            path = self.provisioner.export_results_json(os.path.join(tmp, "report.json"))
            with open(path) as fh:
                report = json.load(fh)

        self.assertEqual(report["project_id"], "beaker-compute")
        self.assertEqual(sorted(r["name"] for r in report["results"]), ["web1", "web2"])


if __name__ == "__main__":
    unittest.main()
