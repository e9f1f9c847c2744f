"""
Unit tests for the disk, instance and firewall lifecycle drivers.
"""

import unittest
from unittest.mock import MagicMock

from drivers import DiskDriver, FirewallDriver, InstanceDriver
from errors import (
    ApiError,
    CreateFailed,
    DeleteFailed,
    ExhaustedAttempts,
    InvalidResourceRef,
    MetadataUpdateFailed,
    OperationFailed,
)
from models import OperationStatus, ResourceKind, ResourceRef
from poller import OperationPoller

OP_LINK = "https://compute.googleapis.com/compute/v1/projects/p/zones/z/operations/op-1"


def operation(status="RUNNING", error=None):
    op = {"kind": "compute#operation", "name": "op-1", "status": status, "selfLink": OP_LINK}
    if error:
        op["error"] = {"errors": [{"code": "QUOTA_EXCEEDED", "message": error}]}
    return op


class DriverTestCase(unittest.TestCase):
    """Shared fixtures: a mocked API and a poller that never sleeps."""

    def setUp(self):
        self.api = MagicMock()
        self.poller = OperationPoller(interval=0, clock=lambda: 0.0)
        self.disk = ResourceRef(ResourceKind.DISK, "beaker-disk", "beaker-compute", "us-central1-a")
        self.driver = DiskDriver(self.api, self.poller, default_attempts=3)


class TestCreate(DriverTestCase):
    """Test create-and-confirm-ready."""

    def test_create_polls_until_done_then_gets(self):
        """Test create returns the materialised document after DONE."""
        self.api.insert.return_value = operation()
        self.api.get_operation.side_effect = [operation("RUNNING"), operation("DONE")]
        self.api.get.return_value = {"name": "beaker-disk", "status": "READY"}

        doc = self.driver.create(self.disk, {"name": "beaker-disk"})

        self.assertEqual(doc["status"], "READY")
        self.api.insert.assert_called_once_with(
            ResourceKind.DISK, "beaker-compute", "us-central1-a", {"name": "beaker-disk"}
        )
        self.assertEqual(self.api.get_operation.call_count, 2)
        self.api.get.assert_called_once_with(
            ResourceKind.DISK, "beaker-compute", "us-central1-a", "beaker-disk"
        )

    def test_operation_error_aborts(self):
        """Test a failed operation raises CreateFailed without further probes."""
        self.api.insert.return_value = operation()
        self.api.get_operation.return_value = operation("DONE", error="Quota exceeded")

        with self.assertRaises(CreateFailed) as ctx:
            self.driver.create(self.disk, {}, attempts=10)

        self.assertIsInstance(ctx.exception.cause, OperationFailed)
        self.assertEqual(ctx.exception.cause.reason, "Quota exceeded")
        self.assertEqual(self.api.get_operation.call_count, 1)
        self.api.get.assert_not_called()

    def test_vanished_operation_fails_fast(self):
        """Test an operation that is no longer found fails on the first probe."""
        self.api.insert.return_value = operation()
        self.api.get_operation.return_value = None

        with self.assertRaises(CreateFailed) as ctx:
            self.driver.create(self.disk, {}, attempts=10)

        self.assertIsInstance(ctx.exception.cause, OperationFailed)
        self.assertIn("op-1 no longer exists", ctx.exception.cause.reason)
        self.assertEqual(ctx.exception.outcome.last_status, OperationStatus.NOT_FOUND)
        self.assertEqual(self.api.get_operation.call_count, 1)
        self.api.get.assert_not_called()

    def test_exhausted_budget(self):
        """Test a never-finishing operation reports ExhaustedAttempts."""
        self.api.insert.return_value = operation()
        self.api.get_operation.return_value = operation("RUNNING")

        with self.assertRaises(CreateFailed) as ctx:
            self.driver.create(self.disk, {})

        err = ctx.exception
        self.assertIsInstance(err.cause, ExhaustedAttempts)
        self.assertTrue(err.cause.may_still_complete)
        self.assertEqual(err.outcome.attempts_used, 3)
        self.assertEqual(self.api.get_operation.call_count, 3)

    def test_insert_rejected(self):
        """Test an API error on insert surfaces as CreateFailed."""
        self.api.insert.side_effect = ApiError(409, "already exists")

        with self.assertRaises(CreateFailed) as ctx:
            self.driver.create(self.disk, {})

        self.assertIsInstance(ctx.exception.cause, ApiError)
        self.assertEqual(ctx.exception.outcome.attempts_used, 0)

    def test_missing_after_done(self):
        """Test a resource missing after DONE is reported as a failure."""
        self.api.insert.return_value = operation()
        self.api.get_operation.return_value = operation("DONE")
        self.api.get.return_value = None

        with self.assertRaises(CreateFailed) as ctx:
            self.driver.create(self.disk, {})
        self.assertIsInstance(ctx.exception.cause, OperationFailed)
        self.assertFalse(ctx.exception.outcome.succeeded)

    def test_invalid_ref_makes_no_request(self):
        """Test refs with empty identity fields are rejected up front."""
        bad = ResourceRef(ResourceKind.DISK, "beaker-disk", "beaker-compute", "")
        with self.assertRaises(InvalidResourceRef):
            self.driver.create(bad, {})
        self.api.insert.assert_not_called()

    def test_wrong_kind(self):
        """Test a driver refuses refs of another kind."""
        ref = ResourceRef(ResourceKind.INSTANCE, "i", "p", "z")
        with self.assertRaises(ValueError):
            self.driver.create(ref, {})


class TestDelete(DriverTestCase):
    """Test delete-and-confirm-gone."""

    def test_delete_polls_until_not_found(self):
        """Test delete succeeds as soon as the lookup reports not found."""
        self.api.delete.return_value = operation()
        self.api.get.side_effect = [{"name": "beaker-disk"}, {"name": "beaker-disk"}, None]

        outcome = self.driver.delete(self.disk)

        self.assertTrue(outcome.succeeded)
        self.assertEqual(outcome.attempts_used, 3)
        self.assertEqual(outcome.last_status, OperationStatus.NOT_FOUND)

    def test_gone_on_first_probe(self):
        """Test a resource already gone on the first probe needs no more probes."""
        self.api.delete.return_value = operation()
        self.api.get.return_value = None

        outcome = self.driver.delete(self.disk)

        self.assertTrue(outcome.succeeded)
        self.assertEqual(self.api.get.call_count, 1)

    def test_already_absent(self):
        """Test deleting a missing resource is a zero-probe success."""
        self.api.delete.return_value = None

        outcome = self.driver.delete(self.disk)

        self.assertTrue(outcome.succeeded)
        self.assertEqual(outcome.attempts_used, 0)
        self.api.get.assert_not_called()

    def test_still_present(self):
        """Test a resource that never disappears raises DeleteFailed."""
        self.api.delete.return_value = operation()
        self.api.get.return_value = {"name": "beaker-disk", "users": ["instance-1"]}

        with self.assertRaises(DeleteFailed) as ctx:
            self.driver.delete(self.disk, attempts=4)

        self.assertEqual(self.api.get.call_count, 4)
        self.assertIsInstance(ctx.exception.cause, ExhaustedAttempts)
        self.assertIn("beaker-disk", str(ctx.exception))


class TestOtherDrivers(unittest.TestCase):
    """Test the instance and firewall drivers."""

    def setUp(self):
        self.api = MagicMock()
        self.poller = OperationPoller(interval=0, clock=lambda: 0.0)

    def test_firewall_create(self):
        """Test firewall rules go through the same create flow."""
        ref = ResourceRef(ResourceKind.FIREWALL, "beaker-fw", "beaker-compute", "us-central1-a")
        self.api.insert.return_value = operation()
        self.api.get_operation.return_value = operation("DONE")
        self.api.get.return_value = {"name": "beaker-fw"}

        doc = FirewallDriver(self.api, self.poller).create(ref, {"name": "beaker-fw"})

        self.assertEqual(doc["name"], "beaker-fw")

    def test_instance_set_metadata(self):
        """Test metadata updates wait for their operation."""
        ref = ResourceRef(ResourceKind.INSTANCE, "beaker-vm", "beaker-compute", "us-central1-a")
        items = [{"key": "sshKeys", "value": "google_compute:abc"}]
        self.api.set_metadata.return_value = operation()
        self.api.get_operation.side_effect = [operation("RUNNING"), operation("DONE")]

        outcome = InstanceDriver(self.api, self.poller).set_metadata(ref, "fp=", items)

        self.assertTrue(outcome.succeeded)
        self.api.set_metadata.assert_called_once_with(
            "beaker-compute", "us-central1-a", "beaker-vm", "fp=", items
        )

    def test_instance_set_metadata_failure(self):
        """Test failed metadata updates raise MetadataUpdateFailed."""
        ref = ResourceRef(ResourceKind.INSTANCE, "beaker-vm", "beaker-compute", "us-central1-a")
        self.api.set_metadata.return_value = operation()
        self.api.get_operation.return_value = operation("DONE", error="Fingerprint mismatch")

        with self.assertRaises(MetadataUpdateFailed):
            InstanceDriver(self.api, self.poller).set_metadata(ref, "stale", [])


if __name__ == "__main__":
    unittest.main()
