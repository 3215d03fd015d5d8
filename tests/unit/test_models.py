# ABOUTME: Unit tests for the data model and kubectl JSON parsing
# ABOUTME: Tests total parsing, defaults for missing fields and malformed records

from datetime import UTC, datetime

import pytest
from conftest import application_json

from argocd_status.core.models import (
    Application,
    DetectionMethod,
    HealthStatusCode,
    InstallationStatus,
    OperationPhase,
    SyncStatusCode,
    parse_application,
    parse_applications,
    parse_timestamp,
)


@pytest.mark.unit
class TestStatusEnums:
    """Tests for lenient status enum parsing."""

    def test_known_values(self):
        """Test ArgoCD's strings map to members."""
        assert SyncStatusCode.parse("OutOfSync") is SyncStatusCode.OUT_OF_SYNC
        assert HealthStatusCode.parse("Suspended") is HealthStatusCode.SUSPENDED

    def test_unknown_values_map_to_unknown(self):
        """Test unrecognized or mistyped values become Unknown."""
        assert SyncStatusCode.parse("Pending") is SyncStatusCode.UNKNOWN
        assert HealthStatusCode.parse(None) is HealthStatusCode.UNKNOWN
        assert HealthStatusCode.parse(42) is HealthStatusCode.UNKNOWN

    def test_members_pass_through(self):
        """Test enum members are returned unchanged."""
        assert SyncStatusCode.parse(SyncStatusCode.SYNCED) is SyncStatusCode.SYNCED


@pytest.mark.unit
class TestParseTimestamp:
    """Tests for RFC 3339 timestamp parsing."""

    def test_zulu_timestamp(self):
        """Test Kubernetes-style UTC timestamps."""
        assert parse_timestamp("2024-01-15T10:30:00Z") == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def test_naive_timestamp_is_utc(self):
        """Test timestamps without offset are treated as UTC."""
        assert parse_timestamp("2024-01-15T10:30:00").tzinfo is not None

    def test_invalid_values(self):
        """Test unparseable values become None."""
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None


@pytest.mark.unit
class TestParseApplication:
    """Tests for parse_application."""

    def test_full_record(self):
        """Test a complete record maps every field."""
        raw = application_json(
            phase="Succeeded",
            finished_at="2024-01-15T10:01:00Z",
            message="successfully synced",
            resources=[
                {
                    "kind": "Deployment",
                    "name": "guestbook-ui",
                    "namespace": "default",
                    "status": "OutOfSync",
                    "health": {"status": "Progressing", "message": "rolling out"},
                    "requiresPruning": False,
                }
            ],
        )

        app = parse_application(raw)

        assert app is not None
        assert app.name == "guestbook"
        assert app.namespace == "argocd"
        assert app.project == "default"
        assert app.sync_status.status is SyncStatusCode.SYNCED
        assert app.sync_status.revision.startswith("4f2c1a9")
        assert app.sync_status.target.repo_url.endswith("argocd-example-apps.git")
        assert app.health_status.status is HealthStatusCode.HEALTHY
        assert app.destination_namespace == "default"
        assert app.created_at == datetime(2024, 1, 1, tzinfo=UTC)

        resource = app.resources[0]
        assert resource.kind == "Deployment"
        assert resource.sync_status == "OutOfSync"
        assert resource.health_status is HealthStatusCode.PROGRESSING
        assert resource.message == "rolling out"

        assert app.last_operation is not None
        assert app.last_operation.phase is OperationPhase.SUCCEEDED
        assert app.last_operation.is_terminal is True
        assert app.synced_at == datetime(2024, 1, 15, 10, 1, tzinfo=UTC)

    def test_missing_status_maps_to_defaults(self):
        """Test a freshly created Application without status parses."""
        app = parse_application({"metadata": {"name": "new", "namespace": "argocd"}})

        assert app is not None
        assert app.sync_status.status is SyncStatusCode.UNKNOWN
        assert app.health_status.status is HealthStatusCode.UNKNOWN
        assert app.health_status.message is None
        assert app.resources == ()
        assert app.last_operation is None
        assert app.project == "default"

    def test_mistyped_fields_map_to_defaults(self):
        """Test wrong JSON types never raise."""
        raw = {
            "metadata": {"name": "odd", "namespace": "argocd"},
            "spec": "not-an-object",
            "status": {"sync": ["Synced"], "health": {"status": 7}, "resources": {"kind": "x"}},
        }

        app = parse_application(raw)

        assert app is not None
        assert app.sync_status.status is SyncStatusCode.UNKNOWN
        assert app.health_status.status is HealthStatusCode.UNKNOWN
        assert app.resources == ()

    def test_resource_without_health(self):
        """Test resources without a health block have no health status."""
        raw = application_json(resources=[{"kind": "ConfigMap", "name": "cfg", "status": "Synced"}, "junk"])

        app = parse_application(raw)

        assert len(app.resources) == 1
        assert app.resources[0].health_status is None

    def test_missing_name_is_malformed(self):
        """Test records without metadata.name are rejected."""
        assert parse_application({"metadata": {"namespace": "argocd"}}) is None

    def test_missing_namespace_is_malformed(self):
        """Test records without metadata.namespace are rejected."""
        assert parse_application({"metadata": {"name": "x"}}) is None

    def test_non_object_is_malformed(self):
        """Test non-object records are rejected."""
        assert parse_application(["guestbook"]) is None
        assert parse_application(None) is None

    def test_terminal_operation_without_finish_time(self):
        """Test a terminal phase always has finished_at."""
        app = parse_application(application_json(phase="Failed", message="hook failed"))

        op = app.last_operation
        assert op.phase is OperationPhase.FAILED
        assert op.finished_at == op.started_at
        assert op.message == "hook failed"

    def test_running_operation_has_no_finish_time(self):
        """Test a running operation keeps finished_at unset."""
        app = parse_application(application_json(phase="Running"))

        assert app.last_operation.finished_at is None
        assert app.last_operation.is_terminal is False
        assert app.synced_at is None

    def test_unknown_phase_drops_operation(self):
        """Test an unrecognized phase is treated as no operation."""
        app = parse_application(application_json(phase="Queued"))

        assert app.last_operation is None

    def test_operation_without_start_time_dropped(self):
        """Test an operation without startedAt is treated as no operation."""
        raw = application_json()
        raw["status"]["operationState"] = {"phase": "Running"}

        assert parse_application(raw).last_operation is None

    def test_compared_to_source_preferred(self):
        """Test the compared source wins over spec.source."""
        raw = application_json()
        raw["status"]["sync"]["comparedTo"] = {"source": {"repoURL": "https://charts.example.com", "chart": "redis"}}

        app = parse_application(raw)

        assert app.sync_status.target.repo_url == "https://charts.example.com"
        assert app.sync_status.target.chart == "redis"


@pytest.mark.unit
class TestParseApplications:
    """Tests for batch parsing."""

    def test_skips_malformed_records(self):
        """Test 2 malformed records in a batch of 10 leave 8 applications."""
        items = [application_json(name=f"app-{i}") for i in range(8)]
        items.insert(3, {"metadata": {"namespace": "argocd"}})
        items.append("garbage")

        apps = parse_applications(items)

        assert len(apps) == 8
        assert [a.name for a in apps] == [f"app-{i}" for i in range(8)]

    def test_non_list_returns_empty(self):
        """Test a missing items field parses to no applications."""
        assert parse_applications(None) == []
        assert parse_applications({"items": []}) == []


@pytest.mark.unit
class TestApplicationIdentity:
    """Tests for Application equality."""

    def test_equality_by_name_and_namespace(self):
        """Test two fetches of the same app compare equal despite new status."""
        first = parse_application(application_json(sync="Synced"))
        second = parse_application(application_json(sync="OutOfSync"))

        assert first == second
        assert first.key == ("guestbook", "argocd")
        assert len({first, second}) == 1

    def test_different_namespace_not_equal(self):
        """Test namespace is part of identity."""
        assert Application(name="a", namespace="one") != Application(name="a", namespace="two")


@pytest.mark.unit
class TestInstallationStatus:
    """Tests for InstallationStatus."""

    def test_effective_namespace_falls_back(self):
        """Test the conventional namespace is used when undetected."""
        status = InstallationStatus(installed=True, detection_method=DetectionMethod.FALLBACK_QUERY)

        assert status.effective_namespace() == "argocd"
        assert status.effective_namespace("gitops") == "gitops"

    def test_effective_namespace_prefers_detected(self):
        """Test a detected namespace wins."""
        status = InstallationStatus(
            installed=True,
            detection_method=DetectionMethod.PRIMARY_SOURCE,
            namespace="argo-system",
        )

        assert status.effective_namespace() == "argo-system"
