"""Tests for K8sJobService."""

from datetime import UTC, datetime, timedelta, timezone
from itertools import count
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client import (
    V1ContainerStatus,
    V1CronJob,
    V1CronJobSpec,
    V1Job,
    V1JobSpec,
    V1JobStatus,
    V1JobTemplateSpec,
    V1ObjectMeta,
    V1Pod,
    V1PodStatus,
    V1PodTemplateSpec,
)
from kubernetes.client.exceptions import ApiException
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from kubejobs_api.core.config import Settings
from kubejobs_api.models.k8s import UnitStatus
from kubejobs_api.services.cluster import ClusterClient, ClusterService, PoolNotFoundError
from kubejobs_api.services.identity import ServiceAccountError
from kubejobs_api.services.k8s_jobs import (
    MANUAL_INSTANTIATE_ANNOTATION,
    JobAlreadyExistsError,
    JobNotFoundError,
    JobProvisionError,
    K8sJobService,
    TriggerAlreadyPendingError,
    get_manual_job_name,
    unit_status,
)
from kubejobs_api.services.resources import ResourceRequirementsError

NAMESPACE = "kubejobs-p1"


@pytest.fixture
def mock_batch_api():
    """Create a mock BatchV1Api."""
    api = MagicMock()
    api.create_namespaced_cron_job.side_effect = lambda namespace, body: body
    return api


@pytest.fixture
def mock_core_api():
    """Create a mock CoreV1Api with no service accounts yet."""
    api = MagicMock()
    api.read_namespaced_service_account.side_effect = ApiException(
        status=404, reason="Not Found"
    )
    return api


@pytest.fixture
def cluster_service(mock_batch_api, mock_core_api):
    """Cluster service resolving every pool to the mocked APIs."""
    service = MagicMock(spec=ClusterService)
    service.client_for_pool.side_effect = lambda pool: ClusterClient(
        pool=pool,
        namespace=NAMESPACE,
        batch_api=mock_batch_api,
        core_api=mock_core_api,
    )
    return service


@pytest.fixture
def settings() -> Settings:
    """Settings with a known label prefix."""
    return Settings(label_prefix="kubejobs.io/", otel_enabled=False)


@pytest.fixture
def k8s_service(settings, cluster_service):
    """Create a K8sJobService with mocked clusters and a fixed clock."""
    return K8sJobService(settings=settings, cluster_service=cluster_service, clock=lambda: 120.0)


def make_cronjob(name="foo", annotations=None) -> V1CronJob:
    """Build a CronJob as returned by the API server."""
    return V1CronJob(
        metadata=V1ObjectMeta(
            name=name,
            namespace=NAMESPACE,
            uid="4f6c-uid",
            labels={"kubejobs.io/job-name": name},
            annotations=annotations,
        ),
        spec=V1CronJobSpec(
            schedule="*/5 * * * *",
            suspend=True,
            job_template=V1JobTemplateSpec(
                spec=V1JobSpec(backoff_limit=2, template=V1PodTemplateSpec())
            ),
        ),
    )


def make_execution(name, failed=None, succeeded=None, created_at=None) -> V1Job:
    """Build an execution with status counters."""
    return V1Job(
        metadata=V1ObjectMeta(
            name=name,
            namespace=NAMESPACE,
            creation_timestamp=created_at or datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
        ),
        status=V1JobStatus(failed=failed, succeeded=succeeded),
    )


def make_pod(*restart_counts) -> V1Pod:
    """Build a pod whose containers restarted the given number of times."""
    return V1Pod(
        status=V1PodStatus(
            container_statuses=[
                V1ContainerStatus(
                    name=f"c{i}",
                    image="busybox",
                    image_id="busybox@sha256:0",
                    ready=False,
                    restart_count=restarts,
                )
                for i, restarts in enumerate(restart_counts)
            ]
        )
    )


class TestCreateJob:
    """Tests for creating a job's CronJob."""

    def test_create_job_returns_cronjob_name(self, k8s_service, make_job, mock_batch_api):
        """Test that the CronJob is named after the job."""
        name = k8s_service.create_job(make_job(name="mailer"))

        assert name == "mailer"
        call_args = mock_batch_api.create_namespaced_cron_job.call_args
        assert call_args.kwargs["namespace"] == NAMESPACE
        cronjob = call_args.kwargs["body"]
        assert cronjob.metadata.name == "mailer"
        assert cronjob.metadata.namespace == NAMESPACE
        assert cronjob.spec.schedule == "*/5 * * * *"
        assert cronjob.spec.suspend is False

    def test_create_job_applies_labels_everywhere(self, k8s_service, make_job, mock_batch_api):
        """Test that the CronJob and its pod template carry the merged labels."""
        k8s_service.create_job(make_job())

        cronjob = mock_batch_api.create_namespaced_cron_job.call_args.kwargs["body"]
        template = cronjob.spec.job_template.spec.template
        assert cronjob.metadata.labels["kubejobs.io/job-name"] == "mailer"
        assert cronjob.metadata.labels["kubejobs.io/job-pool"] == "p1"
        assert template.metadata.labels == cronjob.metadata.labels
        assert cronjob.spec.job_template.spec.ttl_seconds_after_finished == 86400

    def test_create_job_provisions_service_account_first(
        self, k8s_service, make_job, mock_core_api
    ):
        """Test that the job's service account is created."""
        k8s_service.create_job(make_job())

        body = mock_core_api.create_namespaced_service_account.call_args.kwargs["body"]
        assert body.metadata.name == "job-mailer"
        assert body.metadata.labels["kubejobs.io/is-service-account"] == "true"

    def test_create_job_already_exists(self, k8s_service, make_job, mock_batch_api):
        """Test that a duplicate create is an error, not a no-op."""
        mock_batch_api.create_namespaced_cron_job.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(JobAlreadyExistsError) as exc_info:
            k8s_service.create_job(make_job())

        assert exc_info.value.step == "create_cronjob"
        assert exc_info.value.status == 409

    def test_create_job_generic_failure(self, k8s_service, make_job, mock_batch_api):
        """Test that transport failures surface with their step."""
        mock_batch_api.create_namespaced_cron_job.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        with pytest.raises(JobProvisionError, match="Internal Server Error") as exc_info:
            k8s_service.create_job(make_job())

        assert not isinstance(exc_info.value, JobAlreadyExistsError)

    def test_identity_failure_aborts_create(
        self, k8s_service, make_job, mock_batch_api, mock_core_api
    ):
        """Test that no CronJob is created when the service account fails."""
        mock_core_api.read_namespaced_service_account.side_effect = ApiException(
            status=403, reason="Forbidden"
        )

        with pytest.raises(ServiceAccountError):
            k8s_service.create_job(make_job())

        mock_batch_api.create_namespaced_cron_job.assert_not_called()

    def test_compilation_failure_aborts_create(
        self, settings, cluster_service, make_job, mock_batch_api
    ):
        """Test that resource errors stop before any CronJob write."""

        def failing_resources(job):
            raise ResourceRequirementsError(job.name, "bad plan")

        service = K8sJobService(
            settings=settings,
            cluster_service=cluster_service,
            resource_resolver=failing_resources,
        )

        with pytest.raises(ResourceRequirementsError):
            service.create_job(make_job())

        mock_batch_api.create_namespaced_cron_job.assert_not_called()

    def test_unknown_pool(self, k8s_service, make_job, cluster_service, mock_batch_api):
        """Test that pool resolution errors propagate unchanged."""
        cluster_service.client_for_pool.side_effect = PoolNotFoundError("p9", "not registered")

        with pytest.raises(PoolNotFoundError):
            k8s_service.create_job(make_job(pool="p9"))

        mock_batch_api.create_namespaced_cron_job.assert_not_called()


class TestUpdateJob:
    """Tests for replacing a job's CronJob."""

    def test_update_job_replaces_full_cronjob(self, k8s_service, make_job, mock_batch_api):
        """Test that the CronJob is replaced under the same name."""
        k8s_service.update_job(make_job(schedule="0 * * * *"))

        call_args = mock_batch_api.replace_namespaced_cron_job.call_args
        assert call_args.kwargs["name"] == "mailer"
        assert call_args.kwargs["namespace"] == NAMESPACE
        cronjob = call_args.kwargs["body"]
        assert cronjob.spec.schedule == "0 * * * *"
        assert cronjob.spec.job_template.spec.active_deadline_seconds == 3600

    def test_update_missing_cronjob_is_not_an_upsert(
        self, k8s_service, make_job, mock_batch_api
    ):
        """Test that updating a missing CronJob fails without creating one."""
        mock_batch_api.replace_namespaced_cron_job.side_effect = ApiException(
            status=404, reason="Not Found"
        )

        with pytest.raises(JobNotFoundError) as exc_info:
            k8s_service.update_job(make_job())

        assert exc_info.value.step == "update_cronjob"
        mock_batch_api.create_namespaced_cron_job.assert_not_called()

    def test_update_refreshes_service_account(self, k8s_service, make_job, mock_core_api):
        """Test that update goes through identity provisioning too."""
        k8s_service.update_job(make_job())

        mock_core_api.create_namespaced_service_account.assert_called_once()


class TestManualJobName:
    """Tests for manual execution naming."""

    def test_same_minute_same_name(self):
        """Test that 120 and 121 fall in the same minute."""
        assert get_manual_job_name("foo", 120) == get_manual_job_name("foo", 121)
        assert get_manual_job_name("foo", 120) == "foo-manual-job-2"

    def test_next_minute_distinct_name(self):
        """Test that 180 starts a new minute."""
        assert get_manual_job_name("foo", 180) == "foo-manual-job-3"

    def test_minute_boundary(self):
        """Test that one second across a boundary changes the name."""
        assert get_manual_job_name("foo", 179) != get_manual_job_name("foo", 180)


class TestTriggerCron:
    """Tests for manual triggers."""

    def test_trigger_copies_cronjob_template(self, k8s_service, mock_batch_api):
        """Test the execution built from the CronJob."""
        cron = make_cronjob(annotations={"contact": "ops"})
        mock_batch_api.read_namespaced_cron_job.return_value = cron

        name = k8s_service.trigger_cron("foo", "p1")

        assert name == "foo-manual-job-2"
        mock_batch_api.read_namespaced_cron_job.assert_called_once_with(
            name="foo", namespace=NAMESPACE
        )
        call_args = mock_batch_api.create_namespaced_job.call_args
        assert call_args.kwargs["namespace"] == NAMESPACE
        execution = call_args.kwargs["body"]
        assert execution.metadata.name == "foo-manual-job-2"
        assert execution.metadata.namespace == NAMESPACE
        assert execution.metadata.labels == cron.metadata.labels
        assert execution.metadata.annotations == {
            "contact": "ops",
            MANUAL_INSTANTIATE_ANNOTATION: "manual",
        }
        assert execution.spec == cron.spec.job_template.spec

    def test_trigger_sets_owner_reference(self, k8s_service, mock_batch_api):
        """Test that the execution points back at its CronJob."""
        mock_batch_api.read_namespaced_cron_job.return_value = make_cronjob()

        k8s_service.trigger_cron("foo", "p1")

        execution = mock_batch_api.create_namespaced_job.call_args.kwargs["body"]
        (owner,) = execution.metadata.owner_references
        assert owner.kind == "CronJob"
        assert owner.name == "foo"
        assert owner.uid == "4f6c-uid"
        assert owner.api_version == "batch/v1"

    def test_trigger_without_annotations(self, k8s_service, mock_batch_api):
        """Test that the manual annotation is added when none exist."""
        mock_batch_api.read_namespaced_cron_job.return_value = make_cronjob(annotations=None)

        k8s_service.trigger_cron("foo", "p1")

        execution = mock_batch_api.create_namespaced_job.call_args.kwargs["body"]
        assert execution.metadata.annotations == {MANUAL_INSTANTIATE_ANNOTATION: "manual"}

    def test_trigger_does_not_mutate_cronjob(self, k8s_service, mock_batch_api):
        """Test that the CronJob's own annotations are left untouched."""
        cron = make_cronjob(annotations={"contact": "ops"})
        mock_batch_api.read_namespaced_cron_job.return_value = cron

        k8s_service.trigger_cron("foo", "p1")

        assert cron.metadata.annotations == {"contact": "ops"}

    def test_second_trigger_in_same_minute_is_rejected(
        self, settings, cluster_service, mock_batch_api
    ):
        """Test that a duplicate trigger surfaces as pending, not retried."""
        ticks = iter([120.0, 121.0])
        service = K8sJobService(
            settings=settings, cluster_service=cluster_service, clock=lambda: next(ticks)
        )
        mock_batch_api.read_namespaced_cron_job.return_value = make_cronjob()
        mock_batch_api.create_namespaced_job.side_effect = [
            MagicMock(),
            ApiException(status=409, reason="AlreadyExists"),
        ]

        assert service.trigger_cron("foo", "p1") == "foo-manual-job-2"
        with pytest.raises(TriggerAlreadyPendingError) as exc_info:
            service.trigger_cron("foo", "p1")

        assert exc_info.value.name == "foo-manual-job-2"
        assert mock_batch_api.create_namespaced_job.call_count == 2

    def test_trigger_in_next_minute_gets_new_name(
        self, settings, cluster_service, mock_batch_api
    ):
        """Test that triggers in different minutes do not collide."""
        ticks = iter([120.0, 180.0])
        service = K8sJobService(
            settings=settings, cluster_service=cluster_service, clock=lambda: next(ticks)
        )
        mock_batch_api.read_namespaced_cron_job.return_value = make_cronjob()

        first = service.trigger_cron("foo", "p1")
        second = service.trigger_cron("foo", "p1")

        assert (first, second) == ("foo-manual-job-2", "foo-manual-job-3")

    def test_trigger_missing_cronjob(self, k8s_service, mock_batch_api):
        """Test that a missing CronJob is reported and nothing is created."""
        mock_batch_api.read_namespaced_cron_job.side_effect = ApiException(
            status=404, reason="Not Found"
        )

        with pytest.raises(JobNotFoundError):
            k8s_service.trigger_cron("foo", "p1")

        mock_batch_api.create_namespaced_job.assert_not_called()


class TestTriggerTracing:
    """Tests for the spans recorded around manual triggers."""

    @pytest.fixture
    def spans(self):
        """Record finished spans from the job service in memory."""
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        with patch(
            "kubejobs_api.services.k8s_jobs.tracer", provider.get_tracer("kubejobs-test")
        ):
            yield exporter

    def test_failed_read_is_traced(self, k8s_service, mock_batch_api, spans):
        """Test that a missing CronJob shows up as a failed trigger span."""
        mock_batch_api.read_namespaced_cron_job.side_effect = ApiException(status=404)

        with pytest.raises(JobNotFoundError):
            k8s_service.trigger_cron("foo", "p1")

        (span,) = spans.get_finished_spans()
        assert span.name == "kubejobs.trigger_cron"
        assert span.attributes["kubejobs.pool"] == "p1"
        assert span.status.status_code == StatusCode.ERROR
        assert "kubejobs.execution" not in span.attributes

    def test_unknown_pool_is_traced(self, k8s_service, cluster_service, spans):
        """Test that pool resolution happens inside the span."""
        cluster_service.client_for_pool.side_effect = PoolNotFoundError("p9", "not registered")

        with pytest.raises(PoolNotFoundError):
            k8s_service.trigger_cron("foo", "p9")

        (span,) = spans.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR

    def test_successful_trigger_span(self, k8s_service, mock_batch_api, spans):
        """Test the attributes of a successful trigger."""
        mock_batch_api.read_namespaced_cron_job.return_value = make_cronjob()

        k8s_service.trigger_cron("foo", "p1")

        (span,) = spans.get_finished_spans()
        assert span.attributes["kubejobs.job"] == "foo"
        assert span.attributes["kubejobs.execution"] == "foo-manual-job-2"


class TestUnitStatus:
    """Tests for execution status precedence."""

    def test_failure_outranks_success(self):
        """Test failed=1, succeeded=1 reports error."""
        assert unit_status(make_execution("e", failed=1, succeeded=1)) == UnitStatus.ERROR

    def test_succeeded(self):
        """Test failed=0, succeeded=1 reports succeeded."""
        assert unit_status(make_execution("e", failed=0, succeeded=1)) == UnitStatus.SUCCEEDED

    def test_started(self):
        """Test failed=0, succeeded=0 reports started."""
        assert unit_status(make_execution("e", failed=0, succeeded=0)) == UnitStatus.STARTED

    def test_no_status(self):
        """Test that an execution without status is started."""
        assert unit_status(V1Job(metadata=V1ObjectMeta(name="e"))) == UnitStatus.STARTED


class TestJobUnits:
    """Tests for listing a job's units."""

    def test_no_executions(self, k8s_service, make_job, mock_batch_api):
        """Test that a job without executions has no units."""
        mock_batch_api.list_namespaced_job.return_value = MagicMock(items=[])

        assert k8s_service.job_units(make_job()) == []

    def test_executions_selected_by_job_labels(self, k8s_service, make_job, mock_batch_api):
        """Test the selector used to find a job's executions."""
        mock_batch_api.list_namespaced_job.return_value = MagicMock(items=[])

        k8s_service.job_units(make_job())

        call_args = mock_batch_api.list_namespaced_job.call_args
        assert call_args.kwargs["namespace"] == NAMESPACE
        selector = call_args.kwargs["label_selector"].split(",")
        assert "kubejobs.io/job-name=mailer" in selector
        assert "kubejobs.io/job-pool=p1" in selector

    def test_units_aggregate_pods(self, k8s_service, make_job, mock_batch_api, mock_core_api):
        """Test status and restart aggregation per execution."""
        mock_batch_api.list_namespaced_job.return_value = MagicMock(
            items=[
                make_execution("mailer-28600000", failed=1, succeeded=1),
                make_execution("mailer-manual-job-2", succeeded=1),
            ]
        )
        pods = {
            "job-name=mailer-28600000": [make_pod(1, 2), make_pod(3)],
            "job-name=mailer-manual-job-2": [make_pod(0)],
        }
        mock_core_api.list_namespaced_pod.side_effect = lambda namespace, label_selector: (
            MagicMock(items=pods[label_selector])
        )

        units = k8s_service.job_units(make_job())

        assert [(u.id, u.status, u.restarts) for u in units] == [
            ("mailer-28600000", UnitStatus.ERROR, 6),
            ("mailer-manual-job-2", UnitStatus.SUCCEEDED, 0),
        ]
        assert units[0].name == units[0].id

    def test_created_at_is_utc(self, k8s_service, make_job, mock_batch_api, mock_core_api):
        """Test that creation times are normalised to UTC."""
        local = timezone(timedelta(hours=-3))
        mock_batch_api.list_namespaced_job.return_value = MagicMock(
            items=[make_execution("e1", created_at=datetime(2024, 5, 1, 9, 0, tzinfo=local))]
        )
        mock_core_api.list_namespaced_pod.return_value = MagicMock(items=[])

        (unit,) = k8s_service.job_units(make_job())

        assert unit.created_at == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        assert unit.created_at.utcoffset() == timedelta(0)

    def test_list_failure_aborts(self, k8s_service, make_job, mock_batch_api):
        """Test that a listing failure is raised."""
        mock_batch_api.list_namespaced_job.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        with pytest.raises(JobProvisionError) as exc_info:
            k8s_service.job_units(make_job())

        assert exc_info.value.step == "list_jobs"

    def test_pod_list_failure_aborts(
        self, k8s_service, make_job, mock_batch_api, mock_core_api
    ):
        """Test that a pod listing failure aborts the whole call."""
        mock_batch_api.list_namespaced_job.return_value = MagicMock(
            items=[make_execution("e1"), make_execution("e2")]
        )
        mock_core_api.list_namespaced_pod.side_effect = ApiException(status=503)

        with pytest.raises(JobProvisionError) as exc_info:
            k8s_service.job_units(make_job())

        assert exc_info.value.step == "list_pods"


class TestDestroyJob:
    """Tests for destroying a job."""

    def test_destroy_deletes_account_then_cronjob(
        self, k8s_service, make_job, mock_batch_api, mock_core_api
    ):
        """Test that both objects are deleted."""
        k8s_service.destroy_job(make_job())

        mock_core_api.delete_namespaced_service_account.assert_called_once_with(
            name="job-mailer", namespace=NAMESPACE
        )
        mock_batch_api.delete_namespaced_cron_job.assert_called_once_with(
            name="mailer", namespace=NAMESPACE
        )

    def test_missing_service_account_is_tolerated(
        self, k8s_service, make_job, mock_batch_api, mock_core_api
    ):
        """Test that a missing account does not stop the CronJob delete."""
        mock_core_api.delete_namespaced_service_account.side_effect = ApiException(status=404)

        k8s_service.destroy_job(make_job())

        mock_batch_api.delete_namespaced_cron_job.assert_called_once()

    def test_service_account_failure_propagates(
        self, k8s_service, make_job, mock_batch_api, mock_core_api
    ):
        """Test that other account delete failures are raised."""
        mock_core_api.delete_namespaced_service_account.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        with pytest.raises(ServiceAccountError):
            k8s_service.destroy_job(make_job())

    def test_missing_cronjob(self, k8s_service, make_job, mock_batch_api):
        """Test that a missing CronJob is reported."""
        mock_batch_api.delete_namespaced_cron_job.side_effect = ApiException(status=404)

        with pytest.raises(JobNotFoundError) as exc_info:
            k8s_service.destroy_job(make_job())

        assert exc_info.value.step == "delete_cronjob"


class TestJobLifecycle:
    """End-to-end lifecycle against an in-memory CronJob API."""

    @pytest.fixture
    def cronjobs(self, mock_batch_api):
        """Store CronJobs written through the mocked API."""
        store: dict[tuple[str, str], V1CronJob] = {}
        uids = count(1)

        def create(namespace, body):
            key = (namespace, body.metadata.name)
            if key in store:
                raise ApiException(status=409, reason="AlreadyExists")
            body.metadata.uid = f"uid-{next(uids)}"
            store[key] = body
            return body

        def replace(name, namespace, body):
            if (namespace, name) not in store:
                raise ApiException(status=404, reason="Not Found")
            store[(namespace, name)] = body
            return body

        mock_batch_api.create_namespaced_cron_job.side_effect = create
        mock_batch_api.replace_namespaced_cron_job.side_effect = replace
        mock_batch_api.list_namespaced_job.return_value = MagicMock(items=[])
        return store

    def test_create_update_and_list(self, k8s_service, make_job, cronjobs):
        """Test create, update to manual, and an empty unit list."""
        job = make_job(name="mailer", pool="p1", schedule="*/5 * * * *", manual=False)

        assert k8s_service.create_job(job) == "mailer"
        assert k8s_service.job_units(job) == []
        assert cronjobs[(NAMESPACE, "mailer")].spec.suspend is False

        k8s_service.update_job(make_job(name="mailer", pool="p1", manual=True))

        assert list(cronjobs) == [(NAMESPACE, "mailer")]
        updated = cronjobs[(NAMESPACE, "mailer")]
        assert updated.spec.suspend is True
        assert updated.metadata.name == "mailer"
        assert updated.metadata.namespace == NAMESPACE

    def test_duplicate_create_fails(self, k8s_service, make_job, cronjobs):
        """Test that a second create of the same job fails."""
        k8s_service.create_job(make_job())

        with pytest.raises(JobAlreadyExistsError):
            k8s_service.create_job(make_job())
