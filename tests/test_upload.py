"""Tests for the retrying upload operation."""

import io
import threading
import time
from unittest.mock import Mock

import boto3
import pytest
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError, EndpointConnectionError
from botocore.stub import Stubber
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

import s3_objstore.objectstorage.upload as upload_module
from s3_objstore.core import Context
from s3_objstore.core.exceptions import (
    NonRetryableUploadError,
    RetryBudgetExhaustedError,
    ThrottledError,
    UploadCanceledError,
)
from s3_objstore.objectstorage.upload import (
    BotoUploader,
    PutOptions,
    classify_error,
    is_throttling_error,
    try_upload,
)


def client_error(code: str, status: int, operation: str = "PutObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": "error"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class ScriptedUploader:
    """Fake backend that throttles until ``success_after`` attempts were made."""

    def __init__(self, success_after: int = 0, error=None):
        self.success_after = success_after
        self.error = error
        self.attempts = 0
        self.payloads = []
        self._lock = threading.Lock()

    def put_object(self, ctx, bucket, key, body, size, options):
        with self._lock:
            self.attempts += 1
            attempts = self.attempts
        self.payloads.append(body.read())
        if self.error is not None:
            raise self.error
        if attempts < self.success_after:
            raise ThrottledError("SlowDown", bucket=bucket, key=key)


class CountingContext(Context):
    """Context recording every backoff wait."""

    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, seconds):
        self.waits.append(seconds)
        return super().wait(seconds)


def upload(uploader, max_retries, backoff=0, ctx=None, body=b"foo"):
    return try_upload(
        ctx,
        uploader,
        "foo",
        "bar",
        io.BytesIO(body),
        len(body),
        PutOptions(),
        max_retries,
        backoff,
    )


class TestTryUpload:
    """Test retry accounting against a throttling backend."""

    @pytest.mark.parametrize(
        "retries,success_after,want",
        [
            (0, 0, -1),  # immediate success, no retry budget
            (3, 3, 0),  # success on the third attempt
            (3, 0, 2),  # immediate success
            (3, 4, -1),  # success on the last permitted attempt
        ],
    )
    def test_remaining_budget(self, retries, success_after, want):
        """Test the unused retry count returned on success."""
        uploader = ScriptedUploader(success_after=success_after)

        assert upload(uploader, retries) == want
        assert uploader.attempts == max(1, success_after)

    def test_exhausted_retries(self):
        """Test a backend that always throttles exhausts the budget."""
        uploader = ScriptedUploader(success_after=5)

        with pytest.raises(RetryBudgetExhaustedError) as exc_info:
            upload(uploader, 3)

        assert uploader.attempts == 4
        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.__cause__, ThrottledError)

    def test_exhausted_with_zero_retries(self):
        """Test a single throttled attempt exhausts a zero budget."""
        uploader = ScriptedUploader(success_after=2)

        with pytest.raises(RetryBudgetExhaustedError):
            upload(uploader, 0)
        assert uploader.attempts == 1

    def test_non_retryable_fails_fast(self):
        """Test other errors stop after one attempt without waiting."""
        uploader = ScriptedUploader(
            error=NonRetryableUploadError("AccessDenied", bucket="foo", key="bar")
        )
        ctx = CountingContext()

        with pytest.raises(NonRetryableUploadError, match="AccessDenied"):
            upload(uploader, 3, backoff=30, ctx=ctx)

        assert uploader.attempts == 1
        assert ctx.waits == []

    def test_backoff_between_attempts(self):
        """Test the fixed delay is applied before every retry only."""
        uploader = ScriptedUploader(success_after=3)
        ctx = CountingContext()

        assert upload(uploader, 3, backoff=0.01, ctx=ctx) == 0
        assert ctx.waits == [0.01, 0.01]

    def test_no_wait_after_last_attempt(self):
        """Test exhaustion is reported without a trailing wait."""
        uploader = ScriptedUploader(success_after=10)
        ctx = CountingContext()

        with pytest.raises(RetryBudgetExhaustedError):
            upload(uploader, 2, backoff=0.01, ctx=ctx)
        assert len(ctx.waits) == 2

    def test_timedelta_backoff(self):
        """Test backoff may be given as a timedelta."""
        from datetime import timedelta

        uploader = ScriptedUploader(success_after=2)
        ctx = CountingContext()

        upload(uploader, 1, backoff=timedelta(milliseconds=10), ctx=ctx)
        assert ctx.waits == [0.01]

    def test_body_rewound_between_attempts(self):
        """Test every attempt sees the whole payload."""
        uploader = ScriptedUploader(success_after=3)

        upload(uploader, 3, body=b"payload")
        assert uploader.payloads == [b"payload"] * 3

    def test_negative_retries(self):
        """Test a negative budget is rejected."""
        with pytest.raises(ValueError):
            upload(ScriptedUploader(), -1)


class RaisingUploader:
    """Uploader raising the given errors in turn, then succeeding."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.attempts = 0

    def put_object(self, ctx, bucket, key, body, size, options):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)


class TestUnwrappedUploaderErrors:
    """Test errors from uploaders that do not wrap boto3 failures."""

    def test_raw_slowdown_retried(self):
        """Test a raw SlowDown ClientError is retried like ThrottledError."""
        uploader = RaisingUploader(
            client_error("SlowDown", 503), client_error("SlowDown", 503)
        )

        assert upload(uploader, 3) == 0
        assert uploader.attempts == 3

    def test_raw_slowdown_exhausts_budget(self):
        """Test raw throttling errors count against the retry budget."""
        uploader = RaisingUploader(*[client_error("SlowDown", 503)] * 3)

        with pytest.raises(RetryBudgetExhaustedError) as exc_info:
            upload(uploader, 1)

        assert uploader.attempts == 2
        assert isinstance(exc_info.value.__cause__, ThrottledError)

    def test_raw_access_denied_not_retried(self):
        """Test a raw non-throttling ClientError fails after one attempt."""
        error = client_error("AccessDenied", 403)
        uploader = RaisingUploader(error)

        with pytest.raises(NonRetryableUploadError) as exc_info:
            upload(uploader, 3)

        assert uploader.attempts == 1
        assert exc_info.value.__cause__ is error
        assert (exc_info.value.bucket, exc_info.value.key) == ("foo", "bar")

    def test_other_exceptions_propagate(self):
        """Test unrelated exceptions are raised unchanged and not retried."""
        uploader = RaisingUploader(RuntimeError("boom"))

        with pytest.raises(RuntimeError, match="boom"):
            upload(uploader, 3)
        assert uploader.attempts == 1


class TestUploadSpan:
    """Test the span recorded for each upload."""

    @pytest.fixture
    def exporter(self, monkeypatch):
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        monkeypatch.setattr(upload_module, "tracer", provider.get_tracer(__name__))
        return exporter

    def test_success_span(self, exporter):
        """Test a successful upload records its attempts."""
        upload(ScriptedUploader(success_after=2), 3)

        (span,) = exporter.get_finished_spans()
        assert span.name == "objstore.upload"
        assert span.attributes["objstore.attempts"] == 2
        assert span.status.status_code != StatusCode.ERROR

    def test_exhausted_span_is_error(self, exporter):
        """Test an exhausted budget marks the span as failed."""
        with pytest.raises(RetryBudgetExhaustedError):
            upload(ScriptedUploader(success_after=10), 2)

        (span,) = exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes["objstore.attempts"] == 3
        assert [event.name for event in span.events] == ["exception"]
        assert (
            span.events[0].attributes["exception.type"]
            == "RetryBudgetExhaustedError"
        )

    def test_non_retryable_span_is_error(self, exporter):
        """Test a non-retryable failure marks the span as failed."""
        with pytest.raises(NonRetryableUploadError):
            upload(RaisingUploader(client_error("AccessDenied", 403)), 3)

        (span,) = exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR


class TestCancellation:
    """Test cancellation and deadlines."""

    def test_cancelled_before_first_attempt(self):
        """Test a cancelled context makes no attempt."""
        uploader = ScriptedUploader()
        ctx = Context()
        ctx.cancel()

        with pytest.raises(UploadCanceledError, match="canceled"):
            upload(uploader, 3, ctx=ctx)
        assert uploader.attempts == 0

    def test_cancel_during_backoff(self):
        """Test cancelling interrupts the backoff wait promptly."""
        uploader = ScriptedUploader(success_after=10)
        ctx = Context()
        timer = threading.Timer(0.05, ctx.cancel)
        timer.start()

        start = time.monotonic()
        try:
            with pytest.raises(UploadCanceledError):
                upload(uploader, 3, backoff=30, ctx=ctx)
        finally:
            timer.cancel()

        assert time.monotonic() - start < 5
        assert uploader.attempts == 1

    def test_deadline_during_backoff(self):
        """Test an expiring deadline stops the retry loop."""
        uploader = ScriptedUploader(success_after=10)
        ctx = Context.with_deadline_in(0.05)

        start = time.monotonic()
        with pytest.raises(UploadCanceledError, match="deadline"):
            upload(uploader, 3, backoff=30, ctx=ctx)

        assert time.monotonic() - start < 5

    def test_concurrent_uploads_have_own_budgets(self):
        """Test concurrent uploads retry independently."""
        results = {}

        def run(name, success_after):
            results[name] = upload(ScriptedUploader(success_after=success_after), 3)

        threads = [
            threading.Thread(target=run, args=("fast", 0)),
            threading.Thread(target=run, args=("slow", 3)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == {"fast": 2, "slow": 0}


class TestErrorClassification:
    """Test throttling detection on boto3 errors."""

    @pytest.mark.parametrize(
        "code,status",
        [
            ("SlowDown", 503),
            ("SlowDown", 200),
            ("ServiceUnavailable", 503),
            ("Throttling", 400),
            ("503", 503),
        ],
    )
    def test_throttling(self, code, status):
        """Test slow-down codes and 503 responses are throttling."""
        assert is_throttling_error(client_error(code, status))

    @pytest.mark.parametrize(
        "code,status",
        [("AccessDenied", 403), ("NoSuchBucket", 404), ("InternalError", 500)],
    )
    def test_not_throttling(self, code, status):
        """Test other failures are not throttling."""
        assert not is_throttling_error(client_error(code, status))

    def test_wrapped_throttling(self):
        """Test throttling is found through exception chaining."""
        try:
            try:
                raise client_error("SlowDown", 503)
            except ClientError as e:
                raise S3UploadFailedError(f"Failed to upload: {e}")
        except S3UploadFailedError as wrapped:
            assert is_throttling_error(wrapped)

    def test_classify(self):
        """Test errors are wrapped in the matching upload error."""
        throttled = classify_error(client_error("SlowDown", 503), "b", "k")
        failed = classify_error(client_error("AccessDenied", 403), "b", "k")

        assert isinstance(throttled, ThrottledError)
        assert isinstance(failed, NonRetryableUploadError)
        assert (failed.bucket, failed.key) == ("b", "k")


class TestPutOptions:
    """Test request arguments built from put options."""

    def test_extra_args(self):
        """Test headers, metadata, content type and SSE are merged."""
        options = PutOptions(
            user_metadata={
                "X-Amz-Acl": "bucket-owner-full-control",
                "X-Amz-Meta-Owner": "team-a",
                "retention": "30d",
            },
            content_type="application/gzip",
            sse_args={"ServerSideEncryption": "AES256"},
        )

        assert options.extra_args() == {
            "ACL": "bucket-owner-full-control",
            "Metadata": {"Owner": "team-a", "retention": "30d"},
            "ContentType": "application/gzip",
            "ServerSideEncryption": "AES256",
        }

    def test_empty(self):
        """Test default options add nothing."""
        assert PutOptions().extra_args() == {}


class TestBotoUploader:
    """Test the boto3 uploader against stubbed responses."""

    @pytest.fixture
    def stubbed(self, aws_credentials):
        client = boto3.client("s3", region_name="us-east-1")
        with Stubber(client) as stubber:
            yield client, stubber

    def _throttle(self, stubber, times):
        for _ in range(times):
            stubber.add_client_error(
                "put_object",
                service_error_code="SlowDown",
                service_message="Please reduce your request rate.",
                http_status_code=503,
            )

    @pytest.mark.parametrize(
        "retries,throttled,want",
        [(0, 0, -1), (3, 2, 0), (3, 0, 2)],
    )
    def test_retries(self, stubbed, retries, throttled, want):
        """Test the retry loop over a stubbed throttling S3."""
        client, stubber = stubbed
        self._throttle(stubber, throttled)
        stubber.add_response("put_object", {})

        got = upload(BotoUploader(client), retries)

        assert got == want
        stubber.assert_no_pending_responses()

    def test_exhausted(self, stubbed):
        """Test a stubbed S3 that keeps throttling."""
        client, stubber = stubbed
        self._throttle(stubber, 4)

        with pytest.raises(RetryBudgetExhaustedError):
            upload(BotoUploader(client), 3)
        stubber.assert_no_pending_responses()

    def test_access_denied(self, stubbed):
        """Test a non-throttling S3 error is not retried."""
        client, stubber = stubbed
        stubber.add_client_error(
            "put_object", service_error_code="AccessDenied", http_status_code=403
        )
        stubber.add_response("put_object", {})

        with pytest.raises(NonRetryableUploadError, match="AccessDenied"):
            upload(BotoUploader(client), 3)

    def test_network_error_not_retried(self):
        """Test transport failures are non-retryable."""
        client = Mock()
        client.put_object.side_effect = EndpointConnectionError(
            endpoint_url="https://s3.invalid"
        )

        with pytest.raises(NonRetryableUploadError):
            upload(BotoUploader(client), 3)
        assert client.put_object.call_count == 1

    def test_single_put_arguments(self):
        """Test small objects use a single PUT with options applied."""
        client = Mock()
        body = io.BytesIO(b"content")
        options = PutOptions(user_metadata={"a": "b"}, content_type="text/plain")

        BotoUploader(client).put_object(Context(), "bkt", "key", body, 7, options)

        client.put_object.assert_called_once_with(
            Bucket="bkt",
            Key="key",
            Body=body,
            ContentLength=7,
            Metadata={"a": "b"},
            ContentType="text/plain",
        )
        client.upload_fileobj.assert_not_called()

    def test_unknown_size_uses_managed_transfer(self):
        """Test bodies of unknown size use the managed transfer."""
        client = Mock()
        body = io.BytesIO(b"content")

        BotoUploader(client).put_object(
            Context(), "bkt", "key", body, -1, PutOptions(part_size=5 * 1024 * 1024)
        )

        client.put_object.assert_not_called()
        args, kwargs = client.upload_fileobj.call_args
        assert args == (body, "bkt", "key")
        assert kwargs["Config"].multipart_chunksize == 5 * 1024 * 1024

    def test_cancelled_context_skips_request(self):
        """Test a cancelled context raises before any request."""
        client = Mock()
        ctx = Context()
        ctx.cancel()

        with pytest.raises(UploadCanceledError):
            BotoUploader(client).put_object(
                ctx, "bkt", "key", io.BytesIO(b""), 0, PutOptions()
            )
        client.put_object.assert_not_called()
