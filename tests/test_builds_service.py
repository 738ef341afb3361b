"""Tests for builds/service.py module."""

import io
from unittest.mock import MagicMock, patch

import boto3
import pytest
from botocore.exceptions import ClientError, ResponseStreamingError
from botocore.response import StreamingBody
from botocore.stub import Stubber

from codebuild_bridge.builds.service import (
    CodeBuildService,
    RemoteCallError,
    SubmissionError,
    create_session,
    submit_build,
)
from codebuild_bridge.types import BuildHandle, BuildRequest, BuildStatus, EnvOverride

HANDLE = BuildHandle(build_id="demo:0001")


def _client(name: str):
    return boto3.client(
        name,
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def service():
    """CodeBuildService over real clients with stubbed responses."""
    svc = CodeBuildService(
        codebuild=_client("codebuild"),
        logs=_client("logs"),
        s3=_client("s3"),
    )
    stubbers = {
        "codebuild": Stubber(svc.codebuild),
        "logs": Stubber(svc.logs),
        "s3": Stubber(svc.s3),
    }
    for stubber in stubbers.values():
        stubber.activate()
    svc.stubbers = stubbers
    yield svc
    for stubber in stubbers.values():
        stubber.assert_no_pending_responses()
        stubber.deactivate()


def _build(**fields):
    build = {"id": HANDLE.build_id, "buildStatus": "IN_PROGRESS", "buildComplete": False}
    build.update(fields)
    return {"builds": [build]}


class TestS3Operations:
    """Tests for upload, archival and download."""

    def test_upload_returns_version(self, service):
        service.stubbers["s3"].add_response("put_object", {"VersionId": "ver-1"})
        assert service.upload_archive(b"zip", "src", "app.zip") == "ver-1"

    def test_upload_unversioned_bucket(self, service):
        service.stubbers["s3"].add_response("put_object", {})
        assert service.upload_archive(b"zip", "src", "app.zip") is None

    def test_upload_failure(self, service):
        service.stubbers["s3"].add_client_error("put_object", service_error_code="AccessDenied")
        with pytest.raises(RemoteCallError, match="upload source archive"):
            service.upload_archive(b"zip", "src", "app.zip")

    def test_list_keys(self, service):
        service.stubbers["s3"].add_response(
            "list_objects_v2",
            {"Contents": [{"Key": "demo/a"}, {"Key": "demo/b"}], "IsTruncated": False},
        )
        assert service.list_keys("artifacts", "demo") == ["demo/a", "demo/b"]

    def test_download(self, service, tmp_path):
        body = StreamingBody(io.BytesIO(b"payload"), len(b"payload"))
        service.stubbers["s3"].add_response("get_object", {"Body": body})

        target = service.download("artifacts", "demo/a", tmp_path / "nested" / "a")

        assert target.read_bytes() == b"payload"

    def test_download_stream_failure_removes_partial_file(self, tmp_path):
        """A connection dropped mid-body becomes RemoteCallError."""

        def chunks():
            yield b"partial"
            raise ResponseStreamingError(error=ConnectionResetError("reset"))

        s3 = MagicMock()
        s3.get_object.return_value = {"Body": MagicMock(iter_chunks=chunks)}
        svc = CodeBuildService(codebuild=MagicMock(), logs=MagicMock(), s3=s3)
        target = tmp_path / "a.txt"

        with pytest.raises(RemoteCallError, match="download s3://artifacts/demo/a"):
            svc.download("artifacts", "demo/a", target)

        assert not target.exists()


class TestCodeBuildOperations:
    """Tests for build submission and status."""

    def test_start_build(self, service):
        request = BuildRequest(
            source_version="ver-1",
            overrides=(EnvOverride("FOO", "bar"),),
            project_name="demo",
        )
        service.stubbers["codebuild"].add_response(
            "start_build",
            {"build": {"id": "demo:0001"}},
            {
                "projectName": "demo",
                "sourceVersion": "ver-1",
                "environmentVariablesOverride": [
                    {"name": "FOO", "value": "bar", "type": "PLAINTEXT"}
                ],
            },
        )

        assert submit_build(service, request) == HANDLE

    def test_start_build_rejected(self, service):
        service.stubbers["codebuild"].add_client_error(
            "start_build", service_error_code="ResourceNotFoundException"
        )
        request = BuildRequest(source_version="ver-1", project_name="missing")

        with pytest.raises(SubmissionError) as exc_info:
            service.start_build(request)

        assert exc_info.value.code == "submission_error"

    def test_is_build_complete(self, service):
        service.stubbers["codebuild"].add_response(
            "batch_get_builds", _build(buildComplete=True), {"ids": [HANDLE.build_id]}
        )
        assert service.is_build_complete(HANDLE) is True

    def test_build_not_found(self, service):
        service.stubbers["codebuild"].add_response("batch_get_builds", {"builds": []})
        with pytest.raises(RemoteCallError) as exc_info:
            service.is_build_complete(HANDLE)
        assert exc_info.value.code == "build_not_found"

    def test_get_build_record(self, service):
        service.stubbers["codebuild"].add_response(
            "batch_get_builds",
            _build(
                buildStatus="FAILED",
                buildComplete=True,
                artifacts={"location": "arn:aws:s3:::artifacts/demo.zip"},
                logs={"groupName": "/aws/codebuild/demo", "streamName": "s1"},
            ),
        )

        record = service.get_build_record(HANDLE)

        assert record.status is BuildStatus.FAILED
        assert record.artifacts_location == "arn:aws:s3:::artifacts/demo.zip"
        assert record.logs.stream_name == "s1"

    def test_log_descriptor_absent_before_running(self, service):
        service.stubbers["codebuild"].add_response("batch_get_builds", _build())
        assert service.get_log_descriptor(HANDLE) is None

    def test_stop_build(self, service):
        service.stubbers["codebuild"].add_response(
            "stop_build", {"build": {"id": HANDLE.build_id}}, {"id": HANDLE.build_id}
        )
        service.stop_build(HANDLE)


class TestFetchLogEvents:
    """Tests for fetch_log_events."""

    def test_first_page_has_no_token(self, service):
        service.stubbers["logs"].add_response(
            "get_log_events",
            {"events": [{"message": "hello\n"}], "nextForwardToken": "f/1"},
            {"logGroupName": "g", "logStreamName": "s", "startFromHead": True},
        )

        batch = service.fetch_log_events("g", "s")

        assert batch.messages == ["hello\n"]
        assert batch.next_token == "f/1"

    def test_token_forwarded(self, service):
        service.stubbers["logs"].add_response(
            "get_log_events",
            {"events": [], "nextForwardToken": "f/1"},
            {"logGroupName": "g", "logStreamName": "s", "startFromHead": True, "nextToken": "f/1"},
        )
        assert service.fetch_log_events("g", "s", "f/1").next_token == "f/1"

    def test_missing_stream_is_empty_page(self, service):
        service.stubbers["logs"].add_client_error(
            "get_log_events", service_error_code="ResourceNotFoundException"
        )

        batch = service.fetch_log_events("g", "s", "f/1")

        assert batch.messages == []
        assert batch.next_token == "f/1"

    def test_other_errors_raise(self, service):
        service.stubbers["logs"].add_client_error(
            "get_log_events", service_error_code="ThrottlingException"
        )
        with pytest.raises(RemoteCallError):
            service.fetch_log_events("g", "s")


class TestCreateSession:
    """Tests for create_session function."""

    @patch("codebuild_bridge.builds.service.boto3.session.Session")
    def test_without_role(self, session_cls):
        session = create_session(region="eu-west-1")

        session_cls.assert_called_once_with(region_name="eu-west-1")
        assert session is session_cls.return_value

    @patch("codebuild_bridge.builds.service.boto3.session.Session")
    def test_assumes_role(self, session_cls):
        base = MagicMock()
        base.client.return_value.assume_role.return_value = {
            "Credentials": {
                "AccessKeyId": "AK",
                "SecretAccessKey": "SK",
                "SessionToken": "TK",
            }
        }
        session_cls.side_effect = [base, MagicMock()]

        create_session(region="eu-west-1", role_arn="arn:aws:iam::1:role/ci")

        base.client.assert_called_once_with("sts")
        session_cls.assert_called_with(
            aws_access_key_id="AK",
            aws_secret_access_key="SK",
            aws_session_token="TK",
            region_name="eu-west-1",
        )

    @patch("codebuild_bridge.builds.service.boto3.session.Session")
    def test_assume_role_failure(self, session_cls):
        error = ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "AssumeRole")
        session_cls.return_value.client.return_value.assume_role.side_effect = error

        with pytest.raises(RemoteCallError) as exc_info:
            create_session(role_arn="arn:aws:iam::1:role/ci")

        assert exc_info.value.code == "assume_role_error"
