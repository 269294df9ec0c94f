import os
from unittest.mock import MagicMock

from boto3.exceptions import RetriesExceededError
from botocore.exceptions import ClientError

from chunked_upload.services.storage.base import CHUNK_EXISTS
from chunked_upload.services.storage.s3 import S3ChunkStore, S3FinalStorage


def _client_error(operation):
    return ClientError({"Error": {"Code": "500", "Message": "boom"}}, operation)


def _store(client=None, prefix="chunks/"):
    return S3ChunkStore(s3_client=client or MagicMock(), bucket="uploads", prefix=prefix)


def test_object_key_uses_prefix_and_hashed_location():
    store = _store()

    assert store.object_key("abc.0") == "chunks/" + store.hashed_location("abc.0")


def test_write_puts_object():
    client = MagicMock()
    store = _store(client)

    status = store.write("abc.0", b"payload")

    assert status.is_good()
    client.put_object.assert_called_once_with(
        Bucket="uploads", Key=store.object_key("abc.0"), Body=b"payload", IfNoneMatch="*"
    )


def test_write_to_taken_key_reports_existing_chunk():
    client = MagicMock()
    client.put_object.side_effect = ClientError(
        {"Error": {"Code": "PreconditionFailed", "Message": "At least one of the pre-conditions failed"}},
        "PutObject",
    )
    store = _store(client)

    status = store.write("abc.0", b"payload")

    assert status.first_failure() == (CHUNK_EXISTS, store.object_key("abc.0"))


def test_write_failure_is_reported_as_status():
    client = MagicMock()
    client.put_object.side_effect = _client_error("PutObject")
    store = _store(client)

    status = store.write("abc.0", b"payload")

    assert not status.is_ok()
    assert status.first_failure()[:2] == ("backend-fail-store", store.object_key("abc.0"))


def test_concatenate_downloads_in_order_and_deletes_sources(tmp_path):
    client = MagicMock()
    store = _store(client)
    payloads = {store.object_key("abc.0"): b"first-", store.object_key("abc.1"): b"second"}
    client.download_fileobj.side_effect = lambda bucket, key, fileobj: fileobj.write(payloads[key])
    client.delete_objects.return_value = {}
    dest = tmp_path / "merged"

    status = store.concatenate(["abc.0", "abc.1"], str(dest), delete_sources=True)

    assert status.is_good()
    assert dest.read_bytes() == b"first-second"
    client.delete_objects.assert_called_once_with(
        Bucket="uploads",
        Delete={"Objects": [{"Key": store.object_key("abc.0")}, {"Key": store.object_key("abc.1")}], "Quiet": True},
    )


def test_concatenate_failure_keeps_sources(tmp_path):
    client = MagicMock()
    client.download_fileobj.side_effect = _client_error("GetObject")
    store = _store(client)
    dest = tmp_path / "merged"

    status = store.concatenate(["abc.0", "abc.1"], str(dest), delete_sources=True)

    assert not status.is_ok()
    assert status.first_failure()[0] == "backend-fail-concatenate"
    client.delete_objects.assert_not_called()
    assert not dest.exists()
    assert not os.path.exists(f"{dest}.staging")


def test_concatenate_transfer_failure_removes_staging_file(tmp_path):
    client = MagicMock()
    client.download_fileobj.side_effect = RetriesExceededError(ConnectionError("reset"))
    store = _store(client)
    dest = tmp_path / "merged"

    status = store.concatenate(["abc.0"], str(dest), delete_sources=True)

    assert status.first_failure()[0] == "backend-fail-concatenate"
    assert not os.path.exists(f"{dest}.staging")
    client.delete_objects.assert_not_called()


def test_delete_reports_per_key_errors():
    client = MagicMock()
    client.delete_objects.return_value = {"Errors": [{"Key": "chunks/x", "Message": "AccessDenied"}]}
    store = _store(client)

    status = store.delete(["abc.0"])

    assert status.first_failure() == ("backend-fail-delete", "chunks/x", "AccessDenied")


def test_delete_batches_requests():
    client = MagicMock()
    client.delete_objects.return_value = {}
    store = _store(client)

    store.delete([f"abc.{i}" for i in range(1500)])

    assert client.delete_objects.call_count == 2


def test_promote_uploads_and_removes_local_file(tmp_path):
    client = MagicMock()
    source = tmp_path / "assembled"
    source.write_bytes(b"data")
    storage = S3FinalStorage(s3_client=client, bucket="uploads")

    location = storage.promote(str(source), "abc/movie.mp4")

    client.upload_file.assert_called_once_with(str(source), "uploads", "abc/movie.mp4")
    assert location.endswith("uploads/abc/movie.mp4")
    assert not source.exists()
