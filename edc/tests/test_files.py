"""
Unit tests for upload file handling and blob storage.

Tests cover:
- Extension checks and categories
- Text extraction for each supported format
- Decode failures
- In-memory and S3 blob storage (S3 client mocked)
"""

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from edc.ingestion.files import (
    FileProcessingError,
    file_extension,
    file_type_category,
    is_valid_file_type,
    process_file_content,
)
from edc.ingestion.storage import InMemoryBlobStorage, S3BlobStorage, StorageError, build_object_key


# =============================================================
# Test: File types
# =============================================================


class TestFileTypes:
    def test_extension(self):
        assert file_extension("Protocol.V2.PDF") == "pdf"
        assert file_extension("README") == ""

    @pytest.mark.parametrize("name", ["a.pdf", "a.docx", "a.xlsx", "a.csv", "a.md", "a.txt", "a.json"])
    def test_valid(self, name):
        assert is_valid_file_type(name)

    @pytest.mark.parametrize("name", ["a.exe", "a.doc", "a"])
    def test_invalid(self, name):
        assert not is_valid_file_type(name)

    def test_categories(self):
        assert file_type_category("a.pdf") == "document"
        assert file_type_category("a.csv") == "spreadsheet"
        assert file_type_category("a.json") == "data"
        assert file_type_category("a.log") == "text"


# =============================================================
# Test: Content extraction
# =============================================================


class TestProcessFileContent:
    def test_text(self):
        processed = process_file_content(b"Phase II study of drug X", "protocol.txt")
        assert processed.content == "Phase II study of drug X"
        assert processed.file_type == "document"
        assert processed.word_count == 6

    def test_json_reindented(self):
        processed = process_file_content(b'{"studyName":"ABC"}', "study.json")
        assert json.loads(processed.content) == {"studyName": "ABC"}
        assert "\n" in processed.content

    def test_csv(self):
        processed = process_file_content(b"name,phase\nABC,II\n", "studies.csv")
        assert processed.content.startswith("CSV Headers: name, phase")
        data = json.loads(processed.content.split("Data:\n", 1)[1])
        assert data == [{"name": "ABC", "phase": "II"}]

    def test_pdf_placeholder(self):
        processed = process_file_content(b"%PDF" + b"0" * 4096, "protocol.pdf")
        assert processed.content.startswith("[PDF Document - 4 KB")

    def test_docx_placeholder(self):
        processed = process_file_content(b"PK..", "protocol.docx")
        assert "DOCX content extraction is not available" in processed.content

    def test_unsupported(self):
        with pytest.raises(FileProcessingError, match="Unsupported file type"):
            process_file_content(b"MZ", "tool.exe")

    def test_invalid_utf8(self):
        with pytest.raises(FileProcessingError):
            process_file_content(b"\xff\xfe\xfa", "notes.txt")

    def test_invalid_json(self):
        with pytest.raises(FileProcessingError):
            process_file_content(b"{not json", "study.json")


# =============================================================
# Test: Blob storage
# =============================================================


class TestInMemoryBlobStorage:
    def test_upload_and_get(self):
        storage = InMemoryBlobStorage(bucket="test", prefix="uploads")
        blob = storage.upload(b"data", "protocol.pdf", "application/pdf")
        assert blob.uri.startswith("s3://test/uploads/")
        assert blob.uri.endswith("-protocol.pdf")
        assert blob.file_size == 4
        assert storage.get(blob.uri) == b"data"
        assert storage.download_url(blob.uri) == f"memory://test/{blob.key}"

    def test_unknown_uri(self):
        storage = InMemoryBlobStorage(bucket="test")
        with pytest.raises(StorageError):
            storage.download_url("s3://test/missing.pdf")

    def test_other_bucket(self):
        with pytest.raises(StorageError, match="not in bucket"):
            InMemoryBlobStorage(bucket="test").download_url("s3://other/file.pdf")


class TestS3BlobStorage:
    def test_upload(self):
        client = MagicMock()
        storage = S3BlobStorage("bucket", prefix="in", client=client)
        blob = storage.upload(b"abc", "p.txt", "text/plain")

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "bucket"
        assert kwargs["Key"] == blob.key
        assert kwargs["ContentType"] == "text/plain"
        assert kwargs["Metadata"]["originalName"] == "p.txt"
        assert blob.uri == f"s3://bucket/{blob.key}"

    def test_upload_failure(self):
        client = MagicMock()
        client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject",
        )
        with pytest.raises(StorageError):
            S3BlobStorage("bucket", client=client).upload(b"abc", "p.txt", "text/plain")

    def test_download_url(self):
        client = MagicMock()
        client.generate_presigned_url.return_value = "https://signed"
        storage = S3BlobStorage("bucket", client=client)
        assert storage.download_url("s3://bucket/in/p.txt", expires_in=60) == "https://signed"
        client.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": "bucket", "Key": "in/p.txt"},
            ExpiresIn=60,
        )

    def test_object_key(self):
        key = build_object_key("a.pdf", "prefix/")
        assert key.startswith("prefix/")
        assert key.endswith("-a.pdf")
