import io
import unittest
from unittest.mock import patch

import boto3
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from eprocurement.errors import TransientIntegrationError
from eprocurement.infrastructure.storage import S3ObjectStore, attachment_path
from tests.helpers.temp_db import TempDbSandbox


class LocalObjectStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self._sandbox = TempDbSandbox(prefix="storage")
        self.store = self._sandbox.object_store()

    def tearDown(self) -> None:
        self._sandbox.cleanup()

    def test_put_get_delete(self) -> None:
        key = attachment_path(7, "Cotizacion.PDF")
        self.assertTrue(key.startswith("proposal-attachments/7/"))
        self.assertTrue(key.endswith(".pdf"))

        self.assertEqual(self.store.put(key, b"%PDF-1.4"), key)
        self.assertEqual(self.store.get(key), b"%PDF-1.4")
        self.assertTrue(self.store.delete(key))
        self.assertFalse(self.store.delete(key))
        with self.assertRaises(FileNotFoundError):
            self.store.get(key)

    def test_keys_cannot_escape_root(self) -> None:
        for key in ("../fuera.pdf", "/etc/passwd", "", "a/../../b"):
            with self.subTest(key=key):
                with self.assertRaises(ValueError):
                    self.store.put(key, b"x")

    def test_write_failures_are_transient(self) -> None:
        with patch("pathlib.Path.write_bytes", side_effect=PermissionError("solo lectura")):
            with self.assertRaises(TransientIntegrationError) as ctx:
                self.store.put("proposal-attachments/1/a.pdf", b"x")
        self.assertEqual(ctx.exception.code, "storage_unavailable")
        self.assertEqual(ctx.exception.http_status, 503)

    def test_attachment_without_extension(self) -> None:
        self.assertTrue(attachment_path(1, "sin_extension").endswith(".bin"))

class S3ObjectStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self.client = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="test",
            aws_secret_access_key="test",
        )
        self.stubber = Stubber(self.client)
        self.stubber.activate()
        self.store = S3ObjectStore("licitaciones", client=self.client, key_prefix="eprocurement")

    def tearDown(self) -> None:
        self.stubber.deactivate()

    def test_put_get_delete(self) -> None:
        key = "proposal-attachments/3/1700000000000_ab12cd34.pdf"
        object_key = f"eprocurement/{key}"
        self.stubber.add_response(
            "put_object",
            {},
            {"Bucket": "licitaciones", "Key": object_key, "Body": ANY, "ContentType": "application/pdf"},
        )
        self.stubber.add_response(
            "get_object",
            {"Body": StreamingBody(io.BytesIO(b"%PDF-1.4"), len(b"%PDF-1.4"))},
            {"Bucket": "licitaciones", "Key": object_key},
        )
        self.stubber.add_response("head_object", {}, {"Bucket": "licitaciones", "Key": object_key})
        self.stubber.add_response("delete_object", {}, {"Bucket": "licitaciones", "Key": object_key})
        self.stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)

        self.assertEqual(self.store.put(key, b"%PDF-1.4", "application/pdf"), key)
        self.assertEqual(self.store.get(key), b"%PDF-1.4")
        self.assertTrue(self.store.delete(key))
        self.assertFalse(self.store.delete(key))
        self.stubber.assert_no_pending_responses()

    def test_missing_object_reads_as_file_not_found(self) -> None:
        self.stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        with self.assertRaises(FileNotFoundError):
            self.store.get("proposal-attachments/1/x.pdf")

    def test_client_errors_are_transient(self) -> None:
        self.stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
        with self.assertRaises(TransientIntegrationError) as ctx:
            self.store.put("proposal-attachments/1/a.pdf", b"x")
        self.assertEqual(ctx.exception.code, "storage_unavailable")
        self.assertEqual(ctx.exception.http_status, 503)

        self.stubber.add_client_error("get_object", service_error_code="SlowDown", http_status_code=503)
        with self.assertRaises(TransientIntegrationError):
            self.store.get("proposal-attachments/1/a.pdf")

    def test_keys_cannot_escape_prefix(self) -> None:
        with self.assertRaises(ValueError):
            self.store.put("../otro-bucket.pdf", b"x")
        self.stubber.assert_no_pending_responses()

    def test_missing_bucket_is_reported_without_calling_s3(self) -> None:
        store = S3ObjectStore.from_config({"STORAGE_BUCKET": None, "STORAGE_REGION": "us-east-1"})
        with self.assertRaises(TransientIntegrationError) as ctx:
            store.put("proposal-attachments/1/a.pdf", b"x")
        self.assertEqual(ctx.exception.code, "storage_unavailable")
        self.assertIsNone(store._client)

    def test_from_config_passes_endpoint_for_minio(self) -> None:
        store = S3ObjectStore.from_config(
            {
                "STORAGE_BUCKET": "licitaciones",
                "STORAGE_ENDPOINT_URL": "http://minio:9000",
                "STORAGE_REGION": "us-east-1",
                "STORAGE_ACCESS_KEY_ID": "minio",
                "STORAGE_SECRET_ACCESS_KEY": "minio123",
            }
        )
        with patch("eprocurement.infrastructure.storage.boto3.client") as client_factory:
            store.client
        client_factory.assert_called_once_with(
            "s3",
            endpoint_url="http://minio:9000",
            region_name="us-east-1",
            aws_access_key_id="minio",
            aws_secret_access_key="minio123",
        )



if __name__ == "__main__":
    unittest.main()
