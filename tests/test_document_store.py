from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from app.services.document_store import LocalDocumentStore, validate_upload
from app.services.errors import ValidationError


class ValidateUploadTests(unittest.TestCase):
    def test_accepts_pdf_jpeg_png(self) -> None:
        self.assertEqual(validate_upload('invoice.PDF', 'application/pdf', 10, max_bytes=100), '.pdf')
        self.assertEqual(validate_upload('photo.jpeg', 'image/jpeg', 10, max_bytes=100), '.jpeg')
        self.assertEqual(validate_upload('scan.png', 'image/png', 10, max_bytes=100), '.png')

    def test_rejects_other_types_and_mismatched_extensions(self) -> None:
        for filename, mime_type in (
            ('notes.txt', 'text/plain'),
            ('invoice.exe', 'application/pdf'),
            ('invoice', 'application/pdf'),
        ):
            with self.subTest(filename=filename):
                with self.assertRaises(ValidationError):
                    validate_upload(filename, mime_type, 10, max_bytes=100)

    def test_rejects_empty_and_oversized_files(self) -> None:
        with self.assertRaises(ValidationError):
            validate_upload('invoice.pdf', 'application/pdf', 0, max_bytes=100)
        with self.assertRaises(ValidationError):
            validate_upload('invoice.pdf', 'application/pdf', 101, max_bytes=100)


class LocalDocumentStoreTests(unittest.TestCase):
    def test_store_writes_file_and_returns_url(self) -> None:
        with tempfile.TemporaryDirectory() as directory:
            store = LocalDocumentStore(directory, '/files/')
            url = store.store(b'%PDF-1.4 test', 'application/pdf', 'invoice.pdf')

            self.assertTrue(url.startswith('/files/'))
            self.assertTrue(url.endswith('.pdf'))
            stored = Path(directory) / url.rsplit('/', 1)[1]
            self.assertEqual(stored.read_bytes(), b'%PDF-1.4 test')

    def test_store_never_reuses_names(self) -> None:
        with tempfile.TemporaryDirectory() as directory:
            store = LocalDocumentStore(directory, '/files')
            first = store.store(b'a', 'image/png', 'a.png')
            second = store.store(b'a', 'image/png', 'a.png')
            self.assertNotEqual(first, second)


if __name__ == '__main__':
    unittest.main()
