"""Resumable upload client with parallel workers and instant-upload dedup."""
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import List, Optional

import requests

from ..services.verifier import compute_file_hash

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
CHUNK_SIZE = 5 * 1024 * 1024  # 5MB
MAX_WORKERS = 4  # Parallel upload threads


class UploadFailed(Exception):
    """Raised when the server rejects a chunk or the final verification"""


class ResumableUploader:
    """Client for the chunked upload API, keyed by the file's content hash."""

    def __init__(
        self,
        api_url: str = API_BASE_URL,
        chunk_size: int = CHUNK_SIZE,
        max_workers: int = MAX_WORKERS,
        hash_algorithm: str = "md5",
        timeout: float = 60.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.chunk_size = chunk_size
        self.max_workers = max_workers
        self.hash_algorithm = hash_algorithm
        self.timeout = timeout

    @property
    def upload_url(self) -> str:
        return f"{self.api_url}/api/upload"

    def calculate_file_hash(self, file_path) -> str:
        """Calculate hash of entire file."""
        return compute_file_hash(file_path, self.hash_algorithm)

    def total_chunks(self, file_size: int) -> int:
        return (file_size + self.chunk_size - 1) // self.chunk_size

    def query(self, file_hash: str, filename: str, chunk_index: Optional[int] = None) -> dict:
        """Ask the server what it already has for this hash."""
        params = {"hash": file_hash, "filename": filename}
        if chunk_index is not None:
            params["chunkIndex"] = chunk_index
        response = requests.get(self.upload_url, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def upload_chunk(
        self,
        file_hash: str,
        filename: str,
        chunk_index: int,
        total_chunks: int,
        chunk_data: bytes,
    ) -> dict:
        """Upload a single chunk. Raises UploadFailed on a rejected chunk."""
        response = requests.post(
            self.upload_url,
            files={"file": (f"{chunk_index}.chunk", chunk_data)},
            data={
                "hash": file_hash,
                "filename": filename,
                "chunkIndex": str(chunk_index),
                "chunks": str(total_chunks),
            },
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise UploadFailed(f"Chunk {chunk_index} rejected ({response.status_code}): {detail}")
        return response.json()

    def upload_file(self, file_path, filename: Optional[str] = None) -> str:
        """
        Upload a file and return its public URL.

        Resuming is automatic: chunks the server already holds for this
        content hash are skipped, and content it already stores is not sent
        at all.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        file_size = file_path.stat().st_size
        if file_size == 0:
            raise UploadFailed("Cannot upload an empty file")
        filename = filename or file_path.name
        total_chunks = self.total_chunks(file_size)

        print("Calculating file hash...")
        file_hash = self.calculate_file_hash(file_path)
        print(f"✓ File {self.hash_algorithm.upper()}: {file_hash}")

        status = self.query(file_hash, filename)
        if status.get("exists"):
            print(f"⚡ Already on server: {status['url']}")
            return status["url"]

        uploaded = set(status.get("uploadedChunks", []))
        pending = [index for index in range(total_chunks) if index not in uploaded]
        print(f"Already uploaded: {len(uploaded)}/{total_chunks} chunks")
        print(f"\nUploading {len(pending)} chunks using {self.max_workers} parallel workers...")

        start_time = time.time()
        url = None
        failures: List[str] = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(
                    self._upload_from_file, file_path, file_hash, filename, index, total_chunks
                ): index
                for index in pending
            }

            for future in as_completed(futures):
                index = futures[future]
                try:
                    result = future.result()
                except (UploadFailed, requests.RequestException) as e:
                    print(f"  ✗ Chunk {index} failed: {e}")
                    failures.append(str(e))
                    continue
                print(f"  ✓ {result.get('message', f'Chunk {index} uploaded')}")
                if result.get("url"):
                    url = result["url"]

        if failures:
            raise UploadFailed(f"{len(failures)} chunk(s) failed, re-run to resume: {failures[0]}")

        # The completing chunk may have lost the race to a concurrent commit
        if url is None:
            status = self.query(file_hash, filename)
            if not status.get("exists"):
                raise UploadFailed("All chunks sent but the server has not committed the file")
            url = status["url"]

        upload_time = time.time() - start_time
        print(f"\n✓ Upload completed successfully!")
        print(f"  URL: {url}")
        print(f"  Time: {upload_time:.2f} seconds")
        return url

    def _upload_from_file(
        self, file_path: Path, file_hash: str, filename: str, index: int, total_chunks: int
    ) -> dict:
        """Read one chunk inside the worker so only in-flight chunks are in memory."""
        chunk_data = self._read_chunk(file_path, index)
        return self.upload_chunk(file_hash, filename, index, total_chunks, chunk_data)

    def _read_chunk(self, file_path: Path, index: int) -> bytes:
        with open(file_path, "rb") as f:
            f.seek(index * self.chunk_size)
            return f.read(self.chunk_size)


def main():
    """CLI for the resumable uploader."""
    if len(sys.argv) < 2:
        print("Usage:")
        print("  python -m resumable_upload.client.uploader <file_path> [--api <url>]")
        sys.exit(1)

    file_path = sys.argv[1]
    api_url = API_BASE_URL
    if "--api" in sys.argv:
        api_idx = sys.argv.index("--api")
        if len(sys.argv) > api_idx + 1:
            api_url = sys.argv[api_idx + 1]

    uploader = ResumableUploader(api_url=api_url)

    try:
        uploader.upload_file(file_path)
    except (UploadFailed, requests.RequestException, OSError) as e:
        print(f"\n✗ Upload failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
