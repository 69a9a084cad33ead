"""Tests for the upload session controller: completion, verification, dedup, lifecycle."""
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from resumable_upload.core import IntegrityError, ParameterError
from resumable_upload.services import SessionState

from .helpers import md5, split

CONTENT = b"aaaa" + b"bbbb" + b"cccc"
HASH = md5(CONTENT)


def test_three_chunk_upload_with_corrupted_last_chunk_then_retry(controller, settings):
    chunks = split(CONTENT, 4)

    first = controller.submit_chunk(HASH, "abc.txt", 1, 3, chunks[1])
    assert first.success and first.url is None
    assert "1/3 uploaded" in first.message

    second = controller.submit_chunk(HASH, "abc.txt", 0, 3, chunks[0])
    assert "2/3 uploaded" in second.message

    with pytest.raises(IntegrityError):
        controller.submit_chunk(HASH, "abc.txt", 2, 3, b"XXXX")

    assert not (settings.COMPLETE_DIR / "abc.txt").exists()
    assert controller.query(HASH, "abc.txt").uploaded_chunks == [0, 1, 2]
    assert controller.session_state(HASH) is SessionState.ACCUMULATING

    done = controller.submit_chunk(HASH, "abc.txt", 2, 3, chunks[2])
    assert done.success
    assert done.url == "/files/complete/abc.txt"
    assert done.message == "File uploaded successfully"
    assert (settings.COMPLETE_DIR / "abc.txt").read_bytes() == CONTENT
    assert not controller.chunk_store.session_dir(HASH).exists()
    assert not controller.chunk_store.lock_path(HASH).exists()
    assert list(settings.CHUNK_DIR.iterdir()) == []

    result = controller.query(HASH, "abc.txt")
    assert result.exists is True
    assert result.url == "/files/complete/abc.txt"
    assert controller.session_state(HASH) is SessionState.COMMITTED


def test_any_arrival_order_matches_whole_file(controller, settings):
    content = os.urandom(64 * 1024 + 5)
    content_hash = md5(content)
    chunks = split(content, 4096)

    for index in reversed(range(len(chunks))):
        result = controller.submit_chunk(content_hash, "random.bin", index, len(chunks), chunks[index])

    assert result.url == "/files/complete/random.bin"
    assert (settings.COMPLETE_DIR / "random.bin").read_bytes() == content


def test_resending_same_chunk_is_idempotent(controller, settings):
    chunks = split(CONTENT, 4)
    controller.submit_chunk(HASH, "dup.txt", 0, 3, chunks[0])
    again = controller.submit_chunk(HASH, "dup.txt", 0, 3, chunks[0])
    assert "1/3 uploaded" in again.message

    controller.submit_chunk(HASH, "dup.txt", 1, 3, chunks[1])
    controller.submit_chunk(HASH, "dup.txt", 2, 3, chunks[2])

    assert (settings.COMPLETE_DIR / "dup.txt").read_bytes() == CONTENT


def test_duplicate_index_does_not_fake_completion(controller):
    chunks = split(CONTENT, 4)
    controller.submit_chunk(HASH, "x.txt", 0, 3, chunks[0])
    controller.submit_chunk(HASH, "x.txt", 0, 3, chunks[0])
    result = controller.submit_chunk(HASH, "x.txt", 1, 3, chunks[1])

    assert result.url is None
    assert result.uploaded == 2
    assert controller.session_state(HASH) is SessionState.ACCUMULATING


def test_indices_beyond_declared_total_are_ignored(controller, settings):
    chunks = split(CONTENT, 4)
    # Leftover from an earlier attempt that declared more chunks
    controller.chunk_store.write_chunk(HASH, 7, b"stale")

    for index, data in enumerate(chunks):
        result = controller.submit_chunk(HASH, "x.txt", index, 3, data)

    assert result.url == "/files/complete/x.txt"
    assert (settings.COMPLETE_DIR / "x.txt").read_bytes() == CONTENT
    assert not controller.chunk_store.session_dir(HASH).exists()


def test_dedup_skips_transfer_for_known_content(controller):
    chunks = split(CONTENT, 4)
    for index, data in enumerate(chunks):
        controller.submit_chunk(HASH, "orig.txt", index, 3, data)

    query = controller.query(HASH, "copy.txt")
    assert query.exists is True
    assert query.url == "/files/complete/orig.txt"

    chunk_status = controller.query(HASH, "copy.txt", chunk_index=0)
    assert chunk_status.exists is True and chunk_status.url == "/files/complete/orig.txt"

    resend = controller.submit_chunk(HASH, "copy.txt", 0, 3, chunks[0])
    assert resend.url == "/files/complete/orig.txt"
    assert not controller.chunk_store.session_dir(HASH).exists()


def test_stale_index_entry_is_not_trusted(controller, settings):
    controller.hash_index.record(HASH, "deleted.txt")

    result = controller.query(HASH, "deleted.txt")

    assert result.exists is False
    assert result.uploaded_chunks == []
    assert controller.hash_index.lookup(HASH) is None


def test_query_specific_chunk(controller):
    controller.submit_chunk(HASH, "q.txt", 1, 3, b"bbbb")

    assert controller.query(HASH, "q.txt", chunk_index=1).exists is True
    assert controller.query(HASH, "q.txt", chunk_index=0).exists is False
    assert controller.query(HASH, "q.txt").uploaded_chunks == [1]


def test_query_unknown_session_returns_empty_list(controller):
    result = controller.query(md5(b"never sent"), "n.txt")

    assert result.exists is False
    assert result.uploaded_chunks == []


def test_hash_is_normalised_to_lowercase(controller):
    controller.submit_chunk(HASH.upper(), "case.txt", 0, 3, b"aaaa")

    assert controller.query(HASH, "case.txt").uploaded_chunks == [0]


@pytest.mark.parametrize(
    "content_hash, filename, index, total, data",
    [
        ("", "f.txt", 0, 1, b"x"),
        ("zzz999", "f.txt", 0, 1, b"x"),
        ("../" + "a" * 29, "f.txt", 0, 1, b"x"),
        (HASH, "", 0, 1, b"x"),
        (HASH, "../escape.txt", 0, 1, b"x"),
        (HASH, "..", 0, 1, b"x"),
        (HASH, ".staging", 0, 1, b"x"),
        (HASH, ".staging.tmp", 0, 1, b"x"),
        (HASH, "f.txt", -1, 3, b"x"),
        (HASH, "f.txt", 3, 3, b"x"),
        (HASH, "f.txt", 0, 0, b"x"),
        (HASH, "f.txt", 0, 5000, b"x"),
        (HASH, "f.txt", 0, 3, b""),
        (HASH, "f.txt", 0, 3, b"x" * (1024 * 1024 + 1)),
    ],
)
def test_invalid_submissions_are_rejected_without_side_effects(
    controller, content_hash, filename, index, total, data
):
    with pytest.raises(ParameterError):
        controller.submit_chunk(content_hash, filename, index, total, data)

    assert controller.chunk_store.list_sessions() == []


def test_concurrent_final_chunks_commit_once(controller, settings):
    content = os.urandom(8 * 1024)
    content_hash = md5(content)
    chunks = split(content, 1024)
    for index, data in enumerate(chunks[:-1]):
        controller.submit_chunk(content_hash, "race.bin", index, len(chunks), data)

    recorded = []
    original_record = controller.hash_index.record

    def counting_record(h, filename):
        recorded.append(h)
        original_record(h, filename)

    controller.hash_index.record = counting_record
    barrier = threading.Barrier(4)

    def send_last():
        barrier.wait()
        return controller.submit_chunk(content_hash, "race.bin", len(chunks) - 1, len(chunks), chunks[-1])

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(lambda _: send_last(), range(4)))

    assert all(r.success for r in results)
    assert any(r.url == "/files/complete/race.bin" for r in results)
    assert recorded == [content_hash]
    assert (settings.COMPLETE_DIR / "race.bin").read_bytes() == content
    assert not controller.chunk_store.session_dir(content_hash).exists()


def test_concurrent_sessions_all_indexed(controller):
    payloads = [os.urandom(2048) for _ in range(6)]

    def upload(payload):
        content_hash = md5(payload)
        for index, data in enumerate(split(payload, 512)):
            result = controller.submit_chunk(content_hash, f"{content_hash}.bin", index, 4, data)
        return content_hash, result

    with ThreadPoolExecutor(max_workers=6) as executor:
        results = list(executor.map(upload, payloads))

    entries = controller.hash_index.entries()
    for content_hash, result in results:
        assert result.url == f"/files/complete/{content_hash}.bin"
        assert entries[content_hash] == f"{content_hash}.bin"


def test_session_state_transitions(controller):
    assert controller.session_state(HASH) is SessionState.EMPTY

    controller.submit_chunk(HASH, "s.txt", 0, 3, b"aaaa")
    assert controller.session_state(HASH) is SessionState.ACCUMULATING

    assert controller.abandon(HASH) is True
    assert controller.session_state(HASH) is SessionState.EMPTY
    assert controller.abandon(HASH) is False


def test_recover_sessions_from_disk(controller, settings):
    controller.submit_chunk(HASH, "r.txt", 2, 3, b"cccc")
    controller.submit_chunk(HASH, "r.txt", 0, 3, b"aaaa")

    # A fresh controller over the same storage sees the same state
    from resumable_upload.services import UploadSessionController

    restarted = UploadSessionController.from_settings(settings)
    sessions = restarted.recover_sessions()

    assert [s.content_hash for s in sessions] == [HASH]
    assert sessions[0].received == [0, 2]
    assert sessions[0].last_activity is not None

    result = restarted.submit_chunk(HASH, "r.txt", 1, 3, b"bbbb")
    assert result.url == "/files/complete/r.txt"
    restarted.hash_index.engine.dispose()


def test_sweep_abandons_only_idle_sessions(controller):
    idle_hash = md5(b"idle")
    controller.submit_chunk(idle_hash, "idle.txt", 0, 2, b"idle")
    controller.submit_chunk(HASH, "busy.txt", 0, 3, b"aaaa")

    old = time.time() - 7200
    idle_dir = controller.chunk_store.session_dir(idle_hash)
    for path in [idle_dir, *idle_dir.iterdir()]:
        os.utime(path, (old, old))

    swept = controller.sweep_abandoned(max_age=3600)

    assert swept == [idle_hash]
    assert not idle_dir.exists()
    assert controller.chunk_store.list_received(HASH) == {0}


def test_abandon_and_sweep_leave_lock_files_to_pruning(controller):
    idle_hash = md5(b"idle")
    controller.submit_chunk(idle_hash, "idle.txt", 0, 2, b"idle")
    controller.submit_chunk(HASH, "a.txt", 0, 3, b"aaaa")

    with patch.object(controller.chunk_store, "remove_lock") as remove_lock:
        assert controller.abandon(HASH) is True
        old = time.time() - 7200
        idle_dir = controller.chunk_store.session_dir(idle_hash)
        for path in [idle_dir, *idle_dir.iterdir()]:
            os.utime(path, (old, old))
        assert controller.sweep_abandoned(max_age=3600) == [idle_hash]

    remove_lock.assert_not_called()

    # Orphaned lock files go once they are older than the TTL
    lock_path = controller.chunk_store.lock_path(HASH)
    lock_path.touch()
    os.utime(lock_path, (old, old))
    assert controller.chunk_store.prune_locks(older_than=time.time() - 3600) >= 1
    assert not lock_path.exists()
