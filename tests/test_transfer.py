"""Tests for the transfer engine across backends."""

import os
import tempfile
import unittest
from unittest.mock import Mock

from twinpane.fileops import CancellationToken, TransferEngine
from twinpane.ftps import FTPFileSystem
from twinpane.sftp import SFTPFileSystem
from twinpane.vfs import LocalFileSystem, TransferCancelledError, VFSError
from tests.fakes import FakeFTP, FakeSFTPClient, make_tree, read_tree


TREE = {
    "project/readme.md": b"# readme\n",
    "project/src/main.py": b"print('hi')\n" * 50,
    "project/src/empty.txt": b"",
}


class TestTransferEngine(unittest.TestCase):
    """Test cases for TransferEngine."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.src_root = os.path.join(self._tmp.name, "src")
        self.dst_root = os.path.join(self._tmp.name, "dst")
        self.remote_root = os.path.join(self._tmp.name, "remote")
        for path in (self.src_root, self.dst_root, self.remote_root):
            os.makedirs(path)
        make_tree(self.src_root, TREE)

        self.local = LocalFileSystem()
        self.engine = TransferEngine(chunk_size=1024)

    def tearDown(self):
        self._tmp.cleanup()

    def _sftp(self, root):
        return SFTPFileSystem(Mock(), FakeSFTPClient(root), name="sftp")

    def test_rejects_invalid_chunk_size(self):
        with self.assertRaises(ValueError):
            TransferEngine(chunk_size=0)

    def test_copy_tree_local_to_local(self):
        self.engine.copy(self.local, os.path.join(self.src_root, "project"),
                         self.local, os.path.join(self.dst_root, "project"))

        self.assertEqual(read_tree(self.dst_root), TREE)
        self.assertEqual(read_tree(self.src_root), TREE)

    def test_copy_local_to_sftp_reports_progress(self):
        remote = self._sftp(self.remote_root)
        events = []

        self.engine.copy(self.local, os.path.join(self.src_root, "project"),
                         remote, "/incoming/project", on_progress=events.append)

        self.assertEqual(read_tree(self.remote_root),
                         {f"incoming/{name}": data for name, data in TREE.items()})
        finished = [event.file_name for event in events if event.finished]
        self.assertEqual(sorted(finished), ["empty.txt", "main.py", "readme.md"])

    def test_copy_sftp_to_ftp(self):
        make_tree(self.remote_root, {"share/a.txt": b"alpha", "share/b/c.txt": b"gamma" * 300})
        sftp = self._sftp(self.remote_root)
        ftp = FTPFileSystem(FakeFTP(self.dst_root), name="ftp")
        try:
            self.engine.copy(sftp, "/share", ftp, "/backup/share")
        finally:
            ftp.close()

        self.assertEqual(read_tree(self.dst_root),
                         {"backup/share/a.txt": b"alpha", "backup/share/b/c.txt": b"gamma" * 300})

    def test_copy_sftp_to_local(self):
        make_tree(self.remote_root, TREE)
        sftp = self._sftp(self.remote_root)

        self.engine.copy(sftp, "/project", self.local, os.path.join(self.dst_root, "project"))

        self.assertEqual(read_tree(self.dst_root), TREE)
        self.assertEqual(read_tree(self.remote_root), TREE)

    def test_copy_ftp_to_local_streams(self):
        make_tree(self.remote_root, {"video.bin": b"v" * 40000})
        client = FakeFTP(self.remote_root)
        ftp = FTPFileSystem(client, name="ftp")
        events = []
        try:
            self.engine.copy(ftp, "/video.bin", self.local, os.path.join(self.dst_root, "video.bin"),
                             on_progress=lambda p: events.append((p.done, client.bytes_sent)))
        finally:
            ftp.close()

        # Each chunk reaches the caller before the next one is fetched
        self.assertEqual(events[0], (1024, 1024))
        self.assertEqual(events[-1][0], 40000)
        self.assertEqual(read_tree(self.dst_root), {"video.bin": b"v" * 40000})

    def test_cancel_ftp_download_stops_within_one_chunk(self):
        size = 1024 * 1024
        make_tree(self.remote_root, {"large.bin": os.urandom(size)})
        client = FakeFTP(self.remote_root)
        ftp = FTPFileSystem(client, name="ftp")
        dst = os.path.join(self.dst_root, "large.bin")
        token = CancellationToken()

        try:
            with self.assertRaises(TransferCancelledError):
                self.engine.copy(ftp, "/large.bin", self.local, dst,
                                 on_progress=lambda p: token.cancel(), token=token)

            self.assertEqual(client.bytes_sent, 1024)
            self.assertFalse(os.path.exists(dst))
            self.assertEqual(os.path.getsize(os.path.join(self.remote_root, "large.bin")), size)
            # The aborted transfer released the control connection
            self.assertEqual(ftp.stat("/large.bin").size, size)
        finally:
            ftp.close()

    def test_cancel_sftp_download_removes_partial_file(self):
        make_tree(self.remote_root, {"large.bin": b"s" * 10 * 1024})
        sftp = self._sftp(self.remote_root)
        dst = os.path.join(self.dst_root, "large.bin")
        token = CancellationToken()
        events = []

        def on_progress(progress):
            events.append(progress)
            token.cancel()

        with self.assertRaises(TransferCancelledError):
            self.engine.copy(sftp, "/large.bin", self.local, dst, on_progress, token)

        self.assertEqual(len(events), 1)
        self.assertFalse(os.path.exists(dst))
        self.assertEqual(read_tree(self.remote_root), {"large.bin": b"s" * 10 * 1024})

    def test_copy_within_one_ftp_session(self):
        make_tree(self.remote_root, {"pub/a.txt": b"alpha" * 500})
        ftp = FTPFileSystem(FakeFTP(self.remote_root), name="ftp")
        try:
            self.engine.copy(ftp, "/pub/a.txt", ftp, "/archive/a.txt", on_progress=lambda p: None)
        finally:
            ftp.close()

        self.assertEqual(read_tree(self.remote_root),
                         {"pub/a.txt": b"alpha" * 500, "archive/a.txt": b"alpha" * 500})

    def test_zero_byte_file_reports_complete(self):
        events = []
        self.engine.copy(self.local, os.path.join(self.src_root, "project", "src", "empty.txt"),
                         self.local, os.path.join(self.dst_root, "empty.txt"), on_progress=events.append)

        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].percent, 100)
        self.assertTrue(os.path.isfile(os.path.join(self.dst_root, "empty.txt")))

    def test_cancel_removes_partial_file(self):
        src = os.path.join(self.src_root, "large.bin")
        dst = os.path.join(self.dst_root, "large.bin")
        make_tree(self.src_root, {"large.bin": os.urandom(10 * 1024)})
        token = CancellationToken()
        events = []

        def on_progress(progress):
            events.append(progress)
            token.cancel()

        with self.assertRaises(TransferCancelledError):
            self.engine.copy(self.local, src, self.local, dst, on_progress, token)

        self.assertEqual(len(events), 1)
        self.assertFalse(os.path.exists(dst))
        self.assertEqual(os.path.getsize(src), 10 * 1024)

    def test_copy_directory_into_itself(self):
        project = os.path.join(self.src_root, "project")
        with self.assertRaises(VFSError):
            self.engine.copy(self.local, project, self.local, os.path.join(project, "src", "copy"))

    def test_move_within_backend_renames(self):
        src = os.path.join(self.src_root, "project")
        dst = os.path.join(self.src_root, "renamed", "project")

        self.engine.move(self.local, src, self.local, dst)

        self.assertFalse(os.path.exists(src))
        self.assertEqual(read_tree(os.path.join(self.src_root, "renamed")), TREE)

    def test_move_across_backends_removes_source(self):
        remote = self._sftp(self.remote_root)

        self.engine.move(self.local, os.path.join(self.src_root, "project"), remote, "/project")

        self.assertFalse(os.path.exists(os.path.join(self.src_root, "project")))
        self.assertEqual(read_tree(self.remote_root), TREE)

    def test_cancelled_move_keeps_source(self):
        remote = self._sftp(self.remote_root)
        token = CancellationToken()
        token.cancel()

        with self.assertRaises(TransferCancelledError):
            self.engine.move(self.local, os.path.join(self.src_root, "project"), remote, "/project",
                             token=token)

        self.assertEqual(read_tree(self.src_root), TREE)
        self.assertFalse(os.path.exists(os.path.join(self.remote_root, "project")))

    def test_batch_numbers_files(self):
        make_tree(self.src_root, {"one.txt": b"1" * 10, "two.txt": b"2" * 20})
        events = []

        written = self.engine.copy_batch(
            self.local,
            [os.path.join(self.src_root, "one.txt"), os.path.join(self.src_root, "two.txt")],
            self.local, self.dst_root, on_progress=events.append
        )

        self.assertEqual(written, [os.path.join(self.dst_root, "one.txt"),
                                   os.path.join(self.dst_root, "two.txt")])
        self.assertEqual([(e.file_name, e.file_index, e.file_count) for e in events],
                         [("one.txt", 1, 2), ("two.txt", 2, 2)])

    def test_move_batch_stops_when_cancelled(self):
        token = CancellationToken()
        token.cancel()

        with self.assertRaises(TransferCancelledError):
            self.engine.move_batch(self.local, [os.path.join(self.src_root, "project")],
                                   self.local, self.dst_root, token=token)

        self.assertEqual(read_tree(self.src_root), TREE)

    def test_delete_batch(self):
        deleted = self.engine.delete_batch(self.local, [os.path.join(self.src_root, "project"),
                                                         os.path.join(self.src_root, "absent")])
        self.assertEqual(deleted, 2)
        self.assertEqual(os.listdir(self.src_root), [])

    def test_calc_dir_size(self):
        make_tree(self.dst_root, {"a/ten.bin": b"x" * 10, "a/twenty.bin": b"y" * 20, "a/b/five.bin": b"z" * 5})
        self.assertEqual(self.engine.calc_dir_size(self.local, os.path.join(self.dst_root, "a")), 35)


if __name__ == '__main__':
    unittest.main()
