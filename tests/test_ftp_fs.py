"""Tests for the FTP backend against an in-process control connection."""

import calendar
import ftplib
import os
import stat
import tempfile
import unittest
from unittest.mock import patch

from twinpane.config import RemoteConfig, ServerConfig
from twinpane.ftps import FTPFileSystem, parse_list_line
from twinpane.vfs import (
    AuthenticationError, UnsupportedOperationError, VFSError, VFSNotFoundError
)
from tests.fakes import FakeFTP, make_tree, read_tree


class FTPTestCase(unittest.TestCase):

    mlsd_supported = True
    mlst_supported = True

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = self._tmp.name
        make_tree(self.root, {"pub/notes.txt": b"ftp notes", "big.dat": b"z" * 5000})
        self.client = FakeFTP(self.root, self.mlsd_supported, self.mlst_supported)
        self.fs = FTPFileSystem(self.client, name="fake")

    def tearDown(self):
        self.fs.close()
        self._tmp.cleanup()


class TestFTPFileSystem(FTPTestCase):
    """Test cases for FTPFileSystem with an MLSD/MLST capable server."""

    def test_read_dir_skips_cdir_and_pdir(self):
        entries = {e.name: e for e in self.fs.read_dir("/")}

        self.assertEqual(set(entries), {"pub", "big.dat"})
        self.assertTrue(entries["pub"].is_dir)
        self.assertEqual(entries["big.dat"].size, 5000)
        self.assertTrue(stat.S_ISREG(entries["big.dat"].mode))

    def test_read_dir_missing(self):
        with self.assertRaises(VFSNotFoundError):
            self.fs.read_dir("/nope")

    def test_stat(self):
        info = self.fs.stat("/pub/notes.txt")
        self.assertEqual(info.name, "notes.txt")
        self.assertEqual(info.size, 9)
        self.assertFalse(info.is_dir)
        self.assertTrue(self.fs.stat("/").is_dir)

    def test_stat_missing(self):
        with self.assertRaises(VFSNotFoundError):
            self.fs.stat("/pub/absent.txt")

    def test_open_read_streams_data_connection(self):
        with self.fs.open_read("/big.dat") as handle:
            self.assertEqual(handle.read(1000), b"z" * 1000)
            self.assertEqual(self.client.bytes_sent, 1000)
            self.assertEqual(handle.read(), b"z" * 4000)
            self.assertEqual(handle.read(10), b"")

        self.assertTrue(handle.closed)
        self.assertIn("RETR /big.dat", self.client.commands)

    def test_open_read_missing_file_releases_session(self):
        with self.assertRaises(VFSNotFoundError):
            self.fs.open_read("/absent.bin")
        self.assertEqual(self.fs.stat("/big.dat").size, 5000)

    def test_closing_reader_early_aborts_transfer(self):
        handle = self.fs.open_read("/big.dat")
        self.assertEqual(len(handle.read(100)), 100)
        handle.close()

        self.assertEqual(self.client.bytes_sent, 100)
        # The control connection is usable again
        self.assertEqual(self.fs.stat("/pub/notes.txt").size, 9)

    def test_open_read_detached_spools_whole_file(self):
        with self.fs.open_read_detached("/big.dat") as handle:
            self.assertIn("RETR /big.dat", self.client.commands)
            self.fs.mkdir_all("/pub/while-reading")
            self.assertEqual(handle.read(), b"z" * 5000)

    def test_create_uploads_on_close(self):
        stream = self.fs.create("/pub/upload.bin")
        for _ in range(40):
            stream.write(b"0123456789" * 100)
        stream.close()

        self.assertEqual(read_tree(self.root)["pub/upload.bin"], b"0123456789" * 4000)

    def test_create_in_missing_directory_fails_on_close(self):
        stream = self.fs.create("/missing/upload.bin")
        with self.assertRaises(VFSError):
            stream.write(b"data")
            stream.close()

    def test_mkdir_all_tolerates_existing_directories(self):
        self.fs.mkdir_all("/pub/a/b")
        self.fs.mkdir_all("/pub/a/b")
        self.assertTrue(os.path.isdir(os.path.join(self.root, "pub", "a", "b")))

    def test_remove_all_falls_back_to_rmd(self):
        make_tree(self.root, {"pub/sub/deep.txt": b"x"})

        self.fs.remove_all("/pub")

        self.assertFalse(os.path.exists(os.path.join(self.root, "pub")))
        self.assertIn("RMDA /pub", self.client.commands)
        self.assertIn("RMD /pub", self.client.commands)

    def test_remove_all_missing_is_noop(self):
        self.fs.remove_all("/does/not/exist")

    def test_remove(self):
        self.fs.remove("/big.dat")
        self.assertFalse(os.path.exists(os.path.join(self.root, "big.dat")))

    def test_rename(self):
        self.fs.rename("/big.dat", "/pub/big.dat")
        self.assertIn("pub/big.dat", read_tree(self.root))

    def test_readlink_unsupported(self):
        with self.assertRaises(UnsupportedOperationError):
            self.fs.readlink("/pub")

    def test_close_quits_once(self):
        self.fs.close()
        self.fs.close()
        self.assertEqual(self.client.quit_calls, 1)


class TestFTPFallbacks(FTPTestCase):
    """Test cases for servers without MLSD and MLST."""

    mlsd_supported = False
    mlst_supported = False

    def test_read_dir_falls_back_to_list(self):
        entries = {e.name: e for e in self.fs.read_dir("/")}

        self.assertEqual(set(entries), {"pub", "big.dat"})
        self.assertTrue(entries["pub"].is_dir)
        self.assertEqual(entries["big.dat"].size, 5000)
        self.assertIn("LIST /", self.client.commands)

    def test_stat_scans_parent(self):
        info = self.fs.stat("/pub/notes.txt")
        self.assertEqual(info.size, 9)
        self.assertIn("LIST /pub", self.client.commands)

        with self.assertRaises(VFSNotFoundError):
            self.fs.stat("/pub/absent.txt")


class TestParseListLine(unittest.TestCase):

    def test_symlink_with_target(self):
        entry = parse_list_line("lrwxrwxrwx   1 root  root        7 Jan  2  2020 latest -> v1.2.3")

        self.assertEqual(entry.name, "latest")
        self.assertTrue(entry.is_symlink)
        self.assertEqual(entry.link_target, "v1.2.3")
        self.assertEqual(entry.mtime, float(calendar.timegm((2020, 1, 2, 0, 0, 0))))

    def test_file_with_time_of_day(self):
        entry = parse_list_line("-rw-r-----   1 user  group     1234 Feb 28 13:45 report final.pdf")

        self.assertEqual(entry.name, "report final.pdf")
        self.assertEqual(entry.size, 1234)
        self.assertEqual(stat.S_IMODE(entry.mode), 0o640)
        self.assertFalse(entry.is_dir)
        self.assertGreater(entry.mtime, 0)

    def test_ignores_totals_and_dot_entries(self):
        self.assertIsNone(parse_list_line("total 48"))
        self.assertIsNone(parse_list_line("drwxr-xr-x   2 user  group     4096 Mar  1  2021 .."))


class TestFTPConnect(unittest.TestCase):
    """Test cases for FTPFileSystem.connect."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.client = FakeFTP(self._tmp.name)
        self.config = ServerConfig(name="media", protocol="ftp", host="ftp.example.org",
                                   user="anon", password="pw")

    def tearDown(self):
        self._tmp.cleanup()

    def test_connect_and_login(self):
        with patch("ftplib.FTP", return_value=self.client):
            fs = FTPFileSystem.connect(self.config, RemoteConfig(ftp_passive=True))
        try:
            self.assertEqual(self.client.commands[:3],
                             ["CONNECT ftp.example.org:21", "USER anon", "PASV True"])
        finally:
            fs.close()

    def test_rejected_login(self):
        self.client.login_error = ftplib.error_perm("530 Login incorrect.")
        with patch("ftplib.FTP", return_value=self.client):
            with self.assertRaises(AuthenticationError):
                FTPFileSystem.connect(self.config, RemoteConfig())


if __name__ == '__main__':
    unittest.main()
