"""In-process stand-ins for an SFTP channel and an FTP control connection.

Both serve a temporary directory, so the remote backends can be exercised
without a network.
"""

import ftplib
import os
import shutil
import time
from datetime import datetime, timezone

import paramiko


class _Rooted:
    def __init__(self, root):
        self.root = root

    def local(self, path):
        return os.path.join(self.root, path.lstrip("/"))


class FakeSFTPClient(_Rooted):
    """Subset of :class:`paramiko.SFTPClient` used by the SFTP backend."""

    def __init__(self, root):
        super().__init__(root)
        self.closed = False
        self.chmod_calls = []

    def listdir_attr(self, path="."):
        local = self.local(path)
        return [paramiko.SFTPAttributes.from_stat(os.lstat(os.path.join(local, name)), filename=name)
                for name in sorted(os.listdir(local))]

    def stat(self, path):
        return paramiko.SFTPAttributes.from_stat(os.stat(self.local(path)))

    def lstat(self, path):
        return paramiko.SFTPAttributes.from_stat(os.lstat(self.local(path)))

    def readlink(self, path):
        return os.readlink(self.local(path))

    def open(self, path, mode="r"):
        return open(self.local(path), mode)

    def chmod(self, path, mode):
        self.chmod_calls.append((path, mode))
        os.chmod(self.local(path), mode)

    def mkdir(self, path, mode=0o777):
        os.mkdir(self.local(path), mode)

    def rmdir(self, path):
        os.rmdir(self.local(path))

    def remove(self, path):
        os.remove(self.local(path))

    def rename(self, oldpath, newpath):
        os.rename(self.local(oldpath), self.local(newpath))

    def close(self):
        self.closed = True


class FakeDataConnection:
    """Data socket of a running RETR; counts the bytes handed to the client."""

    def __init__(self, server, local):
        self._server = server
        self._handle = open(local, "rb")
        self.drained = False

    def recv(self, size):
        block = self._handle.read(size)
        if not block:
            self.drained = True
        self._server.bytes_sent += len(block)
        return block

    def close(self):
        self._handle.close()


def _modify(path):
    stamp = datetime.fromtimestamp(os.stat(path).st_mtime, tz=timezone.utc)
    return stamp.strftime("%Y%m%d%H%M%S")


class FakeFTP(_Rooted):
    """Subset of :class:`ftplib.FTP` used by the FTP backend.

    ``mlsd_supported`` and ``mlst_supported`` switch the server into the
    "500 unknown command" behaviour of older daemons.
    """

    def __init__(self, root, mlsd_supported=True, mlst_supported=True):
        super().__init__(root)
        self.mlsd_supported = mlsd_supported
        self.mlst_supported = mlst_supported
        self.commands = []
        self.quit_calls = 0
        self.login_error = None
        self.bytes_sent = 0
        self._data = None

    # -- session --------------------------------------------------------

    def connect(self, host="", port=0, timeout=None, source_address=None):
        self.commands.append(f"CONNECT {host}:{port}")
        return "220 fake ready"

    def login(self, user="", passwd="", acct=""):
        if self.login_error is not None:
            raise self.login_error
        self.commands.append(f"USER {user}")
        return "230 logged in"

    def prot_p(self):
        self.commands.append("PROT P")
        return "200 PROT now Private"

    def set_pasv(self, val):
        self.commands.append(f"PASV {val}")

    def voidcmd(self, cmd):
        self.commands.append(cmd)
        return "200 OK"

    def quit(self):
        self.quit_calls += 1
        return "221 Goodbye"

    def close(self):
        pass

    # -- listing --------------------------------------------------------

    def _facts(self, local):
        st = os.stat(local)
        kind = "dir" if os.path.isdir(local) else "file"
        return {"type": kind, "size": str(st.st_size), "modify": _modify(local),
                "unix.mode": oct(st.st_mode & 0o777)[2:]}

    def mlsd(self, path="", facts=()):
        if not self.mlsd_supported:
            raise ftplib.error_perm("500 Unknown command MLSD")
        local = self.local(path)
        if not os.path.isdir(local):
            raise ftplib.error_perm("550 No such directory")
        self.commands.append(f"MLSD {path}")
        yield ".", {"type": "cdir"}
        yield "..", {"type": "pdir"}
        for name in sorted(os.listdir(local)):
            yield name, self._facts(os.path.join(local, name))

    def sendcmd(self, cmd):
        self.commands.append(cmd)
        verb, _, path = cmd.partition(" ")
        if verb == "MLST":
            if not self.mlst_supported:
                raise ftplib.error_perm("500 Unknown command MLST")
            local = self.local(path)
            if not os.path.exists(local):
                raise ftplib.error_perm("550 No such file or directory")
            facts = "".join(f"{k}={v};" for k, v in self._facts(local).items())
            return f"250-Listing {path}\n {facts} {path}\n250 End"
        raise ftplib.error_perm(f"500 Unknown command {verb}")

    def retrlines(self, cmd, callback=None):
        self.commands.append(cmd)
        path = cmd.partition(" ")[2]
        local = self.local(path)
        if not os.path.isdir(local):
            raise ftplib.error_perm("550 No such directory")
        callback("total 8")
        for name in sorted(os.listdir(local)):
            full = os.path.join(local, name)
            perms = "drwxr-xr-x" if os.path.isdir(full) else "-rw-r--r--"
            size = os.stat(full).st_size
            callback(f"{perms}   1 owner  group {size:>8} Mar 14  2023 {name}")
        return "226 Transfer complete"

    # -- data transfer --------------------------------------------------

    def transfercmd(self, cmd, rest=None):
        self.commands.append(cmd)
        local = self.local(cmd.partition(" ")[2])
        if not os.path.isfile(local):
            raise ftplib.error_perm("550 Failed to open file")
        self._data = FakeDataConnection(self, local)
        return self._data

    def voidresp(self):
        data, self._data = self._data, None
        if data is None:
            raise ftplib.error_proto("no transfer in progress")
        if not data.drained:
            raise ftplib.error_temp("426 Connection closed; transfer aborted")
        return "226 Transfer complete"

    def retrbinary(self, cmd, callback, blocksize=8192, rest=None):
        self.commands.append(cmd)
        local = self.local(cmd.partition(" ")[2])
        if not os.path.isfile(local):
            raise ftplib.error_perm("550 Failed to open file")
        with open(local, "rb") as handle:
            while True:
                block = handle.read(blocksize)
                if not block:
                    break
                callback(block)
        return "226 Transfer complete"

    def storbinary(self, cmd, fp, blocksize=8192, callback=None, rest=None):
        self.commands.append(cmd)
        local = self.local(cmd.partition(" ")[2])
        if not os.path.isdir(os.path.dirname(local)):
            raise ftplib.error_perm("553 Could not create file")
        with open(local, "wb") as out:
            while True:
                block = fp.read(blocksize)
                if not block:
                    break
                out.write(block)
        return "226 Transfer complete"

    # -- mutation -------------------------------------------------------

    def mkd(self, dirname):
        self.commands.append(f"MKD {dirname}")
        local = self.local(dirname)
        if os.path.exists(local):
            raise ftplib.error_perm("550 Create directory operation failed")
        try:
            os.mkdir(local)
        except OSError:
            raise ftplib.error_perm("550 Create directory operation failed")
        return dirname

    def rmd(self, dirname):
        self.commands.append(f"RMD {dirname}")
        try:
            os.rmdir(self.local(dirname))
        except OSError:
            raise ftplib.error_perm("550 Remove directory operation failed")
        return "250 Remove directory operation successful"

    def delete(self, filename):
        self.commands.append(f"DELE {filename}")
        try:
            os.remove(self.local(filename))
        except OSError:
            raise ftplib.error_perm("550 Delete operation failed")
        return "250 Delete operation successful"

    def rename(self, fromname, toname):
        self.commands.append(f"RNFR {fromname}")
        try:
            os.rename(self.local(fromname), self.local(toname))
        except OSError:
            raise ftplib.error_perm("550 RNFR command failed")
        return "250 Rename successful"


def make_tree(root, files):
    """Create ``{relative path: bytes}`` below ``root``."""
    for rel, content in files.items():
        path = os.path.join(root, *rel.split("/"))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as handle:
            handle.write(content)


def read_tree(root):
    """Return ``{relative path: bytes}`` for every file below ``root``."""
    result = {}
    for current, _, filenames in os.walk(root):
        for name in filenames:
            full = os.path.join(current, name)
            rel = os.path.relpath(full, root).replace(os.sep, "/")
            with open(full, "rb") as handle:
                result[rel] = handle.read()
    return result


def wait_for(predicate, timeout=5.0, interval=0.01):
    """Poll ``predicate`` until it is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def remove_tree(path):
    shutil.rmtree(path, ignore_errors=True)
