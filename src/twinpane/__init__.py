"""twinpane: the non-UI core of a dual-pane file manager.

Local, SFTP and FTP/FTPS filesystems behind one interface, a transfer engine
that works across them, zip/tar archives and passphrase file encryption.
"""

__version__ = "0.1.0"
