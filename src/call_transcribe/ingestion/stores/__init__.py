"""Remote store adapters."""

from call_transcribe.ingestion.stores.base import RemoteStore
from call_transcribe.ingestion.stores.local import LocalDirectoryStore
from call_transcribe.ingestion.stores.sftp import SftpRemoteStore

__all__ = ["LocalDirectoryStore", "RemoteStore", "SftpRemoteStore"]
