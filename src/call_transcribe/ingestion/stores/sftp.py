"""SFTP remote store backed by paramiko."""

from __future__ import annotations

import logging
import stat
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import paramiko

from call_transcribe.errors import RemoteAccessError
from call_transcribe.ingestion.models import EntryKind, RemoteEntry

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 30.0


@dataclass(slots=True)
class SftpStoreConfig:
    """Connection parameters for one SFTP server."""

    host: str
    username: str
    password: str
    port: int = 22
    connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS
    strict_host_key_checking: bool = False


class SftpRemoteStore:
    """Password-authenticated SFTP session, one per pipeline run."""

    def __init__(
        self,
        config: SftpStoreConfig,
        *,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self.config = config
        self._client_factory = client_factory
        self._client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def is_connected(self) -> bool:
        return self._sftp is not None

    def connect(self) -> None:
        if self._sftp is not None:
            logger.debug("SFTP already connected to %s", self.config.host)
            return

        logger.info(
            "Connecting to SFTP server %s:%d as %s",
            self.config.host,
            self.config.port,
            self.config.username,
        )
        client = self._client_factory()
        client.load_system_host_keys()
        if self.config.strict_host_key_checking:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.WarningPolicy())
        try:
            client.connect(
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.username,
                password=self.config.password,
                timeout=self.config.connect_timeout_seconds,
                banner_timeout=self.config.connect_timeout_seconds,
                auth_timeout=self.config.connect_timeout_seconds,
                look_for_keys=False,
                allow_agent=False,
            )
            sftp = client.open_sftp()
        except paramiko.AuthenticationException as error:
            client.close()
            raise RemoteAccessError.authentication_failed(
                self.config.host,
                self.config.username,
            ) from error
        except (paramiko.SSHException, OSError) as error:
            client.close()
            raise RemoteAccessError.connection_failed(self.config.host, error) from error

        self._client = client
        self._sftp = sftp
        logger.info("SFTP connection established to %s", self.config.host)

    def list(self, path: str) -> list[RemoteEntry]:
        sftp = self._require_sftp("list")
        try:
            attributes = sftp.listdir_attr(path)
        except (OSError, paramiko.SSHException) as error:
            raise RemoteAccessError.list_failed(path, error) from error
        return [_entry_from_attributes(attr) for attr in attributes]

    def fetch(self, remote_path: str, local_path: Path) -> None:
        sftp = self._require_sftp("fetch")
        logger.debug("Downloading %s to %s", remote_path, local_path)
        try:
            sftp.get(remote_path, str(local_path))
        except (OSError, paramiko.SSHException) as error:
            raise RemoteAccessError.download_failed(remote_path, str(local_path), error) from error

    def delete(self, remote_path: str) -> None:
        sftp = self._require_sftp("delete")
        try:
            sftp.remove(remote_path)
        except (OSError, paramiko.SSHException) as error:
            raise RemoteAccessError.delete_failed(remote_path, error) from error
        logger.info("Deleted remote file %s", remote_path)

    def close(self) -> None:
        sftp, client = self._sftp, self._client
        self._sftp = None
        self._client = None
        if sftp is None and client is None:
            return
        try:
            if sftp is not None:
                sftp.close()
            if client is not None:
                client.close()
        except (OSError, paramiko.SSHException) as error:
            logger.warning("Error during SFTP disconnect from %s: %s", self.config.host, error)
            return
        logger.info("SFTP connection to %s closed", self.config.host)

    def _require_sftp(self, operation: str) -> paramiko.SFTPClient:
        if self._sftp is None:
            raise RemoteAccessError.not_connected(operation)
        return self._sftp


def _entry_from_attributes(attributes: paramiko.SFTPAttributes) -> RemoteEntry:
    mode = attributes.st_mode or 0
    if stat.S_ISDIR(mode):
        kind = EntryKind.DIRECTORY
    elif stat.S_ISREG(mode):
        kind = EntryKind.FILE
    else:
        kind = EntryKind.OTHER
    return RemoteEntry(
        name=attributes.filename,
        kind=kind,
        size_bytes=attributes.st_size or 0,
        modified_at=datetime.fromtimestamp(attributes.st_mtime or 0, tz=UTC),
    )
