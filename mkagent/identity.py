"""
Host identity bootstrap.

The identity file is the durable record of registration state: if it
holds an identity the host is registered, otherwise it is not. Restarts
recover state by reading the file, never by re-registering.
"""

import os
import socket
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from logcore import get_logger
from mkagent.errors import (
    ApiError,
    HostnameError,
    IdentityError,
    IdentityPersistError,
    RegistrationError,
)

logger = get_logger(__name__)


class IdentityStore:
    """Plain-text file holding exactly the host identity string"""

    def __init__(self, path):
        self.path = Path(path)

    def read(self) -> Optional[str]:
        """Return the stored identity, or None when unregistered"""
        try:
            content = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise IdentityError(f"Cannot read identity file {self.path}: {e}")

        content = content.strip()
        return content or None

    def write(self, host_id: str) -> None:
        """Atomically replace the store contents"""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix='.id-')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    f.write(host_id)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise IdentityPersistError(f"Cannot write identity file {self.path}: {e}")


def lookup_hostname() -> str:
    try:
        hostname = socket.gethostname()
    except OSError as e:
        raise HostnameError(f"Hostname lookup failed: {e}")
    if not hostname:
        raise HostnameError("Hostname lookup returned an empty name")
    return hostname


class IdentityManager:
    """Resolves the host identity, registering the host on first run"""

    def __init__(
        self,
        store: IdentityStore,
        client,
        display_name: Optional[str] = None,
        meta_provider: Optional[Callable[[], Dict[str, Any]]] = None,
        hostname_provider: Callable[[], str] = lookup_hostname,
    ):
        self.store = store
        self.client = client
        self.display_name = display_name
        self.meta_provider = meta_provider
        self.hostname_provider = hostname_provider
        self._host_id: Optional[str] = None

    def resolve(self) -> str:
        """
        Return the host identity, registering if none is persisted.

        Raises:
            StartupError: On unreadable store, hostname lookup failure,
                registration failure or persist failure
        """
        if self._host_id is not None:
            return self._host_id

        host_id = self.store.read()
        if host_id is not None:
            logger.info("Using persisted host identity", extra={'context': {'host_id': host_id}})
        else:
            host_id = self._register()
        self._host_id = host_id
        return host_id

    def _host_meta(self) -> Dict[str, Any]:
        if self.meta_provider is None:
            return {}
        try:
            return self.meta_provider()
        except Exception as e:
            # Meta is informational; register without it
            logger.warning("Could not collect host meta: %s", e)
            return {}

    def _register(self) -> str:
        hostname = self.display_name or self.hostname_provider()
        meta = self._host_meta()

        logger.info("Registering host", extra={'context': {'hostname': hostname}})
        try:
            host_id = self.client.create_host(hostname, meta)
        except ApiError as e:
            raise RegistrationError(f"Host registration failed: {e}")

        self.store.write(host_id)
        logger.info(
            "Host registered",
            extra={'context': {'host_id': host_id, 'id_file': str(self.store.path)}}
        )
        return host_id
