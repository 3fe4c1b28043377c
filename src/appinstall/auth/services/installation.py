"""App installation flow service.

Sends site owners to the platform installer and turns the installation
callback into a stored connection. The state correlating the two legs lives
in a ``PendingInstallStore`` rather than in process memory.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from appinstall.auth.models.connection import Connection
from appinstall.auth.models.errors import invalid_state
from appinstall.auth.models.install import (
    InstallRedirect,
    InstallRequest,
    PendingInstall,
)
from appinstall.auth.services.security import generate_state, mask_identifier
from appinstall.auth.stores.base import ConnectionStore, PendingInstallStore
from appinstall.config import AppSettings

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TTL = timedelta(minutes=10)


class InstallationService:
    """Orchestrates the two legs of an app installation.

    - ``begin_install`` records a pending install and builds the installer URL
    - ``complete_install`` validates the callback state and creates (or
      reactivates) the connection for the reported instance id
    """

    def __init__(
        self,
        app_id: str,
        installer_url: str,
        connection_store: ConnectionStore,
        pending_store: PendingInstallStore,
        pending_ttl: timedelta = DEFAULT_PENDING_TTL,
    ):
        self.app_id = app_id
        self.installer_url = installer_url
        self._connections = connection_store
        self._pending = pending_store
        self.pending_ttl = pending_ttl

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        connection_store: ConnectionStore,
        pending_store: PendingInstallStore,
    ) -> InstallationService:
        return cls(
            app_id=settings.client_id,
            installer_url=settings.installer_url,
            connection_store=connection_store,
            pending_store=pending_store,
            pending_ttl=settings.pending_install_ttl,
        )

    async def begin_install(
        self, redirect_url: str, tenant_hint: str | None = None
    ) -> InstallRedirect:
        """Start an installation.

        Args:
            redirect_url: Where the installer sends the site owner afterwards
            tenant_hint: Optional site the install was started from

        Returns:
            InstallRedirect: Installer URL and the state to expect back
        """
        state = generate_state()
        await self._pending.put(
            PendingInstall.create(
                state=state,
                redirect_url=redirect_url,
                ttl=self.pending_ttl,
                tenant_hint=tenant_hint,
            )
        )

        url = InstallRequest(
            installer_url=self.installer_url,
            app_id=self.app_id,
            redirect_url=redirect_url,
            state=state,
        ).build_installer_url()

        logger.info(f"Started installation for app {self.app_id}")
        return InstallRedirect(url=url, state=state)

    async def complete_install(
        self, state: str | None, instance_id: str | None, tenant_id: str | None = None
    ) -> Connection:
        """Handle the installation callback.

        Args:
            state: State parameter echoed by the installer
            instance_id: Instance id of the new installation
            tenant_id: Site the app was installed on

        Returns:
            Connection: Active connection without a cached token

        Raises:
            TokenLifecycleError: INVALID_STATE if the state is missing, unknown,
                already used or expired, or if the instance id is missing
        """
        if not state:
            raise invalid_state("Installation callback missing required state parameter")

        pending = await self._pending.consume(state)
        if pending is None:
            raise invalid_state("Unknown or expired installation state")

        if not instance_id:
            raise invalid_state("Installation callback missing instance id")

        connection = await self._connections.reactivate(
            instance_id, tenant_id or pending.tenant_hint
        )
        logger.info(f"Installed connection {mask_identifier(instance_id)}")
        return connection
