"""Automation catalogue kept in sync with the backend."""

import asyncio

import structlog

from knapsack.application.errors import EngineError
from knapsack.application.ports.backend import Backend
from knapsack.domain.models import Automation

logger = structlog.get_logger()


class AutomationService:
    """Holds the user's automations.

    The map is replaced as a whole on every change, so readers always see a
    complete snapshot.
    """

    def __init__(self, backend: Backend) -> None:
        """Initialize the service.

        Args:
            backend: Backend adapter.

        """
        self._backend = backend
        self._automations: dict[str, Automation] = {}
        self._lock = asyncio.Lock()

    @property
    def automations(self) -> dict[str, Automation]:
        """Current snapshot, keyed by uuid."""
        return self._automations

    def get(self, automation_uuid: str) -> Automation | None:
        """Get an automation by uuid."""
        return self._automations.get(automation_uuid)

    def active(self) -> list[Automation]:
        """Automations enabled for cadence and startup triggers."""
        return [automation for automation in self._automations.values() if automation.is_active]

    async def sync(self) -> dict[str, Automation]:
        """Reload every automation from the backend.

        Returns:
            The new snapshot. On failure the previous snapshot is kept.

        """
        try:
            automations = await self._backend.get_automations()
        except EngineError as e:
            logger.warning("Failed to sync automations", error=str(e))
            return self._automations

        async with self._lock:
            self._automations = {automation.uuid: automation for automation in automations}
        logger.debug("Automations synced", count=len(automations))
        return self._automations

    async def update(self, automation: Automation) -> None:
        """Persist an automation and replace it in the snapshot."""
        await self._backend.update_automation(automation)
        async with self._lock:
            self._automations = {**self._automations, automation.uuid: automation}
        logger.info("Automation updated", automation=automation.uuid, is_active=automation.is_active)

    async def delete(self, automation: Automation) -> None:
        """Delete an automation from the backend and the snapshot."""
        if automation.id is not None:
            await self._backend.delete_automation(automation.id)
        async with self._lock:
            self._automations = {
                uuid: existing for uuid, existing in self._automations.items() if uuid != automation.uuid
            }
        logger.info("Automation deleted", automation=automation.uuid)

    async def schedule_runs(self, user_email: str | None) -> None:
        """Ask the backend to materialize upcoming runs, then resync."""
        if not user_email:
            return
        try:
            await self._backend.schedule_runs(user_email)
        except EngineError as e:
            logger.warning("Failed to schedule runs", error=str(e))
        await self.sync()
