"""One-time identity registration against the document store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from pawfeeds.errors import RegistrationError
from pawfeeds.storage.preferences import KEY_IDENTITY_ID, KEY_OWNER_ID, PreferenceStore
from pawfeeds.utils.helpers import last_path_segment


@dataclass(slots=True, frozen=True)
class DeviceIdentity:
    identity_id: str
    owner_id: str


class RegistrationManager:
    """Creates the feeder document and links it to the owner's user document.

    The identity is persisted only after both remote writes succeed, so a
    partial registration leaves no local trace and the next boot starts over.
    """

    def __init__(
        self,
        *,
        document_store: Any,
        preferences: PreferenceStore,
        feeders_collection: str = "feeders",
        users_collection: str = "users",
    ) -> None:
        self.document_store = document_store
        self.preferences = preferences
        self.feeders_collection = str(feeders_collection or "feeders").strip("/")
        self.users_collection = str(users_collection or "users").strip("/")

    def cached_identity(self) -> DeviceIdentity | None:
        """Identity persisted by an earlier registration, if any."""
        identity_id = self.preferences.get(KEY_IDENTITY_ID).strip()
        if not identity_id:
            return None
        return DeviceIdentity(identity_id=identity_id, owner_id=self.preferences.get(KEY_OWNER_ID).strip())

    async def register(self, owner_id: str) -> DeviceIdentity:
        owner = str(owner_id or "").strip()
        if not owner:
            raise RegistrationError("owner id is not provisioned", step="owner")

        logger.info(f"[register] creating feeder document for owner {owner}")
        created = await self.document_store.create_document(
            self.feeders_collection,
            {"owner_uid": owner, "online": True},
        )
        if not created.success:
            raise RegistrationError(f"feeder document create failed: {created.error}", step="create")
        identity_id = last_path_segment(str(created.data.get("name") or ""))
        if not identity_id:
            raise RegistrationError("create response carried no document name", step="create")

        logger.info(f"[register] linking feeder {identity_id} to user {owner}")
        linked = await self.document_store.patch_document(
            f"{self.users_collection}/{owner}",
            {"feederId": identity_id},
            update_mask=["feederId"],
        )
        if not linked.success:
            raise RegistrationError(f"user document patch failed: {linked.error}", step="link")

        self.preferences.put(KEY_IDENTITY_ID, identity_id)
        logger.info(f"[register] registered as {identity_id}")
        return DeviceIdentity(identity_id=identity_id, owner_id=owner)
