"""
Attachment Association

Receipts, invoices and photos are uploaded first and linked to a
transaction afterwards. The ledger only keeps the metadata; the file
itself lives in external storage and is reached through its path.

Linking rules:
- Attachment and transaction must both belong to the caller
- An attachment is linked to at most one transaction
- Re-linking to the SAME transaction is a no-op
- Linking to a DIFFERENT transaction while linked fails ALREADY_LINKED
- Every id is checked before anything is written (all-or-nothing)

Unlinked attachments are inert. cleanup_unlinked() removes the ones that
were uploaded but never attached within the configured age.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID

from ledger.audit import AuditLogger, create_correlation_id
from ledger.config import AttachmentSettings, get_settings
from ledger.errors import ErrorCode, LedgerError
from ledger.flows.base import LedgerFlow, delete_stored_files
from ledger.models.audit import AuditEventType
from ledger.models.ledger import Attachment
from ledger.services.files import FileStorageInterface
from ledger.services.storage import LedgerStorageInterface
from ledger.validation import TransactionValidator, ensure_owned


class AttachmentService(LedgerFlow):
    """Registers, links and removes transaction attachments."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        file_storage: Optional[FileStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
        settings: Optional[AttachmentSettings] = None,
    ):
        super().__init__(storage, audit_logger, validator)
        self._files = file_storage
        self._settings = settings or get_settings().attachments

    async def register_attachment(
        self,
        user_id: UUID,
        filename: str,
        storage_path: str,
        mime_type: str,
        size: int,
        thumbnail_path: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Attachment:
        """
        Record the metadata of an uploaded file, not yet linked.

        Raises:
            LedgerError(INVALID_FILE): Type not accepted or file too large
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("register_attachment", user_id, correlation_id):
            self._validator.check_attachment_file(mime_type, size)
            attachment = Attachment(
                owner_id=user_id,
                filename=filename,
                storage_path=storage_path,
                mime_type=mime_type.lower(),
                size=size,
                thumbnail_path=thumbnail_path,
            )
            async with self._storage.atomic() as session:
                await session.add_attachment(attachment)

        await self._audit.log_attachment(
            AuditEventType.ATTACHMENT_REGISTERED,
            attachment.id,
            user_id,
            f"Attachment registered: {attachment.filename}",
            correlation_id=correlation_id,
        )
        return attachment

    async def link_attachments(
        self,
        attachment_ids: Iterable[UUID],
        transaction_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> list[Attachment]:
        """
        Link attachments to one of the caller's transactions.

        Raises:
            LedgerError(NOT_FOUND / FORBIDDEN): transaction or any attachment
            LedgerError(ALREADY_LINKED): an attachment belongs to another transaction
        """
        correlation_id = correlation_id or create_correlation_id()
        attachment_ids = list(dict.fromkeys(attachment_ids))

        async with self._rejections("link_attachments", user_id, correlation_id):
            async with self._storage.atomic() as session:
                ensure_owned(
                    await session.get_transaction(transaction_id),
                    "Transaction", transaction_id, user_id,
                )

                attachments = []
                for attachment_id in attachment_ids:
                    attachment = ensure_owned(
                        await session.get_attachment(attachment_id),
                        "Attachment", attachment_id, user_id,
                    )
                    if attachment.transaction_id not in (None, transaction_id):
                        raise LedgerError(
                            ErrorCode.ALREADY_LINKED,
                            f"Attachment {attachment_id} is already linked to another transaction",
                            {
                                "attachment_id": attachment_id,
                                "transaction_id": attachment.transaction_id,
                            },
                        )
                    attachments.append(attachment)

                for attachment in attachments:
                    if attachment.transaction_id != transaction_id:
                        attachment.transaction_id = transaction_id
                        await session.save_attachment(attachment)

        await self._audit.log_attachments_linked(
            transaction_id, user_id, attachment_ids, correlation_id=correlation_id
        )
        return attachments

    async def list_for_transaction(
        self,
        transaction_id: UUID,
        user_id: UUID,
    ) -> list[Attachment]:
        async with self._rejections("list_attachments", user_id):
            async with self._storage.atomic() as session:
                ensure_owned(
                    await session.get_transaction(transaction_id),
                    "Transaction", transaction_id, user_id,
                )
                return await session.list_attachments_for([transaction_id])

    async def delete_attachment(
        self,
        attachment_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Delete the metadata, then the stored file best-effort."""
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("delete_attachment", user_id, correlation_id):
            async with self._storage.atomic() as session:
                attachment = ensure_owned(
                    await session.get_attachment(attachment_id),
                    "Attachment", attachment_id, user_id,
                )
                await session.delete_attachments([attachment_id])

        failed = await delete_stored_files(self._files, [attachment], self._audit, correlation_id)
        await self._audit.log_attachment(
            AuditEventType.ATTACHMENT_DELETED,
            attachment_id,
            user_id,
            f"Attachment deleted: {attachment.filename}",
            correlation_id=correlation_id,
        )
        return not failed

    async def cleanup_unlinked(
        self,
        user_id: UUID,
        older_than_hours: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[UUID]:
        """
        Remove attachments that were never linked to a transaction.

        Returns:
            IDs of the removed attachments
        """
        correlation_id = correlation_id or create_correlation_id()
        hours = older_than_hours if older_than_hours is not None else self._settings.unlinked_max_age_hours
        cutoff = datetime.utcnow() - timedelta(hours=hours)

        async with self._storage.atomic() as session:
            stale = await session.list_unlinked_attachments(user_id, cutoff)
            await session.delete_attachments(a.id for a in stale)

        await delete_stored_files(self._files, stale, self._audit, correlation_id)
        for attachment in stale:
            await self._audit.log_attachment(
                AuditEventType.ATTACHMENT_DELETED,
                attachment.id,
                user_id,
                f"Unlinked attachment removed: {attachment.filename}",
                correlation_id=correlation_id,
            )
        if stale:
            self._logger.info(
                "unlinked_attachments_removed",
                owner_id=str(user_id),
                count=len(stale),
                older_than_hours=hours,
            )
        return [a.id for a in stale]
