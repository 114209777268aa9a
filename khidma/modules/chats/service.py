"""
Chats Module - Business Logic Service

ChatService owns chat lookup and lifecycle. MessageService stores bubbles,
keeps the per-month partition counts in step, routes messages between the
service chat and the conversation chat of a job, and expires bubbles.

Building blocks (add_message, remove_message, the job-scoped expirations)
only flush; the caller's unit of work commits.
"""
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.exceptions import NotFoundError, ValidationError
from khidma.core.logging import get_logger
from khidma.core.models import current_year_month, utc_now
from khidma.modules.auth.models import User, UserType
from khidma.modules.chats.models import (
    USER_BUBBLE_TYPES,
    BubbleType,
    Chat,
    Message,
    MessagePartition,
    MessageStatus,
)
from khidma.modules.chats.schemas import ChatInfoResponse, MessagePage, MessageResponse, SenderSummary
from khidma.modules.jobs.models import Job, JobStatus

logger = get_logger(__name__)

# Typed by the assigned worker to close an in-progress job
COMPLETION_TRIGGER = "*1#"

ONBOARDING_CODE_INPUT_TEXT = "Ask the customer for the start code to begin work"

ONBOARDING_REMINDER_TEXTS = (
    "Don't forget to ask the customer for the start code before beginning work",
    "Please get the start code from the customer to proceed",
    "Remember to collect the start code from the customer",
    "Ask the customer for their start code to begin the job",
)


def onboarding_reminder_text(reminder_number: int) -> str:
    return ONBOARDING_REMINDER_TEXTS[reminder_number % len(ONBOARDING_REMINDER_TEXTS)]


class ChatService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_chat(self, chat_id: uuid.UUID) -> Chat | None:
        return await self.db.get(Chat, chat_id)

    async def find_customer_service_chat(
        self,
        customer_id: uuid.UUID,
        category_id: uuid.UUID,
    ) -> Chat | None:
        stmt = (
            select(Chat)
            .where(
                Chat.customer_id == customer_id,
                Chat.category_id == category_id,
                Chat.worker_id.is_(None),
            )
            .order_by(Chat.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def find_worker_notification_chat(
        self,
        worker_id: uuid.UUID,
        category_id: uuid.UUID,
    ) -> Chat | None:
        stmt = (
            select(Chat)
            .where(
                Chat.worker_id == worker_id,
                Chat.category_id == category_id,
                Chat.customer_id.is_(None),
                Chat.job_id.is_(None),
            )
            .order_by(Chat.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_chats_for_job(self, job_id: uuid.UUID) -> list[Chat]:
        result = await self.db.execute(select(Chat).where(Chat.job_id == job_id))
        return list(result.scalars().all())

    async def get_or_create_category_chat(
        self,
        customer_id: uuid.UUID,
        category_id: uuid.UUID,
    ) -> Chat:
        """The customer's service chat for a category, created on first use."""
        chat = await self.find_customer_service_chat(customer_id, category_id)
        if chat:
            return chat

        chat = Chat(customer_id=customer_id, category_id=category_id, is_cleared=False)
        self.db.add(chat)
        await self.db.commit()
        await self.db.refresh(chat)

        logger.info("Service chat created", chat_id=str(chat.id), customer_id=str(customer_id))
        return chat

    async def get_or_create_worker_category_chat(
        self,
        worker_id: uuid.UUID,
        category_id: uuid.UUID,
        commit: bool = True,
    ) -> Chat:
        """The worker's notification chat for a category, created on first use."""
        chat = await self.find_worker_notification_chat(worker_id, category_id)
        if chat:
            return chat

        chat = Chat(worker_id=worker_id, category_id=category_id, is_cleared=False)
        self.db.add(chat)
        if commit:
            await self.db.commit()
            await self.db.refresh(chat)
        else:
            await self.db.flush()

        logger.info("Worker notification chat created", chat_id=str(chat.id), worker_id=str(worker_id))
        return chat

    async def get_chat_messages(
        self,
        chat_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> MessagePage:
        """Live (non-expired) messages, oldest first, with their senders."""
        conditions = (Message.chat_id == chat_id, Message.is_expired.is_(False))

        total = await self.db.scalar(select(func.count(Message.id)).where(*conditions)) or 0
        stmt = (
            select(Message, User)
            .outerjoin(User, User.id == Message.sender_id)
            .where(*conditions)
            .order_by(Message.created_at.asc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(stmt)

        items = []
        for message, sender in result.all():
            item = MessageResponse.model_validate(message)
            item.sender = SenderSummary.model_validate(sender) if sender else None
            items.append(item)

        return MessagePage(
            items=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(items) < total,
        )

    async def _partitions(self, chat_id: uuid.UUID) -> list[MessagePartition]:
        result = await self.db.execute(
            select(MessagePartition).where(MessagePartition.chat_id == chat_id)
        )
        return list(result.scalars().all())

    async def is_chat_fresh(self, chat_id: uuid.UUID) -> bool:
        """A chat with no partitions has never had (or no longer has) messages."""
        return not await self._partitions(chat_id)

    async def get_chat_info(self, chat_id: uuid.UUID) -> ChatInfoResponse | None:
        chat = await self.get_chat(chat_id)
        if not chat:
            return None

        message_count = sum(p.message_count for p in await self._partitions(chat_id))
        return ChatInfoResponse(
            id=chat.id,
            category_id=chat.category_id,
            job_id=chat.job_id,
            customer_id=chat.customer_id,
            worker_id=chat.worker_id,
            banner_info=chat.banner_info,
            is_cleared=chat.is_cleared,
            created_at=chat.created_at,
            message_count=message_count,
            is_fresh=message_count == 0,
        )

    async def get_worker_notification_chats(self, worker_id: uuid.UUID) -> list[Chat]:
        stmt = (
            select(Chat)
            .where(Chat.worker_id == worker_id, Chat.customer_id.is_(None))
            .order_by(Chat.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_worker_conversation_chats(self, worker_id: uuid.UUID) -> list[Chat]:
        stmt = (
            select(Chat)
            .where(Chat.worker_id == worker_id, Chat.customer_id.is_not(None))
            .order_by(Chat.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_customer_conversation_chats(self, customer_id: uuid.UUID) -> list[Chat]:
        stmt = (
            select(Chat)
            .where(Chat.customer_id == customer_id, Chat.worker_id.is_not(None))
            .order_by(Chat.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_conversation_chat_by_job(
        self,
        job_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Chat | None:
        stmt = select(Chat).where(
            Chat.job_id == job_id,
            Chat.customer_id.is_not(None),
            Chat.worker_id.is_not(None),
            (Chat.customer_id == user_id) | (Chat.worker_id == user_id),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_specific_chat(self, chat_id: uuid.UUID, user_id: uuid.UUID) -> Chat | None:
        """The chat, or None when it is missing or `user_id` is not a participant."""
        chat = await self.get_chat(chat_id)
        if not chat or not chat.has_participant(user_id):
            return None
        return chat

    async def reset_chat(self, chat: Chat) -> Chat:
        """Detach a chat from its job so the customer can start a new request."""
        chat.job_id = None
        chat.worker_id = None
        chat.banner_info = None
        chat.is_cleared = False
        await self.db.flush()
        return chat


class MessageService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ============== Storage ==============

    async def update_partition_count(self, chat_id: uuid.UUID, year_month: str, delta: int) -> None:
        """Apply `delta` to a partition count, dropping the row once it reaches zero."""
        stmt = select(MessagePartition).where(
            MessagePartition.chat_id == chat_id,
            MessagePartition.year_month == year_month,
        )
        result = await self.db.execute(stmt)
        partition = result.scalar_one_or_none()

        if partition:
            new_count = partition.message_count + delta
            if new_count <= 0:
                await self.db.delete(partition)
            else:
                partition.message_count = new_count
        elif delta > 0:
            self.db.add(MessagePartition(chat_id=chat_id, year_month=year_month, message_count=delta))
        await self.db.flush()

    async def add_message(
        self,
        chat_id: uuid.UUID,
        sender_id: uuid.UUID,
        bubble_type: BubbleType | str,
        content: str,
        metadata: dict[str, Any] | None = None,
        status: MessageStatus | None = MessageStatus.SENT,
    ) -> Message:
        now = utc_now()
        message = Message(
            chat_id=chat_id,
            year_month=current_year_month(now),
            sender_id=sender_id,
            bubble_type=BubbleType(bubble_type).value,
            content=content,
            metadata_=metadata,
            is_dismissed=False,
            is_expired=False,
            status=status.value if status else None,
            delivered_at=now if status == MessageStatus.SENT else None,
        )
        self.db.add(message)
        await self.db.flush()
        await self.update_partition_count(chat_id, message.year_month, 1)
        return message

    async def remove_message(self, message: Message) -> None:
        chat_id, year_month = message.chat_id, message.year_month
        await self.db.delete(message)
        await self.db.flush()
        await self.update_partition_count(chat_id, year_month, -1)

    # ============== Sending ==============

    async def send_message(
        self,
        chat_id: uuid.UUID,
        sender_id: uuid.UUID,
        bubble_type: BubbleType | str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message | None:
        """
        Store a client message and mirror it into the job's paired chat.

        Returns None when the text was the completion trigger; in that case
        the completion flow runs instead and nothing is stored.
        """
        bubble_type = BubbleType(bubble_type)
        if bubble_type not in USER_BUBBLE_TYPES:
            raise ValidationError(f"Unsupported bubble type: {bubble_type.value}")

        chat = await self.db.get(Chat, chat_id)
        if not chat:
            raise NotFoundError("Chat not found")

        job = await self.db.get(Job, chat.job_id) if chat.job_id else None

        if (
            bubble_type == BubbleType.TEXT
            and content.strip() == COMPLETION_TRIGGER
            and job is not None
            and job.status == JobStatus.IN_PROGRESS.value
            and job.worker_id == sender_id
        ):
            from khidma.modules.jobs.service import JobService

            await JobService(self.db).initiate_completion_flow(job.id, job.worker_id, job.customer_id)
            return None

        sender = await self.db.get(User, sender_id)
        if not sender:
            raise NotFoundError("Sender not found")

        message = await self.add_message(chat.id, sender.id, bubble_type, content, metadata)

        if job is not None:
            target = await self._find_paired_chat(chat, job, sender)
            if target:
                await self.add_message(target.id, sender.id, bubble_type, content, metadata)
                logger.debug("Message routed", source_chat_id=str(chat.id), target_chat_id=str(target.id))

        await self.db.commit()
        return message

    async def _find_paired_chat(self, chat: Chat, job: Job, sender: User) -> Chat | None:
        """Customer messages go to the job conversation; worker messages to the service chat."""
        if sender.user_type == UserType.CUSTOMER.value:
            if job.worker_id is None:
                return None
            stmt = select(Chat).where(
                Chat.job_id == job.id,
                Chat.customer_id == job.customer_id,
                Chat.worker_id == job.worker_id,
                Chat.id != chat.id,
            )
        elif sender.user_type == UserType.WORKER.value:
            stmt = select(Chat).where(
                Chat.customer_id == job.customer_id,
                Chat.category_id == job.category_id,
                Chat.worker_id.is_(None),
                Chat.id != chat.id,
            )
        else:
            return None

        result = await self.db.execute(stmt)
        return result.scalars().first()

    # ============== Delivery status ==============

    async def _get_message(self, message_id: uuid.UUID) -> Message:
        message = await self.db.get(Message, message_id)
        if not message:
            raise NotFoundError("Message not found")
        return message

    async def mark_delivered(self, message_id: uuid.UUID, recipient_id: uuid.UUID) -> bool:
        message = await self._get_message(message_id)
        if message.sender_id == recipient_id or message.status != MessageStatus.SENT.value:
            return False

        message.status = MessageStatus.DELIVERED.value
        message.delivered_at = utc_now()
        await self.db.commit()
        return True

    async def mark_read(self, message_id: uuid.UUID, recipient_id: uuid.UUID) -> bool:
        message = await self._get_message(message_id)
        readable = (MessageStatus.SENT.value, MessageStatus.DELIVERED.value)
        if message.sender_id == recipient_id or message.status not in readable:
            return False

        message.status = MessageStatus.READ.value
        message.read_at = utc_now()
        await self.db.commit()
        return True

    async def mark_batch_delivered(self, message_ids: list[uuid.UUID], recipient_id: uuid.UUID) -> int:
        """Deliver every sent message in the batch not authored by the recipient."""
        if not message_ids:
            return 0
        result = await self.db.execute(select(Message).where(Message.id.in_(message_ids)))

        now = utc_now()
        updated = 0
        for message in result.scalars().all():
            if message.sender_id != recipient_id and message.status == MessageStatus.SENT.value:
                message.status = MessageStatus.DELIVERED.value
                message.delivered_at = now
                updated += 1
        await self.db.commit()
        return updated

    # ============== Expiry ==============

    async def expire_message(self, message_id: uuid.UUID) -> Message:
        message = await self._get_message(message_id)
        message.is_expired = True
        await self.db.commit()
        return message

    async def expire_messages(self, message_ids: list[uuid.UUID]) -> int:
        """Expire the given messages; unknown ids are skipped."""
        if not message_ids:
            return 0
        result = await self.db.execute(select(Message).where(Message.id.in_(message_ids)))
        messages = list(result.scalars().all())
        for message in messages:
            message.is_expired = True
        await self.db.commit()
        return len(messages)

    async def dismiss_message(self, message_id: uuid.UUID) -> Message:
        message = await self._get_message(message_id)
        message.is_dismissed = True
        await self.db.commit()
        return message

    async def _expire_where(self, *conditions) -> int:
        stmt = select(Message).where(Message.is_expired.is_(False), *conditions)
        result = await self.db.execute(stmt)
        messages = list(result.scalars().all())
        for message in messages:
            message.is_expired = True
        await self.db.flush()
        return len(messages)

    async def expire_worker_job_bubbles_for_job(self, job_id: uuid.UUID) -> int:
        return await self._expire_where(
            Message.bubble_type == BubbleType.WORKER_JOB.value,
            Message.content == str(job_id),
        )

    async def expire_all_job_messages(self, job_id: uuid.UUID) -> int:
        job_chats = select(Chat.id).where(Chat.job_id == job_id)
        return await self._expire_where(Message.chat_id.in_(job_chats))

    async def expire_onboarding_reminders(self, job_id: uuid.UUID) -> int:
        return await self._expire_where(
            Message.metadata_["messageKey"].astext == "onboarding_code_reminder",
            Message.metadata_["jobId"].astext == str(job_id),
        )

    async def expire_rating_bubbles(self, job_id: uuid.UUID) -> int:
        return await self._expire_where(
            Message.bubble_type == BubbleType.RATING_REQUEST.value,
            Message.metadata_["jobId"].astext == str(job_id),
        )

    # ============== Start code bubbles ==============

    async def create_onboarding_code_input_bubble(
        self,
        chat_id: uuid.UUID,
        worker_id: uuid.UUID,
        job_id: uuid.UUID,
    ) -> Message:
        """Input bubble where the worker types the customer's start code."""
        return await self.add_message(
            chat_id,
            worker_id,
            BubbleType.ONBOARDING_CODE_INPUT,
            ONBOARDING_CODE_INPUT_TEXT,
            metadata={
                "jobId": str(job_id),
                "maxLength": 4,
                "messageKey": "onboarding_code_input",
                "isSystemGenerated": True,
                "automated": True,
            },
        )

    async def create_onboarding_reminder(
        self,
        chat_id: uuid.UUID,
        worker_id: uuid.UUID,
        job_id: uuid.UUID,
        reminder_number: int,
    ) -> Message | None:
        """Nudge the worker for the start code. Skipped once the job left `matched`."""
        job = await self.db.get(Job, job_id)
        if not job or job.status != JobStatus.MATCHED.value:
            return None

        message = await self.add_message(
            chat_id,
            worker_id,
            BubbleType.SYSTEM_INSTRUCTION,
            onboarding_reminder_text(reminder_number),
            metadata={
                "messageKey": "onboarding_code_reminder",
                "jobId": str(job_id),
                "reminderNumber": reminder_number,
                "isSystemGenerated": True,
                "automated": True,
                "isReminder": True,
            },
        )
        await self.db.commit()
        return message
