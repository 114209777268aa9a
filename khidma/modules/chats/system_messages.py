"""
Localized system bubbles for the job-request conversation.

Templates use `{name}` placeholders filled from the `variables` mapping.
"""
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.exceptions import NotFoundError, ValidationError
from khidma.core.logging import get_logger
from khidma.modules.categories.models import Category
from khidma.modules.chats.models import SYSTEM_BUBBLE_TYPES, BubbleType, Chat, Message, MessageStatus
from khidma.modules.chats.service import MessageService

logger = get_logger(__name__)

DEFAULT_LANGUAGE = "en"

SYSTEM_MESSAGES: dict[str, dict[str, str]] = {
    "welcome": {
        "en": "Welcome! I'll help you request {categoryName} services. Let's start by describing what you need.",
        "fr": "Bienvenue ! Je vais vous aider à demander des services de {categoryName}. Commençons par décrire ce dont vous avez besoin.",
        "ar": "مرحباً! سأساعدك في طلب خدمات {categoryName}. لنبدأ بوصف ما تحتاجه.",
    },
    "voice_instruction": {
        "en": "Please record a voice message describing your service request in detail.",
        "fr": "Veuillez enregistrer un message vocal décrivant votre demande de service en détail.",
        "ar": "يرجى تسجيل رسالة صوتية تصف طلب الخدمة بالتفصيل.",
    },
    "voice_completeness_check": {
        "en": "Does your voice message contain enough details about your service request?",
        "fr": "Votre message vocal contient-il suffisamment de détails sur votre demande de service ?",
        "ar": "هل تحتوي رسالتك الصوتية على تفاصيل كافية حول طلب الخدمة؟",
    },
    "date_selection": {
        "en": "When would you like this service completed?",
        "fr": "Quand souhaitez-vous que ce service soit terminé ?",
        "ar": "متى تريد إكمال هذه الخدمة؟",
    },
    "photo_selection": {
        "en": "Would you like to add photos of the area that needs work?",
        "fr": "Souhaitez-vous ajouter des photos de la zone qui nécessite des travaux ?",
        "ar": "هل تريد إضافة صور للمنطقة التي تحتاج إلى عمل؟",
    },
    "photos_received": {
        "en": "Thank you for the photos! Your service request is now complete.",
        "fr": "Merci pour les photos ! Votre demande de service est maintenant complète.",
        "ar": "شكراً لك على الصور! طلب الخدمة الخاص بك مكتمل الآن.",
    },
    "photos_skipped": {
        "en": "Your service request is ready to be posted.",
        "fr": "Votre demande de service est prête à être publiée.",
        "ar": "طلب الخدمة الخاص بك جاهز للنشر.",
    },
    "confirmation_prompt": {
        "en": "Is this description accurate?",
        "fr": "Cette description est-elle exacte ?",
        "ar": "هل هذا الوصف دقيق؟",
    },
    "date_instruction": {
        "en": "When would you like this service completed?",
        "fr": "Quand souhaitez-vous que ce service soit terminé ?",
        "ar": "متى تريد إكمال هذه الخدمة؟",
    },
    "photo_question": {
        "en": "Would you like to add photos of the problem area?",
        "fr": "Souhaitez-vous ajouter des photos de la zone problématique ?",
        "ar": "هل تريد إضافة صور للمنطقة المشكلة؟",
    },
    "photo_instruction": {
        "en": "Please share photos of the area that needs work.",
        "fr": "Veuillez partager des photos de la zone qui nécessite des travaux.",
        "ar": "يرجى مشاركة صور للمنطقة التي تحتاج إلى عمل.",
    },
    "job_created": {
        "en": "Your service request has been posted successfully!",
        "fr": "Votre demande de service a été publiée avec succès !",
        "ar": "تم نشر طلب الخدمة الخاص بك بنجاح!",
    },
    "completion_code_delivery": {
        "en": "Share this code with the worker only when work is completed: {code}",
        "fr": "Partagez ce code avec le travailleur seulement quand le travail est terminé: {code}",
        "ar": "شارك هذا الرمز مع العامل فقط عند اكتمال العمل: {code}",
    },
    "completion_code_input_instruction": {
        "en": "Ask the customer for the completion code to finish this job",
        "fr": "Demandez au client le code d'achèvement pour terminer ce travail",
        "ar": "اطلب من العميل رمز الإكمال لإنهاء هذا العمل",
    },
}


def render_system_message(
    message_key: str,
    language: str = DEFAULT_LANGUAGE,
    variables: dict[str, str] | None = None,
) -> str:
    templates = SYSTEM_MESSAGES.get(message_key)
    if templates is None:
        raise ValidationError(f"Unknown message key: {message_key}")

    content = templates.get(language) or templates[DEFAULT_LANGUAGE]
    for name, value in (variables or {}).items():
        content = content.replace(f"{{{name}}}", str(value))
    return content


class SystemMessageService:
    """Sends templated system bubbles into a chat on behalf of its owner."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.messages = MessageService(db)

    async def send_system_message(
        self,
        chat_id: uuid.UUID,
        bubble_type: BubbleType | str,
        message_key: str,
        language: str = DEFAULT_LANGUAGE,
        variables: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> Message:
        bubble_type = BubbleType(bubble_type)
        if bubble_type not in SYSTEM_BUBBLE_TYPES:
            raise ValidationError("Unsupported system bubble type")

        chat = await self.db.get(Chat, chat_id)
        if not chat:
            raise NotFoundError("Chat not found")

        content = render_system_message(message_key, language, variables)
        # System bubbles are attributed to the chat owner
        sender_id = chat.customer_id or chat.worker_id

        message = await self.messages.add_message(
            chat_id=chat.id,
            sender_id=sender_id,
            bubble_type=bubble_type,
            content=content,
            metadata={
                **(metadata or {}),
                "isSystemGenerated": True,
                "automated": True,
                "language": language,
                "messageKey": message_key,
            },
            status=MessageStatus.SENT,
        )
        if commit:
            await self.db.commit()
        return message

    async def send_initial_instructions(
        self,
        chat_id: uuid.UUID,
        category_id: uuid.UUID,
        language: str = DEFAULT_LANGUAGE,
    ) -> list[Message]:
        """Welcome bubble followed by the voice recording prompt."""
        category = await self.db.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")

        category_name = category.localized_name(language)

        welcome = await self.send_system_message(
            chat_id,
            BubbleType.SYSTEM_INSTRUCTION,
            "welcome",
            language,
            variables={"categoryName": category_name},
            metadata={
                "step": 1,
                "nextAction": "voice_recording",
                "categoryName": category_name,
                "isInitialInstruction": True,
            },
            commit=False,
        )
        voice_prompt = await self.send_system_message(
            chat_id,
            BubbleType.SYSTEM_INSTRUCTION,
            "voice_instruction",
            language,
            metadata={
                "step": 2,
                "nextAction": "voice_recording",
                "promptType": "voice_instruction",
                "isInitialInstruction": True,
            },
            commit=False,
        )
        await self.db.commit()

        logger.info("Initial instructions sent", chat_id=str(chat_id), language=language)
        return [welcome, voice_prompt]
