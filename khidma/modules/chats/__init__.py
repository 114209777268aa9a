from khidma.modules.chats.models import BubbleType, Chat, Message, MessagePartition, MessageStatus

__all__ = ["BubbleType", "Chat", "Message", "MessagePartition", "MessageStatus"]
