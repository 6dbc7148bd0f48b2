from chat_serv.services.chats.service import ChatService

__all__ = ["ChatService"]
