from chat_serv.services.messages.service import MessageService

__all__ = ["MessageService"]
