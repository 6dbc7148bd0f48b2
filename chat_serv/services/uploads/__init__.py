from chat_serv.services.uploads.service import UploadService

__all__ = ["UploadService"]
