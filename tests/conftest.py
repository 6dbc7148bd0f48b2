import os

os.environ.setdefault("LOGGING_ON_FILE", "false")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-secret-key-for-chat-serv-tokens")

import pytest

from fastapi.testclient import TestClient

from chat_serv.app import Application
from chat_serv.common.notify_manager import NotifyManager
from chat_serv.services.chats import ChatService
from chat_serv.services.messages import MessageService
from chat_serv.services.uploads import UploadService

from tests.fakes import FakeDB, FakeFilesRepository, FakeStore, install_fakes


USER_IDS = (1, 2, 3, 4, 5)


@pytest.fixture
def store():
    store = FakeStore()
    for user_id in USER_IDS:
        store.add_user(user_id)
    return store


@pytest.fixture
def files():
    return FakeFilesRepository()


@pytest.fixture
def notify_man():
    return NotifyManager(queue_size=32)


@pytest.fixture
def message_service(store, files, notify_man):
    service = MessageService(FakeDB(store), None, notify_man)
    install_fakes(store, files, service)
    return service


@pytest.fixture
def chat_service(store, files, notify_man, message_service):
    service = ChatService(FakeDB(store), None, notify_man, message_service)
    install_fakes(store, files, service)
    return service


@pytest.fixture
def upload_service(files):
    service = UploadService(None)
    service.files_repo = files
    return service


@pytest.fixture
def room_topic(notify_man):
    """Subscribe a listener to a room and return it."""

    async def subscribe(chat_room_id: int, user_id: int = 99):
        subscriber = await notify_man.open_subscriber(user_id)
        await notify_man.join_topic(subscriber, notify_man.chat_room_topic(chat_room_id))
        return subscriber

    return subscribe


@pytest.fixture
def application(store, files):
    app = Application(configure_logging=False)
    install_fakes(store, files, app.chat_service, app.message_service, app.upload_service)
    app.create_api(manage_lifecycle=False)
    return app


@pytest.fixture
def client(application):
    return TestClient(application.api, raise_server_exceptions=False)
