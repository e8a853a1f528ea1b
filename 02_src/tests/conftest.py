"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from msgsync.models import (  # noqa: E402
    Conversation,
    Message,
    MessageDraft,
    MessageStatus,
    TextBody,
    UnreadCount,
)
from msgsync.transport import ApiResponse  # noqa: E402

T0 = 1_700_000_000_000
LOCAL_USER = "alice"
REMOTE_USER = "bob"


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeMessagingAPI:
    """In-memory messaging backend that records every call.

    ``send_results`` is consumed first (ApiResponse or exception per call);
    once empty, ``send_default`` is used, and if that is None the send
    succeeds with a server-assigned id.
    """

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self._next_id = 0

        self.sent: list[MessageDraft] = []
        self.send_results: list = []
        self.send_default = None

        self.messages: dict[str, list[Message]] = {}
        self.conversation_ids: list[str] | None = None
        self.conversations_response: ApiResponse | None = None
        self.messages_errors: dict[str, object] = {}
        self.fetches: list[str] = []

        self.unread_counts: list[UnreadCount] = []
        self.unread_error: Exception | None = None

        self.marked_read: list[str] = []
        self.typing: list[tuple[str, str]] = []
        self.receipts: list[tuple[str, str]] = []

    async def send_message(self, draft: MessageDraft) -> ApiResponse[Message]:
        self.sent.append(draft)

        result = self.send_results.pop(0) if self.send_results else self.send_default
        if isinstance(result, BaseException):
            raise result
        if result is not None:
            return result

        self._next_id += 1
        return ApiResponse.ok(
            Message(
                id=f"srv_{self._next_id}",
                conversation_id=draft.conversation_id,
                sender_id=draft.sender_id,
                recipient_id=draft.recipient_id,
                body=draft.body,
                created_at=self._clock(),
                status=MessageStatus.SENT,
            )
        )

    async def get_messages(self, conversation_id, limit=None, before=None, after=None):
        self.fetches.append(conversation_id)

        error = self.messages_errors.get(conversation_id)
        if isinstance(error, BaseException):
            raise error
        if error is not None:
            return error

        messages = sorted(self.messages.get(conversation_id, []), key=lambda m: m.created_at)
        if limit:
            messages = messages[-limit:]
        return ApiResponse.ok(messages)

    async def get_conversations(self):
        if self.conversations_response is not None:
            return self.conversations_response
        ids = self.conversation_ids if self.conversation_ids is not None else list(self.messages)
        return ApiResponse.ok([Conversation(id=cid) for cid in ids])

    async def mark_conversation_as_read(self, conversation_id):
        self.marked_read.append(conversation_id)
        return ApiResponse.ok(None)

    async def send_typing_indicator(self, conversation_id, action):
        self.typing.append((conversation_id, action))
        return ApiResponse.ok(None)

    async def send_delivery_receipt(self, message_id, status):
        self.receipts.append((message_id, status))
        return ApiResponse.ok(None)

    async def get_unread_counts(self):
        if self.unread_error is not None:
            raise self.unread_error
        return ApiResponse.ok(list(self.unread_counts))


@pytest.fixture
def clock():
    """Fake clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def api(clock):
    """Fake messaging backend."""
    return FakeMessagingAPI(clock)


@pytest.fixture
def make_message(clock):
    """Factory for canonical messages."""

    def factory(
        message_id: str,
        conversation_id: str = "conv1",
        created_at: int | None = None,
        text: str = "hello",
        status: MessageStatus = MessageStatus.SENT,
        sender_id: str = REMOTE_USER,
        recipient_id: str = LOCAL_USER,
        read_at: int | None = None,
    ) -> Message:
        return Message(
            id=message_id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            body=TextBody(text=text),
            created_at=clock() if created_at is None else created_at,
            status=status,
            read_at=read_at,
        )

    return factory


@pytest.fixture
def make_draft():
    """Factory for outbound text drafts."""

    def factory(text: str = "hi there", conversation_id: str = "conv1") -> MessageDraft:
        return MessageDraft(
            conversation_id=conversation_id,
            sender_id=LOCAL_USER,
            recipient_id=REMOTE_USER,
            body=TextBody(text=text),
        )

    return factory


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from msgsync.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def cache(clock):
    """MessageCache driven by the fake clock (no background sweep)."""
    from msgsync.cache import MessageCache

    c = MessageCache(clock=clock)
    yield c
    c.destroy()


@pytest_asyncio.fixture
async def queue(api, storage, clock):
    """Initialized OfflineMessageQueue, offline."""
    from msgsync.queue import OfflineMessageQueue, QueueOptions

    q = OfflineMessageQueue(api, storage, QueueOptions(), clock=clock)
    await q.initialize()
    yield q
    q.destroy()
    await q.wait_until_idle()


@pytest.fixture
def realtime():
    """In-process real-time channel."""
    from msgsync.transport import RealtimeChannel

    return RealtimeChannel()


@pytest_asyncio.fixture
async def make_sync_manager(api, cache, storage, clock):
    """Factory for initialized sync managers; destroyed at teardown."""
    from msgsync.sync import MessageSyncManager, SyncOptions

    created = []

    async def factory(realtime=None, offline_queue=None, **options):
        options.setdefault("sync_interval", 0)
        manager = MessageSyncManager(api, cache, storage, SyncOptions(**options), clock=clock)
        await manager.initialize(LOCAL_USER, realtime, offline_queue)
        created.append(manager)
        return manager

    yield factory

    for manager in created:
        manager.destroy()
        await manager.wait_until_idle()


@pytest_asyncio.fixture
async def sync_manager(make_sync_manager, realtime, queue):
    """Sync manager wired to the real-time channel and the offline queue."""
    return await make_sync_manager(realtime=realtime, offline_queue=queue)
