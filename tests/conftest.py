import asyncio
import uuid
from collections import defaultdict

import numpy as np
import pytest
from fastapi.websockets import WebSocketState

from edumanage.services.client_surface import ClientEvent, ClientSurface, FullscreenDenied
from edumanage.services.media_devices import MediaDevices, MediaPermissionError, MediaStream, MediaTrack
from edumanage.services.storage import ObjectStorage, StorageError
from edumanage.services.store import DataStore, StoreError


class InMemoryStore(DataStore):
    def __init__(self):
        self.tables = defaultdict(list)
        self.calls = []
        self.failing = set()
        self.journal = None

    def _check(self, op, table):
        if (op, table) in self.failing:
            raise StoreError(f"{op} on {table} failed")

    async def create(self, table, record):
        await asyncio.sleep(0)
        self._check("create", table)
        row = {'id': str(uuid.uuid4()), **record}
        self.tables[table].append(row)
        self.calls.append(("create", table))
        if self.journal is not None:
            self.journal.append(("create", table))
        return row['id']

    async def read(self, table, filters=None, order_by=None):
        await asyncio.sleep(0)
        self._check("read", table)
        self.calls.append(("read", table))
        rows = []
        for row in self.tables[table]:
            ok = True
            for k, v in (filters or {}).items():
                if isinstance(v, (list, tuple, set)):
                    ok = ok and str(row.get(k)) in {str(x) for x in v}
                else:
                    ok = ok and str(row.get(k)) == str(v)
            if ok:
                rows.append(dict(row))
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by) or 0))
        return rows

    async def update(self, table, record_id, patch):
        await asyncio.sleep(0)
        self._check("update", table)
        self.calls.append(("update", table))
        for row in self.tables[table]:
            if row['id'] == record_id:
                row.update(patch)
                return
        raise StoreError(f"{table} record {record_id} not found")

    def count(self, op, table):
        return sum(1 for c in self.calls if c == (op, table))


class FakeStorage(ObjectStorage):
    def __init__(self, delay=0.0, fail=False):
        self.delay = delay
        self.fail = fail
        self.objects = {}
        self.journal = None

    async def upload(self, bucket, path, data, content_type):
        await asyncio.sleep(self.delay)
        if self.fail:
            raise StorageError("bucket unavailable")
        self.objects[(bucket, path)] = data
        if self.journal is not None:
            self.journal.append(("upload", path))
        return path

    def public_url(self, bucket, path):
        return f"https://files.example/{bucket}/{path}"


class FakeTrack(MediaTrack):
    def __init__(self):
        self.stopped = 0

    @property
    def live(self):
        return self.stopped == 0

    def stop(self):
        self.stopped += 1


class FakeStream(MediaStream):
    def __init__(self, size=(640, 480), frame_size=None):
        self.size = size
        width, height = frame_size or size
        self.frame = np.zeros((height, width, 3), dtype=np.uint8)
        self.track = FakeTrack()

    def get_tracks(self):
        return [self.track]

    def read_frame(self):
        return self.frame if self.track.live else None

    @property
    def dimensions(self):
        return self.size


class FakeMediaDevices(MediaDevices):
    def __init__(self, deny=False):
        self.deny = deny
        self.requests = []
        self.streams = []

    async def get_user_media(self, constraints):
        self.requests.append(constraints)
        if self.deny:
            raise MediaPermissionError("Permission denied")
        stream = FakeStream()
        self.streams.append(stream)
        return stream


class FakeSurface(ClientSurface):
    def __init__(self, media=None, deny_fullscreen=False):
        super().__init__(media or FakeMediaDevices())
        self.deny_fullscreen = deny_fullscreen
        self.fullscreen = False
        self.notifications = []
        self.policy = None
        self.exit_calls = 0

    @property
    def is_fullscreen(self):
        return self.fullscreen

    async def request_fullscreen(self):
        if self.deny_fullscreen:
            raise FullscreenDenied("Permissions check failed")
        self.fullscreen = True

    async def exit_fullscreen(self):
        self.exit_calls += 1
        self.fullscreen = False

    async def notify(self, level, message):
        self.notifications.append((level, message))

    async def publish_guard_policy(self, policy):
        self.policy = policy

    async def fire(self, event_type, **fields):
        event = ClientEvent(type=event_type, **fields)
        await asyncio.gather(*self.events.dispatch(event))
        return event


class FakeWebSocket:
    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.sent = []

    async def send_json(self, message):
        self.sent.append(message)


Q1 = "11111111-1111-1111-1111-111111111111"
Q2 = "22222222-2222-2222-2222-222222222222"
EXAM_ID = "eeeeeeee-eeee-eeee-eeee-eeeeeeeeeeee"


def make_exam(**overrides):
    exam = {
        'id': EXAM_ID,
        'title': "Algebra mid-term",
        'duration_minutes': 30,
        'total_marks': 8,
        'show_result_immediately': True,
        'proctoring_enabled': True,
        'fullscreen_required': False,
        'webcam_required': False,
        'tab_switch_limit': 3,
        'school_id': None,
    }
    exam.update(overrides)
    return exam


def seed_exam(store, exam):
    store.tables["online_exams"].append(dict(exam))
    store.tables["question_bank"] += [
        {'id': Q1, 'question_text': "2 + 2?", 'question_type': "multiple_choice", 'options': [], 'correct_answer': "B", 'marks': 5},
        {'id': Q2, 'question_text': "3 * 3?", 'question_type': "multiple_choice", 'options': [], 'correct_answer': "C", 'marks': 3},
    ]
    store.tables["online_exam_questions"] += [
        {'id': str(uuid.uuid4()), 'online_exam_id': exam['id'], 'question_id': Q2, 'question_order': 2, 'marks': 3},
        {'id': str(uuid.uuid4()), 'online_exam_id': exam['id'], 'question_id': Q1, 'question_order': 1, 'marks': 5},
    ]
    store.tables["grade_scales"] += [
        {'id': "g-a", 'name': "A", 'grade': "A", 'min_score': 90, 'max_score': 100},
        {'id': "g-b", 'name': "B", 'grade': "B", 'min_score': 80, 'max_score': 89},
        {'id': "g-c", 'name': "C", 'grade': "C", 'min_score': 70, 'max_score': 79},
    ]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def surface():
    return FakeSurface()
