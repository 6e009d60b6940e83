"""Progress bus tests with a recording channel layer."""

import pytest

from services.progress_bus import DASHBOARD_BROADCAST_GROUP, ProgressBus, dashboard_group, lesson_group


class RecordingLayer:
    def __init__(self):
        self.sent = []

    async def group_send(self, group, message):
        self.sent.append((group, message))


@pytest.fixture
def layer():
    return RecordingLayer()


@pytest.fixture
def bus(layer):
    return ProgressBus(channel_layer=layer)


def test_publish_reaches_local_subscribers_and_group(bus, layer):
    received = []
    bus.subscribe('lesson:l1', received.append)

    assert bus.publish('l1', {'type': 'progress', 'progress': 30, 'currentStep': 'Transcoding video'}) is True

    assert received[0]['lessonId'] == 'l1'
    assert received[0]['progress'] == 30
    assert 'timestamp' in received[0]
    group, message = layer.sent[0]
    assert group == 'video_progress_l1'
    assert message['type'] == 'video.progress'
    assert message['message']['currentStep'] == 'Transcoding video'


def test_unknown_event_types_are_dropped(bus, layer):
    assert bus.publish('l1', {'type': 'debug'}) is False
    assert bus.publish('l1', 'not-an-event') is False
    assert layer.sent == []


def test_unsubscribe_stops_delivery(bus):
    received = []
    unsubscribe = bus.subscribe('lesson:l1', received.append)

    unsubscribe()
    bus.publish('l1', {'type': 'complete', 'progress': 100})

    assert received == []
    assert bus.subscriber_count('lesson:l1') == 0


def test_failing_subscriber_does_not_block_others(bus):
    received = []

    def broken(message):
        raise RuntimeError('socket closed')

    bus.subscribe('lesson:l1', broken)
    bus.subscribe('lesson:l1', received.append)

    bus.publish('l1', {'type': 'failed', 'error': 'boom'})

    assert len(received) == 1


def test_dashboard_updates_target_user_or_broadcast(bus, layer):
    personal = []
    broadcast = []
    bus.subscribe('dashboard:u1', personal.append)
    bus.subscribe('dashboard:*', broadcast.append)

    bus.publish_dashboard('u1', 'video_ready', {'lessonId': 'l1'})
    bus.publish_dashboard(None, 'migration_progress', {'completed': 3, 'total': 10})

    assert personal[0]['type'] == 'video_ready'
    assert broadcast[0]['data'] == {'completed': 3, 'total': 10}
    assert [group for group, _ in layer.sent] == ['dashboard_u1', DASHBOARD_BROADCAST_GROUP]
    assert layer.sent[1][1]['type'] == 'dashboard.update'


def test_channel_layer_errors_are_swallowed(layer):
    class BrokenLayer:
        async def group_send(self, group, message):
            raise ConnectionError('redis down')

    bus = ProgressBus(channel_layer=BrokenLayer())

    assert bus.publish('l1', {'type': 'progress', 'progress': 5}) is True


def test_group_names():
    assert lesson_group('abc') == 'video_progress_abc'
    assert dashboard_group('42') == 'dashboard_42'
    assert dashboard_group('*') == DASHBOARD_BROADCAST_GROUP
