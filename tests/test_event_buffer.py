import pytest

from razboard.event_buffer import EventBuffer, OutOfOrderEventError
from razboard.models import (
    CreateTopicRequest,
    CreateUserRequest,
    DeleteMessageRequest,
    Event,
    LikeMessageRequest,
    OpType,
    PostMessageRequest,
    UpdateMessageRequest,
)


def test_initial_state():
    buf = EventBuffer()
    assert buf.last_received_and_applied() == (-1, -1)
    assert buf.next_event_seq() == 0
    assert buf.get_event(0) is None


@pytest.mark.parametrize(
    "op, request_obj, field",
    [
        (OpType.POST, PostMessageRequest(topic_id=1, user_id=1, text="hi"), "post_message"),
        (OpType.UPDATE, UpdateMessageRequest(1, 1, 1, "x"), "update_message"),
        (OpType.DELETE, DeleteMessageRequest(1, 1, 1), "delete_message"),
        (OpType.LIKE, LikeMessageRequest(1, 1, 1), "like_message"),
        (OpType.CREATE_USER, CreateUserRequest(name="ana"), "create_user"),
        (OpType.CREATE_TOPIC, CreateTopicRequest(name="news"), "create_topic"),
    ],
)
def test_create_event_sets_payload(op, request_obj, field):
    buf = EventBuffer()
    event = buf.create_event(op, request_obj)
    assert event.op is op
    assert getattr(event, field) == request_obj
    assert buf.get_event(event.sequence_number) is event


def test_create_event_assigns_consecutive_numbers():
    buf = EventBuffer()
    events = [buf.create_event(OpType.CREATE_USER, CreateUserRequest(name=str(i))) for i in range(3)]
    assert [e.sequence_number for e in events] == list(range(3))
    assert buf.last_received() == events[-1].sequence_number
    assert buf.next_event_seq() == len(events)


def test_create_event_rejects_unknown_op():
    with pytest.raises(ValueError):
        EventBuffer().create_event("bogus", None)


def test_add_event_in_order_and_duplicates():
    buf = EventBuffer()
    first = Event(op=OpType.CREATE_USER, sequence_number=0, create_user=CreateUserRequest("a"))
    buf.add_event(first)
    buf.add_event(first)
    assert buf.next_event_seq() == 1
    assert buf.get_event(0) is first


def test_add_event_out_of_order_raises():
    buf = EventBuffer()
    with pytest.raises(OutOfOrderEventError):
        buf.add_event(Event(op=OpType.CREATE_USER, sequence_number=2))


def test_acknowledge_in_order():
    buf = EventBuffer()
    created = [buf.create_event(OpType.CREATE_TOPIC, CreateTopicRequest(name=n)) for n in "ab"]
    assert buf.acknowledge_event(0) is created[0]
    assert buf.acknowledge_event(1) is created[1]
    assert buf.last_applied() == buf.last_received()


def test_acknowledge_again_returns_none():
    buf = EventBuffer()
    buf.create_event(OpType.CREATE_USER, CreateUserRequest("a"))
    buf.acknowledge_event(0)
    assert buf.acknowledge_event(0) is None
    assert buf.last_applied() == 0


def test_acknowledge_skipping_raises():
    buf = EventBuffer()
    for name in "abc":
        buf.create_event(OpType.CREATE_USER, CreateUserRequest(name))
    with pytest.raises(OutOfOrderEventError):
        buf.acknowledge_event(2)
    assert buf.last_applied() == -1


def test_acknowledge_unknown_event_raises():
    buf = EventBuffer()
    with pytest.raises(OutOfOrderEventError):
        buf.acknowledge_event(0)


def test_get_event_negative_is_none():
    buf = EventBuffer()
    buf.create_event(OpType.CREATE_USER, CreateUserRequest("a"))
    assert buf.get_event(-1) is None