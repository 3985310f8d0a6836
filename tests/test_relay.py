"""
Tests for SignalingRelay message handling.

Covers the create/join/offer/leave flows, the error envelopes sent back for
bad input, and the log-only policy for ICE candidate failures.
"""

import json


class TestRoomFlow:

    def test_create_then_join_empty_room(self, connect, send):
        a = connect()

        send(a, type="createRoom", roomId="r1")
        send(a, type="joinRoom", roomId="r1", userId="a")

        assert a.transport.sent == [
            {"type": "roomCreated", "roomId": "r1"},
            {"type": "joined", "roomId": "r1", "userId": "a"},
        ]

    def test_second_joiner_gets_roster_and_first_is_notified(self, connect, send):
        a = connect()
        b = connect()
        send(a, type="createRoom", roomId="r1")
        send(a, type="joinRoom", roomId="r1", userId="a")
        a.transport.clear()

        send(b, type="joinRoom", roomId="r1", userId="b")

        assert b.transport.sent == [
            {"type": "joined", "roomId": "r1", "userId": "b"},
            {"type": "existingUsers", "roomId": "r1", "users": ["a"]},
        ]
        assert a.transport.sent == [{"type": "userJoined", "roomId": "r1", "userId": "b"}]

    def test_recreating_room_reports_exists_and_keeps_members(self, connect, send, room_with, rooms):
        room_with("r1", "a")
        c = connect()

        send(c, type="createRoom", roomId="r1")

        assert c.transport.types() == ["roomExists"]
        assert c.transport.sent[0]["roomId"] == "r1"
        assert rooms.get_room("r1").users == ["a"]

    def test_join_unknown_room(self, connect, send, rooms):
        a = connect()

        send(a, type="joinRoom", roomId="ghost", userId="a")

        assert a.transport.sent == [
            {"type": "error", "message": "Room ghost does not exist", "code": "ROOM_NOT_FOUND"}
        ]
        assert rooms.snapshot() == []
        assert a.room_id is None

    def test_duplicate_user_gets_error(self, connect, send, room_with, rooms):
        members = room_with("r1", "a")
        imposter = connect()

        send(imposter, type="joinRoom", roomId="r1", userId="a")

        assert imposter.transport.of_type("error")[0]["code"] == "DUPLICATE_USER"
        assert members["a"].transport.sent == []
        assert rooms.get_room("r1").users == ["a"]

    def test_join_while_bound_is_rejected(self, send, room_with, rooms):
        members = room_with("r1", "a")
        rooms.create_room("r2")

        send(members["a"], type="joinRoom", roomId="r2", userId="a")

        assert members["a"].transport.of_type("error")[0]["code"] == "ALREADY_IN_ROOM"
        assert rooms.get_room("r2").users == []

    def test_leave_room(self, send, room_with, rooms):
        members = room_with("r1", "a", "b")

        send(members["b"], type="leaveRoom")

        assert members["b"].transport.sent == [{"type": "left", "roomId": "r1", "userId": "b"}]
        assert members["a"].transport.sent == [{"type": "userLeft", "roomId": "r1", "userId": "b"}]
        assert rooms.get_room("r1").users == ["a"]
        assert members["b"].room_id is None

    def test_last_leave_removes_room(self, send, room_with, rooms):
        members = room_with("r1", "a")

        send(members["a"], type="leaveRoom")

        assert rooms.snapshot() == []

    def test_leave_when_not_in_room(self, connect, send):
        a = connect()

        send(a, type="leaveRoom")

        assert a.transport.sent == [{"type": "error", "message": "Not in a room", "code": "USER_NOT_IN_ROOM"}]

    def test_membership_is_union_of_joins(self, send, room_with, rooms):
        room_with("r1", "a", "b")
        room_with("r1", "c")

        assert rooms.get_room("r1").users == ["a", "b", "c"]


class TestForwarding:

    def test_offer_reaches_target_with_sender(self, send, room_with):
        members = room_with("r1", "a", "b")

        send(members["a"], type="offer", targetUserId="b", sdp="X")

        assert members["b"].transport.sent == [{"type": "offer", "sdp": "X", "from": "a"}]
        assert members["a"].transport.sent == []

    def test_answer_sdp_is_forwarded_unchanged(self, send, room_with):
        members = room_with("r1", "a", "b")
        sdp = "v=0\r\no=- 4611731400430051336 2 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"

        send(members["b"], type="answer", targetUserId="a", sdp=sdp)

        assert members["a"].transport.sent == [{"type": "answer", "sdp": sdp, "from": "b"}]

    def test_ice_candidate_forwarded(self, send, room_with):
        members = room_with("r1", "a", "b")
        candidate = "candidate:842163049 1 udp 1677729535 203.0.113.7 46154 typ srflx"

        send(members["a"], type="iceCandidate", targetUserId="b", candidate=candidate, sdpMid="0", sdpMLineIndex=0)

        assert members["b"].transport.sent == [
            {"type": "iceCandidate", "candidate": candidate, "sdpMid": "0", "sdpMLineIndex": 0, "from": "a"}
        ]

    def test_offer_to_absent_user_yields_one_error(self, send, room_with, rooms):
        members = room_with("r1", "a", "b")
        others = room_with("r2", "b", "z")

        send(members["a"], type="offer", targetUserId="z", sdp="X")

        assert members["a"].transport.types() == ["error"]
        assert members["a"].transport.sent[0]["code"] == "DELIVERY_FAILED"
        assert members["b"].transport.sent == []
        assert others["z"].transport.sent == []
        assert rooms.get_room("r2").users == ["b", "z"]

    def test_ice_candidate_failure_is_not_replied(self, send, room_with):
        members = room_with("r1", "a")

        send(members["a"], type="iceCandidate", targetUserId="nobody", candidate="c", sdpMid="0", sdpMLineIndex=0)

        assert members["a"].transport.sent == []

    def test_invalid_ice_candidate_is_not_replied(self, send, room_with):
        members = room_with("r1", "a", "b")

        send(members["a"], type="iceCandidate", targetUserId="b", candidate="c")

        assert members["a"].transport.sent == []
        assert members["b"].transport.sent == []

    def test_offer_before_joining(self, connect, send):
        a = connect()

        send(a, type="offer", targetUserId="b", sdp="X")

        assert a.transport.sent[0]["code"] == "USER_NOT_IN_ROOM"

    def test_offer_to_closed_target_evicts_it(self, send, room_with, rooms):
        members = room_with("r1", "a", "b")
        members["b"].transport.open = False

        send(members["a"], type="offer", targetUserId="b", sdp="X")

        assert members["a"].transport.types() == ["userLeft", "error"]
        assert rooms.get_room("r1").users == ["a"]


class TestBroadcastMessages:

    def test_chat_message_goes_to_other_members(self, send, room_with):
        members = room_with("r1", "a", "b", "c")

        send(members["a"], type="message", text="hello")

        for user_id in ("b", "c"):
            received = members[user_id].transport.sent
            assert len(received) == 1
            assert received[0]["text"] == "hello"
            assert received[0]["from"] == "a"
            assert received[0]["roomId"] == "r1"
            assert isinstance(received[0]["timestamp"], int)
        assert members["a"].transport.sent == []

    def test_user_status_update(self, send, room_with):
        members = room_with("r1", "a", "b")

        send(members["b"], type="userStatusUpdate", status={"audio": False, "video": True})

        received = members["a"].transport.sent[0]
        assert received["type"] == "userStatusUpdate"
        assert received["status"] == {"audio": False, "video": True}
        assert received["from"] == "b"

    def test_chat_requires_room(self, connect, send):
        a = connect()

        send(a, type="message", text="hello")

        assert a.transport.sent[0]["code"] == "USER_NOT_IN_ROOM"


class TestRoomInfo:

    def test_room_info_lists_rooms(self, connect, send, room_with):
        room_with("r1", "a", "b")
        room_with("r2", "c")
        observer = connect()

        send(observer, type="getRoomInfo")

        assert observer.transport.sent == [{
            "type": "roomInfo",
            "rooms": [
                {"roomId": "r1", "userCount": 2, "users": ["a", "b"]},
                {"roomId": "r2", "userCount": 1, "users": ["c"]},
            ],
            "totalRooms": 2,
        }]


class TestErrorReplies:

    def test_malformed_json_keeps_connection_usable(self, connect, relay, send):
        a = connect()

        relay.handle_message(a.connection_id, "{oops")
        send(a, type="createRoom", roomId="r1")

        assert a.transport.types() == ["error", "roomCreated"]
        assert a.transport.sent[0]["code"] == "MALFORMED_MESSAGE"

    def test_unknown_type(self, connect, send):
        a = connect()

        send(a, type="dance")

        assert a.transport.sent == [{"type": "error", "message": "Unknown message type: dance", "code": "UNKNOWN_MESSAGE_TYPE"}]

    def test_missing_field_changes_nothing(self, connect, send, rooms):
        a = connect()

        send(a, type="createRoom")

        assert a.transport.sent[0]["code"] == "VALIDATION_ERROR"
        assert rooms.snapshot() == []

    def test_unexpected_exception_becomes_error(self, connect, send, rooms, monkeypatch):
        a = connect()

        def boom(room_id):
            raise KeyError(room_id)

        monkeypatch.setattr(rooms, "create_room", boom)
        send(a, type="createRoom", roomId="r1")

        assert a.transport.sent == [{"type": "error", "message": "Internal server error", "code": "INTERNAL_ERROR"}]

    def test_message_for_unknown_connection_is_dropped(self, relay):
        relay.handle_message("does-not-exist", json.dumps({"type": "getRoomInfo"}))
