"""Tests for command kinds, payload validation and result decoding."""

from __future__ import annotations

import base64

import pytest
from pydantic import ValidationError

from wcf_bridge.errors import DecodeError, SdkError
from wcf_bridge.protocol.commands import (
    COMMAND_SPECS,
    Command,
    CommandKind,
    CommandResult,
    convert_field,
    decode_response,
    get_spec,
)

# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    def test_every_kind_registered(self) -> None:
        assert set(COMMAND_SPECS) == set(CommandKind)

    def test_lookup_by_value(self) -> None:
        assert get_spec("send_text").kind == CommandKind.SEND_TEXT

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError):
            get_spec("reboot_phone")


# =============================================================================
# Command creation
# =============================================================================


class TestCommandCreate:
    def test_wire_body(self) -> None:
        command = Command.create("send_text", {"msg": "hello", "receiver": "wxid_abc"})

        assert command.to_request() == {
            "func": "send_text",
            "args": {"msg": "hello", "receiver": "wxid_abc", "aters": ""},
        }
        assert command.correlation_id.startswith("cmd_")

    def test_correlation_ids_unique(self) -> None:
        ids = {Command.create(CommandKind.IS_LOGIN).correlation_id for _ in range(50)}
        assert len(ids) == 50

    def test_missing_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Command.create("send_text", {"msg": "hello"})

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Command.create("is_login", {"unexpected": 1})

    def test_query_strings_coerced(self) -> None:
        """Query parameters arrive as strings."""
        command = Command.create("revoke_msg", {"id": "123"})
        assert command.payload == {"id": 123}

    def test_negative_message_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Command.create("refresh_pyq", {"id": -1})

    def test_friend_request_scene_default(self) -> None:
        command = Command.create("accept_new_friend", {"v3": "v3_x", "v4": "v4_y"})
        assert command.payload["scene"] == 30


# =============================================================================
# Response decoding
# =============================================================================


class TestDecodeResponse:
    def test_nonzero_status_is_sdk_error(self) -> None:
        command = Command.create("send_text", {"msg": "hi", "receiver": "wxid_abc"})

        with pytest.raises(SdkError) as exc_info:
            decode_response(command, {"seq": 1, "status": -2, "data": "receiver not found"})

        assert exc_info.value.code == "sdk_error"
        assert exc_info.value.status == -2
        assert "receiver not found" in exc_info.value.message

    def test_null_data_is_success_for_bool_commands(self) -> None:
        command = Command.create("send_text", {"msg": "hi", "receiver": "wxid_abc"})
        assert decode_response(command, {"status": 0, "data": None}) is True

    def test_bool_from_int(self) -> None:
        command = Command.create(CommandKind.IS_LOGIN)
        assert decode_response(command, {"status": 0, "data": 0}) is False

    def test_wrong_shape_is_decode_error(self) -> None:
        command = Command.create(CommandKind.GET_CONTACTS)
        with pytest.raises(DecodeError):
            decode_response(command, {"status": 0, "data": "not a list"})

    def test_contacts_keep_known_keys(self) -> None:
        command = Command.create(CommandKind.GET_CONTACTS)
        data = [{"wxid": "wxid_abc", "name": "Alice", "internal": "x"}]

        contacts = decode_response(command, {"status": 0, "data": data})

        assert contacts[0]["wxid"] == "wxid_abc"
        assert contacts[0]["name"] == "Alice"
        assert "internal" not in contacts[0]

    def test_msg_types_keys_are_strings(self) -> None:
        command = Command.create(CommandKind.GET_MSG_TYPES)
        result = decode_response(command, {"status": 0, "data": {1: "文字", 49: b"\xe5\x88\x86"}})
        assert result == {"1": "文字", "49": "分"}

    def test_bytes_strings_decoded(self) -> None:
        command = Command.create(CommandKind.GET_SELF_WXID)
        assert decode_response(command, {"status": 0, "data": b"wxid_self"}) == "wxid_self"


class TestSqlFields:
    def test_typed_conversion(self) -> None:
        command = Command.create("query_sql", {"db": "MicroMsg.db", "sql": "SELECT 1"})
        rows = [
            {
                "fields": [
                    {"column": "UserName", "type": 3, "content": "wxid_abc".encode()},
                    {"column": "Type", "type": 1, "content": b"3"},
                    {"column": "Score", "type": 2, "content": b"1.5"},
                    {"column": "Avatar", "type": 4, "content": b"\x89PNG"},
                    {"column": "Nothing", "type": 5, "content": b""},
                ]
            }
        ]

        result = decode_response(command, {"status": 0, "data": rows})

        assert result == [
            {
                "UserName": "wxid_abc",
                "Type": 3,
                "Score": 1.5,
                "Avatar": base64.b64encode(b"\x89PNG").decode(),
                "Nothing": None,
            }
        ]

    def test_unparseable_numbers_become_null(self) -> None:
        assert convert_field(1, b"abc") is None
        assert convert_field(2, b"") is None

    def test_row_without_fields(self) -> None:
        command = Command.create("query_sql", {"db": "MicroMsg.db", "sql": "SELECT 1"})
        with pytest.raises(DecodeError):
            decode_response(command, {"status": 0, "data": [{"cols": []}]})


class TestCommandResult:
    def test_failure_carries_code(self) -> None:
        result = CommandResult.failure(CommandKind.SEND_TEXT, "cmd_1", "timeout", "too slow")

        assert not result.ok
        assert result.error is not None
        assert result.error.code == "timeout"
        assert result.data is None
