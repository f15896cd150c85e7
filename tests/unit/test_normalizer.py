"""Tests for markup flattening and event normalization."""

from __future__ import annotations

import pytest

from wcf_bridge.errors import MarkupParseError
from wcf_bridge.normalizer import flatten_markup, has_markup, normalize
from wcf_bridge.protocol.events import EventKind


class TestFlattenMarkup:
    def test_paths_and_attributes(self) -> None:
        flat = flatten_markup('<msg><appmsg appid="wx1"><title>T</title></appmsg></msg>')

        assert flat["_root"] == "msg"
        assert flat["appmsg.title"] == "T"
        assert flat["appmsg@appid"] == "wx1"
        assert flat["title"] == "T"

    def test_repeated_siblings_indexed(self) -> None:
        flat = flatten_markup(
            "<msg><item><name>a</name></item><item><name>b</name></item></msg>"
        )

        assert flat["item[1].name"] == "a"
        assert flat["item[2].name"] == "b"
        # Not unique, so no bare alias
        assert "name" not in flat

    def test_root_attributes(self) -> None:
        flat = flatten_markup('<msg fromusername="wxid_abc" scene="17"/>')

        assert flat["msg@fromusername"] == "wxid_abc"
        assert flat["msg@scene"] == "17"

    def test_cdata_text(self) -> None:
        flat = flatten_markup("<msg><des><![CDATA[a < b]]></des></msg>")
        assert flat["des"] == "a < b"

    def test_deeply_nested(self) -> None:
        depth = 3000
        flat = flatten_markup("<a>" * depth + "x" + "</a>" * depth)

        assert flat["_root"] == "a"
        assert flat[".".join(["a"] * (depth - 1))] == "x"

    def test_children_in_document_order(self) -> None:
        flat = flatten_markup("<msg><b>1</b><a>2</a><c>3</c></msg>")

        assert [key for key in flat if key in ("a", "b", "c")] == ["b", "a", "c"]

    @pytest.mark.parametrize("text", ["", "   ", "<msg><unclosed></msg>", "not xml"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(MarkupParseError):
            flatten_markup(text)


class TestHasMarkup:
    def test_markup_types(self, make_event) -> None:
        assert has_markup(make_event(msg_type=37, content="<msg/>"))
        assert has_markup(make_event(msg_type=49, content="garbage"))

    def test_plain_text(self, make_event) -> None:
        assert not has_markup(make_event(msg_type=1, content="hello"))

    def test_text_that_looks_like_markup(self, make_event) -> None:
        assert has_markup(make_event(msg_type=1, content="  <b>bold</b>"))

    @pytest.mark.parametrize("content", ["<3 see you", "<<< look up", "a < b > c"])
    def test_text_with_angle_brackets(self, make_event, content: str) -> None:
        assert not has_markup(make_event(msg_type=1, content=content))


class TestNormalize:
    def test_card_message(self, card_event) -> None:
        """Card messages expose title, url and sender directly."""
        normalized = normalize(card_event)

        assert normalized.kind == EventKind.MESSAGE
        assert normalized.sender == "wxid_abc"
        assert normalized.parse_failed is False
        assert isinstance(normalized.content, dict)
        assert normalized.content["title"] == "Weekly report"
        assert normalized.content["url"] == "https://example.com/report"
        assert normalized.markup is normalized.content
        assert normalized.raw_content == card_event.content

    def test_malformed_markup_still_emitted(self, make_event) -> None:
        raw = "<msg><appmsg><title>Broken</appmsg>"
        normalized = normalize(make_event(msg_type=49, content=raw))

        assert normalized.parse_failed is True
        assert normalized.parse_error
        assert normalized.content == raw
        assert normalized.raw_content == raw
        assert normalized.markup is None

    def test_plain_text_untouched(self, make_event) -> None:
        normalized = normalize(make_event(content="hello"))

        assert normalized.content == "hello"
        assert normalized.parse_failed is False
        assert normalized.markup is None

    def test_chat_line_with_bracket_not_flagged(self, make_event) -> None:
        normalized = normalize(make_event(content="<3 see you"))

        assert normalized.content == "<3 see you"
        assert normalized.parse_failed is False

    def test_deeply_nested_card(self, make_event) -> None:
        raw = "<msg>" * 3000 + "x" + "</msg>" * 3000
        normalized = normalize(make_event(msg_type=49, content=raw))

        assert normalized.parse_failed is False
        assert normalized.markup is not None
        assert normalized.raw_content == raw

    def test_friend_request(self, make_event) -> None:
        xml = '<msg fromusername="wxid_new" encryptusername="v3_x" ticket="v4_y" scene="30"/>'
        normalized = normalize(make_event(msg_type=37, sender="fmessage", content=xml))

        assert normalized.kind == EventKind.FRIEND_REQUEST
        assert normalized.name == "wechat.friend_request"
        assert normalized.content["msg@encryptusername"] == "v3_x"

    def test_payload_is_json_ready(self, card_event) -> None:
        payload = normalize(card_event).to_payload()

        assert payload["kind"] == "message"
        assert isinstance(payload["received_at"], str)
        assert payload["content"]["title"] == "Weekly report"
