"""Tests for main-branch extraction from export trees."""

from chatrecall.models.export import ExportNode
from chatrecall.parsers import extract_main_branch, find_root_id, parse_conversation


def _mapping(raw_nodes):
    return {node["id"]: ExportNode.model_validate(node) for node in raw_nodes}


def _node(node_id, message=None, parent=None, children=()):
    return {"id": node_id, "message": message, "parent": parent, "children": list(children)}


def _msg(node_id, role, *parts, hidden=False):
    message = {"id": node_id, "author": {"role": role}, "content": {"parts": list(parts)}}
    if hidden:
        message["metadata"] = {"is_visually_hidden_from_conversation": True}
    return message


class TestExtractMainBranch:
    """Tests for extract_main_branch."""

    def test_simple_chain(self):
        mapping = _mapping(
            [
                _node("root", children=["A"]),
                _node("A", _msg("A", "user", "hi"), parent="root", children=["B"]),
                _node("B", _msg("B", "assistant", "hello"), parent="A"),
            ]
        )

        messages = extract_main_branch(mapping)

        assert [(m.role, m.content) for m in messages] == [
            ("user", "hi"),
            ("assistant", "hello"),
        ]
        assert [m.id for m in messages] == ["A", "B"]

    def test_siblings_of_first_child_are_dropped(self):
        mapping = _mapping(
            [
                _node("root", children=["A"]),
                _node("A", _msg("A", "user", "question"), "root", ["B1", "B2"]),
                _node("B1", _msg("B1", "assistant", "accepted"), "A"),
                _node("B2", _msg("B2", "assistant", "regenerated"), "A"),
            ]
        )

        contents = [m.content for m in extract_main_branch(mapping)]

        assert contents == ["question", "accepted"]

    def test_client_created_root_descends_to_first_child(self):
        mapping = _mapping(
            [
                _node("client-created-root", children=["A"]),
                _node("A", _msg("A", "user", "hi"), "client-created-root"),
            ]
        )

        assert find_root_id(mapping) == "A"
        assert [m.content for m in extract_main_branch(mapping)] == ["hi"]

    def test_hidden_and_other_roles_are_skipped(self):
        mapping = _mapping(
            [
                _node("root", children=["S"]),
                _node("S", _msg("S", "system", "be nice"), "root", ["H"]),
                _node("H", _msg("H", "user", "context", hidden=True), "S", ["T"]),
                _node("T", _msg("T", "tool", "result"), "H", ["A"]),
                _node("A", _msg("A", "assistant", "visible"), "T"),
            ]
        )

        assert [m.content for m in extract_main_branch(mapping)] == ["visible"]

    def test_text_parts_joined_with_newlines(self):
        mapping = _mapping(
            [_node("A", _msg("A", "assistant", "line one", "line two"))]
        )

        assert extract_main_branch(mapping)[0].content == "line one\nline two"

    def test_whitespace_only_message_dropped(self):
        mapping = _mapping(
            [
                _node("A", _msg("A", "user", "   \n"), children=["B"]),
                _node("B", _msg("B", "assistant", "answer"), "A"),
            ]
        )

        assert [m.id for m in extract_main_branch(mapping)] == ["B"]

    def test_image_only_message_kept(self):
        image = {"content_type": "image_asset_pointer", "asset_pointer": "file-service://file-img"}
        mapping = _mapping([_node("A", _msg("A", "user", image, ""))])

        messages = extract_main_branch(mapping)

        assert len(messages) == 1
        assert messages[0].image_file_ids == ["file-img"]
        assert messages[0].content == ""

    def test_unrecognized_parts_are_skipped(self):
        mapping = _mapping(
            [_node("A", _msg("A", "assistant", {"content_type": "audio"}, "text"))]
        )

        assert extract_main_branch(mapping)[0].content == "text"

    def test_dangling_child_ends_branch(self):
        mapping = _mapping(
            [
                _node("root", children=["A"]),
                _node("A", _msg("A", "user", "hi"), "root", ["missing"]),
            ]
        )

        assert [m.id for m in extract_main_branch(mapping)] == ["A"]

    def test_cycle_terminates(self):
        mapping = _mapping(
            [
                _node("root", children=["A"]),
                _node("A", _msg("A", "user", "hi"), "root", ["B"]),
                _node("B", _msg("B", "assistant", "yo"), "A", ["A"]),
            ]
        )

        assert [m.id for m in extract_main_branch(mapping)] == ["A", "B"]

    def test_empty_mapping(self):
        assert extract_main_branch({}) == []

    def test_extraction_is_deterministic(self, export_builder):
        raw = export_builder.conversation(
            "T",
            1700000000.0,
            [
                export_builder.turn("a", "user", "one", create_time=1700000001.0),
                export_builder.turn("b", "assistant", "two"),
            ],
        )
        mapping = parse_conversation(raw).mapping

        first = extract_main_branch(mapping)
        second = extract_main_branch(mapping)

        assert first == second
        assert first[0].create_time == 1700000001.0
