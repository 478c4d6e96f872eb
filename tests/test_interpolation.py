"""
Tests for {{Label.path}} parameter interpolation
"""
import json

from src.core.interpolation import (
    ParameterInterpolator,
    auto_map,
    build_scope,
    parse_path,
    scope_labels,
    split_token,
    stringify,
)
from src.core.types import NodeKind


def test_parse_path_bracket_and_dot_forms_agree():
    assert parse_path("data[0].url") == ["data", 0, "url"]
    assert parse_path("data.0.url") == ["data", 0, "url"]
    assert parse_path("") == []


def test_render_nested_template():
    scope = {"HTTP 1": {"body": "https://x/y.png", "status": 200}}
    interpolator = ParameterInterpolator(scope)

    rendered = interpolator.render({"img": "{{HTTP 1.body}}", "meta": ["{{HTTP 1.status}}", 5]})

    assert rendered == {"img": "https://x/y.png", "meta": ["200", 5]}
    assert interpolator.errors == []


def test_index_forms_resolve_identically():
    scope = {"HTTP 1": {"data": [{"url": "https://a"}, {"url": "https://b"}]}}
    interpolator = ParameterInterpolator(scope)

    assert interpolator.render("{{HTTP 1.data.0.url}}") == "https://a"
    assert interpolator.render("{{HTTP 1.data[0].url}}") == "https://a"
    assert interpolator.render("{{HTTP 1.data[1].url}}") == "https://b"


def test_objects_render_as_json_and_none_as_empty():
    scope = {"GPT 1": {"usage": {"total_tokens": 7}, "text": None}}
    interpolator = ParameterInterpolator(scope)

    assert json.loads(interpolator.render("{{GPT 1.usage}}")) == {"total_tokens": 7}
    assert interpolator.render("[{{GPT 1.text}}]") == "[]"
    assert stringify(True) == "true"
    assert stringify(3) == "3"


def test_values_inside_json_string_literals_are_escaped():
    scope = {"GPT 1": {"text": 'He said "hi"\nthen left'}}
    interpolator = ParameterInterpolator(scope)

    rendered = interpolator.render('{"reply": "{{GPT 1.text}}"}')

    assert json.loads(rendered) == {"reply": 'He said "hi"\nthen left'}


def test_unresolved_degrades_to_empty_string():
    interpolator = ParameterInterpolator({"GPT 1": {"text": "ok"}})

    rendered = interpolator.render("a{{GPT 1.missing}}b{{Nope 9.x}}c")

    assert rendered == "abc"
    assert len(interpolator.errors) == 2
    assert interpolator.errors[0].token == "GPT 1.missing"
    assert interpolator.errors[1].reason == "label not in scope"


def test_preview_markers():
    interpolator = ParameterInterpolator(
        {"GPT 1": {"text": "hello"}},
        known_labels=["GPT 1", "GPT 2"],
    )

    assert interpolator.preview("{{GPT 1.text}}") == "hello"
    assert interpolator.preview("{{GPT 2.text}}") == "<GPT 2.text>"
    assert interpolator.preview("{{HTTP 4.body}}") == "<UNRESOLVED:HTTP 4.body>"

    report = interpolator.report({"a": "{{GPT 1.text}}", "b": "{{HTTP 4.body}}"})
    assert report == [
        {'token': 'GPT 1.text', 'resolved': True, 'target': 'GPT 1'},
        {'token': 'HTTP 4.body', 'resolved': False, 'target': None},
    ]


def test_longest_label_wins():
    labels = ["HTTP 1", "HTTP 12"]
    assert split_token("HTTP 12.body", labels) == ("HTTP 12", "body")
    assert split_token("HTTP 1.body", labels) == ("HTTP 1", "body")
    assert split_token("HTTP 1[0]", labels) == ("HTTP 1", "[0]")
    assert split_token("HTTP 123.body", labels) is None

    interpolator = ParameterInterpolator({"HTTP 1": {"body": "one"}, "HTTP 12": {"body": "twelve"}})
    assert interpolator.render("{{HTTP 12.body}}/{{HTTP 1.body}}") == "twelve/one"


def test_whole_result_token():
    interpolator = ParameterInterpolator({"Trigger 1": {"name": "Ada"}})
    assert json.loads(interpolator.render("{{Trigger 1}}")) == {"name": "Ada"}


def test_scope_is_predecessors_only(graph):
    a = graph.add_node(NodeKind.HTTP_REQUEST, node_id="a")
    b = graph.add_node(NodeKind.AI_COMPLETION, node_id="b")
    c = graph.add_node(NodeKind.DATA_TRANSFORM, node_id="c")
    graph.add_node(NodeKind.DELAY, node_id="side")
    graph.connect(a.id, b.id)
    graph.connect(b.id, c.id)

    assert scope_labels(graph, "c") == {"HTTP 1": "a", "GPT 2": "b"}

    results = {"a": {"body": "x"}, "b": {"text": "y"}, "side": {"delayed_ms": 1}}
    scope = build_scope(graph, "c", results)
    assert scope == {"HTTP 1": {"body": "x"}, "GPT 2": {"text": "y"}}

    interpolator = ParameterInterpolator(scope)
    assert interpolator.render("{{Delay 4.delayed_ms}}") == ""


def test_auto_map_orders_by_ordinal(graph):
    first = graph.add_node(NodeKind.AI_COMPLETION)
    http = graph.add_node(NodeKind.HTTP_REQUEST)
    third = graph.add_node(NodeKind.AI_COMPLETION)

    template = {"prompt2": "", "extra": "keep", "prompt1": "", "prompt3": "old"}
    mapped = auto_map(template, [third, http, first])

    assert list(mapped) == ["prompt2", "extra", "prompt1", "prompt3"]
    assert mapped["prompt1"] == "{{GPT 1.text}}"
    assert mapped["prompt2"] == "{{GPT 3.text}}"
    assert mapped["prompt3"] == "old"
    assert mapped["extra"] == "keep"
