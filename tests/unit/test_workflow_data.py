import pytest

from core.workflow_data import NodeLookupError, WorkflowDataProxy, node_display_name


@pytest.fixture
def graph_context():
    return {
        "nodes": [
            {"id": 1, "type": "ReadBinaryFile", "title": "Read File"},
            {"id": 2, "type": "TextInput"},
            {"id": 3, "type": "DeerAPI", "title": "Generate"},
            {"id": 4, "type": "TextInput", "title": "Pending"},
        ],
        "results": {
            1: {"items": [{"json": {"a": 1}}, {"json": {"a": 2}}]},
            2: {"items": []},
            3: {"items": [{"json": {"self": True}}]},
            4: {"error": "Node 4: failed"},
        },
        "current_node_id": 3,
    }


def test_node_display_name_prefers_title():
    assert node_display_name({"type": "TextInput", "title": "Prompt"}) == "Prompt"
    assert node_display_name({"type": "TextInput"}) == "TextInput"
    assert node_display_name({}) == ""


def test_all_returns_copy_of_items(graph_context):
    proxy = WorkflowDataProxy(graph_context)
    items = proxy.all("Read File")
    assert items == [{"json": {"a": 1}}, {"json": {"a": 2}}]
    items.append({"json": {}})
    assert len(graph_context["results"][1]["items"]) == 2


def test_all_matches_untitled_nodes_by_type(graph_context):
    assert WorkflowDataProxy(graph_context).all("TextInput") == []


def test_all_is_case_sensitive(graph_context):
    with pytest.raises(NodeLookupError):
        WorkflowDataProxy(graph_context).all("read file")


def test_all_unknown_node(graph_context):
    with pytest.raises(NodeLookupError, match="No node named 'Missing'"):
        WorkflowDataProxy(graph_context).all("Missing")


def test_all_skips_current_node(graph_context):
    with pytest.raises(NodeLookupError, match="has not produced any items"):
        WorkflowDataProxy(graph_context).all("Generate")


def test_all_node_without_items(graph_context):
    with pytest.raises(NodeLookupError):
        WorkflowDataProxy(graph_context).all("Pending")


def test_results_are_read_live():
    results: dict = {}
    proxy = WorkflowDataProxy({"nodes": [{"id": 1, "type": "X"}], "results": results})
    results[1] = {"items": [{"json": {"late": True}}]}
    assert proxy.all("X") == [{"json": {"late": True}}]


def test_empty_context():
    proxy = WorkflowDataProxy(None)
    assert proxy.node_ids("anything") == []
