# tests/test_document.py

import json

import pytest

from terrain_graph.diagnostics import DocumentError
from terrain_graph.document import GraphDocument


RAW = {
    "nodes": [
        {"guid": "n1", "nodeType": "Perlin", "position": {"x": 10, "y": -4},
         "properties": [{"key": "frequency", "value": "0.5", "valueType": "double"}],
         "collapsed": True},
        {"guid": "n2", "nodeType": "Output", "position": {"x": 200, "y": 0}, "properties": []},
    ],
    "edges": [
        {"outputNodeGuid": "n1", "outputPortIndex": 0, "inputNodeGuid": "n2", "inputPortIndex": 0,
         "color": "red"},
    ],
    "outputNodeGuid": "n2",
    "editorVersion": 3,
}


def test_reads_nodes_edges_and_output():
    doc = GraphDocument.from_dict(RAW)
    assert [n.id for n in doc.nodes] == ["n1", "n2"]
    perlin = doc.node("n1")
    assert perlin.type == "Perlin"
    assert perlin.position == (10.0, -4.0)
    assert perlin.properties["frequency"].value == "0.5"
    assert perlin.properties["frequency"].declared_type == "double"
    assert doc.output_node_id == "n2"


def test_edge_output_side_is_the_source():
    edge = GraphDocument.from_dict(RAW).edges[0]
    assert (edge.src_node, edge.src_port, edge.dst_node, edge.dst_port) == ("n1", 0, "n2", 0)


def test_inbound_and_outbound_edges():
    doc = GraphDocument.from_dict(RAW)
    assert len(doc.outbound_edges("n1")) == 1
    assert doc.inbound_edges("n1") == []
    assert doc.inbound_edges("n2")[0].src_node == "n1"


def test_unknown_keys_survive_a_round_trip():
    data = GraphDocument.from_dict(RAW).to_dict()
    assert data["editorVersion"] == 3
    assert data["nodes"][0]["collapsed"] is True
    assert data["edges"][0]["color"] == "red"
    assert GraphDocument.from_json(json.dumps(data)).to_dict() == data


def test_non_string_property_values_are_kept_as_text():
    raw = {"nodes": [{"guid": "c", "nodeType": "Const",
                      "properties": [{"key": "value", "value": 0.25, "valueType": "double"}]}]}
    assert GraphDocument.from_dict(raw).node("c").properties["value"].value == "0.25"


def test_bad_entries_are_dropped():
    raw = {
        "nodes": [
            {"guid": "a", "nodeType": "Const"},
            {"nodeType": "Const"},
            {"guid": "a", "nodeType": "Perlin"},
            "garbage",
            {"guid": "b", "nodeType": "Const", "properties": 5},
        ],
        "edges": [
            {"outputNodeGuid": "a", "outputPortIndex": "zero", "inputNodeGuid": "b", "inputPortIndex": 0},
            {"inputNodeGuid": "a"},
            {"outputNodeGuid": "a", "inputNodeGuid": "b"},
            {"outputNodeGuid": "a", "outputPortIndex": 1.5, "inputNodeGuid": "b", "inputPortIndex": 0},
            {"outputNodeGuid": "a", "outputPortIndex": 0, "inputNodeGuid": "b", "inputPortIndex": True},
        ],
    }
    doc = GraphDocument.from_dict(raw)
    assert [(n.id, n.type) for n in doc.nodes] == [("a", "Const"), ("b", "Const")]
    assert doc.node("b").properties == {}
    assert len(doc.edges) == 1
    assert doc.edges[0].src_port == 0 and doc.edges[0].dst_port == 0
    assert doc.output_node_id is None


@pytest.mark.parametrize("payload", ["[1, 2]", "{\"nodes\": 5}", "not json"])
def test_non_graphs_raise(payload):
    with pytest.raises(DocumentError):
        GraphDocument.from_json(payload)


def test_save_and_load(tmp_path):
    path = tmp_path / "graph.json"
    GraphDocument.from_dict(RAW).save(str(path))
    loaded = GraphDocument.load(str(path))
    assert loaded.to_dict() == GraphDocument.from_dict(RAW).to_dict()
