# tests/conftest.py

import json
import logging
import threading

import numpy as np
import pytest

from terrain_graph.document import GraphDocument, GraphEdge, GraphNode, NodeProperty
from terrain_graph.fields import Field


class FunctionField(Field):
    """Field computing fn(x, y, z); lets tests control the signal exactly."""

    kind = "Function"

    def __init__(self, fn):
        super().__init__()
        self.fn = fn

    def compute(self, x, y, z):
        return np.asarray(self.fn(x, y, z), dtype=np.float64) + np.zeros(x.shape)


class CountingField(Field):
    """Wraps a source and counts how many times it is evaluated."""

    arity = 1
    kind = "Counting"

    def __init__(self, source=None):
        super().__init__(source)
        self.calls = 0
        self._lock = threading.Lock()

    def compute(self, x, y, z):
        with self._lock:
            self.calls += 1
        return self.source_values(0, x, y, z)


def _declared(value):
    if isinstance(value, bool):
        return "string", str(value)
    if isinstance(value, int):
        return "int", str(value)
    if isinstance(value, float):
        return "double", repr(value)
    if isinstance(value, (list, tuple)):
        keys = [{"time": t, "value": v, "inTangent": 0.0, "outTangent": 0.0} for t, v in value]
        return "AnimationCurve", json.dumps({"keys": keys})
    return "string", str(value)


class GraphBuilder:
    """Small helper for assembling graph documents in tests."""

    def __init__(self):
        self.nodes = []
        self.edges = []

    def node(self, node_id, node_type, **properties):
        props = {}
        for key, value in properties.items():
            if isinstance(value, NodeProperty):
                props[key] = value
            else:
                declared_type, text = _declared(value)
                props[key] = NodeProperty(text, declared_type)
        self.nodes.append(GraphNode(node_id, node_type, props))
        return node_id

    def edge(self, src, dst, dst_port=0, src_port=0):
        self.edges.append(GraphEdge(src, src_port, dst, dst_port))

    def build(self, output=None):
        return GraphDocument(self.nodes, self.edges, output)


@pytest.fixture
def graph():
    return GraphBuilder()


@pytest.fixture
def logger():
    return logging.getLogger("terrain_graph.tests")


@pytest.fixture
def coords():
    """A fixed scattered set of sample coordinates on and off the y=0 plane."""
    rng = np.random.default_rng(1234)
    x = rng.uniform(-50.0, 50.0, 64)
    y = np.concatenate([np.zeros(32), rng.uniform(-5.0, 5.0, 32)])
    z = rng.uniform(-50.0, 50.0, 64)
    return x, y, z
