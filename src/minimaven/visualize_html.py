from __future__ import annotations

from pathlib import Path

import networkx as nx
from pyvis.network import Network


def export_pyvis(g: nx.DiGraph, out: Path, height: str = "800px") -> Path:
    """Write an interactive HTML view of a project graph built by `build_graph`."""
    net = Network(height=height, width="100%", directed=True)
    for key, data in g.nodes(data=True):
        if data.get("aggregator"):
            color = "#9e9e9e"
        elif data.get("from_source"):
            color = "#4caf50"
        else:
            color = "#2196f3"
        net.add_node(key, label=f"{data.get('artifact_id')}:{data.get('version')}", title=key, color=color)
    for u, v, data in g.edges(data=True):
        dashes = data.get("kind") == "parent"
        net.add_edge(u, v, title=data.get("scope") or data.get("kind"), dashes=dashes)
    out.parent.mkdir(parents=True, exist_ok=True)
    net.write_html(str(out))
    return out
