"""
Layout Export
=============

Writes the result of a layout run for downstream renderers.

Formats:
    .json - {"nodes": [{"id", "x", "y", "z", "mass"}], "links": [{"source", "target"}]}
    .npz  - ids and (n, 3) float32 positions (compressed)
"""

import json
import numpy as np
from pathlib import Path
from typing import Iterable, Union

from forcelayout.bodies import BodySet


def layout_document(bodies: BodySet, links: Iterable) -> dict:
    """Plain-dict view of positions and links."""
    return {
        "nodes": [
            {
                "id": body_id,
                "x": float(bodies.positions[i, 0]),
                "y": float(bodies.positions[i, 1]),
                "z": float(bodies.positions[i, 2]),
                "mass": float(bodies.masses[i]),
            }
            for i, body_id in enumerate(bodies.ids)
        ],
        "links": [{"source": link.source, "target": link.target} for link in links],
    }


def save_json(path: Union[str, Path], bodies: BodySet, links: Iterable):
    path = Path(path)
    with open(path, "w") as f:
        json.dump(layout_document(bodies, links), f, indent=2)
    return path


def load_json(path: Union[str, Path]) -> dict:
    with open(path, "r") as f:
        return json.load(f)


def save_npz(path: Union[str, Path], bodies: BodySet):
    path = Path(path)
    np.savez_compressed(
        path,
        ids=np.array(bodies.ids),
        positions=bodies.positions.astype(np.float32),
    )
    return path


def export_layout(path: Union[str, Path], bodies: BodySet, links: Iterable) -> Path:
    """Write the layout in the format selected by the file extension."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".json":
        save_json(path, bodies, links)
    elif suffix == ".npz":
        save_npz(path, bodies)
    else:
        raise ValueError(f"Unsupported export format: {suffix or path.name} (use .json or .npz)")
    print(f"[Export] Wrote {len(bodies):,} nodes to {path}")
    return path
