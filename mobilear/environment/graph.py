"""
Feature match graph and track grouping.

Nodes are (frame index, keypoint index) pairs and edges are robust
pairwise matches. Connected components of the graph are observations
of the same scene point.
"""

import numpy as np
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Tuple


Node = Tuple[int, int]


class MatchGraph:
    """
    Undirected graph of keypoint correspondences.
    """

    def __init__(self):
        self._adjacency: Dict[Node, List[Node]] = defaultdict(list)
        self._n_edges = 0

    def __len__(self) -> int:
        return len(self._adjacency)

    def __contains__(self, node: Node) -> bool:
        return node in self._adjacency

    @property
    def n_edges(self) -> int:
        return self._n_edges

    def add_edge(self, a: Node, b: Node):
        """Add a bidirectional edge, ignoring duplicates."""
        if a == b or b in self._adjacency.get(a, ()):
            return
        self._adjacency[a].append(b)
        self._adjacency[b].append(a)
        self._n_edges += 1

    def merge(self, other: "MatchGraph"):
        """Add every edge of another graph."""
        for a, neighbours in other._adjacency.items():
            for b in neighbours:
                if a < b:
                    self.add_edge(a, b)

    def nodes(self) -> Iterator[Node]:
        return iter(self._adjacency)

    def neighbours(self, node: Node) -> List[Node]:
        return list(self._adjacency.get(node, ()))

    def components(self) -> List[List[Node]]:
        """Connected components, found by iterative depth-first search."""
        visited = set()
        components = []
        for start in sorted(self._adjacency):
            if start in visited:
                continue
            visited.add(start)
            stack = [start]
            component = []
            while stack:
                node = stack.pop()
                component.append(node)
                for n in self._adjacency[node]:
                    if n not in visited:
                        visited.add(n)
                        stack.append(n)
            components.append(sorted(component))
        return components


@dataclass
class Track:
    """Observations of a single scene point, at most one per frame."""
    observations: List[Tuple[int, np.ndarray]]  # (frame index, (2,) pixel)

    def __len__(self):
        return len(self.observations)

    @property
    def frames(self) -> List[int]:
        return [f for f, _ in self.observations]


def group_matches(
    graph: MatchGraph,
    keypoints: Mapping[int, np.ndarray],
    variance_threshold: float
) -> List[Track]:
    """
    Turn the match graph into tracks.

    A component observing one frame several times is inconsistent. If
    the duplicate keypoints are tightly clustered (mean squared distance
    to their mean below variance_threshold) they are replaced by their
    mean, otherwise the whole component is dropped. Components seen in
    fewer than two frames are dropped as well.

    Args:
        graph: Match graph
        keypoints: Frame index to (N, 2) keypoint coordinates
        variance_threshold: Maximum scatter of same-frame duplicates, in squared pixels

    Returns:
        List of tracks
    """
    tracks = []
    for component in graph.components():
        by_frame: Dict[int, List[int]] = defaultdict(list)
        for frame, kp in component:
            by_frame[frame].append(kp)
        if len(by_frame) < 2:
            continue

        observations = []
        consistent = True
        for frame in sorted(by_frame):
            pts = keypoints[frame][by_frame[frame]]
            mean = pts.mean(axis=0)
            if len(pts) > 1:
                scatter = float(np.mean(np.sum((pts - mean) ** 2, axis=1)))
                if scatter > variance_threshold:
                    consistent = False
                    break
            observations.append((frame, mean))

        if consistent:
            tracks.append(Track(observations))
    return tracks
