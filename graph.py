# ============================================================================
# graph.py - NetworkX connectivity metrics for world graphs
# ============================================================================
from collections import Counter
from dataclasses import dataclass, asdict
from typing import Dict, Any, Iterable, List, Set

import networkx as nx
import numpy as np

from schemas import Entity, Relationship


@dataclass
class ConnectivityMetrics:
    """Cluster, density and isolation statistics of a world graph"""
    clusters: int = 0
    avg_cluster_size: float = 0.0
    largest_cluster_size: int = 0
    intra_cluster_density: float = 0.0
    inter_cluster_density: float = 0.0
    isolated_nodes: int = 0
    isolated_node_ratio: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DegreeStats:
    avg_connections: float = 0.0
    max_connections: int = 0
    min_connections: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_undirected_view(
    entities: Iterable[Entity],
    relationships: Iterable[Relationship],
    strength_threshold: float = 0.0,
) -> nx.Graph:
    """
    Undirected view over active relationships.

    Every entity becomes a node. Relationships below strength_threshold or
    touching unknown entities are left out; parallel edges collapse.
    """
    G = nx.Graph()
    for entity in entities:
        G.add_node(entity.id, kind=entity.kind)
    for rel in relationships:
        if not rel.is_active or rel.strength < strength_threshold:
            continue
        if rel.src not in G or rel.dst not in G or rel.src == rel.dst:
            continue
        G.add_edge(rel.src, rel.dst, kind=rel.kind, strength=rel.strength)
    return G


def find_clusters(G: nx.Graph, min_size: int = 2) -> List[Set[str]]:
    """Connected components with at least min_size members, largest first"""
    components = [c for c in nx.connected_components(G) if len(c) >= min_size]
    return sorted(components, key=len, reverse=True)


def compute_connectivity_metrics(
    entities: List[Entity],
    relationships: List[Relationship],
    strength_threshold: float = 0.0,
) -> ConnectivityMetrics:
    """
    Cluster count, average cluster size, densities and isolated-node ratio.

    Singleton components are not clusters. An isolated node is an entity
    with no active relationship at all, regardless of the strength threshold.
    Returns an all-zero result for an empty graph.
    """
    total = len(entities)
    if total == 0:
        return ConnectivityMetrics()

    active = [r for r in relationships if r.is_active]
    G = build_undirected_view(entities, active, strength_threshold)

    components = list(nx.connected_components(G))
    clusters = [c for c in components if len(c) >= 2]

    connected: Set[str] = set()
    for rel in active:
        connected.add(rel.src)
        connected.add(rel.dst)
    isolated = sum(1 for e in entities if e.id not in connected)

    intra_density = 0.0
    if clusters:
        intra_density = float(np.mean([nx.density(G.subgraph(c)) for c in clusters]))

    membership: Dict[str, int] = {}
    for index, component in enumerate(components):
        for node in component:
            membership[node] = index

    inter_edges = sum(
        1 for r in active
        if r.src in membership and r.dst in membership
        and membership[r.src] != membership[r.dst]
    )
    if len(components) > 1:
        sizes = np.array([len(c) for c in components], dtype=float)
        # Sum of pairwise size products
        max_inter = float((sizes.sum() ** 2 - (sizes ** 2).sum()) / 2)
    else:
        max_inter = 1.0
    inter_density = inter_edges / max_inter if max_inter > 0 else 0.0

    return ConnectivityMetrics(
        clusters=len(clusters),
        avg_cluster_size=(total - isolated) / max(len(clusters), 1),
        largest_cluster_size=max((len(c) for c in clusters), default=0),
        intra_cluster_density=intra_density,
        inter_cluster_density=inter_density,
        isolated_nodes=isolated,
        isolated_node_ratio=isolated / total,
    )


def compute_degree_stats(entities: List[Entity]) -> DegreeStats:
    """Average/max/min active link counts per entity"""
    if not entities:
        return DegreeStats()
    degrees = [len(e.links) for e in entities]
    return DegreeStats(
        avg_connections=float(np.mean(degrees)),
        max_connections=max(degrees),
        min_connections=min(degrees),
    )


def relationship_diversity(relationships: Iterable[Relationship]) -> float:
    """Shannon entropy (bits) of active relationship kinds; 0 for none or one kind"""
    counts = Counter(r.kind for r in relationships if r.is_active)
    total = sum(counts.values())
    if total == 0:
        return 0.0
    p = np.fromiter(counts.values(), dtype=float) / total
    return float((p * np.log2(1.0 / p)).sum())


def find_hubs(entities: List[Entity], factor: float = 3.0) -> List[Entity]:
    """Entities whose degree exceeds factor times the mean degree"""
    stats = compute_degree_stats(entities)
    if stats.avg_connections == 0:
        return []
    cutoff = stats.avg_connections * factor
    return [e for e in entities if len(e.links) > cutoff]
