"""Dependency graph construction and ordering."""

from infralayer.graph.builder import DependencyGraph, Edge, EdgeKind, build_graph

__all__ = [
    "DependencyGraph",
    "Edge",
    "EdgeKind",
    "build_graph",
]
