#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyMix --
##  Library for Category-Mixture Substitution Models on Phylogenies
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##
##  See "LICENSE.txt" for terms and conditions of usage.
##
##  If you use this work or any portion thereof in published work,
##  please cite it as:
##
##     Mark Kessler, Luay Nakhleh. 2025.
##
##############################################################################

"""
Author : Mark Kessler
Last Edit : 10/9/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [ ]

Unrooted trees with branch lengths. The topology is stored as an undirected
networkx graph whose edges carry a 'length' attribute. Any node may serve as
the root of a traversal, which is how the substitution engine orients edges.
"""

from __future__ import annotations
from io import StringIO
from typing import Any
import networkx as nx
from Bio import Phylo


#########################
#### EXCEPTION CLASS ####
#########################

class TreeError(Exception):
    """
    Error class for any malformed tree operation, such as negative branch
    lengths, lookups of nodes that are not in the tree, or edges that do not
    exist.
    """
    def __init__(self, message : str = "Error in Tree Class") -> None:
        """
        Initialize a new TreeError with a message.

        Args:
            message (str, optional): The error message. Defaults to "Error in
                                     Tree Class".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

##############
#### NODE ####
##############

class Node:
    """
    A tree node. Nodes are hashed by identity, so two nodes with the same name
    are still two different nodes. Names are only used for lookups and
    display.
    """

    def __init__(self, name : str = None, attr : dict = None) -> None:
        """
        Initialize a node with a name and an attribute mapping.

        Args:
            name (str, optional): A Node name. Defaults to None, but nodes need
                                  to be named, in general.
            attr (dict, optional): Fill a mapping with any other user defined
                                   values. Defaults to an empty dictionary.
        """
        self.name : str = name
        self.attributes : dict = {} if attr is None else dict(attr)

    def get_name(self) -> str:
        """
        Returns the name of the node

        Returns:
            str: Node label.
        """
        return self.name

    def set_name(self, new_name : str) -> None:
        """
        Sets the name of the node to new_name.

        Args:
            new_name (str): A new string label for this node.
        """
        self.name = new_name

    def add_attribute(self, key : Any, value : Any) -> None:
        """
        Put a key and value pair into the node attribute dictionary.
        If the key is already present, it will overwrite the old value.

        Args:
            key (Any): Attribute key.
            value (Any): Attribute value for the key.
        """
        self.attributes[key] = value

    def attribute_value(self, key : Any) -> object:
        """
        Returns the value of 'key' in the attribute mapping, or None if the key
        is not present.

        Args:
           key (Any): A lookup key.

        Returns:
            object: The value of key, if key is present.
        """
        return self.attributes.get(key)

    def __repr__(self) -> str:
        return "Node(" + str(self.name) + ")"

##############
#### TREE ####
##############

class Tree:
    """
    An unrooted tree with non-negative branch lengths.

    Edges are unordered pairs of nodes. A rooting is only introduced when
    asking for the rooted edges from some node, at which point each edge is
    reported as a (parent, child) pair.
    """

    def __init__(self) -> None:
        """
        Initialize an empty tree.
        """
        self._graph : nx.Graph = nx.Graph()

    def add_node(self, node : Node) -> Node:
        """
        Add an isolated node to the tree.

        Args:
            node (Node): The node to add.
        Returns:
            Node: the same node, for convenience.
        """
        self._graph.add_node(node)
        return node

    def add_edge(self, n1 : Node, n2 : Node, length : float) -> None:
        """
        Connect two nodes with a branch of a given length. Nodes that are not
        yet in the tree are added.

        Raises:
            TreeError: if the branch length is negative, if the edge is a self
                       loop, or if it would close a cycle.
        Args:
            n1 (Node): one end of the branch.
            n2 (Node): the other end of the branch.
            length (float): the branch length. Must be >= 0.
        """
        if length < 0:
            raise TreeError("Branch lengths must be non-negative. Got "
                            + str(length) + ".")
        if n1 is n2:
            raise TreeError("Self loops are not allowed in a tree.")
        if n1 in self._graph and n2 in self._graph \
                and nx.has_path(self._graph, n1, n2):
            raise TreeError("Adding an edge between " + str(n1.get_name())
                            + " and " + str(n2.get_name())
                            + " would create a cycle.")

        self._graph.add_edge(n1, n2, length = float(length))

    def get_nodes(self) -> list[Node]:
        """
        Returns:
            list[Node]: every node of the tree, in insertion order.
        """
        return list(self._graph.nodes)

    def get_leaves(self) -> list[Node]:
        """
        The leaves of an unrooted tree are its nodes of degree at most one.

        Returns:
            list[Node]: The leaf set, in insertion order.
        """
        return [node for node in self._graph.nodes
                if self._graph.degree(node) <= 1]

    def get_internal_nodes(self) -> list[Node]:
        """
        Returns:
            list[Node]: every node with degree 2 or more.
        """
        return [node for node in self._graph.nodes
                if self._graph.degree(node) > 1]

    def neighbors(self, node : Node) -> list[Node]:
        """
        Args:
            node (Node): A node in the tree.
        Returns:
            list[Node]: The nodes adjacent to 'node'.
        """
        self._check_node(node)
        return list(self._graph.neighbors(node))

    def get_branch_length(self, n1 : Node, n2 : Node) -> float:
        """
        Get the length of the branch joining two nodes. The order of the
        arguments is irrelevant.

        Raises:
            TreeError: if there is no such branch.
        Args:
            n1 (Node): one end of the branch.
            n2 (Node): the other end of the branch.
        Returns:
            float: the branch length.
        """
        if not self._graph.has_edge(n1, n2):
            raise TreeError("No branch between " + str(n1) + " and "
                            + str(n2))
        return self._graph[n1][n2]["length"]

    def set_branch_length(self, n1 : Node, n2 : Node, length : float) -> None:
        """
        Change the length of an existing branch.

        Raises:
            TreeError: if there is no such branch, or 'length' is negative.
        Args:
            n1 (Node): one end of the branch.
            n2 (Node): the other end of the branch.
            length (float): the new length, >= 0.
        """
        if not self._graph.has_edge(n1, n2):
            raise TreeError("No branch between " + str(n1) + " and "
                            + str(n2))
        if length < 0:
            raise TreeError("Branch lengths must be non-negative. Got "
                            + str(length) + ".")
        self._graph[n1][n2]["length"] = float(length)

    def get_branch_lengths(self) -> dict[frozenset[Node], float]:
        """
        Returns:
            dict[frozenset[Node], float]: a map from each unordered pair of
                                          adjacent nodes to its branch length.
        """
        return {frozenset((n1, n2)) : data["length"]
                for n1, n2, data in self._graph.edges(data = True)}

    def get_rooted_edges(self, root : Node) -> list[tuple[Node, Node]]:
        """
        Orient every branch away from 'root'. Edges are listed in breadth
        first order, so a parent is always reached before its children.

        Args:
            root (Node): Any node of the tree.
        Returns:
            list[tuple[Node, Node]]: (parent, child) pairs.
        """
        self._check_node(root)
        return list(nx.bfs_edges(self._graph, root))

    def arbitrary_node(self) -> Node:
        """
        A deterministic choice of node to root computations at when the caller
        does not care which one is used.

        Raises:
            TreeError: if the tree is empty.
        Returns:
            Node: the first node inserted into the tree.
        """
        if self._graph.number_of_nodes() == 0:
            raise TreeError("Cannot select a node from an empty tree.")
        return next(iter(self._graph.nodes))

    def has_node_named(self, name : str) -> Node:
        """
        Look up a node by its label.

        Args:
            name (str): A node label.
        Returns:
            Node: the first node with that label, or None if there is none.
        """
        for node in self._graph.nodes:
            if node.get_name() == name:
                return node
        return None

    def is_connected(self) -> bool:
        """
        Returns:
            bool: True if every node can be reached from every other node.
        """
        if self._graph.number_of_nodes() == 0:
            return True
        return nx.is_connected(self._graph)

    def to_networkx(self) -> nx.Graph:
        """
        Returns:
            nx.Graph: a copy of the underlying graph, nodes relabeled by name.
        """
        return nx.relabel_nodes(self._graph,
                                {node : node.get_name()
                                 for node in self._graph.nodes},
                                copy = True)

    def _check_node(self, node : Node) -> None:
        if node not in self._graph:
            raise TreeError("Node " + str(node) + " is not in this tree.")

##########################
#### HELPER FUNCTIONS ####
##########################

def tree_from_newick(newick_str : str) -> Tree:
    """
    Parse a newick string into a Tree. The rooting implied by the newick
    string is ignored beyond its effect on the topology. Internal clades
    without labels are given generated names ("I0", "I1", ...) and carry the
    attribute "generated_name", and missing branch lengths are read as 0.

    Raises:
        TreeError: if Bio.Phylo cannot parse the string.
    Args:
        newick_str (str): a newick string, ending in a semicolon.
    Returns:
        Tree: the parsed tree.
    """
    try:
        phylo_tree = Phylo.read(StringIO(newick_str), "newick")
    except Exception as err:
        raise TreeError("Could not parse newick string: " + str(err)) from err

    tree = Tree()
    internal_count = 0
    clade_to_node : dict[Any, Node] = {}

    for clade in phylo_tree.find_clades(order = "level"):
        node = Node(clade.name)
        if clade.name is None:
            node.set_name("I" + str(internal_count))
            node.add_attribute("generated_name", True)
            internal_count += 1
        clade_to_node[clade] = tree.add_node(node)

    for clade in phylo_tree.find_clades(order = "level"):
        for child in clade.clades:
            length = 0.0 if child.branch_length is None else child.branch_length
            tree.add_edge(clade_to_node[clade], clade_to_node[child], length)

    return tree
