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
Last Edit : 10/13/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [ ]

Observations of the character states at (some of) the nodes of a tree,
stored as one (n_sites x n_observations) array per node. A row is the
likelihood of each observed character at that site, so that ambiguous and
missing data are rows with more than one non zero entry.
"""

from __future__ import annotations
import numpy as np
from Bio import AlignIO
from Bio.Nexus.Nexus import NexusError
from nexus import NexusReader
from .Alphabet import Alphabet
from .Tree import Tree, Node

#########################
#### EXCEPTION CLASS ####
#########################

class ObservationError(Exception):
    """
    Raised when observations do not fit the tree or the number of sites they
    are meant for.
    """
    def __init__(self, message : str = "Malformed observations") -> None:
        self.message = message
        super().__init__(self.message)

###########################
#### TREE OBSERVATIONS ####
###########################

class TreeObservations:
    """
    A map from tree nodes to their observation arrays. All arrays have
    'n_sites' rows.
    """

    def __init__(self, n_sites : int) -> None:
        """
        Args:
            n_sites (int): number of sites, >= 1.
        """
        if n_sites < 1:
            raise ObservationError("Need at least one site. Got "
                                   + str(n_sites))
        self._n_sites : int = n_sites
        self.observations : dict[Node, np.ndarray] = {}

    def set(self, node : Node, data : np.ndarray) -> None:
        """
        Set the observations of a node.

        Raises:
            ObservationError: if 'data' is not 2 dimensional with n_sites rows,
                              or has negative entries.
        Args:
            node (Node): a node of the tree.
            data (np.ndarray): (n_sites, n_observations) array.
        """
        data = np.array(data, dtype = np.double)
        if data.ndim != 2 or data.shape[0] != self._n_sites:
            raise ObservationError("Observations of " + str(node)
                                   + " have shape " + str(data.shape)
                                   + ", expected " + str(self._n_sites)
                                   + " rows.")
        if np.any(data < 0):
            raise ObservationError("Observations must be non-negative.")
        self.observations[node] = data

    def get(self, node : Node) -> np.ndarray:
        """
        Returns:
            np.ndarray: the observation array of 'node', or None if it is not
                        observed.
        """
        return self.observations.get(node)

    def get_site(self, node : Node, site : int) -> np.ndarray:
        return self.observations[node][site]

    def set_site(self, node : Node, site : int, row : np.ndarray) -> None:
        """
        Overwrite one row of an already observed node.
        """
        if node not in self.observations:
            raise ObservationError(str(node) + " has no observations.")
        self.observations[node][site] = np.asarray(row, dtype = np.double)

    def get_observed_tree_nodes(self) -> list[Node]:
        return list(self.observations.keys())

    def n_sites(self) -> int:
        return self._n_sites

    def clear(self) -> None:
        self.observations.clear()

    @classmethod
    def from_sequences(cls, tree : Tree,
                       sequences : dict[str, str | list[str]],
                       alphabet : Alphabet) -> TreeObservations:
        """
        Build observations from aligned character sequences, keyed by the
        names of the leaves of 'tree'. A sequence is either a string, read one
        character per site, or a list with one token per site, which is how
        multi digit states of an integer alphabet are given.

        Raises:
            ObservationError: if the sequences differ in length, or a name is
                              not a node of the tree.
        Args:
            tree (Tree): the tree whose nodes are observed.
            sequences (dict[str, str | list[str]]): node name -> aligned
                                                    sequence.
            alphabet (Alphabet): maps characters to observation rows.
        Returns:
            TreeObservations: one observation array per sequence.
        """
        lengths = {len(seq) for seq in sequences.values()}
        if len(lengths) != 1:
            raise ObservationError("Sequences must be non empty and all of \
                                    the same length.")

        by_name = {node.get_name() : node for node in tree.get_nodes()}
        result = cls(lengths.pop())
        for name, seq in sequences.items():
            if name not in by_name:
                raise ObservationError("No node named " + str(name)
                                       + " in the tree.")
            result.set(by_name[name],
                       np.array([alphabet.partials(char) for char in seq]))
        return result

    @classmethod
    def from_alignment(cls, filename : str, tree : Tree, alphabet : Alphabet,
                       file_format : str = "nexus") -> TreeObservations:
        """
        Build observations from an alignment file readable by Biopython. Nexus
        files that Biopython rejects are read with the python-nexus reader.

        Args:
            filename (str): path to the alignment.
            tree (Tree): the tree whose leaves are named as the taxa.
            alphabet (Alphabet): maps characters to observation rows.
            file_format (str, optional): any AlignIO format. Defaults to
                                         "nexus".
        Returns:
            TreeObservations: the observations of the named taxa.
        """
        try:
            msa = AlignIO.read(filename, file_format)
            sequences = {rec.id : str(rec.seq) for rec in msa}
        except NexusError:
            reader = NexusReader.from_file(filename)
            sequences = {taxa : "".join(chars)
                         for taxa, chars in reader.data}

        return cls.from_sequences(tree, sequences, alphabet)
