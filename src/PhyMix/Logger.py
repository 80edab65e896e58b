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
Module that contains classes and functions that assist developers while
running Monte Carlo EM sweeps with PhyMix.

Release Version: 1.0.0

Author: Mark Kessler
"""

from __future__ import annotations
import base64
import os
import webbrowser
from io import BytesIO
import numpy as np
import networkx as nx
import lxml.html
from lxml.html import builder as E
from matplotlib.figure import Figure
from .Tree import Tree, Node


class Logger:
    """
    Class that logs the progress of an estimation loop in html formatting:
    the log likelihood at each sweep, the rate matrix estimated from the
    sweep's statistics, and snapshots of the tree.

    Formatting output helps debugging.
    """

    def __init__(self, id : int) -> None:
        """
        Initialize a logger instance with an integer ID value (on user to make
        it unique).

        Args:
            id (int): A unique id for this logger instance.
        Returns:
            N/A
        """
        self.id : int = id
        self.iterations : list[int] = []
        self.log_likelihoods : list[float] = []
        self.estimates : list[list[np.ndarray]] = []
        self.comments : list[str] = []
        self.trees : list[nx.Graph] = []
        self.tree_comments : list[str] = []

    def log(self, iteration : int, log_likelihood : float,
            statistics : object = None, comment : str = "") -> None:
        """
        Log one sweep, and optionally attach a comment to it.

        Args:
            iteration (int): the sweep number.
            log_likelihood (float): the log likelihood at this sweep.
            statistics (object, optional): a statistics record with an
                                           'estimate_rate_matrix' method, or a
                                           list of them (one per category).
                                           Defaults to None.
            comment (str, optional): Defaults to "".
        Returns:
            N/A
        """
        if statistics is None:
            estimates = []
        elif isinstance(statistics, list):
            estimates = [record.estimate_rate_matrix() for record in statistics]
        else:
            estimates = [statistics.estimate_rate_matrix()]

        self.iterations.append(iteration)
        self.log_likelihoods.append(float(log_likelihood))
        self.estimates.append(estimates)
        self.comments.append(comment)

    def log_tree(self, tree : Tree, root : Node = None,
                 comment : str = "") -> None:
        """
        Log a snapshot of a tree, with its nodes layered by depth from 'root'.
        Nodes with generated names are drawn without a label.

        Args:
            tree (Tree): A Tree
            root (Node, optional): Defaults to tree.arbitrary_node().
            comment (str, optional): Defaults to "".
        """
        if root is None:
            root = tree.arbitrary_node()

        G = tree.to_networkx()
        for node in tree.get_nodes():
            # generated names of unlabeled clades are not drawn
            G.nodes[node.get_name()]["label"] = \
                "" if node.attribute_value("generated_name") \
                else node.get_name()
        G.nodes[root.get_name()]["layer"] = 0
        for parent, child in tree.get_rooted_edges(root):
            G.nodes[child.get_name()]["layer"] = \
                G.nodes[parent.get_name()]["layer"] + 1

        self.trees.append(G)
        self.tree_comments.append(comment)

    def trace_figure(self) -> Figure:
        """
        Returns:
            Figure: the log likelihood against the sweep number.
        """
        fig = Figure(layout = "tight")
        ax = fig.add_subplot()
        ax.plot(self.iterations, self.log_likelihoods, marker = "o")
        ax.set_xlabel("Iteration")
        ax.set_ylabel("Log likelihood")
        ax.set_title("Log likelihood trace")
        return fig

    def to_html(self, directory : str = ".", open_browser : bool = False) \
            -> str:
        """
        Generate an html document containing the trace plot, one row per
        logged sweep, and every logged tree, for viewing in a browser window.

        Args:
            directory (str, optional): where the file is written. Defaults to
                                       the working directory.
            open_browser (bool, optional): Defaults to False.
        Returns:
            str: the path of the file.
        """
        rows = [E.TR(E.TH("Iteration"), E.TH("Log likelihood"),
                     E.TH("Estimated rate matrices"), E.TH("Comment"))]
        for iteration, log_lik, estimates, comment in zip(self.iterations,
                                                          self.log_likelihoods,
                                                          self.estimates,
                                                          self.comments):
            matrices = E.DIV(*[E.PRE(np.array2string(Q, precision = 4))
                               for Q in estimates])
            rows.append(E.TR(E.TD(str(iteration)), E.TD(f"{log_lik:.6f}"),
                             E.TD(matrices), E.TD(comment)))

        tree_blocks = []
        for G, comment in zip(self.trees, self.tree_comments):
            pos = nx.multipartite_layout(G, subset_key = "layer")
            fig = Figure(layout = "tight")
            ax = fig.add_subplot()
            nx.draw_networkx(G, pos = pos, ax = ax,
                             labels = nx.get_node_attributes(G, "label"))
            ax.set_title("Tree layered by depth")
            if comment:
                tree_blocks.append(E.P(comment))
            tree_blocks.append(_embed(fig))

        # Make html content
        html = E.HTML(
                  E.HEAD(
                    E.TITLE("--------Sweep Log Output--------")
                  ),
                  E.BODY(
                    E.P("Starting Logs:", style = "font-size: 30pt;"),
                    _embed(self.trace_figure()),
                    E.TABLE(*rows, border = "1"),
                    *tree_blocks,
                    E.P("----------End Log Output----------",
                        style = "font-size: 30pt;")
                  )
                )

        os.makedirs(directory, exist_ok = True)
        filename = os.path.join(directory, f"logout{self.id}.html")
        with open(filename, "w") as f:
            f.write(lxml.html.tostring(html, pretty_print = True,
                                       encoding = "unicode"))

        if open_browser:
            webbrowser.open(filename, new = 1)
        return filename

def _embed(fig : Figure):
    tmpfile = BytesIO()
    fig.savefig(tmpfile, format = "png")
    encoded = base64.b64encode(tmpfile.getvalue()).decode("utf-8")
    return E.IMG(src = f"data:image/png;base64,{encoded}")
