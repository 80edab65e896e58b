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
Last Edit : 10/2/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from dataclasses import dataclass
import numpy as np


########################
### MODULE CONSTANTS ###
########################


@dataclass(frozen=True)
class AlphabetMapping:
    name : str
    mapping : dict[str, int]
    states : int
    bitmask : bool

DNA : AlphabetMapping = AlphabetMapping("DNA",
                                        { "-" : 15, "?" : 15, "A" : 1, "C" : 2, "M" : 3,
                                          "G" : 4, "R" : 5, "S" : 6, "V" : 7, "T" : 8,
                                          "W" : 9, "Y" : 10, "H" : 11, "K" : 12,
                                          "D" : 13, "B" : 14, "N" : 15, "X" : 15},
                                        4, True)

RNA : AlphabetMapping = AlphabetMapping("RNA",
                                        {"-" : 15, "?" : 15, "A" : 1, "C" : 2, "M" : 3,
                                         "G" : 4, "R" : 5, "S" : 6, "V" : 7, "U" : 8,
                                         "W" : 9, "Y" : 10, "H" : 11, "K" : 12,
                                         "D" : 13, "B" : 14, "N" : 15, "X" : 15},
                                        4, True)

_AMINO_ACIDS : str = "ARNDCQEGHILKMFPSTWYV"

PROTEIN : AlphabetMapping = AlphabetMapping("PROTEIN",
                                            {**{aa : i for i, aa in enumerate(_AMINO_ACIDS)},
                                             "-" : -1, "?" : -1, "X" : -1},
                                            20, False)

# Index alphabets mark missing data with this code
MISSING : int = -1


#########################
#### EXCEPTION CLASS ####
#########################

class AlphabetError(Exception):
    """
    Error class for all errors relating to alphabet mappings.
    """
    def __init__(self, message : str = "Error during Alphabet class mapping\
                                        operation") -> None:
        """
        Initialize an AlphabetError with a message.

        Args:
            message (str): error message
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

##########################
#### HELPER FUNCTIONS ####
##########################

def integer_alphabet(states : int) -> AlphabetMapping:
    """
    Alphabet for characters coded as the integers 0, 1, ..., states - 1, such
    as binary presence/absence data or copy numbers. '-' and '?' are missing
    data. States from 10 up are multi character tokens, so sequences over
    such an alphabet are passed as lists of tokens.

    Args:
        states (int): number of states. Must be at least 2.

    Raises:
        AlphabetError: if fewer than 2 states are requested.
    Returns:
        AlphabetMapping: the mapping str(i) -> i plus the missing characters.
    """
    if states < 2:
        raise AlphabetError("An alphabet needs at least 2 states.")

    alphabet : dict[str, int] = {str(num) : num for num in range(states)}
    alphabet["-"] = MISSING
    alphabet["?"] = MISSING

    return AlphabetMapping("INTEGER", alphabet, states, False)

########################
#### ALPHABET CLASS ####
########################

class Alphabet:
    """
    Class that deals with the mapping from characters to the partial
    likelihood vectors that observe them at a leaf.

    DNA and RNA use a Base10 -> Binary mapping, so that decimal codes
    become a generalized version of the one-hot encoding scheme:

    DNA MAPPING INFORMATION
     Symbol(s)	Name	   Partial Likelihood
         A	  Adenine	   [1,0,0,0] -> 1
         C	  Cytosine	   [0,1,0,0] -> 2
         G	  Guanine	   [0,0,1,0] -> 4
         T U	  Thymine  [0,0,0,1] -> 8
     Symbol(s)	Name	   Partial Likelihood
         N X - ?  Any 	   A C G T ([1,1,1,1] -> 15)
         V	    Not T	   A C G ([1,1,1,0] -> 7)
         H	    Not G	   A C T ([1,1,0,1] -> 11)
         D	    Not C	   A G T ([1,0,1,1] -> 13)
         B	    Not A	   C G T ([0,1,1,1] -> 14)
         M	    Amino	   A C ([1,1,0,0] -> 3)
         R	    Purine	   A G ([1,0,1,0] -> 5)
         W	    Weak	   A T ([1,0,0,1] -> 9)
         S	    Strong	   C G ([0,1,1,0] -> 6)
         Y	    Pyrimidine C T ([0,1,0,1] -> 10)
         K	    Keto	   G T ([0,0,1,1] -> 12)

    Other alphabets map each character to a state index, and missing data to
    a vector of ones.
    """

    def __init__(self, mapping : AlphabetMapping) -> None:
        """
        Args:
            mapping (AlphabetMapping): One of {DNA, RNA, PROTEIN}, or an
                                       alphabet built by 'integer_alphabet'.
        Returns:
            N/A
        """
        self.alphabet : AlphabetMapping = mapping
        self._reverse : dict[int, str] = {}
        for char, code in mapping.mapping.items():
            if code not in self._reverse:
                self._reverse[code] = char

    def map(self, char : str) -> int:
        """
        Return the code for a character encountered in an alignment.

        Raises:
            AlphabetError: if the char encountered is undefined for the data
                           mapping.
        Args:
            char (str): alignment data point
        Returns:
            int: the integer corresponding to char in the alphabet mapping
        """
        try:
            return self.alphabet.mapping[char.upper()]
        except KeyError:
            raise AlphabetError("Attempted to map <" + char + ">. That \
                                 character is invalid for this alphabet")

    def partials(self, char : str) -> np.ndarray:
        """
        The observation vector of a character: 1 for every state compatible
        with it, 0 elsewhere.

        Args:
            char (str): alignment data point
        Returns:
            np.ndarray: vector of length 'state_count()'.
        """
        code = self.map(char)
        vec = np.zeros(self.alphabet.states, dtype = np.double)

        if self.alphabet.bitmask:
            for bit in range(self.alphabet.states):
                if code & (1 << bit):
                    vec[bit] = 1.0
        elif code == MISSING:
            vec[:] = 1.0
        else:
            vec[code] = 1.0

        return vec

    def state_count(self) -> int:
        """
        Returns:
            int: the number of states a character of this alphabet evolves in.
        """
        return self.alphabet.states

    def get_type(self) -> str:
        """
        Returns a string that is equal to the alphabet constant name.

        ie. if one is using the DNA alphabet,
        this function will return "DNA"

        Returns:
            str: the type of alphabet being used
        """
        return self.alphabet.name

    def reverse_map(self, state : int) -> str:
        """
        Get the character that observes exactly 'state'.

        Raises:
            AlphabetError: if the provided state is not a valid one in the
                           alphabet
        Args:
            state (int): a state index in [0, state_count())
        Returns:
            str: the character for that state
        """
        if not 0 <= state < self.alphabet.states:
            raise AlphabetError("Given state does not exist in alphabet")

        code = (1 << state) if self.alphabet.bitmask else state
        return self._reverse[code]
