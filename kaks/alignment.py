"""
--------------------------------------------------------------------------------

Copyright (C) 2018 Arthur Zwaenepoel

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <http://www.gnu.org/licenses/>.

Contact: arzwa@psb.vib-ugent.be

--------------------------------------------------------------------------------
Protein multiple sequence alignment with Clustalw or T-Coffee, and pairwise
alignment statistics.
--------------------------------------------------------------------------------
"""
from .utils import find_executable, run_command, write_fasta, tail
from .errors import UnknownBackendError, AlignerUnavailableError
from .errors import AlignmentFailedError
from Bio import AlignIO
from enum import Enum
import os
import re
import logging
import subprocess


class AlignerKind(Enum):
    CLUSTALW = "clustalw"
    TCOFFEE = "tcoffee"

    @classmethod
    def from_name(cls, name):
        """
        Resolve a user supplied program name, anything containing ``clus``
        selects Clustalw and anything containing ``tcof`` (or ``t_cof``)
        selects T-Coffee.
        """
        if re.search("clus", name, re.IGNORECASE):
            return cls.CLUSTALW
        elif re.search("t_?cof", name, re.IGNORECASE):
            return cls.TCOFFEE
        raise UnknownBackendError(
            "Did not provide either 'clustalw' or 'tcoffee' as alignment "
            "program name (got '{}')".format(name))


class Aligner:
    """
    Base class for the external aligners. Subclasses define the candidate
    executable names, the environment variable pointing to an installation
    directory, and the command line.

    :param exe: path to the executable (by default will look for it in the
        directory given by `envvar` and then in the system PATH)
    :param verbose: do not silence the aligner
    :param timeout: seconds to wait for the aligner, `None` waits forever
    """
    name = None
    executables = []
    envvar = None
    out_format = "fasta"

    def __init__(self, exe=None, verbose=False, timeout=None):
        self.exe = exe or find_executable(self.executables, self.envvar)
        self.verbose = verbose
        self.timeout = timeout

    def command(self, in_file, out_file):
        raise NotImplementedError

    def check(self):
        if self.exe is None:
            raise AlignerUnavailableError(
                "Could not find the executable for {0}, make sure you have "
                "installed it and have either set {1} or it is in your "
                "PATH".format(self.name, self.envvar))
        return self.exe

    def align(self, pro_seqs, tmp_path):
        """
        Align protein sequences.

        :param pro_seqs: dictionary with sequence IDs as keys and protein
            `SeqRecord` objects as values
        :param tmp_path: directory for the input and output files
        :return: `MultipleSeqAlignment`
        """
        self.check()
        in_file = os.path.join(tmp_path, "pro.fasta")
        out_file = os.path.join(tmp_path, "pro.aln")
        write_fasta(pro_seqs, in_file)
        logging.info("Aligning {} protein sequences with {}".format(
            len(pro_seqs), self.name))
        try:
            out = run_command(self.name, self.command(in_file, out_file),
                              cwd=tmp_path, timeout=self.timeout)
        except FileNotFoundError:
            raise AlignerUnavailableError(
                "Could not run the {} executable {}".format(self.name, self.exe))
        except subprocess.TimeoutExpired:
            raise AlignmentFailedError("{} did not finish within {} s".format(
                self.name, self.timeout))
        if out.returncode != 0:
            raise AlignmentFailedError("{} exited with status {}:\n{}".format(
                self.name, out.returncode, tail(out)))
        if not os.path.isfile(out_file) or os.path.getsize(out_file) == 0:
            raise AlignmentFailedError(
                "{} did not produce an alignment:\n{}".format(self.name, tail(out)))
        try:
            aln = AlignIO.read(out_file, self.out_format)
        except ValueError as e:
            raise AlignmentFailedError(
                "Could not read {} alignment {}: {}".format(self.name, out_file, e))
        logging.debug("Protein alignment length: {}".format(
            aln.get_alignment_length()))
        return aln


class Clustalw(Aligner):
    name = "clustalw"
    executables = ["clustalw2", "clustalw"]
    envvar = "CLUSTALDIR"
    out_format = "clustal"

    def command(self, in_file, out_file):
        cmd = [self.exe, "-INFILE=" + in_file, "-ALIGN", "-TYPE=PROTEIN",
               "-OUTFILE=" + out_file, "-NEWTREE=" + out_file + ".dnd"]
        if not self.verbose:
            cmd.append("-QUIET")
        return cmd


class TCoffee(Aligner):
    name = "tcoffee"
    executables = ["t_coffee"]
    envvar = "TCOFFEEDIR"
    out_format = "fasta"

    def command(self, in_file, out_file):
        cmd = [self.exe, in_file, "-type=protein", "-output=fasta_aln",
               "-outfile=" + out_file, "-newtree=" + out_file + ".dnd"]
        if not self.verbose:
            cmd.append("-quiet")
        return cmd


def get_aligner(kind, **kwargs):
    """
    Aligner wrapper

    :param kind: `AlignerKind` or program name
    :param kwargs: keyword arguments for the aligner (exe, verbose, timeout)
    :return: aligner instance
    """
    if not isinstance(kind, AlignerKind):
        kind = AlignerKind.from_name(kind)
    if kind == AlignerKind.TCOFFEE:
        return TCoffee(**kwargs)
    return Clustalw(**kwargs)


def _is_residue(c):
    return c.isalpha()


def strip_gaps_pair(s1, s2):
    """
    Strip gaps for an aligned sequence pair. Every column where one of both
    sequences does not carry a residue (gap, '?', '*', ...) is removed.

    :param s1: sequence 1
    :param s2: sequence 2
    :return: two stripped sequences
    """
    s1_, s2_ = '', ''
    for i in range(len(s1)):
        if not _is_residue(s1[i]) or not _is_residue(s2[i]):
            continue
        else:
            s1_ += s1[i]
            s2_ += s2[i]
    return s1_, s2_


def hamming_distance(s1, s2):
    """
    Return the Hamming distance between equal-length sequences

    :param s1: string 1
    :param s2: string 2
    :return: the Hamming distances between s1 and s2
    """
    if len(s1) != len(s2):
        raise ValueError("Undefined for sequences of unequal length")
    return sum(el1 != el2 for el1, el2 in zip(s1, s2))


def percentage_identity(s1, s2):
    """
    Percentage identity of two aligned sequences, over the columns where both
    carry a residue. Comparisons are case-insensitive, and a pair without any
    such column has identity 0.

    :param s1: aligned sequence 1
    :param s2: aligned sequence 2
    :return: float in [0, 100]
    """
    s1_, s2_ = strip_gaps_pair(str(s1).upper(), str(s2).upper())
    if len(s1_) == 0:
        return 0.
    return (len(s1_) - hamming_distance(s1_, s2_)) / len(s1_) * 100.


def pairwise_identity(aln, i, j):
    """
    Percentage identity of the sub-alignment of rows `i` and `j` of an
    alignment.
    """
    return percentage_identity(aln[i].seq, aln[j].seq)
