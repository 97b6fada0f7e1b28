# Arthur Zwaenepoel (2020)
import uuid
import os
import shutil
import logging
import pandas as pd
from types import MappingProxyType
from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord
from Bio.Align import MultipleSeqAlignment
from Bio.Data.CodonTable import TranslationError
from kaks.alignment import pairwise_identity
from kaks.errors import UnreadableInputError, FormatError
from kaks.errors import InternalStopCodonError, InsufficientSequencesError
from kaks.errors import ProjectionMismatchError

HEADER = ["SEQ1", "SEQ2", "Ka", "Ks", "Ka/Ks",
          "PROT_PERCENTID", "CDNA_PERCENTID"]

_EXTENSIONS = {
    ".gb": "genbank", ".gbk": "genbank", ".genbank": "genbank",
    ".embl": "embl"}


# helper functions
def _mkdir(dirname):
    if os.path.isdir(dirname):
        logging.warning("dir {} exists!".format(dirname))
    else:
        os.mkdir(dirname)
    return dirname


def guess_format(path):
    """Sequence file format from the file extension, FASTA by default."""
    ext = os.path.splitext(path)[1].lower()
    return _EXTENSIONS.get(ext, "fasta")


def read_sequences(path, fmt="fasta"):
    """
    Read a sequence file. The file checks are done immediately, the records
    themselves are parsed lazily.

    :param path: sequence file path
    :param fmt: any `Bio.SeqIO` format name, or ``auto`` to guess it from
        the file extension
    :return: iterator over `SeqRecord` objects
    """
    if not path:
        raise UnreadableInputError("No cDNA sequence file provided (-i)")
    if not os.path.isfile(path) or not os.access(path, os.R_OK):
        raise UnreadableInputError(
            "Did not specify a valid cDNA sequence file: {}".format(path))
    if os.path.getsize(path) == 0:
        raise UnreadableInputError("cDNA sequence file {} is empty".format(path))
    if fmt == "auto":
        fmt = guess_format(path)
        logging.debug("Reading {} as {}".format(path, fmt))
    return _parse(path, fmt)


def _parse(path, fmt):
    n = 0
    try:
        for record in SeqIO.parse(path, fmt):
            n += 1
            yield record
    except ValueError as e:
        raise FormatError("Could not parse {} as {}: {}".format(path, fmt, e))
    if n == 0:
        raise FormatError("No {} records found in {}".format(fmt, path))


class SequenceData:
    """
    Coding sequences and their translations. We give each input record a
    unique safe ID (aligners and PAML truncate long names), and keep the full
    records in a dict with these IDs. We use the newly assigned IDs in further
    analyses, but can reconvert at any time.

    :param records: iterable of nucleotide `SeqRecord` objects
    """
    def __init__(self, records):
        self._cds = {}
        self._pro = {}
        self.idmap = {}  # map from input seq id to the safe id
        self.read_cds(records)
        self.cds_seqs = MappingProxyType(self._cds)
        self.pro_seqs = MappingProxyType(self._pro)

    @classmethod
    def from_file(cls, path, fmt="fasta"):
        return cls(read_sequences(path, fmt))

    def read_cds(self, records):
        for i, seq in enumerate(records):
            if seq.id in self.idmap:
                raise FormatError("Duplicate sequence ID {}".format(seq.id))
            gid = "seq{:0>5}".format(i)
            self._cds[gid] = seq
            self._pro[gid] = translate_cds(seq, gid)
            self.idmap[seq.id] = gid
        if len(self._pro) < 2:
            raise InsufficientSequencesError(
                "Need at least 2 cDNA sequences to proceed (got {})".format(
                    len(self._pro)))
        logging.info("Read and translated {} coding sequences".format(
            len(self._pro)))

    def original_id(self, gid):
        return self._cds[gid].id


def translate_cds(seq, gid):
    """
    Translate a coding sequence with the standard code, strip a single
    trailing stop and refuse internal stops (which PAML cannot handle).

    :param seq: nucleotide `SeqRecord`
    :param gid: ID for the protein record
    :return: protein `SeqRecord`
    """
    dna = seq.seq
    extra = len(dna) % 3
    if extra:
        logging.warning("Length of {} is not a multiple of three, ignoring "
                        "the last {} nucleotide(s)".format(seq.id, extra))
        dna = dna[:len(dna) - extra]
    try:
        aa = str(dna.translate())
    except TranslationError as e:
        raise FormatError("Translation error ({}) in seq {}".format(e, seq.id))
    if aa.endswith("*"):
        aa = aa[:-1]
    if "*" in aa:
        raise InternalStopCodonError(
            "Provided a cDNA ({}) sequence with a stop codon at amino acid "
            "position {}, PAML will choke!".format(seq.id, aa.index("*") + 1))
    if not aa:
        raise FormatError(
            "cDNA sequence {} does not encode any amino acid".format(seq.id))
    return SeqRecord(Seq(aa), id=gid, description=seq.id)


def pal2nal(pro_aln, cds_seqs):
    """
    Protein alignment to codon alignment converter. Every aligned residue
    becomes its codon, every gap becomes three gaps.

    :param pro_aln: protein `MultipleSeqAlignment`
    :param cds_seqs: mapping from sequence IDs to nucleotide `SeqRecord`
    :return: codon `MultipleSeqAlignment`, in the order of `pro_aln`
    """
    records = []
    for s in pro_aln:
        if s.id not in cds_seqs:
            raise ProjectionMismatchError(
                "Sequence {} in protein alignment not found in CDS "
                "sequences".format(s.id))
        cds_seq = str(cds_seqs[s.id].seq)
        pro_seq = str(s.seq)
        n_codons = len(cds_seq) // 3
        n_aa = len(pro_seq) - pro_seq.count("-")
        # the protein lacks the stripped terminal stop codon
        stop = n_codons > 0 and str(
            Seq(cds_seq[3*n_codons-3:3*n_codons]).translate()) == "*"
        if not (n_aa == n_codons or (stop and n_aa == n_codons - 1)):
            raise ProjectionMismatchError(
                "Protein {} has {} residues but its CDS has {} codons".format(
                    s.id, n_aa, n_codons))
        cds_aln = ""
        k = 0
        for j in range(len(pro_seq)):
            if pro_seq[j] == "-":
                cds_aln += "---"
            else:
                cds_aln += cds_seq[k:k+3]
                k += 3
        records.append(SeqRecord(Seq(cds_aln), id=s.id,
                                 description=s.description))
    return MultipleSeqAlignment(records)


def _position(aln, gid):
    c = 0
    for s in aln:
        if s.id == gid:
            return c
        c += 1
    raise ProjectionMismatchError(
        "Sequence {} reported by the estimator is not in the codon "
        "alignment".format(gid))


class KaKsAnalysis:
    """
    The pairwise Ka/Ks pipeline for one set of coding sequences: protein
    alignment, codon alignment, PAML and the report table.

    :param seqs: `SequenceData` object
    :param aligner: aligner backend (see :py:mod:`kaks.alignment`)
    :param estimator: PAML backend (see :py:mod:`kaks.codeml`)
    :param tmp_path: working directory, a random name is used by default
    """
    def __init__(self, seqs, aligner, estimator, tmp_path=None):
        if tmp_path is None:
            tmp_path = str(uuid.uuid4())
        self.seqs = seqs
        self.aligner = aligner
        self.estimator = estimator
        self.tmp_path = tmp_path
        self.pro_aln = None
        self.cds_aln = None
        self.result = None
        self.df = None

    def run(self):
        _mkdir(self.tmp_path)
        self.align()
        self.get_codon_alignment()
        self.run_estimator()
        return self.compile_dataframe()

    def align(self):
        self.pro_aln = self.aligner.align(self.seqs.pro_seqs, self.tmp_path)

    def get_codon_alignment(self):
        self.cds_aln = pal2nal(self.pro_aln, self.seqs.cds_seqs)
        logging.debug("Codon alignment length: {}".format(
            self.cds_aln.get_alignment_length()))

    def run_estimator(self):
        self.result = self.estimator.run(self.cds_aln, self.tmp_path)
        self.result.check_version()

    def compile_dataframe(self):
        """
        One row for every pair of sequences, in the order the estimator
        reported them. The estimator may order the sequences differently from
        the alignments, so every OTU is looked up by ID in the codon alignment
        before computing identities.
        """
        otus = self.result.seqs
        pos = [_position(self.cds_aln, x) for x in otus]
        rows = []
        for i in range(len(otus) - 1):
            for j in range(i + 1, len(otus)):
                x = self.result.matrix.get(i, j)
                rows.append([
                    self.seqs.original_id(otus[i]),
                    self.seqs.original_id(otus[j]),
                    x["dN"], x["dS"], x["omega"],
                    "{:.2f}".format(pairwise_identity(self.pro_aln, pos[i], pos[j])),
                    "{:.2f}".format(pairwise_identity(self.cds_aln, pos[i], pos[j]))])
        self.df = pd.DataFrame(rows, columns=HEADER)
        return self.df

    def remove_tmp(self):
        if os.path.isdir(self.tmp_path):
            shutil.rmtree(self.tmp_path)


def write_report(df, handle):
    """
    Write the pairwise table as tab separated values, missing rates as NA.

    :param df: data frame from :py:meth:`KaKsAnalysis.compile_dataframe`
    :param handle: open text file (or stdout)
    """
    df.to_csv(handle, sep="\t", index=False, na_rep="NA")
