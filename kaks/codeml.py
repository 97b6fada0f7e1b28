"""
Wrappers for the PAML programs codeml (runmode -2, pairwise maximum likelihood)
and yn00 (Yang & Nielsen 2000 approximate method), and parsers for their
pairwise output.
"""
import pandas as pd
import numpy as np
import subprocess as sp
import logging
import os
import re
from enum import Enum
from .utils import find_executable, run_command, tail
from .errors import UnknownBackendError, EstimatorUnavailableError
from .errors import EstimatorRunError, UnsupportedVersionError

# PAML releases known to give wrong pairwise output
UNSUPPORTED_VERSIONS = [r"3\.15"]

_VERSION = re.compile(r"in paml(?: version)?\s+([^\s,)]+)", re.IGNORECASE)
_CODEML_PAIR = re.compile(r"^\s*(\d+)\s+\((.+?)\)\s+\.\.\.\s+(\d+)\s+\((.+?)\)\s*$")
_KEY_VALUE = re.compile(r"([\w/]+)\s*=\s*(\S+)")
_NG86_ROW = re.compile(
    r"^(\S+)((\s*-?\d+\.\d+\s*\(\s*-?\d+\.\d+\s+-?\d+\.\d+\))*)\s*$")
_YN00_ROW = re.compile(r"^\s*(\d+)\s+(\d+)\s+(\d.*)$")


class EstimatorKind(Enum):
    CODEML = "codeml"
    YN00 = "yn00"

    @classmethod
    def from_name(cls, name):
        if re.search("yn00", name, re.IGNORECASE):
            return cls.YN00
        elif re.search("codeml", name, re.IGNORECASE):
            return cls.CODEML
        raise UnknownBackendError(
            "Did not provide either 'codeml' or 'yn00' as Ka/Ks program name "
            "(got '{}')".format(name))


class RateMatrix:
    """
    Pairwise dN, dS and omega estimates. Each estimate is a square data frame
    indexed by the OTUs in the order the estimator reported them, pairs the
    estimator did not report are NaN.
    """
    keys = ("dN", "dS", "omega")

    def __init__(self, otus):
        self.otus = list(otus)
        n = len(self.otus)
        self.estimates = {k: pd.DataFrame(
            np.full((n, n), np.nan), index=self.otus, columns=self.otus)
            for k in self.keys}

    def __getitem__(self, key):
        return self.estimates[key]

    def __len__(self):
        return len(self.otus)

    def add(self, a, b, **values):
        for k in self.keys:
            v = values.get(k)
            v = np.nan if v is None else v
            self.estimates[k].loc[a, b] = v
            self.estimates[k].loc[b, a] = v

    def get(self, i, j):
        return {k: self.estimates[k].iloc[i, j] for k in self.keys}

    def n_pairs(self):
        return int(self.estimates["dS"].notna().sum().sum() // 2)


class PamlResult:
    """
    Parsed pairwise PAML run: the program, the PAML version it reported (or
    None) and the `RateMatrix`.
    """
    def __init__(self, program, version, matrix):
        self.program = program
        self.version = version
        self.matrix = matrix

    @property
    def seqs(self):
        return self.matrix.otus

    def check_version(self):
        if self.version is None:
            return
        for pattern in UNSUPPORTED_VERSIONS:
            if re.search(pattern, self.version):
                raise UnsupportedVersionError(
                    "{} from PAML {} gives wrong pairwise estimates, please "
                    "use another PAML release".format(self.program, self.version))


def _parse_version(content):
    m = _VERSION.search(content)
    return m.group(1) if m else None


def _parse_pair(line):
    x = {}
    for k, v in _KEY_VALUE.findall(line):
        try:
            x[k] = float(v)
        except ValueError:
            logging.warning("Could not parse {} = {}".format(k, v))
    return x


def parse_codeml(codeml_out):
    """
    Parse codeml (runmode -2) output. Every pair is reported as::

        2 (seq00001) ... 1 (seq00000)
        lnL = -1084.231471
          0.12210  2.24532  0.18132

        t= 0.1221  S=   141.1  N=   416.9  dN/dS=  0.1813  dN = 0.0202  dS = 0.1115

    The numbers preceding the names are codeml's own sequence ordinals, which
    define the OTU order of the returned matrix.

    :param codeml_out: codeml output file
    :return: `PamlResult`
    """
    with open(codeml_out, "r") as f:
        content = f.read()
    names = {}
    pairs = []
    current = None
    for line in content.split("\n"):
        m = _CODEML_PAIR.match(line)
        if m:
            i, a, j, b = m.groups()
            names[int(i)] = a
            names[int(j)] = b
            current = (a, b)
        elif current and "dN/dS" in line:
            pairs.append((current, _parse_pair(line)))
            current = None
    matrix = RateMatrix([names[k] for k in sorted(names)])
    for (a, b), x in pairs:
        matrix.add(a, b, dN=x.get("dN"), dS=x.get("dS"), omega=x.get("dN/dS"))
    return PamlResult("codeml", _parse_version(content), matrix)


def parse_yn00(yn00_out):
    """
    Parse yn00 output. The sequence names are taken (in order) from the
    Nei & Gojobori (1986) matrix, the estimates from the Yang & Nielsen (2000)
    table, whose rows look like::

        seq. seq.     S       N        t   kappa   omega     dN +- SE    dS +- SE

           2    1   141.3   416.7   0.1166  2.3113  0.1803 0.0194 +- 0.0068  0.1074 +- 0.0297

    :param yn00_out: yn00 output file
    :return: `PamlResult`
    """
    with open(yn00_out, "r") as f:
        content = f.read()
    names = []
    rows = []
    section = None
    for line in content.split("\n"):
        if line.startswith("Nei & Gojobori 1986"):
            section = "ng86"
            continue
        elif "Yang & Nielsen (2000) method" in line:
            section = "yn00"
            continue
        elif line.startswith("(C)"):
            section = None
        if section == "ng86":
            if names and not line.strip():
                section = None
                continue
            m = _NG86_ROW.match(line)
            if m:
                names.append(m.group(1))
        elif section == "yn00":
            m = _YN00_ROW.match(line)
            if m:
                x = m.group(3).replace("+-", " ").split()
                if len(x) >= 8:
                    rows.append((int(m.group(1)), int(m.group(2)), x))
    matrix = RateMatrix(names)
    for i, j, x in rows:
        if i > len(names) or j > len(names):
            raise EstimatorRunError(
                "yn00 output refers to sequence {} but lists {} names".format(
                    max(i, j), len(names)))
        matrix.add(names[i-1], names[j-1],
                   omega=float(x[4]), dN=float(x[5]), dS=float(x[7]))
    return PamlResult("yn00", _parse_version(content), matrix)


def _write_aln_codeml(aln, fname):
    with open(fname, "w") as f:
        f.write("{} {}\n".format(len(aln), aln.get_alignment_length()))
        for s in aln:
            f.write("{}\n".format(s.id))
            f.write("{}\n".format(s.seq))


class Paml:
    """
    Base class for the PAML wrappers. Defines the control file and enables
    running the program from within python in one line of code. Control
    settings are stored in a dictionary that can be accessed with the
    `.control` attribute.

    :param exe: path to the executable (by default will look in ``$PAMLDIR``
        and in the system PATH)
    :param prefix: filename prefix for output/tmp files
    :param verbose: forwarded as the ``verbose`` control option
    :param timeout: seconds to wait for the program, `None` waits forever
    :param kwargs: other control file options (see PAML user guide)
    """
    program = None
    envvar = "PAMLDIR"

    def __init__(self, exe=None, prefix=None, verbose=False, timeout=None,
                 **kwargs):
        self.exe = exe or find_executable(self.program, self.envvar)
        self.prefix = prefix or self.program
        self.timeout = timeout
        self.control_file = self.prefix + '.ctl'
        self.aln_file = self.prefix + '.cdsaln'
        self.out_file = self.prefix + '.' + self.program
        self.control = self.default_control()
        self.control['seqfile'] = self.aln_file
        self.control['outfile'] = self.out_file
        if verbose:
            self.control['verbose'] = 1
        # update the control with kwargs
        for x in kwargs.keys():
            if x not in self.control:
                raise KeyError("{} is not a valid {} param.".format(
                    x, self.program))
            else:
                self.control[x] = kwargs[x]

    def __str__(self):
        """
        String method for the wrapper, prints current control settings

        :return: string representation of the control file
        """
        x = ['{0} = {1}\n'.format(k, v) for (k, v) in sorted(self.control.items())]
        return "\n".join(x)

    def default_control(self):
        raise NotImplementedError

    def parse(self, out_file):
        raise NotImplementedError

    def write_ctrl(self, tmp):
        with open(os.path.join(tmp, self.control_file), "w") as f:
            f.write(str(self))

    def check(self):
        if self.exe is None:
            raise EstimatorUnavailableError(
                "Could not find the executable for {0}, make sure you have "
                "installed PAML and have either set {1} or it is in your "
                "PATH".format(self.program, self.envvar))
        return self.exe

    def run(self, aln, tmp):
        """
        Run the program on a codon alignment, in directory `tmp`.

        :param aln: codon `MultipleSeqAlignment`
        :param tmp: working directory
        :return: `PamlResult`
        """
        self.check()
        if not os.path.isdir(tmp):
            raise NotADirectoryError('tmp directory {} not found!'.format(tmp))
        self.write_ctrl(tmp)
        _write_aln_codeml(aln, os.path.join(tmp, self.aln_file))
        logging.info("Running {} on {} sequences (alignment length {})".format(
            self.program, len(aln), aln.get_alignment_length()))
        try:
            out = run_command(self.program, [self.exe, self.control_file],
                              cwd=tmp, timeout=self.timeout)
        except FileNotFoundError:
            raise EstimatorUnavailableError(
                "Could not run the {} executable {}".format(self.program, self.exe))
        except sp.TimeoutExpired:
            raise EstimatorRunError("{} did not finish within {} s".format(
                self.program, self.timeout))
        if out.returncode != 0:
            raise EstimatorRunError("{} exited with status {}:\n{}".format(
                self.program, out.returncode, tail(out)))
        out_file = os.path.join(tmp, self.out_file)
        if not os.path.isfile(out_file):
            raise EstimatorRunError("{} output file not found:\n{}".format(
                self.program, tail(out)))
        result = self.parse(out_file)
        if result.matrix.n_pairs() == 0:
            raise EstimatorRunError("{} reported no pairwise estimates:\n{}".format(
                self.program, tail(out)))
        logging.debug("{} (PAML {}) estimated {} pairs".format(
            self.program, result.version, result.matrix.n_pairs()))
        return result


class Codeml(Paml):
    """
    Codeml wrapper, pairwise maximum likelihood estimation (``runmode = -2``,
    ``seqtype = 1``) with the default control file for Ks analysis as
    proposed by Vanneste et al. (2013)::

        'noisy': 0,
        'verbose': 0,
        'runmode': -2,
        'seqtype': 1,
        'CodonFreq': 2,
        'clock': 0,
        'aaDist': 0,
        'aaRatefile': 'dat/jones.dat',
        'model': 0,
        'NSsites': 0,
        'icode': 0,
        'Mgene': 0,
        'fix_kappa': 0,
        'kappa': 2,
        'fix_omega': 0,
        'omega': .4,
        'fix_alpha': 1,
        'alpha': 0,
        'Malpha': 0,
        'ncatG': 8,
        'getSE': 0,
        'RateAncestor': 1,
        'Small_Diff': .5e-6,
        'cleandata': 1,
        'method': 0
    """
    program = "codeml"

    def default_control(self):
        return {
            'noisy': 0,
            'verbose': 0,
            'runmode': -2,
            'seqtype': 1,
            'CodonFreq': 2,
            'clock': 0,
            'aaDist': 0,
            'aaRatefile': 'dat/jones.dat',
            'model': 0,
            'NSsites': 0,
            'icode': 0,
            'Mgene': 0,
            'fix_kappa': 0,
            'kappa': 2,
            'fix_omega': 0,
            'omega': .4,
            'fix_alpha': 1,
            'alpha': 0,
            'Malpha': 0,
            'ncatG': 8,
            'getSE': 0,
            'RateAncestor': 1,
            'Small_Diff': .5e-6,
            'cleandata': 1,
            'method': 0}

    def parse(self, out_file):
        return parse_codeml(out_file)


class Yn00(Paml):
    """
    Yn00 wrapper, the approximate (counting) method of Yang & Nielsen (2000).
    Much faster than codeml, but less accurate for divergent sequences.
    """
    program = "yn00"

    def default_control(self):
        return {
            'verbose': 0,
            'icode': 0,
            'weighting': 0,
            'commonf3x4': 0}

    def parse(self, out_file):
        return parse_yn00(out_file)


def get_estimator(kind, **kwargs):
    if not isinstance(kind, EstimatorKind):
        kind = EstimatorKind.from_name(kind)
    if kind == EstimatorKind.YN00:
        return Yn00(**kwargs)
    return Codeml(**kwargs)
