import pytest
import os
import stat
import logging
from Bio import AlignIO
from kaks.core import SequenceData, KaKsAnalysis, pal2nal, read_sequences
from kaks.core import write_report
from kaks.alignment import TCoffee, Clustalw
from kaks.codeml import Codeml, Yn00, RateMatrix, PamlResult
from kaks.codeml import parse_codeml, parse_yn00
from kaks.errors import UnreadableInputError, FormatError
from kaks.errors import InternalStopCodonError, InsufficientSequencesError
from kaks.errors import ProjectionMismatchError, UnsupportedVersionError
from kaks.errors import AlignerUnavailableError, AlignmentFailedError
from kaks.errors import EstimatorUnavailableError, EstimatorRunError

# some config: set logging level, and get directory
logging.basicConfig(level=logging.ERROR)
thisdir = os.path.dirname(os.path.abspath(__file__))
datadir = os.path.join(thisdir, "data")


def _data(fname):
    return os.path.join(datadir, fname)


def _script(path, body):
    with open(path, "w") as f:
        f.write("#!/bin/sh\n" + body)
    os.chmod(path, os.stat(path).st_mode | stat.S_IEXEC)
    return path


class FakeAligner:
    def __init__(self, aln):
        self.aln = aln
        self.input = None

    def align(self, pro_seqs, tmp_path):
        self.input = {k: str(v.seq) for k, v in pro_seqs.items()}
        return self.aln


class FakeEstimator:
    def __init__(self, result):
        self.result = result
        self.aln = None

    def run(self, aln, tmp):
        self.aln = aln
        return self.result


@pytest.fixture
def seqs():
    return SequenceData.from_file(_data("three.fasta"))


@pytest.fixture
def pro_aln():
    return AlignIO.read(_data("pro.aln.fasta"), "fasta")


# Test the internals
class TestSequenceData:
    def test_seqio(self, seqs):
        assert len(seqs.cds_seqs) == 3
        assert list(seqs.pro_seqs.keys()) == ["seq00000", "seq00001", "seq00002"]
        assert str(seqs.pro_seqs["seq00000"].seq) == "MKAYSTRVL"
        assert str(seqs.pro_seqs["seq00002"].seq) == "MAAYSTRV"
        assert seqs.idmap == {"A": "seq00000", "B": "seq00001", "C": "seq00002"}
        assert seqs.original_id("seq00002") == "C"

    def test_read_only(self, seqs):
        with pytest.raises(TypeError):
            seqs.cds_seqs["seq00009"] = seqs.cds_seqs["seq00000"]

    def test_auto_format(self):
        s = SequenceData.from_file(_data("three.fasta"), "auto")
        assert len(s.pro_seqs) == 3

    def test_lazy(self):
        records = read_sequences(_data("three.fasta"))
        assert next(records).id == "A"

    def test_single(self):
        with pytest.raises(InsufficientSequencesError):
            SequenceData.from_file(_data("single.fasta"))

    def test_internal_stop(self):
        with pytest.raises(InternalStopCodonError) as e:
            SequenceData.from_file(_data("internal_stop.fasta"))
        assert "A" in str(e.value)

    def test_duplicate(self):
        with pytest.raises(FormatError):
            SequenceData.from_file(_data("duplicate.fasta"))

    def test_unreadable(self, tmpdir):
        with pytest.raises(UnreadableInputError):
            read_sequences(_data("nothing_here.fasta"))
        with pytest.raises(UnreadableInputError):
            read_sequences(None)
        empty = os.path.join(str(tmpdir), "empty.fasta")
        open(empty, "w").close()
        with pytest.raises(UnreadableInputError):
            read_sequences(empty)

    def test_wrong_format(self):
        with pytest.raises(FormatError):
            SequenceData.from_file(_data("three.fasta"), "genbank")

    def test_genbank(self):
        for fmt in ["auto", "genbank"]:
            s = SequenceData.from_file(_data("two.gbk"), fmt)
            assert s.idmap == {"AB000001.1": "seq00000", "AB000002.1": "seq00001"}
            assert str(s.pro_seqs["seq00000"].seq) == "MKAYSTRVL"
            assert str(s.pro_seqs["seq00001"].seq) == "MKAYSTRVL"

    def test_bad_codon(self):
        with pytest.raises(FormatError) as e:
            SequenceData.from_file(_data("bad_codon.fasta"))
        assert "B" in str(e.value)

    def test_stop_codon_only(self):
        with pytest.raises(FormatError) as e:
            SequenceData.from_file(_data("stop_only.fasta"))
        assert "does not encode" in str(e.value)


class TestPal2nal:
    def test_codon_alignment(self, seqs, pro_aln):
        cds_aln = pal2nal(pro_aln, seqs.cds_seqs)
        assert cds_aln.get_alignment_length() == 3 * pro_aln.get_alignment_length()
        assert [s.id for s in cds_aln] == ["seq00002", "seq00000", "seq00001"]
        assert str(cds_aln[0].seq) == "ATGGCAGCTTATTCAACACGTGTC---"
        assert str(cds_aln[1].seq) == "ATGAAAGCTTATTCAACACGTGTCCTC"

    def test_unknown_id(self, seqs, pro_aln):
        pro_aln[0].id = "seq00042"
        with pytest.raises(ProjectionMismatchError):
            pal2nal(pro_aln, seqs.cds_seqs)

    def test_length_mismatch(self, seqs):
        aln = AlignIO.read(_data("pro.aln.fasta"), "fasta")
        aln = aln[:, 0:5]
        with pytest.raises(ProjectionMismatchError):
            pal2nal(aln, seqs.cds_seqs)


class TestPaml:
    def test_parse_codeml(self):
        r = parse_codeml(_data("codeml.out"))
        assert r.version == "4.9j"
        assert r.seqs == ["seq00002", "seq00000", "seq00001"]
        assert r.matrix.n_pairs() == 3
        x = r.matrix.get(1, 2)
        assert x["dN"] == pytest.approx(0.0001)
        assert x["dS"] == pytest.approx(0.1486)
        assert x["omega"] == pytest.approx(0.001)
        assert r.matrix.get(2, 1) == r.matrix.get(1, 2)
        assert r.matrix["dS"].loc["seq00002", "seq00001"] == pytest.approx(0.2208)
        r.check_version()

    def test_unsupported_version(self):
        r = parse_codeml(_data("codeml_315.out"))
        assert r.version == "3.15"
        with pytest.raises(UnsupportedVersionError):
            r.check_version()

    def test_parse_yn00(self):
        r = parse_yn00(_data("yn00.out"))
        assert r.version is None
        assert r.seqs == ["seq00002", "seq00000", "seq00001"]
        x = r.matrix.get(0, 1)
        assert x["dN"] == pytest.approx(0.0512)
        assert x["dS"] == pytest.approx(0.2332)
        assert x["omega"] == pytest.approx(0.2196)
        assert r.matrix.get(1, 2)["dS"] == pytest.approx(0.1530)
        r.check_version()

    def test_control(self):
        c = Codeml(exe="codeml", verbose=True, CodonFreq=1)
        assert c.control["runmode"] == -2
        assert c.control["seqtype"] == 1
        assert c.control["verbose"] == 1
        assert "CodonFreq = 1" in str(c)
        assert "seqfile = codeml.cdsaln" in str(c)
        with pytest.raises(KeyError):
            Codeml(exe="codeml", weighting=1)
        y = Yn00(exe="yn00")
        assert "outfile = yn00.yn00" in str(y)

    def test_unavailable(self, monkeypatch, seqs, pro_aln):
        monkeypatch.delenv("PAMLDIR", raising=False)
        monkeypatch.setattr("kaks.utils.shutil.which", lambda *a, **k: None)
        with pytest.raises(EstimatorUnavailableError):
            Codeml().run(pal2nal(pro_aln, seqs.cds_seqs), ".")

    def test_run(self, tmpdir, seqs, pro_aln):
        tmp = str(tmpdir)
        exe = _script(os.path.join(tmp, "codeml"),
            'cp "{}" "$(sed -n "s/^outfile = //p" "$1")"\n'.format(
                _data("codeml.out")))
        work = tmpdir.mkdir("work")
        r = Codeml(exe=exe).run(pal2nal(pro_aln, seqs.cds_seqs), str(work))
        assert r.seqs == ["seq00002", "seq00000", "seq00001"]
        with open(os.path.join(str(work), "codeml.cdsaln")) as f:
            assert f.readline().split() == ["3", "27"]
            assert f.readline().strip() == "seq00002"

    def test_run_failure(self, tmpdir, seqs, pro_aln):
        tmp = str(tmpdir)
        cds_aln = pal2nal(pro_aln, seqs.cds_seqs)
        exe = _script(os.path.join(tmp, "codeml"), 'echo "boom" >&2\nexit 1\n')
        with pytest.raises(EstimatorRunError) as e:
            Codeml(exe=exe).run(cds_aln, tmp)
        assert "boom" in str(e.value)
        exe = _script(os.path.join(tmp, "yn00"), 'exit 0\n')
        with pytest.raises(EstimatorRunError):
            Yn00(exe=exe).run(cds_aln, tmp)
        exe = _script(os.path.join(tmp, "slow"), 'exec sleep 5\n')
        with pytest.raises(EstimatorRunError):
            Codeml(exe=exe, timeout=0.2).run(cds_aln, tmp)


class TestAligner:
    def test_unavailable(self, monkeypatch, seqs, tmpdir):
        monkeypatch.delenv("CLUSTALDIR", raising=False)
        monkeypatch.setattr("kaks.utils.shutil.which", lambda *a, **k: None)
        with pytest.raises(AlignerUnavailableError) as e:
            Clustalw().align(seqs.pro_seqs, str(tmpdir))
        assert "clustalw" in str(e.value)

    def test_envvar(self, monkeypatch, tmpdir):
        exe = _script(os.path.join(str(tmpdir), "t_coffee"), "exit 0\n")
        monkeypatch.setenv("TCOFFEEDIR", str(tmpdir))
        assert TCoffee().exe == exe

    def test_tcoffee(self, seqs, tmpdir):
        tmp = str(tmpdir)
        exe = _script(os.path.join(tmp, "t_coffee"),
            'for arg in "$@"; do\n'
            '    case "$arg" in -outfile=*) out="${arg#-outfile=}" ;; esac\n'
            'done\n'
            'cp "' + _data("pro.aln.fasta") + '" "$out"\n')
        aln = TCoffee(exe=exe).align(seqs.pro_seqs, tmp)
        assert [s.id for s in aln] == ["seq00002", "seq00000", "seq00001"]
        with open(os.path.join(tmp, "pro.fasta")) as f:
            assert f.read().startswith(">seq00000\nMKAYSTRVL\n")

    def test_clustalw(self, seqs, tmpdir):
        tmp = str(tmpdir)
        exe = _script(os.path.join(tmp, "clustalw2"),
            'echo "$@" > args.txt\n'
            'for arg in "$@"; do\n'
            '    case "$arg" in -OUTFILE=*) out="${arg#-OUTFILE=}" ;; esac\n'
            'done\n'
            'cp "' + _data("pro.aln") + '" "$out"\n')
        aln = Clustalw(exe=exe).align(seqs.pro_seqs, tmp)
        assert [s.id for s in aln] == ["seq00002", "seq00000", "seq00001"]
        assert str(aln[0].seq) == "MAAYSTRV-"
        with open(os.path.join(tmp, "args.txt")) as f:
            args = f.read().split()
        assert "-TYPE=PROTEIN" in args
        assert "-QUIET" in args
        Clustalw(exe=exe, verbose=True).align(seqs.pro_seqs, tmp)
        with open(os.path.join(tmp, "args.txt")) as f:
            assert "-QUIET" not in f.read().split()

    def test_failure(self, seqs, tmpdir):
        tmp = str(tmpdir)
        exe = _script(os.path.join(tmp, "clustalw2"), 'echo "no" >&2\nexit 2\n')
        with pytest.raises(AlignmentFailedError):
            Clustalw(exe=exe).align(seqs.pro_seqs, tmp)
        exe = _script(os.path.join(tmp, "t_coffee"), 'exit 0\n')
        with pytest.raises(AlignmentFailedError):
            TCoffee(exe=exe).align(seqs.pro_seqs, tmp)


class TestAnalysis:
    def _analysis(self, seqs, pro_aln, result, tmpdir):
        tmp = os.path.join(str(tmpdir), "work")
        return KaKsAnalysis(seqs, FakeAligner(pro_aln), FakeEstimator(result),
                            tmp_path=tmp)

    def test_pairs(self, seqs, pro_aln, tmpdir):
        result = parse_codeml(_data("codeml.out"))
        a = self._analysis(seqs, pro_aln, result, tmpdir)
        df = a.run()
        n = len(seqs.cds_seqs)
        assert len(df.index) == n * (n - 1) // 2
        assert list(df.columns) == ["SEQ1", "SEQ2", "Ka", "Ks", "Ka/Ks",
                                    "PROT_PERCENTID", "CDNA_PERCENTID"]
        assert a.aligner.input["seq00002"] == "MAAYSTRV"
        assert [s.id for s in a.estimator.aln] == ["seq00002", "seq00000", "seq00001"]

    def test_reordered_ids(self, seqs, pro_aln, tmpdir):
        # codeml numbers the sequences C, A, B (input order is A, B, C),
        # rows must carry the ids of the matching input records
        result = parse_codeml(_data("codeml.out"))
        df = self._analysis(seqs, pro_aln, result, tmpdir).run()
        rows = [list(r) for r in df.itertuples(index=False)]
        assert [r[:2] for r in rows] == [["C", "A"], ["C", "B"], ["A", "B"]]
        assert rows[2][2] == pytest.approx(0.0001)
        assert rows[2][3] == pytest.approx(0.1486)
        assert rows[2][5:] == ["100.00", "96.30"]
        assert rows[0][5:] == ["87.50", "91.67"]
        assert rows[1][3] == pytest.approx(0.2208)

    def test_estimator_order_differs_from_alignment(self, seqs, pro_aln, tmpdir):
        matrix = RateMatrix(["seq00000", "seq00001", "seq00002"])
        matrix.add("seq00000", "seq00001", dN=0.01, dS=0.1, omega=0.1)
        matrix.add("seq00000", "seq00002", dN=0.02, dS=0.2, omega=0.1)
        matrix.add("seq00001", "seq00002", dN=0.03, dS=0.3, omega=0.1)
        result = PamlResult("codeml", "4.9j", matrix)
        df = self._analysis(seqs, pro_aln, result, tmpdir).run()
        rows = [list(r) for r in df.itertuples(index=False)]
        assert [r[:2] for r in rows] == [["A", "B"], ["A", "C"], ["B", "C"]]
        assert [r[3] for r in rows] == pytest.approx([0.1, 0.2, 0.3])
        assert rows[0][5:] == ["100.00", "96.30"]
        assert rows[1][5:] == ["87.50", "91.67"]
        assert rows[2][5:] == ["87.50", "91.67"]

    def test_identity_range(self, seqs, pro_aln, tmpdir):
        result = parse_yn00(_data("yn00.out"))
        df = self._analysis(seqs, pro_aln, result, tmpdir).run()
        for col in ["PROT_PERCENTID", "CDNA_PERCENTID"]:
            for x in df[col]:
                assert len(x.split(".")[1]) == 2
                assert 0. <= float(x) <= 100.

    def test_unsupported_version(self, seqs, pro_aln, tmpdir):
        result = parse_codeml(_data("codeml_315.out"))
        with pytest.raises(UnsupportedVersionError):
            self._analysis(seqs, pro_aln, result, tmpdir).run()

    def test_report(self, seqs, pro_aln, tmpdir):
        result = parse_codeml(_data("codeml.out"))
        a = self._analysis(seqs, pro_aln, result, tmpdir)
        df = a.run()
        out = os.path.join(str(tmpdir), "out.tsv")
        with open(out, "w") as f:
            write_report(df, f)
        with open(out) as f:
            lines = f.read().strip().split("\n")
        assert lines[0] == "SEQ1\tSEQ2\tKa\tKs\tKa/Ks\tPROT_PERCENTID\tCDNA_PERCENTID"
        assert lines[3] == "A\tB\t0.0001\t0.1486\t0.001\t100.00\t96.30"
        a.remove_tmp()
        assert not os.path.exists(a.tmp_path)

    def test_missing_pair(self, seqs, pro_aln, tmpdir):
        matrix = RateMatrix(["seq00000", "seq00001", "seq00002"])
        matrix.add("seq00000", "seq00001", dN=0.01, dS=0.1, omega=0.1)
        result = PamlResult("yn00", None, matrix)
        df = self._analysis(seqs, pro_aln, result, tmpdir).run()
        out = os.path.join(str(tmpdir), "out.tsv")
        with open(out, "w") as f:
            write_report(df, f)
        with open(out) as f:
            lines = f.read().strip().split("\n")
        assert lines[2].split("\t")[2:5] == ["NA", "NA", "NA"]
