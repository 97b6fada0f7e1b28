#!/usr/bin/python3
"""
pairwise_kaks - Copyright (C) 2018 Arthur Zwaenepoel

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

Contact: arzwa@psb.vib-ugent.be
"""
import click
import logging
import sys
from rich.console import Console
from rich.logging import RichHandler
from kaks import __version__
from kaks.errors import KaKsError


@click.command(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--input', '-i', 'input_file', default=None,
    help="cDNA sequence file  [required]")
@click.option('--format', '-f', 'fmt', default='fasta', show_default=True,
    help="sequence file format (any Bio.SeqIO format, or 'auto' to guess "
         "from the file extension)")
@click.option('--output', '-o', default=None, type=click.Path(dir_okay=False),
    help="output file, default = standard output")
@click.option('--msa', default='clustalw', show_default=True,
    help="alignment program, clustalw or tcoffee")
@click.option('--kaks', default='codeml', show_default=True,
    help="Ka/Ks program, codeml or yn00")
@click.option('--verbose', '-v', is_flag=True,
    help="debug logging, also makes the external programs verbose")
@click.option('--tmpdir', '-t', default=None,
    help="tmp directory (a fresh one is made and removed by default)")
@click.option('--keep_tmp', is_flag=True,
    help="don't remove the fresh tmp directory")
@click.option('--timeout', default=None, type=float,
    help="seconds to wait for each external program, default = no limit")
@click.option('--strict', is_flag=True,
    help="exit with a non-zero status on errors")
@click.version_option(__version__, '--version')
def cli(verbose, strict, **kwargs):
    """
    Pairwise Ka/Ks for a set of coding sequences.

    Translates the cDNA sequences, aligns the proteins (Clustalw or T-Coffee),
    projects the protein alignment back onto the codons and estimates Ka, Ks
    and Ka/Ks for every pair of sequences with PAML (codeml or yn00). Writes
    a tab separated table with one row per pair, including the protein and
    cDNA percent identity.

    Requires clustalw (or t_coffee) and codeml (or yn00), either in the PATH
    or in the directories named by CLUSTALDIR, TCOFFEEDIR and PAMLDIR.

    Errors are reported on standard error, but the exit status is 0 unless
    --strict is given.

    Example:

        pairwise_kaks -i cds.fasta -o cds.kaks.tsv --msa tcoffee --kaks yn00
    """
    logging.basicConfig(
        format='%(message)s',
        handlers=[RichHandler(console=Console(stderr=True))],
        datefmt='%H:%M:%S',
        level="DEBUG" if verbose else "INFO")
    logging.info("This is pairwise_kaks v{}".format(__version__))
    try:
        _kaks(verbose=verbose, **kwargs)
    except KaKsError as e:
        logging.error(str(e))
        sys.exit(e.exit_code if strict else 0)


def _kaks(input_file, fmt, output, msa, kaks, verbose, tmpdir, keep_tmp,
        timeout):
    from kaks.core import SequenceData, KaKsAnalysis, write_report
    from kaks.alignment import AlignerKind, get_aligner
    from kaks.codeml import EstimatorKind, get_estimator
    aligner_kind = AlignerKind.from_name(msa)
    estimator_kind = EstimatorKind.from_name(kaks)
    seqs = SequenceData.from_file(input_file, fmt)
    aligner = get_aligner(aligner_kind, verbose=verbose, timeout=timeout)
    estimator = get_estimator(estimator_kind, verbose=verbose, timeout=timeout)
    analysis = KaKsAnalysis(seqs, aligner, estimator, tmp_path=tmpdir)
    logging.info("tmpdir = {}".format(analysis.tmp_path))
    try:
        df = analysis.run()
    finally:
        if tmpdir is None and not keep_tmp:
            analysis.remove_tmp()
    if output:
        with open(output, "w") as f:
            write_report(df, f)
        logging.info("Saved {} pairs to {}".format(len(df.index), output))
    else:
        write_report(df, sys.stdout)
    return df


if __name__ == '__main__':
    cli()
