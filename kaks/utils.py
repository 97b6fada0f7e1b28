"""
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
"""
import os
import shutil
import logging
import subprocess


def find_executable(names, envvar=None):
    """
    Locate an external program. When `envvar` is set in the environment, the
    directory it names is searched first, otherwise (or when nothing is found
    there) the system PATH is used.

    :param names: list or string of candidate executable name(s)
    :param envvar: environment variable holding an installation directory
    :return: full path to the executable or None
    """
    if type(names) == str:
        names = [names]
    directory = os.environ.get(envvar) if envvar else None
    for name in names:
        if directory:
            for path in (directory, os.path.join(directory, "bin")):
                exe = shutil.which(name, path=path)
                if exe:
                    return exe
        exe = shutil.which(name)
        if exe:
            return exe
    logging.debug("None of {} found (searched {} and PATH)".format(
        ", ".join(names), envvar or "-"))
    return None


def log_subprocess(program, process):
    """
    Log output from a subprocess call to debug log stream

    :param program: program name
    :param process: completed subprocess object
    """
    logging.debug('{} stdout:\n'.format(program) +
                  process.stdout.decode('utf-8', errors='replace'))
    logging.debug('{} stderr:\n'.format(program) +
                  process.stderr.decode('utf-8', errors='replace'))


def run_command(program, cmd, cwd=None, timeout=None):
    """
    Run an external program and wait for it to exit. Nothing is caught here,
    a missing executable raises `FileNotFoundError` and an exceeded timeout
    raises `subprocess.TimeoutExpired`.

    :param program: program name used in the logs
    :param cmd: command as a list
    :param cwd: working directory for the program
    :param timeout: seconds to wait, `None` waits indefinitely
    :return: completed subprocess object
    """
    logging.debug(" ".join(cmd))
    out = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                         cwd=cwd, timeout=timeout)
    log_subprocess(program, out)
    return out


def tail(process, n=10):
    """Last `n` lines of the (stderr, else stdout) output of a process."""
    text = process.stderr.decode('utf-8', errors='replace').strip()
    if not text:
        text = process.stdout.decode('utf-8', errors='replace').strip()
    return "\n".join(text.split("\n")[-n:])


def write_fasta(seq_dict, output_file):
    """
    Write a sequence dictionary to a fasta file.

    :param seq_dict: dictionary with IDs as keys and `SeqRecord` objects or
        strings as values
    :param output_file: output file name
    """
    with open(output_file, 'w') as o:
        for key, val in seq_dict.items():
            o.write('>' + key + '\n')
            o.write(str(getattr(val, "seq", val)) + '\n')
    return output_file
