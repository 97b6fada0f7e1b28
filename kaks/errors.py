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

--------------------------------------------------------------------------------
Exceptions raised by the pairwise Ka/Ks pipeline. All of them are fatal: the
command line interface logs the message and stops. The `exit_code` is only
used when the CLI runs with ``--strict``.
--------------------------------------------------------------------------------
"""


class KaKsError(Exception):
    exit_code = 1


class UnreadableInputError(KaKsError):
    exit_code = 2


class FormatError(KaKsError):
    exit_code = 3


class InternalStopCodonError(KaKsError):
    exit_code = 4


class InsufficientSequencesError(KaKsError):
    exit_code = 5


class UnknownBackendError(KaKsError):
    exit_code = 6


class AlignerUnavailableError(KaKsError):
    exit_code = 7


class AlignmentFailedError(KaKsError):
    exit_code = 8


class ProjectionMismatchError(KaKsError):
    exit_code = 9


class EstimatorUnavailableError(KaKsError):
    exit_code = 10


class EstimatorRunError(KaKsError):
    exit_code = 11


class UnsupportedVersionError(KaKsError):
    exit_code = 12
