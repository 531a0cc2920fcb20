# Copyright 2023 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""Helper functions for Keeper's build actions."""

import contextlib
import filecmp
import json
import os
import pathlib
import posixpath
import shutil
import tempfile

from typing import Optional
from typing import Sequence


@contextlib.contextmanager
def atomic_output(path, mode='w+b', only_if_changed=True):
  """Prevent half-written files and dirty mtimes for unchanged files.

  Keeper's outputs (classes jars, jars.txt, inferred rules) are inputs to
  later steps that are skipped when their inputs are unchanged, so an output
  with identical contents must keep its mtime.

  Args:
    path: Path to the final output file, which will be written atomically.
    mode: The mode to open the file in (str).
    only_if_changed: Whether to maintain the mtime if the file has not changed.
  Returns:
    A Context Manager that yields a NamedTemporaryFile instance. On exit, the
    manager will check if the file contents is different from the destination
    and if so, move it into place.

  Example:
    with action_helpers.atomic_output(rules_path) as tmp_file:
      subprocess.check_call(['r8', '--output', tmp_file.name])
  """
  # Create in same directory to ensure same filesystem when moving.
  dirname = os.path.dirname(path) or '.'
  os.makedirs(dirname, exist_ok=True)
  with tempfile.NamedTemporaryFile(mode,
                                   suffix=os.path.basename(path),
                                   dir=dirname,
                                   delete=False) as f:
    try:
      yield f

      # File should be closed before comparison/move.
      f.close()
      if not (only_if_changed and os.path.exists(path)
              and filecmp.cmp(f.name, path, shallow=False)):
        shutil.move(f.name, path)
    finally:
      f.close()
      if os.path.exists(f.name):
        os.unlink(f.name)


def add_depfile_arg(parser):
  parser.add_argument('--depfile',
                      help='Path to a ninja-style depfile to write.')


def write_depfile(depfile_path: str,
                  first_output: str,
                  inputs: Optional[Sequence[str]] = None) -> None:
  """Writes a ninja-style depfile.

  Args:
    depfile_path: Path to file to write.
    first_output: Path of the first output of the action.
    inputs: List of inputs to add to depfile.
  """
  assert depfile_path != first_output
  assert not isinstance(inputs, str)  # Easy mistake to make

  def _process_path(path):
    if os.path.sep != posixpath.sep:
      path = str(pathlib.Path(path).as_posix())
    return path.replace(' ', '\\ ')

  sb = []
  sb.append(_process_path(first_output))
  if inputs:
    # Sort and uniquify to ensure file is hermetic.
    # One path per line to keep it human readable.
    sb.append(': \\\n ')
    sb.append(' \\\n '.join(sorted(_process_path(p) for p in set(inputs))))
  else:
    sb.append(': ')
  sb.append('\n')

  path = pathlib.Path(depfile_path)
  path.parent.mkdir(parents=True, exist_ok=True)
  path.write_text(''.join(sb))


def parse_list_arg(value):
  """Converts a list-valued command-line parameter into a list.

  Conversions handled:
    * None -> []
    * '' -> []
    * 'asdf' -> ['asdf']
    * '["a", "b"]' -> ['a', 'b']
    * ['["a", "b"]', 'c'] -> ['a', 'b', 'c']  (action='append')

  This allows hosts to pass either a single path or a JSON list, which is
  also what build_utils.ExpandFileArgs() substitutes for list values.
  """
  # Convert None to [].
  if not value:
    return []
  # Convert a list of lists to a flattened list.
  if isinstance(value, list):
    ret = []
    for arg in value:
      ret.extend(parse_list_arg(arg))
    return ret
  if value.startswith('['):
    parsed = json.loads(value)
    assert isinstance(parsed, list), 'Expected a list: ' + value
    return [str(v) for v in parsed]
  # Convert a single string value to a list.
  return [value]


def read_lines(path):
  """Returns the non-empty lines of a newline-separated list file."""
  with open(path) as f:
    return [line.strip() for line in f if line.strip()]
