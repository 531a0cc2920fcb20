# Copyright 2023 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""Helper functions for writing hermetic .jar files."""

import logging
import os
import pathlib
import posixpath
import zipfile

# Same fixed timestamp for every entry so that unchanged inputs produce
# byte-identical jars.
HERMETIC_DATE_TIME = (2001, 1, 1, 0, 0, 0)


def add_to_zip_hermetic(zip_file, zip_path, *, src_path=None, data=None,
                        compress=None):
  """Adds a file to the given ZipFile with a hard-coded modified time.

  Args:
    zip_file: ZipFile instance to add the file to.
    zip_path: Destination path within the zip file.
    src_path: Path of the source file. Mutually exclusive with |data|.
    data: File data as bytes or str.
    compress: Whether to enable compression. Default is taken from ZipFile
        constructor.
  """
  assert (src_path is None) != (data is None), (
      '|src_path| and |data| are mutually exclusive.')
  zipinfo = zipfile.ZipInfo(filename=zip_path)
  zipinfo.external_attr = 0o644 << 16
  zipinfo.date_time = HERMETIC_DATE_TIME

  # Filenames can contain backslashes, but it is more likely that we've
  # forgotten to use forward slashes as a directory separator.
  assert '\\' not in zip_path, 'zip_path should not contain \\: ' + zip_path
  assert not posixpath.isabs(zip_path), 'Absolute zip path: ' + zip_path
  assert not zip_path.startswith('..'), 'Should not start with ..: ' + zip_path
  assert posixpath.normpath(zip_path) == zip_path, (
      f'Non-canonical zip_path: {zip_path} vs: {posixpath.normpath(zip_path)}')

  if src_path:
    with open(src_path, 'rb') as f:
      data = f.read()

  # zipfile will deflate even when it makes the file bigger. To avoid
  # growing files, disable compression at an arbitrary cut off point.
  if len(data) < 16:
    compress = False

  # None converts to ZIP_STORED, when passed explicitly rather than the
  # default passed to the ZipFile constructor.
  compress_type = zip_file.compression
  if compress is not None:
    compress_type = zipfile.ZIP_DEFLATED if compress else zipfile.ZIP_STORED
  zip_file.writestr(zipinfo, data, compress_type)


def add_files_to_zip(inputs, output, *, base_dir=None, compress=None,
                     added_names=None):
  """Adds a list of files to a zip file.

  Args:
    inputs: A list of paths to zip, or a list of (zip_path, fs_path) tuples.
    output: ZipFile instance to add files to.
    base_dir: Prefix to strip from inputs.
    compress: Whether to compress
    added_names: Set of names already in |output|. Inputs whose zip path is
        in the set are skipped, and added paths are inserted into it.

  Returns:
    The set of zip paths present after adding.
  """
  if base_dir is None:
    base_dir = '.'
  if added_names is None:
    added_names = set(output.namelist())
  input_tuples = []
  for tup in inputs:
    if isinstance(tup, str):
      src_path = tup
      zip_path = os.path.relpath(src_path, base_dir)
      # Zip files always use / as path separator.
      if os.path.sep != posixpath.sep:
        zip_path = str(pathlib.Path(zip_path).as_posix())
      tup = (zip_path, src_path)
    input_tuples.append(tup)

  # Sort by zip path to ensure stable zip ordering.
  input_tuples.sort(key=lambda tup: tup[0])

  for zip_path, fs_path in input_tuples:
    if zip_path in added_names:
      logging.debug('Skipping duplicate entry %s from %s', zip_path, fs_path)
      continue
    add_to_zip_hermetic(output, zip_path, src_path=fs_path, compress=compress)
    added_names.add(zip_path)
  return added_names


def _canonical_entry_name(name):
  """Returns |name| normalized for the output, or None if it cannot be added.

  Third-party jars sometimes carry names such as "a//B.class" or "a/./B.class".
  """
  if '\\' in name or posixpath.isabs(name):
    return None
  ret = posixpath.normpath(name)
  if ret == '.' or ret.startswith('..'):
    return None
  return ret


def merge_zips(output, input_zips, compress=None, added_names=None):
  """Combines all files from |input_zips| into |output|.

  Duplicate entries are resolved by keeping the first one seen, whether it
  came from |output| itself or an earlier input. Dependency jars routinely
  carry copies of the same classes, and the tools consuming the result
  tolerate that, so a conflicting duplicate is logged and never raised.

  Args:
    output: ZipFile instance to add files to.
    input_zips: Iterable of paths to zip files to merge.
    compress: Overrides compression setting from origin zip entries.
    added_names: Set of names already in |output|. Updated in place.

  Returns:
    The set of zip paths present after merging.
  """
  assert not isinstance(input_zips, str)  # Easy mistake to make.
  if added_names is None:
    added_names = set(output.namelist())

  for in_file in input_zips:
    with zipfile.ZipFile(in_file, 'r') as in_zip:
      for info in in_zip.infolist():
        # Ignore directories.
        if info.is_dir():
          continue
        dst_name = _canonical_entry_name(info.filename)
        if dst_name is None:
          logging.debug('Skipping entry %s of %s', info.filename, in_file)
          continue

        if dst_name in added_names:
          logging.debug('Keeping first copy of %s, ignoring the one in %s',
                        dst_name, in_file)
          continue

        if compress is not None:
          compress_entry = compress
        else:
          compress_entry = info.compress_type != zipfile.ZIP_STORED
        add_to_zip_hermetic(output,
                            dst_name,
                            data=in_zip.read(info),
                            compress=compress_entry)
        added_names.add(dst_name)
  return added_names
