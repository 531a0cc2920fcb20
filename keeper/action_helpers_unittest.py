#!/usr/bin/env python3
# Copyright 2023 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.

import os
import pathlib
import shutil
import tempfile
import unittest

from keeper import action_helpers


class ActionHelpersTest(unittest.TestCase):
  def setUp(self):
    self.tmp_dir = tempfile.mkdtemp()
    self.addCleanup(shutil.rmtree, self.tmp_dir)

  def test_atomic_output(self):
    path = os.path.join(self.tmp_dir, 'rules.pro')

    # Create the file.
    with action_helpers.atomic_output(path, mode='w') as f:
      f.write('-keep class Foo')
    self.assertEqual(pathlib.Path(path).read_text(), '-keep class Foo')
    os.utime(path, (1, 1))

    # Same contents: mtime is kept.
    with action_helpers.atomic_output(path, mode='w') as f:
      f.write('-keep class Foo')
    self.assertEqual(os.path.getmtime(path), 1)

    # Different contents.
    with action_helpers.atomic_output(path, mode='w') as f:
      f.write('-keep class Bar')
    self.assertEqual(pathlib.Path(path).read_text(), '-keep class Bar')
    self.assertNotEqual(os.path.getmtime(path), 1)

    # Only the final file is left behind.
    self.assertEqual(os.listdir(self.tmp_dir), ['rules.pro'])

  def test_atomic_output_exception(self):
    path = os.path.join(self.tmp_dir, 'sub', 'classes.jar')
    with self.assertRaises(ValueError):
      with action_helpers.atomic_output(path) as f:
        f.write(b'partial')
        raise ValueError()
    self.assertFalse(os.path.exists(path))
    self.assertEqual(os.listdir(os.path.dirname(path)), [])

  def test_write_depfile(self):
    depfile = os.path.join(self.tmp_dir, 'out.d')
    action_helpers.write_depfile(depfile, 'out.jar', ['b.jar', 'a b.jar'])
    self.assertEqual(
        pathlib.Path(depfile).read_text(),
        'out.jar: \\\n a\\ b.jar \\\n b.jar\n')

  def test_write_depfile_no_inputs(self):
    depfile = os.path.join(self.tmp_dir, 'out.d')
    action_helpers.write_depfile(depfile, 'out.jar')
    self.assertEqual(pathlib.Path(depfile).read_text(), 'out.jar: \n')

  def test_parse_list_arg(self):
    self.assertEqual(action_helpers.parse_list_arg(None), [])
    self.assertEqual(action_helpers.parse_list_arg(''), [])
    self.assertEqual(action_helpers.parse_list_arg('a.jar'), ['a.jar'])
    self.assertEqual(action_helpers.parse_list_arg('["a", "b"]'), ['a', 'b'])
    self.assertEqual(action_helpers.parse_list_arg(['["a", "b"]', 'c']),
                     ['a', 'b', 'c'])

  def test_read_lines(self):
    path = os.path.join(self.tmp_dir, 'jars.txt')
    pathlib.Path(path).write_text('/a.jar\n\n/b.jar\n')
    self.assertEqual(action_helpers.read_lines(path), ['/a.jar', '/b.jar'])


if __name__ == '__main__':
  unittest.main()
