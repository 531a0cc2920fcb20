#!/usr/bin/env python3
# Copyright 2023 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.

import os
import pathlib
import shutil
import tempfile
import unittest
import zipfile

from keeper import zip_helpers


def _WriteZip(path, entries):
  with zipfile.ZipFile(path, 'w') as zip_file:
    for name, data in entries:
      zip_file.writestr(name, data)


class ZipHelpersTest(unittest.TestCase):
  def setUp(self):
    self.tmp_dir = tempfile.mkdtemp()
    self.addCleanup(shutil.rmtree, self.tmp_dir)

  def _Path(self, *parts):
    return os.path.join(self.tmp_dir, *parts)

  def test_add_to_zip_hermetic(self):
    with zipfile.ZipFile(self._Path('out.zip'), 'w') as z:
      zip_helpers.add_to_zip_hermetic(z, 'a/B.class', data=b'\xca\xfe')
    with zipfile.ZipFile(self._Path('out.zip')) as z:
      info = z.getinfo('a/B.class')
      self.assertEqual(info.date_time, zip_helpers.HERMETIC_DATE_TIME)
      self.assertEqual(info.external_attr, 0o644 << 16)
      self.assertEqual(z.read(info), b'\xca\xfe')

  def test_add_files_to_zip_sorted(self):
    classes = self._Path('classes')
    os.makedirs(os.path.join(classes, 'b'))
    os.makedirs(os.path.join(classes, 'a'))
    for name in ('b/Z.class', 'a/Y.class', 'X.class'):
      pathlib.Path(classes, name).write_bytes(name.encode())
    inputs = [os.path.join(classes, 'b/Z.class'),
              os.path.join(classes, 'X.class'),
              os.path.join(classes, 'a/Y.class')]

    with zipfile.ZipFile(self._Path('out.zip'), 'w') as z:
      added = zip_helpers.add_files_to_zip(inputs, z, base_dir=classes)
    self.assertEqual(added, {'X.class', 'a/Y.class', 'b/Z.class'})
    with zipfile.ZipFile(self._Path('out.zip')) as z:
      self.assertEqual(z.namelist(), ['X.class', 'a/Y.class', 'b/Z.class'])

  def test_merge_zips_first_wins(self):
    _WriteZip(self._Path('one.jar'), [('Foo.class', b'one'),
                                      ('META-INF/', b'')])
    _WriteZip(self._Path('two.jar'), [('Foo.class', b'two'),
                                      ('Bar.class', b'two')])

    with zipfile.ZipFile(self._Path('out.jar'), 'w') as z:
      zip_helpers.merge_zips(z, [self._Path('one.jar'), self._Path('two.jar')])
    with zipfile.ZipFile(self._Path('out.jar')) as z:
      self.assertEqual(z.namelist(), ['Foo.class', 'Bar.class'])
      self.assertEqual(z.read('Foo.class'), b'one')

  def test_merge_zips_respects_added_names(self):
    _WriteZip(self._Path('dep.jar'), [('Foo.class', b'dep')])
    with zipfile.ZipFile(self._Path('out.jar'), 'w') as z:
      zip_helpers.add_to_zip_hermetic(z, 'Foo.class', data=b'own')
      added = zip_helpers.merge_zips(z, [self._Path('dep.jar')],
                                     added_names={'Foo.class'})
    self.assertEqual(added, {'Foo.class'})
    with zipfile.ZipFile(self._Path('out.jar')) as z:
      self.assertEqual(z.read('Foo.class'), b'own')

  def test_merge_zips_non_canonical_names(self):
    _WriteZip(self._Path('dep.jar'), [('a//B.class', b'first'),
                                      ('a/./B.class', b'second'),
                                      ('../Evil.class', b'x'),
                                      ('D.class', b'd')])
    with zipfile.ZipFile(self._Path('out.jar'), 'w') as z:
      added = zip_helpers.merge_zips(z, [self._Path('dep.jar')])
    self.assertEqual(added, {'a/B.class', 'D.class'})
    with zipfile.ZipFile(self._Path('out.jar')) as z:
      self.assertEqual(z.namelist(), ['a/B.class', 'D.class'])
      self.assertEqual(z.read('a/B.class'), b'first')


if __name__ == '__main__':
  unittest.main()
