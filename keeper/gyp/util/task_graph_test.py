#!/usr/bin/env python3
# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.

import os
import pathlib
import shutil
import tempfile
import unittest

from keeper.gyp.util import task_graph


class _CopyTask(task_graph.Task):
  """Copies |src| to |dst|, counting its runs."""

  def __init__(self, name, container, action=None):
    super().__init__(name, container, action=action)
    self.src = None
    self.dst = None
    self.runs = 0
    self.output = self.OutputProvider(lambda t: t.dst)

  def InputProviders(self):
    return [self.src] if isinstance(self.src, task_graph.Provider) else []

  def _Src(self):
    if isinstance(self.src, task_graph.Provider):
      return self.src.Get()
    return self.src

  def InputPaths(self):
    return [self._Src()]

  def OutputPaths(self):
    return [self.dst]

  def TaskAction(self):
    self.runs += 1
    shutil.copy(self._Src(), self.dst)


class ProviderTest(unittest.TestCase):
  def testOf(self):
    self.assertEqual(task_graph.Provider.Of('a').Get(), 'a')
    self.assertEqual(task_graph.Provider.Of('a').Map(str.upper).Get(), 'A')
    self.assertEqual(task_graph.Provider.Of('a').Producers(), [])

  def testAbsent(self):
    provider = task_graph.Provider(lambda: None)
    self.assertIsNone(provider.GetOrNone())
    self.assertEqual(provider.GetOrElse('b'), 'b')
    with self.assertRaises(ValueError):
      provider.Get()

  def testLazy(self):
    calls = []
    provider = task_graph.Provider(lambda: calls.append(1) or 'x')
    mapped = provider.Map(lambda v: v + 'y')
    self.assertEqual(calls, [])
    self.assertEqual(mapped.Get(), 'xy')
    self.assertEqual(calls, [1])


class FileCollectionTest(unittest.TestCase):
  def testFiles(self):
    files = task_graph.FileCollection('a.jar')
    files.From(task_graph.Provider.Of('b.jar'), ['c.jar', 'a.jar'], None,
               pathlib.PurePosixPath('d.jar'),
               task_graph.Provider(lambda: None))
    self.assertEqual(files.Files(), ['a.jar', 'b.jar', 'c.jar', 'd.jar'])
    self.assertFalse(files.IsEmpty())
    self.assertTrue(task_graph.FileCollection().IsEmpty())


class TaskContainerTest(unittest.TestCase):
  def setUp(self):
    self.tmp_dir = tempfile.mkdtemp()
    self.addCleanup(shutil.rmtree, self.tmp_dir)
    self.tasks = task_graph.TaskContainer(os.path.join(self.tmp_dir, 'stamps'))

  def _Path(self, name):
    return os.path.join(self.tmp_dir, name)

  def testRegisterIsLazy(self):
    created = []
    provider = self.tasks.Register('foo', configure=created.append)
    self.assertEqual(created, [])
    self.assertEqual(self.tasks.Names(), ['foo'])
    task = provider.Get()
    self.assertEqual(created, [task])
    self.assertIs(self.tasks.Named('foo').Get(), task)

  def testRegisterTwice(self):
    self.tasks.Register('foo')
    with self.assertRaises(ValueError):
      self.tasks.Register('foo')

  def testNamedUnknown(self):
    with self.assertRaises(task_graph.UnknownTaskError):
      self.tasks.Named('missing')
    self.assertIsNone(self.tasks.FindByName('missing'))

  def testConfigureEach(self):
    seen = []
    self.tasks.Register('a', task_type=_CopyTask)
    self.tasks.Register('b')
    self.tasks.ConfigureEach(lambda t: seen.append(t.name),
                             task_type=_CopyTask)
    # Not realized by ConfigureEach.
    self.assertEqual(seen, [])
    self.tasks.FindByName('b')
    self.tasks.FindByName('a')
    self.assertEqual(seen, ['a'])

  def testConfigureEachAppliesToRealizedTasks(self):
    seen = []
    self.tasks.Register('a').Get()
    self.tasks.ConfigureEach(lambda t: seen.append(t.name),
                             predicate=lambda t: t.name == 'a')
    self.assertEqual(seen, ['a'])

  def testConfigureAfterRealized(self):
    provider = self.tasks.Register('a')
    task = provider.Get()
    provider.Configure(lambda t: setattr(t, 'group', 'keeper'))
    self.assertEqual(task.group, 'keeper')

  def testExecuteOrderAndActions(self):
    order = []
    first = self.tasks.Register('first',
                                action=lambda t: order.append(t.name))
    second = self.tasks.Register('second',
                                 action=lambda t: order.append(t.name))

    def configure(task):
      task.DependsOn(first)
      task.DoFirst(lambda t: order.append('before'))
      task.DoLast(lambda t: order.append('after'))

    second.Configure(configure)
    ran = self.tasks.Execute(['second'])
    self.assertEqual(order, ['first', 'before', 'second', 'after'])
    self.assertEqual([t.name for t in ran], ['first', 'second'])

  def testExecuteSkipsUpToDate(self):
    pathlib.Path(self._Path('src.txt')).write_text('1')

    def configure_copy(task):
      task.src = self._Path('src.txt')
      task.dst = self._Path('mid.txt')

    copy = self.tasks.Register('copy', task_type=_CopyTask,
                               configure=configure_copy)

    def configure_copy2(task):
      task.src = copy.FlatMap(lambda t: t.output)
      task.dst = self._Path('dst.txt')

    self.tasks.Register('copy2', task_type=_CopyTask, configure=configure_copy2)

    ran = self.tasks.Execute(['copy2'])
    self.assertEqual([t.name for t in ran], ['copy', 'copy2'])
    self.assertEqual(pathlib.Path(self._Path('dst.txt')).read_text(), '1')

    self.assertEqual(self.tasks.Execute(['copy2']), [])

    pathlib.Path(self._Path('src.txt')).write_text('2')
    ran = self.tasks.Execute(['copy2'])
    self.assertEqual([t.name for t in ran], ['copy', 'copy2'])
    self.assertEqual(pathlib.Path(self._Path('dst.txt')).read_text(), '2')

    os.remove(self._Path('dst.txt'))
    ran = self.tasks.Execute(['copy2'])
    self.assertEqual([t.name for t in ran], ['copy2'])


if __name__ == '__main__':
  unittest.main()
