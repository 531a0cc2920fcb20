# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""A minimal model of the host build's task graph.

Keeper only needs a handful of things from the host build:
  * Tasks that are registered by name and created lazily.
  * Providers: values that are computed only when a consumer asks for them,
    and that remember which tasks produce them. Wiring a provider into
    another task's inputs makes the producer a dependency without running it.
  * Deferred configuration of tasks that may not exist yet.
  * Execution in dependency order, skipping tasks whose declared inputs and
    outputs have not changed since the last run.
"""

import logging
import os

from keeper.gyp.util import build_utils
from keeper.gyp.util import md5_check


class UnknownTaskError(Exception):
  pass


class Provider(object):
  """A lazily computed value.

  Args:
    supplier: Callable returning the value, or None when absent.
    producers: Callable returning the tasks that produce the value.
  """

  def __init__(self, supplier, producers=None):
    self._supplier = supplier
    self._producers = producers

  @classmethod
  def Of(cls, value):
    return cls(lambda: value)

  def Get(self):
    value = self._supplier()
    if value is None:
      raise ValueError('Provider has no value.')
    return value

  def GetOrNone(self):
    return self._supplier()

  def GetOrElse(self, default):
    value = self._supplier()
    return default if value is None else value

  def Map(self, func):
    return Provider(lambda: func(self.Get()), self.Producers)

  def FlatMap(self, func):
    def producers():
      return self.Producers() + func(self.Get()).Producers()

    return Provider(lambda: func(self.Get()).GetOrNone(), producers)

  def Producers(self):
    if self._producers is None:
      return []
    return list(self._producers())


class TaskProvider(Provider):
  """Provider of a registered task. Get() creates and configures the task."""

  def __init__(self, container, name):
    super().__init__(lambda: container._Realize(name),
                     lambda: [container._Realize(name)])
    self._container = container
    self.name = name

  def Configure(self, action):
    self._container._AddConfigureAction(self.name, action)


class FileCollection(object):
  """An ordered collection of paths and providers of paths."""

  def __init__(self, *items):
    self._items = list(items)

  def From(self, *items):
    self._items.extend(items)
    return self

  def Files(self):
    ret = []
    for item in self._items:
      for path in _ResolvePaths(item):
        if path not in ret:
          ret.append(path)
    return ret

  def Producers(self):
    ret = []
    for item in self._items:
      if isinstance(item, (Provider, FileCollection)):
        ret.extend(item.Producers())
    return ret

  def IsEmpty(self):
    return not self.Files()


def _ResolvePaths(item):
  if item is None:
    return []
  if isinstance(item, FileCollection):
    return item.Files()
  if isinstance(item, Provider):
    return _ResolvePaths(item.GetOrNone())
  if isinstance(item, (list, tuple)):
    ret = []
    for sub_item in item:
      ret.extend(_ResolvePaths(sub_item))
    return ret
  return [os.fspath(item)]


class Task(object):
  """Base class for tasks.

  Subclasses override TaskAction(), or pass |action|, a callable receiving the
  task. Tasks that declare OutputPaths() take part in up-to-date checking.
  """

  def __init__(self, name, container, action=None):
    self.name = name
    self.container = container
    self.group = None
    self._action = action
    self._do_first = []
    self._do_last = []
    self._depends_on = []

  def __repr__(self):
    return '{}({!r})'.format(type(self).__name__, self.name)

  def DoFirst(self, action):
    self._do_first.insert(0, action)

  def DoLast(self, action):
    self._do_last.append(action)

  def DependsOn(self, *tasks):
    self._depends_on.extend(tasks)

  def OutputProvider(self, getter):
    """Returns a provider of one of this task's outputs."""
    return Provider(lambda: getter(self), lambda: [self])

  def InputProviders(self):
    """Providers and file collections whose producers this task needs."""
    return []

  def InputPaths(self):
    return []

  def InputStrings(self):
    return []

  def OutputPaths(self):
    return []

  def Dependencies(self):
    ret = []
    for dep in self._depends_on:
      ret.extend(dep.Producers() if isinstance(dep, Provider) else [dep])
    for item in self.InputProviders():
      ret.extend(item.Producers())
    # Keep first occurrence, preserving order.
    unique = []
    for task in ret:
      if task is not self and task not in unique:
        unique.append(task)
    return unique

  def TaskAction(self):
    if self._action:
      self._action(self)

  def Execute(self):
    for action in self._do_first:
      action(self)
    self.TaskAction()
    for action in self._do_last:
      action(self)


class TaskContainer(object):
  """Registry of the host build's tasks.

  Args:
    stamp_dir: Directory for up-to-date records of tasks with outputs.
  """

  def __init__(self, stamp_dir):
    self._stamp_dir = stamp_dir
    self._registrations = {}
    self._tasks = {}
    self._pending_actions = {}
    self._rules = []

  def Register(self, name, task_type=Task, configure=None, **kwargs):
    if name in self._registrations:
      raise ValueError('Task already registered: ' + name)
    self._registrations[name] = (task_type, kwargs)
    if configure:
      self._AddConfigureAction(name, configure)
    return TaskProvider(self, name)

  def Names(self):
    return sorted(self._registrations)

  def Named(self, name):
    if name not in self._registrations:
      raise UnknownTaskError('Task with name \'{}\' not found.'.format(name))
    return TaskProvider(self, name)

  def FindByName(self, name):
    if name not in self._registrations:
      return None
    return self._Realize(name)

  def ConfigureEach(self, action, task_type=None, predicate=None):
    """Applies |action| to every matching task, now and when created later.

    Tasks that have not been created are not created by this call.
    """
    rule = (action, task_type, predicate)
    self._rules.append(rule)
    for task in list(self._tasks.values()):
      self._ApplyRule(rule, task)

  def _AddConfigureAction(self, name, action):
    task = self._tasks.get(name)
    if task is not None:
      action(task)
    else:
      self._pending_actions.setdefault(name, []).append(action)

  @staticmethod
  def _ApplyRule(rule, task):
    action, task_type, predicate = rule
    if task_type is not None and not isinstance(task, task_type):
      return
    if predicate is not None and not predicate(task):
      return
    action(task)

  def _Realize(self, name):
    task = self._tasks.get(name)
    if task is not None:
      return task
    task_type, kwargs = self._registrations[name]
    task = task_type(name, self, **kwargs)
    self._tasks[name] = task
    logging.debug('Created task %s', name)
    for action in self._pending_actions.pop(name, []):
      action(task)
    for rule in list(self._rules):
      self._ApplyRule(rule, task)
    return task

  def Execute(self, names):
    """Runs the named tasks and everything they depend on.

    Returns:
      The list of tasks that actually ran.
    """
    top = [self._Realize(self.Named(n).name) for n in names]
    ordered = build_utils.GetSortedTransitiveDependencies(
        top, lambda t: t.Dependencies())
    ran = []
    for task in ordered:
      if self._Run(task):
        ran.append(task)
    return ran

  def _Run(self, task):
    output_paths = task.OutputPaths()
    if not output_paths:
      logging.info('Running %s', task.name)
      task.Execute()
      return True

    record_path = os.path.join(self._stamp_dir, task.name + '.md5.stamp')
    input_paths, missing_paths = _ExpandInputPaths(task.InputPaths())
    input_strings = [type(task).__name__] + list(task.InputStrings())
    # Inputs that contribute no files (e.g. an empty directory) must still
    # invalidate the record when they disappear.
    input_strings += ['missing:' + p for p in missing_paths]
    if md5_check.CallAndRecordIfStale(task.Execute,
                                      record_path=record_path,
                                      input_paths=input_paths,
                                      input_strings=input_strings,
                                      output_paths=output_paths):
      logging.info('Ran %s', task.name)
      return True
    logging.info('%s is up-to-date', task.name)
    return False


def _ExpandInputPaths(paths):
  """Returns (files, missing_paths) for the declared input |paths|.

  Missing inputs are left for the task itself to report.
  """
  files = []
  missing = []
  for path in paths:
    if os.path.isdir(path):
      files.extend(build_utils.FindInDirectory(path))
    elif os.path.exists(path):
      files.append(path)
    else:
      missing.append(path)
  return files, missing
