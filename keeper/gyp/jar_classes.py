#!/usr/bin/env python3
#
# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""Packages a variant's classes and runtime jars into a single classes.jar."""

import argparse
import logging
import os
import sys
import zipfile

from keeper import action_helpers
from keeper import zip_helpers
from keeper.gyp.util import build_utils
from keeper.gyp.util import task_graph

KEEPER_GROUP = 'keeper'


def _WriteLines(path, lines):
  with action_helpers.atomic_output(path, mode='w') as f:
    f.writelines(line + '\n' for line in lines)


def CreateClassesJar(output_path,
                     classes_dirs,
                     jars,
                     *,
                     excluded_jars=(),
                     app_jars_path=None,
                     diagnostics_dir=None):
  """Writes a deterministic jar of |classes_dirs| followed by |jars|.

  Class files are added first, sorted by their path in the archive. Entries
  of |jars| are then merged in order. The first copy of a duplicated entry
  wins.

  Args:
    output_path: The jar to write.
    classes_dirs: Directories of compiled .class files.
    jars: Runtime classes jars.
    excluded_jars: Jars to leave out, e.g. those already in the app's jar.
    app_jars_path: If set, the absolute paths of the packaged jars are written
        here, one per line.
    diagnostics_dir: If set, classpath.txt is written here.

  Returns:
    The jars that were packaged.
  """
  build_utils.CheckInputsExist(classes_dirs, 'class directories')
  build_utils.CheckInputsExist(jars, 'jars')

  excluded_real_paths = {os.path.realpath(p) for p in excluded_jars}
  kept_jars = []
  skipped_jars = []
  for jar in jars:
    if os.path.realpath(jar) in excluded_real_paths:
      skipped_jars.append(jar)
    else:
      kept_jars.append(jar)

  with action_helpers.atomic_output(output_path) as f:
    with zipfile.ZipFile(f.name, 'w') as out_zip:
      added_names = set()
      for classes_dir in classes_dirs:
        class_files = build_utils.FindInDirectory(classes_dir, '*.class')
        zip_helpers.add_files_to_zip(class_files,
                                     out_zip,
                                     base_dir=classes_dir,
                                     added_names=added_names)
      zip_helpers.merge_zips(out_zip, kept_jars, added_names=added_names)
  logging.debug('%s Wrote %s (%d dirs, %d jars, %d excluded)', build_utils.TAG,
                output_path, len(classes_dirs), len(kept_jars),
                len(skipped_jars))

  if app_jars_path:
    _WriteLines(app_jars_path, [os.path.abspath(p) for p in kept_jars])

  if diagnostics_dir:
    lines = ['# Class directories'] + list(classes_dirs)
    lines += ['# Jars'] + kept_jars
    if skipped_jars:
      lines += ['# Excluded jars'] + skipped_jars
    _WriteLines(os.path.join(diagnostics_dir, 'classpath.txt'), lines)

  return kept_jars


class VariantClasspathJar(task_graph.Task):
  """jar<Variant>ClassesForKeeper: the classes jar of an app variant."""

  def __init__(self, name, container, action=None):
    super().__init__(name, container, action=action)
    self.group = KEEPER_GROUP
    self.classes_dirs = task_graph.FileCollection()
    self.artifact_jars = task_graph.FileCollection()
    self.archive_file = None
    self.app_jars_file = None
    self.diagnostics_output_dir = None
    self.emit_debug_info = False
    self.archive = self.OutputProvider(lambda t: t.archive_file)
    self.app_jars = self.OutputProvider(lambda t: t.app_jars_file)

  def InputProviders(self):
    return [self.classes_dirs, self.artifact_jars]

  def InputPaths(self):
    return self.classes_dirs.Files() + self.artifact_jars.Files()

  def InputStrings(self):
    # Order matters to the produced jar, and directories may be empty.
    return (['dirs'] + self.classes_dirs.Files() + ['jars'] +
            self.artifact_jars.Files() + [self.emit_debug_info])

  def OutputPaths(self):
    return [p for p in (self.archive_file, self.app_jars_file) if p]

  def ExcludedJars(self):
    return []

  def TaskAction(self):
    CreateClassesJar(
        self.archive_file,
        self.classes_dirs.Files(),
        self.artifact_jars.Files(),
        excluded_jars=self.ExcludedJars(),
        app_jars_path=self.app_jars_file,
        diagnostics_dir=(self.diagnostics_output_dir
                         if self.emit_debug_info else None))


class AndroidTestVariantClasspathJar(VariantClasspathJar):
  """jar<TestVariant>ClassesForKeeper.

  Jars already packaged for the tested app variant are left out, so that
  their classes are seen as part of the app.
  """

  def __init__(self, name, container, action=None):
    super().__init__(name, container, action=action)
    self.app_jars_input = task_graph.Provider(lambda: None)

  def InputProviders(self):
    return super().InputProviders() + [self.app_jars_input]

  def InputPaths(self):
    ret = super().InputPaths()
    app_jars = self.app_jars_input.GetOrNone()
    if app_jars:
      ret.append(app_jars)
    return ret

  def ExcludedJars(self):
    app_jars = self.app_jars_input.GetOrNone()
    if not app_jars:
      return []
    return action_helpers.read_lines(app_jars)


def _ParseArgs(args):
  args = build_utils.ExpandFileArgs(args)
  parser = argparse.ArgumentParser()
  action_helpers.add_depfile_arg(parser)
  parser.add_argument('--output', required=True, help='Path to output jar.')
  parser.add_argument('--classes-dirs',
                      action='append',
                      help='List of directories of .class files.')
  parser.add_argument('--jars',
                      action='append',
                      help='List of runtime classes jars.')
  parser.add_argument('--app-jars-output',
                      help='Where to list the jars that were packaged.')
  parser.add_argument('--app-jars-file',
                      help='A list written by --app-jars-output. Jars in it '
                      'are not packaged.')
  parser.add_argument('--diagnostics-dir',
                      help='Write classpath.txt to this directory.')
  options = parser.parse_args(args)
  options.classes_dirs = action_helpers.parse_list_arg(options.classes_dirs)
  options.jars = action_helpers.parse_list_arg(options.jars)
  return options


def main(args):
  build_utils.InitLogging('JAR_CLASSES_DEBUG')
  options = _ParseArgs(args)

  excluded_jars = []
  if options.app_jars_file:
    excluded_jars = action_helpers.read_lines(options.app_jars_file)

  try:
    CreateClassesJar(options.output,
                     options.classes_dirs,
                     options.jars,
                     excluded_jars=excluded_jars,
                     app_jars_path=options.app_jars_output,
                     diagnostics_dir=options.diagnostics_dir)
  except build_utils.MissingInputError as e:
    sys.stderr.write(str(e) + '\n')
    return 1

  if options.depfile:
    inputs = list(options.jars)
    for classes_dir in options.classes_dirs:
      inputs += build_utils.FindInDirectory(classes_dir, '*.class')
    if options.app_jars_file:
      inputs = inputs + [options.app_jars_file]
    action_helpers.write_depfile(options.depfile, options.output, inputs=inputs)
  return 0


if __name__ == '__main__':
  sys.exit(main(sys.argv[1:]))
