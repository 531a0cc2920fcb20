# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""Wires Keeper's tasks into an Android project's task graph.

For every tested app variant that minifies, Keeper registers:
  * jar<AppVariant>ClassesForKeeper: the app's classes jar.
  * jar<TestVariant>ClassesForKeeper: the androidTest classes jar.
  * infer<TestVariant>KeepRulesForKeeper: the inferred keep rules.
and feeds the rules to the app's minify<AppVariant>WithR8 task.

When core library desugaring is enabled, the androidTest variant's desugared
library rules are merged into the app's L8 task as well, so that only the
app's APK ships the desugared library.
"""

import dataclasses
import logging
import os
import shutil

from typing import Callable
from typing import List
from typing import Optional

from keeper import action_helpers
from keeper.gyp import infer_keep_rules
from keeper.gyp import jar_classes
from keeper.gyp.util import android_tasks
from keeper.gyp.util import build_utils
from keeper.gyp.util import r8_utils
from keeper.gyp.util import task_graph
from keeper.gyp.util import variant_utils

INTERMEDIATES_DIR = os.path.join('intermediates', 'keeper')

L8_KEEP_RULES_CONFIGURATIONS = ['-dontobfuscate']


@dataclasses.dataclass
class TraceReferences:
  enabled: bool = False
  arguments: Optional[List[str]] = None

  def Arguments(self):
    if self.arguments is None:
      return list(infer_keep_rules.DEFAULT_TRACE_REFERENCES_ARGS)
    return list(self.arguments)


@dataclasses.dataclass
class KeeperExtension:
  """User-facing configuration of Keeper."""
  automatic_r8_repo_management: bool = True
  r8_jvm_args: List[str] = dataclasses.field(default_factory=list)
  enable_assertions: bool = True
  emit_debug_information: bool = False
  trace_references: TraceReferences = dataclasses.field(
      default_factory=TraceReferences)
  r8_jar: Optional[str] = None
  r8_version: Optional[str] = None
  r8_cache_dir: Optional[str] = None
  variant_filter: Optional[Callable[[variant_utils.VariantFilter],
                                    None]] = None

  def Validate(self):
    if (self.trace_references.arguments is not None
        and not self.trace_references.enabled):
      raise build_utils.ConfigurationError(
          'TraceReferences arguments were set but TraceReferences is not '
          'enabled. Enable it, or remove the arguments to use PrintUses.')


def _IntermediatePath(project, variant_name, *parts):
  return project.BuildPath(INTERMEDIATES_DIR, variant_name, *parts)


def ClearDir(path):
  """Leaves |path| as an empty directory."""
  if not os.path.isdir(path):
    if os.path.lexists(path):
      os.remove(path)
    try:
      os.makedirs(path)
    except OSError as e:
      raise IOError('Could not create empty folder %s' % path) from e
    return

  for name in os.listdir(path):
    child = os.path.join(path, name)
    if os.path.isdir(child) and not os.path.islink(child):
      shutil.rmtree(child)
    else:
      os.remove(child)


def ApplyGeneratedRules(tasks, app_variant_name, rules_provider,
                        test_proguard_files):
  """Adds the inferred rules to the app variant's minify task.

  Neither the minify task nor the infer task is created by this call. Since
  |rules_provider| remembers the infer task, it becomes a dependency of the
  minify task.
  """
  target_name = variant_utils.InterpolateR8TaskName(app_variant_name)

  def patch(task):
    logging.debug('%s: Patching task \'%s\' with inferred androidTest '
                  'proguard rules', build_utils.TAG, task.name)
    task.configuration_files.From(rules_provider)
    task.configuration_files.From(test_proguard_files)

  tasks.ConfigureEach(patch,
                      task_type=android_tasks.ProguardConfigurableTask,
                      predicate=lambda t: t.name == target_name)


def _CollectRulesFiles(paths):
  ret = []
  for path in paths:
    if os.path.isdir(path):
      ret.extend(build_utils.FindInDirectory(path))
    elif os.path.exists(path):
      ret.append(path)
  return ret


def WritePatchedL8Rules(output_path, rules_files, configurations):
  sections = []
  for path in _CollectRulesFiles(rules_files):
    with open(path) as f:
      sections.append('# Source: {}\n{}'.format(os.path.abspath(path),
                                                f.read()))
  extra = '\n'.join(['# Source: extra configurations'] + list(configurations))
  with action_helpers.atomic_output(output_path, mode='w') as f:
    f.write('\n'.join(sections) + '\n' + extra)


def ConfigureL8(project, extension, variant_pairs):
  """Makes the app's L8 task the only one producing the desugared library.

  * The test variant's desugared library keep rules (a side output of its R8
    task) are added to the app's L8 task.
  * Obfuscation of the desugared library is disabled, so that names in the
    app and test APKs match.
  * The test variant's L8 output is cleared.
  """
  if not project.core_library_desugaring_enabled:
    return
  tasks = project.tasks
  registered = set(tasks.Names())
  for test_variant, app_variant in variant_pairs:
    names = (variant_utils.InterpolateR8TaskName(test_variant.name),
             variant_utils.InterpolateL8TaskName(app_variant.name),
             variant_utils.InterpolateL8TaskName(test_variant.name))
    absent = [n for n in names if n not in registered]
    if absent:
      logging.debug('%s Not patching L8 for %s, no task named %s',
                    build_utils.TAG, app_variant.name, ', '.join(absent))
      continue
    input_files = tasks.Named(
        variant_utils.InterpolateR8TaskName(test_variant.name)).FlatMap(
            lambda t: t.project_output_keep_rules)

    def patch_app_l8(task, input_files=input_files):
      task.keep_rules_files.From(input_files)
      task.keep_rules_configurations[:] = L8_KEEP_RULES_CONFIGURATIONS
      diagnostics_dir = project.BuildPath(INTERMEDIATES_DIR, 'l8-diagnostics',
                                          task.name)
      if extension.emit_debug_information:
        task.DoFirst(lambda t: WritePatchedL8Rules(
            os.path.join(diagnostics_dir, 'patchedL8Rules.pro'),
            t.keep_rules_files.Files(), t.keep_rules_configurations))

    tasks.Named(variant_utils.InterpolateL8TaskName(
        app_variant.name)).Configure(patch_app_l8)
    tasks.Named(variant_utils.InterpolateL8TaskName(
        test_variant.name)).Configure(
            lambda task: task.DoLast(lambda t: ClearDir(t.desugar_lib_dex)))


def _RegisterAppJar(project, extension, app_variant):

  def configure(task):
    task.emit_debug_info = extension.emit_debug_information
    task.classes_dirs.From(app_variant.classes_dirs)
    task.artifact_jars.From(app_variant.runtime_classes_jars)
    task.diagnostics_output_dir = _IntermediatePath(project, app_variant.name,
                                                    'diagnostics')
    task.archive_file = _IntermediatePath(project, app_variant.name,
                                          'classes.jar')
    task.app_jars_file = _IntermediatePath(project, app_variant.name,
                                           'jars.txt')

  return project.tasks.Register(
      'jar{}ClassesForKeeper'.format(build_utils.Capitalize(app_variant.name)),
      task_type=jar_classes.VariantClasspathJar,
      configure=configure)


def _RegisterTestJar(project, extension, test_variant, app_jars_provider):

  def configure(task):
    task.emit_debug_info = extension.emit_debug_information
    task.app_jars_input = app_jars_provider
    task.classes_dirs.From(test_variant.classes_dirs)
    task.artifact_jars.From(test_variant.runtime_classes_jars)
    task.diagnostics_output_dir = _IntermediatePath(project, test_variant.name,
                                                    'diagnostics')
    task.archive_file = _IntermediatePath(project, test_variant.name,
                                          'classes.jar')

  return project.tasks.Register(
      'jar{}ClassesForKeeper'.format(build_utils.Capitalize(test_variant.name)),
      task_type=jar_classes.AndroidTestVariantClasspathJar,
      configure=configure)


def _R8JarProvider(extension):
  resolved = []

  def resolve():
    if not resolved:
      version = extension.r8_version or r8_utils.DefaultVersion(
          extension.trace_references.enabled)
      logging.debug('%s r8 version: %s', build_utils.TAG, version)
      resolved.append(
          r8_utils.ResolveR8Jar(
              version,
              trace_references_enabled=extension.trace_references.enabled,
              automatic_r8_repo_management=extension.
              automatic_r8_repo_management,
              cache_dir=extension.r8_cache_dir,
              r8_jar=extension.r8_jar))
    return resolved[0]

  return task_graph.Provider(resolve)


def _RegisterInferTask(project, extension, test_variant, app_jar_task,
                       test_jar_task, r8_jar_provider):
  android_jar = task_graph.Provider(
      lambda: variant_utils.ResolveAndroidEmbeddedJar(
          project, 'android.jar', check_if_existing=True))

  def android_test_base_jar():
    path = variant_utils.ResolveAndroidEmbeddedJar(
        project,
        os.path.join('optional', 'android.test.base.jar'),
        check_if_existing=False)
    return path if os.path.exists(path) else None

  def configure(task):
    task.app_jar = app_jar_task.FlatMap(lambda t: t.archive)
    task.test_jar = test_jar_task.FlatMap(lambda t: t.archive)
    task.android_jar = android_jar
    task.android_test_base_jar = task_graph.Provider(android_test_base_jar)
    task.r8_jar = r8_jar_provider
    task.trace_references_enabled = extension.trace_references.enabled
    task.trace_references_args = extension.trace_references.Arguments()
    task.jvm_args = list(extension.r8_jvm_args)
    task.enable_assertions = extension.enable_assertions
    task.emit_debug_info = extension.emit_debug_information
    task.output_file = _IntermediatePath(project, test_variant.name,
                                         'inferredKeepRules.pro')
    task.diagnostics_output_dir = _IntermediatePath(project, test_variant.name,
                                                    'diagnostics')

  return project.tasks.Register(
      'infer{}KeepRulesForKeeper'.format(
          build_utils.Capitalize(test_variant.name)),
      task_type=infer_keep_rules.InferAndroidTestKeepRules,
      configure=configure)


def Apply(project, extension=None):
  """Applies Keeper to |project|.

  Returns:
    A dict of app variant name -> provider of its infer task.
  """
  extension = extension or KeeperExtension()
  variant_utils.CheckHostVersion(project)
  extension.Validate()

  variant_pairs = variant_utils.FilterApplicableVariants(
      project, extension.variant_filter)
  r8_jar_provider = _R8JarProvider(extension)
  ret = {}
  for test_variant, app_variant in variant_pairs:
    app_jar_task = _RegisterAppJar(project, extension, app_variant)
    test_jar_task = _RegisterTestJar(project, extension, test_variant,
                                     app_jar_task.FlatMap(lambda t: t.app_jars))
    infer_task = _RegisterInferTask(project, extension, test_variant,
                                    app_jar_task, test_jar_task,
                                    r8_jar_provider)
    ApplyGeneratedRules(project.tasks, app_variant.name,
                        infer_task.FlatMap(lambda t: t.rules),
                        test_variant.runtime_proguard_files)
    ret[app_variant.name] = infer_task

  ConfigureL8(project, extension, variant_pairs)
  return ret
