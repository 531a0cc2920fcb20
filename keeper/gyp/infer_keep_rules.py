#!/usr/bin/env python3
#
# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""Infers the keep rules an app needs for its instrumentation tests to run.

R8 is asked which symbols of the app's classes jar are used by the test's
classes jar, and prints them as keep rules.
"""

import argparse
import logging
import os
import sys

from keeper import action_helpers
from keeper.gyp.util import build_utils
from keeper.gyp.util import r8_utils
from keeper.gyp.util import task_graph

KEEPER_GROUP = 'keeper'

DEFAULT_TRACE_REFERENCES_ARGS = [
    '--map-diagnostics:MissingDefinitionsDiagnostic', 'error', 'info'
]

_EMPTY_OUTPUT_MESSAGE = """\
R8 PrintUses exited successfully but printed no keep rules for {test_jar}.
The tool did not fail; it found nothing in {app_jar} that {test_jar} uses.
This usually means one of:
  * the app and test jars were passed in the wrong order,
  * both jars are empty, or the test classes were not compiled,
  * the test classes really use nothing from the app. In that case Keeper
    is not needed for this variant; exclude it with a variant filter.
"""


def _R8Cmd(r8_jar, trace_references, jvm_args, enable_assertions):
  cmd = build_utils.JavaCmd(xmx='2G',
                            enable_assertions=enable_assertions,
                            jvm_args=jvm_args)
  cmd += ['-cp', r8_jar, r8_utils.MainClass(trace_references)]
  return cmd


def CreatePrintUsesArgs(app_jar, test_jar, libs):
  # PrintUses prints what its first program jar defines that the second uses.
  return ['--keeprules', os.pathsep.join(libs), app_jar, test_jar]


def CreateTraceReferencesArgs(app_jar, test_jar, libs, output_path,
                              extra_args=None):
  args = ['--keep-rules']
  for path in libs:
    args += ['--lib', path]
  args += ['--target', app_jar, '--source', test_jar, '--output', output_path]
  if extra_args is None:
    extra_args = DEFAULT_TRACE_REFERENCES_ARGS
  return args + list(extra_args)


def _WriteDiagnostics(diagnostics_dir, cmd):
  path = os.path.join(diagnostics_dir, 'r8_args.txt')
  with action_helpers.atomic_output(path, mode='w') as f:
    f.writelines(arg + '\n' for arg in cmd)


def InferKeepRules(r8_jar,
                   app_jar,
                   test_jar,
                   output_path,
                   *,
                   android_jar,
                   android_test_base_jar=None,
                   trace_references=False,
                   trace_references_args=None,
                   jvm_args=None,
                   enable_assertions=True,
                   diagnostics_dir=None):
  """Runs R8 and writes the inferred keep rules to |output_path|.

  Args:
    r8_jar: Path to R8.
    app_jar: Classes jar of the app. Only its symbols are kept.
    test_jar: Classes jar of the instrumentation tests.
    output_path: Where to write the rules.
    android_jar: The compile SDK's android.jar.
    android_test_base_jar: android.test.base.jar, when the SDK has one.
    trace_references: Use TraceReferences instead of PrintUses.
    trace_references_args: Extra arguments for TraceReferences.
    jvm_args: Extra JVM arguments.
    enable_assertions: Whether to run R8 with -ea.
    diagnostics_dir: If set, the R8 command line is written here.

  Raises:
    EmptyKeepRulesError: PrintUses succeeded but printed nothing.
    CalledProcessError: R8 failed.
  """
  libs = [android_jar]
  if android_test_base_jar:
    libs.append(android_test_base_jar)
  build_utils.CheckInputsExist([app_jar, test_jar] + libs, 'R8 inputs')
  base_cmd = _R8Cmd(r8_jar, trace_references, jvm_args, enable_assertions)

  if not trace_references:
    cmd = base_cmd + CreatePrintUsesArgs(app_jar, test_jar, libs)
    if diagnostics_dir:
      _WriteDiagnostics(diagnostics_dir, cmd)
    logging.debug('%s Running PrintUses for %s', build_utils.TAG, test_jar)
    stdout = build_utils.CheckOutput(cmd)
    if not stdout.strip():
      raise build_utils.EmptyKeepRulesError(
          _EMPTY_OUTPUT_MESSAGE.format(app_jar=app_jar, test_jar=test_jar))
    with action_helpers.atomic_output(output_path, mode='w') as f:
      f.write(stdout)
    return

  if diagnostics_dir:
    _WriteDiagnostics(
        diagnostics_dir, base_cmd + CreateTraceReferencesArgs(
            app_jar, test_jar, libs, output_path, trace_references_args))
  logging.debug('%s Running TraceReferences for %s', build_utils.TAG, test_jar)
  # TraceReferences writes nothing when there are no rules.
  with action_helpers.atomic_output(output_path) as f:
    cmd = base_cmd + CreateTraceReferencesArgs(app_jar, test_jar, libs, f.name,
                                               trace_references_args)
    build_utils.CheckOutput(cmd)


class InferAndroidTestKeepRules(task_graph.Task):
  """infer<TestVariant>KeepRulesForKeeper."""

  def __init__(self, name, container, action=None):
    super().__init__(name, container, action=action)
    self.group = KEEPER_GROUP
    self.app_jar = task_graph.Provider(lambda: None)
    self.test_jar = task_graph.Provider(lambda: None)
    self.android_jar = task_graph.Provider(lambda: None)
    self.android_test_base_jar = task_graph.Provider(lambda: None)
    self.r8_jar = task_graph.Provider(lambda: None)
    self.output_file = None
    self.diagnostics_output_dir = None
    self.emit_debug_info = False
    self.trace_references_enabled = False
    self.trace_references_args = list(DEFAULT_TRACE_REFERENCES_ARGS)
    self.jvm_args = []
    self.enable_assertions = True
    self.rules = self.OutputProvider(lambda t: t.output_file)

  def InputProviders(self):
    return [self.app_jar, self.test_jar]

  def InputPaths(self):
    ret = [self.app_jar.Get(), self.test_jar.Get(), self.android_jar.Get()]
    android_test_base_jar = self.android_test_base_jar.GetOrNone()
    if android_test_base_jar:
      ret.append(android_test_base_jar)
    ret.append(self.r8_jar.Get())
    return ret

  def InputStrings(self):
    return [
        'trace_references={}'.format(self.trace_references_enabled),
        'assertions={}'.format(self.enable_assertions),
        'debug={}'.format(self.emit_debug_info),
        'jvm_args',
    ] + list(self.jvm_args) + ['trace_references_args'
                               ] + list(self.trace_references_args)

  def OutputPaths(self):
    return [self.output_file]

  def TaskAction(self):
    InferKeepRules(self.r8_jar.Get(),
                   self.app_jar.Get(),
                   self.test_jar.Get(),
                   self.output_file,
                   android_jar=self.android_jar.Get(),
                   android_test_base_jar=self.android_test_base_jar.GetOrNone(),
                   trace_references=self.trace_references_enabled,
                   trace_references_args=self.trace_references_args,
                   jvm_args=self.jvm_args,
                   enable_assertions=self.enable_assertions,
                   diagnostics_dir=(self.diagnostics_output_dir
                                    if self.emit_debug_info else None))


def _ParseArgs(args):
  args = build_utils.ExpandFileArgs(args)
  parser = argparse.ArgumentParser()
  action_helpers.add_depfile_arg(parser)
  parser.add_argument('--r8-jar', required=True, help='Path to R8 jar.')
  parser.add_argument('--app-jar',
                      required=True,
                      help='Classes jar of the app variant.')
  parser.add_argument('--test-jar',
                      required=True,
                      help='Classes jar of the androidTest variant.')
  parser.add_argument('--android-jar',
                      required=True,
                      help='android.jar of the compile SDK.')
  parser.add_argument('--android-test-base-jar',
                      help='optional/android.test.base.jar of the compile '
                      'SDK. Ignored when missing.')
  parser.add_argument('--output', required=True, help='Rules file to write.')
  parser.add_argument('--trace-references',
                      action='store_true',
                      help='Use TraceReferences rather than PrintUses.')
  parser.add_argument('--trace-references-args',
                      action='append',
                      help='List of extra TraceReferences arguments.')
  parser.add_argument('--r8-jvm-args',
                      action='append',
                      help='List of extra JVM arguments.')
  parser.add_argument('--disable-assertions',
                      action='store_false',
                      dest='enable_assertions',
                      help='Run R8 without -ea.')
  parser.add_argument('--diagnostics-dir',
                      help='Write the R8 command line to this directory.')
  options = parser.parse_args(args)

  if options.trace_references_args is None:
    options.trace_references_args = list(DEFAULT_TRACE_REFERENCES_ARGS)
  else:
    if not options.trace_references:
      parser.error('--trace-references-args requires --trace-references')
    options.trace_references_args = action_helpers.parse_list_arg(
        options.trace_references_args)
  options.r8_jvm_args = action_helpers.parse_list_arg(options.r8_jvm_args)
  if (options.android_test_base_jar
      and not os.path.exists(options.android_test_base_jar)):
    options.android_test_base_jar = None
  return options


def main(args):
  build_utils.InitLogging('INFER_KEEP_RULES_DEBUG')
  options = _ParseArgs(args)

  try:
    InferKeepRules(options.r8_jar,
                   options.app_jar,
                   options.test_jar,
                   options.output,
                   android_jar=options.android_jar,
                   android_test_base_jar=options.android_test_base_jar,
                   trace_references=options.trace_references,
                   trace_references_args=options.trace_references_args,
                   jvm_args=options.r8_jvm_args,
                   enable_assertions=options.enable_assertions,
                   diagnostics_dir=options.diagnostics_dir)
  except build_utils.CalledProcessError as e:
    # The command line is long and hides the actual error.
    sys.stderr.write(e.output)
    return 1
  except (build_utils.EmptyKeepRulesError, build_utils.MissingInputError) as e:
    sys.stderr.write(str(e) + '\n')
    return 1

  if options.depfile:
    inputs = [options.r8_jar, options.app_jar, options.test_jar,
              options.android_jar]
    if options.android_test_base_jar:
      inputs.append(options.android_test_base_jar)
    action_helpers.write_depfile(options.depfile, options.output, inputs=inputs)
  return 0


if __name__ == '__main__':
  sys.exit(main(sys.argv[1:]))
