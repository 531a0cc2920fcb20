#!/usr/bin/env python3
# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.

import io
import os
import pathlib
import shutil
import tempfile
import unittest

import mock  # pylint: disable=import-error

from keeper.gyp import infer_keep_rules
from keeper.gyp.util import build_utils
from keeper.gyp.util import task_graph

_RULES = '-keep class com.example.Api {\n  public void foo();\n}\n'


def _OutputArg(cmd):
  return cmd[cmd.index('--output') + 1]


class InferKeepRulesTest(unittest.TestCase):
  def setUp(self):
    self.tmp_dir = tempfile.mkdtemp()
    self.addCleanup(shutil.rmtree, self.tmp_dir)
    self.r8_jar = self._Touch('r8.jar')
    self.app_jar = self._Touch('app.jar')
    self.test_jar = self._Touch('test.jar')
    self.android_jar = self._Touch('android.jar')
    self.test_base_jar = self._Touch('android.test.base.jar')
    self.output = os.path.join(self.tmp_dir, 'out', 'inferredKeepRules.pro')

    self._patcher = mock.patch.object(build_utils, 'CheckOutput')
    self.check_output = self._patcher.start()
    self.addCleanup(self._patcher.stop)

  def _Touch(self, name):
    path = os.path.join(self.tmp_dir, name)
    pathlib.Path(path).write_bytes(b'')
    return path

  def _Cmd(self):
    self.assertEqual(self.check_output.call_count, 1)
    return self.check_output.call_args[0][0]

  def testPrintUses(self):
    self.check_output.return_value = _RULES
    infer_keep_rules.InferKeepRules(self.r8_jar,
                                    self.app_jar,
                                    self.test_jar,
                                    self.output,
                                    android_jar=self.android_jar,
                                    android_test_base_jar=self.test_base_jar,
                                    jvm_args=['-Dfoo=bar'])
    self.assertEqual(self._Cmd(), [
        build_utils.JAVA_PATH, '-Xmx2G', '-ea', '-Dfoo=bar', '-cp',
        self.r8_jar, 'com.android.tools.r8.PrintUses', '--keeprules',
        self.android_jar + os.pathsep + self.test_base_jar, self.app_jar,
        self.test_jar
    ])
    self.assertEqual(pathlib.Path(self.output).read_text(), _RULES)

  def testPrintUsesWithoutTestBaseJar(self):
    self.check_output.return_value = _RULES
    infer_keep_rules.InferKeepRules(self.r8_jar,
                                    self.app_jar,
                                    self.test_jar,
                                    self.output,
                                    android_jar=self.android_jar,
                                    enable_assertions=False)
    cmd = self._Cmd()
    self.assertNotIn('-ea', cmd)
    self.assertEqual(cmd[-3:], [self.android_jar, self.app_jar, self.test_jar])

  def testPrintUsesEmptyOutput(self):
    self.check_output.return_value = ''
    with self.assertRaises(build_utils.EmptyKeepRulesError) as cm:
      infer_keep_rules.InferKeepRules(self.r8_jar,
                                      self.app_jar,
                                      self.test_jar,
                                      self.output,
                                      android_jar=self.android_jar)
    self.assertIn('exited successfully', str(cm.exception))
    self.assertFalse(os.path.exists(self.output))

  def testTraceReferences(self):

    def run(cmd):
      pathlib.Path(_OutputArg(cmd)).write_text(_RULES)
      return ''

    self.check_output.side_effect = run
    infer_keep_rules.InferKeepRules(self.r8_jar,
                                    self.app_jar,
                                    self.test_jar,
                                    self.output,
                                    android_jar=self.android_jar,
                                    android_test_base_jar=self.test_base_jar,
                                    trace_references=True)
    cmd = self._Cmd()
    main_index = cmd.index(
        'com.android.tools.r8.tracereferences.TraceReferences')
    self.assertEqual(cmd[main_index + 1:], [
        '--keep-rules', '--lib', self.android_jar, '--lib', self.test_base_jar,
        '--target', self.app_jar, '--source', self.test_jar, '--output',
        _OutputArg(cmd), '--map-diagnostics:MissingDefinitionsDiagnostic',
        'error', 'info'
    ])
    self.assertEqual(pathlib.Path(self.output).read_text(), _RULES)

  def testTraceReferencesEmptyOutputIsValid(self):
    self.check_output.return_value = ''
    infer_keep_rules.InferKeepRules(self.r8_jar,
                                    self.app_jar,
                                    self.test_jar,
                                    self.output,
                                    android_jar=self.android_jar,
                                    trace_references=True,
                                    trace_references_args=['--no-check'])
    self.assertEqual(self._Cmd()[-1], '--no-check')
    self.assertEqual(pathlib.Path(self.output).read_text(), '')

  def testDiagnostics(self):
    diagnostics = os.path.join(self.tmp_dir, 'diagnostics')
    self.check_output.return_value = ''
    infer_keep_rules.InferKeepRules(self.r8_jar,
                                    self.app_jar,
                                    self.test_jar,
                                    self.output,
                                    android_jar=self.android_jar,
                                    trace_references=True,
                                    diagnostics_dir=diagnostics)
    lines = pathlib.Path(diagnostics, 'r8_args.txt').read_text().splitlines()
    self.assertEqual(lines[0], build_utils.JAVA_PATH)
    self.assertEqual(_OutputArg(lines), self.output)
    self.assertEqual(len(lines), len(self._Cmd()))

  def testProcessFailure(self):
    self.check_output.side_effect = build_utils.CalledProcessError(
        self.tmp_dir, ['java'], 'Error: boom')
    with self.assertRaises(build_utils.CalledProcessError):
      infer_keep_rules.InferKeepRules(self.r8_jar,
                                      self.app_jar,
                                      self.test_jar,
                                      self.output,
                                      android_jar=self.android_jar)
    self.assertFalse(os.path.exists(self.output))

  def testMissingInput(self):
    os.remove(self.test_jar)
    with self.assertRaises(build_utils.MissingInputError):
      infer_keep_rules.InferKeepRules(self.r8_jar,
                                      self.app_jar,
                                      self.test_jar,
                                      self.output,
                                      android_jar=self.android_jar)
    self.check_output.assert_not_called()

  def _MainArgs(self, *extra):
    return [
        '--r8-jar', self.r8_jar, '--app-jar', self.app_jar, '--test-jar',
        self.test_jar, '--android-jar', self.android_jar,
        '--android-test-base-jar',
        os.path.join(self.tmp_dir, 'missing.jar'), '--output', self.output
    ] + list(extra)

  def testMain(self):
    self.check_output.return_value = _RULES
    depfile = os.path.join(self.tmp_dir, 'out.d')
    ret = infer_keep_rules.main(
        self._MainArgs('--r8-jvm-args', '["-Da=1", "-Db=2"]',
                       '--disable-assertions', '--depfile', depfile))
    self.assertEqual(ret, 0)
    cmd = self._Cmd()
    self.assertEqual(cmd[1:4], ['-Xmx2G', '-Da=1', '-Db=2'])
    # The missing optional jar is dropped.
    self.assertIn(self.android_jar, cmd)
    self.assertNotIn(os.pathsep, cmd[cmd.index('--keeprules') + 1])
    self.assertTrue(os.path.exists(depfile))

  @mock.patch('sys.stderr', new_callable=io.StringIO)
  def testMainFailure(self, stderr):
    self.check_output.side_effect = build_utils.CalledProcessError(
        self.tmp_dir, ['java'], 'Error: boom')
    self.assertEqual(infer_keep_rules.main(self._MainArgs()), 1)
    self.assertIn('Error: boom', stderr.getvalue())

  @mock.patch('sys.stderr', new_callable=io.StringIO)
  def testMainEmptyOutput(self, stderr):
    self.check_output.return_value = ''
    self.assertEqual(infer_keep_rules.main(self._MainArgs()), 1)
    self.assertIn('printed no keep rules', stderr.getvalue())

  def testTraceReferencesArgsRequireTraceReferences(self):
    with mock.patch('sys.stderr', new_callable=io.StringIO):
      with self.assertRaises(SystemExit):
        infer_keep_rules.main(
            self._MainArgs('--trace-references-args=--no-check'))


class InferAndroidTestKeepRulesTaskTest(unittest.TestCase):
  def setUp(self):
    self.tmp_dir = tempfile.mkdtemp()
    self.addCleanup(shutil.rmtree, self.tmp_dir)
    self.tasks = task_graph.TaskContainer(os.path.join(self.tmp_dir, 'stamps'))
    for name in ('r8.jar', 'app.jar', 'test.jar', 'android.jar'):
      pathlib.Path(self.tmp_dir, name).write_bytes(name.encode())

  def _Path(self, name):
    return os.path.join(self.tmp_dir, name)

  def testUpToDate(self):

    def configure(task):
      task.app_jar = task_graph.Provider.Of(self._Path('app.jar'))
      task.test_jar = task_graph.Provider.Of(self._Path('test.jar'))
      task.android_jar = task_graph.Provider.Of(self._Path('android.jar'))
      task.r8_jar = task_graph.Provider.Of(self._Path('r8.jar'))
      task.output_file = self._Path('rules.pro')

    provider = self.tasks.Register(
        'inferReleaseAndroidTestKeepRulesForKeeper',
        task_type=infer_keep_rules.InferAndroidTestKeepRules,
        configure=configure)
    name = provider.name
    with mock.patch.object(build_utils, 'CheckOutput') as check_output:
      check_output.return_value = _RULES
      self.assertEqual(len(self.tasks.Execute([name])), 1)
      self.assertEqual(self.tasks.Execute([name]), [])

      pathlib.Path(self._Path('test.jar')).write_bytes(b'changed')
      self.assertEqual(len(self.tasks.Execute([name])), 1)

      provider.Get().jvm_args = ['-Dnew=1']
      self.assertEqual(len(self.tasks.Execute([name])), 1)
      self.assertEqual(check_output.call_count, 3)
    self.assertEqual(provider.Get().rules.Get(), self._Path('rules.pro'))
    self.assertEqual(provider.Get().group, 'keeper')


if __name__ == '__main__':
  unittest.main()
