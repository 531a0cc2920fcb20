# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""Host-owned Android task types that Keeper patches.

The host supplies their actions; Keeper only reads and extends the
properties declared here.
"""

from keeper.gyp.util import task_graph


class ProguardConfigurableTask(task_graph.Task):
  """A minifier task that accepts proguard configuration files."""

  def __init__(self, name, container, action=None):
    super().__init__(name, container, action=action)
    self.configuration_files = task_graph.FileCollection()

  def InputProviders(self):
    return [self.configuration_files]

  def InputPaths(self):
    return self.configuration_files.Files()


class R8Task(ProguardConfigurableTask):
  """minify<Variant>WithR8.

  Args:
    project_output_keep_rules: Path of the desugared library keep rules that
        R8 writes as a side output, if the host enabled them.
  """

  def __init__(self, name, container, action=None,
               project_output_keep_rules=None):
    super().__init__(name, container, action=action)
    self.project_output_keep_rules_path = project_output_keep_rules
    self.project_output_keep_rules = self.OutputProvider(
        lambda t: t.project_output_keep_rules_path)


class L8DexDesugarLibTask(task_graph.Task):
  """l8DexDesugarLib<Variant>: dexes the desugared standard library.

  Args:
    desugar_lib_dex: Output directory of the desugared library dex files.
  """

  def __init__(self, name, container, action=None, desugar_lib_dex=None):
    super().__init__(name, container, action=action)
    self.keep_rules_files = task_graph.FileCollection()
    self.keep_rules_configurations = []
    self.desugar_lib_dex = desugar_lib_dex

  def InputProviders(self):
    return [self.keep_rules_files]
