# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""The host build's variant model, as seen by Keeper."""

import dataclasses
import json
import logging
import os
import re

from typing import Callable
from typing import List
from typing import Optional

from keeper.gyp.util import build_utils
from keeper.gyp.util import task_graph

MIN_HOST_VERSION = (6, 0)


@dataclasses.dataclass
class BuildType:
  name: str
  minify_enabled: bool = False


@dataclasses.dataclass
class TestVariant:
  """An androidTest variant, compiled against its tested app variant."""
  name: str
  # Directories of compiled .class files (javac and kotlinc outputs).
  classes_dirs: List[str] = dataclasses.field(default_factory=list)
  # Classes jars of the resolved runtime dependency graph.
  runtime_classes_jars: List[str] = dataclasses.field(default_factory=list)
  # Keep rules shipped by the runtime dependencies.
  runtime_proguard_files: List[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class AppVariant:
  name: str
  build_type: BuildType
  flavors: List[str] = dataclasses.field(default_factory=list)
  classes_dirs: List[str] = dataclasses.field(default_factory=list)
  runtime_classes_jars: List[str] = dataclasses.field(default_factory=list)
  runtime_proguard_files: List[str] = dataclasses.field(default_factory=list)
  test_variant: Optional[TestVariant] = None


class AndroidProject(object):
  """An Android application module and its tasks."""

  def __init__(self,
               build_dir,
               sdk_dir,
               compile_sdk_version,
               variants,
               core_library_desugaring_enabled=False,
               host_version=None):
    self.build_dir = build_dir
    self.sdk_dir = sdk_dir
    self.compile_sdk_version = compile_sdk_version
    self.variants = list(variants)
    self.core_library_desugaring_enabled = core_library_desugaring_enabled
    self.host_version = host_version
    self.tasks = task_graph.TaskContainer(
        os.path.join(build_dir, 'intermediates', 'task_stamps'))

  def BuildPath(self, *parts):
    return os.path.join(self.build_dir, *parts)

  def TestVariants(self):
    """Yields (test_variant, app_variant) for every tested app variant."""
    for app_variant in self.variants:
      if app_variant.test_variant is not None:
        yield app_variant.test_variant, app_variant


class VariantFilter(object):
  """Passed to the user's variant filter to decide whether to ignore a variant.

  Example:
    def variant_filter(variant):
      variant.SetIgnore(variant.name != 'release')
  """

  def __init__(self, variant):
    self.name = variant.name
    self.build_type = variant.build_type
    self.flavors = list(variant.flavors)
    self.ignored = False

  def SetIgnore(self, ignore):
    self.ignored = bool(ignore)


def ParseHostVersion(version):
  """'7.0-rc-1' -> (7, 0)"""
  parts = []
  for part in str(version).split('.'):
    m = re.match(r'\d+', part)
    if not m:
      break
    parts.append(int(m.group(0)))
  return tuple(parts)


def CheckHostVersion(project):
  if project.host_version is None:
    return
  if ParseHostVersion(project.host_version) < MIN_HOST_VERSION:
    raise build_utils.ConfigurationError(
        'Keeper requires Gradle {} or later, found {}.'.format(
            '.'.join(str(v) for v in MIN_HOST_VERSION), project.host_version))


def InterpolateR8TaskName(variant_name):
  return 'minify{}WithR8'.format(build_utils.Capitalize(variant_name))


def InterpolateL8TaskName(variant_name):
  return 'l8DexDesugarLib{}'.format(build_utils.Capitalize(variant_name))


def IsVariantIgnored(app_variant,
                     variant_filter: Optional[Callable[[VariantFilter], None]]):
  if variant_filter is None:
    return False
  logging.debug('%s Resolving ignored status for android variant %s',
                build_utils.TAG, app_variant.name)
  variant = VariantFilter(app_variant)
  variant_filter(variant)
  logging.debug('%s Variant \'%s\' ignored? %s', build_utils.TAG,
                app_variant.name, variant.ignored)
  return variant.ignored


_MINIFY_DISABLED_MESSAGE = """\
Keeper is configured to generate keep rules for the "{name}" build variant, \
but the variant doesn't have minification enabled, so the keep rules will \
have no effect. To fix this warning, either avoid applying the Keeper plugin \
when android.testBuildType = {build_type}, or use a variant filter to \
exclude "{name}" from keeper:
  def variant_filter(variant):
    variant.SetIgnore(variant.name != <the variant to test>)
"""


def FilterApplicableVariants(project, variant_filter=None):
  """Returns the (test_variant, app_variant) pairs Keeper should process.

  Pairs ignored by |variant_filter| are dropped silently. Pairs whose app
  variant does not minify are dropped with a warning.
  """
  ret = []
  for test_variant, app_variant in project.TestVariants():
    if IsVariantIgnored(app_variant, variant_filter):
      continue
    if not app_variant.build_type.minify_enabled:
      logging.warning(
          _MINIFY_DISABLED_MESSAGE.format(
              name=app_variant.name, build_type=app_variant.build_type.name))
      continue
    ret.append((test_variant, app_variant))
  return ret


def ResolveAndroidEmbeddedJar(project, path, check_if_existing):
  """Returns the path of a jar shipped in the compile SDK's platform dir."""
  if not project.compile_sdk_version:
    raise build_utils.ConfigurationError('No compileSdkVersion found')
  jar_path = os.path.join(project.sdk_dir, 'platforms',
                          project.compile_sdk_version, path)
  if check_if_existing and not os.path.exists(jar_path):
    raise build_utils.ConfigurationError(
        'No {} found! Expected to find it at: {}'.format(
            path, os.path.abspath(jar_path)))
  return jar_path


def _ResolvePaths(base_dir, paths):
  return [p if os.path.isabs(p) else os.path.join(base_dir, p) for p in paths]


def _ParseTestVariant(base_dir, obj):
  return TestVariant(
      name=obj['name'],
      classes_dirs=_ResolvePaths(base_dir, obj.get('classes_dirs', [])),
      runtime_classes_jars=_ResolvePaths(base_dir,
                                         obj.get('runtime_classes_jars', [])),
      runtime_proguard_files=_ResolvePaths(
          base_dir, obj.get('runtime_proguard_files', [])))


def _ParseAppVariant(base_dir, obj):
  test_variant = None
  if obj.get('test_variant'):
    test_variant = _ParseTestVariant(base_dir, obj['test_variant'])
  return AppVariant(
      name=obj['name'],
      build_type=BuildType(name=obj.get('build_type', obj['name']),
                           minify_enabled=bool(obj.get('minify_enabled'))),
      flavors=list(obj.get('flavors', [])),
      classes_dirs=_ResolvePaths(base_dir, obj.get('classes_dirs', [])),
      runtime_classes_jars=_ResolvePaths(base_dir,
                                         obj.get('runtime_classes_jars', [])),
      runtime_proguard_files=_ResolvePaths(
          base_dir, obj.get('runtime_proguard_files', [])),
      test_variant=test_variant)


def LoadBuildConfig(path):
  """Creates an AndroidProject from a JSON build config written by the host.

  Relative paths in the config are relative to the config's directory.
  """
  with open(path) as f:
    obj = json.load(f)
  base_dir = os.path.dirname(os.path.abspath(path))
  try:
    return AndroidProject(
        build_dir=_ResolvePaths(base_dir, [obj['build_dir']])[0],
        sdk_dir=obj['sdk_dir'],
        compile_sdk_version=obj.get('compile_sdk_version'),
        variants=[_ParseAppVariant(base_dir, v) for v in obj['variants']],
        core_library_desugaring_enabled=bool(
            obj.get('core_library_desugaring_enabled')),
        host_version=obj.get('host_version'))
  except KeyError as e:
    raise build_utils.ConfigurationError(
        'Build config {} is missing key {}'.format(path, e)) from None

