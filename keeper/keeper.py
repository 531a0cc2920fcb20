#!/usr/bin/env python3
#
# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""Infers androidTest keep rules for the variants of an Android project.

Example:
  keeper --build-config out/keeper_build_config.json --variant release \
      --trace-references
"""

import argparse
import logging
import sys

from keeper import action_helpers
from keeper import keeper_plugin
from keeper.gyp.util import build_utils
from keeper.gyp.util import variant_utils


def _ParseArgs(args):
  args = build_utils.ExpandFileArgs(args)
  parser = argparse.ArgumentParser(description=__doc__.split('\n')[0])
  parser.add_argument('--build-config',
                      required=True,
                      help='JSON description of the project\'s variants.')
  parser.add_argument('--variant',
                      action='append',
                      dest='variants',
                      help='App variant to infer rules for. Repeatable. '
                      'Defaults to every applicable variant.')
  parser.add_argument('--r8-jar', help='Use this R8 jar.')
  parser.add_argument('--r8-version',
                      help='R8 version to resolve. The default depends on '
                      'the protocol.')
  parser.add_argument('--r8-cache-dir',
                      help='Maven-layout directory for downloaded R8 jars.')
  parser.add_argument('--no-automatic-r8-repo-management',
                      action='store_false',
                      dest='automatic_r8_repo_management',
                      help='Do not add the R8 releases repository.')
  parser.add_argument('--r8-jvm-arg',
                      action='append',
                      dest='r8_jvm_args',
                      help='Extra JVM argument for R8. Repeatable.')
  parser.add_argument('--disable-assertions',
                      action='store_false',
                      dest='enable_assertions',
                      help='Run R8 without -ea.')
  parser.add_argument('--emit-debug-information',
                      action='store_true',
                      help='Write diagnostics next to the outputs.')
  protocol_group = parser.add_mutually_exclusive_group()
  protocol_group.add_argument('--trace-references',
                              action='store_true',
                              dest='trace_references',
                              help='Use R8\'s TraceReferences tool.')
  protocol_group.add_argument('--print-uses',
                              action='store_false',
                              dest='trace_references',
                              help='Use R8\'s legacy PrintUses tool '
                              '(default).')
  parser.set_defaults(trace_references=False)
  parser.add_argument('--trace-references-args',
                      action='append',
                      help='List of extra TraceReferences arguments.')
  parser.add_argument('--ignored-variants',
                      action='append',
                      help='List of globs of app variants to ignore.')
  options = parser.parse_args(args)
  options.r8_jvm_args = action_helpers.parse_list_arg(options.r8_jvm_args)
  options.ignored_variants = action_helpers.parse_list_arg(
      options.ignored_variants)
  if options.trace_references_args is not None:
    options.trace_references_args = action_helpers.parse_list_arg(
        options.trace_references_args)
  return options


def CreateExtension(options):
  variant_filter = None
  if options.ignored_variants:
    globs = options.ignored_variants

    def variant_filter(variant):
      variant.SetIgnore(build_utils.MatchesGlob(variant.name, globs))

  return keeper_plugin.KeeperExtension(
      automatic_r8_repo_management=options.automatic_r8_repo_management,
      r8_jvm_args=options.r8_jvm_args,
      enable_assertions=options.enable_assertions,
      emit_debug_information=options.emit_debug_information,
      trace_references=keeper_plugin.TraceReferences(
          enabled=options.trace_references,
          arguments=options.trace_references_args),
      r8_jar=options.r8_jar,
      r8_version=options.r8_version,
      r8_cache_dir=options.r8_cache_dir,
      variant_filter=variant_filter)


def Run(options):
  """Returns a dict of app variant name -> inferred rules path."""
  project = variant_utils.LoadBuildConfig(options.build_config)
  infer_tasks = keeper_plugin.Apply(project, CreateExtension(options))

  names = options.variants or sorted(infer_tasks)
  unknown = [n for n in names if n not in infer_tasks]
  if unknown:
    raise build_utils.ConfigurationError(
        'No applicable variant named {}. Choices: {}'.format(
            ', '.join(unknown), ', '.join(sorted(infer_tasks)) or '(none)'))

  project.tasks.Execute([infer_tasks[n].name for n in names])
  return {n: infer_tasks[n].Get().output_file for n in names}


def main(args):
  build_utils.InitLogging('KEEPER_DEBUG')
  options = _ParseArgs(args)
  try:
    outputs = Run(options)
  except build_utils.CalledProcessError as e:
    sys.stderr.write(e.output)
    return 1
  except (build_utils.ConfigurationError, build_utils.MissingInputError,
          build_utils.EmptyKeepRulesError) as e:
    sys.stderr.write(str(e) + '\n')
    return 1

  if not outputs:
    logging.warning('No applicable variants found in %s',
                    options.build_config)
  for name, path in sorted(outputs.items()):
    print('{}: {}'.format(name, path))
  return 0


def entry_point():
  sys.exit(main(sys.argv[1:]))


if __name__ == '__main__':
  entry_point()
