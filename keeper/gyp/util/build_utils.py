# Copyright 2013 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.

"""Contains common helpers for Keeper's build actions."""

import atexit
import collections
import fnmatch
import json
import logging
import os
import re
import shlex
import subprocess
import sys
import textwrap

TAG = 'Keeper'

JAVA_HOME = os.environ.get('JAVA_HOME')
JAVA_PATH = os.path.join(JAVA_HOME, 'bin', 'java') if JAVA_HOME else 'java'


class ConfigurationError(Exception):
  """Raised before any work is done when Keeper is misconfigured."""


class MissingInputError(Exception):
  """Raised when a declared input is absent at execution time."""


class EmptyKeepRulesError(Exception):
  """Raised when the analyzer succeeded but printed no keep rules."""


def JavaCmd(xmx='1G', enable_assertions=False, jvm_args=None):
  ret = [JAVA_PATH]
  # Limit heap to avoid Java not GC'ing when it should.
  ret += ['-Xmx' + xmx]
  if enable_assertions:
    ret += ['-ea']
  if jvm_args:
    ret += list(jvm_args)
  return ret


def FindInDirectory(directory, filename_filter='*'):
  files = []
  for root, dirnames, filenames in os.walk(directory):
    # Walk in a stable order so outputs derived from the listing are hermetic.
    dirnames.sort()
    matched_files = fnmatch.filter(sorted(filenames), filename_filter)
    files.extend((os.path.join(root, f) for f in matched_files))
  return files


def CheckInputsExist(paths, description):
  """Raises MissingInputError naming every path in |paths| that is absent."""
  missing = [p for p in paths if not os.path.exists(p)]
  if missing:
    raise MissingInputError('Missing {}:\n  {}'.format(description,
                                                       '\n  '.join(missing)))


def Capitalize(value):
  """Upper-cases the first character, as variant-derived task names do."""
  return value[:1].upper() + value[1:]


class CalledProcessError(Exception):
  """This exception is raised when the process run by CheckOutput
  exits with a non-zero exit code."""

  def __init__(self, cwd, args, output):
    super().__init__()
    self.cwd = cwd
    self.args = args
    self.output = output

  def __str__(self):
    # A user should be able to simply copy and paste the command that failed
    # into their shell (unless it is more than 200 chars).
    # User can set PRINT_FULL_COMMAND=1 to always print the full command.
    print_full = os.environ.get('PRINT_FULL_COMMAND', '0') != '0'
    full_cmd = shlex.join(self.args)
    short_cmd = textwrap.shorten(full_cmd, width=200)
    printed_cmd = full_cmd if print_full else short_cmd
    copyable_command = '( cd {}; {} )'.format(os.path.abspath(self.cwd),
                                              printed_cmd)
    return 'Command failed: {}\n{}'.format(copyable_command, self.output)


# This can be used in most cases like subprocess.check_output(). The output,
# particularly when the command fails, better highlights the command's failure.
# If the command fails, raises a build_utils.CalledProcessError.
def CheckOutput(args, cwd=None):
  if not cwd:
    cwd = os.getcwd()

  logging.info('CheckOutput: %s', ' '.join(args))
  child = subprocess.Popen(args,
      stdout=subprocess.PIPE, stderr=subprocess.PIPE, cwd=cwd)
  stdout, stderr = child.communicate()
  stdout = stdout.decode('utf-8')
  stderr = stderr.decode('utf-8')

  if child.returncode != 0:
    raise CalledProcessError(cwd, args, stdout + stderr)

  # R8 reports warnings on stderr even when it succeeds.
  if stderr:
    sys.stderr.write(stderr)
    short_cmd = textwrap.shorten(shlex.join(args), width=200)
    sys.stderr.write(f'\nThe above stderr output was from: {short_cmd}\n')

  return stdout


def MatchesGlob(path, filters):
  """Returns whether the given path matches any of the given glob patterns."""
  return bool(filters) and any(fnmatch.fnmatch(path, f) for f in filters)


def GetSortedTransitiveDependencies(top, deps_func):
  """Gets the list of all transitive dependencies in sorted order.

  There should be no cycles in the dependency graph (crashes if cycles exist).

  Args:
    top: A list of the top level nodes
    deps_func: A function that takes a node and returns a list of its direct
        dependencies.
  Returns:
    A list of all transitive dependencies of nodes in top, in order (a node will
    appear in the list at a higher index than all of its dependencies).
  """
  # Find all deps depth-first, maintaining original order in the case of ties.
  deps_map = collections.OrderedDict()
  def discover(nodes):
    for node in nodes:
      if node in deps_map:
        continue
      deps = deps_func(node)
      discover(deps)
      deps_map[node] = deps

  discover(top)
  return list(deps_map)


def InitLogging(enabling_env):
  logging.basicConfig(
      level=logging.DEBUG if os.environ.get(enabling_env) else logging.WARNING,
      format='%(levelname).1s %(process)d %(relativeCreated)6d %(message)s')
  script_name = os.path.basename(sys.argv[0])
  logging.info('Started (%s)', script_name)

  my_pid = os.getpid()

  def log_exit():
    # Do not log for fork'ed processes.
    if os.getpid() == my_pid:
      logging.info("Job's done (%s)", script_name)

  atexit.register(log_exit)


def ExpandFileArgs(args):
  """Replaces file-arg placeholders in args.

  These placeholders have the form:
    @FileArg(filename:key1:key2:...:keyn)

  The value of such a placeholder is calculated by reading 'filename' as json.
  And then extracting the value at [key1][key2]...[keyn]. If a key has a '[]'
  suffix the (intermediate) value will be interpreted as a single item list and
  the single item will be returned or used for further traversal.

  Note: This intentionally does not return the list of files that appear in such
  placeholders. An action that uses file-args *must* know the paths of those
  files prior to the parsing of the arguments (typically by declaring them as
  inputs of the task that runs it).
  """
  new_args = list(args)
  file_jsons = dict()
  r = re.compile(r'@FileArg\((.*?)\)')
  for i, arg in enumerate(args):
    match = r.search(arg)
    if not match:
      continue

    def get_key(key):
      if key.endswith('[]'):
        return key[:-2], True
      return key, False

    lookup_path = match.group(1).split(':')
    file_path, _ = get_key(lookup_path[0])
    if not file_path in file_jsons:
      with open(file_path) as f:
        file_jsons[file_path] = json.load(f)

    expansion = file_jsons
    for k in lookup_path:
      k, flatten = get_key(k)
      expansion = expansion[k]
      if flatten:
        if not isinstance(expansion, list) or not len(expansion) == 1:
          raise ConfigurationError('Expected single item list but got %s' %
                                   expansion)
        expansion = expansion[0]

    # This should match action_helpers.parse_list_arg(). The output is either
    # a JSON-formatted list or a literal (with no quotes).
    if isinstance(expansion, list):
      new_args[i] = (arg[:match.start()] + json.dumps(expansion) +
                     arg[match.end():])
    else:
      new_args[i] = arg[:match.start()] + str(expansion) + arg[match.end():]

  return new_args
