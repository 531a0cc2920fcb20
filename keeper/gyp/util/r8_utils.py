# Copyright 2024 The Chromium Authors
# Use of this source code is governed by a BSD-style license that can be
# found in the LICENSE file.
"""Resolves the R8 jar that Keeper runs its analyzers from."""

import logging
import os
import shutil
import urllib.error
import urllib.request

from keeper import action_helpers
from keeper.gyp.util import build_utils

R8_GROUP_ID = 'com.android.tools'
R8_ARTIFACT_ID = 'r8'

# PrintUses was removed from later R8 releases.
PRINTUSES_DEFAULT_VERSION = '1.6.53'
TRACE_REFERENCES_DEFAULT_VERSION = '3.0.9-dev'

GOOGLE_MAVEN_URL = 'https://dl.google.com/android/maven2'
# Dev releases of R8 are only published here.
R8_RELEASES_URL = 'https://storage.googleapis.com/r8-releases/raw'

PRINT_USES_MAIN = 'com.android.tools.r8.PrintUses'
TRACE_REFERENCES_MAIN = 'com.android.tools.r8.tracereferences.TraceReferences'


def DefaultVersion(trace_references_enabled):
  if trace_references_enabled:
    return TRACE_REFERENCES_DEFAULT_VERSION
  return PRINTUSES_DEFAULT_VERSION


def MainClass(trace_references_enabled):
  return TRACE_REFERENCES_MAIN if trace_references_enabled else PRINT_USES_MAIN


def Repositories(automatic_r8_repo_management):
  ret = [GOOGLE_MAVEN_URL]
  if automatic_r8_repo_management:
    ret.append(R8_RELEASES_URL)
  return ret


def DefaultCacheDir():
  return os.environ.get('KEEPER_R8_CACHE') or os.path.join(
      os.path.expanduser('~'), '.cache', 'keeper', 'm2')


def Coordinate(version):
  return '{}:{}:{}'.format(R8_GROUP_ID, R8_ARTIFACT_ID, version)


def ArtifactSubpath(version):
  """Maven layout path of the R8 jar, e.g. com/android/tools/r8/1.0/r8-1.0.jar"""
  return '/'.join(R8_GROUP_ID.split('.') +
                  [R8_ARTIFACT_ID, version, f'{R8_ARTIFACT_ID}-{version}.jar'])


def _DownloadFile(url, dest):
  logging.info('Downloading %s', url)
  with urllib.request.urlopen(url) as r:
    with action_helpers.atomic_output(dest) as f:
      shutil.copyfileobj(r, f)


def ResolveR8Jar(version=None,
                 *,
                 trace_references_enabled=False,
                 automatic_r8_repo_management=True,
                 cache_dir=None,
                 r8_jar=None):
  """Returns a local path to the R8 jar.

  Args:
    version: R8 version. Defaults to the version for the selected protocol.
    trace_references_enabled: Whether TraceReferences will be run.
    automatic_r8_repo_management: Whether to also look in the R8 releases
        repository.
    cache_dir: Maven-layout directory holding downloaded jars.
    r8_jar: An explicit jar to use. Returned as-is once checked.
  """
  if r8_jar:
    if not os.path.exists(r8_jar):
      raise build_utils.ConfigurationError('R8 jar not found: ' + r8_jar)
    return r8_jar

  version = version or DefaultVersion(trace_references_enabled)
  cache_dir = cache_dir or DefaultCacheDir()
  subpath = ArtifactSubpath(version)
  cached_path = os.path.join(cache_dir, *subpath.split('/'))
  if os.path.exists(cached_path):
    logging.debug('%s Using cached %s', build_utils.TAG, cached_path)
    return cached_path

  tried = []
  for repo in Repositories(automatic_r8_repo_management):
    url = '{}/{}'.format(repo, subpath)
    try:
      _DownloadFile(url, cached_path)
    except urllib.error.URLError as e:
      logging.info('Could not fetch %s: %s', url, e)
      tried.append('{} ({})'.format(url, e))
      continue
    return cached_path

  msg = 'Could not resolve {}. Tried:\n  {}'.format(Coordinate(version),
                                                   '\n  '.join(tried))
  if not automatic_r8_repo_management:
    msg += ('\nDev versions of R8 are only published to {}. Enable automatic '
            'R8 repository management or add it yourself.'.format(
                R8_RELEASES_URL))
  raise build_utils.ConfigurationError(msg)
