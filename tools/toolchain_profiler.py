# Copyright 2011 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

import contextlib
import logging
import os
import time

logger = logging.getLogger('profiler')

EMPROFILE = int(os.getenv('EMPROFILE', '0'))


class ProfileBlock(contextlib.ContextDecorator):
  """Times a named block of the toolchain.  Usable both as a context manager
  and as a function decorator."""

  def __init__(self, block_name):
    self.block_name = block_name

  def __enter__(self):
    ToolchainProfiler.enter_block(self.block_name)
    return self

  def __exit__(self, exc_type, value, traceback):
    ToolchainProfiler.exit_block(self.block_name)
    return False


class ToolchainProfiler:
  block_stack = []
  block_times = []

  @staticmethod
  def enter_block(block_name):
    if EMPROFILE:
      ToolchainProfiler.block_stack.append((block_name, time.time()))

  @staticmethod
  def exit_block(block_name):
    if not EMPROFILE:
      return
    for i in range(len(ToolchainProfiler.block_stack) - 1, -1, -1):
      name, start = ToolchainProfiler.block_stack[i]
      if name == block_name:
        del ToolchainProfiler.block_stack[i]
        elapsed = time.time() - start
        ToolchainProfiler.block_times.append((block_name, elapsed))
        logger.info('block "%s" took %.3f seconds', block_name, elapsed)
        return

  @staticmethod
  def profile_block(block_name):
    return ProfileBlock(block_name)

  @staticmethod
  def profile():
    return ProfileBlock('main')
