# Copyright 2011 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

"""Enables colored logger just by importing this module
"""

import logging
import sys

RED = '\x1b[31m'
YELLOW = '\x1b[33m'
GREEN = '\x1b[32m'
PINK = '\x1b[35m'
RESET = '\x1b[0m'


def add_coloring_to_emit_ansi(fn):
  # add methods we need to the class
  def new(*args):
    levelno = args[1].levelno
    if levelno >= 50:
      color = RED
    elif levelno >= 40:
      color = RED
    elif levelno >= 30:
      color = YELLOW
    elif levelno >= 20:
      color = GREEN
    elif levelno >= 10:
      color = PINK
    else:
      color = RESET
    args[1].msg = color + str(args[1].msg) + RESET
    return fn(*args)

  new.orig_func = fn
  return new


def enable():
  if sys.stderr.isatty():
    if not hasattr(logging.StreamHandler.emit, 'orig_func'):
      logging.StreamHandler.emit = add_coloring_to_emit_ansi(logging.StreamHandler.emit)


def disable():
  if hasattr(logging.StreamHandler.emit, 'orig_func'):
    logging.StreamHandler.emit = logging.StreamHandler.emit.orig_func
