# Copyright 2020 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

import logging
import os
import shutil

from .utils import path_from_root, exit_with_error, read_file

logger = logging.getLogger('config')

# The following globals can be overridden by the config file and/or
# environment variables.  Specifically any variable whose name
# is in ALL_UPPER_CASE is considered a valid config file key.
# See parse_config_file below.
EM_CONFIG = None
LLVM_ROOT = None
BINARYEN_ROOT = None
NODE_JS = None
CACHE = None
FROZEN_CACHE = False
COMPILER_WRAPPER = None
CLOSURE_COMPILER = None
JS_COMPILER = None

CONFIG_KEYS = ('LLVM_ROOT', 'BINARYEN_ROOT', 'NODE_JS', 'CACHE', 'FROZEN_CACHE',
               'COMPILER_WRAPPER', 'CLOSURE_COMPILER', 'JS_COMPILER')


def listify(x):
  if x is None or isinstance(x, list):
    return x
  return [x]


def find_tool_root(executable):
  """Guess the install root of a tool from its location on PATH."""
  found = shutil.which(executable)
  if not found:
    return ''
  return os.path.dirname(os.path.dirname(os.path.realpath(found)))


def normalize_config_settings():
  global CACHE, NODE_JS, CLOSURE_COMPILER, LLVM_ROOT, BINARYEN_ROOT, JS_COMPILER, FROZEN_CACHE

  if not LLVM_ROOT:
    LLVM_ROOT = os.path.join(find_tool_root('clang'), 'bin')
  if not BINARYEN_ROOT:
    BINARYEN_ROOT = find_tool_root('wasm-opt')
  if not NODE_JS:
    NODE_JS = shutil.which('node') or 'node'
  NODE_JS = listify(NODE_JS)
  if not CLOSURE_COMPILER:
    CLOSURE_COMPILER = ['npx', 'google-closure-compiler']
  CLOSURE_COMPILER = listify(CLOSURE_COMPILER)
  if not JS_COMPILER:
    JS_COMPILER = path_from_root('src', 'compiler.mjs')
  if not CACHE:
    CACHE = path_from_root('cache')
  FROZEN_CACHE = bool(FROZEN_CACHE)


def parse_config_file():
  """Parse the emscripten config file using python's exec.

  Also check EM_<KEY> environment variables to override specific config keys.
  """
  config = {}
  if EM_CONFIG:
    config_text = read_file(EM_CONFIG)
    try:
      exec(config_text, config)
    except Exception as e:
      exit_with_error('error in evaluating config file (%s): %s, text: %s', EM_CONFIG, str(e), config_text)

  for key in CONFIG_KEYS:
    env_var = 'EM_' + key
    env_value = os.environ.get(env_var)
    if env_value is not None:
      if env_value in ('', '0'):
        env_value = None
      # Unlike the other keys these two should always be lists.
      if key in ('NODE_JS', 'CLOSURE_COMPILER'):
        env_value = env_value.split()
      globals()[key] = env_value
    elif key in config:
      globals()[key] = config[key]

  normalize_config_settings()


def read_config():
  global EM_CONFIG
  EM_CONFIG = os.environ.get('EM_CONFIG')
  if EM_CONFIG:
    EM_CONFIG = os.path.expanduser(EM_CONFIG)
    if not os.path.isfile(EM_CONFIG):
      exit_with_error('config file not found: %s', EM_CONFIG)
    logger.debug('using config file: %s', EM_CONFIG)
  parse_config_file()


read_config()
