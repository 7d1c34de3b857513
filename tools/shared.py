# Copyright 2011 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

import atexit
import contextlib
import logging
import os
import shlex
import subprocess
import sys
import tempfile

from . import colored_logger
from . import config
from . import diagnostics
from . import utils
from .settings import settings
from .utils import path_from_root, exit_with_error, safe_ensure_dirs, WINDOWS

DEBUG = int(os.environ.get('EMCC_DEBUG', '0'))
EMCC_VERBOSE = int(os.environ.get('EMCC_VERBOSE', '0'))
PRINT_STAGES = False

DYNAMICLIB_ENDINGS = ['.dylib', '.so']  # Windows .dll suffix is not included in this list, since those are never linked to directly on the command line.
STATICLIB_ENDINGS = ['.a']
BITCODE_ENDINGS = ['.bc']
SPECIAL_ENDINGLESS_FILENAMES = [os.devnull]

TEMP_DIR = os.environ.get('EMCC_TEMP_DIR', tempfile.gettempdir())
CANONICAL_TEMP_DIR = os.path.join(TEMP_DIR, 'emscripten_temp')
EMSCRIPTEN_TEMP_DIR = None

logger = logging.getLogger('shared')


def setup_logging():
  log_level = logging.WARNING
  if DEBUG:
    log_level = logging.DEBUG
  elif EMCC_VERBOSE:
    log_level = logging.INFO
  logging.basicConfig(format='%(name)s:%(levelname)s: %(message)s', level=log_level)
  colored_logger.enable()


def shlex_join(cmd):
  return ' '.join(shlex.quote(x) for x in cmd)


def print_compiler_stage(cmd):
  """Emulate the '-v' of clang/gcc by printing the name of the sub-command
  before executing it."""
  if PRINT_STAGES:
    print(' "%s" %s' % (cmd[0], shlex_join(cmd[1:])), file=sys.stderr)
    sys.stderr.flush()


def run_process(cmd, check=True, input=None, *args, **kw):
  """Runs a subprocess returning the exit code.

  By default this function will raise an exception on failure.  Therefor this should only be
  used if you want to handle such failures.  For most subprocesses, failures are not recoverable
  and should be fatal.  In those cases the `check_call` wrapper should be preferred.
  """

  # Flush standard streams otherwise the output of the subprocess may appear in the
  # output before messages that we have already written.
  sys.stdout.flush()
  sys.stderr.flush()
  kw.setdefault('universal_newlines', True)
  ret = subprocess.run(cmd, check=check, input=input, *args, **kw)
  debug_text = '%sexecuted %s' % ('successfully ' if check else '', shlex_join(cmd))
  logger.debug(debug_text)
  return ret


def check_call(cmd, *args, **kw):
  """Like `run_process` above but treat failures as fatal and exit_with_error."""
  print_compiler_stage(cmd)
  try:
    return run_process(cmd, *args, **kw)
  except subprocess.CalledProcessError as e:
    exit_code = e.returncode if e.returncode > 0 else 1
    diagnostics.error("'%s' failed (returned %s)", shlex_join(cmd), e.returncode, exit_code=exit_code)
  except OSError as e:
    exit_with_error("'%s' failed: %s", shlex_join(cmd), str(e))


def exe_suffix(cmd):
  return cmd + '.exe' if WINDOWS and not cmd.endswith('.exe') else cmd


def build_llvm_tool_path(tool):
  return os.path.join(config.LLVM_ROOT, exe_suffix(tool))


def get_llvm_target():
  if settings.MEMORY64:
    return 'wasm64-unknown-emscripten'
  return 'wasm32-unknown-emscripten'


def get_file_suffix(filename):
  """Parses the essential suffix of a filename, discarding Unix-style version
  numbers in the name. For example for 'libz.so.1.2.8' returns '.so'"""
  if filename in SPECIAL_ENDINGLESS_FILENAMES:
    return filename
  while filename:
    filename, suffix = os.path.splitext(filename)
    if not suffix[1:].isdigit():
      return suffix
  return ''


def unsuffixed(name):
  """Return the filename without the extention.

  If there are multiple extentions this strips only the final one.
  """
  return os.path.splitext(name)[0]


def unsuffixed_basename(name):
  return os.path.basename(unsuffixed(name))


def replace_suffix(filename, new_suffix):
  assert new_suffix[0] == '.'
  return os.path.splitext(filename)[0] + new_suffix


def do_replace(input_, pattern, replacement):
  if pattern not in input_:
    exit_with_error('expected to find pattern in input JS: %s' % pattern)
  return input_.replace(pattern, replacement)


def is_user_export(name):
  if name.startswith('dynCall_'):
    return False
  return '$' not in name


def asmjs_mangle(name):
  """Mangle a name the way asm.js/JSBackend globals are mangled.

  Prepends '_' and replaces non-alphanumerics with '_'.
  Used by wasm backend for JS library consistency with asm.js.
  """
  # We also use this function to convert the clang-mangled `__main_argc_argv`
  # to simply `main` which is expected by the emscripten JS glue code.
  if name == '__main_argc_argv':
    name = 'main'
  if is_user_export(name):
    return '_' + name
  return name


class TempFiles:
  """Tracks temporary files created during a single driver invocation and
  removes them when the process exits."""

  def __init__(self, tmpdir, save_debug_files):
    self.tmpdir = tmpdir
    self.save_debug_files = save_debug_files
    self.to_clean = []

    atexit.register(self.clean)

  def note(self, filename):
    self.to_clean.append(filename)

  def get(self, suffix, prefix=None):
    """Returns a named temp file with the given prefix."""
    named_file = tempfile.NamedTemporaryFile(dir=self.tmpdir, suffix=suffix, prefix=prefix, delete=False)
    self.note(named_file.name)
    return named_file

  @contextlib.contextmanager
  def get_file(self, suffix):
    """Returns an object representing a RAII-like access to a temp file
    that has convenient pythonesque semantics for being used via a construct
      'with temp_files.get_file(..) as filename:'.
    The file will be deleted immediately once the 'with' block is exited.
    """
    fd, filename = tempfile.mkstemp(dir=self.tmpdir, suffix=suffix)
    os.close(fd)
    try:
      yield filename
    finally:
      if not self.save_debug_files:
        utils.delete_file(filename)

  def clean(self):
    if self.save_debug_files:
      print(f'not cleaning up temp files since in debug-save mode, see them in {self.tmpdir}', file=sys.stderr)
      return
    for filename in self.to_clean:
      if os.path.isdir(filename):
        utils.delete_dir(filename)
      else:
        utils.delete_file(filename)
    self.to_clean = []


def get_emscripten_temp_dir():
  """Returns a path to EMSCRIPTEN_TEMP_DIR, creating one if it didn't exist."""
  global EMSCRIPTEN_TEMP_DIR
  if not EMSCRIPTEN_TEMP_DIR:
    if DEBUG:
      EMSCRIPTEN_TEMP_DIR = CANONICAL_TEMP_DIR
      safe_ensure_dirs(EMSCRIPTEN_TEMP_DIR)
    else:
      EMSCRIPTEN_TEMP_DIR = tempfile.mkdtemp(prefix='emscripten_temp_', dir=TEMP_DIR)

      def prepare_to_clean_temp(d):
        def clean_temp():
          utils.delete_dir(d)

        atexit.register(clean_temp)
      # this global var might change later
      prepare_to_clean_temp(EMSCRIPTEN_TEMP_DIR)
  return EMSCRIPTEN_TEMP_DIR


_temp_files = None


def get_temp_files():
  global _temp_files
  if _temp_files is None:
    _temp_files = TempFiles(get_emscripten_temp_dir(), save_debug_files=DEBUG)
  return _temp_files


def in_temp(name):
  return os.path.join(get_emscripten_temp_dir(), os.path.basename(name))


def read_version():
  return utils.read_file(path_from_root('emscripten-version.txt')).strip().strip('"')


def get_binaryen_bin():
  return os.path.join(config.BINARYEN_ROOT, 'bin')


EMSCRIPTEN_VERSION = read_version()
parts = [int(x) for x in EMSCRIPTEN_VERSION.split('.')]
EMSCRIPTEN_VERSION_MAJOR, EMSCRIPTEN_VERSION_MINOR, EMSCRIPTEN_VERSION_TINY = parts

CLANG_CC = os.path.expanduser(build_llvm_tool_path(exe_suffix('clang')))
CLANG_CXX = os.path.expanduser(build_llvm_tool_path(exe_suffix('clang++')))
LLVM_AR = build_llvm_tool_path(exe_suffix('llvm-ar'))
LLVM_RANLIB = build_llvm_tool_path(exe_suffix('llvm-ranlib'))
LLVM_OBJCOPY = build_llvm_tool_path(exe_suffix('llvm-objcopy'))
WASM_LD = build_llvm_tool_path(exe_suffix('wasm-ld'))

setup_logging()
