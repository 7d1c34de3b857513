#!/usr/bin/env python3
# Copyright 2013 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

"""Emscripten linker.

This tool takes object files (and archives and wasm side modules) as input and
produces wasm and/or js output.

Normally this tool is run by the emcc compiler driver rather than directly.
"""

import base64
import glob
import hashlib
import json
import logging
import os
import shlex
import shutil
import stat
import sys
from collections import deque, namedtuple
from enum import Enum, unique, auto
from urllib.parse import quote

import filelock

from tools import shared, utils, building, cache, config, diagnostics
from tools import feature_matrix, line_endings, system_libs, webassembly
from tools.shared import unsuffixed, unsuffixed_basename, get_file_suffix, exit_with_error, DEBUG
from tools.shared import do_replace, DYNAMICLIB_ENDINGS, STATICLIB_ENDINGS
from tools.settings import settings, user_settings, default_setting
from tools.settings import SettingsRule, check_settings_rules
from tools.toolchain_profiler import ToolchainProfiler
from tools.utils import read_file, write_file, delete_file, removeprefix

logger = logging.getLogger('emlink')

EXECUTABLE_ENDINGS = ('.wasm', '.html', '.js', '.mjs', '.out', '')

SUPPORTED_LINKER_FLAGS = (
    '--start-group', '--end-group',
    '-(', '-)',
    '--whole-archive', '--no-whole-archive',
    '-whole-archive', '-no-whole-archive'
)

# Unsupported flags and whether they take an argument
UNSUPPORTED_LLD_FLAGS = {
    # passed by libtool when it thinks it is targeting macOS
    '-bind_at_load': False,
    # dynamic linking flags that wasm-ld has no equivalent for; build systems
    # pass them unconditionally
    '-soname': True,
    '-allow-shlib-undefined': False,
    '-rpath': True,
    '-rpath-link': True,
    '-version-script': True,
    '-install_name': True,
}

DEFAULT_ASYNCIFY_IMPORTS = ['wasi_snapshot_preview1.fd_sync', '__wasi_fd_sync', '__asyncjs__*']

DEFAULT_ASYNCIFY_EXPORTS = [
  'main',
  '__main_argc_argv',
  # Embind's async template wrapper functions
  '_ZN10emscripten8internal5async*',
]

UBSAN_SANITIZERS = {
  'alignment',
  'bool',
  'builtin',
  'bounds',
  'enum',
  'float-cast-overflow',
  'float-divide-by-zero',
  'function',
  'implicit-unsigned-integer-truncation',
  'implicit-signed-integer-truncation',
  'implicit-integer-sign-change',
  'integer-divide-by-zero',
  'nonnull-attribute',
  'null',
  'nullability-arg',
  'nullability-assign',
  'nullability-return',
  'object-size',
  'pointer-overflow',
  'return',
  'returns-nonnull-attribute',
  'shift',
  'signed-integer-overflow',
  'unreachable',
  'unsigned-integer-overflow',
  'vla-bound',
  'vptr',
  'undefined',
  'undefined-trap',
  'implicit-integer-truncation',
  'implicit-integer-arithmetic-value-change',
  'implicit-conversion',
  'integer',
  'nullability',
}

# Helper functions for JS to call into C to do memory operations.  These let
# us sanitize memory access from the JS side.
ASAN_C_HELPERS = [
  '_asan_c_load_1', '_asan_c_load_1u',
  '_asan_c_load_2', '_asan_c_load_2u',
  '_asan_c_load_4', '_asan_c_load_4u',
  '_asan_c_load_f', '_asan_c_load_d',
  '_asan_c_store_1', '_asan_c_store_1u',
  '_asan_c_store_2', '_asan_c_store_2u',
  '_asan_c_store_4', '_asan_c_store_4u',
  '_asan_c_store_f', '_asan_c_store_d',
]

VALID_ENVIRONMENTS = ('web', 'webview', 'worker', 'node', 'shell')

# Limit on the number of cached symbol lists kept in the cache directory
SYMBOL_LIST_CACHE_LIMIT = 500


@unique
class OFormat(Enum):
  # relocatable object, produced for `-r` and for the
  # static emulation of `-shared`
  OBJECT = auto()
  WASM = auto()
  JS = auto()
  MJS = auto()
  HTML = auto()
  BARE = auto()


class JSArtifact:
  """The JS glue file as it moves through the post-link steps.

  Every rewrite lands in a new file named after the step that produced it
  (`<current>.<step>.js`) and the artifact is repointed at it, so the files of
  earlier steps are left untouched for inspection under EMCC_DEBUG.
  """

  def __init__(self, path):
    self.path = path

  def read(self):
    return read_file(self.path)

  def write_step(self, step, contents):
    self.path += '.' + step + '.js'
    write_file(self.path, contents)
    shared.get_temp_files().note(self.path)
    building.save_intermediate(self.path, step + '.js')

  def replace(self, path, step):
    """Repoint at a file produced by an external tool."""
    self.path = path
    building.save_intermediate(self.path, step + '.js')


LINK_RULES = [
  SettingsRule(lambda: not settings.WASM,
               'WASM=0 is not supported.  Use -sWASM=2 to emit a wasm2js fallback alongside the wasm binary',
               None),
  SettingsRule(lambda: settings.SAFE_HEAP not in (0, 1, 2),
               'SAFE_HEAP must be 0, 1 or 2',
               None),
  SettingsRule(lambda: settings.WASM == 2 and settings.SINGLE_FILE,
               'cannot have both WASM=2 and SINGLE_FILE enabled at the same time',
               None),
  SettingsRule(lambda: settings.MODULARIZE and settings.PROXY_TO_WORKER,
               '-sMODULARIZE is not compatible with --proxy-to-worker (if you want to run in a worker with -sMODULARIZE, you likely want to do the worker side setup manually)',
               None),
  SettingsRule(lambda: settings.EXPORT_ES6 and not settings.MODULARIZE,
               'EXPORT_ES6 requires MODULARIZE to be set',
               None),
  SettingsRule(lambda: settings.SIDE_MODULE and 'GLOBAL_BASE' in user_settings,
               'GLOBAL_BASE is not compatible with SIDE_MODULE',
               None),
  SettingsRule(lambda: 'MAXIMUM_MEMORY' in user_settings and not settings.ALLOW_MEMORY_GROWTH,
               'MAXIMUM_MEMORY is only meaningful with ALLOW_MEMORY_GROWTH',
               'unused-command-line-argument'),
  SettingsRule(lambda: not settings.MEMORY64 and settings.MAXIMUM_MEMORY > 2**32,
               'MAXIMUM_MEMORY cannot be more than 4GB without MEMORY64',
               None),
  SettingsRule(lambda: settings.ALLOW_MEMORY_GROWTH and settings.PTHREADS,
               'PTHREADS + ALLOW_MEMORY_GROWTH may run non-wasm code slowly, see https://github.com/WebAssembly/design/issues/1271',
               'pthreads-mem-growth'),
  SettingsRule(lambda: settings.ASYNCIFY == 2,
               '-sASYNCIFY=2 (JSPI) is still experimental',
               'experimental'),
]

# Settings that only affect the C++ runtime.  Setting them explicitly while
# linking plain C is almost certainly a mistake.
CXX_ONLY_SETTINGS = ('DISABLE_EXCEPTION_CATCHING', 'DISABLE_EXCEPTION_THROWING',
                     'EXCEPTION_CATCHING_ALLOWED', 'WASM_EXCEPTIONS')


def dedup_list(lst):
  # dict preserves insertion order, set does not
  return list(dict.fromkeys(lst))


def align_to_wasm_page_boundary(address):
  page_size = webassembly.WASM_PAGE_SIZE
  return ((address + (page_size - 1)) // page_size) * page_size


def read_js_files(files):
  return '\n'.join(read_file(f) for f in files)


def unmangle_symbols_from_cmdline(symbols):
  def unmangle(x):
    return x.replace('.', ' ').replace('#', '&').replace('?', ',')

  if type(symbols) is list:
    return [unmangle(x) for x in symbols]
  return unmangle(symbols)


def get_secondary_target(target, ext):
  # Names a file written next to the main output (the .wasm beside a .js,
  # or the .js beside an .html).  The name must differ from the target itself.
  base = unsuffixed(target)
  if get_file_suffix(target) == ext:
    base += '_'
  return base + ext


def move_file(src, dst):
  logger.debug('move: %s -> %s', src, dst)
  if os.path.isdir(dst):
    exit_with_error(f'cannot write output file `{dst}`: Is a directory')
  src = os.path.abspath(src)
  dst = os.path.abspath(dst)
  if src == dst:
    return
  if dst == os.devnull:
    return
  shutil.move(src, dst)


def get_subresource_location(path, data_uri=None):
  """Returns how the runtime should refer to a file that sits next to the JS:
  its basename, or its whole content as a data URI under SINGLE_FILE."""
  if data_uri is None:
    data_uri = settings.SINGLE_FILE
  if data_uri:
    # nothing to embed
    if not os.path.exists(path):
      return ''
    data = base64.b64encode(utils.read_binary(path))
    return 'data:application/octet-stream;base64,' + data.decode('ascii')
  return os.path.basename(path)


def setup_environment_settings():
  environments = settings.ENVIRONMENT.split(',')
  if any(x for x in environments if x not in VALID_ENVIRONMENTS):
    exit_with_error(f'Invalid environment specified in "ENVIRONMENT": {settings.ENVIRONMENT}. Should be one of: {",".join(VALID_ENVIRONMENTS)}')

  # With pthreads, node counts as a worker environment too since
  # threads run in node worker_threads.
  may_be_worker = not settings.ENVIRONMENT or \
      'worker' in environments or \
      (settings.environment_may_be('node') and settings.PTHREADS)

  if not may_be_worker and settings.PROXY_TO_WORKER:
    exit_with_error('If you specify --proxy-to-worker and specify a "-sENVIRONMENT=" directive, it must include "worker" as a target! (Try e.g. -sENVIRONMENT=web,worker)')

  if not may_be_worker and settings.SHARED_MEMORY:
    exit_with_error('When building with multithreading enabled and a "-sENVIRONMENT=" directive is specified, it must include "worker" as a target! (Try e.g. -sENVIRONMENT=web,worker)')


def check_memory_setting(setting):
  value = getattr(settings, setting)
  if value % webassembly.WASM_PAGE_SIZE != 0:
    exit_with_error(f'{setting} must be a multiple of WebAssembly page size (64KiB), was {value}')


def setup_sanitizers(newargs):
  sanitize = set()

  for arg in newargs:
    if arg.startswith('-fsanitize='):
      sanitize.update(arg.split('=', 1)[1].split(','))
    elif arg.startswith('-fno-sanitize='):
      sanitize.difference_update(arg.split('=', 1)[1].split(','))

  if sanitize:
    settings.REQUIRED_EXPORTS += [
        'memalign',
        'emscripten_builtin_memalign',
        'emscripten_builtin_malloc',
        'emscripten_builtin_free',
    ]

  if ('leak' in sanitize or 'address' in sanitize) and not settings.ALLOW_MEMORY_GROWTH:
    # Over-estimate of the extra memory the sanitizer runtimes need on top of
    # the shadow memory handled below.
    settings.INITIAL_MEMORY += 50 * 1024 * 1024
    if settings.PTHREADS:
      settings.INITIAL_MEMORY += 50 * 1024 * 1024

  if sanitize & UBSAN_SANITIZERS:
    if '-fsanitize-minimal-runtime' in newargs:
      settings.UBSAN_RUNTIME = 1
    else:
      settings.UBSAN_RUNTIME = 2

  if 'leak' in sanitize:
    settings.USE_LSAN = 1
    default_setting('EXIT_RUNTIME', 1)

  if 'address' in sanitize:
    settings.USE_ASAN = 1
    default_setting('EXIT_RUNTIME', 1)
    if not settings.UBSAN_RUNTIME:
      settings.UBSAN_RUNTIME = 2

    settings.REQUIRED_EXPORTS += ASAN_C_HELPERS

    if settings.ASYNCIFY and not settings.ASYNCIFY_ONLY:
      # The helpers are small getters/setters that never pause, and the runtime
      # calls them while preparing to rewind.
      settings.ASYNCIFY_REMOVE += ASAN_C_HELPERS

    if 'GLOBAL_BASE' in user_settings:
      exit_with_error('ASan does not support custom GLOBAL_BASE')

    # The shadow region starts at address zero and is 1/8th of the total
    # memory, so the memory visible to the program is the other 7/8ths.
    user_mem = settings.INITIAL_MEMORY
    if settings.ALLOW_MEMORY_GROWTH:
      user_mem = settings.MAXIMUM_MEMORY

    total_mem = int(align_to_wasm_page_boundary(user_mem * 8 / 7))
    shadow_size = total_mem // 8

    # Global data starts right after the shadow memory
    settings.GLOBAL_BASE = shadow_size

    if not settings.ALLOW_MEMORY_GROWTH:
      settings.INITIAL_MEMORY = total_mem
    else:
      settings.INITIAL_MEMORY += align_to_wasm_page_boundary(shadow_size)

    if settings.SAFE_HEAP:
      exit_with_error('ASan does not work with SAFE_HEAP')

  return sanitize


@ToolchainProfiler.profile_block('linker_setup')
def phase_linker_setup(options, state, newargs):
  """Decide the output target and format, and finalize the link-time settings.

  Returns (target, wasm_target).
  """
  autoconf = os.environ.get('EMMAKEN_JUST_CONFIGURE') or 'conftest.c' in state.orig_args or 'conftest.cpp' in state.orig_args
  if autoconf:
    # configure scripts run the output and look at its exit code
    settings.AUTOCONF = 1
    settings.EXIT_RUNTIME = 1
    # and expect it to see the real filesystem
    settings.NODERAWFS = 1
    # emitted with a shebang and the executable bit
    options.executable = True

  system_libpath = '-L' + str(cache.get_lib_dir(absolute=True))
  state.add_link_flag((sys.maxsize, 0), system_libpath)

  if settings.OPT_LEVEL >= 1:
    default_setting('ASSERTIONS', 0)

  options.extern_pre_js = read_js_files(options.extern_pre_js)
  options.extern_post_js = read_js_files(options.extern_post_js)

  if options.js_transform and settings.GENERATE_SOURCE_MAP:
    logger.warning('disabling source maps because a js transform is being done')
    settings.GENERATE_SOURCE_MAP = 0

  # `target` is the primary file this link writes
  if options.output_file:
    target = options.output_file
    # every output lands next to the target, so one check covers them
    dirname = os.path.dirname(target)
    if dirname and not os.path.isdir(dirname):
      exit_with_error('specified output file (%s) is in a directory that does not exist', target)
  elif autoconf:
    # configure looks for `a.out`
    target = 'a.out'
  elif settings.SIDE_MODULE:
    target = 'a.out.wasm'
  else:
    target = 'a.out.js'

  final_suffix = get_file_suffix(target)

  # Without an explicit --oformat the output suffix picks the format.
  if not options.oformat and (options.relocatable or (options.shared and not settings.SIDE_MODULE)):
    # Until we have a better story for actually producing runtime shared
    # libraries we support a compatibility mode where shared libraries are
    # actually just object files linked with `wasm-ld --relocatable`.
    if final_suffix in EXECUTABLE_ENDINGS:
      diagnostics.warning('emcc', '-shared/-r used with executable output suffix. This behaviour is deprecated.  Please remove -shared/-r to build an executable or avoid the executable suffix (%s) when building object files.' % final_suffix)
    else:
      if options.shared:
        diagnostics.warning('emcc', 'linking a library with `-shared` will emit a static object file.  This is a form of emulation to support existing build systems.  If you want to build a runtime shared library use the SIDE_MODULE setting.')
      options.oformat = OFormat.OBJECT

  if not options.oformat:
    if settings.SIDE_MODULE or final_suffix == '.wasm':
      options.oformat = OFormat.WASM
    elif final_suffix == '.mjs':
      options.oformat = OFormat.MJS
    elif final_suffix == '.html':
      options.oformat = OFormat.HTML
    else:
      options.oformat = OFormat.JS

  if options.oformat == OFormat.MJS:
    settings.EXPORT_ES6 = 1
    settings.MODULARIZE = 1

  if options.oformat in (OFormat.WASM, OFormat.BARE):
    # the wasm binary is the target itself
    wasm_target = target
  else:
    # the wasm binary sits next to the JS or HTML
    wasm_target = get_secondary_target(target, '.wasm')

  if options.oformat == OFormat.OBJECT:
    return target, wasm_target

  if final_suffix in ('.o', '.bc', '.so', '.dylib') and not settings.SIDE_MODULE:
    diagnostics.warning('emcc', 'object file output extension (%s) used for non-object output.  If you meant to build an object file please use `-c, `-r`, or `-shared`' % final_suffix)

  if settings.SIDE_MODULE and final_suffix in ('.js', '.mjs', '.html'):
    diagnostics.warning('emcc', 'output suffix %s ignored when building a SIDE_MODULE, the output is always a wasm file' % final_suffix)

  if options.oformat == OFormat.WASM and not settings.SIDE_MODULE:
    # A bare .wasm has no JS to lean on.  Side modules are loaded by a main
    # module that may well have JS, so they are left alone.
    settings.STANDALONE_WASM = 1

  if options.no_entry:
    settings.EXPECT_MAIN = 0
  elif settings.STANDALONE_WASM:
    if '_main' in settings.EXPORTED_FUNCTIONS:
      logger.debug('including `_main` in EXPORTED_FUNCTIONS is not necessary in standalone mode')
  else:
    # Explicit exports that leave out `_main` describe a reactor.  With no
    # exports at all, `_main` is the one export.
    if 'EXPORTED_FUNCTIONS' in user_settings:
      if '_main' not in settings.USER_EXPORTS:
        settings.EXPECT_MAIN = 0
    else:
      assert not settings.EXPORTED_FUNCTIONS
      settings.EXPORTED_FUNCTIONS = ['_main']

  if settings.STANDALONE_WASM:
    # A standalone command exits its runtime when main returns; a reactor
    # keeps it alive for later calls.
    if 'EXIT_RUNTIME' in user_settings:
      exit_with_error('Explicitly setting EXIT_RUNTIME not compatible with STANDALONE_WASM.  EXIT_RUNTIME will always be True for programs (with a main function) and False for reactors (not main function).')
    settings.EXIT_RUNTIME = settings.EXPECT_MAIN
    # no JS is around to legalize i64 imports and exports
    settings.LEGALIZE_JS_FFI = 0

  if '_main' in settings.EXPORTED_FUNCTIONS:
    settings.EXPORT_IF_DEFINED.append('__main_argc_argv')
  elif settings.ASSERTIONS and not settings.STANDALONE_WASM:
    # Still export `main` if it exists so that debug builds can warn users
    # who forget to export it explicitly.
    settings.EXPORT_IF_DEFINED.append('main')

  check_settings_rules(LINK_RULES)

  for setting in ('INITIAL_MEMORY', 'MAXIMUM_MEMORY'):
    check_memory_setting(setting)

  if not settings.SIDE_MODULE and settings.INITIAL_MEMORY < settings.STACK_SIZE:
    exit_with_error(f'INITIAL_MEMORY must be larger than STACK_SIZE, was {settings.INITIAL_MEMORY} (STACK_SIZE={settings.STACK_SIZE})')

  if settings.ALLOW_MEMORY_GROWTH and settings.MAXIMUM_MEMORY < settings.INITIAL_MEMORY:
    exit_with_error('MAXIMUM_MEMORY must be larger then INITIAL_MEMORY')

  if not settings.EXPORT_NAME.isidentifier():
    exit_with_error(f'EXPORT_NAME is not a valid JS identifier: `{settings.EXPORT_NAME}`')

  setup_environment_settings()

  setup_sanitizers(newargs)

  if settings.ASYNCIFY:
    settings.ASYNCIFY_ADD = unmangle_symbols_from_cmdline(settings.ASYNCIFY_ADD)
    settings.ASYNCIFY_REMOVE = unmangle_symbols_from_cmdline(settings.ASYNCIFY_REMOVE)
    settings.ASYNCIFY_ONLY = unmangle_symbols_from_cmdline(settings.ASYNCIFY_ONLY)
    # Imports and exports use the `module.name` form, leave the dots alone
    settings.ASYNCIFY_IMPORTS = DEFAULT_ASYNCIFY_IMPORTS + settings.ASYNCIFY_IMPORTS
    if settings.ASYNCIFY == 2:
      settings.ASYNCIFY_EXPORTS = DEFAULT_ASYNCIFY_EXPORTS + settings.ASYNCIFY_EXPORTS
    if settings.ASYNCIFY_DEBUG:
      settings.ASSERTIONS = 1

  settings.LINK_AS_CXX = bool(state.run_via_emxx or settings.DEFAULT_TO_CXX) and '-nostdlib++' not in newargs
  if not settings.LINK_AS_CXX:
    for key in CXX_ONLY_SETTINGS:
      if key in user_settings:
        diagnostics.warning('linkflags', 'setting `%s` is not meaningful unless linking as C++' % key)

  if not settings.DISABLE_EXCEPTION_CATCHING:
    # The JS exception runtime calls into these directly, and with LTO they do
    # not exist yet when JS library dependencies are resolved.
    settings.REQUIRED_EXPORTS += [
      '__cxa_can_catch',
      '__cxa_is_pointer_type',
      '__cxa_increment_exception_refcount',
      '__cxa_decrement_exception_refcount',
      # called from the invoke_* wrappers that codegen emits
      'setThrew',
      '__cxa_free_exception',
    ]

  if settings.WASM_EXCEPTIONS:
    settings.REQUIRED_EXPORTS += ['__trap']

  if settings.SIDE_MODULE:
    # Side modules get everything above from the main module.  The exception
    # is __wasm_call_ctors which is a per-module export.
    settings.REQUIRED_EXPORTS.clear()

  if not settings.STANDALONE_WASM:
    # standalone builds run constructors from crt1
    settings.REQUIRED_EXPORTS.append('__wasm_call_ctors')

  settings.PRE_JS_FILES = [os.path.abspath(f) for f in options.pre_js]
  settings.POST_JS_FILES = [os.path.abspath(f) for f in options.post_js]

  return target, wasm_target


def filter_link_flags(flags, using_lld):
  def is_supported(f):
    if using_lld:
      for flag, takes_arg in UNSUPPORTED_LLD_FLAGS.items():
        # lld accepts both -foo and --foo
        if f.startswith(flag) or f.startswith('-' + flag):
          diagnostics.warning('linkflags', 'ignoring unsupported linker flag: `%s`', f)
          # `-soname foo` also drops `foo`, `-soname=foo` has nothing to drop
          skip_next = takes_arg and '=' not in f
          return False, skip_next
      return True, False
    else:
      if f in SUPPORTED_LINKER_FLAGS:
        return True, False
      # -l and -L only mean something to lld
      if f.startswith('-l') or f.startswith('-L'):
        return False, False
      diagnostics.warning('linkflags', 'ignoring unsupported linker flag: `%s`', f)
      return False, False

  results = []
  skip_next = False
  for f in flags:
    if skip_next:
      skip_next = False
      continue
    keep, skip_next = is_supported(f[1])
    if keep:
      results.append(f)

  return results


def filter_out_dynamic_libs(options, inputs):
  # A .so that is not a wasm dylib is an object file in disguise
  def check(input_file):
    if get_file_suffix(input_file) in DYNAMICLIB_ENDINGS and not building.is_wasm_dylib(input_file):
      if not options.ignore_dynamic_linking:
        diagnostics.warning('emcc', 'ignoring dynamic library %s because not compiling to JS or HTML, remember to link it when compiling to JS or HTML at the end', os.path.basename(input_file))
      return False
    return True

  return [f for f in inputs if check(f)]


def filter_out_duplicate_dynamic_libs(inputs):
  seen = set()

  # object files posing as .so are linked once each
  def check(input_file):
    if get_file_suffix(input_file) in DYNAMICLIB_ENDINGS and not building.is_wasm_dylib(input_file):
      abspath = os.path.abspath(input_file)
      if abspath in seen:
        return False
      seen.add(abspath)
    return True

  return [f for f in inputs if check(f)]


def find_library(lib, lib_dirs):
  for lib_dir in lib_dirs:
    path = os.path.join(lib_dir, lib)
    if os.path.isfile(path):
      logger.debug('found library "%s" at %s', lib, path)
      return path
  return None


def process_libraries(state, linker_inputs):
  """Resolve every -l flag in state.link_flags.

  Each flag becomes JS libraries, a system library variant, a settings
  change, a library file found in the search path, or is left for wasm-ld.
  Files found on disk are appended to linker_inputs under the flag's key.
  """
  new_flags = []
  libraries = []
  suffixes = STATICLIB_ENDINGS + DYNAMICLIB_ENDINGS
  system_libs_map = system_libs.Library.get_usable_variations()

  for key, flag in state.link_flags:
    if not flag.startswith('-l'):
      new_flags.append((key, flag))
      continue
    lib = removeprefix(flag, '-l')

    logger.debug('looking for library "%s"', lib)

    js_libs, native_lib = building.map_to_js_libs(lib)
    if js_libs is not None:
      libraries += [(key, js_lib) for js_lib in js_libs]
      # some JS libraries come with a native half
      if native_lib:
        state.forced_stdlibs.append(native_lib)
      continue

    # System libraries are left for wasm-ld to find, but under the name of the
    # variant the current settings select (`-lc` becomes `-lc-mt` with threads).
    if 'lib' + lib in system_libs_map:
      new_flags.append((key, system_libs_map['lib' + lib].get_link_flag()))
      continue

    if building.map_and_apply_to_settings(lib):
      continue

    path = None
    for suff in suffixes:
      name = 'lib' + lib + suff
      path = find_library(name, state.lib_dirs)
      if path:
        break

    if path:
      linker_inputs.append((key, path))
      continue

    new_flags.append((key, flag))

  settings.JS_LIBRARIES += libraries

  # No more JS libraries will be added after this point.  Sort the
  # (key, name) pairs into command line order and flatten them.
  settings.JS_LIBRARIES.sort(key=lambda lib: lib[0])
  settings.JS_LIBRARIES = [lib[1] for lib in settings.JS_LIBRARIES]
  state.link_flags = new_flags


def process_dynamic_libs(dylibs, lib_dirs):
  """Walk the `needed` entries of the given side modules breadth first, add
  every module found to `dylibs` once, and record the symbols they
  provide and require."""
  extras = []
  seen = set(os.path.basename(d) for d in dylibs)
  to_process = deque(dylibs)
  while to_process:
    dylib = to_process.popleft()
    dylink = webassembly.parse_dylink_section(dylib)
    for needed in dylink.needed:
      if needed in seen:
        continue
      path = find_library(needed, lib_dirs)
      if not path:
        exit_with_error(f'{os.path.normpath(dylib)}: shared library dependency not found: `{needed}`')
      if not building.is_wasm_dylib(path):
        exit_with_error(f'{os.path.normpath(dylib)}: shared library dependency is not a wasm side module: `{path}`')
      extras.append(path)
      seen.add(needed)
      to_process.append(path)

  dylibs += extras
  for dylib in dylibs:
    exports = webassembly.get_exports(dylib)
    exports = set(e.name for e in exports)
    # EM_JS functions are exports with a special prefix
    exports = [removeprefix(e, '__em_js__') for e in exports]
    settings.SIDE_MODULE_EXPORTS.extend(sorted(exports))

    imports = webassembly.get_imports(dylib)
    imports = [i.field for i in imports if i.kind in (webassembly.ExternType.FUNC, webassembly.ExternType.GLOBAL, webassembly.ExternType.TAG)]
    # `invoke_` functions imported by side modules are created on the fly by
    # the dynamic linker.
    imports = set(i for i in imports if not i.startswith('invoke_'))
    logger.debug('Adding symbols requirements from `%s`: %s', dylib, imports)

    settings.SIDE_MODULE_IMPORTS.extend(shared.asmjs_mangle(e) for e in sorted(imports))
    settings.EXPORT_IF_DEFINED.extend(sorted(imports))
    settings.DEFAULT_LIBRARY_FUNCS_TO_INCLUDE.extend(sorted(imports))

  return dylibs


@ToolchainProfiler.profile_block('calculate linker inputs')
def phase_calculate_linker_inputs(options, state, linker_inputs):
  using_lld = not (options.oformat == OFormat.OBJECT and settings.LTO)
  state.link_flags = filter_link_flags(state.link_flags, using_lld)

  # resolve -l flags into inputs, JS libraries and settings
  process_libraries(state, linker_inputs)

  linker_args = [val for _, val in sorted(linker_inputs + state.link_flags, key=lambda x: x[0])]

  # Object files posing as shared libraries would be linked twice: once
  # into the intermediate object and again into the final executable.
  if options.oformat == OFormat.OBJECT or options.ignore_dynamic_linking:
    linker_args = filter_out_dynamic_libs(options, linker_args)
  else:
    linker_args = filter_out_duplicate_dynamic_libs(linker_args)

  if settings.MAIN_MODULE:
    dylibs = [a for a in linker_args if building.is_wasm_dylib(a)]
    process_dynamic_libs(dylibs, state.lib_dirs)

  return linker_args


def generate_js_sym_info():
  return building.run_js_compiler(symbols_only=True)


def get_js_sym_info():
  """Returns the symbols provided by the JS libraries of this link, as
  {"deps": {symbol: [native deps]}, "asyncFuncs": [...]}.

  Results are cached by the hash of everything that can change them.
  """
  if DEBUG or config.FROZEN_CACHE:
    return generate_js_sym_info()

  # PRE_JS_FILES/POST_JS_FILES don't affect the symbol list and can contain
  # full paths to temporary files.
  skip_settings = {'PRE_JS_FILES', 'POST_JS_FILES'}
  input_files = [json.dumps(settings.external_dict(skip_keys=skip_settings), sort_keys=True, indent=2)]
  for jslib in sorted(glob.glob(utils.path_from_root('src') + '/library*.js')):
    input_files.append(read_file(jslib))
  for jslib in settings.JS_LIBRARIES:
    if not os.path.isabs(jslib):
      jslib = utils.path_from_root('src', jslib)
    # Bundled libraries that ship with the JS compiler rather than in src/
    # are covered by their name.
    if os.path.exists(jslib):
      input_files.append(read_file(jslib))
    else:
      input_files.append(jslib)
  content = '\n'.join(input_files)
  content_hash = hashlib.sha1(content.encode('utf-8')).hexdigest()

  def build_symbol_list(filename):
    library_syms = generate_js_sym_info()
    write_file(filename, json.dumps(library_syms, separators=(',', ':'), indent=2))

  # Symbol lists are pruned as part of normal operation so they get a lock of
  # their own; otherwise one could vanish between cache.get() and read_file().
  with filelock.FileLock(cache.get_path('symbol_lists.lock')):
    filename = cache.get(f'symbol_lists/{content_hash}.json', build_symbol_list, what='symbol list', quiet=True)
    library_syms = json.loads(read_file(filename))

    root = cache.get_path('symbol_lists')
    if len(os.listdir(root)) > SYMBOL_LIST_CACHE_LIMIT:
      files = []
      for f in os.listdir(root):
        f = os.path.join(root, f)
        files.append((f, os.path.getmtime(f)))
      files.sort(key=lambda x: x[1])
      # keep the newest
      for f, _ in files[:-SYMBOL_LIST_CACHE_LIMIT]:
        delete_file(f)

  return library_syms


@ToolchainProfiler.profile_block('calculate system libraries')
def phase_calculate_system_libraries(state, linker_arguments, newargs):
  # ports and system libraries go after everything the user passed
  linker_arguments.extend(system_libs.calculate(newargs, forced=state.forced_stdlibs))


@ToolchainProfiler.profile_block('link')
def phase_link(linker_arguments, wasm_target, js_syms):
  logger.debug(f'linking: {linker_arguments}')

  # the driver, the libraries and the user may all have added the same names
  settings.EXPORTED_FUNCTIONS = dedup_list(settings.EXPORTED_FUNCTIONS)
  settings.REQUIRED_EXPORTS = dedup_list(settings.REQUIRED_EXPORTS)
  settings.EXPORT_IF_DEFINED = dedup_list(settings.EXPORT_IF_DEFINED)

  building.link_lld(linker_arguments, wasm_target, external_symbols=js_syms)


def should_run_binaryen_optimizer():
  # At -O1 LLVM has already done the bulk of the work.
  return settings.OPT_LEVEL >= 2


def post_emscripten_passes():
  passes = ['--post-emscripten']
  if settings.SIDE_MODULE:
    passes += ['--pass-arg=post-emscripten-side-module']
  return passes


def autodebug_passes():
  # log every local, call and memory access at runtime
  passes = ['--instrument-locals', '--log-execution', '--instrument-memory']
  if settings.LEGALIZE_JS_FFI:
    # the instrumentation adds i64 imports
    passes += ['--legalize-js-interface']
  return passes


def check_human_readable_list(items):
  # shell escaping can be confusing; try to emit useful warnings
  for item in items:
    if item.count('(') != item.count(')'):
      logger.warning('emcc: ASYNCIFY list contains an item without balanced parentheses ("(", ")"):')
      logger.warning('   ' + item)
      logger.warning('This may indicate improper escaping that led to splitting inside your names.')
      logger.warning('Try using a response file. e.g: -sASYNCIFY_ONLY=@funcs.txt. The format is a simple')
      logger.warning('text file, one line per function.')
      break


def asyncify_passes():
  passes = ['--asyncify']
  if settings.MAIN_MODULE or settings.SIDE_MODULE:
    passes += ['--pass-arg=asyncify-relocatable']
  if settings.ASSERTIONS:
    passes += ['--pass-arg=asyncify-asserts']
  if settings.ASYNCIFY_ADVISE:
    passes += ['--pass-arg=asyncify-verbose']
  if settings.ASYNCIFY_IGNORE_INDIRECT:
    passes += ['--pass-arg=asyncify-ignore-indirect']
  passes += ['--pass-arg=asyncify-imports@%s' % ','.join(settings.ASYNCIFY_IMPORTS)]
  for setting, name in (('ASYNCIFY_REMOVE', 'removelist'),
                        ('ASYNCIFY_ADD', 'addlist'),
                        ('ASYNCIFY_ONLY', 'onlylist')):
    items = getattr(settings, setting)
    if items:
      check_human_readable_list(items)
      passes += ['--pass-arg=asyncify-%s@%s' % (name, ','.join(items))]
  return passes


def jspi_passes():
  passes = ['--jspi']
  passes += ['--pass-arg=jspi-imports@%s' % ','.join(settings.ASYNCIFY_IMPORTS)]
  passes += ['--pass-arg=jspi-exports@%s' % ','.join(settings.ASYNCIFY_EXPORTS)]
  if settings.SPLIT_MODULE:
    passes += ['--pass-arg=jspi-split-module']
  return passes


def extra_passes():
  # comma-separated, and both '-'-prefixed and unprefixed pass names work
  extras = settings.BINARYEN_EXTRA_PASSES.split(',')
  return [('--' + p) if p[0] != '-' else p for p in extras if p]


PassRule = namedtuple('PassRule', ['predicate', 'passes'])

# Evaluated in order; every rule whose predicate holds contributes its passes.
BINARYEN_PASS_RULES = [
  # before --post-emscripten, which needs to see the instrumented sbrk
  PassRule(lambda: settings.SAFE_HEAP, lambda: ['--safe-heap']),
  PassRule(lambda: settings.MEMORY64 == 2, lambda: ['--memory64-lowering']),
  # sign-ext is enabled by default by llvm.  If the target browser settings
  # don't support it we lower it away.
  PassRule(lambda: not feature_matrix.caniuse(feature_matrix.Feature.SIGN_EXT), lambda: ['--signext-lowering']),
  PassRule(should_run_binaryen_optimizer, post_emscripten_passes),
  PassRule(should_run_binaryen_optimizer, lambda: [building.opt_level_to_str(settings.OPT_LEVEL, settings.SHRINK_LEVEL)]),
  # low memory is never used (1024 is a hardcoded value in the binaryen pass)
  PassRule(lambda: should_run_binaryen_optimizer() and settings.GLOBAL_BASE >= 1024, lambda: ['--low-memory-unused']),
  PassRule(lambda: settings.AUTODEBUG, autodebug_passes),
  # must run before asyncify, so that the byn$fpcast_emu functions get
  # processed by it
  PassRule(lambda: settings.EMULATE_FUNCTION_POINTER_CASTS, lambda: ['--fpcast-emu']),
  PassRule(lambda: settings.ASYNCIFY == 1, asyncify_passes),
  PassRule(lambda: settings.ASYNCIFY == 2, jspi_passes),
  PassRule(lambda: settings.BINARYEN_IGNORE_IMPLICIT_TRAPS, lambda: ['--ignore-implicit-traps']),
  # the memory of a side module may have been used before it was loaded
  PassRule(lambda: should_run_binaryen_optimizer() and not settings.SIDE_MODULE, lambda: ['--zero-filled-memory']),
  # LLVM never rewrites the initial table entries, it only appends.  A side
  # module shares the table of the main module.
  PassRule(lambda: should_run_binaryen_optimizer() and not settings.SIDE_MODULE, lambda: ['--pass-arg=directize-initial-contents-immutable']),
  PassRule(lambda: settings.BINARYEN_EXTRA_PASSES, extra_passes),
]


def get_binaryen_passes():
  passes = []
  for rule in BINARYEN_PASS_RULES:
    if rule.predicate():
      passes += rule.passes()
  return passes


def minify_whitespace():
  return settings.OPT_LEVEL >= 2 and settings.DEBUG_LEVEL == 0


@ToolchainProfiler.profile_block('binaryen')
def phase_binaryen(target, options, wasm_target, js):
  logger.debug('using binaryen')
  # whether we need to emit -g (function name debug info) in the final wasm
  debug_info = settings.DEBUG_LEVEL >= 2 or settings.EMIT_NAME_SECTION
  # Count the reasons for keeping names through the intermediate binaryen
  # runs, so that -g can be dropped before the final one when none remain.
  intermediate_debug_info = 0
  if debug_info:
    intermediate_debug_info += 1
  if options.emit_symbol_map:
    intermediate_debug_info += 1
  if settings.ASYNCIFY == 1:
    intermediate_debug_info += 1
  # wasm-ld can strip DWARF too, but it also strips the name section
  strip_debug = settings.DEBUG_LEVEL < 3
  strip_producers = not settings.EMIT_PRODUCERS_SECTION
  # Source maps need a wasm-opt run even without passes so that DWARF can
  # be dropped while the source map survives.
  passes = get_binaryen_passes()
  if passes or settings.GENERATE_SOURCE_MAP:
    # wasm-opt is running anyway, so it does the stripping too
    if strip_debug:
      passes += ['--strip-debug']
    if strip_producers:
      passes += ['--strip-producers']
    # asyncify runs as part of this invocation, so it no longer needs names
    # after it
    if settings.ASYNCIFY == 1:
      intermediate_debug_info -= 1
    if settings.DEBUG_LEVEL >= 3:
      diagnostics.warning('limited-postlink-optimizations', 'running limited binaryen optimizations because DWARF info requested (or indirectly required)')
    with ToolchainProfiler.profile_block('wasm_opt'):
      building.run_wasm_opt(wasm_target,
                            wasm_target,
                            args=passes,
                            debug=intermediate_debug_info)
  elif strip_debug or strip_producers:
    # Without wasm-opt work to do, llvm-objcopy strips the sections.  It is
    # fast and does not rewrite the code, which is better for debug info.
    sections = ['producers'] if strip_producers else []
    with ToolchainProfiler.profile_block('strip_producers'):
      building.strip(wasm_target, wasm_target, debug=strip_debug, sections=sections)
      building.save_intermediate(wasm_target, 'strip.wasm')

  if js and options.use_closure_compiler:
    with ToolchainProfiler.profile_block('closure_compile'):
      js.replace(building.closure_compiler(js.path, pretty=not minify_whitespace(),
                                           extra_closure_args=options.closure_args), 'closured')

  if settings.WASM == 2:
    # Also emit a JS version of the wasm for engines without WebAssembly
    with ToolchainProfiler.profile_block('wasm2js'):
      building.wasm2js(wasm_target, wasm_target + '.js', settings.OPT_LEVEL, debug_info)

  if options.emit_symbol_map:
    intermediate_debug_info -= 1
    if os.path.exists(wasm_target):
      symbols_file = unsuffixed(target) + '.symbols'
      building.handle_final_wasm_symbols(wasm_file=wasm_target, symbols_file=symbols_file, debug_info=intermediate_debug_info)

  if js and settings.SINGLE_FILE:
    src = do_replace(js.read(), '<<< WASM_BINARY_FILE >>>', get_subresource_location(wasm_target))
    js.write_step('single_file', src)
    delete_file(wasm_target)


@ToolchainProfiler.profile_block('emscript')
def phase_emscript(js):
  """Generate the JS glue for the linked wasm.

  The JS compiler sees the whole settings dict, which names the wasm file
  through WASM_BINARY_FILE.  Under SINGLE_FILE the glue refers to the binary
  through the `<<< WASM_BINARY_FILE >>>` placeholder instead.
  """
  building.run_js_compiler(outfile=js.path)
  shared.get_temp_files().note(js.path)


def phase_source_transforms(options, js):
  # the transform rewrites its argument in place, so give it a copy
  transformed = js.path + '.tr.js'
  utils.safe_copy(js.path, transformed)
  shared.get_temp_files().note(transformed)
  logger.debug('applying transform: %s', options.js_transform)
  shared.check_call(shlex.split(options.js_transform, posix=not utils.WINDOWS) + [os.path.abspath(transformed)])
  js.replace(transformed, 'transformed')


@ToolchainProfiler.profile_block('post link')
def phase_post_link(options, state, in_wasm, wasm_target, target):
  """Turn the linked wasm into the requested outputs."""
  target_basename = unsuffixed_basename(target)

  if in_wasm != wasm_target:
    utils.safe_copy(in_wasm, wasm_target)

  settings.TARGET_BASENAME = target_basename

  if options.oformat in (OFormat.JS, OFormat.MJS):
    state.js_target = target
  else:
    state.js_target = get_secondary_target(target, '.js')

  settings.TARGET_JS_NAME = os.path.basename(state.js_target)
  settings.WASM_BINARY_FILE = os.path.basename(wasm_target)

  js = None
  if options.oformat != OFormat.WASM:
    js = JSArtifact(shared.in_temp(target_basename + '.js'))
    phase_emscript(js)
    if options.js_transform:
      phase_source_transforms(options, js)

  phase_binaryen(target, options, wasm_target, js)

  if js:
    phase_final_emitting(options, state, target, wasm_target, js)


def node_es6_imports():
  if not settings.EXPORT_ES6 or not settings.environment_may_be('node'):
    return ''

  # the web-capable shell does its own `await import`
  if settings.environment_may_be('web'):
    return ''

  # node-only output can import statically
  return '''
import { createRequire } from 'module';
const require = createRequire(import.meta.url);
'''


def modularize(js):
  logger.debug(f'Modularizing, assigning to var {settings.EXPORT_NAME}')
  src = js.read()

  # ES6 output for both node and web needs an async factory
  async_emit = ''
  if settings.EXPORT_ES6 and \
     settings.environment_may_be('node') and \
     settings.environment_may_be('web'):
    async_emit = 'async '

  # `moduleArg` is the `Module` object of the generated code, but it is not
  # renamed by closure so the return statement can refer to it.
  return_value = 'moduleArg'
  if settings.WASM_ASYNC_COMPILATION:
    return_value += '.ready'

  src = '''
%(maybe_async)sfunction(moduleArg = {}) {

%(src)s

  return %(return_value)s
}
''' % {
    'maybe_async': async_emit,
    'src': src,
    'return_value': return_value,
  }

  script_url_node = ''
  # When MODULARIZE this JS may be executed later, after
  # document.currentScript is gone, so we save it.
  if settings.EXPORT_ES6:
    script_url = 'import.meta.url'
  else:
    script_url = "typeof document !== 'undefined' && document.currentScript ? document.currentScript.src : undefined"
    if settings.environment_may_be('node'):
      script_url_node = "if (typeof __filename !== 'undefined') _scriptDir = _scriptDir || __filename;"
  src = '''%(node_imports)s
var %(EXPORT_NAME)s = (() => {
  var _scriptDir = %(script_url)s;
  %(script_url_node)s
  return (%(src)s);
})();
''' % {
    'node_imports': node_es6_imports(),
    'EXPORT_NAME': settings.EXPORT_NAME,
    'script_url': script_url,
    'script_url_node': script_url_node,
    'src': src
  }

  # UMD for CommonJS and AMD loaders, `export default` for ES6
  if settings.EXPORT_ES6:
    src += 'export default %s;' % settings.EXPORT_NAME
  else:
    src += '''\
if (typeof exports === 'object' && typeof module === 'object')
  module.exports = %(EXPORT_NAME)s;
else if (typeof define === 'function' && define['amd'])
  define([], () => %(EXPORT_NAME)s);
''' % {'EXPORT_NAME': settings.EXPORT_NAME}

  js.write_step('modular', src)


def make_js_executable(script):
  src = read_file(script)
  cmd = config.NODE_JS
  if len(cmd) > 1 or not os.path.isabs(cmd[0]):
    # -S splits the rest of the line into separate arguments.  Older env
    # binaries lack it, so the plain form is kept when it suffices.
    cmd = '/usr/bin/env -S ' + shared.shlex_join(cmd)
  else:
    cmd = shared.shlex_join(cmd)
  logger.debug('adding `#!` to JavaScript file: %s' % cmd)
  write_file(script, '#!%s\n' % cmd + src)
  os.chmod(script, stat.S_IMODE(os.stat(script).st_mode) | stat.S_IXUSR)


def do_split_module(wasm_file, options):
  os.rename(wasm_file, wasm_file + '.orig')
  args = ['--instrument']
  if options.requested_debug:
    # keep function names
    args += ['-g']
  building.run_binaryen_command('wasm-split', wasm_file + '.orig', outfile=wasm_file, args=args)


@ToolchainProfiler.profile_block('final emitting')
def phase_final_emitting(options, state, target, wasm_target, js):
  if settings.MODULARIZE:
    modularize(js)

  # The JS compiler and closure cannot parse `import.meta` or `await import`,
  # so they travel mangled until here.
  if settings.EXPORT_ES6:
    src = js.read()
    js.write_step('esmeta', src
                  .replace('EMSCRIPTEN$IMPORT$META', 'import.meta')
                  .replace('EMSCRIPTEN$AWAIT$IMPORT', 'await import'))

  if options.extern_pre_js or options.extern_post_js:
    logger.debug('applying extern pre/postjses')
    js.write_step('epp', options.extern_pre_js + js.read() + options.extern_post_js)

  js_target = state.js_target

  # no more JS rewrites after this point
  move_file(js.path, js_target)

  target_basename = unsuffixed_basename(target)

  # secondary outputs
  if options.oformat == OFormat.HTML:
    generate_html(target, options, js_target, target_basename, wasm_target)
  elif settings.PROXY_TO_WORKER:
    generate_worker_js(target, js_target, target_basename)

  if settings.SPLIT_MODULE:
    diagnostics.warning('experimental', 'The SPLIT_MODULE setting is experimental and subject to change')
    do_split_module(wasm_target, options)

  if not settings.SINGLE_FILE:
    line_endings.convert_line_endings_in_file(js_target, os.linesep, options.output_eol)

  if options.executable:
    make_js_executable(js_target)


class ScriptSource:
  def __init__(self):
    self.src = None # if set, we have a script to load with a src attribute
    self.inline = None # if set, we have the contents of a script to write inline in a script

  def un_src(self):
    """Use this if you want to modify the script and need it to be inline."""
    if self.src is None:
      return
    quoted_src = quote(self.src)
    if settings.EXPORT_ES6:
      self.inline = f'''
        import("./{quoted_src}").then(exports => exports.default(Module))
      '''
    else:
      self.inline = f'''
            var script = document.createElement('script');
            script.src = "{quoted_src}";
            document.body.appendChild(script);
      '''
    self.src = None

  def replacement(self):
    """Returns the script tag to replace the {{{ SCRIPT }}} tag in the target"""
    assert (self.src or self.inline) and not (self.src and self.inline)
    if self.src:
      quoted_src = quote(self.src)
      if settings.EXPORT_ES6:
        return f'''
        <script type="module">
          import initModule from "./{quoted_src}";
          initModule(Module);
        </script>
        '''
      return f'<script async type="text/javascript" src="{quoted_src}"></script>'
    return '<script>\n%s\n</script>' % self.inline


def generate_html(target, options, js_target, target_basename, wasm_target):
  logger.debug('generating HTML')

  if settings.EXPORT_NAME != 'Module' and options.shell_path == utils.path_from_root('src', 'shell.html'):
    # the default shell refers to `Module` directly
    exit_with_error('Customizing EXPORT_NAME requires that the HTML be customized to use that name (see https://github.com/emscripten-core/emscripten/issues/10086)')

  script = ScriptSource()

  shell = read_file(options.shell_path)
  if '{{{ SCRIPT }}}' not in shell:
    exit_with_error('HTML shell must contain {{{ SCRIPT }}}, see src/shell.html for an example')
  base_js_target = os.path.basename(js_target)

  if settings.PROXY_TO_WORKER:
    proxy_worker_filename = (settings.PROXY_TO_WORKER_FILENAME or target_basename) + '.js'
    worker_js = worker_js_script(proxy_worker_filename)
    script.inline = ('''
  var filename = '%s';
  if ((',' + window.location.search.substr(1) + ',').indexOf(',noProxy,') < 0) {
    console.log('running code in a web worker');
''' % get_subresource_location(proxy_worker_filename)) + worker_js + '''
  } else {
    console.log('running code on the main thread');
    var fileBytes = tryParseAsDataURI(filename);
    var script = document.createElement('script');
    if (fileBytes) {
      script.innerHTML = intArrayToString(fileBytes);
    } else {
      script.src = filename;
    }
    document.body.appendChild(script);
  }
'''
  else:
    # plain script tag
    script.src = base_js_target

  if not settings.SINGLE_FILE:
    if not settings.WASM_ASYNC_COMPILATION:
      # We need to load the wasm file before anything else, it has to be
      # synchronously ready
      script.un_src()
      script.inline = '''
          var wasmURL = '%s';
          var wasmXHR = new XMLHttpRequest();
          wasmXHR.open('GET', wasmURL, true);
          wasmXHR.responseType = 'arraybuffer';
          wasmXHR.onload = function() {
            if (wasmXHR.status === 200 || wasmXHR.status === 0) {
              Module.wasmBinary = wasmXHR.response;
            } else {
              var wasmURLBytes = tryParseAsDataURI(wasmURL);
              if (wasmURLBytes) {
                Module.wasmBinary = wasmURLBytes.buffer;
              }
            }
%s
          };
          wasmXHR.send(null);
''' % (get_subresource_location(wasm_target), script.inline)

    if settings.WASM == 2:
      # If the browser does not support WebAssembly, load the .wasm.js file
      # before the main .js file.
      script.un_src()
      script.inline = '''
          function loadMainJs() {
%s
          }
          if (!window.WebAssembly || location.search.indexOf('_rwasm=0') > 0) {
            // Current browser does not support WebAssembly, load the .wasm.js JavaScript fallback
            // before the main JS runtime.
            var wasm2js = document.createElement('script');
            wasm2js.src = '%s';
            wasm2js.onload = loadMainJs;
            document.body.appendChild(wasm2js);
          } else {
            // Current browser supports Wasm, proceed with loading the main JS runtime.
            loadMainJs();
          }
''' % (script.inline, get_subresource_location(wasm_target) + '.js')

  # inline scripts need helper functions such as tryParseAsDataURI
  if script.inline:
    helpers = read_file(utils.path_from_root('src', 'html_helpers.js'))
    script.inline = 'var ASSERTIONS = %s;\n%s%s' % (int(settings.ASSERTIONS), helpers, script.inline)

  # SINGLE_FILE pages carry the whole glue inline
  if settings.SINGLE_FILE:
    js_contents = script.inline or ''
    if script.src:
      js_contents += read_file(js_target)
    delete_file(js_target)
    script.src = None
    script.inline = js_contents

  html_contents = do_replace(shell, '{{{ SCRIPT }}}', script.replacement())
  html_contents = line_endings.convert_line_endings(html_contents, '\n', options.output_eol)

  try:
    # always UTF-8, whatever the platform default
    utils.write_binary(target, html_contents.encode('utf-8'))
  except OSError as e:
    exit_with_error(f'cannot write output file: {e}')


def generate_worker_js(target, js_target, target_basename):
  if settings.SINGLE_FILE:
    # the worker script travels inside the target as a data URI
    proxy_worker_filename = get_subresource_location(js_target)
  else:
    # the glue runs in the worker, the target only starts it
    move_file(js_target, shared.replace_suffix(js_target, '.worker.js'))
    worker_target_basename = target_basename + '.worker'
    proxy_worker_filename = (settings.PROXY_TO_WORKER_FILENAME or worker_target_basename) + '.js'

  target_contents = worker_js_script(proxy_worker_filename)
  write_file(target, target_contents)


def worker_js_script(proxy_worker_filename):
  proxy_client_src = read_file(utils.path_from_root('src', 'proxyClient.js'))
  if not os.path.dirname(proxy_worker_filename):
    proxy_worker_filename = './' + proxy_worker_filename
  return do_replace(proxy_client_src, '<<< filename >>>', proxy_worker_filename)


def link(options, state, newargs, linker_inputs):
  """Link the compiled inputs and produce the requested outputs.

  Returns the process exit code.
  """
  target, wasm_target = phase_linker_setup(options, state, newargs)

  linker_arguments = phase_calculate_linker_inputs(options, state, linker_inputs)

  if options.oformat == OFormat.OBJECT:
    logger.debug(f'link_to_object: {linker_arguments} -> {target}')
    building.link_to_object(linker_arguments, target)
    logger.debug('stopping after linking to object file')
    return 0

  js_syms = {}
  if not settings.SIDE_MODULE or settings.ASYNCIFY:
    js_info = get_js_sym_info()
    if not settings.SIDE_MODULE:
      js_syms = js_info['deps']
    if settings.ASYNCIFY:
      settings.ASYNCIFY_IMPORTS += ['env.' + x for x in js_info['asyncFuncs']]

  phase_calculate_system_libraries(state, linker_arguments, newargs)

  phase_link(linker_arguments, wasm_target, js_syms)

  # `-Wl,--version` only prints the linker version; there is no output
  # to post-process.
  if '--version' in linker_arguments:
    return 0

  # Nothing to emit: the link itself was the point (e.g. a configure check)
  if target == os.devnull:
    return 0

  # --oformat=bare stops at the linked wasm
  if options.oformat != OFormat.BARE:
    phase_post_link(options, state, wasm_target, wasm_target, target)

  return 0


def run_post_link_only(options, state, newargs, in_wasm):
  """Run the post-link steps on an already linked wasm file."""
  target, wasm_target = phase_linker_setup(options, state, newargs)
  process_libraries(state, [])
  phase_post_link(options, state, in_wasm, wasm_target, target)
  return 0
