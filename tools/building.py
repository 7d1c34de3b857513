# Copyright 2020 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

import json
import logging
import os
import shutil
import subprocess

from . import config
from . import response_file
from . import shared
from . import utils
from . import webassembly
from .settings import settings
from .shared import check_call, get_temp_files, path_from_root
from .utils import exit_with_error

logger = logging.getLogger('building')

save_intermediate_counter = 0


def get_command_with_possible_response_file(cmd):
  # 8k is a bit of an arbitrary limit, but a reasonable one
  # for max command line size before we use a response file
  if len(shared.shlex_join(cmd)) <= 8192:
    return cmd

  logger.debug('using response file for %s' % cmd[0])
  filename = response_file.create_response_file(cmd[1:], shared.get_emscripten_temp_dir())
  new_cmd = [cmd[0], "@" + filename]
  return new_cmd


def llvm_backend_args():
  # disable slow and relatively unimportant optimization passes
  args = ['-combiner-global-alias-analysis=false']

  # asm.js-style exception handling
  if not settings.DISABLE_EXCEPTION_CATCHING:
    args += ['-enable-emscripten-cxx-exceptions']
  if settings.EXCEPTION_CATCHING_ALLOWED:
    allowed = list(settings.EXCEPTION_CATCHING_ALLOWED)
    # When 'main' has a non-standard signature, LLVM outlines its content out to
    # '__original_main'. So we add it to the allowed list as well.
    if 'main' in allowed:
      allowed += ['__original_main', '__main_argc_argv']
    allowed = ','.join(allowed)
    args += ['-emscripten-cxx-exceptions-allowed=' + allowed]

  # asm.js-style setjmp/longjmp handling
  if settings.SUPPORT_LONGJMP == 'emscripten':
    args += ['-enable-emscripten-sjlj']
  # setjmp/longjmp handling using Wasm EH
  elif settings.SUPPORT_LONGJMP == 'wasm':
    args += ['-wasm-enable-sjlj']

  if settings.WASM_EXCEPTIONS:
    args += ['-wasm-enable-eh']

  # better (smaller, sometimes faster) codegen, see binaryen#1054
  # and https://bugs.llvm.org/show_bug.cgi?id=39488
  args += ['-disable-lsr']

  return args


def lld_flags_for_executable(external_symbols):
  cmd = []
  if external_symbols:
    undefs = get_temp_files().get('.undefined').name
    utils.write_file(undefs, '\n'.join(external_symbols))
    cmd.append('--allow-undefined-file=%s' % undefs)
  else:
    cmd.append('--import-undefined')

  if not settings.ERROR_ON_UNDEFINED_SYMBOLS:
    cmd.append('--allow-undefined')

  if settings.SHARED_MEMORY:
    cmd.append('--shared-memory')

  if settings.MEMORY64:
    cmd.append('-mwasm64')

  # wasm-ld can strip debug info for us. this strips both the Names
  # section and DWARF, so we can only use it when we don't need any of
  # those things.
  if settings.DEBUG_LEVEL < 2 and not settings.GENERATE_DWARF and \
     not settings.EMIT_SYMBOL_MAP and not settings.EMIT_NAME_SECTION and \
     not settings.ASYNCIFY:
    cmd.append('--strip-debug')

  if settings.RELOCATABLE:
    cmd.append('--experimental-pic')
    if settings.SIDE_MODULE:
      cmd.append('-shared')
    else:
      cmd.append('-pie')
  else:
    cmd.append('--global-base=%s' % settings.GLOBAL_BASE)

  if not settings.SIDE_MODULE:
    cmd += ['-z', 'stack-size=%s' % settings.STACK_SIZE]

    if settings.ALLOW_MEMORY_GROWTH:
      cmd += ['--max-memory=%d' % settings.MAXIMUM_MEMORY]
    else:
      cmd += ['--max-memory=%d' % settings.INITIAL_MEMORY]
    cmd.append('--initial-memory=%d' % settings.INITIAL_MEMORY)

    if settings.STANDALONE_WASM:
      # when settings.EXPECT_MAIN is set we fall back to wasm-ld default of _start
      if not settings.EXPECT_MAIN:
        cmd += ['--no-entry']
    else:
      # in normal non-standalone mode we have special handling of main, and do not need standard entry point
      cmd += ['--no-entry']

  c_exports = [e[1:] for e in settings.EXPORTED_FUNCTIONS if e.startswith('_')]
  for export in settings.REQUIRED_EXPORTS + c_exports:
    cmd.append('--export=' + export)
  for export in settings.EXPORT_IF_DEFINED:
    cmd.append('--export-if-defined=' + export)

  return cmd


def link_lld(args, target, external_symbols=None):
  # runs lld to link things.
  # lld doesn't currently support --start-group/--end-group since the
  # semantics are more like the windows linker where there is no need for
  # grouping.
  args = [a for a in args if a not in ('--start-group', '--end-group')]

  if settings.STRICT:
    args.append('--fatal-warnings')

  cmd = [shared.WASM_LD, '-o', target] + args
  for a in llvm_backend_args():
    cmd += ['-mllvm', a]

  if settings.LTO:
    cmd.append('--lto-O%d' % min(settings.OPT_LEVEL, 3))

  if '--relocatable' not in args and '-r' not in args:
    cmd += lld_flags_for_executable(external_symbols)

  cmd = get_command_with_possible_response_file(cmd)
  check_call(cmd)


def link_to_object(args, target):
  # lld performs any LTO itself and always produces a wasm object file here
  link_lld(args + ['--relocatable'], target)


def opt_level_to_str(opt_level, shrink_level=0):
  # convert opt_level/shrink_level pair to a string argument like -O1
  if opt_level == 0:
    return '-O0'
  if shrink_level == 1:
    return '-Os'
  elif shrink_level >= 2:
    return '-Oz'
  else:
    return f'-O{min(opt_level, 3)}'


def get_binaryen_feature_flags():
  # Read the features from the target_features section that wasm-ld emitted
  return ['--detect-features']


def run_binaryen_command(tool, infile, outfile=None, args=None, debug=False, stdout=None):
  cmd = [os.path.join(shared.get_binaryen_bin(), tool)]
  if args:
    cmd += args
  if infile:
    cmd += [infile]
  if outfile:
    cmd += ['-o', outfile]
  # if we are emitting a source map, every time we load and save the wasm
  # we must tell binaryen to update it
  if settings.GENERATE_SOURCE_MAP and outfile and tool == 'wasm-opt':
    cmd += [f'--input-source-map={infile}.map']
    cmd += [f'--output-source-map={outfile}.map']
  if debug:
    cmd += ['-g']  # preserve the debug info
  ret = check_call(cmd, stdout=stdout).stdout
  if outfile:
    save_intermediate(outfile, '%s.wasm' % tool)
  return ret


def run_wasm_opt(infile, outfile=None, args=None, **kwargs):
  args = list(args or []) + get_binaryen_feature_flags()
  return run_binaryen_command('wasm-opt', infile, outfile, args=args, **kwargs)


def strip(infile, outfile, debug=False, sections=None):
  """Remove custom sections from a wasm file with llvm-objcopy."""
  cmd = [shared.LLVM_OBJCOPY, infile, outfile]
  if debug:
    cmd += ['--remove-section=.debug*']
  if sections:
    cmd += ['--remove-section=' + section for section in sections]
  check_call(cmd)


def wasm2js(infile, outfile, opt_level, debug_info):
  args = ['--emscripten']
  if opt_level > 0:
    args.append('-O%d' % min(opt_level, 3))
  run_binaryen_command('wasm2js', infile, outfile, args=args, debug=debug_info)


def handle_final_wasm_symbols(wasm_file, symbols_file, debug_info):
  logger.debug('handle_final_wasm_symbols')
  args = ['--print-function-map']
  outfile = None
  if not debug_info:
    # to remove debug info, we just write to that same file, and without -g
    outfile = wasm_file
  else:
    # suppress the wasm-opt warning regarding "no output file specified"
    args += ['--quiet']
  output = run_wasm_opt(wasm_file, outfile, args=args, stdout=subprocess.PIPE)
  utils.write_file(symbols_file, output)


def closure_compiler(filename, pretty, extra_closure_args=None):
  outfile = get_temp_files().get('.cc.js').name
  args = ['--compilation_level', 'ADVANCED_OPTIMIZATIONS',
          '--language_in', 'ECMASCRIPT_2021',
          '--language_out', 'NO_TRANSPILE',
          '--emit_use_strict=false',
          '--js', filename,
          '--js_output_file', outfile]
  if pretty:
    args += ['--formatting', 'PRETTY_PRINT']
  if extra_closure_args:
    args += extra_closure_args
  logger.debug('closure compiler: ' + shared.shlex_join(args))
  check_call(config.CLOSURE_COMPILER + args)
  if not os.path.exists(outfile):
    exit_with_error('closure compiler did not produce an output file: %s', outfile)
  save_intermediate(outfile, 'closured.js')
  return outfile


def run_js_compiler(outfile=None, symbols_only=False):
  """Run the JS glue compiler over the current settings.

  In symbols-only mode nothing is written; the compiler reports the symbols
  that the JS libraries provide (as JSON) and that is returned.
  """
  with get_temp_files().get_file('.json') as settings_file:
    utils.write_file(settings_file, json.dumps(settings.dict(), sort_keys=True, indent=2))
    cmd = config.NODE_JS + [config.JS_COMPILER, settings_file]
    if symbols_only:
      cmd.append('--symbols-only')
    out = check_call(cmd, stdout=subprocess.PIPE).stdout
  if symbols_only:
    return json.loads(out)
  utils.write_file(outfile, out)
  save_intermediate(outfile, 'original.js')


def is_ar(filename):
  """Return True if a the given filename is an ar archive, False otherwise.
  """
  try:
    with open(filename, 'rb') as f:
      header = f.read(8)
  except Exception as e:
    logger.debug('is_ar failed to test whether file \'%s\' is a llvm archive file! Failed on exception: %s' % (filename, e))
    return False

  return header in (b'!<arch>\n', b'!<thin>\n')


def is_bitcode(filename):
  try:
    # look for magic signature
    with open(filename, 'rb') as f:
      b = f.read(22)
    if b[:2] == b'BC':
      return True
    # on macOS, there is a 20-byte prefix which starts with little endian
    # encoding of 0x0B17C0DE
    elif b[:4] == b'\xDE\xC0\x17\x0B':
      return b[20:22] == b'BC'
  except IOError as e:
    logger.debug('is_bitcode failed to test whether file \'%s\' is a llvm bitcode file! Failed on exception: %s' % (filename, e))
  return False


def is_wasm(filename):
  return webassembly.is_wasm(filename)


def is_wasm_dylib(filename):
  """Detect wasm dynamic libraries by the presence of the "dylink" custom section."""
  return webassembly.is_wasm_dylib(filename)


def map_to_js_libs(library_name):
  """Given the name of a special Emscripten-implemented system library, returns an
  pair containing
  1. Array of absolute paths to JS library files, inside emscripten/src/ that corresponds to the
     library name. `None` means there is no mapping and the library will be processed by the linker
     as a require for normal native library.
  2. Optional name of a corresponding native library to link in.
  """
  # Some native libraries are implemented in Emscripten as system side JS libraries
  library_map = {
    'embind': ['embind/embind.js', 'embind/emval.js'],
    'EGL': ['library_egl.js'],
    'GL': ['library_webgl.js', 'library_html5_webgl.js'],
    'webgl.js': ['library_webgl.js', 'library_html5_webgl.js'],
    'GLESv2': ['library_webgl.js'],
    # N.b. there is no GLESv3 to link to (note [f] in https://www.khronos.org/registry/implementers_guide.html)
    'GLEW': ['library_glew.js'],
    'glfw': ['library_glfw.js'],
    'glfw3': ['library_glfw.js'],
    'GLU': [],
    'glut': ['library_glut.js'],
    'openal': ['library_openal.js'],
    'X11': ['library_xlib.js'],
    'SDL': ['library_sdl.js'],
    'uuid': ['library_uuid.js'],
    'fetch': ['library_fetch.js'],
    'websocket': ['library_websocket.js'],
    # These 4 libraries are separate under glibc but are all rolled into
    # libc with musl.  For compatibility with glibc just ignore them
    # completely.
    'dl': [],
    'm': [],
    'rt': [],
    'pthread': [],
    # This is the name of GNU's C++ standard library. We ignore it here
    # for compatability with GNU toolchains.
    'stdc++': [],
  }
  # And some are hybrid and require JS and native libraries to be included
  native_library_map = {
    'embind': 'libembind',
    'GL': 'libGL',
    'fetch': 'libfetch',
  }

  if library_name in library_map:
    libs = library_map[library_name]
    logger.debug('Mapping library `%s` to JS libraries: %s' % (library_name, libs))
    return (libs, native_library_map.get(library_name))

  if library_name.endswith('.js') and os.path.isfile(path_from_root('src', f'library_{library_name}')):
    return ([f'library_{library_name}'], None)

  return (None, None)


# Map a linker flag to a settings. This lets a user write -lSDL2 and it will
# have the same effect as -sUSE_SDL=2.
def map_and_apply_to_settings(library_name):
  # most libraries just work, because the -l name matches the name of the
  # library we build. however, if a library has variations, which cause us to
  # build multiple versions with multiple names, then we need this mechanism.
  library_map = {
    'SDL2': [('USE_SDL', 2)],
    'SDL2_mixer': [('USE_SDL', 2), ('USE_SDL_MIXER', 2)],
  }

  if library_name in library_map:
    for key, value in library_map[library_name]:
      logger.debug('Mapping library `%s` to settings changes: %s = %s' % (library_name, key, value))
      setattr(settings, key, value)
    return True

  return False


def save_intermediate(src, dst):
  if shared.DEBUG:
    global save_intermediate_counter
    dst = 'emcc-%02d-%s' % (save_intermediate_counter, dst)
    save_intermediate_counter += 1
    dst = os.path.join(shared.CANONICAL_TEMP_DIR, dst)
    logger.debug('saving debug copy %s' % dst)
    utils.safe_ensure_dirs(shared.CANONICAL_TEMP_DIR)
    shutil.copyfile(src, dst)
