# Copyright 2023 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

import pytest

from tools import system_libs
from tools.settings import settings


def flags(args=(), forced=(), only_forced=False):
  return [flag for flag, _ in system_libs.get_libs_to_link(list(args), list(forced), only_forced)]


def test_c_defaults():
  assert flags() == ['-ldlmalloc-debug', '-lc-debug', '-lcompiler_rt']


def test_cxx_defaults():
  settings.LINK_AS_CXX = True
  assert flags() == [
    '-lc++abi-noexcept',
    '-lc++-noexcept',
    '-ldlmalloc-debug',
    '-lc-debug',
    '-lcompiler_rt',
  ]


def test_release_threads():
  settings.ASSERTIONS = 0
  settings.PTHREADS = True
  settings.MALLOC = 'emmalloc'
  assert flags() == ['-lemmalloc-mt', '-lc-mt', '-lcompiler_rt-mt']


def test_exception_variants():
  settings.LINK_AS_CXX = True
  settings.DISABLE_EXCEPTION_CATCHING = 0
  assert flags()[:2] == ['-lc++abi', '-lc++']
  settings.WASM_EXCEPTIONS = True
  assert flags()[:2] == ['-lc++abi-except', '-lc++-except']


def test_no_malloc():
  settings.MALLOC = 'none'
  assert flags() == ['-lc-debug', '-lcompiler_rt']


def test_invalid_malloc(capsys):
  settings.MALLOC = 'tcmalloc'
  with pytest.raises(SystemExit):
    flags()
  assert 'malloc() choice must be one of dlmalloc, emmalloc or none (not tcmalloc)' in capsys.readouterr().err


def test_sanitizer_runtimes():
  settings.USE_ASAN = True
  settings.UBSAN_RUNTIME = 2
  assert flags() == ['-lasan_rt', '-lubsan_rt', '-lc-debug', '-lcompiler_rt']
  settings.USE_ASAN = False
  settings.USE_LSAN = True
  assert flags()[0] == '-llsan_rt'


def test_standalone():
  settings.STANDALONE_WASM = True
  assert flags()[0] == '-lstandalonewasm'


def test_no_default_libs():
  assert flags(['-nostdlib']) == []
  assert flags(['-nodefaultlibs']) == []
  assert flags(['-nolibc']) == ['-lcompiler_rt']
  settings.LINK_AS_CXX = True
  assert '-lc++-noexcept' not in flags(['-nostdlib++'])


def test_forced_libraries_first():
  libs = system_libs.get_libs_to_link([], ['libGL'], False)
  assert libs[0] == ('-lGL', True)
  assert ('-lc-debug', False) in libs


def test_force_from_environment(monkeypatch):
  monkeypatch.setenv('EMCC_FORCE_STDLIBS', 'libembind,libc')
  libs = system_libs.get_libs_to_link([], [], False)
  assert libs[:2] == [('-lembind', True), ('-lc-debug', True)]
  # not repeated by the default set
  assert [flag for flag, _ in libs].count('-lc-debug') == 1


def test_force_everything(monkeypatch):
  monkeypatch.setenv('EMCC_FORCE_STDLIBS', '1')
  forced = flags(only_forced=True)
  assert '-lfetch' in forced
  assert '-lsockets' in forced
  assert '-lasan_rt' not in forced
  assert '-lstandalonewasm' not in forced


def test_invalid_forced_library(capsys):
  with pytest.raises(SystemExit):
    flags(forced=['libnope'])
  assert 'invalid forced library: libnope' in capsys.readouterr().err


def test_side_module_only_gets_forced():
  settings.SIDE_MODULE = 1
  assert flags() == []
  assert flags(forced=['libGL']) == ['-lGL']


def test_calculate(monkeypatch):
  settings.USE_LIBPNG = True
  assert system_libs.calculate([], ['libfetch']) == [
    '-lpng', '-lz',
    '--whole-archive', '-lfetch', '--no-whole-archive',
    '-ldlmalloc-debug', '-lc-debug', '-lcompiler_rt',
  ]
  monkeypatch.setenv('EMCC_ONLY_FORCED_STDLIBS', '1')
  assert system_libs.calculate([], ['libfetch']) == ['-lpng', '-lz', '--whole-archive', '-lfetch', '--no-whole-archive']


def test_calculate_side_module_skips_ports():
  settings.SIDE_MODULE = 1
  settings.USE_ZLIB = True
  assert system_libs.calculate([], []) == []


def test_sdl2_mixer_ports():
  settings.USE_SDL = 2
  settings.USE_SDL_MIXER = 2
  assert system_libs.get_ports_libs() == ['-lSDL2_mixer', '-lSDL2']
  settings.USE_SDL = 0
  assert system_libs.get_ports_libs() == []
