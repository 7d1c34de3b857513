# Copyright 2023 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

import pytest

import emcc
from emcc import Mode
from emlink import OFormat
from tools import shared
from tools.settings import settings


def classify(*args):
  state = emcc.EmccState(list(args))
  options, newargs = emcc.phase_parse_arguments(state)
  newargs, input_files = emcc.phase_setup(options, state, newargs)
  return options, state, newargs, input_files


def test_parse_s_args():
  args = ['-sFOO=1', '-s', 'BAR', '-sMIN_CHROME_VERSION=-1', '-s', '-O2', '-sno_lower']
  changes, args = emcc.parse_s_args(args)
  assert changes == ['FOO=1', 'BAR=1', 'MIN_CHROME_VERSION=0x7FFFFFFF']
  # -s followed by a non-setting is left for the linker (--strip-all)
  assert args == ['', '', '', '', '-s', '-O2', '-sno_lower']


def test_untargeted_browser(object_file):
  classify('main.o', '-sMIN_FIREFOX_VERSION=-1')
  assert settings.MIN_FIREFOX_VERSION == 0x7FFFFFFF


def test_link_flag_keys(object_file):
  _, state, _, input_files = classify('main.o', '-Wl,--foo,--bar', '-lm', '-L', 'libs',
                                      '-Xlinker', '--baz', '-z', 'stack-size=1')
  assert input_files == [((0, 0), 'main.o')]
  assert state.link_flags == [
    ((1, 0), '--foo'),
    ((1, 1), '--bar'),
    ((2, 0), '-lm'),
    ((3, 0), '-Llibs'),
    ((6, 0), '--baz'),
    ((7, 0), '-z'),
    ((8, 0), 'stack-size=1'),
  ]
  assert state.lib_dirs == ['libs']


def test_inputs_are_blanked(object_file):
  _, _, newargs, _ = classify('-O1', 'main.o', '-lm', '-DFOO')
  assert newargs == ['-O1', '-DFOO']


@pytest.mark.parametrize('args, mode', [
  (['hello.c'], Mode.COMPILE_AND_LINK),
  (['-c', 'hello.c'], Mode.COMPILE_ONLY),
  (['-S', 'hello.c'], Mode.COMPILE_ONLY),
  (['-E', 'hello.c'], Mode.PREPROCESS_ONLY),
  (['-fsyntax-only', 'hello.c'], Mode.PREPROCESS_ONLY),
  (['--post-link', 'hello.c'], Mode.POST_LINK_ONLY),
])
def test_mode(source_file, args, mode):
  _, state, _, _ = classify(*args)
  assert state.mode == mode


def test_header_input_is_pch(tmp_path):
  (tmp_path / 'all.h').write_text('#pragma once\n')
  _, state, _, _ = classify('all.h')
  assert state.mode == Mode.PCH


def test_no_input_files(capsys):
  with pytest.raises(SystemExit):
    classify('-O2')
  assert 'no input files' in capsys.readouterr().err


def test_link_flags_alone_are_enough():
  _, state, _, input_files = classify('-lfoo')
  assert input_files == []
  assert state.link_flags == [((0, 0), '-lfoo')]


def test_missing_input(capsys):
  with pytest.raises(SystemExit):
    classify('nothere.c')
  assert 'nothere.c: No such file or directory' in capsys.readouterr().err


def test_devnull_input_exists():
  _, _, _, input_files = classify('/dev/null', '-c')
  assert input_files == [((0, 0), '/dev/null')]


def test_fake_static_library(tmp_path, capsys):
  (tmp_path / 'libfoo.a').write_text('not an archive')
  with pytest.raises(SystemExit):
    classify('libfoo.a')
  assert 'libfoo.a: Unknown format, not a static library!' in capsys.readouterr().err


def test_native_shared_library_mapped(tmp_path, capsys):
  (tmp_path / 'libz.so.1').write_text('ELF')
  _, state, _, input_files = classify('libz.so.1')
  assert input_files == []
  assert state.link_flags == [((0, 0), '-lz')]
  assert 'Mapping to `-lz` and hoping for the best' in capsys.readouterr().err


def test_wasm_shared_library_is_input(tmp_path, make_dylib):
  make_dylib(tmp_path / 'libside.so')
  _, _, _, input_files = classify('libside.so')
  assert input_files == [((0, 0), 'libside.so')]


def test_link_settings_during_compile_warn(source_file, capsys):
  classify('-c', 'hello.c', '-sEXPORTED_FUNCTIONS=_x', '--closure', '1')
  err = capsys.readouterr().err
  assert "linker setting ignored during compilation: 'EXPORTED_FUNCTIONS'" in err
  assert "linker flag ignored during compilation: '--closure'" in err


def test_compile_flag_during_link_warns(object_file, capsys):
  classify('main.o', '--default-obj-ext', 'obj')
  assert "compiler flag ignored during linking: '--default-obj-ext'" in capsys.readouterr().err


def test_compile_only_multiple_inputs_with_output(tmp_path, capsys):
  (tmp_path / 'a.c').write_text('')
  (tmp_path / 'b.c').write_text('')
  with pytest.raises(SystemExit):
    classify('-c', 'a.c', 'b.c', '-o', 'out.o')
  assert 'cannot specify -o with -c/-S/-E/-M and multiple source files' in capsys.readouterr().err


def test_default_object_extension(source_file):
  options, _, _, _ = classify('-c', 'hello.c', '--default-obj-ext', 'obj')
  assert options.default_object_extension == '.obj'
  options, _, _, _ = classify('-S', 'hello.c')
  assert options.default_object_extension == '.s'


def test_missing_option_argument(object_file, capsys):
  with pytest.raises(SystemExit):
    classify('main.o', '-o')
  assert "option '-o' requires an argument" in capsys.readouterr().err


@pytest.mark.parametrize('flag', ['-z', '-Xlinker'])
def test_missing_linker_option_argument(object_file, capsys, flag):
  with pytest.raises(SystemExit):
    classify('main.o', flag)
  assert f"option '{flag}' requires an argument" in capsys.readouterr().err


@pytest.mark.parametrize('flag, opt, shrink', [
  ('-O', 2, 0),
  ('-O0', 0, 0),
  ('-O3', 3, 0),
  ('-Os', 2, 1),
  ('-Oz', 2, 2),
  ('-O5', 3, 0),
])
def test_optimization_levels(object_file, flag, opt, shrink):
  classify('main.o', flag)
  assert settings.OPT_LEVEL == opt
  assert settings.SHRINK_LEVEL == shrink


def test_invalid_optimization_level(object_file, capsys):
  with pytest.raises(SystemExit):
    classify('main.o', '-Ofast')
  assert 'invalid optimization level: -Ofast' in capsys.readouterr().err


def test_debug_levels(object_file):
  _, _, newargs, _ = classify('main.o', '-g2')
  assert settings.DEBUG_LEVEL == 2
  assert '-g0' in newargs

  settings.reset()
  _, _, newargs, _ = classify('main.o', '-g')
  assert settings.DEBUG_LEVEL == 3
  assert settings.GENERATE_DWARF
  assert '-g3' in newargs

  settings.reset()
  _, _, newargs, _ = classify('main.o', '-gsource-map')
  assert settings.GENERATE_SOURCE_MAP
  assert '-g' in newargs


def test_g4_is_deprecated(object_file, capsys):
  classify('main.o', '-g4')
  assert settings.GENERATE_SOURCE_MAP
  assert 'please replace -g4 with -gsource-map' in capsys.readouterr().err


def test_oformat(object_file, capsys):
  options, _, _, _ = classify('main.o', '--oformat=wasm')
  assert options.oformat == OFormat.WASM
  with pytest.raises(SystemExit):
    classify('main.o', '--oformat', 'elf')
  assert 'invalid output format: `elf`' in capsys.readouterr().err


def test_bare_output_is_experimental(object_file, capsys):
  classify('main.o', '--oformat=bare')
  assert '--oformat=bare/--post-link are experimental' in capsys.readouterr().err


def test_pthreads_imply_shared_memory(object_file):
  _, _, newargs, _ = classify('main.o', '-pthread')
  assert settings.SHARED_MEMORY
  assert settings.BULK_MEMORY
  assert newargs.count('-pthread') == 1


def test_shared_memory_adds_atomics(object_file):
  _, _, newargs, _ = classify('main.o', '-sSHARED_MEMORY')
  assert '-matomics' in newargs
  assert '-mbulk-memory' in newargs


def test_modules_are_relocatable(object_file):
  classify('main.o', '-sMAIN_MODULE')
  assert settings.RELOCATABLE


def test_exception_catching_mutually_exclusive(object_file, capsys):
  with pytest.raises(SystemExit):
    classify('main.o', '-sDISABLE_EXCEPTION_CATCHING=1', '-sEXCEPTION_CATCHING_ALLOWED=foo')
  assert 'are mutually exclusive' in capsys.readouterr().err


def test_exception_catching_allowed(object_file, capsys):
  classify('main.o', '-sDISABLE_EXCEPTION_CATCHING=0', '-sEXCEPTION_CATCHING_ALLOWED=foo')
  assert 'is no longer needed when specifying EXCEPTION_CATCHING_ALLOWED' in capsys.readouterr().err
  assert settings.DISABLE_EXCEPTION_CATCHING == 0


def test_wasm_exceptions(object_file):
  classify('main.o', '-fwasm-exceptions')
  assert settings.DISABLE_EXCEPTION_CATCHING == 1
  assert settings.DISABLE_EXCEPTION_THROWING == 1
  assert settings.SUPPORT_LONGJMP == 'wasm'


def test_emscripten_longjmp_by_default(object_file):
  classify('main.o')
  assert settings.SUPPORT_LONGJMP == 'emscripten'


def test_wasm_exceptions_conflicts(object_file, capsys):
  with pytest.raises(SystemExit):
    classify('main.o', '-fwasm-exceptions', '-sSUPPORT_LONGJMP=emscripten')
  assert 'SUPPORT_LONGJMP=emscripten is not compatible with -fwasm-exceptions' in capsys.readouterr().err


def test_no_exceptions_with_catching(object_file, capsys):
  with pytest.raises(SystemExit):
    classify('main.o', '-fno-exceptions', '-sDISABLE_EXCEPTION_CATCHING=0')
  assert 'DISABLE_EXCEPTION_THROWING was set' in capsys.readouterr().err


def test_disabled_warning(object_file, capsys):
  classify('main.o', '-Wno-experimental', '-sMEMORY64')
  assert capsys.readouterr().err == ''


def test_warning_as_error(object_file, capsys):
  with pytest.raises(SystemExit):
    classify('main.o', '-Werror=experimental', '-sMEMORY64')
  assert '-sMEMORY64 is still experimental' in capsys.readouterr().err


def test_absolute_include_paths(object_file, capsys):
  classify('main.o', '-I/usr/include')
  assert capsys.readouterr().err == ''
  classify('main.o', '-Wabsolute-paths', '-I/usr/include')
  assert 'encountered. If this is to a local system header/library' in capsys.readouterr().err
  classify('main.o', '-Wabsolute-paths', '--valid-abspath', '/usr', '-I/usr/include')
  assert capsys.readouterr().err == ''


def test_pthreads_typo(object_file, capsys):
  with pytest.raises(SystemExit):
    classify('main.o', '-pthreads')
  assert 'did you mean `-pthread`?' in capsys.readouterr().err


def test_bind_maps_to_embind(object_file):
  _, state, _, _ = classify('main.o', '--bind')
  assert state.link_flags == [((1, 0), '-lembind')]


def test_tracing(object_file):
  classify('main.o', '--tracing')
  assert settings.EMSCRIPTEN_TRACING
  assert settings.JS_LIBRARIES == [((0, 0), 'library_trace.js')]


def test_versioned_library_names():
  assert shared.get_file_suffix('libfoo.so.1.2.3') == '.so'
  assert emcc.get_library_basename('dir/libfoo.so.1.2.3') == 'libfoo'
  assert shared.get_file_suffix('foo.c') == '.c'
  assert emcc.get_library_basename('libbar.a') == 'libbar'
