# Copyright 2023 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

"""End to end driver runs against the fake toolchain."""

import base64
import os
import tarfile

import pytest

import emcc
from tools import shared
from conftest import MINIMAL_WASM


def run(*args):
  return emcc.run(['emcc'] + list(args))


def glue_runs(toolchain):
  """JS compiler runs that generate glue, as opposed to symbol queries."""
  return [cmd for cmd in toolchain.find('js-compiler') if '--symbols-only' not in cmd]


def test_compile_and_link_js(tmp_path, toolchain, source_file):
  assert run('hello.c', '-o', 'out.js') == 0
  assert toolchain.ran('clang')
  ld = toolchain.find('wasm-ld')[0]
  assert ld[1:3] == ['-o', 'out.wasm']
  # the system library path comes after everything on the command line
  lib_path = [a for a in ld if a.startswith('-L')]
  assert lib_path and lib_path[-1].endswith(os.path.join('lib', 'wasm32-emscripten'))
  assert '-lc-debug' in ld
  assert '--export=__wasm_call_ctors' in ld
  assert "wasmBinaryFile = 'out.wasm'" in (tmp_path / 'out.js').read_text()
  assert (tmp_path / 'out.wasm').read_bytes() == MINIMAL_WASM
  assert toolchain.js_settings['TARGET_JS_NAME'] == 'out.js'
  assert toolchain.js_settings['EXPORTED_FUNCTIONS'] == ['_main']


def test_default_output_name(tmp_path, toolchain, object_file):
  run('main.o')
  assert (tmp_path / 'a.out.js').exists()
  assert (tmp_path / 'a.out.wasm').exists()


def test_c_and_cxx_compilers(tmp_path, toolchain, source_file):
  (tmp_path / 'other.cpp').write_text('')
  run('-c', 'hello.c', 'other.cpp')
  compilers = [os.path.basename(cmd[0]) for cmd in toolchain.find('clang') + toolchain.find('clang++')]
  assert sorted(compilers) == ['clang', 'clang++']
  assert (tmp_path / 'hello.o').exists()
  assert (tmp_path / 'other.o').exists()


def test_em_plus_plus(toolchain, source_file):
  run('--emscripten-cxx', '-c', 'hello.c')
  assert toolchain.ran('clang++')
  assert not toolchain.ran('clang')


def test_compile_flags(toolchain, source_file):
  run('-c', 'hello.c', '-DFOO=1', '-O2')
  cmd = toolchain.find('clang')[0]
  assert cmd[-3:] == ['hello.c', '-o', 'hello.o']
  for flag in ('-DFOO=1', '-O2', '-DEMSCRIPTEN', '-Werror=implicit-function-declaration', '-c'):
    assert flag in cmd
  assert cmd[cmd.index('-target') + 1] == 'wasm32-unknown-emscripten'


def test_compile_output_name(tmp_path, toolchain, source_file):
  run('-c', 'hello.c', '-o', 'custom.o')
  assert (tmp_path / 'custom.o').exists()
  assert not (tmp_path / 'hello.o').exists()
  assert not toolchain.ran('wasm-ld')


def test_compile_to_devnull(toolchain, source_file):
  assert run('-c', 'hello.c', '-o', os.devnull) == 0


def test_compiler_wrapper(toolchain, source_file):
  run('-c', 'hello.c', '--compiler-wrapper', 'ccache')
  cmd = toolchain.commands[0]
  assert cmd[0] == 'ccache'
  assert os.path.basename(cmd[1]) == 'clang'


def test_emcc_cflags(monkeypatch, toolchain, source_file):
  monkeypatch.setenv('EMCC_CFLAGS', '-DFROM_ENV')
  run('-c', 'hello.c')
  assert '-DFROM_ENV' in toolchain.find('clang')[0]


def test_unused_link_inputs_warn(toolchain, source_file, capsys):
  run('-c', 'hello.c', '-lfoo')
  assert "argument unused during compilation: '-lfoo'" in capsys.readouterr().err


def test_preprocess_only(toolchain, source_file):
  run('-E', 'hello.c')
  cmd = toolchain.find('clang')[0]
  assert '-E' in cmd
  assert '-c' not in cmd
  assert not toolchain.ran('wasm-ld')


def test_precompiled_header(tmp_path, toolchain):
  (tmp_path / 'all.h').write_text('')
  run('all.h', '-o', 'all.pch')
  cmd = toolchain.find('clang++')[0]
  assert cmd[-3:] == ['all.h', '-o', 'all.pch']


def test_header_defaults_to_cxx(tmp_path, toolchain):
  (tmp_path / 'all.h').write_text('')
  run('all.h', '-o', 'all.pch')
  assert toolchain.ran('clang++')
  assert not toolchain.ran('clang')


def test_header_as_c_in_strict_mode(tmp_path, toolchain):
  (tmp_path / 'all.h').write_text('')
  run('-sSTRICT', 'all.h', '-o', 'all.pch')
  assert toolchain.ran('clang')
  assert not toolchain.ran('clang++')


def test_html_output(tmp_path, toolchain, object_file):
  run('main.o', '-o', 'page.html')
  html = (tmp_path / 'page.html').read_text()
  assert '<script async type="text/javascript" src="page.js"></script>' in html
  assert "wasmBinaryFile = 'page.wasm'" in (tmp_path / 'page.js').read_text()


def test_wasm_output_is_standalone(tmp_path, toolchain, object_file):
  run('main.o', '-o', 'prog.wasm')
  ld = toolchain.find('wasm-ld')[0]
  assert ld[1:3] == ['-o', 'prog.wasm']
  assert '-lstandalonewasm' in ld
  assert '--no-entry' not in ld
  assert not glue_runs(toolchain)
  assert (tmp_path / 'prog.wasm').exists()
  assert not (tmp_path / 'prog.js').exists()


def test_side_module(tmp_path, toolchain, object_file):
  run('main.o', '-sSIDE_MODULE', '-o', 'side.wasm')
  ld = toolchain.find('wasm-ld')[0]
  assert '-shared' in ld
  assert not any(a.startswith('-lc') for a in ld)
  # side modules do not need the symbols of the JS libraries
  assert not toolchain.ran('js-compiler')


def test_main_module_reads_side_modules(tmp_path, toolchain, object_file, make_dylib):
  make_dylib(tmp_path / 'libside.so', needed=['libdep.so'], imports=['printf'])
  make_dylib(tmp_path / 'libdep.so', exports=['dep_func'])
  run('main.o', 'libside.so', '-L.', '-sMAIN_MODULE', '-o', 'main.js')
  assert toolchain.js_settings['SIDE_MODULE_IMPORTS'] == ['_printf']
  assert toolchain.js_settings['SIDE_MODULE_EXPORTS'] == ['dep_func']
  ld = toolchain.find('wasm-ld')[0]
  assert '-pie' in ld
  assert '--export-if-defined=printf' in ld
  # dependencies are loaded at runtime, not linked
  assert 'libside.so' in ld
  assert './libdep.so' not in ld


def test_object_output(tmp_path, toolchain, object_file):
  (tmp_path / 'other.o').write_bytes(MINIMAL_WASM)
  assert run('main.o', 'other.o', '-r', '-o', 'combined.o') == 0
  ld = toolchain.find('wasm-ld')[0]
  assert '--relocatable' in ld
  assert ld[1:5] == ['-o', 'combined.o', 'main.o', 'other.o']
  assert not toolchain.ran('js-compiler')


def test_linker_version(tmp_path, toolchain, object_file):
  assert run('main.o', '-Wl,--version') == 0
  assert not (tmp_path / 'a.out.js').exists()
  assert not glue_runs(toolchain)


def test_link_to_devnull(toolchain, object_file):
  assert run('main.o', '-o', os.devnull) == 0
  assert toolchain.ran('wasm-ld')
  assert not toolchain.ran('llvm-objcopy')


def test_bare_output(tmp_path, toolchain, object_file):
  run('main.o', '--oformat=bare', '-o', 'bare.wasm')
  assert (tmp_path / 'bare.wasm').exists()
  assert not toolchain.ran('llvm-objcopy')
  assert not toolchain.ran('wasm-opt')


def test_post_link_only(tmp_path, toolchain, capsys):
  (tmp_path / 'linked.wasm').write_bytes(MINIMAL_WASM)
  assert run('--post-link', 'linked.wasm', '-o', 'out.js') == 0
  assert not toolchain.ran('wasm-ld')
  assert (tmp_path / 'out.js').exists()
  assert (tmp_path / 'out.wasm').read_bytes() == MINIMAL_WASM
  assert '--post-link are experimental' in capsys.readouterr().err


def test_post_link_single_input(tmp_path, toolchain, capsys):
  (tmp_path / 'a.wasm').write_bytes(MINIMAL_WASM)
  (tmp_path / 'b.wasm').write_bytes(MINIMAL_WASM)
  with pytest.raises(SystemExit):
    run('--post-link', 'a.wasm', 'b.wasm')
  assert '--post-link requires a single input file' in capsys.readouterr().err


def test_strip_without_optimizer(toolchain, object_file):
  run('main.o', '-o', 'out.js')
  objcopy = toolchain.find('llvm-objcopy')[0]
  assert objcopy[1:3] == ['out.wasm', 'out.wasm']
  assert '--remove-section=.debug*' in objcopy
  assert '--remove-section=producers' in objcopy


def test_optimized_build(toolchain, object_file):
  run('main.o', '-O2', '-o', 'out.js')
  ld = toolchain.find('wasm-ld')[0]
  assert '-lc' in ld
  assert '-lc-debug' not in ld
  opt = toolchain.find('wasm-opt')[0]
  for flag in ('-O2', '--post-emscripten', '--strip-debug', '--strip-producers', '--detect-features'):
    assert flag in opt
  assert opt[opt.index('-o') - 1:opt.index('-o') + 2] == ['out.wasm', '-o', 'out.wasm']
  assert not toolchain.ran('llvm-objcopy')
  assert toolchain.js_settings['ASSERTIONS'] == 0


def test_explicit_assertions_kept(toolchain, object_file):
  run('main.o', '-O2', '-sASSERTIONS', '-o', 'out.js')
  assert toolchain.js_settings['ASSERTIONS'] == 1


def test_single_file(tmp_path, toolchain, object_file):
  run('main.o', '-sSINGLE_FILE', '-o', 'out.js')
  js = (tmp_path / 'out.js').read_text()
  encoded = base64.b64encode(MINIMAL_WASM).decode('ascii')
  assert "wasmBinaryFile = 'data:application/octet-stream;base64,%s'" % encoded in js
  assert not (tmp_path / 'out.wasm').exists()


def test_single_file_html(tmp_path, toolchain, object_file):
  run('main.o', '-sSINGLE_FILE', '-o', 'page.html')
  html = (tmp_path / 'page.html').read_text()
  assert 'data:application/octet-stream;base64,' in html
  assert not (tmp_path / 'page.js').exists()
  assert not (tmp_path / 'page.wasm').exists()


def test_wasm2js_fallback(tmp_path, toolchain, object_file):
  run('main.o', '-sWASM=2', '-o', 'page.html')
  assert (tmp_path / 'page.wasm.js').exists()
  html = (tmp_path / 'page.html').read_text()
  assert "wasm2js.src = 'page.wasm.js';" in html
  assert 'function intArrayToString' in html


def test_modularize(tmp_path, toolchain, object_file):
  run('main.o', '-sMODULARIZE', '-sEXPORT_NAME=createFoo', '-o', 'out.js')
  js = (tmp_path / 'out.js').read_text()
  assert 'var createFoo = (() => {' in js
  assert 'return moduleArg.ready' in js
  assert 'module.exports = createFoo;' in js


def test_es6_module(tmp_path, toolchain, object_file):
  run('main.o', '-o', 'out.mjs')
  js = (tmp_path / 'out.mjs').read_text()
  assert 'async function(moduleArg = {})' in js
  assert 'import.meta.url' in js
  assert 'EMSCRIPTEN$IMPORT$META' not in js
  assert js.rstrip().endswith('export default Module;')


def test_es6_node_only(tmp_path, toolchain, object_file):
  run('main.o', '-sENVIRONMENT=node', '-o', 'out.mjs')
  js = (tmp_path / 'out.mjs').read_text()
  assert "import { createRequire } from 'module';" in js
  assert 'async function' not in js


def test_extern_pre_and_post_js(tmp_path, toolchain, object_file):
  (tmp_path / 'pre.js').write_text('// extern pre\n')
  (tmp_path / 'post.js').write_text('// extern post\n')
  run('main.o', '--extern-pre-js', 'pre.js', '--extern-post-js', 'post.js', '-o', 'out.js')
  js = (tmp_path / 'out.js').read_text()
  assert js.startswith('// extern pre\n')
  assert js.endswith('// extern post\n')


def test_pre_js_passed_to_js_compiler(tmp_path, toolchain, object_file):
  (tmp_path / 'pre.js').write_text('')
  run('main.o', '--pre-js', 'pre.js', '-o', 'out.js')
  assert toolchain.js_settings['PRE_JS_FILES'] == [os.path.abspath('pre.js')]


def test_js_library_order(tmp_path, toolchain, object_file):
  (tmp_path / 'mine.js').write_text('')
  run('main.o', '--js-library', 'mine.js', '-lGL', '-o', 'out.js')
  assert toolchain.js_settings['JS_LIBRARIES'] == [os.path.abspath('mine.js'), 'library_webgl.js', 'library_html5_webgl.js']
  ld = toolchain.find('wasm-ld')[0]
  index = ld.index('-lGL')
  assert ld[index - 1:index + 2] == ['--whole-archive', '-lGL', '--no-whole-archive']


def test_closure(tmp_path, toolchain, object_file):
  run('main.o', '--closure', '1', '--closure-args=--externs ext.js', '-o', 'out.js')
  closure = toolchain.find('closure')[0]
  assert '--compilation_level' in closure
  assert closure[-2:] == ['--externs', 'ext.js']
  assert (tmp_path / 'out.js').read_text().endswith('// closured\n')


def test_js_transform(tmp_path, toolchain, object_file):
  def transform(cmd):
    with open(cmd[-1], 'a') as f:
      f.write('// transformed\n')
  toolchain.handlers['add-marker'] = transform
  run('main.o', '--js-transform', 'add-marker --fast', '-o', 'out.js')
  cmd = toolchain.find('add-marker')[0]
  assert cmd[1] == '--fast'
  assert os.path.isabs(cmd[2])
  assert (tmp_path / 'out.js').read_text().endswith('// transformed\n')


def test_symbol_map(tmp_path, toolchain, object_file):
  run('main.o', '--emit-symbol-map', '-o', 'out.js')
  assert (tmp_path / 'out.symbols').read_text() == '0:main\n1:helper\n'
  opt = toolchain.find('wasm-opt')[-1]
  assert '--print-function-map' in opt


def test_split_module(tmp_path, toolchain, object_file, capsys):
  run('main.o', '-sSPLIT_MODULE', '-o', 'out.js')
  split = toolchain.find('wasm-split')[0]
  assert '--instrument' in split
  assert (tmp_path / 'out.wasm.orig').exists()
  assert (tmp_path / 'out.wasm').exists()
  assert 'The SPLIT_MODULE setting is experimental' in capsys.readouterr().err


def test_proxy_to_worker(tmp_path, toolchain, object_file):
  run('main.o', '--proxy-to-worker', '-o', 'out.js')
  assert (tmp_path / 'out.worker.js').exists()
  assert "new Worker('./out.worker.js')" in (tmp_path / 'out.js').read_text()


def test_windows_line_endings(tmp_path, toolchain, object_file):
  run('main.o', '--output_eol', 'windows', '-o', 'out.js')
  assert b'\r\n' in (tmp_path / 'out.js').read_bytes()


def test_autoconf(tmp_path, toolchain):
  (tmp_path / 'conftest.c').write_text('int main() {}')
  run('conftest.c')
  output = tmp_path / 'a.out'
  assert output.read_text().startswith('#!')
  assert os.access(output, os.X_OK)


def test_tool_failure_exit_code(toolchain, object_file, capsys):
  toolchain.failures['wasm-ld'] = 3
  with pytest.raises(SystemExit) as e:
    run('main.o')
  assert e.value.code == 3
  assert 'failed (returned 3)' in capsys.readouterr().err


def test_missing_output_directory(toolchain, object_file, capsys):
  with pytest.raises(SystemExit):
    run('main.o', '-o', 'nodir/out.js')
  assert 'is in a directory that does not exist' in capsys.readouterr().err


def test_output_is_directory(tmp_path, toolchain, object_file, capsys):
  (tmp_path / 'out.js').mkdir()
  with pytest.raises(SystemExit):
    run('main.o', '-o', 'out.js')
  assert 'cannot write output file `out.js`: Is a directory' in capsys.readouterr().err


def test_invalid_output_name(toolchain, object_file, capsys):
  with pytest.raises(SystemExit):
    run('main.o', '-o', '-weird.js')
  assert 'invalid output filename: `-weird.js`' in capsys.readouterr().err


def test_response_file_arguments(tmp_path, toolchain, object_file):
  (tmp_path / 'args.rsp').write_text('main.o -o fromrsp.js\n')
  run('@args.rsp')
  assert (tmp_path / 'fromrsp.js').exists()


def test_print_stages(toolchain, source_file, capsys):
  run('-v', '-c', 'hello.c')
  assert 'clang' in capsys.readouterr().err


def test_version_query(toolchain, capsys):
  assert run('-v') == 0
  assert 'emcc (Emscripten gcc/clang-like replacement' in capsys.readouterr().err
  assert toolchain.find('clang')[0][1] == '-v'


def test_informational_flags(toolchain, capsys):
  assert run('--version') == 0
  assert shared.EMSCRIPTEN_VERSION in capsys.readouterr().out
  assert run('-dumpmachine') == 0
  assert capsys.readouterr().out.strip() == 'wasm32-unknown-emscripten'
  assert run('-dumpversion') == 0
  assert capsys.readouterr().out.strip() == shared.EMSCRIPTEN_VERSION
  assert run('--help') == 0
  assert 'Emscripten Compiler Frontend' in capsys.readouterr().out
  assert not toolchain.commands


@pytest.mark.parametrize('var', ['EMMAKEN_NO_SDK', 'EMMAKEN_COMPILER', 'EMMAKEN_CFLAGS'])
def test_retired_environment_variables(monkeypatch, toolchain, object_file, capsys, var):
  monkeypatch.setenv(var, '1')
  with pytest.raises(SystemExit):
    run('main.o')
  assert 'no longer supported' in capsys.readouterr().err


def test_reproduce(tmp_path, toolchain, source_file):
  run('-c', 'hello.c', '--reproduce', 'repro.tar')
  with tarfile.open(tmp_path / 'repro.tar') as archive:
    names = archive.getnames()
    response = archive.extractfile('repro/response.txt').read().decode()
  assert 'repro/version.txt' in names
  relpath = os.path.splitdrive(os.path.abspath('hello.c'))[1][1:]
  assert 'repro/' + relpath in names
  assert response.splitlines() == ['-c', relpath]


def test_reproduce_from_environment(tmp_path, monkeypatch, toolchain, source_file):
  monkeypatch.setenv('EMCC_REPRODUCE', 'env.tar')
  run('-c', 'hello.c')
  with tarfile.open(tmp_path / 'env.tar') as archive:
    assert 'env/response.txt' in archive.getnames()


def test_clear_cache(tmp_path, toolchain):
  (tmp_path / 'cache' / 'symbol_lists').mkdir()
  with pytest.raises(SystemExit) as e:
    run('--clear-cache')
  assert e.value.code == 0
  assert not (tmp_path / 'cache' / 'symbol_lists').exists()
