# Copyright 2023 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

"""Shared fixtures for the driver tests.

No real toolchain is needed: `shared.run_process` is replaced with a recorder
that produces the files the real tools would produce.
"""

import json
import os
import shutil
import subprocess

import pytest

import emcc
from tools import cache, config, diagnostics, response_file, shared
from tools.settings import settings, user_settings
from tools.webassembly import MAGIC, VERSION, toLEB

MINIMAL_WASM = MAGIC + VERSION

RESET_ENV = (
  'EMCC_CFLAGS',
  'EMCC_REPRODUCE',
  'EMCC_FORCE_STDLIBS',
  'EMCC_ONLY_FORCED_STDLIBS',
  'EMMAKEN_JUST_CONFIGURE',
  'EMMAKEN_NO_SDK',
  'EMMAKEN_COMPILER',
  'EMMAKEN_CFLAGS',
  'EM_CACHE',
  'EM_CACHE_IS_LOCKED',
)


@pytest.fixture(autouse=True)
def clean_driver_state(tmp_path, monkeypatch):
  """Every test starts from default settings, a private cache and its own
  working directory."""
  settings.reset()
  user_settings.clear()
  diagnostics.setup_warnings()
  monkeypatch.setattr(diagnostics, 'color_enabled', False)
  monkeypatch.setattr(emcc, 'run_via_emxx', False)
  monkeypatch.setattr(shared, 'PRINT_STAGES', False)
  monkeypatch.setattr(config, 'COMPILER_WRAPPER', None)
  monkeypatch.setattr(config, 'FROZEN_CACHE', False)
  monkeypatch.setattr(config, 'CACHE', str(tmp_path / 'cache'))
  for var in RESET_ENV:
    monkeypatch.delenv(var, raising=False)
  cache.setup()
  monkeypatch.chdir(tmp_path)
  yield
  settings.reset()
  user_settings.clear()


class FakeToolchain:
  """Records every subprocess the driver runs and imitates the tool."""

  def __init__(self):
    self.commands = []
    self.js_settings = None
    self.js_symbols = {'deps': {}, 'asyncFuncs': []}
    self.link_output = MINIMAL_WASM
    # tool basename -> exit code
    self.failures = {}
    # tool basename -> callable(cmd), for tools the fake does not know
    self.handlers = {}

  def tool_name(self, cmd):
    if config.COMPILER_WRAPPER and cmd[0] == config.COMPILER_WRAPPER:
      cmd = cmd[1:]
    if config.JS_COMPILER in cmd:
      return 'js-compiler'
    if cmd[:len(config.CLOSURE_COMPILER)] == config.CLOSURE_COMPILER:
      return 'closure'
    return os.path.basename(cmd[0])

  def find(self, name):
    """All recorded command lines of the given tool."""
    return [cmd for cmd in self.commands if self.tool_name(cmd) == name]

  def ran(self, name):
    return bool(self.find(name))

  def __call__(self, cmd, check=True, input=None, *args, **kw):
    cmd = list(cmd)
    name = self.tool_name(cmd)
    if len(cmd) == 2 and cmd[1].startswith('@'):
      cmd = [cmd[0]] + response_file.read_response_file(cmd[1])
    self.commands.append(cmd)

    if name in self.failures:
      returncode = self.failures[name]
      if check:
        raise subprocess.CalledProcessError(returncode, cmd)
      return subprocess.CompletedProcess(cmd, returncode, stdout='', stderr='')

    stdout = ''
    if name == 'js-compiler':
      stdout = self.js_compiler(cmd)
    elif name in ('clang', 'clang++'):
      if '-o' in cmd:
        self.write_output(cmd[cmd.index('-o') + 1], MINIMAL_WASM)
    elif name == 'wasm-ld':
      if '--version' in cmd:
        stdout = 'LLD 17.0.0'
      else:
        self.write_output(cmd[cmd.index('-o') + 1], self.link_output)
    elif name == 'llvm-objcopy':
      self.copy(cmd[1], cmd[2])
    elif name in ('wasm-opt', 'wasm-split'):
      if '-o' in cmd:
        out_index = cmd.index('-o')
        self.copy(cmd[out_index - 1], cmd[out_index + 1])
      if '--print-function-map' in cmd:
        stdout = '0:main\n1:helper\n'
    elif name == 'wasm2js':
      self.write_output(cmd[cmd.index('-o') + 1], b'var wasm2js = true;\n')
    elif name == 'closure':
      src = cmd[cmd.index('--js') + 1]
      with open(src) as f:
        contents = f.read()
      self.write_output(cmd[cmd.index('--js_output_file') + 1], (contents + '// closured\n').encode())
    elif name in self.handlers:
      stdout = self.handlers[name](cmd) or ''

    return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr='')

  def js_compiler(self, cmd):
    with open(cmd[cmd.index(config.JS_COMPILER) + 1]) as f:
      self.js_settings = json.load(f)
    if '--symbols-only' in cmd:
      return json.dumps(self.js_symbols)
    s = self.js_settings
    if s['SINGLE_FILE']:
      binary = '<<< WASM_BINARY_FILE >>>'
    else:
      binary = s['WASM_BINARY_FILE']
    glue = "var Module = typeof Module != 'undefined' ? Module : {};\n"
    glue += "var wasmBinaryFile = '%s';\n" % binary
    if s['EXPORT_ES6']:
      glue += 'var scriptDirectory = new URL(".", EMSCRIPTEN$IMPORT$META.url);\n'
    return glue

  def write_output(self, path, contents):
    # wasm-ld cannot create files next to /dev/null either
    if path.startswith(os.devnull) and path != os.devnull:
      return
    with open(path, 'wb') as f:
      f.write(contents)

  def copy(self, src, dst):
    if os.path.abspath(src) != os.path.abspath(dst):
      shutil.copyfile(src, dst)


@pytest.fixture
def toolchain(monkeypatch):
  fake = FakeToolchain()
  monkeypatch.setattr(shared, 'run_process', fake)
  return fake


@pytest.fixture
def source_file(tmp_path):
  path = tmp_path / 'hello.c'
  path.write_text('int main() { return 0; }\n')
  return path


@pytest.fixture
def object_file(tmp_path):
  path = tmp_path / 'main.o'
  path.write_bytes(MINIMAL_WASM)
  return path


def wasm_name(name):
  data = name.encode('utf-8')
  return bytes(toLEB(len(data))) + data


def wasm_section(section_type, payload):
  return bytes([section_type]) + bytes(toLEB(len(payload))) + payload


def build_dylib(needed=(), exports=(), imports=()):
  """Bytes of a side module with a dylink.0 section listing `needed`, plus
  function exports and `env` function imports."""
  needed_payload = bytes(toLEB(len(needed))) + b''.join(wasm_name(n) for n in needed)
  dylink = wasm_name('dylink.0') + bytes(toLEB(2)) + bytes(toLEB(len(needed_payload))) + needed_payload
  data = MINIMAL_WASM + wasm_section(0, dylink)
  if imports:
    payload = bytes(toLEB(len(imports)))
    for field in imports:
      payload += wasm_name('env') + wasm_name(field) + bytes([0]) + bytes(toLEB(0))
    data += wasm_section(2, payload)
  if exports:
    payload = bytes(toLEB(len(exports)))
    for index, export in enumerate(exports):
      payload += wasm_name(export) + bytes([0]) + bytes(toLEB(index))
    data += wasm_section(7, payload)
  return data


@pytest.fixture
def make_dylib():
  def make(path, needed=(), exports=(), imports=()):
    path.write_bytes(build_dylib(needed, exports, imports))
    return path
  return make
