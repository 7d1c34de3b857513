# Copyright 2014 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

"""System libraries and ports.

The archives themselves live in the cache sysroot.  This module only decides
which variant of each library a link needs and how to name it on the wasm-ld
command line.
"""

import logging
import os
from collections import namedtuple
from enum import IntEnum, auto

from . import utils
from .settings import settings

logger = logging.getLogger('system_libs')


class Exceptions(IntEnum):
  NONE = auto()
  EMSCRIPTEN = auto()
  WASM = auto()


def get_exception_mode():
  if settings.WASM_EXCEPTIONS:
    return Exceptions.WASM
  if settings.DISABLE_EXCEPTION_CATCHING == 1:
    return Exceptions.NONE
  return Exceptions.EMSCRIPTEN


class Library:
  """Base class for a system library.

  Subclasses set `name` and mix in the variant axes they support.  Each mixin
  contributes a suffix to the base name and a keyword argument to
  `get_default_variation`.
  """
  name = None
  # Sanitizer runtimes and similar are never pulled in by EMCC_FORCE_STDLIBS=1
  never_force = False

  def __init__(self):
    pass

  def get_base_name(self):
    return self.name

  def get_filename(self):
    return self.get_base_name() + '.a'

  def get_link_flag(self):
    return '-l' + utils.removeprefix(self.get_base_name(), 'lib')

  @classmethod
  def get_default_variation(cls, **kwargs):
    return cls(**kwargs)

  @classmethod
  def get_inheritance_tree(cls):
    yield cls
    for subclass in cls.__subclasses__():
      for c in subclass.get_inheritance_tree():
        yield c

  @classmethod
  def get_usable_variations(cls):
    """Returns a map of library name to the variation of that library that
    the current settings select."""
    usable = {}
    for subclass in cls.get_inheritance_tree():
      if subclass.name and subclass.name not in usable:
        usable[subclass.name] = subclass.get_default_variation()
    return usable


class MTLibrary(Library):
  def __init__(self, **kwargs):
    self.is_mt = kwargs.pop('is_mt')
    super().__init__(**kwargs)

  def get_base_name(self):
    name = super().get_base_name()
    if self.is_mt:
      name += '-mt'
    return name

  @classmethod
  def get_default_variation(cls, **kwargs):
    return super().get_default_variation(is_mt=bool(settings.PTHREADS), **kwargs)


class DebugLibrary(Library):
  def __init__(self, **kwargs):
    self.is_debug = kwargs.pop('is_debug')
    super().__init__(**kwargs)

  def get_base_name(self):
    name = super().get_base_name()
    if self.is_debug:
      name += '-debug'
    return name

  @classmethod
  def get_default_variation(cls, **kwargs):
    return super().get_default_variation(is_debug=bool(settings.ASSERTIONS), **kwargs)


class ExceptionLibrary(Library):
  def __init__(self, **kwargs):
    self.eh_mode = kwargs.pop('eh_mode')
    super().__init__(**kwargs)

  def get_base_name(self):
    name = super().get_base_name()
    if self.eh_mode == Exceptions.NONE:
      name += '-noexcept'
    elif self.eh_mode == Exceptions.WASM:
      name += '-except'
    return name

  @classmethod
  def get_default_variation(cls, **kwargs):
    return super().get_default_variation(eh_mode=get_exception_mode(), **kwargs)


class libcompiler_rt(MTLibrary):
  name = 'libcompiler_rt'


class libc(DebugLibrary, MTLibrary):
  name = 'libc'


class libmalloc(DebugLibrary, MTLibrary):
  name = 'libmalloc'

  def __init__(self, **kwargs):
    self.malloc = kwargs.pop('malloc')
    if self.malloc not in ('dlmalloc', 'emmalloc', 'none'):
      utils.exit_with_error('malloc() choice must be one of dlmalloc, emmalloc or none (not %s)', self.malloc)
    super().__init__(**kwargs)

  def get_base_name(self):
    name = 'lib' + self.malloc
    if self.is_mt:
      name += '-mt'
    if self.is_debug:
      name += '-debug'
    return name

  @classmethod
  def get_default_variation(cls, **kwargs):
    return super().get_default_variation(malloc=settings.MALLOC, **kwargs)


class libcxxabi(ExceptionLibrary, MTLibrary):
  name = 'libc++abi'


class libcxx(ExceptionLibrary, MTLibrary):
  name = 'libc++'


class libembind(Library):
  name = 'libembind'


class libfetch(MTLibrary):
  name = 'libfetch'


class libGL(MTLibrary):
  name = 'libGL'


class libsockets(MTLibrary):
  name = 'libsockets'


class libstandalonewasm(MTLibrary):
  name = 'libstandalonewasm'
  never_force = True


class libasan_rt(MTLibrary):
  name = 'libasan_rt'
  never_force = True


class liblsan_rt(MTLibrary):
  name = 'liblsan_rt'
  never_force = True


class libubsan_rt(MTLibrary):
  name = 'libubsan_rt'
  never_force = True


def get_libs_to_link(args, forced, only_forced):
  libs_to_link = []
  already_included = set()
  system_libs_map = Library.get_usable_variations()

  # Setting EMCC_FORCE_STDLIBS to 1 forces all libraries, otherwise it is a
  # comma separated list of library names.
  force = os.environ.get('EMCC_FORCE_STDLIBS')
  if force == '1':
    force_include = [name for name, lib in system_libs_map.items() if not lib.never_force]
  elif force:
    force_include = force.split(',')
  else:
    force_include = []
  force_include += forced
  if force_include:
    logger.debug('forcing stdlibs: %s', force_include)

  def add_library(libname):
    lib = system_libs_map[libname]
    if lib.name in already_included:
      return
    if isinstance(lib, libmalloc) and lib.malloc == 'none':
      return
    already_included.add(lib.name)
    logger.debug('including %s (%s)', lib.name, lib.get_filename())
    libs_to_link.append((lib.get_link_flag(), lib.name in force_include))

  for libname in force_include:
    if libname not in system_libs_map:
      utils.exit_with_error('invalid forced library: %s', libname)
    add_library(libname)

  if only_forced or '-nodefaultlibs' in args or '-nostdlib' in args:
    return libs_to_link

  if settings.SIDE_MODULE:
    return libs_to_link

  sanitize = settings.USE_LSAN or settings.USE_ASAN or settings.UBSAN_RUNTIME

  if settings.LINK_AS_CXX and '-nostdlib++' not in args:
    add_library('libc++abi')
    add_library('libc++')

  if settings.USE_ASAN:
    add_library('libasan_rt')
  elif settings.USE_LSAN:
    add_library('liblsan_rt')

  if settings.UBSAN_RUNTIME:
    add_library('libubsan_rt')

  if settings.STANDALONE_WASM:
    add_library('libstandalonewasm')

  if '-nolibc' not in args:
    # The sanitizer runtimes provide their own malloc
    if not sanitize:
      add_library('libmalloc')
    add_library('libc')

  add_library('libcompiler_rt')

  return libs_to_link


def calculate(args, forced):
  """Returns the wasm-ld flags that link the system libraries and ports the
  current settings need."""
  only_forced = os.environ.get('EMCC_ONLY_FORCED_STDLIBS')
  libs_to_link = get_libs_to_link(args, forced, only_forced)

  # Side modules rely on the main module for ports as well as system libraries
  ret = [] if settings.SIDE_MODULE else get_ports_libs()
  for flag, whole_archive in libs_to_link:
    if whole_archive:
      ret += ['--whole-archive', flag, '--no-whole-archive']
    else:
      ret.append(flag)
  return ret


# Ports are third-party libraries that are prebuilt into the cache sysroot and
# enabled via USE_* settings.
Port = namedtuple('Port', ['name', 'setting', 'value', 'libname', 'deps'])

PORTS = [
  Port('zlib', 'USE_ZLIB', 1, 'libz', []),
  Port('libpng', 'USE_LIBPNG', 1, 'libpng', ['zlib']),
  Port('sdl2', 'USE_SDL', 2, 'libSDL2', []),
  Port('sdl2_mixer', 'USE_SDL_MIXER', 2, 'libSDL2_mixer', ['sdl2']),
]


def get_needed_ports():
  by_name = {p.name: p for p in PORTS}
  needed = [p for p in PORTS if getattr(settings, p.setting) == p.value]
  # SDL2_mixer is only a thing in combination with SDL2
  needed = [p for p in needed if p.name != 'sdl2_mixer' or settings.USE_SDL == 2]

  ordered = []

  def visit(port):
    if port in ordered:
      return
    for dep in port.deps:
      visit(by_name[dep])
    ordered.append(port)

  for port in needed:
    visit(port)
  # Dependents must come before their dependencies on the link line
  return list(reversed(ordered))


def get_ports_libs():
  return ['-l' + utils.removeprefix(port.libname, 'lib') for port in get_needed_ports()]
