# Copyright 2011 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

"""Utilties for manipulating WebAssembly binaries from python.
"""

from collections import namedtuple
from enum import IntEnum
import logging
import os

import leb128

logger = logging.getLogger('webassembly')

WASM_PAGE_SIZE = 65536

MAGIC = b'\0asm'

VERSION = b'\x01\0\0\0'

HEADER_SIZE = 8

LIMITS_HAS_MAX = 0x1


def toLEB(num):
  return leb128.u.encode(num)


def readULEB(iobuf):
  return leb128.u.decode_reader(iobuf)[0]


def readSLEB(iobuf):
  return leb128.i.decode_reader(iobuf)[0]


class SecType(IntEnum):
  CUSTOM = 0
  TYPE = 1
  IMPORT = 2
  FUNCTION = 3
  TABLE = 4
  MEMORY = 5
  TAG = 13
  GLOBAL = 6
  EXPORT = 7
  START = 8
  ELEM = 9
  DATACOUNT = 12
  CODE = 10
  DATA = 11


class ExternType(IntEnum):
  FUNC = 0
  TABLE = 1
  MEMORY = 2
  GLOBAL = 3
  TAG = 4


class DylinkType(IntEnum):
  MEM_INFO = 1
  NEEDED = 2
  EXPORT_INFO = 3
  IMPORT_INFO = 4


Section = namedtuple('Section', ['type', 'size', 'offset', 'name'])
Limits = namedtuple('Limits', ['flags', 'initial', 'maximum'])
Import = namedtuple('Import', ['kind', 'module', 'field', 'info'])
Export = namedtuple('Export', ['name', 'kind', 'index'])
Dylink = namedtuple('Dylink', ['mem_size', 'mem_align', 'table_size', 'table_align', 'needed'])


class Module:
  """Extremely minimal wasm module reader.  Only used for inspecting the
  dylink metadata and the import/export tables of shared libraries."""
  def __init__(self, filename):
    self.filename = filename
    self.size = os.path.getsize(filename)
    self.buf = open(filename, 'rb')
    magic = self.buf.read(4)
    version = self.buf.read(4)
    if magic != MAGIC or version != VERSION:
      self.buf.close()
      raise ValueError('not a wasm file: %s' % filename)

  def __enter__(self):
    return self

  def __exit__(self, exc_type, exc_val, exc_tb):
    self.buf.close()

  def readByte(self):
    return self.buf.read(1)[0]

  def readULEB(self):
    return readULEB(self.buf)

  def readSLEB(self):
    return readSLEB(self.buf)

  def readString(self):
    size = self.readULEB()
    return self.buf.read(size).decode('utf-8')

  def readLimits(self):
    flags = self.readByte()
    initial = self.readULEB()
    maximum = 0
    if flags & LIMITS_HAS_MAX:
      maximum = self.readULEB()
    return Limits(flags, initial, maximum)

  def seek(self, offset):
    self.buf.seek(offset)

  def tell(self):
    return self.buf.tell()

  def sections(self):
    """Generator that lazily returns sections from the wasm file."""
    offset = HEADER_SIZE
    while offset < self.size:
      self.seek(offset)
      section_type = SecType(self.readByte())
      section_size = self.readULEB()
      section_offset = self.buf.tell()
      name = None
      if section_type == SecType.CUSTOM:
        name = self.readString()
      yield Section(section_type, section_size, section_offset, name)
      offset = section_offset + section_size

  def get_section(self, section_code):
    return next((s for s in self.sections() if s.type == section_code), None)

  def get_custom_section(self, name):
    for section in self.sections():
      if section.type == SecType.CUSTOM and section.name == name:
        return section
    return None

  def exports(self):
    sec = self.get_section(SecType.EXPORT)
    if not sec:
      return []

    self.seek(sec.offset)
    num_exports = self.readULEB()
    exports = []
    for _ in range(num_exports):
      name = self.readString()
      kind = ExternType(self.readByte())
      index = self.readULEB()
      exports.append(Export(name, kind, index))

    return exports

  def imports(self):
    sec = self.get_section(SecType.IMPORT)
    if not sec:
      return []

    self.seek(sec.offset)
    num_imports = self.readULEB()
    imports = []
    for _ in range(num_imports):
      mod = self.readString()
      field = self.readString()
      kind = ExternType(self.readByte())
      if kind == ExternType.FUNC:
        info = self.readULEB()  # sig
      elif kind == ExternType.GLOBAL:
        info = (
          self.readSLEB(),  # global type
          self.readByte()   # mutable
        )
      elif kind == ExternType.MEMORY:
        info = self.readLimits()  # limits
      elif kind == ExternType.TABLE:
        info = (
          self.readSLEB(),   # table type
          self.readLimits()  # limits
        )
      elif kind == ExternType.TAG:
        info = (
          self.readByte(),  # attribute
          self.readULEB()   # sig
        )
      else:
        raise ValueError('unexpected import kind: %s' % kind)
      imports.append(Import(kind, mod, field, info))

    return imports

  def parse_dylink_section(self):
    dylink_section = next(self.sections(), None)
    if not dylink_section or dylink_section.type != SecType.CUSTOM:
      return None
    section_end = dylink_section.offset + dylink_section.size

    needed = []
    if dylink_section.name == 'dylink':
      # Legacy format: four fixed fields followed by the list of needed libraries
      mem_size = self.readULEB()
      mem_align = self.readULEB()
      table_size = self.readULEB()
      table_align = self.readULEB()
      needed_count = self.readULEB()
      while needed_count:
        needed.append(self.readString())
        needed_count -= 1
      return Dylink(mem_size, mem_align, table_size, table_align, needed)

    if dylink_section.name != 'dylink.0':
      return None

    # Current format: a sequence of typed subsections
    mem_size = mem_align = table_size = table_align = 0
    while self.tell() < section_end:
      subsection_type = self.readULEB()
      subsection_size = self.readULEB()
      end = self.tell() + subsection_size
      if subsection_type == DylinkType.MEM_INFO:
        mem_size = self.readULEB()
        mem_align = self.readULEB()
        table_size = self.readULEB()
        table_align = self.readULEB()
      elif subsection_type == DylinkType.NEEDED:
        needed_count = self.readULEB()
        while needed_count:
          needed.append(self.readString())
          needed_count -= 1
      self.seek(end)

    return Dylink(mem_size, mem_align, table_size, table_align, needed)


def is_wasm(filename):
  if not os.path.isfile(filename):
    return False
  with open(filename, 'rb') as f:
    header = f.read(HEADER_SIZE)
  return header == MAGIC + VERSION


def is_wasm_dylib(filename):
  """Detect wasm dynamic libraries by the presence of the "dylink" custom section."""
  if not is_wasm(filename):
    return False
  with Module(filename) as module:
    section = next(module.sections(), None)
    return bool(section) and section.type == SecType.CUSTOM and section.name in ('dylink', 'dylink.0')


def parse_dylink_section(wasm_file):
  with Module(wasm_file) as module:
    return module.parse_dylink_section()


def get_exports(wasm_file):
  with Module(wasm_file) as module:
    return module.exports()


def get_imports(wasm_file):
  with Module(wasm_file) as module:
    return module.imports()
