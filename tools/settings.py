# Copyright 2021 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

import copy
import difflib
import json
import os
import re
from collections import namedtuple

from .utils import exit_with_error, read_file, removeprefix
from . import diagnostics

# Visibility tiers.  Compile-time settings affect the object files produced by
# the compiler and are the only ones visible while compiling.  Internal settings
# are computed by the driver and cannot be set from the command line.
COMPILE = 'compile'
LINK = 'link'
INTERNAL = 'internal'

# Marker for settings that accept values of more than one type.
VARIABLE = object()

Setting = namedtuple('Setting', ['name', 'default', 'tier', 'type'])


def setting(name, default, tier=LINK, type_=None):
  if type_ is None:
    type_ = type(default)
  return Setting(name, default, tier, type_)


SCHEMA = [
  # Compile-time
  setting('STRICT', False, COMPILE),
  setting('DEFAULT_TO_CXX', True, COMPILE),
  setting('INLINING_LIMIT', False, COMPILE),
  setting('MEMORY64', 0, COMPILE),
  setting('MAIN_MODULE', 0, COMPILE),
  setting('SIDE_MODULE', 0, COMPILE),
  setting('RELOCATABLE', False, COMPILE),
  setting('PTHREADS', False, COMPILE),
  setting('WASM_WORKERS', 0, COMPILE),
  setting('SHARED_MEMORY', False, COMPILE),
  setting('BULK_MEMORY', False, COMPILE),
  setting('DISABLE_EXCEPTION_CATCHING', 1, COMPILE),
  setting('DISABLE_EXCEPTION_THROWING', False, COMPILE),
  setting('EXCEPTION_CATCHING_ALLOWED', [], COMPILE),
  setting('WASM_EXCEPTIONS', False, COMPILE),
  setting('SUPPORT_LONGJMP', 1, COMPILE, VARIABLE),
  setting('EMSCRIPTEN_TRACING', False, COMPILE),
  setting('LTO', 0, COMPILE, VARIABLE),
  setting('USE_ZLIB', False, COMPILE),
  setting('USE_LIBPNG', False, COMPILE),
  setting('USE_SDL', 0, COMPILE),
  setting('USE_SDL_MIXER', 1, COMPILE),
  setting('RUNTIME_LINKED_LIBS', [], COMPILE),

  # Link-time
  setting('ASSERTIONS', 1),
  setting('SAFE_HEAP', 0),
  setting('GLOBAL_BASE', 1024),
  setting('INITIAL_MEMORY', 16 * 1024 * 1024),
  setting('MAXIMUM_MEMORY', 2 * 1024 * 1024 * 1024),
  setting('STACK_SIZE', 64 * 1024),
  setting('ALLOW_MEMORY_GROWTH', False),
  setting('MALLOC', 'dlmalloc'),
  setting('EXIT_RUNTIME', False),
  setting('NODERAWFS', False),
  setting('FILESYSTEM', True),
  setting('STANDALONE_WASM', False),
  setting('ENVIRONMENT', 'web,webview,worker,node'),
  setting('ERROR_ON_UNDEFINED_SYMBOLS', True),
  setting('EXPECT_MAIN', True),
  setting('EXPORTED_FUNCTIONS', []),
  setting('EXPORT_IF_DEFINED', []),
  setting('DEFAULT_LIBRARY_FUNCS_TO_INCLUDE', []),
  setting('EXPORT_NAME', 'Module'),
  setting('MODULARIZE', False),
  setting('EXPORT_ES6', False),
  setting('SINGLE_FILE', False),
  setting('WASM', 1),
  setting('WASM_ASYNC_COMPILATION', True),
  setting('PROXY_TO_WORKER', False),
  setting('PROXY_TO_WORKER_FILENAME', ''),
  setting('ASYNCIFY', 0),
  setting('ASYNCIFY_IMPORTS', []),
  setting('ASYNCIFY_EXPORTS', []),
  setting('ASYNCIFY_IGNORE_INDIRECT', False),
  setting('ASYNCIFY_REMOVE', []),
  setting('ASYNCIFY_ADD', []),
  setting('ASYNCIFY_ONLY', []),
  setting('ASYNCIFY_ADVISE', False),
  setting('ASYNCIFY_DEBUG', 0),
  setting('SPLIT_MODULE', False),
  setting('BINARYEN_IGNORE_IMPLICIT_TRAPS', False),
  setting('BINARYEN_EXTRA_PASSES', ''),
  setting('EMULATE_FUNCTION_POINTER_CASTS', False),
  setting('AUTODEBUG', False),
  setting('LEGALIZE_JS_FFI', True),
  setting('EMIT_PRODUCERS_SECTION', False),
  setting('MIN_FIREFOX_VERSION', 79),
  setting('MIN_SAFARI_VERSION', 140100),
  setting('MIN_CHROME_VERSION', 85),
  setting('MIN_NODE_VERSION', 160000),

  # Internal
  setting('OPT_LEVEL', 0, INTERNAL),
  setting('SHRINK_LEVEL', 0, INTERNAL),
  setting('DEBUG_LEVEL', 0, INTERNAL),
  setting('GENERATE_DWARF', False, INTERNAL),
  setting('GENERATE_SOURCE_MAP', False, INTERNAL),
  setting('EMIT_NAME_SECTION', False, INTERNAL),
  setting('EMIT_SYMBOL_MAP', False, INTERNAL),
  setting('REQUIRED_EXPORTS', [], INTERNAL),
  setting('USER_EXPORTS', [], INTERNAL),
  setting('SIDE_MODULE_EXPORTS', [], INTERNAL),
  setting('SIDE_MODULE_IMPORTS', [], INTERNAL),
  setting('JS_LIBRARIES', [], INTERNAL),
  setting('PRE_JS_FILES', [], INTERNAL),
  setting('POST_JS_FILES', [], INTERNAL),
  setting('TARGET_BASENAME', '', INTERNAL),
  setting('TARGET_JS_NAME', '', INTERNAL),
  setting('WASM_BINARY_FILE', '', INTERNAL),
  setting('LINK_AS_CXX', False, INTERNAL),
  setting('USE_ASAN', False, INTERNAL),
  setting('USE_LSAN', False, INTERNAL),
  setting('UBSAN_RUNTIME', 0, INTERNAL),
  setting('AUTOCONF', False, INTERNAL),
]

# Settings that were renamed (old name, new name) or removed (old name, accepted
# values, explanation).
LEGACY_SETTINGS = [
  ['USE_PTHREADS', 'PTHREADS'],
  ['TOTAL_MEMORY', 'INITIAL_MEMORY'],
  ['TOTAL_STACK', 'STACK_SIZE'],
  ['WASM_MEM_MAX', 'MAXIMUM_MEMORY'],
  ['BINARYEN_MEM_MAX', 'MAXIMUM_MEMORY'],
  ['BINARYEN_ASYNC_COMPILATION', 'WASM_ASYNC_COMPILATION'],
  ['ERROR_ON_MISSING_LIBRARIES', [1], 'missing libraries are always an error now'],
  ['EMITTING_JS', [1], 'The new STANDALONE_WASM flag replaces this (replace EMITTING_JS=0 with STANDALONE_WASM=1)'],
  ['BINARYEN_METHOD', ['native-wasm'], 'only native wasm output is supported'],
]

COMPILE_TIME_SETTINGS = {s.name for s in SCHEMA if s.tier == COMPILE}
INTERNAL_SETTINGS = {s.name for s in SCHEMA if s.tier == INTERNAL}

# Settings that are measured in bytes and accept kb/mb/gb/tb suffixes.
MEM_SIZE_SETTINGS = {
  'INITIAL_MEMORY',
  'MAXIMUM_MEMORY',
  'STACK_SIZE',
}

user_settings = {}


class _impl:
  attrs = {}
  types = {}
  internal_settings = set()
  allowed_settings = None
  legacy_settings = {}
  alt_names = {}

  def __init__(self):
    self.reset()

  @classmethod
  def reset(cls):
    cls.attrs = {s.name: copy.deepcopy(s.default) for s in SCHEMA}
    cls.types = {s.name: (None if s.type is VARIABLE else s.type) for s in SCHEMA}
    cls.internal_settings = set(INTERNAL_SETTINGS)
    cls.allowed_settings = None

    if 'EMCC_STRICT' in os.environ:
      cls.attrs['STRICT'] = bool(int(os.environ.get('EMCC_STRICT')))

    cls.legacy_settings = {}
    cls.alt_names = {}
    for legacy in LEGACY_SETTINGS:
      if len(legacy) == 2:
        name, new_name = legacy
        cls.legacy_settings[name] = (None, 'setting renamed to ' + new_name)
        cls.alt_names[name] = new_name
      else:
        name, fixed_values, err = legacy
        cls.legacy_settings[name] = (fixed_values, err)
      assert name not in cls.attrs, 'legacy setting (%s) cannot also be a regular setting' % name

  @classmethod
  def limit_settings(cls, allowed):
    """Restrict reads and writes to the given set of names.  Passing None lifts
    the restriction."""
    cls.allowed_settings = allowed

  @classmethod
  def dict(cls):
    return cls.attrs.copy()

  @classmethod
  def external_dict(cls, skip_keys=()):
    return {k: v for k, v in cls.attrs.items() if k not in cls.internal_settings and k not in skip_keys}

  @classmethod
  def keys(cls):
    return cls.attrs.keys()

  def check_allowed(self, attr, action):
    if self.allowed_settings and attr not in self.allowed_settings:
      exit_with_error("internal error: attempt to %s setting '%s' while in limited settings mode", action, attr)

  def __getattr__(self, attr):
    if attr in self.attrs:
      self.check_allowed(attr, 'read')
      return self.attrs[attr]
    else:
      raise AttributeError("Settings object has no attribute '%s'" % attr)

  def check_type(self, name, value):
    expected_type = self.types.get(name)
    if not expected_type:
      return
    # Allow integers 1 and 0 for type `bool`
    if expected_type == bool:
      if value in ('True', 'False', 'true', 'false'):
        exit_with_error('attempt to set `%s` to `%s`; use 1/0 to set boolean settings', name, value)
      if type(value) is int and value in (0, 1):
        return
    if expected_type == int and type(value) is bool:
      return
    if type(value) is not expected_type:
      exit_with_error('setting `%s` expects `%s` but got `%s`', name, expected_type.__name__, type(value).__name__)

  def __setattr__(self, attr, value):
    if attr in self.legacy_settings:
      if self.attrs['STRICT']:
        exit_with_error('legacy setting used in strict mode: %s', attr)
      fixed_values, error_message = self.legacy_settings[attr]
      if fixed_values and value not in fixed_values:
        exit_with_error('invalid command line setting `-s%s=%s`: %s', attr, value, error_message)
      diagnostics.warning('legacy-settings', 'use of legacy setting: %s (%s)', attr, error_message)
      if attr not in self.alt_names:
        return
      attr = self.alt_names[attr]

    if attr not in self.attrs:
      msg = "Attempt to set a non-existent setting: '%s'\n" % attr
      suggestions = difflib.get_close_matches(attr, list(self.attrs.keys()))
      suggestions = ', '.join(suggestions)
      if suggestions:
        msg += ' - did you mean one of %s?\n' % suggestions
      msg += " - perhaps a typo in emcc's  -sX=Y  notation?"
      exit_with_error(msg)

    self.check_allowed(attr, 'set')
    self.check_type(attr, value)
    self.attrs[attr] = value

  @classmethod
  def get(cls, key):
    return cls.attrs.get(key)

  @classmethod
  def __getitem__(cls, key):
    return cls.attrs[key]

  @classmethod
  def environment_may_be(cls, environment):
    return cls.attrs['ENVIRONMENT'] == '' or environment in cls.attrs['ENVIRONMENT'].split(',')


# Settings. A global singleton. Not pretty, but nicer than passing |, settings| everywhere
class SettingsManager:

  __instance = None

  @staticmethod
  def instance():
    if SettingsManager.__instance is None:
      SettingsManager.__instance = _impl()
    return SettingsManager.__instance

  def __getattr__(self, attr):
    return getattr(self.instance(), attr)

  def __setattr__(self, attr, value):
    return setattr(self.instance(), attr, value)

  def get(self, key):
    return self.instance().get(key)

  def __getitem__(self, key):
    return self.instance()[key]


settings = SettingsManager()


def default_setting(name, new_default):
  if name not in user_settings:
    setattr(settings, name, new_default)


def normalize_boolean_setting(name, value):
  # boolean NO_X settings are aliases for X
  # (note that *non*-boolean setting values have special meanings,
  # and we can't just flip them, so leave them as-is to be
  # handled in a special way later)
  if name.startswith('NO_') and value in ('0', '1'):
    name = removeprefix(name, 'NO_')
    value = str(1 - int(value))
  return name, value


def expand_byte_size_suffixes(value):
  """Given a string with KB/MB size suffixes, such as "32MB", computes how
  many bytes that is and returns it as an integer.
  """
  value = value.strip()
  match = re.match(r'^(\d+)\s*([kmgt]?b)?$', value, re.I)
  if not match:
    exit_with_error("invalid byte size `%s`.  Valid suffixes are: kb, mb, gb, tb", value)
  value, suffix = match.groups()
  value = int(value)
  if suffix:
    size_suffixes = {suffix: 1024 ** i for i, suffix in enumerate(['b', 'kb', 'mb', 'gb', 'tb'])}
    value *= size_suffixes[suffix.lower()]
  return value


def parse_symbol_list_file(contents):
  """Parse contents of one-symbol-per-line response file.  This format can by used
  with, for example, -sEXPORTED_FUNCTIONS=@filename and avoids the need for any
  kind of quoting or escaping.
  """
  values = contents.splitlines()
  return [v.strip() for v in values if v.strip() and not v.startswith('#')]


def parse_value(text, expected_type):
  # Note that using response files can introduce whitespace, if the file
  # has a newline at the end. For that reason, we rstrip() in relevant
  # places here.
  def parse_string_value(text):
    first = text[0]
    if first == "'" or first == '"':
      text = text.rstrip()
      if text[-1] != text[0] or len(text) < 2:
        raise ValueError(f'unclosed quoted string. expected final character to be "{text[0]}" and length to be greater than 1 in "{text}"')
      return text[1:-1]
    return text

  def parse_string_list_members(text):
    sep = ','
    values = text.split(sep)
    result = []
    index = 0
    while index < len(values):
      current = values[index].lstrip()  # Cannot safely rstrip for cases like: "HERE-> ,"
      if not len(current):
        raise ValueError('string array should not contain an empty value')
      first = current[0]
      if not (first == "'" or first == '"'):
        result.append(current.rstrip())
      else:
        start = index
        # Keep joining members until one ends with the opening quote
        while True:
          stripped = current.rstrip()
          if len(stripped) > 1 and stripped[-1] == first:
            result.append(stripped[1:-1])
            break
          index += 1
          if index >= len(values):
            raise ValueError(f"unclosed quoted string. expected final character to be '{first}' in '{values[start]}'")
          current += sep + values[index]
      index += 1
    return result

  def parse_string_list(text):
    text = text.rstrip()
    if text and text[0] == '[':
      if text[-1] != ']':
        raise ValueError('unclosed opened string list. expected final character to be "]" in "%s"' % (text))
      text = text[1:-1]
    if text.strip() == "":
      return []
    return parse_string_list_members(text)

  if expected_type == list or (text and text[0] == '['):
    # if json parsing fails, we fall back to our own parser, which can handle a few
    # simpler syntaxes
    try:
      parsed = json.loads(text)
    except ValueError:
      return parse_string_list(text)

    # if we succeeded in parsing as json, check some properties of it before returning
    if type(parsed) not in (str, list):
      raise ValueError(f'settings must be strings or lists (not {type(parsed)})')
    if type(parsed) is list:
      for elem in parsed:
        if type(elem) is not str:
          raise ValueError(f'list members in settings must be strings (not {type(elem)})')

    return parsed

  if expected_type == float:
    try:
      return float(text)
    except ValueError:
      pass

  try:
    if text.startswith('0x'):
      base = 16
    else:
      base = 10
    return int(text, base)
  except ValueError:
    return parse_string_value(text)


def apply_user_settings():
  """Take a map of users settings {NAME: VALUE} and apply them to the global
  settings object.
  """
  for key, value in user_settings.items():
    if key in settings.internal_settings:
      exit_with_error('%s is an internal setting and cannot be set from command line', key)

    # map legacy settings which have aliases to the new names
    # but keep the original key so errors are correctly reported via the `setattr` below
    user_key = key
    if key in settings.legacy_settings and key in settings.alt_names:
      key = settings.alt_names[key]

    # In those settings fields that represent amount of memory, translate suffixes to multiples of 1024.
    if key in MEM_SIZE_SETTINGS:
      value = str(expand_byte_size_suffixes(value))

    filename = None
    if value and value[0] == '@':
      filename = removeprefix(value, '@')
      if not os.path.isfile(filename):
        exit_with_error('%s: file not found parsing argument: %s=%s', filename, key, value)
      value = read_file(filename).strip()
    else:
      value = value.replace('\\', '\\\\')

    expected_type = settings.types.get(key)

    if filename and expected_type == list and value.strip()[:1] != '[':
      value = parse_symbol_list_file(value)
    else:
      try:
        value = parse_value(value, expected_type)
      except Exception as e:
        exit_with_error('a problem occurred in evaluating the content after a "-s", specifically "%s=%s": %s', key, value, str(e))

    setattr(settings, user_key, value)

    if key == 'EXPORTED_FUNCTIONS':
      # used for warnings about missing exports after linking
      settings.USER_EXPORTS = settings.EXPORTED_FUNCTIONS.copy()


# A settings check evaluated once per invocation.  Rules without a warning
# category are fatal.
SettingsRule = namedtuple('SettingsRule', ['predicate', 'message', 'category'])


def check_settings_rules(rules):
  for rule in rules:
    if not rule.predicate():
      continue
    if rule.category:
      diagnostics.warning(rule.category, rule.message)
    else:
      exit_with_error(rule.message)
