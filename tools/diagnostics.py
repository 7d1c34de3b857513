# Copyright 2011 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

"""Simple color-enabled diagnositics reporting functions.
"""

import logging
import sys

WARN = 1
ERROR = 2
FATAL = 3

color_enabled = sys.stderr.isatty()
tool_name = 'emcc'

# color for use for each diagnostic level
level_colors = {
  WARN: '\033[35m',
  ERROR: '\033[31m',
  FATAL: '\033[31m',
}

level_prefixes = {
  WARN: 'warning: ',
  ERROR: 'error: ',
  FATAL: 'error: ',
}

logger = logging.getLogger('diagnostics')


def output_color(text, color):
  if not color_enabled:
    return text
  return '\033[1m' + color + text + '\033[0m'


def diag(level, msg, *args):
  # Format output message as:
  # <tool>: <level>: msg
  # With the `<level>:` part being colored accordingly.
  sys.stderr.write(output_color(tool_name + ': ', '\033[37m'))
  sys.stderr.write(output_color(level_prefixes[level], level_colors[level]))
  if args:
    msg = msg % args
  sys.stderr.write(msg + '\n')
  sys.stderr.flush()


def error(msg, *args, exit_code=1):
  diag(ERROR, msg, *args)
  sys.exit(exit_code)


def fatal(msg, *args):
  diag(FATAL, msg, *args)
  sys.exit(1)


def warn(msg, *args):
  diag(WARN, msg, *args)


class WarningManager:
  warnings = {}

  def add_warning(self, name, enabled=True, part_of_all=True, shared=False, error=False):
    self.warnings[name] = {
      'enabled': enabled,
      'part_of_all': part_of_all,
      # True for flags that are shared with the underlying clang driver
      'shared': shared,
      'error': error,
    }

  def capture_warnings(self, cmd_args):
    for i in range(len(cmd_args)):
      if cmd_args[i] == '-w':
        for warning in self.warnings.values():
          warning['enabled'] = False
        continue

      if not cmd_args[i].startswith('-W'):
        continue

      if cmd_args[i] == '-Wall':
        for warning in self.warnings.values():
          if warning['part_of_all']:
            warning['enabled'] = True
        continue

      if cmd_args[i] == '-Werror':
        for warning in self.warnings.values():
          warning['error'] = True
        continue

      if cmd_args[i].startswith('-Werror=') or cmd_args[i].startswith('-Wno-error='):
        warning_name = cmd_args[i].split('=', 1)[1]
        if warning_name in self.warnings:
          self.warnings[warning_name]['error'] = not cmd_args[i].startswith('-Wno-')
          cmd_args[i] = ''
        continue

      if cmd_args[i].startswith('-Wno-'):
        warning_name = cmd_args[i][5:]
        enabled = False
      else:
        warning_name = cmd_args[i][2:]
        enabled = True

      if warning_name in self.warnings:
        self.warnings[warning_name]['enabled'] = enabled
        if not self.warnings[warning_name]['shared']:
          cmd_args[i] = ''

    return cmd_args

  def warning(self, warning_type, message, *args):
    warning_info = self.warnings[warning_type]
    msg = (message % args) + ' [-W' + warning_type.lower().replace('_', '-') + ']'
    if warning_info['enabled']:
      if warning_info['error']:
        error(msg + ' [-Werror]')
      else:
        warn(msg)
    else:
      logger.debug('disabled warning: ' + msg)


manager = WarningManager()


def add_warning(name, enabled=True, part_of_all=True, shared=False, error=False):
  manager.add_warning(name, enabled, part_of_all, shared, error)


def enable_warning(name, as_error=False):
  manager.warnings[name]['enabled'] = True
  if as_error:
    manager.warnings[name]['error'] = True


def is_enabled(name):
  return manager.warnings[name]['enabled']


def warning(warning_type, message, *args):
  manager.warning(warning_type, message, *args)


def capture_warnings(argv):
  return manager.capture_warnings(argv)


def setup_warnings():
  """(Re-)register every warning category with its default state."""
  manager.warnings.clear()
  add_warning('absolute-paths', enabled=False, part_of_all=False)
  add_warning('deprecated', shared=True)
  add_warning('emcc')
  add_warning('experimental')
  add_warning('legacy-settings', enabled=False, part_of_all=False)
  add_warning('limited-postlink-optimizations')
  add_warning('linkflags')
  add_warning('map-unrecognized-libraries')
  add_warning('pthreads-mem-growth')
  add_warning('unused-command-line-argument', shared=True)


setup_warnings()
