# Copyright 2016 The Emscripten Authors.  All rights reserved.
# Emscripten is available under two separate licenses, the MIT license and the
# University of Illinois/NCSA Open Source License.  Both these licenses can be
# found in the LICENSE file.

from .utils import read_binary, write_binary


def convert_line_endings(text, from_eol, to_eol):
  if from_eol == to_eol:
    return text
  return text.replace(from_eol, to_eol)


def convert_line_endings_in_file(filename, from_eol, to_eol):
  """Rewrite a generated text file to use the requested line endings."""
  if from_eol == to_eol:
    return

  text = read_binary(filename).decode('utf-8')
  text = convert_line_endings(text, from_eol, to_eol)
  write_binary(filename, text.encode('utf-8'))
