#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from .icat import main

if __name__ == '__main__':
    raise SystemExit(main())
