#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import os
import re
import sys

from setuptools import setup

minver = (3, 10)
if sys.version_info < minver:
    exit(f'termpix requires Python {".".join(map(str, minver))}. Current Python version: {".".join(map(str, sys.version_info[:3]))}')

src_base = os.path.dirname(os.path.abspath(__file__))
with open(os.path.join(src_base, 'termpix', 'constants.py'), 'rb') as f:
    constants = f.read().decode('utf-8')
appname = re.search(r"^appname: str = '([^']+)'", constants, re.MULTILINE).group(1)  # type: ignore
version = tuple(
    map(
        int,
        re.search(  # type: ignore
            r"^version: Version = Version\((\d+), (\d+), (\d+)\)", constants, re.MULTILINE
        ).group(1, 2, 3)
    )
)


setup(
    name=appname,
    version='.'.join(map(str, version)),
    description='Display images in the terminal using the kitty, sixel and iTerm2 graphics protocols',
    author='Kovid Goyal',
    license='GPL-3.0-only',
    python_requires=f'>={minver[0]}.{minver[1]}',
    packages=['termpix'],
    install_requires=['Pillow'],
    entry_points={'console_scripts': [f'{appname}=termpix.icat:main']},
)
